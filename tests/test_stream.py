"""Unit tests for the data plane."""

import socket

import pytest

from conftest import RecordingWriter
from pyleafstream.exceptions import InvalidFrame, WriteError
from pyleafstream.layout import PanelDescriptor, ShapeType, Topology
from pyleafstream.protocol import parse_stream_frame
from pyleafstream.stream import DataPlaneWriter, FrameEncoder, StreamEndpoint


@pytest.fixture
def topology():
    panels = (
        PanelDescriptor(3, ShapeType.SQUARE, 0, 10),
        PanelDescriptor(1, ShapeType.SQUARE, 0, 0),
        PanelDescriptor(2, ShapeType.SQUARE, 10, 0),
    )
    return Topology(panels, ext_control_version=2, model="NL29")


@pytest.fixture
def endpoint():
    return StreamEndpoint("192.168.1.20", 60221, 2)


@pytest.fixture
def writer(endpoint):
    writer = RecordingWriter(endpoint)
    writer.open()
    return writer


@pytest.fixture
def encoder(topology, endpoint, writer):
    return FrameEncoder(topology, endpoint, writer, transition_time=1)


class TestFrameEncoder:
    def test_write_sends_one_datagram_in_topology_order(self, encoder, writer):
        sent = encoder.write([(255, 0, 0), (0, 255, 0), (0, 0, 255)])

        assert len(writer.sent) == 1
        assert sent == len(writer.sent[0]) == 26
        frame = parse_stream_frame(2, writer.sent[0])
        assert [(p.panel_id, p.r, p.g, p.b) for p in frame.panels] == [
            (3, 255, 0, 0),
            (1, 0, 255, 0),
            (2, 0, 0, 255),
        ]
        assert all(p.transition_time == 1 for p in frame.panels)

    @pytest.mark.parametrize("count", [0, 2, 4])
    def test_wrong_length_sends_nothing(self, encoder, writer, count):
        with pytest.raises(InvalidFrame):
            encoder.write([(1, 2, 3)] * count)
        assert writer.sent == []

    def test_out_of_range_channel(self, encoder, writer):
        with pytest.raises(InvalidFrame):
            encoder.write([(1, 2, 3), (1, 2, 300), (1, 2, 3)])
        assert writer.sent == []

    def test_malformed_colour(self, encoder, writer):
        with pytest.raises(InvalidFrame):
            encoder.write([(1, 2, 3), (1, 2), (1, 2, 3)])
        assert writer.sent == []

    def test_v1_endpoint(self, topology, writer):
        encoder = FrameEncoder(topology, StreamEndpoint("10.0.0.2", 60221, 1), writer)
        data = encoder.encode([(1, 1, 1)] * 3)
        assert len(data) == 1 + 7 * 3

    def test_send_failure_propagates(self, encoder, writer):
        writer.fail_send = True
        with pytest.raises(WriteError):
            encoder.write([(0, 0, 0)] * 3)


class TestDataPlaneWriter:
    def test_send_before_open(self, endpoint):
        with pytest.raises(WriteError, match="not open"):
            DataPlaneWriter(endpoint).send(b"\x00\x00")

    def test_loopback_datagram(self):
        receiver = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        receiver.bind(("127.0.0.1", 0))
        receiver.settimeout(2.0)
        port = receiver.getsockname()[1]
        try:
            with DataPlaneWriter(StreamEndpoint("127.0.0.1", port, 2)) as writer:
                assert writer.is_open
                assert writer.send(b"\x00\x01\x00\x03\xff\x00\x00\x00\x00\x01") == 10
                data, _ = receiver.recvfrom(64)
            assert not writer.is_open
        finally:
            receiver.close()

        assert data == b"\x00\x01\x00\x03\xff\x00\x00\x00\x00\x01"

    def test_close_is_idempotent(self, endpoint):
        writer = DataPlaneWriter(StreamEndpoint("127.0.0.1", 9, 2))
        writer.open()
        writer.close()
        writer.close()
        assert not writer.is_open

    def test_endpoint_str(self, endpoint):
        assert str(endpoint) == "192.168.1.20:60221 (v2)"
