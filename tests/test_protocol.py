"""Unit tests for stream frame and SSDP wire formats."""

import pytest
from construct import ConstructError

from pyleafstream.protocol import (
    SUPPORTED_EXT_CONTROL_VERSIONS,
    build_ssdp_search,
    build_stream_frame,
    frame_size,
    parse_ssdp_response,
    parse_stream_frame,
)


class TestStreamFrameV2:
    """Test version 2 frame encoding."""

    def test_two_panels_exact_bytes(self):
        """Test header and per-panel layout, big-endian."""
        data = build_stream_frame(2, [(3, (255, 0, 16)), (258, (1, 2, 3))], transition_time=1)

        assert data == bytes.fromhex(
            "0002"  # panel count
            "0003" "ff0010" "00" "0001"  # panel 3
            "0102" "010203" "00" "0001"  # panel 258
        )

    def test_transition_time_and_white(self):
        data = build_stream_frame(2, [(1, (0, 0, 0))], transition_time=0x0102, white=7)

        assert data == bytes.fromhex("0001" "0001" "000000" "07" "0102")

    def test_empty_frame(self):
        assert build_stream_frame(2, []) == b"\x00\x00"

    def test_size_matches(self):
        panels = [(i, (i, i, i)) for i in range(1, 31)]
        assert len(build_stream_frame(2, panels)) == frame_size(2, 30) == 242

    def test_parse(self):
        data = build_stream_frame(2, [(7, (10, 20, 30)), (9, (40, 50, 60))], transition_time=0)
        frame = parse_stream_frame(2, data)

        assert frame.panel_count == 2
        assert [p.panel_id for p in frame.panels] == [7, 9]
        assert (frame.panels[1].r, frame.panels[1].g, frame.panels[1].b) == (40, 50, 60)
        assert frame.panels[0].transition_time == 0

    def test_parse_rejects_trailing_bytes(self):
        data = build_stream_frame(2, [(7, (10, 20, 30))]) + b"\x00"
        with pytest.raises(ConstructError):
            parse_stream_frame(2, data)

    def test_parse_rejects_truncated(self):
        data = build_stream_frame(2, [(7, (10, 20, 30))])[:-1]
        with pytest.raises(ConstructError):
            parse_stream_frame(2, data)


class TestStreamFrameV1:
    """Test version 1 frame encoding."""

    def test_exact_bytes(self):
        data = build_stream_frame(1, [(3, (255, 0, 16)), (200, (1, 2, 3))], transition_time=1)

        assert data == bytes.fromhex(
            "02"  # panel count
            "03" "01" "ff0010" "00" "01"
            "c8" "01" "010203" "00" "01"
        )
        assert len(data) == frame_size(1, 2)

    def test_panel_id_too_large(self):
        with pytest.raises(ValueError, match="does not fit"):
            build_stream_frame(1, [(300, (0, 0, 0))])

    def test_transition_too_large(self):
        with pytest.raises(ValueError, match="transition_time"):
            build_stream_frame(1, [(3, (0, 0, 0))], transition_time=256)


class TestFrameValidation:
    def test_channel_out_of_range(self):
        with pytest.raises(ValueError, match="red"):
            build_stream_frame(2, [(1, (256, 0, 0))])
        with pytest.raises(ValueError, match="blue"):
            build_stream_frame(2, [(1, (0, 0, -1))])

    def test_unknown_version(self):
        with pytest.raises(ValueError, match="Unsupported"):
            build_stream_frame(3, [(1, (0, 0, 0))])
        with pytest.raises(ValueError, match="Unsupported"):
            parse_stream_frame(0, b"\x00")
        with pytest.raises(ValueError):
            frame_size(5, 1)

    def test_supported_versions(self):
        assert SUPPORTED_EXT_CONTROL_VERSIONS == {1, 2}


class TestSsdp:
    def test_search_request(self):
        data = build_ssdp_search("nanoleaf:nl29", mx=3)
        text = data.decode("ascii")

        assert text.startswith("M-SEARCH * HTTP/1.1\r\n")
        assert "HOST: 239.255.255.250:1900\r\n" in text
        assert 'MAN: "ssdp:discover"\r\n' in text
        assert "MX: 3\r\n" in text
        assert "ST: nanoleaf:nl29\r\n" in text
        assert text.endswith("\r\n\r\n")

    def test_parse_response(self):
        data = (
            b"HTTP/1.1 200 OK\r\n"
            b"Cache-Control: max-age=60\r\n"
            b"ST: nanoleaf:nl29\r\n"
            b"Location: http://192.168.1.20:16021\r\n"
            b"nl-deviceid: 5E:2E:EA:XX:XX:XX\r\n"
            b"nl-devicename: Canvas 4A1B\r\n"
            b"\r\n"
        )
        headers = parse_ssdp_response(data)

        assert headers["st"] == "nanoleaf:nl29"
        assert headers["location"] == "http://192.168.1.20:16021"
        assert headers["nl-deviceid"] == "5E:2E:EA:XX:XX:XX"
        assert headers["nl-devicename"] == "Canvas 4A1B"

    def test_parse_rejects_search_request(self):
        with pytest.raises(ValueError, match="Not an SSDP response"):
            parse_ssdp_response(build_ssdp_search("ssdp:all"))
