"""Unit tests for SSDP discovery."""

import socket

import pytest

from pyleafstream import discovery
from pyleafstream.exceptions import NetworkError


def ssdp_response(st, device_id, host="192.168.1.20", name="Canvas"):
    return (
        "HTTP/1.1 200 OK\r\n"
        "Cache-Control: max-age=60\r\n"
        f"ST: {st}\r\n"
        f"Location: http://{host}:16021\r\n"
        f"nl-deviceid: {device_id}\r\n"
        f"nl-devicename: {name}\r\n"
        "\r\n"
    ).encode("ascii")


class FakeSocket:
    """UDP socket that replays queued datagrams, then times out."""

    def __init__(self, responses=(), fail_send=False):
        self.responses = list(responses)
        self.fail_send = fail_send
        self.sent = []
        self.closed = False

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        self.close()

    def close(self):
        self.closed = True

    def setsockopt(self, *args):
        pass

    def settimeout(self, value):
        assert value > 0

    def sendto(self, data, address):
        if self.fail_send:
            raise OSError("Network is unreachable")
        self.sent.append((data, address))
        return len(data)

    def recvfrom(self, size):
        if not self.responses:
            raise socket.timeout("timed out")
        data, host = self.responses.pop(0)
        return data, (host, 1900)


@pytest.fixture
def fake_socket(monkeypatch):
    sockets = []

    def install(**kwargs):
        sock = FakeSocket(**kwargs)
        sockets.append(sock)
        monkeypatch.setattr(discovery.socket, "socket", lambda *args: sock)
        return sock

    return install


class TestCollectDevices:
    def test_known_device(self):
        devices = discovery.collect_devices(
            [(ssdp_response("nanoleaf:nl29", "AA:BB", name="Canvas 4A1B"), "192.168.1.20")]
        )

        assert devices == [
            {
                "id": "AA:BB",
                "name": "Canvas 4A1B",
                "host": "192.168.1.20",
                "port": 16021,
                "model": "NL29",
                "location": "http://192.168.1.20:16021",
                "st": "nanoleaf:nl29",
            }
        ]

    def test_deduplicates_by_device_id(self):
        responses = [
            (ssdp_response("nanoleaf:nl29", "AA:BB"), "192.168.1.20"),
            (ssdp_response("nanoleaf:nl29", "AA:BB"), "192.168.1.20"),
            (ssdp_response("nanoleaf_aurora:light", "CC:DD", host="192.168.1.30"), "192.168.1.30"),
        ]

        devices = discovery.collect_devices(responses)

        assert [(d["id"], d["model"]) for d in devices] == [("AA:BB", "NL29"), ("CC:DD", "NL22")]

    def test_ignores_other_traffic(self):
        responses = [
            (b"\x00\x01garbage", "192.168.1.2"),
            (ssdp_response("urn:schemas-upnp-org:device:MediaRenderer:1", "X"), "192.168.1.3"),
            (discovery.build_ssdp_search("nanoleaf:nl29"), "192.168.1.4"),
        ]
        assert discovery.collect_devices(responses) == []

    def test_source_host_without_location(self):
        data = b"HTTP/1.1 200 OK\r\nST: nanoleaf:nl42\r\nnl-deviceid: EE\r\n\r\n"
        [device] = discovery.collect_devices([(data, "10.0.0.9")])
        assert (device["host"], device["port"], device["model"]) == ("10.0.0.9", 16021, "NL42")


class TestDiscover:
    def test_nothing_answers(self, fake_socket):
        sock = fake_socket()

        assert discovery.discover(timeout=0.5) == []
        assert sock.closed
        assert len(sock.sent) == len(discovery.SEARCH_TARGETS)
        assert all(address == ("239.255.255.250", 1900) for _, address in sock.sent)

    def test_responses(self, fake_socket):
        fake_socket(
            responses=[
                (ssdp_response("nanoleaf:nl29", "AA:BB"), "192.168.1.20"),
                (ssdp_response("nanoleaf:nl29", "AA:BB"), "192.168.1.20"),
            ]
        )

        devices = discovery.discover(timeout=0.5)

        assert [d["host"] for d in devices] == ["192.168.1.20"]

    def test_single_search_target(self, fake_socket):
        sock = fake_socket()
        discovery.discover(timeout=0.5, search_targets=["nanoleaf:nl52"])
        [(data, _)] = sock.sent
        assert b"ST: nanoleaf:nl52\r\n" in data

    def test_send_failure(self, fake_socket):
        sock = fake_socket(fail_send=True)
        with pytest.raises(NetworkError):
            discovery.discover(timeout=0.5)
        assert sock.closed
