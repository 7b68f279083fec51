"""Pytest fixtures for tests."""

from __future__ import annotations

import copy
import json
from typing import Any

import pytest
import requests

from pyleafstream.config import DeviceConfig
from pyleafstream.control import ControlPlaneClient
from pyleafstream.exceptions import NetworkError, WriteError
from pyleafstream.stream import DataPlaneWriter, StreamEndpoint

DEVICE_HOST = "192.168.1.20"
DEVICE_TOKEN = "abcdef0123456789"


def make_response(status: int = 200, body: Any = None, url: str = "http://device/") -> requests.Response:
    """Build a real requests.Response carrying a JSON body."""
    response = requests.Response()
    response.status_code = status
    response.reason = "OK" if status < 400 else "Error"
    response.url = url
    if body is None:
        response._content = b""
    elif isinstance(body, bytes):
        response._content = body
    else:
        response._content = json.dumps(body).encode("utf-8")
    return response


def panel(panel_id: int, x: int, y: int, shape: int = 0) -> dict[str, int]:
    return {"panelId": panel_id, "x": x, "y": y, "o": 0, "shapeType": shape}


class FakeDevice(ControlPlaneClient):
    """In-memory device behind the real ControlPlaneClient parsing."""

    def __init__(
        self,
        info: dict[str, Any],
        layout: dict[str, Any],
        ext_response: Any = None,
    ) -> None:
        super().__init__(DEVICE_HOST, DEVICE_TOKEN)
        self.info = info
        self.layout = layout
        self.ext_response = ext_response
        self.requests: list[tuple[str, str, Any]] = []
        self.fail_on: set[tuple[str, str]] = set()
        self.close_count = 0

        self.on = True
        self.color_mode = "effect"
        self.hue = 120
        self.sat = 80
        self.ct = 4000
        self.brightness = 60
        self.effect = "Northern Lights"

    def request(self, method: str, resource: str = "", body: Any = None) -> Any:
        self.requests.append((method, resource, copy.deepcopy(body)))
        if (method, resource) in self.fail_on:
            raise NetworkError(f"simulated failure of {method} /{resource}")

        if method == "GET":
            if resource == "":
                return copy.deepcopy(self.info)
            if resource == "panelLayout/layout":
                return copy.deepcopy(self.layout)
            if resource == "state":
                return self.state_json()
            if resource == "effects/select":
                return self.effect
        elif method == "PUT":
            if resource == "state":
                self.apply_state(body)
                return None
            if resource == "effects":
                if "select" in body:
                    self.effect = body["select"]
                    self.color_mode = "effect"
                    return None
                if "write" in body:
                    self.effect = "*ExtControl*"
                    self.color_mode = "effect"
                    return copy.deepcopy(self.ext_response)
            if resource == "identify":
                return None
        raise AssertionError(f"unexpected request {method} /{resource}")

    def apply_state(self, body: dict[str, Any]) -> None:
        if "on" in body:
            self.on = body["on"]["value"]
        if "brightness" in body:
            self.brightness = body["brightness"]["value"]
        if "hue" in body:
            self.hue = body["hue"]["value"]
            self.color_mode = "hs"
        if "sat" in body:
            self.sat = body["sat"]["value"]
            self.color_mode = "hs"
        if "ct" in body:
            self.ct = body["ct"]["value"]
            self.color_mode = "ct"

    def state_json(self) -> dict[str, Any]:
        return {
            "on": {"value": self.on},
            "brightness": {"value": self.brightness, "max": 100, "min": 0},
            "hue": {"value": self.hue, "max": 360, "min": 0},
            "sat": {"value": self.sat, "max": 100, "min": 0},
            "ct": {"value": self.ct, "max": 6500, "min": 1200},
            "colorMode": self.color_mode,
        }

    def puts(self) -> list[tuple[str, Any]]:
        return [(resource, body) for method, resource, body in self.requests if method == "PUT"]

    def close(self) -> None:
        self.close_count += 1
        super().close()


class RecordingWriter(DataPlaneWriter):
    """DataPlaneWriter that records datagrams instead of sending them."""

    def __init__(self, endpoint: StreamEndpoint, fail_open: bool = False) -> None:
        super().__init__(endpoint)
        self.sent: list[bytes] = []
        self.opened = False
        self.closed = False
        self.fail_open = fail_open
        self.fail_send = False

    @property
    def is_open(self) -> bool:
        return self.opened and not self.closed

    def open(self) -> None:
        if self.fail_open:
            raise NetworkError("simulated socket failure")
        self.opened = True

    def send(self, data: bytes) -> int:
        if self.fail_send:
            raise WriteError("simulated send failure")
        self.sent.append(data)
        return len(data)

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def device_info():
    """Root resource of a Canvas running current firmware."""
    return {
        "name": "Canvas 4A1B",
        "serialNo": "S19124C0000",
        "manufacturer": "Nanoleaf",
        "firmwareVersion": "9.2.4",
        "model": "NL29",
    }


@pytest.fixture
def canvas_layout():
    """Four squares, one control square and a controller cap."""
    return {
        "numPanels": 6,
        "sideLength": 100,
        "positionData": [
            panel(11, 100, 0, shape=2),
            panel(12, 0, 0, shape=3),
            panel(13, 0, 100, shape=2),
            panel(14, 100, 100, shape=2),
            panel(15, 200, 0, shape=19),
            panel(16, 200, 100, shape=2),
        ],
    }


@pytest.fixture
def fake_device(device_info, canvas_layout):
    return FakeDevice(device_info, canvas_layout)


@pytest.fixture
def config():
    return DeviceConfig(host=DEVICE_HOST, token=DEVICE_TOKEN)


@pytest.fixture
def writers():
    """Writers created by the device under test, in creation order."""
    return []


@pytest.fixture
def make_device(fake_device, writers):
    """Factory for a NanoleafDevice wired to the fake device and recording writers."""
    from pyleafstream.client import NanoleafDevice

    def factory(config: DeviceConfig, fail_open: bool = False) -> NanoleafDevice:
        def writer_factory(endpoint: StreamEndpoint) -> RecordingWriter:
            writer = RecordingWriter(endpoint, fail_open=fail_open)
            writers.append(writer)
            return writer

        return NanoleafDevice(
            config,
            control_factory=lambda _config: fake_device,
            writer_factory=writer_factory,
        )

    return factory
