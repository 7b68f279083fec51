"""Low-level wire formats using construct.

This module provides sans-io building and parsing of the two datagram formats the
client speaks: the external control stream frame sent to the device's UDP port,
and the SSDP search/response messages used for discovery.
"""

from __future__ import annotations

from typing import Sequence, cast

from construct import (
    Array,
    Const,
    Construct,
    Container,
    Int8ul,
    Int16ub,
    Rebuild,
    Struct,
    Terminated,
    len_,
    this,
)

# External control stream limits
DEFAULT_TRANSITION_TIME = 1  # Multiples of 100ms
V1_MAX_PANELS = 0xFF
V2_MAX_PANELS = 0xFFFF

# SSDP
SSDP_MULTICAST_ADDRESS = "239.255.255.250"
SSDP_PORT = 1900


# Version 1 panel entry: 7 bytes
#   panelId(1) + frameCount(1, always 1) + R G B W(1 each) + transitionTime(1)
PanelColorV1: Construct = Struct(
    "panel_id" / Int8ul,
    "frame_count" / Const(1, Int8ul),
    "r" / Int8ul,
    "g" / Int8ul,
    "b" / Int8ul,
    "w" / Int8ul,
    "transition_time" / Int8ul,
)

# Version 2 panel entry: 8 bytes, multi-byte fields big-endian
#   panelId(2) + R G B W(1 each) + transitionTime(2)
PanelColorV2: Construct = Struct(
    "panel_id" / Int16ub,
    "r" / Int8ul,
    "g" / Int8ul,
    "b" / Int8ul,
    "w" / Int8ul,
    "transition_time" / Int16ub,
)

StreamFrameV1: Construct = Struct(
    "panel_count" / Rebuild(Int8ul, len_(this.panels)),
    "panels" / Array(this.panel_count, PanelColorV1),
    Terminated,
)

StreamFrameV2: Construct = Struct(
    "panel_count" / Rebuild(Int16ub, len_(this.panels)),
    "panels" / Array(this.panel_count, PanelColorV2),
    Terminated,
)

STREAM_FRAMES: dict[int, Construct] = {
    1: StreamFrameV1,
    2: StreamFrameV2,
}

_MAX_PANELS = {1: V1_MAX_PANELS, 2: V2_MAX_PANELS}
_MAX_PANEL_ID = {1: 0xFF, 2: 0xFFFF}
_MAX_TRANSITION = {1: 0xFF, 2: 0xFFFF}

SUPPORTED_EXT_CONTROL_VERSIONS = frozenset(STREAM_FRAMES)


def _check_channel(name: str, value: int) -> None:
    if not 0 <= value <= 0xFF:
        raise ValueError(f"{name} must be 0-255, got {value}")


def build_stream_frame(
    version: int,
    panels: Sequence[tuple[int, tuple[int, int, int]]],
    transition_time: int = DEFAULT_TRANSITION_TIME,
    white: int = 0,
) -> bytes:
    """Build one external control datagram.

    Args:
        version: External control protocol version (1 or 2)
        panels: (panel_id, (r, g, b)) pairs in stream order
        transition_time: Fade time to the new colour, multiples of 100ms
        white: White channel value, sent for every panel (0-255)

    Returns:
        Complete datagram bytes ready to send

    Raises:
        ValueError: If the version is unknown or any field is out of range
    """
    if version not in STREAM_FRAMES:
        raise ValueError(f"Unsupported external control version: {version}")
    if len(panels) > _MAX_PANELS[version]:
        raise ValueError(
            f"Too many panels for v{version} frame: {len(panels)} (max {_MAX_PANELS[version]})"
        )
    if not 0 <= transition_time <= _MAX_TRANSITION[version]:
        raise ValueError(f"transition_time out of range for v{version}: {transition_time}")
    _check_channel("white", white)

    entries = []
    for panel_id, (r, g, b) in panels:
        if not 0 <= panel_id <= _MAX_PANEL_ID[version]:
            raise ValueError(f"Panel id {panel_id} does not fit a v{version} frame")
        _check_channel("red", r)
        _check_channel("green", g)
        _check_channel("blue", b)
        entries.append(
            {
                "panel_id": panel_id,
                "r": r,
                "g": g,
                "b": b,
                "w": white,
                "transition_time": transition_time,
            }
        )

    return cast(bytes, STREAM_FRAMES[version].build({"panels": entries}))


def parse_stream_frame(version: int, data: bytes) -> Container:
    """Parse an external control datagram.

    Args:
        version: External control protocol version (1 or 2)
        data: Raw datagram bytes

    Returns:
        construct Container with panel_count and panels

    Raises:
        ValueError: If the version is unknown
        construct exceptions if the datagram is malformed
    """
    if version not in STREAM_FRAMES:
        raise ValueError(f"Unsupported external control version: {version}")
    return STREAM_FRAMES[version].parse(data)


def frame_size(version: int, panel_count: int) -> int:
    """Size in bytes of a datagram carrying panel_count panels."""
    if version == 1:
        return 1 + 7 * panel_count
    if version == 2:
        return 2 + 8 * panel_count
    raise ValueError(f"Unsupported external control version: {version}")


def build_ssdp_search(search_target: str, mx: int = 2) -> bytes:
    """Build an SSDP M-SEARCH request.

    Args:
        search_target: Value of the ST header (e.g. "nanoleaf:nl29")
        mx: Maximum seconds a responder may wait before answering

    Returns:
        Datagram bytes for the SSDP multicast group
    """
    lines = [
        "M-SEARCH * HTTP/1.1",
        f"HOST: {SSDP_MULTICAST_ADDRESS}:{SSDP_PORT}",
        'MAN: "ssdp:discover"',
        f"MX: {mx}",
        f"ST: {search_target}",
        "",
        "",
    ]
    return "\r\n".join(lines).encode("ascii")


def parse_ssdp_response(data: bytes) -> dict[str, str]:
    """Parse an SSDP search response or NOTIFY into lower-cased headers.

    Args:
        data: Raw datagram bytes

    Returns:
        Header dict with lower-cased names

    Raises:
        ValueError: If the datagram is not an SSDP response
    """
    text = data.decode("utf-8", errors="replace")
    lines = text.split("\r\n")
    if len(lines) == 1:
        lines = text.split("\n")

    start = lines[0].strip().upper()
    if not (start.startswith("HTTP/1.1 200") or start.startswith("NOTIFY")):
        raise ValueError(f"Not an SSDP response: {lines[0]!r}")

    headers: dict[str, str] = {}
    for line in lines[1:]:
        if not line.strip():
            continue
        name, sep, value = line.partition(":")
        if not sep:
            continue
        headers[name.strip().lower()] = value.strip()
    return headers
