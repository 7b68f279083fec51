"""SSDP discovery of devices on the local network.

Used to help configure a device. A configured device is always addressed by its
host directly and never rediscovered.
"""

from __future__ import annotations

import logging
import socket
import time
from typing import Any, Iterable
from urllib.parse import urlsplit

from pyleafstream.config import API_PORT
from pyleafstream.exceptions import NetworkError
from pyleafstream.protocol import (
    SSDP_MULTICAST_ADDRESS,
    SSDP_PORT,
    build_ssdp_search,
    parse_ssdp_response,
)

logger = logging.getLogger(__name__)

DEFAULT_DISCOVERY_TIMEOUT = 3.0  # seconds

# Search target -> model
SEARCH_TARGETS: dict[str, str] = {
    "nanoleaf_aurora:light": "NL22",
    "nanoleaf:nl29": "NL29",
    "nanoleaf:nl42": "NL42",
    "nanoleaf:nl52": "NL52",
}


def device_from_headers(headers: dict[str, str], source_host: str = "") -> dict[str, Any] | None:
    """Turn SSDP response headers into a device record.

    Returns:
        {id, name, host, port, model, location, st}, or None if the response is not
        from a known device type
    """
    st = headers.get("st") or headers.get("nt", "")
    if st.lower() not in SEARCH_TARGETS:
        return None

    location = headers.get("location", "")
    parts = urlsplit(location) if location else None
    host = (parts.hostname if parts else None) or source_host
    port = (parts.port if parts else None) or API_PORT

    return {
        "id": headers.get("nl-deviceid") or location or host,
        "name": headers.get("nl-devicename", ""),
        "host": host,
        "port": port,
        "model": SEARCH_TARGETS[st.lower()],
        "location": location,
        "st": st,
    }


def collect_devices(responses: Iterable[tuple[bytes, str]]) -> list[dict[str, Any]]:
    """Parse raw (datagram, source_host) responses into unique devices.

    Responses that are not SSDP or not from a known device type are ignored.
    Devices are deduplicated by id, first response wins.
    """
    devices: dict[str, dict[str, Any]] = {}
    for data, source_host in responses:
        try:
            headers = parse_ssdp_response(data)
        except ValueError:
            continue
        device = device_from_headers(headers, source_host)
        if device is None or device["id"] in devices:
            continue
        devices[device["id"]] = device
    return list(devices.values())


def _receive(sock: socket.socket, deadline: float) -> Iterable[tuple[bytes, str]]:
    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            return
        sock.settimeout(remaining)
        try:
            data, (address, _port) = sock.recvfrom(2048)
        except socket.timeout:
            return
        yield data, address


def discover(
    timeout: float = DEFAULT_DISCOVERY_TIMEOUT,
    search_targets: Iterable[str] | None = None,
) -> list[dict[str, Any]]:
    """Search the local network for devices.

    Args:
        timeout: Seconds to wait for responses
        search_targets: SSDP service types to search for (default: all known)

    Returns:
        Devices found, empty if nothing answered

    Raises:
        NetworkError: If the search cannot be sent
    """
    targets = list(search_targets or SEARCH_TARGETS)
    mx = max(1, int(timeout))
    try:
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
    except OSError as e:
        raise NetworkError(f"Cannot create discovery socket: {e}") from e

    with sock:
        sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, 2)
        try:
            for target in targets:
                sock.sendto(build_ssdp_search(target, mx), (SSDP_MULTICAST_ADDRESS, SSDP_PORT))
        except OSError as e:
            raise NetworkError(f"SSDP search failed: {e}") from e

        deadline = time.monotonic() + timeout
        try:
            devices = collect_devices(_receive(sock, deadline))
        except OSError as e:
            raise NetworkError(f"SSDP receive failed: {e}") from e

    logger.info("Discovered %d device(s)", len(devices))
    return devices
