"""Data plane: UDP writer and per-update frame encoder."""

from __future__ import annotations

import logging
import socket
from dataclasses import dataclass
from typing import Sequence

from pyleafstream.exceptions import InvalidFrame, NetworkError, WriteError
from pyleafstream.layout import Topology
from pyleafstream.protocol import DEFAULT_TRANSITION_TIME, build_stream_frame

logger = logging.getLogger(__name__)

V2_STREAM_PORT = 60222

RGB = tuple[int, int, int]


@dataclass(frozen=True)
class StreamEndpoint:
    """Where stream frames go, as assigned by the device for one session."""

    host: str
    port: int
    version: int

    def __str__(self) -> str:
        return f"{self.host}:{self.port} (v{self.version})"


class DataPlaneWriter:
    """Fire-and-forget UDP sender bound to one endpoint.

    Each send() is exactly one datagram. No acknowledgement, no retry, no queue.
    """

    def __init__(self, endpoint: StreamEndpoint) -> None:
        self.endpoint = endpoint
        self._sock: socket.socket | None = None
        self._address: tuple[str, int] | None = None

    @property
    def is_open(self) -> bool:
        return self._sock is not None

    def open(self) -> None:
        """Resolve the endpoint and create the socket.

        Raises:
            NetworkError: If the host cannot be resolved or the socket cannot be created
        """
        if self._sock is not None:
            return
        try:
            address = socket.gethostbyname(self.endpoint.host)
            sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
        except OSError as e:
            raise NetworkError(f"Cannot open stream socket to {self.endpoint}: {e}") from e
        sock.setblocking(False)
        self._sock = sock
        self._address = (address, self.endpoint.port)
        logger.debug("Stream socket open to %s:%d", address, self.endpoint.port)

    def send(self, data: bytes) -> int:
        """Send one datagram.

        Returns:
            Number of bytes sent

        Raises:
            WriteError: If the socket is closed or the send fails
        """
        if self._sock is None or self._address is None:
            raise WriteError("Stream socket is not open")
        try:
            return self._sock.sendto(data, self._address)
        except OSError as e:
            raise WriteError(f"Stream send to {self.endpoint} failed: {e}") from e

    def close(self) -> None:
        if self._sock is not None:
            self._sock.close()
            self._sock = None
            self._address = None

    def __enter__(self) -> DataPlaneWriter:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class FrameEncoder:
    """Maps a flat colour array onto the resolved panel sequence and sends it."""

    def __init__(
        self,
        topology: Topology,
        endpoint: StreamEndpoint,
        writer: DataPlaneWriter,
        transition_time: int = DEFAULT_TRANSITION_TIME,
    ) -> None:
        self.topology = topology
        self.endpoint = endpoint
        self.writer = writer
        self.transition_time = transition_time

    def encode(self, colors: Sequence[RGB]) -> bytes:
        """Build the datagram for one colour update.

        Raises:
            InvalidFrame: If the colour count does not match the topology or a
                value is out of range
        """
        expected = self.topology.panel_led_count
        if len(colors) != expected:
            raise InvalidFrame(f"Frame has {len(colors)} colours, device has {expected} panels")

        try:
            pairs = [
                (panel_id, (int(r), int(g), int(b)))
                for panel_id, (r, g, b) in zip(self.topology.panel_ids, colors)
            ]
            return build_stream_frame(self.endpoint.version, pairs, self.transition_time)
        except (TypeError, ValueError) as e:
            raise InvalidFrame(str(e)) from e

    def write(self, colors: Sequence[RGB]) -> int:
        """Encode and send one frame.

        Returns:
            Number of bytes sent

        Raises:
            InvalidFrame: If the frame does not fit the topology (nothing is sent)
            WriteError: If the send fails
        """
        return self.writer.send(self.encode(colors))
