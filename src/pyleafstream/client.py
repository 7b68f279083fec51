"""Device driver composing the control plane and the data plane.

NanoleafDevice runs the ordered open sequence (topology, state capture, power,
mode switch, stream socket), streams frames, and restores the device on close.
The per-session resources live in a StreamSession that never outlives close().

The module also provides the configuration-time helpers that take a parameter
object (discover, get_properties, identify, add_authorization).
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from enum import Enum
from typing import Any, Callable, Iterator, Mapping, Sequence

from pyleafstream import discovery
from pyleafstream.config import DeviceConfig
from pyleafstream.control import ControlPlaneClient, request_token
from pyleafstream.exceptions import NanoleafError, WriteError
from pyleafstream.layout import Topology, resolve_topology
from pyleafstream.state import DeviceStateSnapshot, restore_state, store_state
from pyleafstream.stream import RGB, DataPlaneWriter, FrameEncoder, StreamEndpoint

logger = logging.getLogger(__name__)


class SessionState(Enum):
    """Lifecycle of one open/close session."""

    CLOSED = "closed"
    RESOLVING = "resolving"
    TOPOLOGY_RESOLVED = "topology_resolved"
    STREAMING_MODE_ACTIVE = "streaming_mode_active"
    STREAMING = "streaming"
    RESTORING = "restoring"


class StreamSession:
    """Resources owned by one open/close session."""

    def __init__(self, control: ControlPlaneClient) -> None:
        self.control = control
        self.topology: Topology | None = None
        self.snapshot: DeviceStateSnapshot | None = None
        self.endpoint: StreamEndpoint | None = None
        self.writer: DataPlaneWriter | None = None
        self.encoder: FrameEncoder | None = None
        # Set once power_on has been attempted; the device may differ from snapshot
        self.powered = False

    @property
    def needs_restore(self) -> bool:
        return self.snapshot is not None and (self.powered or self.endpoint is not None)

    def release(self) -> None:
        """Close the stream socket and the control connection."""
        if self.writer is not None:
            self.writer.close()
        self.control.close()


class NanoleafDevice:
    """Streaming driver for one device.

    Example:
        >>> device = NanoleafDevice(DeviceConfig(host="192.168.1.20", token=token))
        >>> with device:
        ...     device.write([(255, 0, 0)] * device.topology.panel_led_count)
    """

    def __init__(
        self,
        config: DeviceConfig,
        control_factory: Callable[[DeviceConfig], ControlPlaneClient] = ControlPlaneClient.from_config,
        writer_factory: Callable[[StreamEndpoint], DataPlaneWriter] = DataPlaneWriter,
    ) -> None:
        self.config = config
        self.state = SessionState.CLOSED
        self.consecutive_write_failures = 0
        self._control_factory = control_factory
        self._writer_factory = writer_factory
        self._session: StreamSession | None = None

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> NanoleafDevice:
        return cls(DeviceConfig.from_dict(data))

    @property
    def is_open(self) -> bool:
        return self.state is SessionState.STREAMING

    @property
    def topology(self) -> Topology | None:
        return self._session.topology if self._session else None

    @property
    def endpoint(self) -> StreamEndpoint | None:
        return self._session.endpoint if self._session else None

    @contextmanager
    def _control(self) -> Iterator[ControlPlaneClient]:
        """The session's control client, or a short-lived one while closed."""
        if self._session is not None:
            yield self._session.control
            return
        control = self._control_factory(self.config)
        try:
            yield control
        finally:
            control.close()

    def _require_session(self) -> StreamSession:
        if self._session is None:
            raise NanoleafError(f"No session open for {self.config.host}")
        return self._session

    def init_leds_configuration(self) -> Topology:
        """Read device identity and layout and resolve the panel sequence.

        Raises:
            UnsupportedVersion: If the device's streaming protocol is not supported
            ConfigMismatch: If the device has no light-emitting panels
            ProtocolError, NetworkError, AuthError: From the control plane
            NanoleafError: If called while a session is past topology resolution
        """
        if self._session is not None and self.state is not SessionState.RESOLVING:
            raise NanoleafError(
                f"Topology of {self.config.host} is fixed for the open session; close first"
            )
        with self._control() as control:
            info = control.get_device_info()
            layout = control.get_layout()

        topology = resolve_topology(
            info, layout, top_down=self.config.top_down, left_right=self.config.left_right
        )
        logger.info(
            "%s model %s firmware %s: %d panels, external control v%d",
            self.config.host,
            topology.model,
            topology.firmware_version,
            topology.panel_led_count,
            topology.ext_control_version,
        )
        logger.debug("Panel order: %s", topology.panel_ids)

        if self._session is not None:
            self._session.topology = topology
        return topology

    def store_state(self) -> DeviceStateSnapshot:
        """Capture the device state for this session. Only the first call reads."""
        session = self._require_session()
        if session.snapshot is None:
            session.snapshot = store_state(session.control)
        return session.snapshot

    def restore_state(self) -> None:
        """Replay and consume the captured state.

        Raises:
            NanoleafError: If a restore request fails
        """
        session = self._require_session()
        snapshot, session.snapshot = session.snapshot, None
        if snapshot is None:
            logger.debug("No stored state to restore")
            return
        restore_state(session.control, snapshot)

    def change_to_external_control_mode(self) -> StreamEndpoint:
        """Switch the device into streaming mode.

        Raises:
            OpenFailed: If the device does not yield a usable endpoint
        """
        session = self._require_session()
        if session.topology is None:
            raise NanoleafError("Topology must be resolved before switching mode")
        session.endpoint = session.control.change_to_external_control_mode(
            session.topology.ext_control_version
        )
        self.state = SessionState.STREAMING_MODE_ACTIVE
        return session.endpoint

    def power_on(self) -> None:
        body: dict[str, Any] = {"on": {"value": True}}
        if self.config.brightness_overwrite:
            body["brightness"] = {"value": self.config.brightness}
        with self._control() as control:
            control.put_state(body)

    def power_off(self) -> None:
        with self._control() as control:
            control.set_power(False)

    def open(self) -> None:
        """Run the open sequence and start streaming.

        On failure everything established so far is released, the device state is
        restored if power_on was attempted, and the error is re-raised.
        """
        if self._session is not None:
            logger.debug("%s is already open", self.config.host)
            return

        session = StreamSession(self._control_factory(self.config))
        self._session = session
        self.state = SessionState.RESOLVING
        try:
            self.init_leds_configuration()
            self.state = SessionState.TOPOLOGY_RESOLVED
            self.store_state()
            session.powered = True
            self.power_on()
            endpoint = self.change_to_external_control_mode()

            writer = self._writer_factory(endpoint)
            session.writer = writer
            writer.open()
            assert session.topology is not None
            session.encoder = FrameEncoder(
                session.topology, endpoint, writer, self.config.transition_time
            )
        except Exception as e:
            logger.error("Opening %s failed: %s", self.config.host, e)
            if session.needs_restore:
                self._restore_quietly()
            session.release()
            self._session = None
            self.state = SessionState.CLOSED
            raise

        self.consecutive_write_failures = 0
        self.state = SessionState.STREAMING
        logger.info("%s open, streaming to %s", self.config.host, endpoint)

    def write(self, colors: Sequence[RGB]) -> int:
        """Send one colour per panel, in topology order.

        Returns:
            Number of bytes sent

        Raises:
            InvalidFrame: If the colour count does not match (nothing is sent)
            WriteError: If the device is not streaming or the send fails
        """
        session = self._session
        if self.state is not SessionState.STREAMING or session is None or session.encoder is None:
            raise WriteError(f"{self.config.host} is not streaming")

        try:
            sent = session.encoder.write(colors)
        except WriteError:
            self.consecutive_write_failures += 1
            raise
        self.consecutive_write_failures = 0
        return sent

    def close(self) -> None:
        """Restore the device and release the session. Never raises on restore failure."""
        session = self._session
        if session is None:
            self.state = SessionState.CLOSED
            return

        self.state = SessionState.RESTORING
        try:
            if session.needs_restore:
                self._restore_quietly()
        finally:
            session.release()
            self._session = None
            self.state = SessionState.CLOSED
            logger.info("%s closed", self.config.host)

    def _restore_quietly(self) -> None:
        try:
            self.restore_state()
        except NanoleafError as e:
            logger.error("Restoring state of %s failed: %s", self.config.host, e)

    def __enter__(self) -> NanoleafDevice:
        self.open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


def _config_from_params(params: Mapping[str, Any]) -> DeviceConfig:
    return DeviceConfig.from_dict(params)


def discover(params: Mapping[str, Any] | None = None) -> list[dict[str, Any]]:
    """Discover devices for configuration.

    Params (all optional): timeout (seconds), searchTarget (SSDP service type).

    Returns:
        Devices found, empty if none answered
    """
    params = params or {}
    timeout = float(params.get("timeout", discovery.DEFAULT_DISCOVERY_TIMEOUT))
    target = params.get("searchTarget")
    return discovery.discover(timeout=timeout, search_targets=[target] if target else None)


def get_properties(params: Mapping[str, Any]) -> Any:
    """Raw JSON of a device resource.

    Params: host, token, filter (resource path, root if empty).
    """
    config = _config_from_params(params)
    with ControlPlaneClient.from_config(config) as control:
        return control.get_properties(str(params.get("filter", "")))


def identify(params: Mapping[str, Any]) -> None:
    """Make the device flash briefly. Params: host, token."""
    config = _config_from_params(params)
    with ControlPlaneClient.from_config(config) as control:
        control.identify()
    logger.info("Identify sent to %s", config.host)


def add_authorization(params: Mapping[str, Any]) -> dict[str, str]:
    """Pair with a device in pairing mode. Params: host.

    Returns:
        {"token": <new access token>}
    """
    config = _config_from_params(params)
    token = request_token(config.host, config.port, config.timeout)
    return {"token": token}
