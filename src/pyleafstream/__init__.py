"""pyleafstream - External control streaming client for Nanoleaf panel lights.

This library drives a Nanoleaf device through its REST API (pairing, panel layout,
state, external control mode) and streams per-panel colours to it over UDP, along
with a reference CLI implementation.

Example:
    >>> from pyleafstream import DeviceConfig, NanoleafDevice
    >>> device = NanoleafDevice(DeviceConfig(host="192.168.1.20", token=token))
    >>> with device:
    ...     count = device.topology.panel_led_count
    ...     device.write([(255, 64, 0)] * count)
"""

import importlib.metadata as _importlib_metadata

from pyleafstream.client import (
    NanoleafDevice,
    SessionState,
    StreamSession,
    add_authorization,
    discover,
    get_properties,
    identify,
)
from pyleafstream.config import DeviceConfig
from pyleafstream.control import ControlPlaneClient, request_token
from pyleafstream.exceptions import (
    AuthError,
    AuthFailed,
    AuthPending,
    ConfigMismatch,
    InvalidFrame,
    NanoleafError,
    NetworkError,
    OpenFailed,
    ProtocolError,
    UnsupportedVersion,
    WriteError,
)
from pyleafstream.layout import (
    PanelDescriptor,
    ShapeType,
    Topology,
    is_light_emitting,
    order_panels,
    parse_layout,
    resolve_topology,
)
from pyleafstream.protocol import (
    SUPPORTED_EXT_CONTROL_VERSIONS,
    build_stream_frame,
    parse_stream_frame,
)
from pyleafstream.state import DeviceStateSnapshot, restore_state, store_state
from pyleafstream.stream import DataPlaneWriter, FrameEncoder, StreamEndpoint

__version__: str = _importlib_metadata.version(__package__ or __name__)

__all__ = [
    # Version
    "__version__",
    # Driver (high-level API)
    "NanoleafDevice",
    "SessionState",
    "StreamSession",
    "DeviceConfig",
    # Configuration helpers
    "discover",
    "get_properties",
    "identify",
    "add_authorization",
    # Control plane
    "ControlPlaneClient",
    "request_token",
    "DeviceStateSnapshot",
    "store_state",
    "restore_state",
    # Topology
    "ShapeType",
    "PanelDescriptor",
    "Topology",
    "is_light_emitting",
    "parse_layout",
    "order_panels",
    "resolve_topology",
    # Data plane
    "StreamEndpoint",
    "DataPlaneWriter",
    "FrameEncoder",
    "build_stream_frame",
    "parse_stream_frame",
    "SUPPORTED_EXT_CONTROL_VERSIONS",
    # Errors
    "NanoleafError",
    "NetworkError",
    "AuthError",
    "AuthPending",
    "AuthFailed",
    "ConfigMismatch",
    "UnsupportedVersion",
    "ProtocolError",
    "OpenFailed",
    "InvalidFrame",
    "WriteError",
]
