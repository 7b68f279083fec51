"""Device configuration."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping

from pyleafstream.exceptions import ConfigMismatch
from pyleafstream.protocol import DEFAULT_TRANSITION_TIME

API_PORT = 16021
DEFAULT_TIMEOUT = 2.0  # seconds


@dataclass(frozen=True)
class DeviceConfig:
    """Connection and streaming settings for one device.

    Attributes:
        host: Device hostname or IP
        token: Access token from pairing
        port: REST API port
        brightness_overwrite: Set brightness when powering on
        brightness: Brightness to set (0-100) if brightness_overwrite
        top_down: Stream rows from the top (None: keep device order)
        left_right: Stream columns from the left (None: keep device order)
        transition_time: Panel fade time, multiples of 100ms
        timeout: REST request timeout in seconds
    """

    host: str
    token: str = ""
    port: int = API_PORT
    brightness_overwrite: bool = False
    brightness: int = 100
    top_down: bool | None = None
    left_right: bool | None = None
    transition_time: int = DEFAULT_TRANSITION_TIME
    timeout: float = DEFAULT_TIMEOUT

    def __post_init__(self) -> None:
        if not self.host:
            raise ConfigMismatch("Device host is required")
        if not 0 < self.port <= 0xFFFF:
            raise ConfigMismatch(f"Invalid API port: {self.port}")
        if not 0 <= self.brightness <= 100:
            raise ConfigMismatch(f"Brightness must be 0-100, got {self.brightness}")
        if self.transition_time < 0:
            raise ConfigMismatch(f"Invalid transition time: {self.transition_time}")
        if self.timeout <= 0:
            raise ConfigMismatch(f"Invalid timeout: {self.timeout}")

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DeviceConfig:
        """Create a config from the camelCase device configuration object.

        Raises:
            ConfigMismatch: If a value is missing or has the wrong type
        """
        try:
            return cls(
                host=str(data.get("host") or "").strip(),
                token=str(data.get("token") or "").strip(),
                port=int(data.get("port", API_PORT)),
                brightness_overwrite=bool(data.get("brightnessOverwrite", False)),
                brightness=int(data.get("brightness", 100)),
                top_down=_optional_bool(data.get("topDown")),
                left_right=_optional_bool(data.get("leftRight")),
                transition_time=int(data.get("transitionTime", DEFAULT_TRANSITION_TIME)),
                timeout=float(data.get("timeout", DEFAULT_TIMEOUT)),
            )
        except (TypeError, ValueError) as e:
            raise ConfigMismatch(f"Invalid device configuration: {e}") from e


def _optional_bool(value: Any) -> bool | None:
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes", "on")
    return bool(value)
