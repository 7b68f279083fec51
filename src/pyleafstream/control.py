"""Control plane: the device's REST API.

ControlPlaneClient wraps one requests.Session for the blocking, ordered calls of a
session (identity, layout, state, effects, mode switch). Every transport or HTTP
failure is converted to the pyleafstream exception hierarchy; nothing is retried.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

import requests

from pyleafstream.config import API_PORT, DEFAULT_TIMEOUT, DeviceConfig
from pyleafstream.exceptions import (
    AuthError,
    AuthFailed,
    AuthPending,
    NetworkError,
    OpenFailed,
    ProtocolError,
)
from pyleafstream.protocol import SUPPORTED_EXT_CONTROL_VERSIONS
from pyleafstream.stream import V2_STREAM_PORT, StreamEndpoint

logger = logging.getLogger(__name__)

# Resources below /api/v1/<token>/
RESOURCE_ROOT = ""
RESOURCE_LAYOUT = "panelLayout/layout"
RESOURCE_STATE = "state"
RESOURCE_EFFECTS = "effects"
RESOURCE_EFFECT_SELECT = "effects/select"
RESOURCE_IDENTIFY = "identify"
RESOURCE_NEW_TOKEN = "new"


def _base_url(host: str, port: int) -> str:
    return f"http://{host}:{port}/api/v1"


def _send(
    session: requests.Session,
    method: str,
    url: str,
    body: Any,
    timeout: float,
) -> requests.Response:
    logger.debug("%s %s %s", method, url, body if body is not None else "")
    try:
        return session.request(method, url, json=body, timeout=timeout)
    except requests.Timeout as e:
        raise NetworkError(f"{method} {url} timed out after {timeout}s") from e
    except requests.RequestException as e:
        raise NetworkError(f"{method} {url} failed: {e}") from e


def _decode(response: requests.Response) -> Any:
    if response.status_code == 204 or not response.content:
        return None
    try:
        return response.json()
    except ValueError as e:
        raise ProtocolError(
            f"Response from {response.url} is not JSON: {response.text[:80]!r}"
        ) from e


class ControlPlaneClient:
    """Synchronous client for one device's REST API.

    Example:
        >>> with ControlPlaneClient("192.168.1.20", token) as control:
        ...     info = control.get_device_info()
    """

    def __init__(
        self,
        host: str,
        token: str,
        port: int = API_PORT,
        timeout: float = DEFAULT_TIMEOUT,
        session: requests.Session | None = None,
    ) -> None:
        self.host = host
        self.token = token
        self.port = port
        self.timeout = timeout
        self._session = session
        self._owns_session = session is None

    @classmethod
    def from_config(cls, config: DeviceConfig) -> ControlPlaneClient:
        return cls(config.host, config.token, config.port, config.timeout)

    @property
    def session(self) -> requests.Session:
        if self._session is None:
            self._session = requests.Session()
        return self._session

    def close(self) -> None:
        if self._session is not None and self._owns_session:
            self._session.close()
            self._session = None

    def __enter__(self) -> ControlPlaneClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def url(self, resource: str = "") -> str:
        return f"{_base_url(self.host, self.port)}/{self.token}/{resource.lstrip('/')}"

    def request(self, method: str, resource: str = "", body: Any = None) -> Any:
        """Issue an authorized request and decode the JSON response.

        Returns:
            Decoded JSON body, or None for an empty response

        Raises:
            NetworkError: If the device cannot be reached
            AuthError: If the token is missing or rejected
            ProtocolError: For other HTTP errors or a non-JSON body
        """
        if not self.token:
            raise AuthError(f"No access token configured for {self.host}")

        url = self.url(resource)
        response = _send(self.session, method, url, body, self.timeout)
        if response.status_code in (401, 403):
            raise AuthError(f"Token rejected by {self.host} (HTTP {response.status_code})")
        if not response.ok:
            raise ProtocolError(
                f"{method} /{resource} failed: HTTP {response.status_code} {response.reason}"
            )
        return _decode(response)

    def get(self, resource: str = "") -> Any:
        return self.request("GET", resource)

    def put(self, resource: str, body: Any) -> Any:
        return self.request("PUT", resource, body)

    def _get_object(self, resource: str) -> dict[str, Any]:
        data = self.get(resource)
        if not isinstance(data, dict):
            raise ProtocolError(f"Expected a JSON object from /{resource}, got {data!r}")
        return data

    def get_properties(self, resource_filter: str = "") -> Any:
        """Raw JSON subtree at resource_filter (root if empty)."""
        return self.get(resource_filter.strip("/"))

    def get_device_info(self) -> dict[str, Any]:
        return self._get_object(RESOURCE_ROOT)

    def get_layout(self) -> dict[str, Any]:
        return self._get_object(RESOURCE_LAYOUT)

    def get_state(self) -> dict[str, Any]:
        return self._get_object(RESOURCE_STATE)

    def get_selected_effect(self) -> str:
        effect = self.get(RESOURCE_EFFECT_SELECT)
        if not isinstance(effect, str):
            raise ProtocolError(f"Expected effect name, got {effect!r}")
        return effect

    def put_state(self, body: Mapping[str, Any]) -> None:
        self.put(RESOURCE_STATE, dict(body))

    def select_effect(self, name: str) -> None:
        self.put(RESOURCE_EFFECTS, {"select": name})

    def set_power(self, on: bool) -> None:
        self.put_state({"on": {"value": on}})

    def set_brightness(self, value: int) -> None:
        self.put_state({"brightness": {"value": value}})

    def identify(self) -> None:
        self.put(RESOURCE_IDENTIFY, {})

    def change_to_external_control_mode(self, version: int = 2) -> StreamEndpoint:
        """Switch the device into external control (UDP streaming) mode.

        Args:
            version: External control protocol version to request

        Returns:
            The stream endpoint the device assigned

        Raises:
            OpenFailed: If the request fails or the response has no usable endpoint
        """
        write: dict[str, Any] = {"command": "display", "animType": "extControl"}
        if version >= 2:
            write["extControlVersion"] = f"v{version}"

        try:
            response = self.put(RESOURCE_EFFECTS, {"write": write})
        except (NetworkError, AuthError, ProtocolError) as e:
            raise OpenFailed(f"External control mode request failed: {e}") from e

        if response is None:
            response = {}
        if not isinstance(response, dict):
            raise OpenFailed(f"Unexpected external control response: {response!r}")

        host = response.get("streamControlIpAddr") or self.host
        try:
            stream_version = int(
                str(response.get("extControlVersion", version)).strip().lower().lstrip("v")
            )
            if "streamControlPort" in response:
                port = int(response["streamControlPort"])
            elif stream_version == 2:
                port = V2_STREAM_PORT
            else:
                raise OpenFailed(f"Device assigned no stream port for v{stream_version}")
        except (TypeError, ValueError) as e:
            raise OpenFailed(f"Unusable external control response {response!r}: {e}") from e

        if not 0 < port <= 0xFFFF:
            raise OpenFailed(f"Device assigned invalid stream port {port}")
        if stream_version not in SUPPORTED_EXT_CONTROL_VERSIONS:
            raise OpenFailed(f"Device assigned unsupported stream version v{stream_version}")
        protocol = str(response.get("streamControlProtocol", "udp")).lower()
        if protocol != "udp":
            raise OpenFailed(f"Device assigned unsupported stream protocol {protocol}")

        endpoint = StreamEndpoint(str(host), port, stream_version)
        logger.info("External control mode active, streaming to %s", endpoint)
        return endpoint


def request_token(
    host: str,
    port: int = API_PORT,
    timeout: float = DEFAULT_TIMEOUT,
    session: requests.Session | None = None,
) -> str:
    """Request a new access token from a device in pairing mode.

    The token is not stored anywhere; the caller puts it into its configuration.

    Returns:
        The new access token

    Raises:
        AuthPending: If the device is not in pairing mode
        AuthFailed: If the response is unexpected or has no token
        NetworkError: If the device cannot be reached
    """
    url = f"{_base_url(host, port)}/{RESOURCE_NEW_TOKEN}"
    owned = session is None
    http = session or requests.Session()
    try:
        response = _send(http, "POST", url, None, timeout)
    finally:
        if owned:
            http.close()

    if response.status_code == 403:
        raise AuthPending(
            f"{host} is not in pairing mode; hold the power button for 5-7 seconds and retry"
        )
    if response.status_code != 200:
        raise AuthFailed(f"Pairing with {host} failed: HTTP {response.status_code}")

    try:
        body = _decode(response)
    except ProtocolError as e:
        raise AuthFailed(str(e)) from e
    token = body.get("auth_token") if isinstance(body, dict) else None
    if not isinstance(token, str) or not token:
        raise AuthFailed(f"Pairing response from {host} has no token: {body!r}")

    logger.info("New token issued by %s", host)
    return token
