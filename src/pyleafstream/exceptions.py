"""Exception hierarchy for pyleafstream.

Everything raised by the I/O layer derives from NanoleafError so callers can
catch all device failures in one place. The sans-io helpers (protocol, layout)
raise ValueError for bad arguments; the I/O layer converts those where they
reach the caller.
"""

from __future__ import annotations


class NanoleafError(Exception):
    """Base exception for all device errors.

    Attributes:
        recoverable: True if retrying after user action may succeed
    """

    recoverable: bool = False


class NetworkError(NanoleafError):
    """Device unreachable, connection refused or request timed out."""

    recoverable = True


class AuthError(NanoleafError):
    """Missing, invalid or expired access token."""


class AuthPending(AuthError):
    """Device is not in pairing mode.

    Hold the power button for 5-7 seconds until the LEDs flash, then retry.
    """

    recoverable = True


class AuthFailed(AuthError):
    """Pairing request returned a malformed or unexpected response."""


class ConfigMismatch(NanoleafError):
    """Configuration does not fit the device's capabilities."""


class UnsupportedVersion(NanoleafError):
    """Device streaming protocol version is not implemented."""


class ProtocolError(NanoleafError):
    """Device returned a malformed or unexpected response body."""


class OpenFailed(NanoleafError):
    """Switching to external control mode did not yield a usable endpoint."""


class InvalidFrame(NanoleafError):
    """Colour frame does not match the resolved topology."""


class WriteError(NanoleafError):
    """Sending a stream datagram failed."""

    recoverable = True
