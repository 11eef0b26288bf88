"""Domain-specific exceptions for the media bridge.

These exceptions are safe to import from API layers without pulling in the
session machinery.
"""

from __future__ import annotations


class BridgeError(Exception):
    status_code: int = 500
    default_detail: str = "Bridge error"

    def __init__(self, detail: str | None = None) -> None:
        super().__init__(detail or self.default_detail)
        self.detail = detail or self.default_detail


class TransportError(BridgeError):
    """A send on either leg failed; the in-progress operation is abandoned."""

    status_code = 503
    default_detail = "Socket send failed."


class ProtocolError(BridgeError):
    """An inbound message did not have the expected structure."""

    status_code = 400
    default_detail = "Malformed message."


class SpeechServiceUnavailableError(BridgeError):
    status_code = 503
    default_detail = "Speech service connection failed."


class CallPlacementError(BridgeError):
    status_code = 502
    default_detail = "Outbound call could not be placed."


class TelephonyNotConfiguredError(BridgeError):
    """Twilio credentials, caller id or public URL are missing from settings."""

    status_code = 503
    default_detail = "Outbound calling is not configured."
