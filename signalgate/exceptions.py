"""
SignalGate exception hierarchy.

All custom exceptions inherit from SignalGateException so callers can
catch a single base type when they want a broad safety net.
"""


class SignalGateException(Exception):
    """Base exception for all SignalGate errors."""


class ConfigurationError(SignalGateException, ValueError):
    """Raised when configuration is invalid or cannot be loaded."""


class DataStoreError(SignalGateException):
    """Raised when a JSON data file cannot be read or written."""


class UpstreamError(SignalGateException):
    """Base class for failures of the upstream signal API."""


class UpstreamStatusError(UpstreamError):
    """Raised when the signal API answers with a non-2xx status.

    Attributes:
        status_code: HTTP status returned by the upstream.
        body: Raw response text, passed back to the caller as details.
    """

    def __init__(self, status_code: int, body: str) -> None:
        self.status_code = status_code
        self.body = body
        super().__init__(f"Signal API returned status {status_code}")


class UpstreamUnavailableError(UpstreamError):
    """Raised when the signal API cannot be reached at all."""
