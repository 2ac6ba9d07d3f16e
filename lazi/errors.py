"""Error types shared across lazi components."""

from __future__ import annotations


class LaziError(RuntimeError):
    """Base class for every failure surfaced to the panel."""

    kind = "error"


class PermissionDenied(LaziError):
    """Raised when the operating system refuses microphone access."""

    kind = "permission_denied"


class PermissionTimeout(LaziError):
    """Raised when the authorization prompt is not answered in time."""

    kind = "permission_timeout"


class RecordingIOError(LaziError):
    """Raised when the recordings directory or an audio file cannot be written."""

    kind = "io_error"


class NetworkError(LaziError):
    """Raised for transport level failures talking to a remote endpoint."""

    kind = "network_error"


class InvalidResponse(LaziError):
    """Raised when a remote endpoint returns an unexpected payload."""

    kind = "invalid_response"


class EmptyResponse(LaziError):
    """Raised when a remote endpoint returns no body at all."""

    kind = "empty_response"


class EncodingError(LaziError):
    """Raised when a request body cannot be serialised."""

    kind = "encoding_error"


class ConfigurationError(LaziError):
    """Raised when required configuration is missing or unusable."""

    kind = "configuration_error"
