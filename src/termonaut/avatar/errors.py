"""Avatar exception hierarchy.

All avatar-specific exceptions inherit from :class:`AvatarError`.
"""

from __future__ import annotations

import enum


class NetworkErrorKind(str, enum.Enum):
    """Closed set of network failure categories reported by the remote layer."""

    DNS = "dns"
    CONNECTION_REFUSED = "connection_refused"
    TIMEOUT = "timeout"
    UNREACHABLE = "unreachable"
    CONNECT = "connect"
    PROTOCOL = "protocol"


class AvatarError(Exception):
    """Base exception for all avatar errors."""


class AvatarValidationError(AvatarError):
    """Raised when an avatar request is rejected before any I/O."""


# ---------------------------------------------------------------------------
# Remote source / conversion
# ---------------------------------------------------------------------------


class RemoteAvatarError(AvatarError):
    """Raised on failures talking to the avatar API or converting its output."""


class InvalidStyleError(RemoteAvatarError):
    """Raised when a request URL cannot be built because the style is empty."""


class TransportError(RemoteAvatarError):
    """Raised when the avatar API cannot be reached at all."""

    def __init__(self, message: str, kind: NetworkErrorKind = NetworkErrorKind.CONNECT) -> None:
        super().__init__(message)
        self.kind = kind


class UpstreamError(RemoteAvatarError):
    """Raised when the avatar API answers with a non-200 status."""

    def __init__(self, message: str, status_code: int) -> None:
        super().__init__(message)
        self.status_code = status_code


class FormatError(RemoteAvatarError):
    """Raised when a response body is not the expected image format."""


class EmptyResultError(RemoteAvatarError):
    """Raised when character-art conversion produces nothing."""


# ---------------------------------------------------------------------------
# Cache
# ---------------------------------------------------------------------------


class CacheError(AvatarError):
    """Base class for disk cache errors."""


class CacheIOError(CacheError):
    """Raised when cache files cannot be read, written or removed."""


class CacheMissError(CacheError):
    """Raised when the cache has no usable entry for a fingerprint."""


class CacheNotFoundError(CacheMissError):
    """Raised when no metadata file exists for a fingerprint."""


class CacheExpiredError(CacheMissError):
    """Raised when an entry existed but its TTL had passed (it is removed)."""
