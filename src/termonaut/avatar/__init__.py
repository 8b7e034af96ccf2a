"""Level-evolving user avatars: DiceBear SVG plus terminal character art."""

from termonaut.avatar.cache import AvatarCache, SweepTask
from termonaut.avatar.config import AvatarConfig
from termonaut.avatar.converter import convert_svg_to_ascii
from termonaut.avatar.dicebear import DiceBearClient, is_style_supported, list_supported_styles
from termonaut.avatar.errors import (
    AvatarError,
    AvatarValidationError,
    CacheError,
    CacheExpiredError,
    CacheIOError,
    CacheMissError,
    CacheNotFoundError,
    EmptyResultError,
    FormatError,
    InvalidStyleError,
    NetworkErrorKind,
    RemoteAvatarError,
    TransportError,
    UpstreamError,
)
from termonaut.avatar.fallback import fallback_ascii, fallback_avatar, fallback_svg
from termonaut.avatar.manager import AvatarManager, is_network_error
from termonaut.avatar.models import (
    SIZE_LARGE,
    SIZE_MEDIUM,
    SIZE_MINI,
    SIZE_SMALL,
    Avatar,
    AvatarRequest,
    AvatarSize,
    CacheEntry,
    CacheStats,
)
from termonaut.avatar.policy import (
    DiceBearParams,
    build_params,
    derive_fingerprint,
    derive_seed,
    next_evolution_level,
)

__all__ = [
    # Orchestration
    "AvatarManager",
    "AvatarConfig",
    "is_network_error",
    # Models
    "Avatar",
    "AvatarRequest",
    "AvatarSize",
    "CacheEntry",
    "CacheStats",
    "SIZE_MINI",
    "SIZE_SMALL",
    "SIZE_MEDIUM",
    "SIZE_LARGE",
    # Components
    "AvatarCache",
    "SweepTask",
    "DiceBearClient",
    "DiceBearParams",
    "convert_svg_to_ascii",
    "fallback_ascii",
    "fallback_avatar",
    "fallback_svg",
    "list_supported_styles",
    "is_style_supported",
    # Policy
    "build_params",
    "derive_fingerprint",
    "derive_seed",
    "next_evolution_level",
    # Errors
    "AvatarError",
    "AvatarValidationError",
    "CacheError",
    "CacheExpiredError",
    "CacheIOError",
    "CacheMissError",
    "CacheNotFoundError",
    "EmptyResultError",
    "FormatError",
    "InvalidStyleError",
    "NetworkErrorKind",
    "RemoteAvatarError",
    "TransportError",
    "UpstreamError",
]
