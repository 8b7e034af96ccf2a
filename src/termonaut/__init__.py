"""Termonaut -- gamified terminal productivity tracker.

Top-level convenience re-exports::

    from termonaut import AvatarManager, AvatarRequest
    from termonaut.avatar import SIZE_MEDIUM, derive_fingerprint
"""

__version__ = "0.1.0"

from termonaut.avatar import Avatar, AvatarManager, AvatarRequest, AvatarSize

__all__ = ["__version__", "Avatar", "AvatarManager", "AvatarRequest", "AvatarSize"]
