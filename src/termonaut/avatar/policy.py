"""Seed, fingerprint and level-tier parameter derivation.

Everything here is pure: the same request always yields the same seed,
fingerprint and DiceBear parameters.  The seed only moves every five levels
(the "level tier"), so an avatar evolves with progression without changing
on every level-up.

Level tiers:

====== =====================================================
Level  Parameters
====== =====================================================
1-4    seed and size only
5-9    hair colour; glasses for pixel-art from level 7
10-19  hair colour, translate jitter, corner radius
20-49  solid background, rotation proportional to level
50-99  linear gradient background, larger scale
100+   gradients, mirroring every 7th level, bonus accessories
====== =====================================================
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field

from termonaut.avatar.models import AvatarRequest

# Bump when the fingerprint key layout changes; every cached entry is
# invalidated by the bump.
FINGERPRINT_VERSION = 1

EVOLUTION_LEVELS: tuple[int, ...] = (5, 10, 20, 50, 100)

_HAIR_COLORS_BASIC = ["724133", "f59797", "65c9ff"]
_HAIR_COLORS_THEMED = _HAIR_COLORS_BASIC + ["92d5ea"]
_HAIR_COLORS_BACKGROUND = _HAIR_COLORS_THEMED + ["fbbf24"]
_HAIR_COLORS_SPECIAL = _HAIR_COLORS_BACKGROUND + ["e67e22"]
_HAIR_COLORS_EPIC = ["ff6b6b", "4ecdc4", "45b7d1", "f39c12", "9b59b6", "e74c3c"]

# Only this style accepts the accessory/hair parameters we send.
_ACCESSORY_STYLE = "pixel-art"


@dataclass
class DiceBearParams:
    """Query parameters for one DiceBear request."""

    seed: str
    size: int = 0
    background_type: list[str] = field(default_factory=list)
    background_rotation: list[int] = field(default_factory=list)
    accessories: list[str] = field(default_factory=list)
    accessories_color: list[str] = field(default_factory=list)
    hair_color: list[str] = field(default_factory=list)
    flip: bool = False
    rotate: int = 0
    scale: int = 0
    radius: int = 0
    translate_x: int = 0
    translate_y: int = 0


def level_tier(level: int) -> int:
    return level // 5


def username_sum(username: str) -> int:
    """Sum of the code points of *username*, used to pick per-user variants."""
    return sum(ord(ch) for ch in username)


def derive_seed(request: AvatarRequest) -> str:
    return f"{request.username}:{request.level}:{level_tier(request.level)}"


def fingerprint_key(request: AvatarRequest) -> str:
    """Canonical string hashed into the cache fingerprint.

    The SVG edge length is not part of the key: entries are keyed by the
    character-art dimensions only.
    """
    return "|".join(
        [
            f"v{FINGERPRINT_VERSION}",
            request.username,
            str(request.level),
            request.style,
            f"{request.size.ascii_width}x{request.size.ascii_height}",
        ]
    )


def derive_fingerprint(request: AvatarRequest) -> str:
    """32-character hex digest identifying a cache entry."""
    # MD5 is used as a stable content key, not for security.
    return hashlib.md5(fingerprint_key(request).encode("utf-8")).hexdigest()  # noqa: S324


def next_evolution_level(level: int) -> int | None:
    """Next level at which the avatar changes tier, or None past the last one."""
    for threshold in EVOLUTION_LEVELS:
        if level < threshold:
            return threshold
    return None


def build_params(request: AvatarRequest, seed: str) -> DiceBearParams:
    """Map a request onto DiceBear parameters according to its level tier."""
    level = request.level
    pixel_art = request.style == _ACCESSORY_STYLE
    params = DiceBearParams(seed=seed, size=request.size.svg_size)

    if level >= 100:
        params.hair_color = list(_HAIR_COLORS_EPIC)
        params.background_type = ["gradientLinear", "gradientRadial"]
        params.background_rotation = [45, 90, 135, 180]
        if pixel_art:
            params.accessories = ["glasses", "hat"]
            params.accessories_color = ["ff6b6b", "4ecdc4", "45b7d1"]
        params.flip = level % 7 == 0
    elif level >= 50:
        params.hair_color = list(_HAIR_COLORS_SPECIAL)
        params.background_type = ["gradientLinear"]
        params.background_rotation = [0, 45, 90]
        if pixel_art:
            params.accessories = ["glasses"]
            params.accessories_color = ["333333", "666666", "999999"]
        params.scale = 100 + (level - 50) * 2
    elif level >= 20:
        params.hair_color = list(_HAIR_COLORS_BACKGROUND)
        params.background_type = ["solid"]
        if pixel_art:
            params.accessories = ["glasses"]
        params.rotate = (level - 20) * 2
    elif level >= 10:
        params.hair_color = list(_HAIR_COLORS_THEMED)
        params.translate_x = (level - 10) % 5
        params.translate_y = (level - 10) % 3
    elif level >= 5:
        params.hair_color = list(_HAIR_COLORS_BASIC)
        if pixel_art and level >= 7:
            params.accessories = ["glasses"]

    user_hash = username_sum(request.username)
    if params.hair_color:
        params.hair_color = [params.hair_color[user_hash % len(params.hair_color)]]
    if level >= 10:
        params.radius = 10 + user_hash % 20

    return params
