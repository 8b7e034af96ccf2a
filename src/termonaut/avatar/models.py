"""Avatar data objects: sizes, requests, generated avatars and cache entries."""

from __future__ import annotations

import base64
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Any

FALLBACK_SUFFIX = "-fallback"


def utcnow() -> datetime:
    """Timezone-aware current time (UTC)."""
    return datetime.now(timezone.utc)


def _parse_time(value: str) -> datetime:
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


@dataclass(frozen=True)
class AvatarSize:
    """Square SVG edge length plus the target character-art dimensions."""

    svg_size: int
    ascii_width: int
    ascii_height: int

    def __post_init__(self) -> None:
        for name in ("svg_size", "ascii_width", "ascii_height"):
            value = getattr(self, name)
            if not isinstance(value, int) or value <= 0:
                raise ValueError(f"AvatarSize.{name} must be a positive integer, got {value!r}")

    @classmethod
    def from_name(cls, name: str) -> AvatarSize:
        """Resolve one of the predefined size names (mini/small/medium/large)."""
        try:
            return SIZES[name.strip().lower()]
        except KeyError:
            raise ValueError(
                f"Invalid size '{name}', must be one of: {', '.join(SIZES)}"
            ) from None

    @classmethod
    def for_terminal(cls, columns: int, rows: int) -> AvatarSize:
        """Pick the largest avatar that comfortably fits a terminal window."""
        if columns >= 140 and rows >= 35:
            return cls(256, 65, 32)
        if columns >= 120 and rows >= 30:
            return SIZE_LARGE
        if columns >= 100 and rows >= 25:
            return cls(128, 50, 25)
        if columns >= 80 and rows >= 20:
            return SIZE_MEDIUM
        if columns >= 60 and rows >= 15:
            return SIZE_SMALL
        if columns >= 40 and rows >= 10:
            return SIZE_MINI
        return cls(32, 8, 4)

    def to_dict(self) -> dict[str, int]:
        return {
            "svg_size": self.svg_size,
            "ascii_width": self.ascii_width,
            "ascii_height": self.ascii_height,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AvatarSize:
        return cls(
            svg_size=int(data["svg_size"]),
            ascii_width=int(data["ascii_width"]),
            ascii_height=int(data["ascii_height"]),
        )


SIZE_MINI = AvatarSize(svg_size=32, ascii_width=10, ascii_height=5)
SIZE_SMALL = AvatarSize(svg_size=64, ascii_width=20, ascii_height=10)
SIZE_MEDIUM = AvatarSize(svg_size=128, ascii_width=40, ascii_height=20)
SIZE_LARGE = AvatarSize(svg_size=256, ascii_width=60, ascii_height=30)

SIZES: dict[str, AvatarSize] = {
    "mini": SIZE_MINI,
    "small": SIZE_SMALL,
    "medium": SIZE_MEDIUM,
    "large": SIZE_LARGE,
}


@dataclass
class AvatarRequest:
    """A single avatar generation request. Never persisted."""

    username: str
    level: int
    style: str = ""
    size: AvatarSize = SIZE_SMALL


@dataclass(frozen=True)
class Avatar:
    """A generated avatar.

    ``style`` ends in ``-fallback`` when the avatar was synthesized offline,
    so callers can tell which path produced it.
    """

    username: str
    level: int
    style: str
    size: AvatarSize
    svg_data: bytes
    ascii_art: str
    seed: str
    fingerprint: str
    generated_at: datetime = field(default_factory=utcnow)

    @property
    def is_fallback(self) -> bool:
        return self.style.endswith(FALLBACK_SUFFIX)

    def with_artifacts(self, svg_data: bytes | None = None, ascii_art: str | None = None) -> Avatar:
        """Return a copy with the binary fields replaced where given."""
        changes: dict[str, Any] = {}
        if svg_data is not None:
            changes["svg_data"] = svg_data
        if ascii_art is not None:
            changes["ascii_art"] = ascii_art
        return replace(self, **changes) if changes else self

    def to_dict(self) -> dict[str, Any]:
        return {
            "username": self.username,
            "level": self.level,
            "style": self.style,
            "size": self.size.to_dict(),
            "svg_data": base64.b64encode(self.svg_data).decode("ascii"),
            "ascii_art": self.ascii_art,
            "seed": self.seed,
            "generated_at": self.generated_at.isoformat(),
            "fingerprint": self.fingerprint,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Avatar:
        return cls(
            username=data["username"],
            level=int(data["level"]),
            style=data["style"],
            size=AvatarSize.from_dict(data["size"]),
            svg_data=base64.b64decode(data.get("svg_data") or ""),
            ascii_art=data.get("ascii_art") or "",
            seed=data["seed"],
            fingerprint=data["fingerprint"],
            generated_at=_parse_time(data["generated_at"]),
        )


@dataclass
class CacheEntry:
    """Metadata record stored beside the cached artifacts.

    ``expires_at`` is fixed when the entry is created; reads never extend it.
    """

    avatar: Avatar
    cached_at: datetime
    expires_at: datetime
    access_count: int = 1
    last_access: datetime = field(default_factory=utcnow)

    @classmethod
    def new(cls, avatar: Avatar, ttl: timedelta, now: datetime | None = None) -> CacheEntry:
        now = now or utcnow()
        return cls(
            avatar=avatar,
            cached_at=now,
            expires_at=now + ttl,
            access_count=1,
            last_access=now,
        )

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) > self.expires_at

    def touch(self, now: datetime | None = None) -> None:
        self.access_count += 1
        self.last_access = now or utcnow()

    def to_dict(self) -> dict[str, Any]:
        return {
            "avatar": self.avatar.to_dict(),
            "cached_at": self.cached_at.isoformat(),
            "expires_at": self.expires_at.isoformat(),
            "access_count": self.access_count,
            "last_access": self.last_access.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> CacheEntry:
        return cls(
            avatar=Avatar.from_dict(data["avatar"]),
            cached_at=_parse_time(data["cached_at"]),
            expires_at=_parse_time(data["expires_at"]),
            access_count=int(data.get("access_count", 1)),
            last_access=_parse_time(data["last_access"]),
        )


@dataclass
class CacheStats:
    """Aggregate view of the disk cache.

    ``hit_rate`` is ``valid_entries / total_access_count``; it is a rough
    proxy, not a measured hit rate.
    """

    total_entries: int = 0
    valid_entries: int = 0
    expired_entries: int = 0
    total_size: int = 0
    total_access_count: int = 0
    hit_rate: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_entries": self.total_entries,
            "valid_entries": self.valid_entries,
            "expired_entries": self.expired_entries,
            "total_size": self.total_size,
            "total_access_count": self.total_access_count,
            "hit_rate": self.hit_rate,
        }
