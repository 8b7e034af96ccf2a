"""Avatar configuration via dataclass.

Priority (highest wins): constructor arg > env var > config.toml > default.
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from termonaut.avatar.dicebear import DEFAULT_BASE_URL, DEFAULT_TIMEOUT
from termonaut.avatar.models import SIZES, AvatarSize

logger = logging.getLogger(__name__)

_DEFAULT_STYLE = "pixel-art"
_DEFAULT_SIZE = "small"
_DEFAULT_TTL_SECONDS = 7 * 24 * 3600.0
_DEFAULT_MAX_CACHE_BYTES = 50 * 1024 * 1024


def termonaut_home() -> Path:
    """``TERMONAUT_HOME`` overrides ``~/.termonaut`` (useful for tests)."""
    home = os.getenv("TERMONAUT_HOME")
    return Path(home).expanduser() if home else Path.home() / ".termonaut"


@dataclass
class AvatarConfig:
    """Configuration for the avatar subsystem.

    Fields left as ``None`` are filled from ``TERMONAUT_AVATAR_*`` env vars,
    then from the ``[avatar]`` table of ``<home>/config.toml``, then from the
    built-in defaults.
    """

    cache_dir: Path | str | None = None
    cache_ttl: float | None = None
    api_timeout: float | None = None
    api_base_url: str | None = None
    default_style: str | None = None
    default_size: str | None = None
    max_cache_bytes: int | None = None

    def __post_init__(self) -> None:
        home = termonaut_home()
        file_values = self._load_config_file(home / "config.toml")

        self.cache_dir = Path(
            self._pick("cache_dir", "TERMONAUT_AVATAR_CACHE_DIR", file_values, home / "avatars")
        ).expanduser()
        self.cache_ttl = float(
            self._pick("cache_ttl", "TERMONAUT_AVATAR_CACHE_TTL", file_values, _DEFAULT_TTL_SECONDS)
        )
        self.api_timeout = float(
            self._pick("api_timeout", "TERMONAUT_AVATAR_TIMEOUT", file_values, DEFAULT_TIMEOUT)
        )
        self.api_base_url = str(
            self._pick("api_base_url", "TERMONAUT_AVATAR_API_URL", file_values, DEFAULT_BASE_URL)
        )
        self.default_style = str(
            self._pick("default_style", "TERMONAUT_AVATAR_STYLE", file_values, _DEFAULT_STYLE)
        )
        self.default_size = str(
            self._pick("default_size", "TERMONAUT_AVATAR_SIZE", file_values, _DEFAULT_SIZE)
        ).lower()
        self.max_cache_bytes = int(
            self._pick(
                "max_cache_bytes", "TERMONAUT_AVATAR_MAX_CACHE_BYTES", file_values, _DEFAULT_MAX_CACHE_BYTES
            )
        )

        if self.default_size not in SIZES:
            raise ValueError(
                f"Invalid default_size '{self.default_size}'. Must be one of: {sorted(SIZES)}"
            )
        if self.cache_ttl <= 0:
            raise ValueError(f"cache_ttl must be positive, got {self.cache_ttl}")
        if self.api_timeout <= 0:
            raise ValueError(f"api_timeout must be positive, got {self.api_timeout}")

    def _pick(self, attr: str, env_var: str, file_values: dict[str, Any], default: Any) -> Any:
        value = getattr(self, attr)
        if value is not None:
            return value
        env_value = os.getenv(env_var)
        if env_value:
            return env_value
        if attr in file_values:
            return file_values[attr]
        return default

    def _load_config_file(self, path: Path) -> dict[str, Any]:
        """Load the optional ``[avatar]`` table from config.toml."""
        if not path.exists():
            return {}
        try:
            import tomllib
        except ModuleNotFoundError:
            import tomli as tomllib  # type: ignore[no-redef]  # Python 3.10 fallback

        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except Exception:
            logger.warning("Failed to load config file %s", path, exc_info=True)
            return {}

        section = data.get("avatar", {})
        return section if isinstance(section, dict) else {}

    @property
    def size(self) -> AvatarSize:
        return AvatarSize.from_name(self.default_size)
