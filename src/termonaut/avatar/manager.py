"""Avatar orchestration: validation, caching, remote generation and fallback."""

from __future__ import annotations

import logging
import socket
import threading
from collections.abc import Callable
from concurrent.futures import Future
from dataclasses import replace

import httpx

from termonaut.avatar.cache import AvatarCache
from termonaut.avatar.config import AvatarConfig
from termonaut.avatar.converter import convert_svg_to_ascii
from termonaut.avatar.dicebear import DiceBearClient, is_style_supported
from termonaut.avatar.errors import (
    AvatarError,
    AvatarValidationError,
    CacheIOError,
    CacheMissError,
    RemoteAvatarError,
    TransportError,
)
from termonaut.avatar.fallback import fallback_ascii, fallback_avatar
from termonaut.avatar.models import Avatar, AvatarRequest, AvatarSize, CacheStats, utcnow
from termonaut.avatar.policy import build_params, derive_fingerprint, derive_seed

logger = logging.getLogger(__name__)

_BUILTIN_DEFAULT_STYLE = "pixel-art"

# Only consulted for exceptions that did not come through the typed
# remote layer (e.g. a custom converter or client).
_NETWORK_PATTERNS = (
    "no such host",
    "connection refused",
    "connection timeout",
    "timeout",
    "timed out",
    "network is unreachable",
    "temporary failure in name resolution",
    "name or service not known",
)

Converter = Callable[[str, AvatarSize], str]
LevelProvider = Callable[[str], int]


def is_network_error(exc: BaseException | None) -> bool:
    """Return True if *exc* means the avatar API could not be reached.

    Typed errors decide first: :class:`TransportError` is a network failure,
    any other :class:`RemoteAvatarError` (bad status, bad body) is not.
    """
    if exc is None:
        return False
    if isinstance(exc, TransportError):
        return True
    if isinstance(exc, RemoteAvatarError):
        return False
    if isinstance(exc, (httpx.TransportError, socket.gaierror, ConnectionError, TimeoutError)):
        return True
    msg = str(exc).lower()
    return any(p in msg for p in _NETWORK_PATTERNS)


class AvatarManager:
    """Generates, caches and serves avatars.

    ``generate()`` returns a cached avatar when one exists, otherwise asks
    DiceBear for an SVG, converts its PNG rendition to character art and
    caches the result.  When DiceBear is unreachable an offline fallback
    avatar is generated and cached instead.

    Concurrent misses for the same fingerprint share a single build.
    """

    def __init__(
        self,
        config: AvatarConfig | None = None,
        *,
        dicebear: DiceBearClient | None = None,
        cache: AvatarCache | None = None,
        level_provider: LevelProvider | None = None,
        converter: Converter | None = None,
    ) -> None:
        self.config = config or AvatarConfig()
        self.dicebear = dicebear or DiceBearClient(
            base_url=self.config.api_base_url,
            timeout=self.config.api_timeout,
        )
        self.cache = cache or AvatarCache(self.config.cache_dir, self.config.cache_ttl)
        self._level_provider = level_provider or (lambda username: 1)
        self._converter = converter or self._convert
        self._inflight: dict[str, Future[Avatar]] = {}
        self._inflight_lock = threading.Lock()

    def close(self) -> None:
        """Close the HTTP client and stop any running cache sweep."""
        self.dicebear.close()
        if self.cache.sweeper is not None:
            self.cache.sweeper.cancel()

    def __enter__(self) -> AvatarManager:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- Request handling -----------------------------------------------------

    def _validate(self, request: AvatarRequest) -> AvatarRequest:
        """Reject unusable requests; coerce unknown styles to the default."""
        if not request.username or not request.username.strip():
            raise AvatarValidationError("username cannot be empty")
        if isinstance(request.level, bool) or not isinstance(request.level, int) or request.level < 1:
            raise AvatarValidationError(f"level must be at least 1, got {request.level!r}")

        style = request.style
        if not is_style_supported(style):
            default = self.config.default_style
            if not is_style_supported(default):
                default = _BUILTIN_DEFAULT_STYLE
            if style:
                logger.debug("Unsupported avatar style %r, using %r", style, default)
            style = default
        return replace(request, style=style)

    def fingerprint_for(self, request: AvatarRequest) -> str:
        """Cache fingerprint of *request* after validation and style coercion."""
        return derive_fingerprint(self._validate(request))

    def generate(self, request: AvatarRequest) -> Avatar:
        """Return the avatar for *request*, generating and caching it on a miss.

        Raises:
            AvatarValidationError: Empty username or level below 1.
            RemoteAvatarError: DiceBear answered but the answer was unusable
                (bad status or body). Network failures fall back instead.
        """
        request = self._validate(request)
        fingerprint = derive_fingerprint(request)

        cached = self._lookup(fingerprint)
        if cached is not None:
            return cached

        logger.debug("Avatar cache miss for key %s, generating new avatar", fingerprint)
        return self._single_flight(fingerprint, lambda: self._lookup_or_build(request, fingerprint))

    def refresh(
        self,
        username: str,
        *,
        level: int | None = None,
        style: str | None = None,
        size: AvatarSize | None = None,
    ) -> Avatar:
        """Drop the cached avatar for *username* and regenerate it.

        ``level`` defaults to the level provider's answer for *username*.
        """
        request = self._validate(
            AvatarRequest(
                username=username,
                level=level if level is not None else self._level_provider(username),
                style=style or self.config.default_style,
                size=size or self.config.size,
            )
        )
        fingerprint = derive_fingerprint(request)
        try:
            self.cache.delete(fingerprint)
        except CacheIOError:
            logger.warning("Failed to delete cached avatar %s", fingerprint, exc_info=True)
        return self._single_flight(fingerprint, lambda: self._build_and_store(request, fingerprint))

    def get_cached(self, fingerprint: str) -> Avatar:
        """Read-only cache lookup; never triggers generation.

        Raises the cache's :class:`CacheMissError`/:class:`CacheIOError`.
        """
        return self.cache.get(fingerprint)

    # -- Internals ------------------------------------------------------------

    def _lookup(self, fingerprint: str) -> Avatar | None:
        try:
            avatar = self.cache.get(fingerprint)
        except CacheMissError as exc:
            logger.debug("Avatar cache miss: %s", exc)
            return None
        except CacheIOError:
            logger.warning("Avatar cache read failed for %s", fingerprint, exc_info=True)
            return None
        logger.debug("Avatar cache hit for key %s", fingerprint)
        return avatar

    def _single_flight(self, fingerprint: str, build: Callable[[], Avatar]) -> Avatar:
        with self._inflight_lock:
            future = self._inflight.get(fingerprint)
            leader = future is None
            if leader:
                future = Future()
                self._inflight[fingerprint] = future

        if not leader:
            return future.result()

        try:
            avatar = build()
        except BaseException as exc:
            future.set_exception(exc)
            raise
        else:
            future.set_result(avatar)
            return avatar
        finally:
            with self._inflight_lock:
                self._inflight.pop(fingerprint, None)

    def _lookup_or_build(self, request: AvatarRequest, fingerprint: str) -> Avatar:
        # A previous leader may have stored the avatar after our first miss.
        cached = self._lookup(fingerprint)
        if cached is not None:
            return cached
        return self._build_and_store(request, fingerprint)

    def _convert(self, svg_url: str, size: AvatarSize) -> str:
        return convert_svg_to_ascii(
            svg_url,
            size,
            client=self.dicebear.client,
            timeout=self.config.api_timeout,
        )

    def _build_and_store(self, request: AvatarRequest, fingerprint: str) -> Avatar:
        seed = derive_seed(request)
        params = build_params(request, seed)

        try:
            svg_data = self.dicebear.fetch_svg(request.style, params)
        except (AvatarError, httpx.HTTPError, OSError) as exc:
            if not is_network_error(exc):
                raise
            logger.warning(
                "Network issue: unable to fetch avatar for %s from DiceBear, using offline fallback (%s)",
                request.username,
                exc,
            )
            avatar = fallback_avatar(request, seed, fingerprint)
        else:
            svg_url = self.dicebear.build_url(request.style, params)
            try:
                ascii_art = self._converter(svg_url, request.size)
            except Exception as exc:
                logger.warning("ASCII conversion failed for %s: %s", request.username, exc)
                ascii_art = fallback_ascii(request)
            avatar = Avatar(
                username=request.username,
                level=request.level,
                style=request.style,
                size=request.size,
                svg_data=svg_data,
                ascii_art=ascii_art,
                seed=seed,
                fingerprint=fingerprint,
                generated_at=utcnow(),
            )

        try:
            self.cache.set(fingerprint, avatar)
        except CacheIOError:
            logger.warning("Failed to cache avatar %s", fingerprint, exc_info=True)
        return avatar

    # -- Maintenance ----------------------------------------------------------

    def cache_stats(self) -> CacheStats:
        return self.cache.stats()

    def evict_by_size(self, max_bytes: int | None = None) -> int:
        """Trim the cache to *max_bytes* (default: the configured budget)."""
        limit = self.config.max_cache_bytes if max_bytes is None else max_bytes
        return self.cache.evict_by_size(limit)

    def clear_cache(self) -> None:
        self.cache.clear()

    def test_connection(self) -> None:
        self.dicebear.test_connection()

    def network_status(self) -> tuple[bool, str]:
        """Probe DiceBear and describe the result as ``(online, message)``."""
        try:
            self.test_connection()
        except Exception as exc:
            if is_network_error(exc):
                return False, f"network connectivity issue: {exc}"
            return False, f"service error: {exc}"
        return True, "DiceBear API reachable"
