"""DiceBear HTTP API client.

Uses the DiceBear API (https://www.dicebear.com/) to generate deterministic
SVG avatars.  The same seed and parameters always produce the same image, so
the client itself is stateless apart from its pooled ``httpx.Client``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from urllib.parse import urlencode

import httpx

from termonaut.avatar.errors import (
    FormatError,
    InvalidStyleError,
    NetworkErrorKind,
    TransportError,
    UpstreamError,
)
from termonaut.avatar.policy import DiceBearParams

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.dicebear.com/9.x"
DEFAULT_TIMEOUT = 10.0

SUPPORTED_STYLES: tuple[str, ...] = (
    "pixel-art",
    "bottts",
    "adventurer",
    "avataaars",
    "big-ears",
    "big-smile",
    "croodles",
    "fun-emoji",
    "icons",
    "identicon",
    "initials",
    "lorelei",
    "micah",
    "miniavs",
    "notionists",
    "open-peeps",
    "personas",
    "rings",
    "shapes",
    "thumbs",
)

_SVG_MARKER = b"<svg"

_DNS_PATTERNS = (
    "name or service not known",
    "nodename nor servname",
    "no such host",
    "temporary failure in name resolution",
    "getaddrinfo failed",
    "no address associated",
)


@dataclass(frozen=True)
class StyleInfo:
    """Human-facing description of an avatar style."""

    name: str
    description: str
    recommended: bool = False
    features: tuple[str, ...] = field(default_factory=tuple)


_STYLE_INFO = {
    "pixel-art": StyleInfo(
        "Pixel Art",
        "Retro 8-bit style avatars perfect for terminal display",
        True,
        ("accessories", "hair", "clothing"),
    ),
    "bottts": StyleInfo(
        "Bottts",
        "Robot-themed avatars with clean geometric shapes",
        True,
        ("colors", "accessories", "antennas"),
    ),
    "adventurer": StyleInfo(
        "Adventurer",
        "Fantasy character avatars with medieval themes",
        True,
        ("hair", "facial-hair", "accessories"),
    ),
    "avataaars": StyleInfo(
        "Avataaars",
        "Modern cartoon-style avatars with many customization options",
        False,
        ("hair", "accessories", "clothing", "facial-hair"),
    ),
}


def classify_transport_error(exc: httpx.TransportError) -> NetworkErrorKind:
    """Map an httpx transport failure onto a :class:`NetworkErrorKind`."""
    if isinstance(exc, httpx.TimeoutException):
        return NetworkErrorKind.TIMEOUT
    msg = str(exc).lower()
    if isinstance(exc, httpx.ConnectError):
        if any(p in msg for p in _DNS_PATTERNS):
            return NetworkErrorKind.DNS
        if "refused" in msg:
            return NetworkErrorKind.CONNECTION_REFUSED
        if "unreachable" in msg:
            return NetworkErrorKind.UNREACHABLE
        return NetworkErrorKind.CONNECT
    if isinstance(exc, httpx.NetworkError):
        return NetworkErrorKind.CONNECT
    return NetworkErrorKind.PROTOCOL


def transport_error_from(exc: httpx.TransportError, what: str) -> TransportError:
    kind = classify_transport_error(exc)
    return TransportError(f"{what} failed ({kind.value}): {exc}", kind=kind)


def list_supported_styles() -> list[str]:
    return list(SUPPORTED_STYLES)


def is_style_supported(style: str) -> bool:
    return style in SUPPORTED_STYLES


def style_info(style: str) -> StyleInfo:
    """Describe *style*; unknown styles get a generic description."""
    return _STYLE_INFO.get(style, StyleInfo(name=style, description="Avatar style"))


class DiceBearClient:
    """Synchronous DiceBear client.

    ``fetch_svg()`` raises typed errors instead of returning ``None`` so the
    caller can tell an unreachable network (fall back offline) from a bad
    upstream answer (fail the request).

    An ``httpx.Client`` may be injected (tests use ``httpx.MockTransport``);
    otherwise one is created lazily and closed by :meth:`close`.
    """

    def __init__(
        self,
        base_url: str = DEFAULT_BASE_URL,
        timeout: float = DEFAULT_TIMEOUT,
        client: httpx.Client | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client
        self._owns_client = client is None

    @property
    def client(self) -> httpx.Client:
        if self._client is None:
            self._client = httpx.Client(timeout=self.timeout, follow_redirects=True)
        return self._client

    def close(self) -> None:
        """Close the owned httpx client (injected clients are left open)."""
        if self._client is not None and self._owns_client:
            self._client.close()
            self._client = None

    def __enter__(self) -> DiceBearClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -- URL building -------------------------------------------------------

    def build_url(self, style: str, params: DiceBearParams) -> str:
        """Build the SVG endpoint URL for *style* (no I/O)."""
        if not style:
            raise InvalidStyleError("style cannot be empty")

        query: dict[str, str] = {}
        if params.seed:
            query["seed"] = params.seed
        if params.size > 0:
            query["size"] = str(params.size)
        # hairColor is only understood by pixel-art; send the first colour.
        if params.hair_color and style == "pixel-art":
            query["hairColor"] = params.hair_color[0]
        if params.flip:
            query["flip"] = "true"
        if params.rotate:
            query["rotate"] = str(params.rotate)
        if params.scale:
            query["scale"] = str(params.scale)
        if params.radius:
            query["radius"] = str(params.radius)
        if params.translate_x:
            query["translateX"] = str(params.translate_x)
        if params.translate_y:
            query["translateY"] = str(params.translate_y)

        url = f"{self.base_url}/{style}/svg"
        if query:
            url = f"{url}?{urlencode(sorted(query.items()))}"
        return url

    # -- Fetching -----------------------------------------------------------

    def fetch_svg(self, style: str, params: DiceBearParams) -> bytes:
        """Fetch the SVG for *style*/*params*.

        Raises:
            InvalidStyleError: If *style* is empty.
            TransportError: On DNS, connection or timeout failures.
            UpstreamError: If the API does not answer 200.
            FormatError: If the body does not look like an SVG document.
        """
        url = self.build_url(style, params)
        logger.debug("Fetching avatar SVG from %s", url)
        try:
            resp = self.client.get(url, timeout=self.timeout)
        except httpx.TransportError as exc:
            raise transport_error_from(exc, "DiceBear request") from exc

        if resp.status_code != 200:
            raise UpstreamError(
                f"DiceBear API returned status {resp.status_code}",
                status_code=resp.status_code,
            )

        svg_data = resp.content
        if _SVG_MARKER not in svg_data:
            raise FormatError("response does not appear to be valid SVG")
        return svg_data

    def test_connection(self) -> None:
        """Fetch a tiny avatar; raises the same errors as :meth:`fetch_svg`."""
        self.fetch_svg("pixel-art", DiceBearParams(seed="test", size=32))

    # Convenience passthroughs so callers holding a client need no imports.

    def list_supported_styles(self) -> list[str]:
        return list_supported_styles()

    def is_style_supported(self, style: str) -> bool:
        return is_style_supported(style)

    def style_info(self, style: str) -> StyleInfo:
        return style_info(style)
