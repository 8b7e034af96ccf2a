"""SVG URL -> PNG -> colour character art.

Pillow cannot rasterize SVG, so the pipeline asks DiceBear for the PNG
rendition of the same avatar, stores it in a temporary file and converts it
to 24-bit coloured ASCII art.
"""

from __future__ import annotations

import logging
import os
import tempfile
from urllib.parse import parse_qsl, urlsplit, urlunsplit

import httpx
from PIL import Image

from termonaut.avatar.dicebear import DEFAULT_TIMEOUT, transport_error_from
from termonaut.avatar.errors import EmptyResultError, FormatError, UpstreamError
from termonaut.avatar.models import AvatarSize

logger = logging.getLogger(__name__)

# Upper bound on a downloaded PNG.
MAX_RASTER_BYTES = 5 * 1024 * 1024

# Character ramps, darkest first.
PALETTE_RICH = " .'`^\",:;Il!i><~+_-?][}{1)(|\\/tfjrxnuvczXYUJCLQ0OZmwqpdbkhao*#MW&8%B@$"
PALETTE_BALANCED = " .:-=+*#%@"
PALETTE_MINIMAL = " .:+#@"

ANSI_RESET = "\033[0m"


def palette_for_width(width: int) -> str:
    """Wider art can afford a finer gradation of glyphs."""
    if width >= 40:
        return PALETTE_RICH
    if width >= 20:
        return PALETTE_BALANCED
    return PALETTE_MINIMAL


def raster_url(svg_url: str, size: int) -> str:
    """Turn a DiceBear ``/svg`` URL into the matching ``/png`` URL.

    A ``size`` query parameter is added when the URL does not carry one.
    """
    parts = urlsplit(svg_url)
    path = parts.path
    if path.endswith("/svg"):
        path = path[: -len("/svg")] + "/png"
    else:
        path = path.replace("/svg", "/png", 1)

    query = parts.query
    if not any(key == "size" for key, _ in parse_qsl(query, keep_blank_values=True)):
        query = f"{query}&size={size}" if query else f"size={size}"
    return urlunsplit((parts.scheme, parts.netloc, path, query, parts.fragment))


def fetch_raster(
    url: str,
    *,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT,
    max_bytes: int = MAX_RASTER_BYTES,
) -> bytes:
    """Download PNG bytes, refusing bodies larger than *max_bytes*."""
    owned = client is None
    http = client or httpx.Client(timeout=timeout, follow_redirects=True)
    try:
        with http.stream("GET", url, timeout=timeout) as resp:
            if resp.status_code != 200:
                raise UpstreamError(
                    f"PNG request failed with status {resp.status_code}",
                    status_code=resp.status_code,
                )
            chunks: list[bytes] = []
            total = 0
            for chunk in resp.iter_bytes():
                total += len(chunk)
                if total > max_bytes:
                    raise FormatError(f"PNG response exceeds {max_bytes} bytes")
                chunks.append(chunk)
    except httpx.TransportError as exc:
        raise transport_error_from(exc, "PNG request") from exc
    finally:
        if owned:
            http.close()
    return b"".join(chunks)


def render_ascii(path: str, width: int, height: int, palette: str | None = None) -> str:
    """Render the image at *path* as coloured character art.

    Transparent pixels are composited onto black and come out as spaces.
    Every visible glyph carries a 24-bit foreground colour escape; no
    dithering, background colours, mirroring or inversion are applied.
    """
    palette = palette or palette_for_width(width)
    try:
        with Image.open(path) as source:
            rgba = source.convert("RGBA")
    except (OSError, ValueError) as exc:
        raise FormatError(f"cannot decode raster image: {exc}") from exc

    background = Image.new("RGBA", rgba.size, (0, 0, 0, 255))
    rgb = Image.alpha_composite(background, rgba).convert("RGB")
    rgb = rgb.resize((width, height), Image.LANCZOS)
    pixels = rgb.load()

    steps = len(palette) - 1
    lines = []
    for y in range(height):
        parts = []
        colored = False
        for x in range(width):
            r, g, b = pixels[x, y]
            lum = (299 * r + 587 * g + 114 * b) // 1000
            ch = palette[lum * steps // 255]
            if ch == " ":
                parts.append(ch)
            else:
                parts.append(f"\033[38;2;{r};{g};{b}m{ch}")
                colored = True
        line = "".join(parts).rstrip()
        if colored:
            line += ANSI_RESET
        lines.append(line)

    # Drop blank rows around the art but keep each row's left alignment.
    return "\n".join(lines).strip("\n")


def convert_svg_to_ascii(
    svg_url: str,
    size: AvatarSize,
    *,
    client: httpx.Client | None = None,
    timeout: float = DEFAULT_TIMEOUT,
) -> str:
    """Fetch the PNG rendition of *svg_url* and convert it to character art.

    Raises:
        TransportError / UpstreamError: If the PNG cannot be downloaded.
        FormatError: If the download is too large or not a decodable image.
        EmptyResultError: If the rendered art is blank.
    """
    if not svg_url:
        raise FormatError("empty SVG URL")

    png_url = raster_url(svg_url, size.svg_size)
    logger.debug("Fetching avatar PNG from %s", png_url)
    png_data = fetch_raster(png_url, client=client, timeout=timeout)

    fd, tmp_path = tempfile.mkstemp(prefix="avatar_", suffix=".png")
    try:
        with os.fdopen(fd, "wb") as fh:
            fh.write(png_data)
        art = render_ascii(tmp_path, size.ascii_width, size.ascii_height)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass

    if not art.strip():
        raise EmptyResultError("conversion resulted in empty ASCII art")
    return art
