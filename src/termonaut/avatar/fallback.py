"""Offline avatar synthesis used when DiceBear cannot be reached.

Pure string building: no network, no image libraries, constant time.
"""

from __future__ import annotations

from xml.sax.saxutils import escape

from termonaut.avatar.models import FALLBACK_SUFFIX, Avatar, AvatarRequest, utcnow
from termonaut.avatar.policy import username_sum

_SVG_TEMPLATE = """<svg width="{size}" height="{size}" xmlns="http://www.w3.org/2000/svg">
  <defs>
    <linearGradient id="grad" x1="0%" y1="0%" x2="100%" y2="100%">
      <stop offset="0%" style="stop-color:hsl({hue},{sat}%,{light}%);stop-opacity:1" />
      <stop offset="100%" style="stop-color:hsl({hue2},{sat2}%,{light2}%);stop-opacity:1" />
    </linearGradient>
  </defs>
  <circle cx="{half}" cy="{half}" r="{radius}" fill="url(#grad)" />
  <text x="{half}" y="{initial_y}" font-family="monospace" font-size="{initial_font}" text-anchor="middle" fill="white">{initial}</text>
  <text x="{half}" y="{level_y}" font-family="monospace" font-size="{level_font}" text-anchor="middle" fill="white">Lv{level}</text>
</svg>"""


def _initial(username: str) -> str:
    return username[0] if username else "?"


def fallback_svg(request: AvatarRequest) -> str:
    """Gradient circle coloured by username and level, labelled with the initial."""
    size = request.size.svg_size
    level = request.level
    hue = (username_sum(request.username) + level * 30) % 360
    sat = 60 + level % 40
    light = 40 + level % 30
    half = size // 2
    return _SVG_TEMPLATE.format(
        size=size,
        hue=hue,
        sat=sat,
        light=light,
        hue2=(hue + 60) % 360,
        sat2=sat - 10,
        light2=light + 10,
        half=half,
        radius=max(half - 5, 1),
        initial_y=half - 5,
        initial_font=max(size // 8, 1),
        initial=escape(_initial(request.username)),
        level_y=half + 15,
        level_font=max(size // 12, 1),
        level=level,
    )


def fallback_ascii(request: AvatarRequest) -> str:
    """A bordered box with the user's initial and level, sized to the request."""
    width = request.size.ascii_width
    height = request.size.ascii_height
    initial = _initial(request.username)

    if width < 10 or height < 5:
        return f"[{initial}{request.level}]"

    inner = width - 2
    content = f"{initial} Lv{request.level}"[:inner]
    padding = max((inner - len(content)) // 2, 0)
    right = max(inner - padding - len(content), 0)

    lines = ["=" * width]
    lines.extend("|" + " " * inner + "|" for _ in range(1, height - 3))
    lines.append("|" + " " * padding + content + " " * right + "|")
    lines.append("=" * width)
    return "\n".join(lines)


def fallback_avatar(request: AvatarRequest, seed: str, fingerprint: str) -> Avatar:
    """Complete offline avatar; its style carries the ``-fallback`` suffix."""
    return Avatar(
        username=request.username,
        level=request.level,
        style=request.style + FALLBACK_SUFFIX,
        size=request.size,
        svg_data=fallback_svg(request).encode("utf-8"),
        ascii_art=fallback_ascii(request),
        seed=seed,
        fingerprint=fingerprint,
        generated_at=utcnow(),
    )
