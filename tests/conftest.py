"""Shared test fixtures for Termonaut avatar tests."""

from __future__ import annotations

import io
from pathlib import Path

import httpx
import pytest
from PIL import Image, ImageDraw

from termonaut.avatar.cache import AvatarCache
from termonaut.avatar.config import AvatarConfig
from termonaut.avatar.dicebear import DiceBearClient
from termonaut.avatar.manager import AvatarManager

SVG_BODY = (
    b'<svg xmlns="http://www.w3.org/2000/svg" viewBox="0 0 16 16">'
    b'<rect width="16" height="16" fill="#65c9ff"/></svg>'
)


def make_png(size: int = 64) -> bytes:
    """A transparent PNG with a bright filled circle in the middle."""
    img = Image.new("RGBA", (size, size), (0, 0, 0, 0))
    draw = ImageDraw.Draw(img)
    draw.ellipse([size // 8, size // 8, size - size // 8, size - size // 8], fill=(240, 200, 80, 255))
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


class FakeDiceBear:
    """Request handler for ``httpx.MockTransport`` imitating DiceBear.

    Records every request; ``error`` makes every request raise it instead.
    """

    def __init__(self) -> None:
        self.requests: list[httpx.Request] = []
        self.svg = SVG_BODY
        self.png = make_png()
        self.status_code = 200
        self.error: Exception | None = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        if self.status_code != 200:
            return httpx.Response(self.status_code, content=b"upstream broke")
        if request.url.path.endswith("/png"):
            return httpx.Response(200, content=self.png, headers={"content-type": "image/png"})
        return httpx.Response(200, content=self.svg, headers={"content-type": "image/svg+xml"})

    def paths(self, suffix: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path.endswith(suffix)]


@pytest.fixture(autouse=True)
def termonaut_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Isolate TERMONAUT_HOME and drop any avatar env overrides."""
    home = tmp_path / "termonaut_home"
    home.mkdir()
    monkeypatch.setenv("TERMONAUT_HOME", str(home))
    for var in (
        "TERMONAUT_AVATAR_CACHE_DIR",
        "TERMONAUT_AVATAR_CACHE_TTL",
        "TERMONAUT_AVATAR_TIMEOUT",
        "TERMONAUT_AVATAR_API_URL",
        "TERMONAUT_AVATAR_STYLE",
        "TERMONAUT_AVATAR_SIZE",
        "TERMONAUT_AVATAR_MAX_CACHE_BYTES",
    ):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture()
def png_bytes() -> bytes:
    return make_png()


@pytest.fixture()
def fake_dicebear() -> FakeDiceBear:
    return FakeDiceBear()


@pytest.fixture()
def dicebear(fake_dicebear: FakeDiceBear) -> DiceBearClient:
    client = httpx.Client(transport=httpx.MockTransport(fake_dicebear))
    yield DiceBearClient(base_url="https://dicebear.test/9.x", client=client)
    client.close()


@pytest.fixture()
def cache(tmp_path: Path) -> AvatarCache:
    return AvatarCache(tmp_path / "avatars", sweep_on_start=False)


@pytest.fixture()
def manager(dicebear: DiceBearClient, cache: AvatarCache) -> AvatarManager:
    return AvatarManager(AvatarConfig(cache_dir=cache.cache_dir), dicebear=dicebear, cache=cache)
