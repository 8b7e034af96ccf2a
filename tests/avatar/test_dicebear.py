"""Tests for the DiceBear client."""

from __future__ import annotations

import httpx
import pytest

from termonaut.avatar.dicebear import (
    DiceBearClient,
    classify_transport_error,
    is_style_supported,
    list_supported_styles,
    style_info,
)
from termonaut.avatar.errors import (
    FormatError,
    InvalidStyleError,
    NetworkErrorKind,
    TransportError,
    UpstreamError,
)
from termonaut.avatar.policy import DiceBearParams


def _query(url: str) -> dict[str, str]:
    return dict(httpx.URL(url).params)


# ---------------------------------------------------------------------------
# URL building
# ---------------------------------------------------------------------------


class TestBuildURL:
    def test_seed_and_size(self):
        client = DiceBearClient()
        url = client.build_url("pixel-art", DiceBearParams(seed="alice:7:1", size=64))
        assert url.startswith("https://api.dicebear.com/9.x/pixel-art/svg?")
        assert _query(url) == {"seed": "alice:7:1", "size": "64"}

    def test_optional_parameters(self):
        client = DiceBearClient(base_url="https://example.test/api/")
        params = DiceBearParams(
            seed="s",
            hair_color=["65c9ff"],
            flip=True,
            rotate=10,
            scale=120,
            radius=15,
            translate_x=3,
            translate_y=2,
        )
        url = client.build_url("pixel-art", params)
        assert url.startswith("https://example.test/api/pixel-art/svg?")
        assert _query(url) == {
            "seed": "s",
            "hairColor": "65c9ff",
            "flip": "true",
            "rotate": "10",
            "scale": "120",
            "radius": "15",
            "translateX": "3",
            "translateY": "2",
        }

    def test_hair_colour_only_for_pixel_art(self):
        url = DiceBearClient().build_url("bottts", DiceBearParams(seed="s", hair_color=["65c9ff"]))
        assert "hairColor" not in _query(url)

    def test_zero_values_omitted(self):
        url = DiceBearClient().build_url("bottts", DiceBearParams(seed="s"))
        assert _query(url) == {"seed": "s"}

    def test_empty_style_rejected(self):
        with pytest.raises(InvalidStyleError):
            DiceBearClient().build_url("", DiceBearParams(seed="s"))

    def test_is_pure(self):
        client = DiceBearClient()
        params = DiceBearParams(seed="s", size=64, rotate=4)
        assert client.build_url("bottts", params) == client.build_url("bottts", params)


# ---------------------------------------------------------------------------
# Fetching
# ---------------------------------------------------------------------------


class TestFetchSVG:
    def test_returns_svg_bytes(self, dicebear, fake_dicebear):
        data = dicebear.fetch_svg("pixel-art", DiceBearParams(seed="alice", size=64))
        assert b"<svg" in data
        assert len(fake_dicebear.requests) == 1
        assert fake_dicebear.requests[0].url.path == "/9.x/pixel-art/svg"

    def test_non_200_is_upstream_error(self, dicebear, fake_dicebear):
        fake_dicebear.status_code = 503
        with pytest.raises(UpstreamError) as excinfo:
            dicebear.fetch_svg("pixel-art", DiceBearParams(seed="alice"))
        assert excinfo.value.status_code == 503

    def test_non_svg_body_is_format_error(self, dicebear, fake_dicebear):
        fake_dicebear.svg = b"<html>not an avatar</html>"
        with pytest.raises(FormatError):
            dicebear.fetch_svg("pixel-art", DiceBearParams(seed="alice"))

    def test_connect_failure_is_transport_error(self, dicebear, fake_dicebear):
        fake_dicebear.error = httpx.ConnectError("[Errno 111] Connection refused")
        with pytest.raises(TransportError) as excinfo:
            dicebear.fetch_svg("pixel-art", DiceBearParams(seed="alice"))
        assert excinfo.value.kind is NetworkErrorKind.CONNECTION_REFUSED

    def test_timeout_is_transport_error(self, dicebear, fake_dicebear):
        fake_dicebear.error = httpx.ReadTimeout("timed out")
        with pytest.raises(TransportError) as excinfo:
            dicebear.fetch_svg("pixel-art", DiceBearParams(seed="alice"))
        assert excinfo.value.kind is NetworkErrorKind.TIMEOUT

    def test_test_connection(self, dicebear, fake_dicebear):
        dicebear.test_connection()
        assert _query(str(fake_dicebear.requests[0].url)) == {"seed": "test", "size": "32"}


class TestClassifyTransportError:
    @pytest.mark.parametrize(
        ("exc", "kind"),
        [
            (httpx.ConnectError("[Errno -2] Name or service not known"), NetworkErrorKind.DNS),
            (httpx.ConnectError("[Errno -3] Temporary failure in name resolution"), NetworkErrorKind.DNS),
            (httpx.ConnectError("[Errno 111] Connection refused"), NetworkErrorKind.CONNECTION_REFUSED),
            (httpx.ConnectError("[Errno 101] Network is unreachable"), NetworkErrorKind.UNREACHABLE),
            (httpx.ConnectError("something else"), NetworkErrorKind.CONNECT),
            (httpx.ConnectTimeout("slow"), NetworkErrorKind.TIMEOUT),
            (httpx.ReadError("reset"), NetworkErrorKind.CONNECT),
            (httpx.RemoteProtocolError("bad frame"), NetworkErrorKind.PROTOCOL),
        ],
    )
    def test_kinds(self, exc, kind):
        assert classify_transport_error(exc) is kind


# ---------------------------------------------------------------------------
# Styles
# ---------------------------------------------------------------------------


class TestStyles:
    def test_supported_styles(self):
        styles = list_supported_styles()
        assert "pixel-art" in styles
        assert len(styles) == 20
        assert is_style_supported("bottts")
        assert not is_style_supported("watercolour")
        assert not is_style_supported("")

    def test_style_info(self):
        assert style_info("pixel-art").recommended
        unknown = style_info("rings")
        assert unknown.name == "rings"
        assert unknown.description == "Avatar style"

    def test_client_passthroughs(self):
        client = DiceBearClient()
        assert client.list_supported_styles() == list_supported_styles()
        assert client.is_style_supported("thumbs")
