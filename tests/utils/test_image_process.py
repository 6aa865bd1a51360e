import base64
from unittest.mock import MagicMock, patch

import pytest

from sceneboard.errors import AssetError
from sceneboard.utils.image_process import (
    decode_data_url,
    download_asset,
    encode_data_url,
    fetch_asset,
    is_data_url,
)


def test_encode_and_decode_data_url():
    url = encode_data_url(b"\x89PNG\r\n\x1a\n", "image/png")
    assert url.startswith("data:image/png;base64,")
    asset = decode_data_url(url)
    assert asset.content == b"\x89PNG\r\n\x1a\n"
    assert asset.content_type == "image/png"
    assert asset.is_image


def test_decode_data_url_with_extra_params():
    payload = base64.b64encode(b"abc").decode()
    asset = decode_data_url(f"data:image/webp;name=scene.webp;base64,{payload}")
    assert asset.content == b"abc"
    assert asset.content_type == "image/webp"


def test_decode_data_url_rejects_garbage():
    with pytest.raises(AssetError):
        decode_data_url("data:image/png;base64,@@not-base64@@")
    with pytest.raises(AssetError):
        decode_data_url("https://example.com/a.png")


def test_is_data_url():
    assert is_data_url("data:image/webp;base64,AAAA")
    assert not is_data_url("https://example.com/a.webp")
    assert not is_data_url(None)


def test_fetch_asset_does_not_hit_network_for_data_urls():
    url = encode_data_url(b"img", "image/webp")
    with patch("sceneboard.utils.image_process.requests.get") as get:
        asset = fetch_asset(url)
    get.assert_not_called()
    assert asset.content == b"img"


def test_download_asset_reads_content_type():
    resp = MagicMock()
    resp.status_code = 200
    resp.content = b"<html></html>"
    resp.headers = {"content-type": "text/html; charset=utf-8"}
    with patch("sceneboard.utils.image_process.requests.get", return_value=resp):
        asset = download_asset("https://example.com/page")
    assert asset.content_type == "text/html"
    assert not asset.is_image


def test_download_asset_raises_on_error_status():
    resp = MagicMock()
    resp.status_code = 404
    resp.text = "not found"
    with patch("sceneboard.utils.image_process.requests.get", return_value=resp):
        with pytest.raises(AssetError):
            download_asset("https://example.com/missing.webp")


def test_fetch_asset_requires_url():
    with pytest.raises(AssetError):
        fetch_asset("")
