import base64
import binascii
import re
from dataclasses import dataclass
from urllib.parse import unquote

import requests

from sceneboard.errors import AssetError

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^;,]*)*?)(?P<b64>;base64)?,(?P<data>.*)$", re.DOTALL)


@dataclass
class Asset:
    content: bytes
    content_type: str

    @property
    def is_image(self) -> bool:
        return self.content_type.startswith("image/")


def is_data_url(url: str) -> bool:
    return isinstance(url, str) and url.startswith("data:")


def encode_data_url(content: bytes, content_type: str) -> str:
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{content_type};base64,{encoded}"


def decode_data_url(url: str) -> Asset:
    match = _DATA_URL_RE.match(url or "")
    if not match:
        raise AssetError("Malformed data URL")
    content_type = match.group("mime") or "text/plain"
    data = match.group("data")
    if match.group("b64"):
        try:
            content = base64.b64decode(data, validate=True)
        except (binascii.Error, ValueError) as exc:
            raise AssetError(f"Could not decode inline asset: {exc}") from exc
    else:
        content = unquote(data).encode("utf-8")
    return Asset(content=content, content_type=content_type.lower())


def download_asset(url: str, timeout_sec: int = 60) -> Asset:
    try:
        resp = requests.get(url, timeout=timeout_sec)
    except requests.RequestException as exc:
        raise AssetError(f"Download failed: {exc}") from exc
    if resp.status_code != 200:
        raise AssetError(f"Download failed: {resp.status_code} {resp.text[:200]}")
    content_type = (resp.headers.get("content-type") or "application/octet-stream").split(";")[0].strip()
    return Asset(content=resp.content, content_type=content_type.lower())


def fetch_asset(url: str, timeout_sec: int = 60) -> Asset:
    """Inline data URLs are decoded locally; anything else goes over the network."""
    if not url:
        raise AssetError("No asset URL")
    if is_data_url(url):
        return decode_data_url(url)
    return download_asset(url, timeout_sec=timeout_sec)
