"""
Image reference helpers: data URLs, remote downloads and upload verification.
"""
import asyncio
import base64
import binascii
import logging
from io import BytesIO
from typing import Tuple

import requests
from PIL import Image, UnidentifiedImageError

logger = logging.getLogger(__name__)

DEFAULT_MIME_TYPE = "image/jpeg"


def to_data_url(content: bytes, mime_type: str) -> str:
    """Embed raw image bytes as a base64 data URL."""
    encoded = base64.b64encode(content).decode("ascii")
    return f"data:{mime_type};base64,{encoded}"


def parse_data_url(url: str) -> Tuple[str, bytes]:
    """
    Split a base64 data URL into (mime_type, raw bytes).

    Raises ValueError for anything that is not a base64 data URL.
    """
    if not url.startswith("data:"):
        raise ValueError("Not a data URL")
    header, sep, payload = url.partition(",")
    if not sep:
        raise ValueError("Malformed data URL: missing ',' separator")
    if not header.endswith(";base64"):
        raise ValueError("Only base64 data URLs are supported")

    mime_type = header[len("data:"):-len(";base64")] or DEFAULT_MIME_TYPE
    try:
        data = base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"Malformed base64 payload: {e}") from e
    return mime_type, data


def _download(url: str, timeout: float) -> Tuple[str, bytes]:
    response = requests.get(url, timeout=timeout)
    response.raise_for_status()
    content_type = response.headers.get("Content-Type", "")
    mime_type = content_type.split(";")[0].strip()
    if not mime_type.startswith("image/"):
        mime_type = DEFAULT_MIME_TYPE
    return mime_type, response.content


async def load_image(url: str, timeout: float = 15.0) -> Tuple[str, bytes]:
    """
    Resolve an image reference (data URL or http(s) URL) to (mime_type, bytes).

    Remote downloads run in a worker thread so the event loop keeps serving
    the other calls of a batch.
    """
    if url.startswith("data:"):
        return parse_data_url(url)
    if url.startswith(("http://", "https://")):
        logger.debug(f"[IMAGE] Downloading {url[:120]}")
        return await asyncio.to_thread(_download, url, timeout)
    raise ValueError(f"Unsupported image reference: {url[:60]}")


def verify_image_bytes(content: bytes) -> str:
    """
    Check that bytes decode as an image. Returns the Pillow format name.

    Raises ValueError when the content is not a readable image.
    """
    try:
        with Image.open(BytesIO(content)) as img:
            img.verify()
            return img.format or "UNKNOWN"
    except (UnidentifiedImageError, OSError, SyntaxError) as e:
        raise ValueError(f"Invalid image file: {e}") from e
