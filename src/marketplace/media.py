"""Image attachments as base64 data URLs."""

from __future__ import annotations

import base64
import re

SUPPORTED_MEDIA_TYPES = {"image/jpeg", "image/png", "image/gif", "image/webp"}

MAX_IMAGE_SIZE = 5 * 1024 * 1024  # 5 MB

_DATA_URL_RE = re.compile(r"^data:(?P<media_type>[\w.+-]+/[\w.+-]+);base64,(?P<data>.+)$", re.S)


def encode_image(data: bytes, media_type: str = "image/jpeg") -> str:
    """Encode raw image bytes as a data URL.

    Raises ValueError for unsupported types or oversized images.
    """
    if media_type not in SUPPORTED_MEDIA_TYPES:
        msg = (
            f"Unsupported image type: {media_type}. "
            f"Supported: {', '.join(sorted(SUPPORTED_MEDIA_TYPES))}"
        )
        raise ValueError(msg)
    if len(data) > MAX_IMAGE_SIZE:
        msg = f"Image too large: {len(data)} bytes (max {MAX_IMAGE_SIZE})"
        raise ValueError(msg)
    return f"data:{media_type};base64,{base64.b64encode(data).decode()}"


def split_data_url(url: str) -> tuple[str, str]:
    """Return ``(media_type, base64_payload)`` for a data URL.

    Raises ValueError if *url* is not a base64 data URL.
    """
    match = _DATA_URL_RE.match(url)
    if not match:
        msg = "Not a base64 data URL"
        raise ValueError(msg)
    return match.group("media_type"), match.group("data")
