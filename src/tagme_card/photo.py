"""Photo cache: inline base64 JPEG first, remote URL second.

Uploading a new photo writes both representations so that exporting a
card never has to go back to the network.
"""
from __future__ import annotations

import base64
import io
import logging
import time
from dataclasses import dataclass
from typing import Callable

import httpx
from PIL import Image

from .model import CardDocument, CardState
from .stores import ObjectStore, StoreError

logger = logging.getLogger(__name__)

_JPEG_MAGIC = b"\xff\xd8\xff"
JPEG_QUALITY = 85


# ── Encoding ───────────────────────────────────────────────────────────────────

def ensure_jpeg(data: bytes) -> bytes:
    """Return `data` as JPEG bytes, converting other image formats with Pillow.

    Raises OSError (PIL.UnidentifiedImageError) when `data` is not an image
    and Image.DecompressionBombError when it is too large to decode.
    """
    if data.startswith(_JPEG_MAGIC):
        return data
    with Image.open(io.BytesIO(data)) as img:
        out = io.BytesIO()
        img.convert("RGB").save(out, format="JPEG", quality=JPEG_QUALITY)
    return out.getvalue()


def encode_photo(data: bytes) -> str:
    return base64.b64encode(ensure_jpeg(data)).decode("ascii")


def sniff_content_type(data: bytes) -> str:
    if data.startswith(_JPEG_MAGIC):
        return "image/jpeg"
    try:
        with Image.open(io.BytesIO(data)) as img:
            return img.get_format_mimetype() or "application/octet-stream"
    except (OSError, ValueError, Image.DecompressionBombError):
        return "application/octet-stream"


# ── Export side ────────────────────────────────────────────────────────────────

async def resolve_photo_bytes(
    doc: CardDocument,
    client: httpx.AsyncClient | None = None,
    timeout: float = 10.0,
) -> str | None:
    """Best available base64 JPEG payload for `doc`, or None.

    A stored ``photo_b64`` is returned as is, without touching the network.
    Otherwise ``photo_url`` is fetched; any failure means "no photo".
    """
    if doc.photo_b64:
        return doc.photo_b64
    if not doc.photo_url:
        return None

    own_client = client is None
    if own_client:
        client = httpx.AsyncClient(timeout=timeout, follow_redirects=True)
    try:
        response = await client.get(doc.photo_url)
        response.raise_for_status()
        return encode_photo(response.content)
    except (httpx.HTTPError, httpx.InvalidURL, OSError, ValueError, Image.DecompressionBombError) as e:
        logger.warning("Unable to embed photo for card %s from %s: %s", doc.id, doc.photo_url, e)
        return None
    finally:
        if own_client:
            await client.aclose()


# ── Editor side ────────────────────────────────────────────────────────────────

class UploadClock:
    """Millisecond timestamps that strictly increase per card id."""

    def __init__(self, now: Callable[[], int] | None = None):
        self._now = now or (lambda: time.time_ns() // 1_000_000)
        self._last: dict[str, int] = {}

    def next(self, card_id: str) -> int:
        ts = self._now()
        last = self._last.get(card_id)
        if last is not None and ts <= last:
            ts = last + 1
        self._last[card_id] = ts
        return ts


_default_clock = UploadClock()


def photo_object_name(card_id: str, timestamp_ms: int) -> str:
    return f"{card_id}_photo_{timestamp_ms}"


@dataclass
class PhotoUploadResult:
    object_name: str
    photo_url: str | None = None
    photo_b64: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.photo_url is not None and self.photo_b64 is not None


async def upload_photo(
    state: CardState,
    store: ObjectStore,
    data: bytes,
    clock: UploadClock | None = None,
) -> PhotoUploadResult:
    """Upload a newly selected image, then cache it inline as base64.

    Nothing is written into the document until both steps have finished.
    A failed step leaves its field as it was, except that a stale inline
    copy is dropped when only the upload succeeded, so the new URL wins.
    """
    clock = clock or _default_clock
    name = photo_object_name(state.card_id, clock.next(state.card_id))
    result = PhotoUploadResult(object_name=name)
    errors: list[str] = []

    try:
        await store.upload(name, data, content_type=sniff_content_type(data))
        result.photo_url = store.public_url(name)
    except StoreError as e:
        logger.error("Photo upload failed for card %s: %s", state.card_id, e)
        errors.append(f"upload failed: {e}")

    try:
        result.photo_b64 = encode_photo(data)
    except (OSError, ValueError, Image.DecompressionBombError) as e:
        logger.error("Photo encoding failed for card %s: %s", state.card_id, e)
        errors.append(f"encoding failed: {e}")

    if result.photo_url is not None and result.photo_b64 is None:
        state.set_photo(photo_url=result.photo_url, photo_b64="")
    else:
        state.set_photo(photo_url=result.photo_url, photo_b64=result.photo_b64)

    if errors:
        result.error = "; ".join(errors)
    return result
