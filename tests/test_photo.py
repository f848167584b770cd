"""Photo cache: resolving for export, uploading from the editor."""
from __future__ import annotations

import asyncio
import base64
import io

import httpx
from PIL import Image

from tagme_card.exporter import encode_vcard
from tagme_card.model import CardDocument, CardState, create_default
from tagme_card.photo import (
    UploadClock,
    ensure_jpeg,
    photo_object_name,
    resolve_photo_bytes,
    upload_photo,
)
from tagme_card.stores import InMemoryObjectStore, StoreError


def _image_bytes(fmt: str = "JPEG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (4, 4), (200, 30, 30)).save(buf, format=fmt)
    return buf.getvalue()


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class FailingObjectStore(InMemoryObjectStore):
    async def upload(self, name, data, content_type="image/jpeg"):
        raise StoreError("bucket unavailable", status_code=503)


# ── Resolve ────────────────────────────────────────────────────────────────────

def test_inline_photo_wins_without_fetch():
    calls: list[httpx.Request] = []

    def handler(request):
        calls.append(request)
        return httpx.Response(200, content=_image_bytes())

    doc = CardDocument(id="abc", photo_b64="aGVsbG8=", photo_url="http://photos/x.jpg")

    async def go():
        async with _client(handler) as client:
            return await resolve_photo_bytes(doc, client)

    photo = asyncio.run(go())
    assert photo == "aGVsbG8="
    assert calls == []
    assert "PHOTO;ENCODING=b;TYPE=JPEG:aGVsbG8=" in encode_vcard(doc, photo)


def test_fetches_url_when_no_inline_copy():
    jpeg = _image_bytes()

    async def go():
        async with _client(lambda request: httpx.Response(200, content=jpeg)) as client:
            return await resolve_photo_bytes(CardDocument(id="abc", photo_url="http://p/x"), client)

    assert asyncio.run(go()) == base64.b64encode(jpeg).decode("ascii")


def test_fetched_png_is_converted_to_jpeg():
    png = _image_bytes("PNG")

    async def go():
        async with _client(lambda request: httpx.Response(200, content=png)) as client:
            return await resolve_photo_bytes(CardDocument(id="abc", photo_url="http://p/x.png"), client)

    data = base64.b64decode(asyncio.run(go()))
    assert data.startswith(b"\xff\xd8\xff")


def test_fetch_failure_means_no_photo(caplog):
    doc = CardDocument(id="abc", full_name="Jane", photo_url="http://p/missing.jpg")

    async def go():
        async with _client(lambda request: httpx.Response(404)) as client:
            return await resolve_photo_bytes(doc, client)

    with caplog.at_level("WARNING"):
        photo = asyncio.run(go())
    assert photo is None
    assert "Unable to embed photo" in caplog.text
    text = encode_vcard(doc, photo)
    assert "PHOTO" not in text
    assert text.endswith("END:VCARD")


def test_transport_error_means_no_photo():
    def handler(request):
        raise httpx.ConnectError("offline", request=request)

    async def go():
        async with _client(handler) as client:
            return await resolve_photo_bytes(CardDocument(id="abc", photo_url="http://p/x"), client)

    assert asyncio.run(go()) is None


def test_undecodable_body_means_no_photo():
    async def go():
        async with _client(lambda request: httpx.Response(200, content=b"<html>")) as client:
            return await resolve_photo_bytes(CardDocument(id="abc", photo_url="http://p/x"), client)

    assert asyncio.run(go()) is None


def test_malformed_url_means_no_photo(caplog):
    doc = CardDocument(id="abc", full_name="Jane", photo_url="http://exa mple.com/\x00x.jpg")

    async def go():
        async with _client(lambda request: httpx.Response(200, content=_image_bytes())) as client:
            return await resolve_photo_bytes(doc, client)

    with caplog.at_level("WARNING"):
        photo = asyncio.run(go())
    assert photo is None
    assert "Unable to embed photo" in caplog.text
    assert encode_vcard(doc, photo).endswith("END:VCARD")


def test_oversized_image_means_no_photo(monkeypatch):
    png = _image_bytes("PNG")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)

    async def go():
        async with _client(lambda request: httpx.Response(200, content=png)) as client:
            return await resolve_photo_bytes(CardDocument(id="abc", photo_url="http://p/big.png"), client)

    assert asyncio.run(go()) is None


def test_no_photo_fields():
    assert asyncio.run(resolve_photo_bytes(CardDocument(id="abc"))) is None


# ── Upload ─────────────────────────────────────────────────────────────────────

def test_ensure_jpeg_passthrough():
    jpeg = _image_bytes()
    assert ensure_jpeg(jpeg) is jpeg


def test_upload_clock_strictly_increases():
    clock = UploadClock(now=lambda: 1000)
    assert [clock.next("abc") for _ in range(3)] == [1000, 1001, 1002]
    assert clock.next("xyz") == 1000


def test_photo_object_name():
    assert photo_object_name("abc", 1700000000000) == "abc_photo_1700000000000"


def test_upload_writes_both_representations():
    jpeg = _image_bytes()
    store = InMemoryObjectStore(base_url="https://cdn/profile-photos")
    state = CardState(create_default("abc"))

    result = asyncio.run(upload_photo(state, store, jpeg, clock=UploadClock(now=lambda: 42)))

    assert result.ok
    assert result.object_name == "abc_photo_42"
    assert store.objects["abc_photo_42"] == jpeg
    assert state.doc.photo_url == "https://cdn/profile-photos/abc_photo_42"
    assert state.doc.photo_b64 == base64.b64encode(jpeg).decode("ascii")


def test_repeated_uploads_get_distinct_names():
    store = InMemoryObjectStore()
    state = CardState(create_default("abc"))
    clock = UploadClock(now=lambda: 7)

    async def go():
        await upload_photo(state, store, _image_bytes(), clock=clock)
        await upload_photo(state, store, _image_bytes(), clock=clock)

    asyncio.run(go())
    assert sorted(store.objects) == ["abc_photo_7", "abc_photo_8"]


def test_failed_upload_keeps_old_url():
    jpeg = _image_bytes()
    state = CardState(CardDocument(id="abc", photo_url="https://cdn/old.jpg", photo_b64="b2xk"))

    result = asyncio.run(upload_photo(state, FailingObjectStore(), jpeg))

    assert not result.ok
    assert "upload failed" in result.error
    assert state.doc.photo_url == "https://cdn/old.jpg"
    assert state.doc.photo_b64 == base64.b64encode(jpeg).decode("ascii")


def test_unreadable_image_keeps_fields_except_stale_inline_copy():
    store = InMemoryObjectStore(base_url="https://cdn")
    state = CardState(CardDocument(id="abc", photo_url="https://cdn/old.jpg", photo_b64="b2xk"))

    result = asyncio.run(upload_photo(state, store, b"not an image", clock=UploadClock(now=lambda: 1)))

    assert not result.ok
    assert "encoding failed" in result.error
    assert state.doc.photo_url == "https://cdn/abc_photo_1"
    assert state.doc.photo_b64 == ""


def test_total_failure_leaves_document_untouched():
    state = CardState(CardDocument(id="abc", photo_url="https://cdn/old.jpg", photo_b64="b2xk"))

    result = asyncio.run(upload_photo(state, FailingObjectStore(), b"not an image"))

    assert result.photo_url is None and result.photo_b64 is None
    assert state.doc.photo_url == "https://cdn/old.jpg"
    assert state.doc.photo_b64 == "b2xk"


def test_oversized_upload_keeps_url_only(monkeypatch):
    png = _image_bytes("PNG")
    monkeypatch.setattr(Image, "MAX_IMAGE_PIXELS", 4)
    store = InMemoryObjectStore(base_url="https://cdn")
    state = CardState(CardDocument(id="abc", photo_b64="b2xk"))

    result = asyncio.run(upload_photo(state, store, png, clock=UploadClock(now=lambda: 3)))

    assert "encoding failed" in result.error
    assert store.objects["abc_photo_3"] == png
    assert state.doc.photo_url == "https://cdn/abc_photo_3"
    assert state.doc.photo_b64 == ""
