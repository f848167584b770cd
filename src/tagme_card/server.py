"""server.py — local HTTP server for the card editor and public viewer.

Uses http.server like the rest of the tooling; each request runs its store
calls on a short-lived event loop.

Routes:
  GET  /edit.html[?id=]   editor session; redirects to a fresh id when absent
  GET  /api/card?id=      public read-only card
  GET  /card.vcf?id=      vCard download
  POST /api/save          upsert the posted card record
  POST /api/photo?id=     upload raw image bytes, return both photo fields
"""
from __future__ import annotations

import asyncio
import json
import logging
import threading
from http.server import BaseHTTPRequestHandler, HTTPServer
from pathlib import Path
from urllib.parse import parse_qs, quote, urlparse

from .config import Settings
from .exporter import VCARD_MIME, encode_vcard, vcf_filename
from .model import CardState, create_default, from_record, new_card_id, to_record
from .photo import resolve_photo_bytes, upload_photo
from .report import editor_url, public_url
from .stores import StoreError, open_stores
from .sync import SyncController

logger = logging.getLogger(__name__)

PORT = 8422
MAX_UPLOAD = 10 * 1024 * 1024

_state: dict = {
    "settings": Settings(),
    "local_dir": None,   # Path for offline stores, None for Supabase
}


def _controller(stores) -> SyncController:
    settings: Settings = _state["settings"]
    return SyncController(
        stores.documents,
        country_code=settings.default_country_code,
        handle=settings.default_handle,
    )


# ── API ────────────────────────────────────────────────────────────────────────

async def _api_edit(card_id: str) -> tuple[int, dict]:
    async with open_stores(_state["settings"], _state["local_dir"]) as stores:
        sync = _controller(stores)
        card = await sync.open(card_id)
    return 200, {"card": to_record(card.doc), "state": sync.state.value}


async def _api_card(card_id: str | None) -> tuple[int, dict]:
    settings: Settings = _state["settings"]
    async with open_stores(settings, _state["local_dir"]) as stores:
        loaded = await _controller(stores).load_public(card_id)
    if loaded.doc is None:
        status = 400 if not card_id else 404 if loaded.error == "Card not found." else 502
        return status, {"error": loaded.error}
    return 200, {
        "card": to_record(loaded.doc),
        "public_url": public_url(settings.base_url, loaded.doc.id),
    }


async def _api_vcf(card_id: str | None) -> tuple[int, dict | tuple[str, bytes]]:
    settings: Settings = _state["settings"]
    async with open_stores(settings, _state["local_dir"]) as stores:
        loaded = await _controller(stores).load_public(card_id)
        if loaded.doc is None:
            status = 400 if not card_id else 404 if loaded.error == "Card not found." else 502
            return status, {"error": loaded.error}
        photo = await resolve_photo_bytes(loaded.doc, stores.client)
    body = encode_vcard(loaded.doc, photo).encode("utf-8")
    return 200, (vcf_filename(loaded.doc), body)


async def _api_save(body: dict) -> tuple[int, dict]:
    if not body.get("id"):
        return 400, {"ok": False, "message": "No card ID provided."}
    settings: Settings = _state["settings"]
    doc = from_record(body, country_code=settings.default_country_code, handle=settings.default_handle)
    async with open_stores(settings, _state["local_dir"]) as stores:
        result = await _controller(stores).save(doc)
    return (200 if result.ok else 502), {"ok": result.ok, "message": result.message}


async def _api_photo(card_id: str | None, data: bytes) -> tuple[int, dict]:
    if not card_id:
        return 400, {"ok": False, "message": "No card ID provided."}
    if not data:
        return 400, {"ok": False, "message": "No image data."}
    # the editor keeps the document; it merges these fields and saves wholesale
    card = CardState(create_default(card_id))
    async with open_stores(_state["settings"], _state["local_dir"]) as stores:
        upload = await upload_photo(card, stores.objects, data)
    return (200 if upload.ok else 502), {
        "ok": upload.ok,
        "message": upload.error or "Photo uploaded",
        "photo_url": upload.photo_url,
        "photo_b64": upload.photo_b64,
    }


def _run(coro):
    try:
        return asyncio.run(coro)
    except StoreError as e:
        logger.error("Store unavailable: %s", e)
        return 502, {"error": str(e)}


# ── Request handler ────────────────────────────────────────────────────────────

class CardHandler(BaseHTTPRequestHandler):

    def log_message(self, fmt, *args):
        logger.debug("%s - %s", self.address_string(), fmt % args)

    def _send_json(self, data: dict, status: int = 200):
        body = json.dumps(data).encode()
        self.send_response(status)
        self.send_header("Content-Type", "application/json")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def _send_vcf(self, filename: str, body: bytes):
        self.send_response(200)
        self.send_header("Content-Type", VCARD_MIME)
        self.send_header("Content-Disposition", f"attachment; filename=\"{filename}\"")
        self.send_header("Content-Length", str(len(body)))
        self.send_header("Access-Control-Allow-Origin", "*")
        self.end_headers()
        self.wfile.write(body)

    def _redirect(self, location: str):
        self.send_response(302)
        self.send_header("Location", location)
        self.send_header("Content-Length", "0")
        self.end_headers()

    def do_OPTIONS(self):
        self.send_response(200)
        self.send_header("Access-Control-Allow-Origin", "*")
        self.send_header("Access-Control-Allow-Methods", "GET, POST, OPTIONS")
        self.send_header("Access-Control-Allow-Headers", "Content-Type")
        self.end_headers()

    def do_GET(self):
        parsed = urlparse(self.path)
        path = parsed.path
        params = parse_qs(parsed.query)
        card_id = params.get("id", [""])[0].strip() or None

        if path in ("/edit", "/edit.html"):
            if card_id is None:
                # new session: move to an address that carries the id
                self._redirect(f"{path}?id={quote(new_card_id())}")
                return
            status, data = _run(_api_edit(card_id))
            self._send_json(data, status)
        elif path == "/api/card":
            status, data = _run(_api_card(card_id))
            self._send_json(data, status)
        elif path == "/card.vcf":
            status, data = _run(_api_vcf(card_id))
            if status == 200:
                self._send_vcf(*data)
            else:
                self._send_json(data, status)
        else:
            self._send_json({"error": "Not found"}, 404)

    def do_POST(self):
        parsed = urlparse(self.path)
        params = parse_qs(parsed.query)
        card_id = params.get("id", [""])[0].strip() or None

        length = int(self.headers.get("Content-Length", 0))
        if length > MAX_UPLOAD:
            self._send_json({"error": "Request too large"}, 413)
            return
        body_raw = self.rfile.read(length)

        if parsed.path == "/api/save":
            try:
                body = json.loads(body_raw) if body_raw else {}
            except ValueError:
                self._send_json({"ok": False, "message": "Malformed JSON"}, 400)
                return
            if not isinstance(body, dict):
                self._send_json({"ok": False, "message": "Expected a card object"}, 400)
                return
            status, data = _run(_api_save(body))
            self._send_json(data, status)
        elif parsed.path == "/api/photo":
            status, data = _run(_api_photo(card_id, body_raw))
            self._send_json(data, status)
        else:
            self._send_json({"error": "Not found"}, 404)


# ── Entry point ────────────────────────────────────────────────────────────────

class _Server(HTTPServer):
    allow_reuse_address = True


def make_server(
    settings: Settings,
    local_dir: Path | None = None,
    host: str = "127.0.0.1",
    port: int = PORT,
) -> HTTPServer:
    _state["settings"] = settings
    _state["local_dir"] = local_dir
    return _Server((host, port), CardHandler)


def serve_in_thread(server: HTTPServer) -> threading.Thread:
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    return thread


def main(settings: Settings | None = None, local_dir: Path | None = None, port: int = PORT):
    settings = settings or Settings()
    server = make_server(settings, local_dir, port=port)
    host, bound = server.server_address[:2]
    base = f"http://{host}:{bound}"
    logger.info("Serving cards at %s", base)
    print(f"\n  {editor_url(base, '<id>')}")
    print(f"  {public_url(base, '<id>')}\n")
    print("  Press Ctrl-C to stop\n")
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print("\n  Bye.\n")
    finally:
        server.server_close()
