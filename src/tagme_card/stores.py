"""Remote collaborators: the card document store and the photo object store.

Both are async. Not-found is a ``None`` return; every other failure is a
``StoreError`` so callers can decide between "use defaults" and "tell the user".
"""
from __future__ import annotations

import json
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Protocol
from urllib.parse import quote

import httpx

from .config import Settings

logger = logging.getLogger(__name__)


class StoreError(Exception):
    """Raised when a remote read, write or upload fails."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


# ── Ports ──────────────────────────────────────────────────────────────────────

class DocumentStore(Protocol):
    async def get(self, card_id: str) -> dict[str, Any] | None:
        """Return the stored record for `card_id`, or None if there is none."""
        ...

    async def upsert(self, record: dict[str, Any]) -> None:
        """Create or replace the record keyed by record["id"]."""
        ...


class ObjectStore(Protocol):
    async def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> None:
        ...

    def public_url(self, name: str) -> str:
        ...


# ── In-memory ──────────────────────────────────────────────────────────────────

class InMemoryDocumentStore:
    """Dict-backed store; one record per id."""

    def __init__(self, records: dict[str, dict[str, Any]] | None = None):
        self.records: dict[str, dict[str, Any]] = dict(records or {})
        self.creates = 0
        self.replaces = 0

    async def get(self, card_id: str) -> dict[str, Any] | None:
        record = self.records.get(card_id)
        return json.loads(json.dumps(record)) if record is not None else None

    async def upsert(self, record: dict[str, Any]) -> None:
        card_id = record.get("id")
        if not card_id:
            raise StoreError("record has no id")
        if card_id in self.records:
            self.replaces += 1
        else:
            self.creates += 1
        self.records[card_id] = json.loads(json.dumps(record))


class InMemoryObjectStore:
    def __init__(self, base_url: str = "memory://profile-photos"):
        self.base_url = base_url.rstrip("/")
        self.objects: dict[str, bytes] = {}

    async def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> None:
        self.objects[name] = bytes(data)

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/{name}"


# ── Local directory ────────────────────────────────────────────────────────────

class JsonDirDocumentStore:
    """One ``<id>.json`` file per card, for offline use."""

    def __init__(self, root: Path):
        self.root = Path(root)

    def _path(self, card_id: str) -> Path:
        if not card_id or "/" in card_id or "\\" in card_id or card_id.startswith("."):
            raise StoreError(f"invalid card id {card_id!r}")
        return self.root / f"{card_id}.json"

    async def get(self, card_id: str) -> dict[str, Any] | None:
        path = self._path(card_id)
        if not path.exists():
            return None
        try:
            return json.loads(path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as e:
            raise StoreError(f"cannot read {path}: {e}") from e

    async def upsert(self, record: dict[str, Any]) -> None:
        path = self._path(str(record.get("id") or ""))
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            path.write_text(json.dumps(record, indent=2, ensure_ascii=False), encoding="utf-8")
        except OSError as e:
            raise StoreError(f"cannot write {path}: {e}") from e


class LocalObjectStore:
    def __init__(self, root: Path, base_url: str | None = None):
        self.root = Path(root)
        self.base_url = (base_url or self.root.resolve().as_uri()).rstrip("/")

    async def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> None:
        try:
            self.root.mkdir(parents=True, exist_ok=True)
            (self.root / name).write_bytes(data)
        except OSError as e:
            raise StoreError(f"cannot store {name}: {e}") from e

    def public_url(self, name: str) -> str:
        return f"{self.base_url}/{quote(name)}"


# ── Supabase (PostgREST + Storage) ─────────────────────────────────────────────

class SupabaseDocumentStore:
    """Card table access through the Supabase REST endpoint."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        key: str,
        table: str = "cards",
    ):
        self.client = client
        self.url = url.rstrip("/")
        self.table = table
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
        }

    async def get(self, card_id: str) -> dict[str, Any] | None:
        try:
            response = await self.client.get(
                f"{self.url}/rest/v1/{self.table}",
                params={"id": f"eq.{card_id}", "select": "*"},
                headers=self.headers,
            )
            response.raise_for_status()
            rows = response.json()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"card lookup failed: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, ValueError) as e:
            raise StoreError(f"card lookup failed: {e}") from e

        if not rows:
            return None
        return rows[0]

    async def upsert(self, record: dict[str, Any]) -> None:
        try:
            response = await self.client.post(
                f"{self.url}/rest/v1/{self.table}",
                json=record,
                headers={
                    **self.headers,
                    "Prefer": "resolution=merge-duplicates,return=minimal",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"{e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(str(e) or type(e).__name__) from e
        logger.debug("Upserted card %s", record.get("id"))


class SupabaseObjectStore:
    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        key: str,
        bucket: str = "profile-photos",
    ):
        self.client = client
        self.url = url.rstrip("/")
        self.bucket = bucket
        self.headers = {
            "apikey": key,
            "Authorization": f"Bearer {key}",
        }

    async def upload(self, name: str, data: bytes, content_type: str = "image/jpeg") -> None:
        try:
            response = await self.client.post(
                f"{self.url}/storage/v1/object/{self.bucket}/{quote(name)}",
                content=data,
                headers={
                    **self.headers,
                    "Content-Type": content_type,
                    "x-upsert": "true",
                },
            )
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise StoreError(
                f"upload of {name} failed: {e.response.status_code} {e.response.text}",
                status_code=e.response.status_code,
            ) from e
        except httpx.HTTPError as e:
            raise StoreError(f"upload of {name} failed: {e}") from e

    def public_url(self, name: str) -> str:
        return f"{self.url}/storage/v1/object/public/{self.bucket}/{quote(name)}"


# ── Factory ────────────────────────────────────────────────────────────────────

@dataclass
class Stores:
    documents: DocumentStore
    objects: ObjectStore
    client: httpx.AsyncClient


@asynccontextmanager
async def open_stores(settings: Settings, local_dir: Path | None = None) -> AsyncIterator[Stores]:
    """Yield stores for `settings`; a `local_dir` selects the offline stores."""
    async with httpx.AsyncClient(timeout=settings.http_timeout, follow_redirects=True) as client:
        if local_dir is not None:
            yield Stores(
                documents=JsonDirDocumentStore(local_dir / "cards"),
                objects=LocalObjectStore(local_dir / "photos"),
                client=client,
            )
            return
        if not settings.remote_configured:
            raise StoreError("supabase_url and supabase_key are not configured")
        yield Stores(
            documents=SupabaseDocumentStore(client, settings.supabase_url, settings.supabase_key, settings.table),
            objects=SupabaseObjectStore(client, settings.supabase_url, settings.supabase_key, settings.bucket),
            client=client,
        )
