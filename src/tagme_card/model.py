from __future__ import annotations

import copy
import secrets
import string
from dataclasses import dataclass, field, fields
from typing import Any

DEFAULT_HANDLE = "@yourhandle"
DEFAULT_COUNTRY_CODE = "+63"

_ID_ALPHABET = string.ascii_lowercase + string.digits
_ID_LENGTH = 8

LINK_FIELDS = ("label", "url")


@dataclass
class Link:
    label: str = ""
    url: str = ""

    def is_valid(self) -> bool:
        return bool(self.label) and bool(self.url)


@dataclass
class CardDocument:
    id: str
    full_name: str = ""
    handle: str = DEFAULT_HANDLE
    title: str = ""          # display headline
    subtitle: str = ""
    photo_url: str = ""
    photo_b64: str = ""      # base64 JPEG, no data: prefix
    links: list[Link] = field(default_factory=list)
    country_code: str = DEFAULT_COUNTRY_CODE
    phone: str = ""
    email: str = ""
    org: str = ""
    role: str = ""           # professional title, exported as TITLE


FIELD_NAMES: tuple[str, ...] = tuple(f.name for f in fields(CardDocument))
TEXT_FIELDS: tuple[str, ...] = tuple(n for n in FIELD_NAMES if n not in ("id", "links"))


# ── Creation ───────────────────────────────────────────────────────────────────

def new_card_id() -> str:
    """Return a fresh short alphanumeric card id."""
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LENGTH))


def create_default(
    card_id: str,
    country_code: str = DEFAULT_COUNTRY_CODE,
    handle: str = DEFAULT_HANDLE,
) -> CardDocument:
    if not card_id:
        raise ValueError("card id must be assigned before the document exists")
    return CardDocument(id=card_id, country_code=country_code, handle=handle)


# ── Record form ────────────────────────────────────────────────────────────────

def _coerce_link(raw: Any) -> Link:
    if isinstance(raw, Link):
        return Link(label=raw.label, url=raw.url)
    if isinstance(raw, dict):
        return Link(
            label=str(raw.get("label") or ""),
            url=str(raw.get("url") or ""),
        )
    return Link()


def to_record(doc: CardDocument) -> dict[str, Any]:
    """Plain dict with exactly the document field set, as stored remotely."""
    record: dict[str, Any] = {name: getattr(doc, name) for name in FIELD_NAMES}
    record["links"] = [{"label": ln.label, "url": ln.url} for ln in doc.links]
    return record


def merge_from_remote(local: CardDocument, remote: Any) -> CardDocument:
    """Overlay every non-null remote value onto a copy of `local`.

    Total over any `remote`: None or anything that is not a dict counts as
    absent. The local id always survives and unknown remote keys are ignored.
    """
    merged = copy.deepcopy(local)
    if not isinstance(remote, dict) or not remote:
        return merged

    for name in TEXT_FIELDS:
        value = remote.get(name)
        if value is not None:
            setattr(merged, name, str(value))

    links = remote.get("links")
    if isinstance(links, list):
        merged.links = [_coerce_link(item) for item in links]

    return merged


def from_record(record: dict[str, Any], **defaults: Any) -> CardDocument:
    card_id = str(record.get("id") or "")
    return merge_from_remote(create_default(card_id, **defaults), record)


# ── Derived values ─────────────────────────────────────────────────────────────

def valid_links(doc: CardDocument) -> list[Link]:
    return [ln for ln in doc.links if ln.is_valid()]


def merged_phone(doc: CardDocument) -> str:
    return (doc.country_code or "") + (doc.phone or "")


def display_name(doc: CardDocument) -> str:
    """full_name → title → handle without '@' → "Contact"."""
    return (
        (doc.full_name or "").strip()
        or (doc.title or "").strip()
        or (doc.handle or "").replace("@", "", 1).strip()
        or "Contact"
    )


# ── Editing session state ──────────────────────────────────────────────────────

class CardState:
    """Owns the document for one editing session.

    UI callbacks go through these methods instead of touching the document,
    so exports always work on a consistent snapshot.
    """

    def __init__(self, doc: CardDocument):
        self._doc = doc

    @property
    def doc(self) -> CardDocument:
        return self._doc

    @property
    def card_id(self) -> str:
        return self._doc.id

    def replace(self, doc: CardDocument) -> None:
        if doc.id != self._doc.id:
            raise ValueError(f"cannot swap card {self._doc.id!r} for {doc.id!r}")
        self._doc = doc

    def snapshot(self) -> CardDocument:
        return copy.deepcopy(self._doc)

    def set_field(self, key: str, value: str) -> None:
        if key == "id":
            raise ValueError("card id is immutable")
        if key not in TEXT_FIELDS:
            raise KeyError(key)
        setattr(self._doc, key, value)

    def add_link(self, label: str = "", url: str = "") -> int:
        self._doc.links.append(Link(label=label, url=url))
        return len(self._doc.links) - 1

    def remove_link(self, index: int) -> None:
        if 0 <= index < len(self._doc.links):
            del self._doc.links[index]

    def set_link_field(self, index: int, key: str, value: str) -> None:
        if key not in LINK_FIELDS:
            raise KeyError(key)
        if not 0 <= index < len(self._doc.links):
            raise IndexError(index)
        setattr(self._doc.links[index], key, value)

    def set_photo(self, photo_url: str | None = None, photo_b64: str | None = None) -> None:
        # None means "leave as is"; a failed step never blanks a stored value
        if photo_url is not None:
            self._doc.photo_url = photo_url
        if photo_b64 is not None:
            self._doc.photo_b64 = photo_b64
