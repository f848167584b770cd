from __future__ import annotations

import re
from pathlib import Path

from .model import CardDocument, display_name, merged_phone

VCARD_MIME = "text/vcard; charset=utf-8"
CRLF = "\r\n"

_LINE_BREAK = re.compile(r"\r?\n")
_UNSAFE_FILENAME = re.compile(r"[^\w\-]+", re.ASCII)


def sanitize(text: str | None) -> str:
    """Collapse line breaks to single spaces; a vCard value is one line."""
    return _LINE_BREAK.sub(" ", text or "")


def split_name(name: str) -> tuple[str, str]:
    """Return (family, given): the last space-separated token is the family name."""
    parts = name.split(" ")
    if len(parts) > 1:
        return parts[-1], " ".join(parts[:-1])
    return "", name


def encode_vcard(doc: CardDocument, photo_b64: str | None = None) -> str:
    """Render a vCard 3.0 record for `doc`.

    Pure and deterministic. `photo_b64` is the already-resolved base64 JPEG
    payload (see photo.resolve_photo_bytes) or None.
    """
    lines = ["BEGIN:VCARD", "VERSION:3.0"]

    name = sanitize(display_name(doc))
    family, given = split_name(name)
    lines.append(f"FN:{name}")
    lines.append(f"N:{family};{given};;;")

    tel = sanitize(merged_phone(doc))
    if tel.strip():
        lines.append(f"TEL;TYPE=CELL:{tel}")

    for prefix, raw in (
        ("EMAIL;TYPE=INTERNET", doc.email),
        ("ORG", doc.org),
        ("TITLE", doc.role),
    ):
        value = sanitize(raw)
        if value.strip():
            lines.append(f"{prefix}:{value}")

    if photo_b64:
        lines.append(f"PHOTO;ENCODING=b;TYPE=JPEG:{photo_b64}")

    lines.append("END:VCARD")
    return CRLF.join(lines)


def vcf_filename(doc: CardDocument) -> str:
    """Filesystem-safe download name derived from the card's name fields."""
    raw = doc.full_name or doc.title or doc.handle or "contact"
    slug = _UNSAFE_FILENAME.sub("_", sanitize(raw)) or "contact"
    return f"{slug}.vcf"


def write_vcard(doc: CardDocument, photo_b64: str | None, path: Path) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_bytes(encode_vcard(doc, photo_b64).encode("utf-8"))
    return path
