from __future__ import annotations

import base64
import logging
from pathlib import Path

import vobject

logger = logging.getLogger(__name__)

SIMPLE_PROPS = ("fn", "tel", "email", "title")


def _text(component, name: str) -> str | None:
    prop = getattr(component, name, None)
    if prop is None:
        return None
    return str(prop.value)


def parse_vcard(data: str) -> vobject.base.Component:
    """Parse exactly one vCard; raises ValueError if there is none."""
    for vc in vobject.readComponents(data, ignoreUnreadable=True):
        if vc.name.upper() == "VCARD":
            return vc
    raise ValueError("no VCARD component found")


def read_vcard_fields(data: str) -> dict[str, str | None]:
    """Read back the properties this package writes, keyed by property name."""
    vc = parse_vcard(data)
    fields: dict[str, str | None] = {p.upper(): _text(vc, p) for p in SIMPLE_PROPS}

    n = getattr(vc, "n", None)
    fields["N_FAMILY"] = n.value.family if n is not None else None
    fields["N_GIVEN"] = n.value.given if n is not None else None

    org = getattr(vc, "org", None)
    if org is not None:
        value = org.value
        fields["ORG"] = ";".join(value) if isinstance(value, list) else str(value)
    else:
        fields["ORG"] = None

    photo = getattr(vc, "photo", None)
    if photo is not None:
        raw = photo.value
        fields["PHOTO"] = base64.b64encode(raw).decode("ascii") if isinstance(raw, bytes) else str(raw)
    else:
        fields["PHOTO"] = None

    return fields


def read_vcard_file(path: Path) -> dict[str, str | None]:
    raw = path.read_text(encoding="utf-8", errors="replace")
    logger.debug("Reading %s (%d bytes)", path, len(raw))
    return read_vcard_fields(raw)
