"""vCard 3.0 encoding."""
from __future__ import annotations

import copy
from pathlib import Path

from tagme_card.exporter import (
    encode_vcard,
    sanitize,
    split_name,
    vcf_filename,
    write_vcard,
)
from tagme_card.io import read_vcard_fields, read_vcard_file
from tagme_card.model import CardDocument, Link


def _doc(**kwargs) -> CardDocument:
    kwargs.setdefault("id", "abc12345")
    kwargs.setdefault("country_code", "")
    return CardDocument(**kwargs)


def _lines(text: str) -> list[str]:
    return text.split("\r\n")


# ── Helpers ────────────────────────────────────────────────────────────────────

def test_sanitize_collapses_line_breaks():
    assert sanitize("a\r\nb\nc") == "a b c"
    assert sanitize(None) == ""


def test_split_name():
    assert split_name("Jane Q Public") == ("Public", "Jane Q")
    assert split_name("Cher") == ("", "Cher")


# ── Encoding ───────────────────────────────────────────────────────────────────

def test_end_to_end_example():
    doc = _doc(full_name="Jane Q Public", country_code="+1", phone="5551234", email="j@x.com")
    text = encode_vcard(doc)
    assert _lines(text) == [
        "BEGIN:VCARD",
        "VERSION:3.0",
        "FN:Jane Q Public",
        "N:Public;Jane Q;;;",
        "TEL;TYPE=CELL:+15551234",
        "EMAIL;TYPE=INTERNET:j@x.com",
        "END:VCARD",
    ]
    assert "\n" not in text.replace("\r\n", "")


def test_fallback_name():
    text = encode_vcard(_doc(handle=""))
    assert "FN:Contact" in _lines(text)
    assert "N:;Contact;;;" in _lines(text)


def test_title_then_handle_priority():
    assert "FN:Founder" in _lines(encode_vcard(_doc(title=" Founder ", handle="@jq")))
    assert "FN:jq" in _lines(encode_vcard(_doc(handle="@jq")))


def test_name_newlines_collapsed():
    lines = _lines(encode_vcard(_doc(full_name="Jane\nDoe")))
    assert "FN:Jane Doe" in lines
    assert "N:Doe;Jane;;;" in lines


def test_title_field_comes_from_role():
    lines = _lines(encode_vcard(_doc(full_name="J", title="Headline", role="Engineer")))
    assert "TITLE:Engineer" in lines
    assert not any(line == "TITLE:Headline" for line in lines)


def test_org_sanitized():
    assert "ORG:Acme Labs" in _lines(encode_vcard(_doc(org="Acme\r\nLabs")))


def test_blank_fields_not_emitted():
    doc = _doc(full_name="J", country_code=" ", phone="", email="  ", org="\n", role="")
    text = encode_vcard(doc)
    for prefix in ("TEL", "EMAIL", "ORG", "TITLE", "PHOTO"):
        assert not any(line.startswith(prefix) for line in _lines(text))
    assert not any(line.endswith(":") for line in _lines(text))


def test_country_code_alone_is_emitted():
    assert "TEL;TYPE=CELL:+63" in _lines(encode_vcard(_doc(full_name="J", country_code="+63")))


def test_photo_line():
    lines = _lines(encode_vcard(_doc(full_name="J"), "aGVsbG8="))
    assert lines[-2] == "PHOTO;ENCODING=b;TYPE=JPEG:aGVsbG8="
    assert lines[-1] == "END:VCARD"


def test_links_are_not_exported():
    text = encode_vcard(_doc(full_name="J", links=[Link("Insta", "http://i")]))
    assert "http://i" not in text


def test_deterministic_and_pure():
    doc = _doc(full_name="Jane Q Public", email="j@x.com", links=[Link("A", "")])
    before = copy.deepcopy(doc)
    assert encode_vcard(doc, "aGk=") == encode_vcard(doc, "aGk=")
    assert doc == before


def test_roundtrip_with_vobject():
    doc = _doc(
        full_name="Jane Q\nPublic",
        country_code="+1",
        phone="5551234",
        email="j@x.com",
        org="Acme\nLabs",
        role="Staff Engineer",
    )
    fields = read_vcard_fields(encode_vcard(doc, "aGVsbG8="))
    assert fields["FN"] == "Jane Q Public"
    assert fields["N_FAMILY"] == "Public"
    assert fields["N_GIVEN"] == "Jane Q"
    assert fields["TEL"] == "+15551234"
    assert fields["EMAIL"] == "j@x.com"
    assert fields["ORG"] == "Acme Labs"
    assert fields["TITLE"] == "Staff Engineer"
    assert fields["PHOTO"] == "aGVsbG8="


# ── Artifact ───────────────────────────────────────────────────────────────────

def test_vcf_filename():
    assert vcf_filename(_doc(full_name="Jane Q. Public")) == "Jane_Q_Public.vcf"
    assert vcf_filename(_doc(full_name="", title="", handle="@jq")) == "_jq.vcf"
    assert vcf_filename(_doc(full_name="", title="", handle="")) == "contact.vcf"
    assert vcf_filename(_doc(full_name="José")) == "Jos_.vcf"


def test_write_vcard_keeps_crlf(tmp_path: Path):
    out = write_vcard(_doc(full_name="Jane"), None, tmp_path / "nested" / "jane.vcf")
    data = out.read_bytes()
    assert data.startswith(b"BEGIN:VCARD\r\nVERSION:3.0\r\n")
    assert data.count(b"\r\n") == data.count(b"\n")
    assert read_vcard_file(out)["FN"] == "Jane"
