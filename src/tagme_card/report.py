from __future__ import annotations

from rich.console import Console, Group
from rich.panel import Panel
from rich.table import Table
from rich.text import Text

from .exporter import sanitize
from .model import CardDocument, merged_phone, valid_links

console = Console()

# ── Palette ────────────────────────────────────────────────────────────────────
_ACCENT  = "#4d9fff"
_GREEN   = "#3ecf8e"
_RED     = "#f05c5c"
_TEXT    = "#c9d1e0"
_MID     = "#8896af"
_DIM     = "#546075"
_BORDER  = "#2a3347"


def public_url(base_url: str, card_id: str) -> str:
    return f"{base_url.rstrip('/')}/card.html?id={card_id}"


def editor_url(base_url: str, card_id: str) -> str:
    return f"{base_url.rstrip('/')}/edit.html?id={card_id}"


def card_header(doc: CardDocument) -> Text:
    """Name block as the public card shows it: full name, title, subtitle."""
    text = Text()
    for value, style in (
        (doc.full_name, f"bold {_TEXT}"),
        (doc.title, f"bold {_TEXT}"),
        (doc.subtitle, _MID),
    ):
        value = sanitize(value)
        if value:
            if text:
                text.append("\n")
            text.append(value, style=style)
    handle = sanitize(doc.handle or "@user")
    if text:
        text.append("\n")
    text.append(handle, style=f"dim {_DIM}")
    return text


def links_table(doc: CardDocument) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Label", style=f"bold {_ACCENT}")
    table.add_column("URL", style=_MID)
    for ln in valid_links(doc):
        table.add_row(sanitize(ln.label), ln.url)
    return table


def contact_table(doc: CardDocument) -> Table:
    table = Table(show_header=False, box=None, padding=(0, 2))
    table.add_column("Field", style=f"dim {_DIM}")
    table.add_column("Value")
    rows = (
        ("Phone", merged_phone(doc)),
        ("Email", doc.email),
        ("Org", doc.org),
        ("Role", doc.role),
    )
    for label, value in rows:
        value = sanitize(value).strip()
        if value:
            table.add_row(label, value)
    return table


def print_card(doc: CardDocument, base_url: str | None = None, out: Console | None = None) -> None:
    out = out or console
    parts: list = [card_header(doc)]
    if doc.photo_url:
        parts.append(Text(f"photo: {doc.photo_url}", style=f"dim {_DIM}"))
    elif doc.photo_b64:
        parts.append(Text("photo: inline", style=f"dim {_DIM}"))

    links = links_table(doc)
    if links.row_count:
        parts += [Text(""), Text("LINKS", style=f"dim {_DIM}"), links]

    contact = contact_table(doc)
    if contact.row_count:
        parts += [Text(""), Text("CONTACT INFORMATION", style=f"dim {_DIM}"), contact]

    if base_url:
        parts += [Text(""), Text(public_url(base_url, doc.id), style=_GREEN)]

    out.print(Panel(
        Group(*parts),
        title=Text(f"  {doc.id}  ", style=f"dim {_DIM}"),
        title_align="left",
        border_style=_BORDER,
        padding=(1, 2),
    ))


def print_error(message: str, out: Console | None = None) -> None:
    (out or console).print(f"[bold {_RED}]{message}[/]")
