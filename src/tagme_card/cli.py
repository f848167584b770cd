from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable

import typer
from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, ensure_workspace
from .exporter import vcf_filename, write_vcard
from .model import CardState
from .photo import resolve_photo_bytes, upload_photo
from .report import editor_url, print_card, print_error, public_url
from .stores import Stores, StoreError, open_stores
from .sync import SessionState, SyncController

app = typer.Typer(
    no_args_is_help=True,
    add_completion=False,
    help="tagme-card: edit a profile card, save it, and export it as a vCard.",
)
link_app = typer.Typer(no_args_is_help=True, help="Edit the card's links.")
app.add_typer(link_app, name="link")

console = Console()


@dataclass
class Context:
    settings: Settings
    out_dir: Path
    local_dir: Path | None


# ── Shared plumbing ────────────────────────────────────────────────────────────

def _ctx(ctx: typer.Context) -> Context:
    return ctx.obj


def _run(c: Context, action: Callable[[Stores, SyncController], Awaitable[None]]) -> None:
    async def _inner() -> None:
        async with open_stores(c.settings, c.local_dir) as stores:
            sync = SyncController(
                stores.documents,
                country_code=c.settings.default_country_code,
                handle=c.settings.default_handle,
            )
            await action(stores, sync)

    try:
        asyncio.run(_inner())
    except StoreError as e:
        print_error(f"Store unavailable: {e}", console)
        raise typer.Exit(code=1)


async def _open_existing(sync: SyncController, card_id: str) -> CardState:
    card = await sync.open(card_id)
    if sync.state is SessionState.READY_WITH_DEFAULTS:
        console.print(f"[yellow]Card {card_id} not found, starting from defaults.[/yellow]")
    return card


async def _save(sync: SyncController) -> None:
    result = await sync.save()
    if not result.ok:
        print_error(result.message, console)
        raise typer.Exit(code=1)
    console.print(f"[bold green]✓ {result.message}[/bold green]")


# ── Callback ───────────────────────────────────────────────────────────────────

@app.callback()
def main(
    ctx: typer.Context,
    workspace: Path | None = typer.Option(
        None, "--workspace", "-w",
        help="Folder holding local/card.conf and cards-out/ (default: current directory)",
    ),
    local: Path | None = typer.Option(
        None, "--local",
        help="Keep cards and photos in this folder instead of Supabase",
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging"),
) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(message)s",
        handlers=[RichHandler(console=Console(stderr=True), show_path=False)],
    )
    paths, settings = ensure_workspace(workspace)
    ctx.obj = Context(settings=settings, out_dir=paths.out_dir, local_dir=local)


# ── Card commands ──────────────────────────────────────────────────────────────

@app.command()
def new(ctx: typer.Context) -> None:
    """Create a card with a fresh id and save its defaults."""
    c = _ctx(ctx)

    def _announce(card_id: str) -> None:
        console.print(f"New card [bold]{card_id}[/bold]")
        console.print(f"  edit   : {editor_url(c.settings.base_url, card_id)}")
        console.print(f"  public : {public_url(c.settings.base_url, card_id)}")

    async def _action(stores: Stores, sync: SyncController) -> None:
        await sync.open(None, navigate=_announce)
        await _save(sync)

    _run(c, _action)


@app.command()
def show(ctx: typer.Context, card_id: str = typer.Argument(..., help="Card id")) -> None:
    """Render the card the way the public viewer shows it."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        loaded = await sync.load_public(card_id)
        if loaded.doc is None:
            print_error(loaded.error or "Error loading card.", console)
            raise typer.Exit(code=2 if loaded.error == "Card not found." else 1)
        print_card(loaded.doc, base_url=c.settings.base_url, out=console)

    _run(c, _action)


@app.command("set")
def set_field(
    ctx: typer.Context,
    card_id: str = typer.Argument(..., help="Card id"),
    field: str = typer.Argument(..., help="Field name, e.g. full_name, email, role"),
    value: str = typer.Argument(..., help="New value (empty string clears it)"),
) -> None:
    """Set one field and save the card."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        card = await _open_existing(sync, card_id)
        try:
            card.set_field(field, value)
        except (KeyError, ValueError):
            print_error(f"Cannot set field {field!r}.", console)
            raise typer.Exit(code=2)
        await _save(sync)

    _run(c, _action)


@app.command()
def photo(
    ctx: typer.Context,
    card_id: str = typer.Argument(..., help="Card id"),
    path: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Image file"),
) -> None:
    """Upload a photo, cache it inline, and save the card."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        card = await _open_existing(sync, card_id)
        result = await upload_photo(card, stores.objects, path.read_bytes())
        if result.error:
            console.print(f"[yellow]Photo partly stored: {result.error}[/yellow]")
        if result.photo_url is None and result.photo_b64 is None:
            raise typer.Exit(code=1)
        await _save(sync)

    _run(c, _action)


@app.command()
def export(
    ctx: typer.Context,
    card_id: str = typer.Argument(..., help="Card id"),
    output: Path | None = typer.Option(None, "--output", "-o", help="Explicit output .vcf path"),
) -> None:
    """Write the card as a vCard 3.0 file."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        loaded = await sync.load_public(card_id)
        if loaded.doc is None:
            print_error(loaded.error or "Error loading card.", console)
            raise typer.Exit(code=2 if loaded.error == "Card not found." else 1)
        photo_b64 = await resolve_photo_bytes(loaded.doc, stores.client, timeout=c.settings.http_timeout)
        out_path = output or c.out_dir / vcf_filename(loaded.doc)
        write_vcard(loaded.doc, photo_b64, out_path)
        note = "" if photo_b64 else " [dim](no photo)[/dim]"
        console.print(f"[bold green]✓ Wrote {out_path}[/bold green]{note}")

    _run(c, _action)


# ── Link commands ──────────────────────────────────────────────────────────────

@link_app.command("add")
def link_add(
    ctx: typer.Context,
    card_id: str = typer.Argument(...),
    label: str = typer.Argument(""),
    url: str = typer.Argument(""),
) -> None:
    """Append a link."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        card = await _open_existing(sync, card_id)
        idx = card.add_link(label, url)
        console.print(f"Link #{idx} added")
        await _save(sync)

    _run(c, _action)


@link_app.command("set")
def link_set(
    ctx: typer.Context,
    card_id: str = typer.Argument(...),
    index: int = typer.Argument(...),
    field: str = typer.Argument(..., help="label or url"),
    value: str = typer.Argument(...),
) -> None:
    """Change the label or url of an existing link."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        card = await _open_existing(sync, card_id)
        try:
            card.set_link_field(index, field, value)
        except (IndexError, KeyError):
            print_error(f"No link field {field!r} at index {index}.", console)
            raise typer.Exit(code=2)
        await _save(sync)

    _run(c, _action)


@link_app.command("remove")
def link_remove(
    ctx: typer.Context,
    card_id: str = typer.Argument(...),
    index: int = typer.Argument(...),
) -> None:
    """Remove a link; out-of-range indexes are ignored."""
    c = _ctx(ctx)

    async def _action(stores: Stores, sync: SyncController) -> None:
        card = await _open_existing(sync, card_id)
        card.remove_link(index)
        await _save(sync)

    _run(c, _action)


# ── Server ─────────────────────────────────────────────────────────────────────

@app.command()
def serve(
    ctx: typer.Context,
    port: int = typer.Option(8422, "--port", "-p"),
) -> None:
    """Run the local editor/viewer HTTP server."""
    from .server import main as serve_main

    c = _ctx(ctx)
    if c.local_dir is None and not c.settings.remote_configured:
        print_error("Set supabase_url/supabase_key in local/card.conf or pass --local DIR.", console)
        raise typer.Exit(code=2)
    serve_main(c.settings, c.local_dir, port=port)


if __name__ == "__main__":
    app()
