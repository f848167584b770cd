"""Session orchestration: load-or-default on open, upsert on save."""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable

from .model import (
    DEFAULT_COUNTRY_CODE,
    DEFAULT_HANDLE,
    CardDocument,
    CardState,
    create_default,
    from_record,
    merge_from_remote,
    new_card_id,
    to_record,
)
from .stores import DocumentStore, StoreError

logger = logging.getLogger(__name__)


class SessionState(enum.Enum):
    INIT = "init"
    LOADING = "loading"
    READY = "ready"
    READY_WITH_DEFAULTS = "ready-with-defaults"


@dataclass
class SaveResult:
    ok: bool
    message: str


@dataclass
class PublicLoad:
    doc: CardDocument | None = None
    error: str | None = None


class SyncController:
    """One editing session against a document store."""

    def __init__(
        self,
        store: DocumentStore,
        country_code: str = DEFAULT_COUNTRY_CODE,
        handle: str = DEFAULT_HANDLE,
        id_factory: Callable[[], str] = new_card_id,
    ):
        self.store = store
        self.country_code = country_code
        self.handle = handle
        self.id_factory = id_factory
        self.state = SessionState.INIT
        self.card: CardState | None = None

    def _defaults(self, card_id: str) -> CardDocument:
        return create_default(card_id, country_code=self.country_code, handle=self.handle)

    async def open(
        self,
        card_id: str | None,
        navigate: Callable[[str], None] | None = None,
    ) -> CardState:
        """Load `card_id` (or a fresh id) into a new CardState.

        When no id is given one is generated and handed to `navigate` so the
        caller can move the session to an address that carries it.
        """
        if not card_id:
            card_id = self.id_factory()
            logger.info("No card id given, generated %s", card_id)
            if navigate is not None:
                navigate(card_id)

        local = self._defaults(card_id)
        self.state = SessionState.LOADING
        try:
            remote = await self.store.get(card_id)
        except Exception as e:
            # a failed read never blocks editing
            logger.warning("Error loading card %s, using defaults: %s", card_id, e)
            remote = None
        if remote is not None and not isinstance(remote, dict):
            logger.warning("Ignoring malformed record for card %s, using defaults", card_id)
            remote = None

        self.card = CardState(merge_from_remote(local, remote))
        self.state = SessionState.READY if remote else SessionState.READY_WITH_DEFAULTS
        return self.card

    async def save(self, doc: CardDocument | None = None) -> SaveResult:
        if doc is None:
            if self.card is None:
                raise RuntimeError("save() called before open()")
            doc = self.card.snapshot()
        try:
            await self.store.upsert(to_record(doc))
        except StoreError as e:
            logger.error("Save failed for card %s: %s", doc.id, e)
            return SaveResult(ok=False, message=f"Save error: {e}")
        logger.info("Saved card %s", doc.id)
        return SaveResult(ok=True, message="Saved!")

    async def load_public(self, card_id: str | None) -> PublicLoad:
        """Read-only load for the public viewer."""
        if not card_id:
            return PublicLoad(error="No card ID provided.")
        try:
            record = await self.store.get(card_id)
        except StoreError as e:
            logger.error("Error loading card %s: %s", card_id, e)
            return PublicLoad(error="Error loading card.")
        if not record:
            return PublicLoad(error="Card not found.")
        if not isinstance(record, dict):
            logger.error("Malformed record for card %s: %r", card_id, record)
            return PublicLoad(error="Error loading card.")
        return PublicLoad(
            doc=from_record({**record, "id": card_id}, country_code=self.country_code, handle=self.handle),
        )
