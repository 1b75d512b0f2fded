"""
Card write path: idempotency guard, upsert and audit logging.
"""

from __future__ import annotations

import concurrent.futures
import logging
from dataclasses import dataclass, field
from typing import Optional

from card_service.db import CardContentRecord, CardUpdateLogRecord, DbClient
from card_service.errors import StoreError, ValidationError
from card_service.schemas import (
    BulkUpdateRequest,
    CardType,
    CardUpdate,
    UpdateCardRequest,
)

logger = logging.getLogger(__name__)


def batch_key_prefix(idempotency_key: str) -> str:
    return f"{idempotency_key}:"


def batch_item_key(idempotency_key: str, card_type: CardType) -> str:
    """Scope a batch's idempotency key to one of its items."""
    return f"{batch_key_prefix(idempotency_key)}{card_type.value}"


@dataclass
class UpdateResult:
    card: Optional[CardContentRecord]
    replayed: bool = False


@dataclass
class BulkItemOutcome:
    card_type: CardType
    card: Optional[CardContentRecord] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.error is None


@dataclass
class BulkResult:
    outcomes: list[BulkItemOutcome] = field(default_factory=list)
    replayed: bool = False

    @property
    def succeeded(self) -> list[BulkItemOutcome]:
        return [o for o in self.outcomes if o.success]

    @property
    def failed(self) -> list[BulkItemOutcome]:
        return [o for o in self.outcomes if not o.success]


class CardContentService:
    """Composes the guard, upsert and audit steps over a ``DbClient``."""

    def __init__(self, db: DbClient, update_source: str = "service"):
        self.db = db
        self.update_source = update_source

    def get_card(
        self, user_id: str, card_type: CardType
    ) -> Optional[CardContentRecord]:
        return self.db.get_card(user_id, card_type)

    def list_cards(self, user_id: str) -> list[CardContentRecord]:
        return self.db.list_cards(user_id)

    def already_processed(self, idempotency_key: Optional[str]) -> bool:
        """
        Best-effort replay check: a single lookup, not a lock.

        A key counts as used once it is logged by a single update or scoped
        to any item of a batch.

        Two requests carrying the same fresh key can both pass; the unique
        index on the audit key keeps the second one from being logged.
        """
        if not idempotency_key:
            return False
        found = self.db.find_update_log(
            idempotency_key, key_prefix=batch_key_prefix(idempotency_key)
        )
        return found is not None

    def upsert(
        self, user_id: str, card_type: CardType, content: dict
    ) -> CardContentRecord:
        return self.db.upsert_card(user_id, card_type, content)

    def record_update(
        self,
        card: CardContentRecord,
        request_data: dict,
        idempotency_key: Optional[str] = None,
    ) -> Optional[CardUpdateLogRecord]:
        """
        Append the audit row for a successful upsert.

        A failed audit insert is logged and does not undo or fail the write.
        """
        log = CardUpdateLogRecord(
            card_content_id=card.id,
            update_source=self.update_source,
            idempotency_key=idempotency_key,
            request_data=request_data,
        )
        try:
            self.db.insert_update_log(log)
        except StoreError:
            logger.exception(
                "Failed to write update log for %s card %s", card.card_type.value, card.id
            )
            return None
        return log

    def update_card(
        self,
        request: UpdateCardRequest,
        request_data: dict,
        idempotency_key: Optional[str] = None,
    ) -> UpdateResult:
        if not request.userId:
            raise ValidationError("userId is required")

        if self.already_processed(idempotency_key):
            logger.info("Duplicate request detected, returning success")
            return UpdateResult(card=None, replayed=True)

        card = self.upsert(request.userId, request.cardType, request.content)
        self.record_update(card, request_data, idempotency_key or None)
        logger.info(
            "Successfully updated %s card for user %s",
            request.cardType.value,
            request.userId,
        )
        return UpdateResult(card=card)

    def _apply_item(
        self,
        user_id: str,
        update: CardUpdate,
        request_data: dict,
        idempotency_key: Optional[str],
    ) -> CardContentRecord:
        card = self.upsert(user_id, update.cardType, update.content)
        self.record_update(
            card,
            request_data,
            batch_item_key(idempotency_key, update.cardType) if idempotency_key else None,
        )
        return card

    def bulk_update(
        self,
        request: BulkUpdateRequest,
        idempotency_key: Optional[str] = None,
        raw_updates: Optional[list[dict]] = None,
    ) -> BulkResult:
        """
        Apply every update in the batch concurrently.

        ``raw_updates`` are the items as received; each is logged verbatim.

        Each item succeeds or fails on its own; the call returns only after
        every item has settled.
        """
        if not request.userId:
            raise ValidationError("userId is required")

        if self.already_processed(idempotency_key):
            logger.info("Duplicate bulk request detected, returning success")
            return BulkResult(replayed=True)

        result = BulkResult()
        if not request.updates:
            return result
        if raw_updates is None:
            raw_updates = [u.model_dump(mode="json") for u in request.updates]

        executor = concurrent.futures.ThreadPoolExecutor(
            max_workers=len(request.updates)
        )
        try:
            futures = [
                executor.submit(
                    self._apply_item, request.userId, update, raw, idempotency_key
                )
                for update, raw in zip(request.updates, raw_updates)
            ]
            concurrent.futures.wait(futures)
        finally:
            executor.shutdown(wait=True)

        for update, future in zip(request.updates, futures):
            exc = future.exception()
            if exc is None:
                result.outcomes.append(
                    BulkItemOutcome(card_type=update.cardType, card=future.result())
                )
                continue
            logger.error(
                "Error updating %s: %s",
                update.cardType.value,
                exc,
                exc_info=(type(exc), exc, exc.__traceback__),
            )
            result.outcomes.append(
                BulkItemOutcome(card_type=update.cardType, error=str(exc) or "Unknown error")
            )

        logger.info(
            "Bulk update completed: %d successful, %d failed",
            len(result.succeeded),
            len(result.failed),
        )
        return result
