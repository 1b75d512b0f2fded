"""
Database abstraction for Postgres and an in-memory test implementation.
"""

from __future__ import annotations

import copy
import threading
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from typing import Dict, Optional, Protocol

from sqlalchemy import (
    JSON,
    Column,
    Float,
    ForeignKey,
    String,
    UniqueConstraint,
    create_engine,
    or_,
    select,
)
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from card_service.errors import DuplicateIdempotencyKeyError, StoreError
from card_service.schemas import CardType


class DbClient(Protocol):
    """Interface for database access."""

    def get_card(
        self, user_id: str, card_type: CardType
    ) -> Optional["CardContentRecord"]:
        ...

    def list_cards(self, user_id: str) -> list["CardContentRecord"]:
        ...

    def upsert_card(
        self, user_id: str, card_type: CardType, content: dict
    ) -> "CardContentRecord":
        ...

    def find_update_log(
        self, idempotency_key: str, key_prefix: Optional[str] = None
    ) -> Optional["CardUpdateLogRecord"]:
        ...

    def insert_update_log(self, log: "CardUpdateLogRecord") -> None:
        ...

    def list_update_logs(self, card_content_id: str) -> list["CardUpdateLogRecord"]:
        ...


def _iso(timestamp: float) -> str:
    return datetime.fromtimestamp(timestamp, tz=timezone.utc).isoformat()


def _copy_card(card: "CardContentRecord") -> "CardContentRecord":
    return replace(card, content=copy.deepcopy(card.content))


@dataclass
class CardContentRecord:
    id: str
    user_id: str
    card_type: CardType
    content: dict
    created_at: float = field(default_factory=lambda: time.time())
    updated_at: float = field(default_factory=lambda: time.time())

    def as_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "card_type": self.card_type.value,
            "content": self.content,
            "created_at": _iso(self.created_at),
            "updated_at": _iso(self.updated_at),
        }


@dataclass
class CardUpdateLogRecord:
    card_content_id: str
    update_source: str
    request_data: dict
    idempotency_key: Optional[str] = None
    updated_by: Optional[str] = None
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: float = field(default_factory=lambda: time.time())


class InMemoryDbClient:
    """Simple in-memory database for development and tests."""

    def __init__(self):
        self.cards: Dict[tuple[str, CardType], CardContentRecord] = {}
        self.logs: list[CardUpdateLogRecord] = []
        self._lock = threading.Lock()

    def reset(self) -> None:
        """Clear all stored data (useful in tests)."""
        with self._lock:
            self.cards.clear()
            self.logs.clear()

    def get_card(
        self, user_id: str, card_type: CardType
    ) -> Optional[CardContentRecord]:
        with self._lock:
            card = self.cards.get((user_id, card_type))
            return _copy_card(card) if card else None

    def list_cards(self, user_id: str) -> list[CardContentRecord]:
        with self._lock:
            cards = [
                _copy_card(c) for (uid, _), c in self.cards.items() if uid == user_id
            ]
        return sorted(cards, key=lambda c: c.card_type.value)

    def upsert_card(
        self, user_id: str, card_type: CardType, content: dict
    ) -> CardContentRecord:
        content = copy.deepcopy(content)
        with self._lock:
            now = time.time()
            existing = self.cards.get((user_id, card_type))
            if existing:
                existing.content = content
                existing.updated_at = now
                card = existing
            else:
                card = CardContentRecord(
                    id=uuid.uuid4().hex,
                    user_id=user_id,
                    card_type=card_type,
                    content=content,
                    created_at=now,
                    updated_at=now,
                )
                self.cards[(user_id, card_type)] = card
            return _copy_card(card)

    def find_update_log(
        self, idempotency_key: str, key_prefix: Optional[str] = None
    ) -> Optional[CardUpdateLogRecord]:
        with self._lock:
            for log in self.logs:
                key = log.idempotency_key
                if key is None:
                    continue
                if key == idempotency_key or (
                    key_prefix and key.startswith(key_prefix)
                ):
                    return log
        return None

    def insert_update_log(self, log: CardUpdateLogRecord) -> None:
        with self._lock:
            if log.idempotency_key is not None and any(
                existing.idempotency_key == log.idempotency_key
                for existing in self.logs
            ):
                raise DuplicateIdempotencyKeyError(
                    f"Idempotency key already logged: {log.idempotency_key}"
                )
            self.logs.append(log)

    def list_update_logs(self, card_content_id: str) -> list[CardUpdateLogRecord]:
        with self._lock:
            return [
                log for log in self.logs if log.card_content_id == card_content_id
            ]


class PostgresDbClient:
    """
    SQLAlchemy-backed implementation. Accepts any SQLAlchemy URL (e.g., Postgres or SQLite for tests).

    Upserts use the dialect's native ``INSERT ... ON CONFLICT DO UPDATE ...
    RETURNING`` so each write is a single round trip.
    """

    def __init__(self, database_url: str):
        if not database_url:
            raise ValueError("DATABASE_URL is required for PostgresDbClient")
        engine_kwargs: dict = {"future": True, "pool_pre_ping": True}
        if database_url.startswith("sqlite") and ":memory:" in database_url:
            # A private in-memory database exists per connection; share one.
            engine_kwargs.update(
                poolclass=StaticPool, connect_args={"check_same_thread": False}
            )
        else:
            engine_kwargs["pool_recycle"] = 1800
        self.engine = create_engine(database_url, **engine_kwargs)
        self.Session = sessionmaker(
            bind=self.engine, class_=Session, expire_on_commit=False, future=True
        )
        Base.metadata.create_all(self.engine)

    def _insert(self):
        dialect = self.engine.dialect.name
        if dialect == "postgresql":
            return postgresql.insert(CardContentRow)
        if dialect == "sqlite":
            return sqlite.insert(CardContentRow)
        raise StoreError(f"Upsert is not supported for the {dialect} dialect")

    def _to_card_record(self, row: "CardContentRow") -> CardContentRecord:
        return CardContentRecord(
            id=row.id,
            user_id=row.user_id,
            card_type=CardType(row.card_type),
            content=row.content,
            created_at=row.created_at,
            updated_at=row.updated_at,
        )

    def _to_log_record(self, row: "CardUpdateLogRow") -> CardUpdateLogRecord:
        return CardUpdateLogRecord(
            id=row.id,
            card_content_id=row.card_content_id,
            updated_by=row.updated_by,
            update_source=row.update_source,
            idempotency_key=row.idempotency_key,
            request_data=row.request_data,
            created_at=row.created_at,
        )

    def get_card(
        self, user_id: str, card_type: CardType
    ) -> Optional[CardContentRecord]:
        try:
            with self.Session() as session:
                stmt = select(CardContentRow).where(
                    CardContentRow.user_id == user_id,
                    CardContentRow.card_type == card_type.value,
                )
                row = session.execute(stmt).scalar_one_or_none()
                return self._to_card_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to fetch card: {exc}") from exc

    def list_cards(self, user_id: str) -> list[CardContentRecord]:
        try:
            with self.Session() as session:
                stmt = (
                    select(CardContentRow)
                    .where(CardContentRow.user_id == user_id)
                    .order_by(CardContentRow.card_type.asc())
                )
                rows = session.execute(stmt).scalars().all()
                return [self._to_card_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list cards: {exc}") from exc

    def upsert_card(
        self, user_id: str, card_type: CardType, content: dict
    ) -> CardContentRecord:
        now = time.time()
        stmt = self._insert().values(
            id=uuid.uuid4().hex,
            user_id=user_id,
            card_type=card_type.value,
            content=content,
            created_at=now,
            updated_at=now,
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=[CardContentRow.user_id, CardContentRow.card_type],
            set_={
                "content": stmt.excluded.content,
                "updated_at": stmt.excluded.updated_at,
            },
        ).returning(CardContentRow)
        try:
            with self.Session() as session:
                row = session.scalars(
                    stmt, execution_options={"populate_existing": True}
                ).one()
                record = self._to_card_record(row)
                session.commit()
                return record
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to upsert card: {exc}") from exc

    def find_update_log(
        self, idempotency_key: str, key_prefix: Optional[str] = None
    ) -> Optional[CardUpdateLogRecord]:
        condition = CardUpdateLogRow.idempotency_key == idempotency_key
        if key_prefix:
            condition = or_(
                condition,
                CardUpdateLogRow.idempotency_key.startswith(
                    key_prefix, autoescape=True
                ),
            )
        try:
            with self.Session() as session:
                stmt = select(CardUpdateLogRow).where(condition).limit(1)
                row = session.execute(stmt).scalar_one_or_none()
                return self._to_log_record(row) if row else None
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to look up idempotency key: {exc}") from exc

    def insert_update_log(self, log: CardUpdateLogRecord) -> None:
        try:
            with self.Session() as session:
                session.add(
                    CardUpdateLogRow(
                        id=log.id,
                        card_content_id=log.card_content_id,
                        updated_by=log.updated_by,
                        update_source=log.update_source,
                        idempotency_key=log.idempotency_key,
                        request_data=log.request_data,
                        created_at=log.created_at,
                    )
                )
                session.commit()
        except IntegrityError as exc:
            if log.idempotency_key is not None and _violates_key_constraint(exc):
                raise DuplicateIdempotencyKeyError(
                    f"Idempotency key already logged: {log.idempotency_key}"
                ) from exc
            raise StoreError(f"Failed to write update log: {exc}") from exc
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to write update log: {exc}") from exc

    def list_update_logs(self, card_content_id: str) -> list[CardUpdateLogRecord]:
        try:
            with self.Session() as session:
                stmt = (
                    select(CardUpdateLogRow)
                    .where(CardUpdateLogRow.card_content_id == card_content_id)
                    .order_by(CardUpdateLogRow.created_at.asc())
                )
                rows = session.execute(stmt).scalars().all()
                return [self._to_log_record(row) for row in rows]
        except SQLAlchemyError as exc:
            raise StoreError(f"Failed to list update logs: {exc}") from exc


IDEMPOTENCY_KEY_CONSTRAINT = "uq_card_update_logs_idempotency_key"


def _violates_key_constraint(exc: IntegrityError) -> bool:
    # Postgres names the constraint, SQLite names the column.
    message = str(exc.orig)
    return (
        IDEMPOTENCY_KEY_CONSTRAINT in message
        or "card_update_logs.idempotency_key" in message
    )


Base = declarative_base()


class CardContentRow(Base):
    __tablename__ = "card_content"
    __table_args__ = (
        UniqueConstraint("user_id", "card_type", name="uq_card_content_user_card"),
    )

    id = Column(String, primary_key=True)
    user_id = Column(String, nullable=False, index=True)
    card_type = Column(String, nullable=False)
    content = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
    updated_at = Column(Float, nullable=False)


class CardUpdateLogRow(Base):
    __tablename__ = "card_update_logs"
    __table_args__ = (
        UniqueConstraint("idempotency_key", name=IDEMPOTENCY_KEY_CONSTRAINT),
    )

    id = Column(String, primary_key=True)
    card_content_id = Column(
        String, ForeignKey("card_content.id"), nullable=False, index=True
    )
    updated_by = Column(String, nullable=True)
    update_source = Column(String, nullable=False)
    idempotency_key = Column(String, nullable=True)
    request_data = Column(JSON, nullable=False)
    created_at = Column(Float, nullable=False)
