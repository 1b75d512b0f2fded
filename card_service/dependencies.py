"""
Dependency wiring for the FastAPI app.
"""

from __future__ import annotations

from fastapi import Depends

from card_service.config import Settings, get_settings
from card_service.db import DbClient, InMemoryDbClient, PostgresDbClient
from card_service.service import CardContentService

_db_client: DbClient | None = None


def get_db_client() -> DbClient:
    """
    Return a singleton DB client so in-memory state persists across requests.
    """
    global _db_client
    if _db_client:
        return _db_client

    settings = get_settings()
    if settings.use_in_memory_backends or not settings.database_url:
        _db_client = InMemoryDbClient()
    else:
        _db_client = PostgresDbClient(settings.database_url)
    return _db_client


def get_card_service(
    db: DbClient = Depends(get_db_client),
    settings: Settings = Depends(get_settings),
) -> CardContentService:
    return CardContentService(db, update_source=settings.update_source)
