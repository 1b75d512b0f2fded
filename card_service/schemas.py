"""
Pydantic schemas and the shared card type enum.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel


class CardType(str, Enum):
    """Dashboard widget categories; each owns one content document per user."""

    HERO = "hero"
    REFLECTION = "reflection"
    HABITS = "habits"
    JOURNAL = "journal"
    QUICKSTART = "quickstart"
    ROADMAP = "roadmap"


class CardUpdate(BaseModel):
    cardType: CardType
    content: dict[str, Any]


class UpdateCardRequest(CardUpdate):
    userId: Optional[str] = None


class BulkUpdateRequest(BaseModel):
    updates: list[CardUpdate]
    userId: Optional[str] = None


class CardContentOut(BaseModel):
    id: str
    user_id: str
    card_type: CardType
    content: dict[str, Any]
    created_at: str
    updated_at: str


class CardResponse(BaseModel):
    success: bool
    data: Optional[CardContentOut] = None
    message: Optional[str] = None


class ListCardsResponse(BaseModel):
    success: bool
    data: list[CardContentOut]


class BulkItemResult(BaseModel):
    cardType: CardType
    success: bool
    data: Optional[CardContentOut] = None
    error: Optional[str] = None


class BulkUpdateResponse(BaseModel):
    success: bool
    processed: int
    failed: int
    results: list[BulkItemResult] = []
    errors: list[BulkItemResult] = []
    message: Optional[str] = None
