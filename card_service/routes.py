"""
HTTP routes for the card content service.
"""

from __future__ import annotations

import json
from typing import Any, Optional

from fastapi import APIRouter, Depends, Header, Query, Request, Response

from card_service.auth import require_service_role
from card_service.db import CardContentRecord
from card_service.dependencies import get_card_service
from card_service.errors import ValidationError
from card_service.schemas import (
    BulkItemResult,
    BulkUpdateResponse,
    CardContentOut,
    CardResponse,
    ListCardsResponse,
)
from card_service.service import BulkItemOutcome, CardContentService
from card_service.validation import (
    parse_card_type,
    validate_bulk_update_request,
    validate_update_request,
)

router = APIRouter(dependencies=[Depends(require_service_role)])


async def read_json_body(request: Request) -> Any:
    """Decode the request body; resolved after the router's auth dependency."""
    try:
        return await request.json()
    except (json.JSONDecodeError, UnicodeDecodeError):
        raise ValidationError("Invalid or missing JSON body") from None


def _card_out(card: CardContentRecord) -> CardContentOut:
    return CardContentOut(**card.as_dict())


def _item_result(outcome: BulkItemOutcome) -> BulkItemResult:
    return BulkItemResult(
        cardType=outcome.card_type,
        success=outcome.success,
        data=_card_out(outcome.card) if outcome.card else None,
        error=outcome.error,
    )


@router.get("/get-card", response_model=CardResponse)
def get_card(
    cardType: Optional[str] = Query(None),
    userId: Optional[str] = Query(None),
    service: CardContentService = Depends(get_card_service),
):
    card_type = parse_card_type(cardType)
    if not userId:
        raise ValidationError("Missing userId parameter")

    card = service.get_card(userId, card_type)
    if card is None:
        return CardResponse(
            success=True, data=None, message="No content found for this card"
        )
    return CardResponse(success=True, data=_card_out(card))


@router.get("/list-cards", response_model=ListCardsResponse)
def list_cards(
    userId: Optional[str] = Query(None),
    service: CardContentService = Depends(get_card_service),
):
    if not userId:
        raise ValidationError("Missing userId parameter")
    cards = service.list_cards(userId)
    return ListCardsResponse(success=True, data=[_card_out(c) for c in cards])


@router.post("/update-card", response_model=CardResponse)
def update_card(
    payload: Any = Depends(read_json_body),
    idempotency_key: Optional[str] = Header(None),
    service: CardContentService = Depends(get_card_service),
):
    request = validate_update_request(payload)
    result = service.update_card(request, payload, idempotency_key)
    if result.replayed:
        return CardResponse(success=True, message="Already processed (idempotent)")
    return CardResponse(success=True, data=_card_out(result.card))


@router.post("/bulk-update-cards", response_model=BulkUpdateResponse)
def bulk_update_cards(
    response: Response,
    payload: Any = Depends(read_json_body),
    idempotency_key: Optional[str] = Header(None),
    service: CardContentService = Depends(get_card_service),
):
    """
    Apply a batch of card updates.

    200 when every item succeeded, 207 when only some did, 500 when none did.
    """
    request = validate_bulk_update_request(payload)
    result = service.bulk_update(request, idempotency_key, payload["updates"])
    if result.replayed:
        return BulkUpdateResponse(
            success=True,
            processed=0,
            failed=0,
            message="Already processed (idempotent)",
        )

    succeeded, failed = result.succeeded, result.failed
    if failed and succeeded:
        response.status_code = 207
    elif failed:
        response.status_code = 500
    return BulkUpdateResponse(
        success=not failed,
        processed=len(succeeded),
        failed=len(failed),
        results=[_item_result(o) for o in result.outcomes],
        errors=[_item_result(o) for o in failed],
    )
