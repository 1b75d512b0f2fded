"""
Request validation for the card endpoints.

The checks are pure: they parse a decoded JSON body into a typed request or
raise ``ValidationError`` with a message a caller can act on.
"""

from __future__ import annotations

from typing import Any

from pydantic import ValidationError as PydanticValidationError

from card_service.errors import ValidationError
from card_service.schemas import BulkUpdateRequest, CardType, UpdateCardRequest


def parse_card_type(value: str | None) -> CardType:
    if not value:
        raise ValidationError("Missing cardType parameter")
    try:
        return CardType(value)
    except ValueError:
        raise ValidationError(f"Invalid cardType: {value}") from None


def _require_object(body: Any) -> dict:
    if not isinstance(body, dict):
        raise ValidationError("Request body must be a JSON object")
    return body


def _first_error_loc(exc: PydanticValidationError) -> tuple:
    return tuple(exc.errors()[0]["loc"])


def validate_update_request(body: Any) -> UpdateCardRequest:
    """Validate a single ``update-card`` body."""
    body = _require_object(body)
    try:
        return UpdateCardRequest.model_validate(body)
    except PydanticValidationError as exc:
        field = _first_error_loc(exc)[0]
        if field == "cardType":
            message = "Invalid or missing cardType"
        elif field == "content":
            message = "Invalid or missing content object"
        elif field == "userId":
            message = "Invalid userId format"
        else:
            message = f"Invalid field: {field}"
        raise ValidationError(message) from None


def validate_bulk_update_request(body: Any) -> BulkUpdateRequest:
    """
    Validate a ``bulk-update-cards`` body.

    The whole batch is rejected if any single item is malformed, so nothing
    reaches the store unless every item passed.
    """
    body = _require_object(body)
    try:
        return BulkUpdateRequest.model_validate(body)
    except PydanticValidationError as exc:
        loc = _first_error_loc(exc)
        if loc[0] == "userId":
            message = "Invalid userId format"
        elif loc[0] != "updates" or len(loc) < 2:
            message = "Missing or invalid updates array"
        else:
            item = body["updates"][loc[1]]
            card_type = item.get("cardType") if isinstance(item, dict) else None
            if len(loc) > 2 and loc[2] == "content":
                message = f"Invalid content for cardType: {card_type}"
            else:
                message = f"Invalid cardType: {card_type}"
        raise ValidationError(message) from None
