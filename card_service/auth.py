"""
Service-role authorization for the card endpoints.

A request is either rejected or authorized; nothing is remembered between
requests.
"""

from __future__ import annotations

import hmac
from typing import Optional

from fastapi import Depends, Header

from card_service.config import Settings, get_settings
from card_service.errors import AuthorizationError


def check_service_role(
    authorization: Optional[str], service_role_key: Optional[str]
) -> None:
    """Raise ``AuthorizationError`` unless ``authorization`` is exactly the bearer key."""
    if not authorization:
        raise AuthorizationError("Missing authorization header")
    if not service_role_key:
        raise AuthorizationError("Service role key is not configured")
    expected = f"Bearer {service_role_key}"
    if not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise AuthorizationError("Invalid service role key")


def require_service_role(
    authorization: Optional[str] = Header(None),
    settings: Settings = Depends(get_settings),
) -> None:
    check_service_role(authorization, settings.service_role_key)
