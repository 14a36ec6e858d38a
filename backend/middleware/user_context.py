"""
Ledger User Context

Resolves the acting ledger user from the X-User-Id header and tags logs and
error reports with it. Authentication is handled upstream of this service.

Usage:
    @router.get("/payables")
    async def list_payables(user_id: str = Depends(require_user_id)):
        ...
"""

import logging

from fastapi import Header

from logging_config import set_request_context
from sentry_integration import set_user
from utils.validation_errors import raise_missing_parameter

logger = logging.getLogger(__name__)

USER_ID_HEADER = "X-User-Id"


def require_user_id(x_user_id: str = Header(default="", alias=USER_ID_HEADER)) -> str:
    """Dependency returning the caller's user id"""
    user_id = x_user_id.strip()
    if not user_id:
        raise_missing_parameter(USER_ID_HEADER, f"{USER_ID_HEADER} header is required")

    set_request_context(user_id=user_id)
    set_user(user_id)
    return user_id
