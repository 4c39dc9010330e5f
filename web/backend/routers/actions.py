#!/usr/bin/env python3
"""
Action endpoints - execute actions on notifications.

The ``/actions/token`` endpoints back the one-click links in delivered
messages. They carry no identity headers; the signed token names the
tenant, user, notification and action, and they are rate limited per
client address.
"""

from typing import Any, Dict

from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded
from slowapi.util import get_remote_address
from sqlalchemy.orm import Session

from core.app_context import AppContext, TenantServices
from core.context import RequestHeader
from notification.actions import ALREADY_ACTIONED, HANDLER_FAILED
from notification.errors import ConfigurationError, TokenValidationError
from notification.models import ActionResult
from ..dependencies import get_app_context, get_db, get_services
from ..models.requests import ActionRequest, BatchActionRequest, TokenActionRequest
from ..models.responses import ActionResultOut, BatchActionResultOut

limiter = Limiter(key_func=get_remote_address)

TOKEN_RATE_LIMIT = "30/minute"

router = APIRouter(prefix="/api/notifications/actions", tags=["actions"])


def add_rate_limit_handlers(app):
    """Add rate limit exception handlers to the FastAPI app."""
    app.state.limiter = limiter
    app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


async def _rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded):
    return JSONResponse(
        status_code=429,
        content={"success": False, "error": str(exc), "type": "RateLimitExceeded"}
    )


def _action_response(result: ActionResult):
    """200 on success, 409 for a repeat, 422 when the handler failed."""
    body = ActionResultOut.from_result(result)
    if result.error_code == ALREADY_ACTIONED:
        return JSONResponse(status_code=409, content=body.model_dump(mode="json"))
    if result.error_code == HANDLER_FAILED:
        return JSONResponse(status_code=422, content=body.model_dump(mode="json"))
    return body


def _execute_token(token: str, action_data: Dict[str, Any], db: Session, context: AppContext):
    if context.token_service is None:
        raise ConfigurationError("Action tokens are not configured")
    # Signature and structure first; the tenant scope comes from the token itself
    validation = context.token_service.validate(token)
    if validation.payload is None:
        raise TokenValidationError(validation.error)
    services = context.services(db, RequestHeader.system(validation.payload.tenant_id))
    return _action_response(services.actions.execute_with_token(token, action_data))


@router.post("", response_model=ActionResultOut)
def execute_action(body: ActionRequest, services: TenantServices = Depends(get_services)):
    result = services.actions.execute_action(
        body.notification_id,
        body.action_type,
        action_data=body.action_data
    )
    return _action_response(result)


@router.post("/batch", response_model=BatchActionResultOut)
def execute_batch_action(body: BatchActionRequest, services: TenantServices = Depends(get_services)):
    """Run one action across many of the caller's notifications."""
    result = services.actions.execute_batch_action(
        body.notification_ids,
        body.action_type,
        action_data=body.action_data
    )
    return BatchActionResultOut.from_result(result)


@router.get("/token", response_model=ActionResultOut)
@limiter.limit(TOKEN_RATE_LIMIT)
def execute_token_link(
    request: Request,
    token: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    context: AppContext = Depends(get_app_context)
):
    """Follow a one-click action link."""
    return _execute_token(token, {}, db, context)


@router.post("/token", response_model=ActionResultOut)
@limiter.limit(TOKEN_RATE_LIMIT)
def execute_token_action(
    request: Request,
    body: TokenActionRequest,
    db: Session = Depends(get_db),
    context: AppContext = Depends(get_app_context)
):
    return _execute_token(body.token, body.action_data, db, context)
