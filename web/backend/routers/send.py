#!/usr/bin/env python3
"""
Send endpoint - turn one event into notifications.
"""

from fastapi import APIRouter, Depends, HTTPException

from core.app_context import TenantServices
from notification.errors import ConfigurationError, NotFoundError
from notification.jobs import NotificationDispatcher
from ..dependencies import get_dispatcher, get_services
from ..models.requests import SendNotificationRequest
from ..models.responses import SendResponse

router = APIRouter(prefix="/api/notifications", tags=["send"])


@router.post("/send", response_model=SendResponse)
def send_notification(
    body: SendNotificationRequest,
    services: TenantServices = Depends(get_services),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher)
):
    """
    Send a notification to explicit users or to the type's subscribers.

    With the async queue the request is enqueued and the job id returned;
    otherwise the fan-out runs inline and its result is returned.
    """
    request = body.to_send_request()
    try:
        services.catalog.get_type_by_name(request.notification_type)
        outcome = dispatcher.dispatch_send(services.header.tenant_id, request, services=services)
    except (NotFoundError, ConfigurationError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    if outcome.queued:
        return SendResponse(queued=True, job_id=outcome.job_id)
    return SendResponse(queued=False, result=outcome.result.to_dict())
