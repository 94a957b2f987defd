from typing import List, Optional

from fastapi import APIRouter, status

from infrastructure.services import NotificationServiceDep
from modules.notifications.schemas import (
    CreateNotificationRequest,
    CreateNotificationResponse,
    DeliveryAttemptResponse,
    MarkReadRequest,
    NotificationResponse,
    SendRequest,
    SendResultResponse,
    TemplateResponse,
    UserNotificationResponse,
)
from modules.notifications.templates import list_templates

router = APIRouter(prefix="/notifications", tags=["Notifications"])


@router.get("/templates", response_model=List[TemplateResponse])
def get_templates():
    return [TemplateResponse.model_validate(template) for template in list_templates()]


@router.post(
    "",
    response_model=CreateNotificationResponse,
    status_code=status.HTTP_201_CREATED,
)
def create_notification(
    body: CreateNotificationRequest, service: NotificationServiceDep
):
    created = service.create_notification(**body.model_dump())
    return CreateNotificationResponse(
        notification=NotificationResponse.model_validate(created.notification),
        failed_user_ids=created.failed_user_ids,
    )


@router.get("", response_model=List[NotificationResponse])
def list_notifications(service: NotificationServiceDep):
    return [
        NotificationResponse.model_validate(notification)
        for notification in service.list_notifications()
    ]


@router.post("/scheduled/run")
def run_scheduled(service: NotificationServiceDep):
    """Send every scheduled notification that is due."""
    run = service.send_due_notifications()
    return {
        "sent": [SendResultResponse.model_validate(result) for result in run.results],
        "skipped": run.skipped,
    }


@router.get("/users/{user_id}", response_model=List[UserNotificationResponse])
def list_user_notifications(user_id: str, service: NotificationServiceDep):
    return [
        UserNotificationResponse.model_validate(row)
        for row in service.list_user_notifications(user_id)
    ]


@router.get("/{notification_id}", response_model=NotificationResponse)
def get_notification(notification_id: str, service: NotificationServiceDep):
    return NotificationResponse.model_validate(
        service.get_notification(notification_id)
    )


@router.delete("/{notification_id}")
def delete_notification(notification_id: str, service: NotificationServiceDep):
    removed = service.delete_notification(notification_id)
    return {"deleted": notification_id, "user_notifications_removed": removed}


@router.post("/{notification_id}/send", response_model=SendResultResponse)
def send_notification(
    notification_id: str,
    service: NotificationServiceDep,
    body: Optional[SendRequest] = None,
):
    """Fan a notification out to its audience.

    A notification is delivered at most once; a second send answers 409.
    """
    deadline = body.deadline_seconds if body else None
    return SendResultResponse.model_validate(
        service.send_notification(notification_id, deadline_seconds=deadline)
    )


@router.post("/{notification_id}/resend", response_model=SendResultResponse)
def resend_failed(
    notification_id: str,
    service: NotificationServiceDep,
    body: Optional[SendRequest] = None,
):
    """Retry only the tokens whose last delivery failed transiently."""
    deadline = body.deadline_seconds if body else None
    return SendResultResponse.model_validate(
        service.resend_failed(notification_id, deadline_seconds=deadline)
    )


@router.get(
    "/{notification_id}/deliveries", response_model=List[DeliveryAttemptResponse]
)
def delivery_report(notification_id: str, service: NotificationServiceDep):
    return [
        DeliveryAttemptResponse.model_validate(attempt)
        for attempt in service.delivery_report(notification_id)
    ]


@router.post("/{notification_id}/read", response_model=UserNotificationResponse)
def mark_read(
    notification_id: str, body: MarkReadRequest, service: NotificationServiceDep
):
    return UserNotificationResponse.model_validate(
        service.mark_notification_read(notification_id, body.user_id)
    )
