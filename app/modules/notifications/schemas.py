"""API contracts for notifications and device tokens (Pydantic, validated)."""

from datetime import datetime
from typing import Annotated, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from modules.notifications.models import (
    DeliveryStatus,
    NotificationStatus,
    Platform,
    Priority,
    TargetAudience,
)


class CreateNotificationRequest(BaseModel):
    """Schema for creating a notification, optionally from a template."""

    title: Optional[str] = Field(default=None, max_length=200)
    message: Optional[str] = Field(default=None, max_length=2000)
    type: Optional[str] = Field(default=None, json_schema_extra={"example": "info"})
    priority: Optional[Priority] = None
    target_audience: TargetAudience = TargetAudience.ALL
    user_ids: List[str] = Field(default_factory=list)
    image_url: Optional[str] = None
    link: Optional[str] = Field(default=None, json_schema_extra={"example": "/blogs"})
    scheduled_at: Optional[datetime] = None
    template_name: Optional[str] = Field(
        default=None, json_schema_extra={"example": "new_blog_post"}
    )

    @model_validator(mode="after")
    def check_audience(self) -> "CreateNotificationRequest":
        if self.target_audience == TargetAudience.SPECIFIC and not self.user_ids:
            raise ValueError("user_ids is required for specific notifications")
        if not self.template_name and not (self.title and self.message):
            raise ValueError("title and message are required without a template")
        return self


class NotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    message: str
    type: str
    priority: Priority
    target_audience: TargetAudience
    image_url: Optional[str] = None
    link: Optional[str] = None
    scheduled_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    template_name: Optional[str] = None
    status: NotificationStatus
    attempt_epoch: int
    expected_recipients: Optional[int] = None
    created_at: Optional[datetime] = None


class CreateNotificationResponse(BaseModel):
    notification: NotificationResponse
    failed_user_ids: List[str] = Field(default_factory=list)


class SendRequest(BaseModel):
    deadline_seconds: Annotated[
        Optional[float],
        Field(default=None, gt=0, description="Stop starting new batches after this"),
    ] = None


class SendResultResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    notification_id: str
    status: NotificationStatus
    epoch: int
    total: int
    sent: int
    failed: int
    invalid: int
    skipped: int
    timed_out: bool
    resumed: bool
    expected_recipients: Optional[int] = None
    missing_recipients: int = 0
    failed_token_ids: List[str] = Field(default_factory=list)
    invalid_token_ids: List[str] = Field(default_factory=list)
    skipped_token_ids: List[str] = Field(default_factory=list)


class DeliveryAttemptResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    attempt_id: str
    device_token_id: str
    status: DeliveryStatus
    error: Optional[str] = None
    attempted_at: datetime
    epoch: int
    user_id: Optional[str] = None
    platform: Optional[Platform] = None
    calls: int


class UserNotificationResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    user_id: str
    notification_id: str
    is_read: bool
    read_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class MarkReadRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


class TemplateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    template_name: str
    name: str
    title: str
    message: str
    type: str
    priority: Priority
    link: str


class RegisterDeviceRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    platform: Platform
    token: str = Field(..., min_length=1, max_length=4096)


class RemoveDeviceRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    token: str = Field(..., min_length=1)


class DeviceTokenResponse(BaseModel):
    """A registered device; the raw push token is never returned."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    user_id: str
    platform: Platform
    created_at: datetime
    last_used: Optional[datetime] = None


class PruneResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    examined: int
    deleted: int
    skipped: int


class DeviceStatsResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_devices: int
    unique_users: int
    by_platform: Dict[str, int]
