from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

Priority = Literal["low", "medium", "high", "urgent"]
RecipientMode = Literal["all", "building", "individual"]
InboxChannelName = Literal["site_inbox", "broadcast"]
BroadcastType = Literal["emergency", "notice", "info"]
InboxFilter = Literal["all", "unread", "read"]


class ChannelSelection(BaseModel):
    site_inbox: bool = True
    email: bool = False
    inbox_channel: InboxChannelName = "site_inbox"


class MessageCreate(BaseModel):
    subject: str
    body: str
    priority: Priority = "medium"
    recipient_mode: RecipientMode = "individual"
    building: Optional[str] = None
    recipient_ids: List[int] = []
    channels: ChannelSelection = ChannelSelection()
    broadcast_type: Optional[BroadcastType] = None
    template_id: Optional[int] = None


class MessageRead(BaseModel):
    id: int
    author_id: int
    subject: str
    body: str
    priority: str
    send_site_inbox: bool
    send_email: bool
    inbox_channel: str
    broadcast_type: Optional[str]
    recipient_mode: str
    building_code: Optional[str]
    explicit_recipient_ids: Optional[List[int]]
    template_id: Optional[int]
    created_at: datetime
    recipient_count: int
    site_inbox_status: str
    site_inbox_error: Optional[str]
    email_status: str
    email_error: Optional[str]
    email_recipient_count: int

    model_config = ConfigDict(from_attributes=True)


class LegResultRead(BaseModel):
    ok: bool
    channel: str
    accepted_count: Optional[int] = None
    recipient_ids: Optional[List[int]] = None
    reference: Optional[str] = None
    kind: Optional[str] = None
    detail: Optional[str] = None


class RecipientErrorRead(BaseModel):
    user_id: int
    channel: str
    reason: str


class DispatchResultRead(BaseModel):
    message_id: Optional[int]
    ok: bool
    partial: bool
    accepted_count: int
    failed_channels: List[str]
    site_inbox: Optional[LegResultRead]
    email: Optional[LegResultRead]
    failed: List[RecipientErrorRead] = []


class RetryRequest(BaseModel):
    legs: Optional[List[Literal["site_inbox", "email"]]] = None


class InboxEntryRead(BaseModel):
    id: int
    message_id: Optional[int]
    recipient_user_id: int
    sender_label: str
    message_type: str
    subject: str
    content: str
    priority: str
    is_read: bool
    read_at: Optional[datetime]
    is_archived: bool
    archived_at: Optional[datetime]
    created_at: datetime
    metadata: Optional[Dict[str, Any]] = Field(default=None, validation_alias="extra_data")

    model_config = ConfigDict(from_attributes=True)


class BroadcastEntryRead(BaseModel):
    id: int
    message_id: Optional[int]
    recipient_id: Optional[int]
    broadcast: bool
    type: str
    title: str
    body: str
    sent_at: datetime
    read: bool

    model_config = ConfigDict(from_attributes=True)


class UnreadCount(BaseModel):
    unread: int


class BulkReadResult(BaseModel):
    updated: int
    ids: List[int] = []


class RecipientRead(BaseModel):
    user_id: int
    first_name: str
    last_name: str
    unit_number: str
    building: str
    email: Optional[str]
    directory_opt_in: bool
    email_notifications_enabled: bool

    model_config = ConfigDict(from_attributes=True)


class RecipientPreview(BaseModel):
    recipient_mode: RecipientMode
    building: Optional[str] = None
    recipient_count: int
    email_eligible_count: int


class MessageTemplateRead(BaseModel):
    id: int
    template_name: str
    subject_template: str
    content_template: str
    is_default: bool

    model_config = ConfigDict(from_attributes=True)


class PhotoReviewNotice(BaseModel):
    user_id: int
    photo_title: str
    photo_type: str = "community"
    status: Literal["approved", "rejected"]
    rejection_reason: Optional[str] = None

    @model_validator(mode="after")
    def _strip_reason(self) -> "PhotoReviewNotice":
        if self.rejection_reason is not None:
            self.rejection_reason = self.rejection_reason.strip() or None
        return self
