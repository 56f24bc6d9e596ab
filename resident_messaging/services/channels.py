from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import and_, case, or_

from ..config import settings
from ..constants import PRIORITY_RANK, PRIORITY_TO_BROADCAST_TYPE
from ..core.errors import ValidationError
from ..models.models import BroadcastEntry, InboxEntry, Message

SITE_INBOX = "site_inbox"
BROADCAST = "broadcast"
EMAIL = "email"


class NotificationChannel(ABC):
    """An in-portal delivery family: how rows are built, who sees them, how they sort."""

    name: str
    model: Any

    @abstractmethod
    def build_rows(self, message: Message, recipient_ids: Iterable[int], sent_at: datetime) -> List[Any]:
        ...

    @abstractmethod
    def visible_to(self, user_id: int) -> Any:
        ...

    @abstractmethod
    def order_by(self) -> List[Any]:
        ...


class SiteInboxChannel(NotificationChannel):
    name = SITE_INBOX
    model = InboxEntry

    def __init__(self, sender_label: Optional[str] = None, message_type: str = "general") -> None:
        self.sender_label = sender_label or settings.sender_display_name
        self.message_type = message_type

    def build_rows(self, message: Message, recipient_ids: Iterable[int], sent_at: datetime) -> List[InboxEntry]:
        metadata: Dict[str, Any] = {
            "sent_via": "admin_messaging",
            "recipient_mode": message.recipient_mode,
            "building": message.building_code,
        }
        return [
            InboxEntry(
                message_id=message.id,
                recipient_user_id=recipient_id,
                sender_user_id=message.author_id,
                sender_label=self.sender_label,
                message_type=self.message_type,
                subject=message.subject,
                content=message.body,
                priority=message.priority,
                is_read=False,
                is_archived=False,
                created_at=sent_at,
                extra_data=dict(metadata),
            )
            for recipient_id in sorted(set(recipient_ids))
        ]

    def visible_to(self, user_id: int) -> Any:
        return InboxEntry.recipient_user_id == user_id

    def order_by(self) -> List[Any]:
        priority_rank = case(PRIORITY_RANK, value=InboxEntry.priority, else_=0)
        return [
            InboxEntry.is_read.asc(),
            priority_rank.desc(),
            InboxEntry.created_at.desc(),
            InboxEntry.id.desc(),
        ]


class BroadcastChannel(NotificationChannel):
    name = BROADCAST
    model = BroadcastEntry

    def __init__(self, emergency_overrides_read_state: Optional[bool] = None) -> None:
        if emergency_overrides_read_state is None:
            emergency_overrides_read_state = settings.emergency_overrides_read_state
        self.emergency_overrides_read_state = emergency_overrides_read_state

    @staticmethod
    def broadcast_type_for(message: Message) -> str:
        return message.broadcast_type or PRIORITY_TO_BROADCAST_TYPE.get(message.priority, "info")

    def build_rows(self, message: Message, recipient_ids: Iterable[int], sent_at: datetime) -> List[BroadcastEntry]:
        entry_type = self.broadcast_type_for(message)
        is_broadcast = message.recipient_mode == "all"
        return [
            BroadcastEntry(
                message_id=message.id,
                recipient_id=recipient_id,
                broadcast=is_broadcast,
                type=entry_type,
                title=message.subject,
                body=message.body,
                sent_at=sent_at,
                read=False,
            )
            for recipient_id in sorted(set(recipient_ids))
        ]

    def visible_to(self, user_id: int) -> Any:
        shared = and_(BroadcastEntry.broadcast.is_(True), BroadcastEntry.recipient_id.is_(None))
        return or_(BroadcastEntry.recipient_id == user_id, shared)

    def order_by(self) -> List[Any]:
        emergency_first = case((BroadcastEntry.type == "emergency", 0), else_=1)
        if self.emergency_overrides_read_state:
            leading = [emergency_first, BroadcastEntry.read.asc()]
        else:
            leading = [BroadcastEntry.read.asc(), emergency_first]
        return leading + [BroadcastEntry.sent_at.desc(), BroadcastEntry.id.desc()]


def get_channel(name: str) -> NotificationChannel:
    if name == SITE_INBOX:
        return SiteInboxChannel()
    if name == BROADCAST:
        return BroadcastChannel()
    raise ValidationError(f"unknown inbox channel '{name}'")
