from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..core.errors import DispatchError
from ..models.models import BroadcastEntry, InboxEntry, Message
from .channels import BroadcastChannel, SiteInboxChannel

logger = logging.getLogger(__name__)

INBOX_FILTERS = ("all", "unread", "read")


class MessageStore:
    """Session-backed access to messages and their per-recipient delivery rows."""

    def __init__(self, session: Session) -> None:
        self.session = session

    # --- Messages -------------------------------------------------------

    def record_message(self, message: Message) -> Message:
        """Persist the authored message before any fan-out happens."""
        self.session.add(message)
        self.session.commit()
        self.session.refresh(message)
        return message

    def get_message(self, message_id: int) -> Optional[Message]:
        return self.session.get(Message, message_id)

    def list_messages(self, limit: Optional[int] = None, author_id: Optional[int] = None) -> List[Message]:
        query = self.session.query(Message)
        if author_id is not None:
            query = query.filter(Message.author_id == author_id)
        return (
            query.order_by(Message.created_at.desc(), Message.id.desc())
            .limit(limit or settings.sent_message_log_limit)
            .all()
        )

    def update_delivery(self, message: Message, **fields: Any) -> Message:
        for key, value in fields.items():
            setattr(message, key, value)
        self.session.add(message)
        self.session.commit()
        return message

    # --- Fan-out --------------------------------------------------------

    def insert_many(self, rows: Sequence[Any], *, channel: Optional[str] = None) -> int:
        """Write one leg's rows as a single batch; all or nothing."""
        if not rows:
            return 0
        try:
            self.session.add_all(rows)
            self.session.commit()
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Batched insert of %d %s row(s) failed.", len(rows), channel or "delivery")
            raise DispatchError(
                f"Failed to record {channel or 'delivery'} entries: {exc}",
                channel=channel,
                kind="store_write_failed",
            ) from exc
        return len(rows)

    # --- Site inbox -----------------------------------------------------

    def list_inbox(
        self,
        user_id: int,
        filter_: str = "all",
        *,
        include_archived: bool = False,
        channel: Optional[SiteInboxChannel] = None,
    ) -> List[InboxEntry]:
        channel = channel or SiteInboxChannel()
        query = self.session.query(InboxEntry).filter(channel.visible_to(user_id))
        if not include_archived:
            query = query.filter(InboxEntry.is_archived.is_(False))
        if filter_ == "unread":
            query = query.filter(InboxEntry.is_read.is_(False))
        elif filter_ == "read":
            query = query.filter(InboxEntry.is_read.is_(True))
        return query.order_by(*channel.order_by()).all()

    def get_inbox_entry(self, entry_id: int) -> Optional[InboxEntry]:
        return self.session.get(InboxEntry, entry_id)

    def mark_inbox_read(self, entry: InboxEntry, read_at: datetime) -> InboxEntry:
        entry.is_read = True
        entry.read_at = read_at
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def archive_inbox_entry(self, entry: InboxEntry, archived_at: datetime) -> InboxEntry:
        entry.is_archived = True
        entry.archived_at = archived_at
        self.session.add(entry)
        self.session.commit()
        self.session.refresh(entry)
        return entry

    def mark_all_inbox_read(self, user_id: int, read_at: datetime) -> List[int]:
        unread = (
            self.session.query(InboxEntry)
            .filter(
                InboxEntry.recipient_user_id == user_id,
                InboxEntry.is_read.is_(False),
                InboxEntry.is_archived.is_(False),
            )
            .all()
        )
        if not unread:
            return []
        for entry in unread:
            entry.is_read = True
            entry.read_at = read_at
            self.session.add(entry)
        self.session.commit()
        return [entry.id for entry in unread]

    def unread_count(self, user_id: int) -> int:
        return (
            self.session.query(InboxEntry)
            .filter(
                InboxEntry.recipient_user_id == user_id,
                InboxEntry.is_read.is_(False),
                InboxEntry.is_archived.is_(False),
            )
            .count()
        )

    # --- Broadcasts -----------------------------------------------------

    def list_broadcasts(self, user_id: int, channel: Optional[BroadcastChannel] = None) -> List[BroadcastEntry]:
        channel = channel or BroadcastChannel()
        return (
            self.session.query(BroadcastEntry)
            .filter(channel.visible_to(user_id))
            .order_by(*channel.order_by())
            .all()
        )

    def mark_broadcasts_read(self, entries: Sequence[BroadcastEntry]) -> int:
        if not entries:
            return 0
        for entry in entries:
            entry.read = True
            self.session.add(entry)
        self.session.commit()
        return len(entries)
