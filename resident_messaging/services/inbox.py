from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional

from ..core.errors import AuthorizationError, NotFoundError, ValidationError
from ..models.models import InboxEntry
from ..schemas.schemas import BroadcastEntryRead
from .channels import BroadcastChannel, SiteInboxChannel
from .message_store import INBOX_FILTERS, MessageStore

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InboxReader:
    """Resident-facing view of one caller's inbox and broadcast notices."""

    def __init__(
        self,
        store: MessageStore,
        user_id: int,
        *,
        clock: Callable[[], datetime] = _utcnow,
        broadcast_channel: Optional[BroadcastChannel] = None,
    ) -> None:
        self.store = store
        self.user_id = user_id
        self.clock = clock
        self.site_channel = SiteInboxChannel()
        self.broadcast_channel = broadcast_channel or BroadcastChannel()

    def list(self, filter_: str = "all", *, include_archived: bool = False) -> List[InboxEntry]:
        if filter_ not in INBOX_FILTERS:
            raise ValidationError(f"unknown inbox filter '{filter_}'; expected one of {', '.join(INBOX_FILTERS)}")
        return self.store.list_inbox(
            self.user_id,
            filter_,
            include_archived=include_archived,
            channel=self.site_channel,
        )

    def _owned_entry(self, entry_id: int) -> InboxEntry:
        entry = self.store.get_inbox_entry(entry_id)
        if entry is None:
            raise NotFoundError("Message not found.")
        if entry.recipient_user_id != self.user_id:
            logger.warning("User %s attempted to access inbox entry %s owned by another resident.", self.user_id, entry_id)
            raise AuthorizationError("You can only manage messages in your own inbox.")
        return entry

    def open(self, entry_id: int) -> InboxEntry:
        """Return the entry, marking it read the first time it is viewed."""
        return self.mark_read(entry_id)

    def mark_read(self, entry_id: int) -> InboxEntry:
        entry = self._owned_entry(entry_id)
        if entry.is_read:
            return entry
        return self.store.mark_inbox_read(entry, self.clock())

    def archive(self, entry_id: int) -> InboxEntry:
        entry = self._owned_entry(entry_id)
        if entry.is_archived:
            return entry
        return self.store.archive_inbox_entry(entry, self.clock())

    def mark_all_read(self) -> List[int]:
        return self.store.mark_all_inbox_read(self.user_id, self.clock())

    def unread_count(self) -> int:
        return self.store.unread_count(self.user_id)

    def list_broadcasts(self) -> List[BroadcastEntryRead]:
        """Visible notices as they stood when listed; the caller's unread ones become read."""
        entries = self.store.list_broadcasts(self.user_id, self.broadcast_channel)
        snapshot = [BroadcastEntryRead.model_validate(entry) for entry in entries]
        owned_unread = [entry for entry in entries if entry.recipient_id == self.user_id and not entry.read]
        self.store.mark_broadcasts_read(owned_unread)
        return snapshot
