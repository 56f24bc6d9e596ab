import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..constants import DEFAULT_PHOTO_REJECTION_REASON, INBOX_MESSAGE_TYPES, PRIORITIES
from ..core.errors import NotFoundError, ValidationError
from ..models.models import InboxEntry, User
from .channels import SITE_INBOX
from .message_store import MessageStore

logger = logging.getLogger(__name__)


def send_system_notice(
    session: Session,
    user_id: int,
    message_type: str,
    subject: str,
    content: str,
    priority: str = "medium",
    metadata: Optional[Dict[str, Any]] = None,
) -> InboxEntry:
    """Write a single site-inbox entry from the portal itself rather than an administrator."""
    if message_type not in INBOX_MESSAGE_TYPES:
        raise ValidationError(f"unknown message type '{message_type}'")
    if priority not in PRIORITIES:
        raise ValidationError(f"unknown priority '{priority}'")
    if not subject.strip() or not content.strip():
        raise ValidationError("System notices need a subject and content.")
    if session.get(User, user_id) is None:
        raise NotFoundError("Recipient not found.")

    entry = InboxEntry(
        recipient_user_id=user_id,
        sender_label=settings.system_sender_label,
        message_type=message_type,
        subject=subject,
        content=content,
        priority=priority,
        is_read=False,
        is_archived=False,
        created_at=datetime.now(timezone.utc),
        extra_data=metadata,
    )
    MessageStore(session).insert_many([entry], channel=SITE_INBOX)
    logger.info("System notice '%s' queued for user %s.", message_type, user_id)
    return entry


def notify_photo_review(
    session: Session,
    user_id: int,
    photo_title: str,
    photo_type: str,
    approved: bool,
    reason: Optional[str] = None,
) -> InboxEntry:
    if approved:
        return send_system_notice(
            session,
            user_id,
            "photo_approval",
            "Photo Approved",
            f'Your photo "{photo_title}" has been approved and is now visible in the community gallery.',
            priority="low",
            metadata={"photo_title": photo_title, "photo_type": photo_type},
        )

    rejection_reason = (reason or "").strip() or DEFAULT_PHOTO_REJECTION_REASON
    return send_system_notice(
        session,
        user_id,
        "photo_rejection",
        "Photo Not Approved",
        (
            f'Your photo "{photo_title}" was not approved.\n\n'
            f"Reason: {rejection_reason}\n\n"
            "You may upload a new photo that meets the community guidelines."
        ),
        priority="medium",
        metadata={
            "photo_title": photo_title,
            "photo_type": photo_type,
            "rejection_reason": rejection_reason,
        },
    )
