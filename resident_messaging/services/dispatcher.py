from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from email.utils import formataddr
from typing import Any, Callable, Dict, Iterable, List, Optional, Set, Union

from ..config import settings
from ..core.errors import DispatchError
from ..models.models import Message
from . import email as email_service
from .channels import EMAIL, SITE_INBOX, get_channel
from .message_store import MessageStore
from .recipients import Recipient
from .templates import render_email_html

logger = logging.getLogger(__name__)

LEGS = (SITE_INBOX, EMAIL)


@dataclass
class RecipientError:
    user_id: int
    channel: str
    reason: str


@dataclass
class ChannelOutcome:
    channel: str
    accepted_count: int
    recipient_ids: List[int] = field(default_factory=list)
    reference: Optional[str] = None

    ok = True


@dataclass
class ChannelError:
    channel: str
    kind: str
    detail: str

    ok = False


LegResult = Union[ChannelOutcome, ChannelError]


@dataclass
class DispatchResult:
    """Per-leg outcome of one send; legs that were not attempted stay ``None``."""

    message_id: Optional[int]
    site_inbox: Optional[LegResult] = None
    email: Optional[LegResult] = None
    failed: List[RecipientError] = field(default_factory=list)

    def legs(self) -> Dict[str, LegResult]:
        legs: Dict[str, LegResult] = {}
        if self.site_inbox is not None:
            legs[SITE_INBOX] = self.site_inbox
        if self.email is not None:
            legs[EMAIL] = self.email
        return legs

    @property
    def accepted_count(self) -> int:
        return sum(leg.accepted_count for leg in self.legs().values() if isinstance(leg, ChannelOutcome))

    @property
    def failed_channels(self) -> List[str]:
        return [name for name, leg in self.legs().items() if isinstance(leg, ChannelError)]

    @property
    def ok(self) -> bool:
        return bool(self.legs()) and not self.failed_channels

    @property
    def partial(self) -> bool:
        failed = self.failed_channels
        return bool(failed) and len(failed) < len(self.legs())

    def as_dict(self) -> Dict[str, Any]:
        def _leg(leg: Optional[LegResult]) -> Optional[Dict[str, Any]]:
            if leg is None:
                return None
            if isinstance(leg, ChannelOutcome):
                return {
                    "ok": True,
                    "channel": leg.channel,
                    "accepted_count": leg.accepted_count,
                    "recipient_ids": list(leg.recipient_ids),
                    "reference": leg.reference,
                }
            return {"ok": False, "channel": leg.channel, "kind": leg.kind, "detail": leg.detail}

        return {
            "message_id": self.message_id,
            "ok": self.ok,
            "partial": self.partial,
            "accepted_count": self.accepted_count,
            "failed_channels": self.failed_channels,
            "site_inbox": _leg(self.site_inbox),
            "email": _leg(self.email),
            "failed": [
                {"user_id": error.user_id, "channel": error.channel, "reason": error.reason} for error in self.failed
            ],
        }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Dispatcher:
    def __init__(
        self,
        store: MessageStore,
        transport: Optional[email_service.MailTransport] = None,
        *,
        sender_name: Optional[str] = None,
        sender_email: Optional[str] = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        self.store = store
        self.transport = transport or email_service.send_mail
        self.sender_name = sender_name or settings.sender_display_name
        if sender_email is None and settings.email_from_address:
            sender_email = str(settings.email_from_address)
        self.sender_email = sender_email
        self.clock = clock

    def dispatch(
        self,
        message: Message,
        recipients: Iterable[Recipient],
        legs: Optional[Set[str]] = None,
    ) -> DispatchResult:
        """Fan ``message`` out to ``recipients`` on each selected leg.

        The legs are independent: a failure on one never rolls back the other,
        and both outcomes are reported. ``legs`` narrows a retry to specific legs.
        """
        unique = {recipient.user_id: recipient for recipient in recipients}
        recipient_list = [unique[user_id] for user_id in sorted(unique)]
        wanted = set(legs) if legs is not None else set(LEGS)
        sent_at = self.clock()
        result = DispatchResult(message_id=message.id)

        if message.send_site_inbox and SITE_INBOX in wanted:
            result.site_inbox = self._dispatch_site_inbox(message, recipient_list, sent_at)
        if message.send_email and EMAIL in wanted:
            result.email = self._dispatch_email(message, recipient_list, sent_at, result.failed)

        self._record_outcome(message, result, len(recipient_list))
        logger.info(
            "Dispatched message %s: accepted=%d failed_channels=%s",
            message.id,
            result.accepted_count,
            result.failed_channels,
        )
        return result

    def _dispatch_site_inbox(self, message: Message, recipients: List[Recipient], sent_at: datetime) -> LegResult:
        channel = get_channel(message.inbox_channel or SITE_INBOX)
        recipient_ids = [recipient.user_id for recipient in recipients]
        rows = channel.build_rows(message, recipient_ids, sent_at)
        try:
            written = self.store.insert_many(rows, channel=channel.name)
        except DispatchError as exc:
            return ChannelError(channel=channel.name, kind=exc.kind, detail=exc.detail)
        return ChannelOutcome(channel=channel.name, accepted_count=written, recipient_ids=recipient_ids)

    def _dispatch_email(
        self,
        message: Message,
        recipients: List[Recipient],
        sent_at: datetime,
        failed: List[RecipientError],
    ) -> LegResult:
        eligible: List[Recipient] = []
        for recipient in recipients:
            if recipient.email_eligible:
                eligible.append(recipient)
            elif not (recipient.email and recipient.email.strip()):
                failed.append(RecipientError(recipient.user_id, EMAIL, "no email address on file"))
            else:
                failed.append(RecipientError(recipient.user_id, EMAIL, "email notifications disabled"))

        if not eligible:
            return ChannelError(
                channel=EMAIL,
                kind="no_eligible_recipients",
                detail=(
                    "No email recipients found. Recipients must have email addresses "
                    "and email notifications enabled."
                ),
            )

        addresses = email_service.normalize_recipients(recipient.email or "" for recipient in eligible)
        html = render_email_html(
            subject=message.subject,
            body=message.body,
            sender_name=self.sender_name,
            sender_email=self.sender_email,
            priority=message.priority,
            sent_at=sent_at,
        )
        subject = f"{settings.email_subject_prefix}{message.subject}"
        from_address = formataddr((self.sender_name, self.sender_email)) if self.sender_email else None
        try:
            send_result = self.transport(addresses, subject, html, from_address)
        except Exception as exc:
            logger.exception("Mail transport raised for message %s.", message.id)
            return ChannelError(channel=EMAIL, kind="transport_error", detail=str(exc))

        if not send_result.accepted:
            return ChannelError(
                channel=EMAIL,
                kind="transport_rejected",
                detail=send_result.error or "Mail transport rejected the message.",
            )
        return ChannelOutcome(
            channel=EMAIL,
            accepted_count=len(eligible),
            recipient_ids=[recipient.user_id for recipient in eligible],
            reference=send_result.request_id,
        )

    def _record_outcome(self, message: Message, result: DispatchResult, recipient_count: int) -> None:
        fields: Dict[str, Any] = {"recipient_count": recipient_count}
        if result.site_inbox is not None:
            fields["site_inbox_status"] = "sent" if result.site_inbox.ok else "failed"
            fields["site_inbox_error"] = None if result.site_inbox.ok else result.site_inbox.detail
        if result.email is not None:
            fields["email_status"] = "sent" if result.email.ok else "failed"
            fields["email_error"] = None if result.email.ok else result.email.detail
            if result.email.ok:
                fields["email_recipient_count"] = result.email.accepted_count
        self.store.update_delivery(message, **fields)
