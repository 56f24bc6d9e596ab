from __future__ import annotations

import logging
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..auth.policy import AuthorizationPolicy
from ..constants import BROADCAST_TYPES, PRIORITIES
from ..core.errors import AuthorizationError, DispatchError, MessagingError, NotFoundError, ValidationError
from ..models.models import Message, MessageTemplate
from ..schemas.schemas import MessageCreate
from .audit import audit_message_event
from .channels import BROADCAST, EMAIL, SITE_INBOX
from .dispatcher import DispatchResult, Dispatcher
from .email import MailTransport
from .message_store import MessageStore
from .recipients import RecipientResolver, Selector
from .templates import build_merge_context, render_template

logger = logging.getLogger(__name__)


class ComposerState(str, Enum):
    IDLE = "idle"
    VALIDATING = "validating"
    DISPATCHING = "dispatching"
    SENT = "sent"
    FAILED = "failed"


TRANSITIONS: Dict[ComposerState, FrozenSet[ComposerState]] = {
    ComposerState.IDLE: frozenset({ComposerState.VALIDATING}),
    ComposerState.VALIDATING: frozenset({ComposerState.DISPATCHING, ComposerState.FAILED}),
    ComposerState.DISPATCHING: frozenset({ComposerState.SENT, ComposerState.FAILED}),
    ComposerState.SENT: frozenset({ComposerState.IDLE}),
    ComposerState.FAILED: frozenset({ComposerState.IDLE}),
}


class Composer:
    """Admin-side form state driving resolve-then-dispatch for one author."""

    def __init__(
        self,
        session: Session,
        author_id: int,
        policy: AuthorizationPolicy,
        transport: Optional[MailTransport] = None,
        *,
        resolver: Optional[RecipientResolver] = None,
        dispatcher: Optional[Dispatcher] = None,
    ) -> None:
        self.session = session
        self.author_id = author_id
        self.policy = policy
        self.store = MessageStore(session)
        self.resolver = resolver or RecipientResolver(session)
        self.dispatcher = dispatcher or Dispatcher(self.store, transport)
        self.state = ComposerState.IDLE
        self.last_error: Optional[MessagingError] = None
        self.last_result: Optional[DispatchResult] = None
        self._clear_fields()

    def _clear_fields(self) -> None:
        self.subject = ""
        self.body = ""
        self.priority = "medium"
        self.recipient_mode = "individual"
        self.building: Optional[str] = None
        self.selected_recipients: Set[int] = set()
        self.send_site_inbox = True
        self.send_email = False
        self.inbox_channel = SITE_INBOX
        self.broadcast_type: Optional[str] = None
        self.template_id: Optional[int] = None

    def _transition(self, target: ComposerState) -> None:
        if target not in TRANSITIONS[self.state]:
            raise ValidationError(f"cannot move composer from {self.state.value} to {target.value}")
        logger.debug("Composer for user %s: %s -> %s", self.author_id, self.state.value, target.value)
        self.state = target

    def reset(self) -> None:
        self._clear_fields()
        self.last_error = None
        self.last_result = None
        if self.state != ComposerState.IDLE:
            logger.debug("Composer for user %s reset from %s", self.author_id, self.state.value)
        self.state = ComposerState.IDLE

    # --- Form helpers ----------------------------------------------------

    def apply_template(self, template: MessageTemplate, context: Optional[Dict[str, str]] = None) -> None:
        rendered = render_template(template, context or build_merge_context())
        self.subject = rendered["subject"]
        self.body = rendered["body"]
        self.template_id = template.id

    def toggle_recipient(self, user_id: int) -> bool:
        """Flip ``user_id`` in the individual selection; returns whether it is now selected."""
        if user_id in self.selected_recipients:
            self.selected_recipients.discard(user_id)
            return False
        self.selected_recipients.add(user_id)
        return True

    def select_recipients(self, user_ids: Iterable[int]) -> None:
        self.selected_recipients = {int(user_id) for user_id in user_ids}

    @property
    def selector(self) -> Selector:
        if self.recipient_mode == "building":
            return self.building
        if self.recipient_mode == "individual":
            return sorted(self.selected_recipients)
        return None

    # --- Submission ------------------------------------------------------

    def _validate_fields(self) -> None:
        if not self.subject or not self.subject.strip():
            raise ValidationError("Subject is required.")
        if not self.body or not self.body.strip():
            raise ValidationError("Message body is required.")
        if not (self.send_site_inbox or self.send_email):
            raise ValidationError("Select at least one delivery channel.")
        if self.priority not in PRIORITIES:
            raise ValidationError(f"unknown priority '{self.priority}'")
        if self.inbox_channel not in (SITE_INBOX, BROADCAST):
            raise ValidationError(f"unknown inbox channel '{self.inbox_channel}'")
        if self.broadcast_type is not None and self.broadcast_type not in BROADCAST_TYPES:
            raise ValidationError(f"unknown broadcast type '{self.broadcast_type}'")
        self.resolver.validate(self.recipient_mode, self.selector)

    def _fail(self, exc: MessagingError) -> None:
        self.last_error = exc
        self._transition(ComposerState.FAILED)

    def submit(self) -> DispatchResult:
        """Validate, resolve and dispatch the current form.

        Raises ``AuthorizationError`` for non-administrators and surfaces
        ``ValidationError``/``ResolutionError`` unchanged; in both of those
        cases nothing is written. A dispatch with failed legs is returned, not
        raised, and leaves the composer in ``FAILED`` with the result kept. A
        store write failure rolls back and raises ``DispatchError``.
        """
        if not self.policy.is_admin(self.author_id):
            logger.warning("User %s attempted to send a message without admin rights.", self.author_id)
            raise AuthorizationError("Only administrators can send messages.")

        if self.state in (ComposerState.SENT, ComposerState.FAILED):
            self._transition(ComposerState.IDLE)
        self.last_error = None
        self.last_result = None
        self._transition(ComposerState.VALIDATING)

        try:
            self._validate_fields()
            recipients = self.resolver.resolve_recipients(self.recipient_mode, self.selector)
        except MessagingError as exc:
            self._fail(exc)
            raise

        self._transition(ComposerState.DISPATCHING)
        building_code = self.building.strip().upper() if self.recipient_mode == "building" else None
        explicit_ids = sorted(self.selected_recipients) if self.recipient_mode == "individual" else None
        try:
            message = self.store.record_message(
                Message(
                    author_id=self.author_id,
                    subject=self.subject.strip(),
                    body=self.body,
                    priority=self.priority,
                    send_site_inbox=self.send_site_inbox,
                    send_email=self.send_email,
                    inbox_channel=self.inbox_channel,
                    broadcast_type=self.broadcast_type,
                    recipient_mode=self.recipient_mode,
                    building_code=building_code,
                    explicit_recipient_ids=explicit_ids,
                    template_id=self.template_id,
                    site_inbox_status="pending" if self.send_site_inbox else "skipped",
                    email_status="pending" if self.send_email else "skipped",
                )
            )
            result = self.dispatcher.dispatch(message, recipients.values())
            self.last_result = result
            audit_message_event(self.session, self.author_id, "messages.compose", message.id, result.as_dict())
        except SQLAlchemyError as exc:
            self.session.rollback()
            logger.exception("Store write failed while sending a message for user %s.", self.author_id)
            error = DispatchError(f"Failed to record message: {exc}", kind="store_write_failed")
            self._fail(error)
            raise error from exc
        except DispatchError as exc:
            self._fail(exc)
            raise

        if result.ok:
            self._transition(ComposerState.SENT)
            self._clear_fields()
        else:
            self._transition(ComposerState.FAILED)
            logger.warning("Message %s finished with failed legs: %s", message.id, result.failed_channels)
        return result


def _load_template(session: Session, template_id: int) -> MessageTemplate:
    template = session.get(MessageTemplate, template_id)
    if template is None:
        raise ValidationError(f"unknown template {template_id}")
    return template


def build_composer(
    session: Session,
    author_id: int,
    payload: MessageCreate,
    policy: AuthorizationPolicy,
    transport: Optional[MailTransport] = None,
) -> Composer:
    composer = Composer(session, author_id, policy, transport)
    if payload.template_id is not None:
        composer.apply_template(_load_template(session, payload.template_id))
    if payload.subject.strip():
        composer.subject = payload.subject
    if payload.body.strip():
        composer.body = payload.body
    composer.priority = payload.priority
    composer.recipient_mode = payload.recipient_mode
    composer.building = payload.building
    composer.select_recipients(payload.recipient_ids)
    composer.send_site_inbox = payload.channels.site_inbox
    composer.send_email = payload.channels.email
    composer.inbox_channel = payload.channels.inbox_channel
    composer.broadcast_type = payload.broadcast_type
    return composer


def compose_and_send(
    session: Session,
    author_id: int,
    payload: MessageCreate,
    policy: AuthorizationPolicy,
    transport: Optional[MailTransport] = None,
) -> DispatchResult:
    return build_composer(session, author_id, payload, policy, transport).submit()


def _stored_selector(message: Message) -> Selector:
    if message.recipient_mode == "building":
        return message.building_code
    if message.recipient_mode == "individual":
        return list(message.explicit_recipient_ids or [])
    return None


def retry_failed_legs(
    session: Session,
    message_id: int,
    actor_id: int,
    policy: AuthorizationPolicy,
    transport: Optional[MailTransport] = None,
    legs: Optional[List[str]] = None,
) -> DispatchResult:
    """Re-dispatch the legs of ``message_id`` whose last attempt failed."""
    if not policy.is_admin(actor_id):
        raise AuthorizationError("Only administrators can retry messages.")
    store = MessageStore(session)
    message = store.get_message(message_id)
    if message is None:
        raise NotFoundError("Message not found.")

    failed: Set[str] = set()
    if message.send_site_inbox and message.site_inbox_status == "failed":
        failed.add(SITE_INBOX)
    if message.send_email and message.email_status == "failed":
        failed.add(EMAIL)
    if legs is not None:
        failed &= set(legs)
    if not failed:
        raise ValidationError("Message has no failed delivery legs to retry.")

    recipients = RecipientResolver(session).resolve_recipients(message.recipient_mode, _stored_selector(message))
    result = Dispatcher(store, transport).dispatch(message, recipients.values(), legs=failed)
    audit_message_event(session, actor_id, "messages.retry", message.id, result.as_dict(), legs=list(failed))
    logger.info("Retried legs %s for message %s (ok=%s).", sorted(failed), message.id, result.ok)
    return result
