from typing import Dict, List, Optional

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.orm import Session

from ..auth.policy import AuthorizationPolicy
from ..core.errors import NotFoundError
from ..models.models import InboxEntry, Message, MessageTemplate, User
from ..schemas.schemas import (
    DispatchResultRead,
    InboxEntryRead,
    MessageCreate,
    MessageRead,
    MessageTemplateRead,
    PhotoReviewNotice,
    RecipientMode,
    RecipientPreview,
    RecipientRead,
    RetryRequest,
)
from ..services.audit import audit_log
from ..services.composer import compose_and_send, retry_failed_legs
from ..services.dispatcher import DispatchResult
from ..services.email import MailTransport
from ..services.message_store import MessageStore
from ..services.recipients import Recipient, RecipientResolver
from ..services.system_notices import notify_photo_review
from ..services.templates import list_templates, merge_tag_definitions
from .dependencies import (
    get_authorization_policy,
    get_current_user,
    get_db,
    get_mail_transport,
    get_message_store,
    require_admin,
)

router = APIRouter()


def _recipient_read(recipient: Recipient) -> RecipientRead:
    return RecipientRead(
        user_id=recipient.user_id,
        first_name=recipient.first_name,
        last_name=recipient.last_name,
        unit_number=recipient.unit_number,
        building=recipient.building,
        email=recipient.email,
        directory_opt_in=recipient.directory_opt_in,
        email_notifications_enabled=recipient.email_notifications_enabled,
    )


def _status_for(result: DispatchResult) -> int:
    if result.ok:
        return status.HTTP_201_CREATED
    if result.partial:
        return status.HTTP_207_MULTI_STATUS
    return status.HTTP_502_BAD_GATEWAY


@router.post("", response_model=DispatchResultRead, status_code=status.HTTP_201_CREATED)
def send_message(
    payload: MessageCreate,
    response: Response,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: AuthorizationPolicy = Depends(get_authorization_policy),
    transport: MailTransport = Depends(get_mail_transport),
) -> DispatchResultRead:
    result = compose_and_send(db, current_user.id, payload, policy, transport)
    response.status_code = _status_for(result)
    return DispatchResultRead.model_validate(result.as_dict())


@router.get("", response_model=List[MessageRead])
def list_sent_messages(
    limit: Optional[int] = Query(None, ge=1, le=200),
    mine: bool = Query(False, description="Only messages authored by the caller."),
    store: MessageStore = Depends(get_message_store),
    admin: User = Depends(require_admin),
) -> List[Message]:
    return store.list_messages(limit=limit, author_id=admin.id if mine else None)


@router.get("/recipients/preview", response_model=RecipientPreview)
def preview_recipients(
    recipient_mode: RecipientMode = Query(...),
    building: Optional[str] = Query(None),
    recipient_ids: List[int] = Query([]),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> RecipientPreview:
    selector = building if recipient_mode == "building" else recipient_ids
    counts = RecipientResolver(db).preview(recipient_mode, selector)
    return RecipientPreview(recipient_mode=recipient_mode, building=building, **counts)


@router.get("/recipients/search", response_model=List[RecipientRead])
def search_recipients(
    q: str = Query("", description="Name, unit or email fragment."),
    require_email: bool = Query(False),
    limit: Optional[int] = Query(None, ge=1, le=100),
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[RecipientRead]:
    matches = RecipientResolver(db).search(q, require_email=require_email, limit=limit)
    return [_recipient_read(recipient) for recipient in matches]


@router.get("/templates", response_model=List[MessageTemplateRead])
def get_templates(
    db: Session = Depends(get_db),
    _: User = Depends(require_admin),
) -> List[MessageTemplate]:
    return list_templates(db)


@router.get("/templates/merge-tags", response_model=List[Dict[str, str]])
def get_merge_tags(_: User = Depends(require_admin)) -> List[Dict[str, str]]:
    return merge_tag_definitions()


@router.post(
    "/system-notices/photo-review",
    response_model=InboxEntryRead,
    status_code=status.HTTP_201_CREATED,
)
def send_photo_review_notice(
    payload: PhotoReviewNotice,
    db: Session = Depends(get_db),
    admin: User = Depends(require_admin),
) -> InboxEntry:
    entry = notify_photo_review(
        db,
        user_id=payload.user_id,
        photo_title=payload.photo_title,
        photo_type=payload.photo_type,
        approved=payload.status == "approved",
        reason=payload.rejection_reason,
    )
    audit_log(
        db,
        actor_user_id=admin.id,
        action="messages.system_notice",
        target_entity_type="site_message",
        target_entity_id=str(entry.id),
        after={"message_type": entry.message_type, "recipient_user_id": entry.recipient_user_id},
    )
    db.refresh(entry)
    return entry


@router.get("/{message_id}", response_model=MessageRead)
def get_message(
    message_id: int,
    store: MessageStore = Depends(get_message_store),
    _: User = Depends(require_admin),
) -> Message:
    message = store.get_message(message_id)
    if message is None:
        raise NotFoundError("Message not found.")
    return message


@router.post("/{message_id}/retry", response_model=DispatchResultRead)
def retry_message(
    message_id: int,
    response: Response,
    payload: Optional[RetryRequest] = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
    policy: AuthorizationPolicy = Depends(get_authorization_policy),
    transport: MailTransport = Depends(get_mail_transport),
) -> DispatchResultRead:
    legs = payload.legs if payload is not None else None
    result = retry_failed_legs(db, message_id, current_user.id, policy, transport, legs=legs)
    response.status_code = status.HTTP_200_OK if result.ok else _status_for(result)
    return DispatchResultRead.model_validate(result.as_dict())
