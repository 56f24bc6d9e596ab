import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..models.models import AuditLog

logger = logging.getLogger(__name__)


def _as_text(payload: Any) -> Optional[str]:
    if payload is None:
        return None
    if isinstance(payload, str):
        return payload
    return json.dumps(payload, default=str, sort_keys=True)


def audit_log(
    db_session: Session,
    actor_user_id: Optional[int],
    action: str,
    target_entity_type: Optional[str] = None,
    target_entity_id: Optional[str] = None,
    before: Any = None,
    after: Any = None,
) -> AuditLog:
    """Append one row to the admin action trail and commit it."""
    entry = AuditLog(
        timestamp=datetime.now(timezone.utc),
        actor_user_id=actor_user_id,
        action=action,
        target_entity_type=target_entity_type,
        target_entity_id=target_entity_id,
        before=_as_text(before),
        after=_as_text(after),
    )
    db_session.add(entry)
    db_session.commit()
    logger.debug("Audit %s by user %s on %s %s", action, actor_user_id, target_entity_type, target_entity_id)
    return entry


def audit_message_event(
    db_session: Session,
    actor_user_id: int,
    action: str,
    message_id: int,
    outcome: Dict[str, Any],
    legs: Optional[list] = None,
) -> AuditLog:
    """Record a compose or retry of an outgoing message with its dispatch outcome."""
    return audit_log(
        db_session,
        actor_user_id=actor_user_id,
        action=action,
        target_entity_type="message",
        target_entity_id=str(message_id),
        before={"legs": sorted(legs)} if legs is not None else None,
        after=outcome,
    )
