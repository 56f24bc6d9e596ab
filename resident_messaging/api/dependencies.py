from fastapi import Depends
from sqlalchemy.orm import Session

from ..auth.jwt import get_current_user, get_db
from ..auth.policy import AuthorizationPolicy, RoleAuthorizationPolicy
from ..core.errors import AuthorizationError
from ..models.models import User
from ..services import email
from ..services.email import MailTransport
from ..services.message_store import MessageStore

__all__ = [
    "get_authorization_policy",
    "get_current_user",
    "get_db",
    "get_mail_transport",
    "get_message_store",
    "require_admin",
]


def get_authorization_policy(db: Session = Depends(get_db)) -> AuthorizationPolicy:
    return RoleAuthorizationPolicy(db)


def get_mail_transport() -> MailTransport:
    return email.send_mail


def get_message_store(db: Session = Depends(get_db)) -> MessageStore:
    return MessageStore(db)


def require_admin(
    user: User = Depends(get_current_user),
    policy: AuthorizationPolicy = Depends(get_authorization_policy),
) -> User:
    if not policy.is_admin(user.id):
        raise AuthorizationError("Administrator access required.")
    return user
