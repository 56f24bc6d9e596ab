from __future__ import annotations

import logging
from typing import Iterable, Optional, Protocol, Set

from sqlalchemy.orm import Session, joinedload

from ..config import settings
from ..models.models import User

logger = logging.getLogger(__name__)


class AuthorizationPolicy(Protocol):
    def is_admin(self, user_id: int) -> bool:
        ...


class StaticAuthorizationPolicy:
    """Administrators given as a fixed set of user ids."""

    def __init__(self, admin_user_ids: Iterable[int]) -> None:
        self._admin_user_ids: Set[int] = set(admin_user_ids)

    def is_admin(self, user_id: int) -> bool:
        return user_id in self._admin_user_ids


class RoleAuthorizationPolicy:
    """Administrators are users holding an admin role, plus any configured ids."""

    def __init__(
        self,
        session: Session,
        admin_role_names: Optional[Iterable[str]] = None,
        admin_user_ids: Optional[Iterable[int]] = None,
    ) -> None:
        self._session = session
        self._role_names = list(admin_role_names if admin_role_names is not None else settings.admin_role_names)
        self._static = StaticAuthorizationPolicy(
            admin_user_ids if admin_user_ids is not None else settings.admin_user_ids
        )

    def is_admin(self, user_id: int) -> bool:
        if self._static.is_admin(user_id):
            return True
        if not self._role_names:
            return False
        user = self._session.query(User).options(joinedload(User.roles)).filter(User.id == user_id).first()
        if user is None or not user.is_active:
            return False
        if not user.has_any_role(*self._role_names):
            logger.debug("User %s holds none of the admin roles %s", user_id, self._role_names)
            return False
        return True
