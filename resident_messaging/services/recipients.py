from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Sequence, Set, Union

from sqlalchemy import func, or_
from sqlalchemy.orm import Session

from ..config import settings
from ..constants import RECIPIENT_MODES
from ..core.errors import ResolutionError, ValidationError
from ..models.models import NotificationPreference, ResidentProfile

logger = logging.getLogger(__name__)

Selector = Union[None, str, Iterable[int]]


def derive_building(unit_number: Optional[str]) -> str:
    """Building letter for a unit such as ``"b2G"`` -> ``"B"``."""
    if not unit_number:
        return ""
    return unit_number.strip()[:1].upper()


@dataclass(frozen=True)
class Recipient:
    user_id: int
    unit_number: str
    email: Optional[str]
    email_notifications_enabled: bool
    directory_opt_in: bool
    first_name: str = ""
    last_name: str = ""

    @property
    def building(self) -> str:
        return derive_building(self.unit_number)

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or self.unit_number

    @property
    def email_eligible(self) -> bool:
        return bool(self.email and self.email.strip()) and self.email_notifications_enabled


def load_recipients(session: Session, user_ids: Optional[Iterable[int]] = None) -> List[Recipient]:
    """Fetch recipient rows together with their email preference in one query."""
    query = (
        session.query(ResidentProfile, NotificationPreference.email_notifications)
        .outerjoin(NotificationPreference, NotificationPreference.user_id == ResidentProfile.user_id)
        .order_by(ResidentProfile.unit_number.asc(), ResidentProfile.user_id.asc())
    )
    if user_ids is not None:
        ids = sorted(set(user_ids))
        if not ids:
            return []
        query = query.filter(ResidentProfile.user_id.in_(ids))
    return [_to_recipient(profile, email_pref) for profile, email_pref in query.all()]


def _to_recipient(profile: ResidentProfile, email_pref: Optional[bool]) -> Recipient:
    return Recipient(
        user_id=profile.user_id,
        unit_number=profile.unit_number or "",
        email=profile.email,
        # No preference row means the resident never opted in to email.
        email_notifications_enabled=bool(email_pref),
        directory_opt_in=bool(profile.directory_opt_in),
        first_name=profile.first_name or "",
        last_name=profile.last_name or "",
    )


def normalize_building(selector: Selector, buildings: Optional[Sequence[str]] = None) -> str:
    if selector is None or not isinstance(selector, str) or not selector.strip():
        raise ValidationError("building required")
    building = selector.strip().upper()
    allowed = [value.upper() for value in (buildings if buildings is not None else settings.buildings)]
    if building not in allowed:
        raise ValidationError(f"unknown building '{building}'; expected one of {', '.join(allowed)}")
    return building


def normalize_individual(selector: Selector) -> Set[int]:
    if selector is None or isinstance(selector, str):
        raise ValidationError("no recipients selected")
    selected = {int(user_id) for user_id in selector}
    if not selected:
        raise ValidationError("no recipients selected")
    return selected


def resolve_recipients(
    mode: str,
    selector: Selector,
    snapshot: Iterable[Recipient],
    buildings: Optional[Sequence[str]] = None,
) -> Set[int]:
    """Turn a recipient mode and selector into user ids; pure over ``snapshot``."""
    if mode not in RECIPIENT_MODES:
        raise ValidationError(f"unknown recipient mode '{mode}'")

    if mode == "all":
        resolved = {recipient.user_id for recipient in snapshot if recipient.directory_opt_in}
    elif mode == "building":
        building = normalize_building(selector, buildings)
        resolved = {recipient.user_id for recipient in snapshot if recipient.building == building}
    else:
        selected = normalize_individual(selector)
        known = {recipient.user_id for recipient in snapshot}
        unknown = selected - known
        if unknown:
            logger.warning("Dropping %d unknown recipient id(s): %s", len(unknown), sorted(unknown))
        resolved = selected & known

    if not resolved:
        raise ResolutionError("No recipients found for the selected criteria")
    return resolved


class RecipientResolver:
    def __init__(self, session: Session, buildings: Optional[Sequence[str]] = None) -> None:
        self._session = session
        self._buildings = list(buildings if buildings is not None else settings.buildings)

    def validate(self, mode: str, selector: Selector) -> None:
        """Selector checks that need no store access."""
        if mode not in RECIPIENT_MODES:
            raise ValidationError(f"unknown recipient mode '{mode}'")
        if mode == "building":
            normalize_building(selector, self._buildings)
        elif mode == "individual":
            normalize_individual(selector)

    def snapshot(self, mode: str, selector: Selector) -> List[Recipient]:
        if mode == "individual":
            return load_recipients(self._session, normalize_individual(selector))
        return load_recipients(self._session)

    def resolve(self, mode: str, selector: Selector) -> Set[int]:
        return set(self.resolve_recipients(mode, selector))

    def resolve_recipients(self, mode: str, selector: Selector) -> Dict[int, Recipient]:
        self.validate(mode, selector)
        snapshot = self.snapshot(mode, selector)
        resolved = resolve_recipients(mode, selector, snapshot, self._buildings)
        return {recipient.user_id: recipient for recipient in snapshot if recipient.user_id in resolved}

    def preview(self, mode: str, selector: Selector) -> Dict[str, int]:
        try:
            recipients = self.resolve_recipients(mode, selector)
        except ResolutionError:
            return {"recipient_count": 0, "email_eligible_count": 0}
        return {
            "recipient_count": len(recipients),
            "email_eligible_count": sum(1 for recipient in recipients.values() if recipient.email_eligible),
        }

    def search(self, term: str, *, require_email: bool = False, limit: Optional[int] = None) -> List[Recipient]:
        cleaned = (term or "").strip()
        if len(cleaned) < settings.resident_search_min_length:
            return []
        pattern = f"%{cleaned.lower()}%"
        query = (
            self._session.query(ResidentProfile, NotificationPreference.email_notifications)
            .outerjoin(NotificationPreference, NotificationPreference.user_id == ResidentProfile.user_id)
            .filter(
                or_(
                    func.lower(ResidentProfile.first_name).like(pattern),
                    func.lower(ResidentProfile.last_name).like(pattern),
                    func.lower(ResidentProfile.unit_number).like(pattern),
                    func.lower(ResidentProfile.email).like(pattern),
                )
            )
            .order_by(ResidentProfile.last_name.asc(), ResidentProfile.first_name.asc())
        )
        if require_email:
            query = query.filter(ResidentProfile.email.isnot(None), ResidentProfile.email != "")
        rows = query.limit(limit or settings.resident_search_limit).all()
        return [_to_recipient(profile, email_pref) for profile, email_pref in rows]
