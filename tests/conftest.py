import sys
from collections.abc import Callable, Generator
from pathlib import Path
from typing import List, Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from resident_messaging.config import Base  # noqa: E402
import resident_messaging.auth.jwt as app_jwt  # noqa: E402
import resident_messaging.config as app_config  # noqa: E402
import resident_messaging.main as app_main  # noqa: E402
# Import the full models module so every table registers with Base metadata.
from resident_messaging.models import models as _all_models  # noqa: E402,F401
from resident_messaging.models.models import (  # noqa: E402
    NotificationPreference,
    ResidentProfile,
    Role,
    User,
)
from resident_messaging.services.email import SendResult  # noqa: E402

_UNSET = object()


@pytest.fixture(scope="session", autouse=True)
def _configure_global_test_db(tmp_path_factory):
    """Point the app-wide SessionLocal/engine at a throwaway database with all tables."""
    db_dir = tmp_path_factory.mktemp("globaldb")
    db_path = db_dir / "app.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    app_config.SessionLocal = SessionLocal
    app_config.engine = engine
    app_jwt.SessionLocal = SessionLocal
    app_main.SessionLocal = SessionLocal
    app_main.engine = engine
    yield
    engine.dispose()


@pytest.fixture
def db_session(tmp_path) -> Generator[Session, None, None]:
    """Provide a fresh SQLite database for each test."""
    db_path = tmp_path / "test.db"
    engine = create_engine(f"sqlite:///{db_path}")
    Base.metadata.create_all(engine)
    SessionLocal = sessionmaker(bind=engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(engine)
        engine.dispose()


@pytest.fixture
def create_role(db_session: Session) -> Callable[[str], Role]:
    def _create(name: str) -> Role:
        existing = db_session.query(Role).filter(Role.name == name).first()
        if existing:
            return existing
        role = Role(name=name)
        db_session.add(role)
        db_session.commit()
        return role

    return _create


@pytest.fixture
def create_user(db_session: Session, create_role: Callable[[str], Role]) -> Callable[..., User]:
    counter = {"value": 0}

    def _create(email: Optional[str] = None, role_name: str = "RESIDENT", is_active: bool = True) -> User:
        counter["value"] += 1
        role = create_role(role_name)
        user = User(
            email=email or f"user{counter['value']}@example.com",
            full_name=f"User {counter['value']}",
            is_active=is_active,
        )
        user.roles.append(role)
        db_session.add(user)
        db_session.commit()
        return user

    return _create


@pytest.fixture
def create_admin(create_user: Callable[..., User]) -> Callable[..., User]:
    def _create(email: Optional[str] = None) -> User:
        return create_user(email=email, role_name="ADMIN")

    return _create


@pytest.fixture
def create_resident(db_session: Session, create_user: Callable[..., User]) -> Callable[..., User]:
    """Resident with a profile; ``email_notifications=None`` leaves no preference row."""

    def _create(
        unit_number: str,
        email=_UNSET,
        email_notifications: Optional[bool] = True,
        directory_opt_in: bool = True,
        first_name: str = "Pat",
        last_name: str = "Resident",
    ) -> User:
        user = create_user()
        profile_email = user.email if email is _UNSET else email
        db_session.add(
            ResidentProfile(
                user_id=user.id,
                first_name=first_name,
                last_name=last_name,
                unit_number=unit_number,
                email=profile_email,
                directory_opt_in=directory_opt_in,
            )
        )
        if email_notifications is not None:
            db_session.add(NotificationPreference(user_id=user.id, email_notifications=email_notifications))
        db_session.commit()
        return user

    return _create


class RecordingTransport:
    """Mail transport double that records every hand-off."""

    def __init__(self, error: Optional[str] = None, raises: Optional[Exception] = None) -> None:
        self.error = error
        self.raises = raises
        self.calls: List[dict] = []

    def __call__(self, to, subject, html, from_address=None) -> SendResult:
        recipients = list(to)
        self.calls.append({"to": recipients, "subject": subject, "html": html, "from_address": from_address})
        if self.raises is not None:
            raise self.raises
        return SendResult(
            backend="test",
            status_code=None if self.error else 202,
            request_id=None if self.error else "test-message-id",
            error=self.error,
            recipient_count=len(recipients),
        )


@pytest.fixture
def mail_outbox() -> RecordingTransport:
    return RecordingTransport()


@pytest.fixture
def rejecting_transport() -> RecordingTransport:
    return RecordingTransport(error="550 mailbox unavailable")


@pytest.fixture
def make_transport() -> Callable[..., RecordingTransport]:
    return RecordingTransport
