from datetime import datetime, timezone
from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base


def utcnow():
    return datetime.now(timezone.utc)


user_roles = Table(
    "user_roles",
    Base.metadata,
    Column("user_id", Integer, ForeignKey("users.id", ondelete="CASCADE"), primary_key=True),
    Column("role_id", Integer, ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("assigned_at", DateTime, default=utcnow, nullable=False),
)


class Role(Base):
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, unique=True, index=True, nullable=False)
    description = Column(String, nullable=True)

    users = orm_relationship("User", secondary=user_roles, back_populates="roles")


class User(Base):
    """Local mirror of an identity-provider account."""

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String, unique=True, index=True, nullable=False)
    full_name = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    is_active = Column(Boolean, default=True, nullable=False)

    roles = orm_relationship("Role", secondary=user_roles, back_populates="users")
    profile = orm_relationship("ResidentProfile", back_populates="user", uselist=False)
    notification_preference = orm_relationship("NotificationPreference", back_populates="user", uselist=False)
    audit_logs = orm_relationship("AuditLog", back_populates="actor")

    def has_any_role(self, *role_names: str) -> bool:
        names = set(role_names)
        return any(role.name in names for role in self.roles)


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, nullable=False)
    actor_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)

    actor = orm_relationship("User", back_populates="audit_logs")


class ResidentProfile(Base):
    __tablename__ = "resident_profiles"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    first_name = Column(String, nullable=False, default="")
    last_name = Column(String, nullable=False, default="")
    unit_number = Column(String, nullable=False, default="")
    email = Column(String, nullable=True)
    directory_opt_in = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = orm_relationship("User", back_populates="profile")


class NotificationPreference(Base):
    __tablename__ = "notification_preferences"

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True)
    email_notifications = Column(Boolean, default=True, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    user = orm_relationship("User", back_populates="notification_preference")


class MessageTemplate(Base):
    __tablename__ = "message_templates"

    id = Column(Integer, primary_key=True, index=True)
    template_name = Column(String, nullable=False, unique=True)
    subject_template = Column(String, nullable=False)
    content_template = Column(Text, nullable=False)
    is_default = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Message(Base):
    """Authored message; one row per composer submission."""

    __tablename__ = "messages"

    id = Column(Integer, primary_key=True, index=True)
    author_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    subject = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    priority = Column(String, nullable=False, default="medium")
    send_site_inbox = Column(Boolean, nullable=False, default=True)
    send_email = Column(Boolean, nullable=False, default=False)
    inbox_channel = Column(String, nullable=False, default="site_inbox")
    broadcast_type = Column(String, nullable=True)
    recipient_mode = Column(String, nullable=False)
    building_code = Column(String(1), nullable=True)
    explicit_recipient_ids = Column(JSON, nullable=True)
    template_id = Column(Integer, ForeignKey("message_templates.id"), nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    recipient_count = Column(Integer, nullable=False, default=0)
    site_inbox_status = Column(String, nullable=False, default="skipped")
    site_inbox_error = Column(Text, nullable=True)
    email_status = Column(String, nullable=False, default="skipped")
    email_error = Column(Text, nullable=True)
    email_recipient_count = Column(Integer, nullable=False, default=0)

    author = orm_relationship("User")
    template = orm_relationship("MessageTemplate")
    inbox_entries = orm_relationship("InboxEntry", back_populates="message")
    broadcast_entries = orm_relationship("BroadcastEntry", back_populates="message")


class InboxEntry(Base):
    __tablename__ = "site_messages"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True, index=True)
    recipient_user_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_user_id = Column(Integer, ForeignKey("users.id"), nullable=True)
    sender_label = Column(String, nullable=False)
    message_type = Column(String, nullable=False, default="general")
    subject = Column(String, nullable=False)
    content = Column(Text, nullable=False)
    priority = Column(String, nullable=False, default="medium")
    is_read = Column(Boolean, nullable=False, default=False)
    read_at = Column(DateTime, nullable=True)
    is_archived = Column(Boolean, nullable=False, default=False)
    archived_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    # "metadata" is reserved on declarative classes
    extra_data = Column("metadata", JSON, nullable=True)

    message = orm_relationship("Message", back_populates="inbox_entries")


class BroadcastEntry(Base):
    __tablename__ = "owner_messages"

    id = Column(Integer, primary_key=True, index=True)
    message_id = Column(Integer, ForeignKey("messages.id"), nullable=True, index=True)
    recipient_id = Column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=True, index=True)
    broadcast = Column(Boolean, nullable=False, default=False)
    type = Column(String, nullable=False, default="info")
    title = Column(String, nullable=False)
    body = Column(Text, nullable=False)
    sent_at = Column(DateTime, default=utcnow, nullable=False)
    read = Column(Boolean, nullable=False, default=False)

    message = orm_relationship("Message", back_populates="broadcast_entries")
