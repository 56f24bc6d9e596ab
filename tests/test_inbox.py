from datetime import datetime, timedelta

import pytest

from resident_messaging.core.errors import AuthorizationError, NotFoundError, ValidationError
from resident_messaging.models.models import BroadcastEntry, InboxEntry
from resident_messaging.services.channels import BroadcastChannel
from resident_messaging.services.inbox import InboxReader
from resident_messaging.services.message_store import MessageStore

BASE_TIME = datetime(2025, 5, 1, 9, 0)


def _entry(session, user, subject, priority="medium", minutes=0, is_read=False, is_archived=False):
    entry = InboxEntry(
        recipient_user_id=user.id,
        sender_label="SPR Admin",
        subject=subject,
        content=f"{subject} body",
        priority=priority,
        is_read=is_read,
        read_at=BASE_TIME if is_read else None,
        is_archived=is_archived,
        created_at=BASE_TIME + timedelta(minutes=minutes),
    )
    session.add(entry)
    session.commit()
    return entry


def _broadcast(session, recipient_id, title, kind="info", minutes=0, read=False, shared=False):
    entry = BroadcastEntry(
        recipient_id=recipient_id,
        broadcast=shared,
        type=kind,
        title=title,
        body=f"{title} body",
        sent_at=BASE_TIME + timedelta(minutes=minutes),
        read=read,
    )
    session.add(entry)
    session.commit()
    return entry


def _clock(value):
    return lambda: value


def test_inbox_orders_unread_first_then_priority_then_recency(db_session, create_resident):
    resident = create_resident("A1A")
    _entry(db_session, resident, "t1 low unread", priority="low", minutes=1)
    _entry(db_session, resident, "t2 urgent read", priority="urgent", minutes=2, is_read=True)
    _entry(db_session, resident, "t3 urgent unread", priority="urgent", minutes=3)

    entries = InboxReader(MessageStore(db_session), resident.id).list()

    assert [entry.subject for entry in entries] == ["t3 urgent unread", "t1 low unread", "t2 urgent read"]


def test_inbox_breaks_priority_ties_by_newest_first(db_session, create_resident):
    resident = create_resident("A1A")
    _entry(db_session, resident, "older", priority="high", minutes=1)
    _entry(db_session, resident, "newer", priority="high", minutes=5)
    _entry(db_session, resident, "medium", priority="medium", minutes=9)

    entries = InboxReader(MessageStore(db_session), resident.id).list()

    assert [entry.subject for entry in entries] == ["newer", "older", "medium"]


def test_inbox_only_lists_the_callers_entries(db_session, create_resident):
    resident = create_resident("A1A")
    neighbour = create_resident("A2A")
    _entry(db_session, resident, "mine")
    _entry(db_session, neighbour, "theirs")

    entries = InboxReader(MessageStore(db_session), resident.id).list()

    assert [entry.subject for entry in entries] == ["mine"]


def test_inbox_filters_and_archived_entries(db_session, create_resident):
    resident = create_resident("A1A")
    _entry(db_session, resident, "unread", minutes=1)
    _entry(db_session, resident, "read", minutes=2, is_read=True)
    _entry(db_session, resident, "archived", minutes=3, is_archived=True)
    reader = InboxReader(MessageStore(db_session), resident.id)

    assert [entry.subject for entry in reader.list("unread")] == ["unread"]
    assert [entry.subject for entry in reader.list("read")] == ["read"]
    assert {entry.subject for entry in reader.list()} == {"unread", "read"}
    assert {entry.subject for entry in reader.list(include_archived=True)} == {"unread", "read", "archived"}

    with pytest.raises(ValidationError):
        reader.list("starred")


def test_mark_read_is_idempotent_and_keeps_first_timestamp(db_session, create_resident):
    resident = create_resident("A1A")
    entry = _entry(db_session, resident, "notice")
    store = MessageStore(db_session)
    first_seen = datetime(2025, 5, 2, 8, 0)
    later = datetime(2025, 5, 3, 8, 0)

    first = InboxReader(store, resident.id, clock=_clock(first_seen)).mark_read(entry.id)
    second = InboxReader(store, resident.id, clock=_clock(later)).mark_read(entry.id)

    assert first.is_read is True
    assert second.is_read is True
    assert second.read_at == first_seen
    db_session.refresh(entry)
    assert entry.read_at == first_seen


def test_open_marks_unread_entry_read(db_session, create_resident):
    resident = create_resident("A1A")
    entry = _entry(db_session, resident, "notice")
    seen_at = datetime(2025, 5, 4, 12, 0)

    opened = InboxReader(MessageStore(db_session), resident.id, clock=_clock(seen_at)).open(entry.id)

    assert opened.id == entry.id
    assert opened.is_read is True
    assert opened.read_at == seen_at


def test_archive_requires_ownership(db_session, create_resident):
    owner = create_resident("A1A")
    intruder = create_resident("B2B")
    entry = _entry(db_session, owner, "private")
    store = MessageStore(db_session)

    with pytest.raises(AuthorizationError):
        InboxReader(store, intruder.id).archive(entry.id)
    db_session.refresh(entry)
    assert entry.is_archived is False

    archived = InboxReader(store, owner.id).archive(entry.id)
    assert archived.is_archived is True
    assert archived.archived_at is not None
    again = InboxReader(store, owner.id).archive(entry.id)
    assert again.archived_at == archived.archived_at


def test_mark_read_rejects_other_residents_and_missing_entries(db_session, create_resident):
    owner = create_resident("A1A")
    intruder = create_resident("B2B")
    entry = _entry(db_session, owner, "private")
    reader = InboxReader(MessageStore(db_session), intruder.id)

    with pytest.raises(AuthorizationError):
        reader.mark_read(entry.id)
    with pytest.raises(NotFoundError):
        reader.mark_read(9999)


def test_mark_all_read_and_unread_count(db_session, create_resident):
    resident = create_resident("A1A")
    first = _entry(db_session, resident, "one")
    second = _entry(db_session, resident, "two")
    _entry(db_session, resident, "already", is_read=True)
    _entry(db_session, resident, "archived", is_archived=True)
    reader = InboxReader(MessageStore(db_session), resident.id)

    assert reader.unread_count() == 2
    updated = reader.mark_all_read()

    assert sorted(updated) == sorted([first.id, second.id])
    assert reader.unread_count() == 0
    assert reader.mark_all_read() == []


def test_broadcasts_put_emergencies_first_by_default(db_session, create_resident):
    resident = create_resident("A1A")
    _broadcast(db_session, resident.id, "unread info", kind="info", minutes=3)
    _broadcast(db_session, resident.id, "read emergency", kind="emergency", minutes=1, read=True)
    _broadcast(db_session, resident.id, "unread notice", kind="notice", minutes=2)

    entries = MessageStore(db_session).list_broadcasts(resident.id, BroadcastChannel())

    assert [entry.title for entry in entries] == ["read emergency", "unread info", "unread notice"]


def test_broadcasts_can_sort_read_state_ahead_of_emergencies(db_session, create_resident):
    resident = create_resident("A1A")
    _broadcast(db_session, resident.id, "unread info", kind="info", minutes=3)
    _broadcast(db_session, resident.id, "read emergency", kind="emergency", minutes=1, read=True)
    _broadcast(db_session, resident.id, "unread emergency", kind="emergency", minutes=0)

    channel = BroadcastChannel(emergency_overrides_read_state=False)
    entries = MessageStore(db_session).list_broadcasts(resident.id, channel)

    assert [entry.title for entry in entries] == ["unread emergency", "unread info", "read emergency"]


def test_listing_broadcasts_marks_own_entries_read(db_session, create_resident):
    resident = create_resident("A1A")
    neighbour = create_resident("A2A")
    own = _broadcast(db_session, resident.id, "own notice")
    shared = _broadcast(db_session, None, "community notice", shared=True, minutes=1)
    theirs = _broadcast(db_session, neighbour.id, "neighbour notice")

    listed = InboxReader(MessageStore(db_session), resident.id).list_broadcasts()

    assert {entry.title for entry in listed} == {"own notice", "community notice"}
    assert all(entry.read is False for entry in listed)
    db_session.refresh(own)
    db_session.refresh(shared)
    db_session.refresh(theirs)
    assert own.read is True
    assert shared.read is False
    assert theirs.read is False
