from typing import List

from fastapi import APIRouter, Depends, Query

from ..models.models import InboxEntry, User
from ..schemas.schemas import BroadcastEntryRead, BulkReadResult, InboxEntryRead, InboxFilter, UnreadCount
from ..services.inbox import InboxReader
from ..services.message_store import MessageStore
from .dependencies import get_current_user, get_message_store

router = APIRouter()
broadcasts_router = APIRouter()


def get_inbox_reader(
    store: MessageStore = Depends(get_message_store),
    current_user: User = Depends(get_current_user),
) -> InboxReader:
    return InboxReader(store, current_user.id)


@router.get("", response_model=List[InboxEntryRead])
def list_inbox(
    filter: InboxFilter = Query("all"),
    include_archived: bool = Query(False),
    reader: InboxReader = Depends(get_inbox_reader),
) -> List[InboxEntry]:
    return reader.list(filter, include_archived=include_archived)


@router.get("/unread-count", response_model=UnreadCount)
def unread_count(reader: InboxReader = Depends(get_inbox_reader)) -> UnreadCount:
    return UnreadCount(unread=reader.unread_count())


@router.post("/read-all", response_model=BulkReadResult)
def mark_all_read(reader: InboxReader = Depends(get_inbox_reader)) -> BulkReadResult:
    ids = reader.mark_all_read()
    return BulkReadResult(updated=len(ids), ids=ids)


@router.get("/{entry_id}", response_model=InboxEntryRead)
def open_entry(entry_id: int, reader: InboxReader = Depends(get_inbox_reader)) -> InboxEntry:
    return reader.open(entry_id)


@router.post("/{entry_id}/read", response_model=InboxEntryRead)
def mark_entry_read(entry_id: int, reader: InboxReader = Depends(get_inbox_reader)) -> InboxEntry:
    return reader.mark_read(entry_id)


@router.post("/{entry_id}/archive", response_model=InboxEntryRead)
def archive_entry(entry_id: int, reader: InboxReader = Depends(get_inbox_reader)) -> InboxEntry:
    return reader.archive(entry_id)


@broadcasts_router.get("", response_model=List[BroadcastEntryRead])
def list_broadcasts(reader: InboxReader = Depends(get_inbox_reader)) -> List[BroadcastEntryRead]:
    return reader.list_broadcasts()
