"""Delivery queue routes: listing, batch send, removal and stuck-item recovery."""

from datetime import timedelta
from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from backend.app.api.deps import get_dispatcher, http_error
from backend.app.core.errors import BillingError
from backend.app.core.permissions import require_capability
from backend.app.db.session import get_db
from backend.app.models.user import User
from backend.app.schemas.queue import (
    BulkDeleteRequest,
    BulkDeleteResponse,
    QueueItemRead,
    SendBatchRequest,
    SendBatchResponse,
    StuckFailResponse,
)
from backend.app.services.delivery_queue import (
    fail_stuck_items,
    find_stuck_items,
    list_queue,
    remove_from_queue,
    remove_many_from_queue,
    requeue,
)
from backend.app.services.dispatcher import BatchDispatcher

router = APIRouter(prefix="/queue", tags=["queue"])


def _threshold(older_than_minutes: int | None) -> timedelta | None:
    return timedelta(minutes=older_than_minutes) if older_than_minutes is not None else None


@router.get("/", response_model=List[QueueItemRead])
async def list_items(
    status: str | None = None,
    skip: int = 0,
    limit: int = 100,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.view")),
):
    return list_queue(db, status=status, skip=skip, limit=limit)


@router.post("/send-batch", response_model=SendBatchResponse)
def send_batch(
    payload: SendBatchRequest,
    db: Session = Depends(get_db),
    dispatcher: BatchDispatcher = Depends(get_dispatcher),
    current_user: User = Depends(require_capability("queue.send")),
):
    item_ids = None if payload.all else payload.item_ids
    result = dispatcher.claim_and_send(db, item_ids=item_ids, actor_id=current_user.id)
    return {
        "success": result.success,
        "sent_count": result.sent_count,
        "failed_count": result.failed_count,
        "batch_id": result.batch_id,
        "error": result.error,
        "message_id": result.message_id,
        "render_errors": result.render_errors,
        "missing": result.missing,
    }


@router.get("/stuck", response_model=List[QueueItemRead])
async def list_stuck(
    older_than_minutes: int | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.view")),
):
    return find_stuck_items(db, older_than=_threshold(older_than_minutes))


@router.post("/stuck/fail", response_model=StuckFailResponse)
async def fail_stuck(
    older_than_minutes: int | None = None,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.send")),
):
    failed = fail_stuck_items(db, older_than=_threshold(older_than_minutes), actor_id=current_user.id)
    return {"failed_count": failed}


@router.post("/bulk-delete", response_model=BulkDeleteResponse)
async def bulk_delete(
    payload: BulkDeleteRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.delete")),
):
    try:
        removed = remove_many_from_queue(db, payload.ids, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)
    return {
        "deleted_count": len(removed),
        "deleted_ids": removed,
        "message": f"{len(removed)} item(s) removed from queue",
    }


@router.delete("/{item_id}", response_model=QueueItemRead)
async def delete_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.delete")),
):
    try:
        return remove_from_queue(db, item_id, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{item_id}/requeue", response_model=QueueItemRead, status_code=status.HTTP_200_OK)
async def requeue_item(
    item_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("queue.send")),
):
    try:
        return requeue(db, item_id, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)
