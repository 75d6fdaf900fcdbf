"""Timesheet routes: entry capture, approval and double-booking checks."""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.app.api.deps import http_error
from backend.app.core.errors import BillingError
from backend.app.core.permissions import require_capability
from backend.app.db.session import get_db
from backend.app.models.timesheet import Timesheet
from backend.app.models.user import User
from backend.app.schemas.queue import QueueItemRead
from backend.app.schemas.timesheet import (
    OverlapCheckRequest,
    OverlapCheckResponse,
    TimesheetCreate,
    TimesheetRead,
    TimesheetRejectRequest,
    TimesheetUpdate,
)
from backend.app.services.overlap import check_overlaps
from backend.app.services.timesheets import (
    approve_timesheet,
    create_timesheet,
    reject_timesheet,
    submit_timesheet,
    update_timesheet,
    validate_entry,
)

router = APIRouter(prefix="/timesheets", tags=["timesheets"])


def _get_timesheet_or_404(db: Session, timesheet_id: int) -> Timesheet:
    timesheet = db.query(Timesheet).filter(Timesheet.id == timesheet_id, Timesheet.deleted_at.is_(None)).first()
    if not timesheet:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Timesheet not found")
    return timesheet


@router.post("/check-overlaps", response_model=OverlapCheckResponse)
async def check_timesheet_overlaps(
    payload: OverlapCheckRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.view")),
):
    try:
        candidates = [validate_entry(entry)[0] for entry in payload.entries]
    except BillingError as exc:
        raise http_error(exc)
    conflicts = check_overlaps(
        db,
        payload.provider_id,
        payload.client_id,
        candidates,
        exclude_timesheet_id=payload.exclude_timesheet_id,
        is_supervisory=payload.is_supervisory,
    )
    return {"has_overlaps": bool(conflicts), "conflicts": conflicts}


@router.post("/", response_model=TimesheetRead, status_code=status.HTTP_201_CREATED)
async def create(
    payload: TimesheetCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.create")),
):
    try:
        return create_timesheet(db, payload, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.get("/{timesheet_id}", response_model=TimesheetRead)
async def read_timesheet(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.view")),
):
    return _get_timesheet_or_404(db, timesheet_id)


@router.patch("/{timesheet_id}", response_model=TimesheetRead)
async def update(
    timesheet_id: int,
    payload: TimesheetUpdate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.edit")),
):
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    try:
        return update_timesheet(db, timesheet, payload, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{timesheet_id}/approve", response_model=QueueItemRead)
async def approve(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.approve")),
):
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    try:
        return approve_timesheet(db, timesheet, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{timesheet_id}/submit", response_model=TimesheetRead)
async def submit(
    timesheet_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.edit")),
):
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    try:
        return submit_timesheet(db, timesheet, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{timesheet_id}/reject", response_model=TimesheetRead)
async def reject(
    timesheet_id: int,
    payload: TimesheetRejectRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("timesheets.approve")),
):
    timesheet = _get_timesheet_or_404(db, timesheet_id)
    try:
        return reject_timesheet(db, timesheet, payload.reason, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)
