"""Invoice routes: weekly generation, approval, payments and corrections."""

from typing import List

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from backend.app.api.deps import http_error
from backend.app.core.errors import BillingError
from backend.app.core.permissions import require_capability
from backend.app.db.session import get_db
from backend.app.models.invoice import Invoice
from backend.app.models.user import User
from backend.app.schemas.invoice import (
    AdjustmentCreate,
    AdjustmentRead,
    InvoiceDetail,
    InvoiceGenerateRequest,
    InvoiceGenerateResponse,
    InvoiceRead,
)
from backend.app.schemas.payment import PaymentCreate, PaymentRead
from backend.app.schemas.queue import QueueItemRead
from backend.app.services.invoice_generation import generate_invoices
from backend.app.services.invoices import (
    add_adjustment,
    approve_invoice,
    delete_invoice,
    get_invoice,
    record_payment,
    recalculate_invoice,
)

router = APIRouter(prefix="/invoices", tags=["invoices"])


def _get_invoice_or_404(db: Session, invoice_id: int) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invoice not found")
    return invoice


@router.post("/generate", response_model=InvoiceGenerateResponse)
def generate_weekly_invoices(
    payload: InvoiceGenerateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.create")),
):
    try:
        result = generate_invoices(
            db, payload.timesheet_ids, actor_id=current_user.id, standard_only=payload.standard_only
        )
    except BillingError as exc:
        raise http_error(exc)
    return result


@router.get("/", response_model=List[InvoiceRead])
async def list_invoices(
    status: str | None = None,
    client_id: int | None = None,
    skip: int = 0,
    limit: int = 50,
    sort_by: str = "created_at",
    sort_order: str = "desc",
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.view")),
):
    query = db.query(Invoice).filter(Invoice.deleted_at.is_(None))
    if status:
        query = query.filter(Invoice.status == status)
    if client_id:
        query = query.filter(Invoice.client_id == client_id)

    supported_sort_fields = {
        "created_at": Invoice.created_at,
        "start_date": Invoice.start_date,
        "invoice_number": Invoice.invoice_number,
        "status": Invoice.status,
        "total_amount": Invoice.total_amount,
        "outstanding": Invoice.outstanding,
    }
    if sort_by not in supported_sort_fields:
        raise HTTPException(status_code=400, detail="Invalid sort_by value")
    sort_order_normalized = (sort_order or "desc").lower()
    if sort_order_normalized not in {"asc", "desc"}:
        raise HTTPException(status_code=400, detail="Invalid sort_order value")
    sort_column = supported_sort_fields[sort_by]
    if sort_order_normalized == "asc":
        order_by_clause = [sort_column.asc(), Invoice.id.asc()]
    else:
        order_by_clause = [sort_column.desc(), Invoice.id.desc()]

    query = query.order_by(*order_by_clause).offset(skip).limit(limit)
    return query.all()


@router.get("/{invoice_id}", response_model=InvoiceDetail)
async def read_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.view")),
):
    return _get_invoice_or_404(db, invoice_id)


@router.post("/{invoice_id}/approve", response_model=QueueItemRead)
async def approve(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.approve")),
):
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        return approve_invoice(db, invoice, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{invoice_id}/payments", response_model=PaymentRead, status_code=status.HTTP_201_CREATED)
async def create_payment_for_invoice(
    invoice_id: int,
    payload: PaymentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.payments")),
):
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        return record_payment(
            db,
            invoice,
            payload.amount,
            payload.payment_date,
            reference_number=payload.reference_number,
            notes=payload.notes,
            actor_id=current_user.id,
        )
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{invoice_id}/adjustments", response_model=AdjustmentRead, status_code=status.HTTP_201_CREATED)
async def create_adjustment_for_invoice(
    invoice_id: int,
    payload: AdjustmentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.payments")),
):
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        return add_adjustment(db, invoice, payload.amount, reason=payload.reason, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.post("/{invoice_id}/recalculate", response_model=InvoiceDetail)
async def recalculate(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.correct")),
):
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        return recalculate_invoice(db, invoice, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)


@router.delete("/{invoice_id}", response_model=InvoiceRead)
async def remove_invoice(
    invoice_id: int,
    db: Session = Depends(get_db),
    current_user: User = Depends(require_capability("invoices.correct")),
):
    invoice = _get_invoice_or_404(db, invoice_id)
    try:
        return delete_invoice(db, invoice, actor_id=current_user.id)
    except BillingError as exc:
        raise http_error(exc)
