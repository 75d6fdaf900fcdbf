"""Shared router dependencies and domain-error translation."""

from fastapi import HTTPException, status

from backend.app.core.errors import (
    BillingError,
    ConcurrencyConflict,
    DuplicateInvoiceError,
    InvalidQueueTransition,
    OverlapConflictError,
    QueueItemNotFound,
)
from backend.app.schemas.timesheet import OverlapConflictRead
from backend.app.services.dispatcher import BatchDispatcher
from backend.app.services.documents import TextDocumentRenderer
from backend.app.services.mailer import SmtpMessageSender


def get_dispatcher() -> BatchDispatcher:
    return BatchDispatcher(renderer=TextDocumentRenderer(), sender=SmtpMessageSender())


def http_error(exc: BillingError) -> HTTPException:
    if isinstance(exc, OverlapConflictError):
        conflicts = [OverlapConflictRead.model_validate(c).model_dump(mode="json") for c in exc.conflicts]
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={"message": str(exc), "conflicts": conflicts},
        )
    if isinstance(exc, QueueItemNotFound):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, (InvalidQueueTransition, DuplicateInvoiceError, ConcurrencyConflict)):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
