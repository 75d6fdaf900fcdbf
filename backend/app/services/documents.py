"""Document sources and rendering for queued invoices and timesheets.

Sources are plain snapshots taken on the request thread, so renderers can run
on worker threads without touching the database session.
"""

import re
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Protocol

from backend.app.core.errors import RenderError
from backend.app.models.invoice import Invoice
from backend.app.models.queue_item import ENTITY_INVOICE, QueueItem
from backend.app.models.timesheet import Timesheet


@dataclass(frozen=True)
class DocumentSource:
    queue_item_id: int
    entity_type: str
    entity_id: int
    title: str
    filename: str
    client_name: str
    provider_name: str | None = None
    period: str = ""
    lines: tuple[str, ...] = field(default_factory=tuple)
    total_hours: Decimal | None = None
    total_amount: Decimal | None = None
    is_supervisory: bool = False


class DocumentRenderer(Protocol):
    content_type: str

    def render(self, source: DocumentSource) -> bytes:
        """Return the document bytes or raise ``RenderError``."""


def _slug(value: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", value, flags=re.IGNORECASE).strip("_") or "document"


def _timesheet_source(item: QueueItem, timesheet: Timesheet) -> DocumentSource:
    client_name = timesheet.client.name if timesheet.client else f"Client {timesheet.client_id}"
    total_minutes = sum(entry.minutes or 0 for entry in timesheet.entries)
    lines = tuple(
        f"{entry.entry_date:%m/%d/%Y} {entry.start_time:%H:%M}-{entry.end_time:%H:%M} "
        f"{entry.minutes} min {entry.service_tag or ''}".rstrip()
        for entry in timesheet.entries
    )
    kind = "Supervisory" if timesheet.is_supervisory else "Regular"
    return DocumentSource(
        queue_item_id=item.id,
        entity_type=item.entity_type,
        entity_id=timesheet.id,
        title=f"{kind} Timesheet",
        filename=f"{kind}_Timesheet_{_slug(client_name)}_{timesheet.start_date:%Y-%m-%d}.txt",
        client_name=client_name,
        provider_name=timesheet.provider.name if timesheet.provider else None,
        period=f"{timesheet.start_date:%m/%d/%Y} - {timesheet.end_date:%m/%d/%Y}",
        lines=lines,
        total_hours=(Decimal(total_minutes) / Decimal("60")).quantize(Decimal("0.01")),
        is_supervisory=bool(timesheet.is_supervisory),
    )


def _invoice_source(item: QueueItem, invoice: Invoice) -> DocumentSource:
    client_name = invoice.client.name if invoice.client else f"Client {invoice.client_id}"
    lines = tuple(
        f"Timesheet {line.timesheet_id}: {line.units} units x ${line.rate} = ${line.amount}" for line in invoice.entries
    )
    return DocumentSource(
        queue_item_id=item.id,
        entity_type=item.entity_type,
        entity_id=invoice.id,
        title=f"Invoice {invoice.invoice_number}",
        filename=f"Invoice_{invoice.invoice_number}_{_slug(client_name)}.txt",
        client_name=client_name,
        period=f"{invoice.start_date:%m/%d/%Y} - {invoice.end_date:%m/%d/%Y}",
        lines=lines,
        total_amount=invoice.total_amount,
    )


def build_document_source(item: QueueItem, entity) -> DocumentSource:
    if item.entity_type == ENTITY_INVOICE:
        return _invoice_source(item, entity)
    return _timesheet_source(item, entity)


class TextDocumentRenderer:
    """Plain-text rendering used when no richer renderer is configured."""

    content_type = "text/plain"

    def render(self, source: DocumentSource) -> bytes:
        if not source.lines:
            raise RenderError(f"{source.title} for {source.client_name} has no entries to render")
        parts = [source.title, f"Client: {source.client_name}"]
        if source.provider_name:
            parts.append(f"Provider: {source.provider_name}")
        if source.period:
            parts.append(f"Period: {source.period}")
        parts.append("")
        parts.extend(source.lines)
        parts.append("")
        if source.total_hours is not None:
            parts.append(f"Total hours: {source.total_hours}")
        if source.total_amount is not None:
            parts.append(f"Total amount: ${source.total_amount}")
        return "\n".join(parts).encode("utf-8")
