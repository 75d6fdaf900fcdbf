"""Batch dispatch of queued documents as one outbound message.

Flow: claim QUEUED items -> snapshot their invoices/timesheets -> render
documents in parallel -> send one message with every rendered attachment ->
resolve every claimed item together (SENT or FAILED). Once a send has been
attempted there is no partial success.
"""

import logging
import time
import uuid
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeout
from dataclasses import dataclass, field
from datetime import date

from sqlalchemy import update
from sqlalchemy.orm import Session

from backend.app.core.errors import DeliveryError, RenderError
from backend.app.core.settings import get_settings
from backend.app.core.time import utc_now
from backend.app.models.invoice import Invoice
from backend.app.models.queue_item import ENTITY_INVOICE, ENTITY_TIMESHEET
from backend.app.models.timesheet import Timesheet
from backend.app.services.audit import record_audit
from backend.app.services.delivery_queue import (
    ClaimResult,
    MissingEntity,
    claim,
    load_backing_entity,
    resolve_failed,
    resolve_sent,
)
from backend.app.services.documents import DocumentRenderer, DocumentSource, build_document_source
from backend.app.services.mailer import Attachment, MessageSender, SendResult, build_batch_html, build_batch_text

logger = logging.getLogger(__name__)

ALL_RENDER_FAILED = "All document generation failed"
NO_RECIPIENTS = "No delivery recipients configured"


@dataclass
class RenderFailure:
    queue_item_id: int
    error: str


@dataclass
class DispatchResult:
    sent_count: int = 0
    failed_count: int = 0
    batch_id: str | None = None
    error: str | None = None
    message_id: str | None = None
    render_errors: list[RenderFailure] = field(default_factory=list)
    missing: list[MissingEntity] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return self.error is None and self.sent_count > 0


def generate_batch_id() -> str:
    return f"BATCH-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


class BatchDispatcher:
    def __init__(self, renderer: DocumentRenderer, sender: MessageSender, settings=None):
        self.renderer = renderer
        self.sender = sender
        self.settings = settings or get_settings()

    def claim_and_send(self, db: Session, item_ids=None, actor_id: int | None = None) -> DispatchResult:
        """Claim ``item_ids`` (or every eligible item when None) and deliver them as one batch."""
        claimed = claim(db, item_ids)
        result = DispatchResult(missing=claimed.missing)
        if not claimed.items:
            result.error = "No items in queue to send"
            return result

        try:
            return self._deliver(db, claimed, result, actor_id)
        except Exception as exc:
            # Never leave a claim stuck in SENDING
            db.rollback()
            resolve_failed(db, claimed.claim_token, f"Unexpected dispatch error: {exc}")
            raise

    def _collect_sources(self, db: Session, claimed: ClaimResult, result: DispatchResult) -> list[DocumentSource]:
        sources = []
        for item in claimed.items:
            entity = load_backing_entity(db, item.entity_type, item.entity_id)
            if entity is None:
                result.render_errors.append(RenderFailure(item.id, f"{item.entity_type} {item.entity_id} not found"))
                continue
            sources.append(build_document_source(item, entity))
        return sources

    def _render_all(self, sources: list[DocumentSource], result: DispatchResult) -> list[tuple[DocumentSource, bytes]]:
        if not sources:
            return []
        rendered = []
        workers = max(1, min(self.settings.render_workers, len(sources)))
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="render") as pool:
            futures = [(source, pool.submit(self.renderer.render, source)) for source in sources]
            for source, future in futures:
                try:
                    rendered.append((source, future.result()))
                except RenderError as exc:
                    logger.error("Render failed for queue item %s (%s): %s", source.queue_item_id, source.title, exc)
                    result.render_errors.append(RenderFailure(source.queue_item_id, str(exc)))
        return rendered

    def _recipients(self, claimed: ClaimResult) -> list[str]:
        recipients: list[str] = []
        for item in claimed.items:
            for address in item.recipient_list:
                if address not in recipients:
                    recipients.append(address)
        return recipients or list(self.settings.delivery_default_recipients)

    def _send_with_timeout(self, recipients, subject, body_html, body_text, attachments) -> SendResult:
        timeout = self.settings.delivery_timeout_seconds
        pool = ThreadPoolExecutor(max_workers=1, thread_name_prefix="deliver")
        try:
            future = pool.submit(self.sender.send, recipients, subject, body_html, body_text, attachments)
            try:
                outcome = future.result(timeout=timeout)
            except FuturesTimeout as exc:
                raise DeliveryError(f"Delivery timed out after {timeout:g}s") from exc
        finally:
            pool.shutdown(wait=False, cancel_futures=True)
        if not outcome.success:
            raise DeliveryError(outcome.error or "Unknown delivery error")
        return outcome

    def _fail(self, db: Session, claimed: ClaimResult, result: DispatchResult, error: str, actor_id) -> DispatchResult:
        result.failed_count = resolve_failed(db, claimed.claim_token, error)
        result.error = error
        record_audit(
            db,
            "EMAIL_FAILED",
            "QueueBatch",
            claimed.claim_token,
            actor_id,
            {"error": error, "item_count": len(claimed.items)},
        )
        db.commit()
        logger.error("Batch of %s item(s) failed: %s", result.failed_count, error)
        return result

    def _mark_delivered(self, db: Session, sources: list[DocumentSource], sent_at) -> None:
        timesheet_ids = [s.entity_id for s in sources if s.entity_type == ENTITY_TIMESHEET]
        invoice_ids = [s.entity_id for s in sources if s.entity_type == ENTITY_INVOICE]
        if timesheet_ids:
            db.execute(
                update(Timesheet)
                .where(Timesheet.id.in_(timesheet_ids), Timesheet.status == "approved")
                .values(status="emailed", emailed_at=sent_at),
                execution_options={"synchronize_session": False},
            )
        if invoice_ids:
            db.execute(
                update(Invoice)
                .where(Invoice.id.in_(invoice_ids), Invoice.status.in_(("draft", "approved")))
                .values(status="emailed"),
                execution_options={"synchronize_session": False},
            )

    def _deliver(self, db: Session, claimed: ClaimResult, result: DispatchResult, actor_id) -> DispatchResult:
        sources = self._collect_sources(db, claimed, result)
        rendered = self._render_all(sources, result)
        if not rendered:
            return self._fail(db, claimed, result, ALL_RENDER_FAILED, actor_id)

        recipients = self._recipients(claimed)
        if not recipients:
            return self._fail(db, claimed, result, NO_RECIPIENTS, actor_id)

        batch_date = date.today().isoformat()
        delivered_sources = [source for source, _ in rendered]
        subject = f"Approved Documents Batch ({batch_date})"
        if len(claimed.items) == 1 and claimed.items[0].subject:
            subject = claimed.items[0].subject
        attachments = [
            Attachment(filename=source.filename, content=content, content_type=self.renderer.content_type)
            for source, content in rendered
        ]

        try:
            outcome = self._send_with_timeout(
                recipients,
                subject,
                build_batch_html(delivered_sources, batch_date),
                build_batch_text(delivered_sources, batch_date),
                attachments,
            )
        except DeliveryError as exc:
            return self._fail(db, claimed, result, str(exc), actor_id)

        sent_at = utc_now()
        batch_id = generate_batch_id()
        self._mark_delivered(db, delivered_sources, sent_at)
        result.sent_count = resolve_sent(db, claimed.claim_token, batch_id, sent_at)
        result.batch_id = batch_id
        result.message_id = outcome.message_id
        record_audit(
            db,
            "EMAIL_SENT",
            "QueueBatch",
            batch_id,
            actor_id,
            {
                "sent_count": result.sent_count,
                "attachments": len(attachments),
                "render_errors": len(result.render_errors),
                "recipients": len(recipients),
                "message_id": outcome.message_id,
            },
        )
        db.commit()
        logger.info(
            "Batch %s sent: %s item(s), %s attachment(s), %s render error(s)",
            batch_id,
            result.sent_count,
            len(attachments),
            len(result.render_errors),
        )
        return result
