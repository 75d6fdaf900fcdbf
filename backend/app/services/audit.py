"""Audit trail writer. Failures are logged and never block the caller."""

import json
import logging
from typing import Any

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from backend.app.models.audit_log import AuditLog

logger = logging.getLogger(__name__)


def record_audit(
    db: Session,
    action: str,
    entity_type: str,
    entity_id: Any,
    actor_id: int | None,
    metadata: dict | None = None,
) -> AuditLog | None:
    """Add an audit row inside a savepoint so a failed write leaves the outer transaction usable."""
    try:
        with db.begin_nested():
            entry = AuditLog(
                action=action,
                entity_type=entity_type,
                entity_id=str(entity_id),
                actor_id=actor_id,
                details=json.dumps(metadata, default=str) if metadata else None,
            )
            db.add(entry)
        return entry
    except (SQLAlchemyError, TypeError, ValueError):
        logger.exception("Failed to record audit %s for %s %s", action, entity_type, entity_id)
        return None
