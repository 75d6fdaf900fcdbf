"""Delivery queue schemas."""

from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, model_validator


class QueueItemRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entity_type: str
    entity_id: int
    status: str
    recipients: Optional[str] = None
    subject: Optional[str] = None
    queued_at: datetime
    claimed_at: Optional[datetime] = None
    sent_at: Optional[datetime] = None
    batch_id: Optional[str] = None
    error_message: Optional[str] = None
    attempts: int
    deleted_at: Optional[datetime] = None


class SendBatchRequest(BaseModel):
    item_ids: Optional[List[int]] = None
    all: bool = False

    @model_validator(mode="after")
    def _check_selection(self):
        if self.all == bool(self.item_ids):
            raise ValueError('Provide either a non-empty "item_ids" list or "all": true')
        return self


class RenderFailureRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    queue_item_id: int
    error: str


class MissingEntityRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    queue_item_id: int
    entity_type: str
    entity_id: int
    reason: str


class SendBatchResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    success: bool
    sent_count: int
    failed_count: int
    batch_id: Optional[str] = None
    error: Optional[str] = None
    message_id: Optional[str] = None
    render_errors: List[RenderFailureRead] = []
    missing: List[MissingEntityRead] = []


class StuckFailResponse(BaseModel):
    failed_count: int


class BulkDeleteRequest(BaseModel):
    ids: List[int]


class BulkDeleteResponse(BaseModel):
    deleted_count: int
    deleted_ids: List[int]
    message: str
