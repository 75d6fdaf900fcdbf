"""Invoice schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class InvoiceEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    time_entry_id: int
    timesheet_id: int
    provider_id: Optional[int] = None
    insurance_id: Optional[int] = None
    units: Decimal
    rate: Decimal
    amount: Decimal


class InvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    invoice_number: str
    client_id: int
    start_date: date
    end_date: date

    status: str
    total_amount: Decimal
    paid_amount: Decimal
    adjustments: Decimal
    outstanding: Decimal

    created_by: Optional[int] = None
    created_at: datetime
    deleted_at: Optional[datetime] = None


class InvoiceDetail(InvoiceRead):
    entries: List[InvoiceEntryRead] = []


class InvoiceGenerateRequest(BaseModel):
    timesheet_ids: List[int] = Field(default_factory=list)
    standard_only: bool = False


class CreatedInvoiceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    invoice_id: int
    invoice_number: str
    client_id: int
    week_start: date
    week_end: date
    total_amount: Decimal
    total_units: Decimal
    entry_count: int


class SkippedGroupRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: int
    week_start: date
    week_end: date
    reason: str
    invoice_number: Optional[str] = None


class GroupErrorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    client_id: int
    week_start: date
    message: str


class InvoiceGenerateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created: List[CreatedInvoiceRead]
    skipped: List[SkippedGroupRead]
    errors: List[GroupErrorRead]


class AdjustmentCreate(BaseModel):
    amount: Decimal
    reason: Optional[str] = None


class AdjustmentRead(AdjustmentCreate):
    id: int
    invoice_id: int
    created_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
