"""Payment schemas."""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class PaymentBase(BaseModel):
    amount: Decimal
    payment_date: date
    reference_number: Optional[str] = None
    notes: Optional[str] = None


class PaymentCreate(PaymentBase):
    pass


class PaymentRead(PaymentBase):
    id: int
    invoice_id: int
    recorded_by: Optional[int] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)
