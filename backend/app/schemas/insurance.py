"""Insurance (payer rate) schemas."""

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict


class InsuranceBase(BaseModel):
    name: str
    rate_per_unit: Optional[Decimal] = None
    regular_rate_per_unit: Optional[Decimal] = None
    regular_unit_minutes: Optional[int] = None
    supervisory_rate_per_unit: Optional[Decimal] = None
    supervisory_unit_minutes: Optional[int] = None


class InsuranceCreate(InsuranceBase):
    pass


class InsuranceUpdate(BaseModel):
    name: Optional[str] = None
    rate_per_unit: Optional[Decimal] = None
    regular_rate_per_unit: Optional[Decimal] = None
    regular_unit_minutes: Optional[int] = None
    supervisory_rate_per_unit: Optional[Decimal] = None
    supervisory_unit_minutes: Optional[int] = None


class InsuranceRead(InsuranceBase):
    id: int
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)
