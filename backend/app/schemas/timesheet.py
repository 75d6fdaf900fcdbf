"""Timesheet, time entry and overlap-check schemas."""

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, ConfigDict


class TimeEntryIn(BaseModel):
    entry_date: date
    start_time: str
    end_time: str
    minutes: Optional[int] = None
    service_tag: Optional[str] = None


class TimeEntryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    entry_date: date
    start_time: time
    end_time: time
    minutes: int
    service_tag: Optional[str] = None
    billed: bool


class TimesheetCreate(BaseModel):
    provider_id: int
    client_id: int
    insurance_id: Optional[int] = None
    start_date: date
    end_date: date
    is_supervisory: bool = False
    entries: List[TimeEntryIn] = []


class TimesheetUpdate(BaseModel):
    insurance_id: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_supervisory: Optional[bool] = None
    entries: Optional[List[TimeEntryIn]] = None


class TimesheetRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    provider_id: int
    client_id: int
    insurance_id: Optional[int] = None
    start_date: date
    end_date: date
    status: str
    is_supervisory: bool
    invoice_id: Optional[int] = None
    emailed_at: Optional[datetime] = None
    submitted_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    entries: List[TimeEntryRead] = []


class TimesheetRejectRequest(BaseModel):
    reason: str


class OverlapCheckRequest(BaseModel):
    provider_id: int
    client_id: int
    entries: List[TimeEntryIn]
    exclude_timesheet_id: Optional[int] = None
    is_supervisory: bool = False


class OverlapConflictRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    entry_date: date
    start_time: time
    end_time: time
    service_tag: Optional[str] = None
    scope: str
    message: str
    conflicting_timesheet_id: Optional[int] = None
    conflicting_entry_id: Optional[int] = None
    conflicting_start_time: Optional[time] = None
    conflicting_end_time: Optional[time] = None
    conflicting_service_tag: Optional[str] = None


class OverlapCheckResponse(BaseModel):
    has_overlaps: bool
    conflicts: List[OverlapConflictRead]
