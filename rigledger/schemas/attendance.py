import uuid
import datetime as dt
from decimal import Decimal
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field


class Presence(str, Enum):
    present = "present"
    absent = "absent"


class WorkStatus(str, Enum):
    working = "working"
    non_working = "non-working"


class WorkerCreate(BaseModel):
    employee_code: str
    name: str
    designation: Optional[str] = None
    status: str = "active"
    site_id: Optional[uuid.UUID] = None
    daily_salary: Decimal = Field(default=Decimal("0"), ge=0)
    advanced_amount: Decimal = Field(default=Decimal("0"), ge=0)


class WorkerResponse(BaseModel):
    id: uuid.UUID
    employee_code: str
    name: str
    designation: Optional[str] = None
    status: str
    site_id: Optional[uuid.UUID] = None
    daily_salary: Decimal
    advanced_amount: Decimal
    created_at: dt.datetime
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class AttendanceUpsert(BaseModel):
    employee_id: uuid.UUID
    date: dt.date
    presence: Optional[Presence] = None
    work_status: Optional[WorkStatus] = None
    salary: Optional[Decimal] = Field(default=None, ge=0)
    site_id: Optional[uuid.UUID] = None
    machine_id: Optional[uuid.UUID] = None

    class Config:
        use_enum_values = True


class AttendanceBatch(BaseModel):
    records: List[AttendanceUpsert] = Field(min_length=1)


class AttendanceResponse(BaseModel):
    id: uuid.UUID
    employee_id: uuid.UUID
    date: dt.date
    presence: Presence
    work_status: WorkStatus
    salary: Decimal
    site_id: Optional[uuid.UUID] = None
    machine_id: Optional[uuid.UUID] = None
    created_by: Optional[str] = None
    created_at: dt.datetime
    updated_by: Optional[str] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class AttendanceBatchSummary(BaseModel):
    total: int
    created: int
    updated: int
    updated_workers: int
