import uuid
import datetime as dt
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator

from .inventory import ItemAction, FittingResponse


class RosterRole(str, Enum):
    operator = "operator"
    helper = "helper"


class RosterMember(BaseModel):
    employee_id: uuid.UUID
    role: RosterRole = RosterRole.operator
    shift: Optional[int] = Field(default=None, ge=1)  # Defaults to the entry's shift


class RosterMemberResponse(BaseModel):
    employee_id: uuid.UUID
    role: RosterRole
    shift: int

    class Config:
        from_attributes = True


class DailyEntryBase(BaseModel):
    compressor_id: Optional[uuid.UUID] = None
    machine_opening_rpm: Optional[float] = Field(default=None, ge=0)
    machine_closing_rpm: Optional[float] = Field(default=None, ge=0)
    compressor_opening_rpm: Optional[float] = Field(default=None, ge=0)
    compressor_closing_rpm: Optional[float] = Field(default=None, ge=0)
    machine_hsd: Optional[float] = Field(default=None, ge=0)
    compressor_hsd: Optional[float] = Field(default=None, ge=0)
    meter: Optional[float] = Field(default=None, ge=0)
    no_of_holes: Optional[float] = Field(default=None, ge=0)
    notes: Optional[str] = None

    @field_validator("notes", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class DailyEntryCreate(DailyEntryBase):
    ref_no: Optional[str] = None
    date: dt.date
    shift: int = Field(default=1, ge=1, le=2)
    site_id: Optional[uuid.UUID] = None
    machine_id: Optional[uuid.UUID] = None

    machine_service_done: bool = False
    machine_service_name: Optional[str] = None
    compressor_service_done: bool = False
    compressor_service_name: Optional[str] = None

    employees: Optional[List[RosterMember]] = None
    # Legacy roster fields
    employee_id: Optional[uuid.UUID] = None
    additional_employee_ids: Optional[List[uuid.UUID]] = None

    machine_items: List[ItemAction] = []
    compressor_items: List[ItemAction] = []
    drilling_tools: List[ItemAction] = []


class DailyEntryUpdate(DailyEntryBase):
    date: Optional[dt.date] = None
    shift: Optional[int] = Field(default=None, ge=1, le=2)
    site_id: Optional[uuid.UUID] = None
    machine_id: Optional[uuid.UUID] = None

    machine_service_done: Optional[bool] = None
    machine_service_name: Optional[str] = None
    compressor_service_done: Optional[bool] = None
    compressor_service_name: Optional[str] = None

    employees: Optional[List[RosterMember]] = None
    employee_id: Optional[uuid.UUID] = None
    additional_employee_ids: Optional[List[uuid.UUID]] = None

    machine_items: List[ItemAction] = []
    compressor_items: List[ItemAction] = []
    drilling_tools: List[ItemAction] = []


class DailyEntryResponse(DailyEntryBase):
    id: uuid.UUID
    ref_no: str
    date: dt.date
    shift: int
    site_id: uuid.UUID
    machine_id: uuid.UUID
    machine_service_done: bool
    compressor_service_done: bool
    primary_employee_id: Optional[uuid.UUID] = None
    roster: List[RosterMemberResponse] = []
    fittings: List[FittingResponse] = []
    created_by: Optional[str] = None
    created_at: dt.datetime
    updated_by: Optional[str] = None
    updated_at: Optional[dt.datetime] = None

    class Config:
        from_attributes = True


class DailyEntryListResponse(BaseModel):
    items: List[DailyEntryResponse]
    total: int
    page: int
    limit: int


class ReferenceCodeResponse(BaseModel):
    ref_no: str


class LastReadingsResponse(BaseModel):
    date: Optional[dt.date] = None
    machine_closing_rpm: Optional[float] = None
    compressor_closing_rpm: Optional[float] = None
