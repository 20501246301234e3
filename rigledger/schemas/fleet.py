import uuid
from datetime import date, datetime
from typing import List, Optional
from enum import Enum

from pydantic import BaseModel, Field, field_validator


# Enums
class AssetType(str, Enum):
    machine = "machine"
    compressor = "compressor"


class AssetStatus(str, Enum):
    active = "active"
    inactive = "inactive"


class AlertSeverity(str, Enum):
    warning = "warning"
    critical = "critical"


class AlertType(str, Enum):
    schedule = "schedule"
    fitted_item = "fitted_item"


# Maintenance schedule
class MaintenanceRuleIn(BaseModel):
    service_name: str
    cycle_length: float = Field(gt=0)
    last_service_rpm: float = Field(default=0, ge=0)

    @field_validator("service_name", mode="before")
    @classmethod
    def strip_name(cls, v):
        return str(v).strip() if v is not None else v


class MaintenanceRuleResponse(BaseModel):
    id: uuid.UUID
    position: int
    service_name: str
    cycle_length: Optional[float] = None
    last_service_rpm: float

    class Config:
        from_attributes = True


class ScheduleReplace(BaseModel):
    rules: List[MaintenanceRuleIn]


# Machine Schemas
class MachineBase(BaseModel):
    machine_number: str
    machine_type: Optional[str] = None
    status: AssetStatus = AssetStatus.active
    site_id: Optional[uuid.UUID] = None
    compressor_id: Optional[uuid.UUID] = None

    @field_validator("machine_type", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class MachineCreate(MachineBase):
    rpm: float = Field(default=0, ge=0)
    maintenance_rules: List[MaintenanceRuleIn] = []

    class Config:
        use_enum_values = True


class MachineUpdate(BaseModel):
    machine_type: Optional[str] = None
    status: Optional[AssetStatus] = None
    site_id: Optional[uuid.UUID] = None
    compressor_id: Optional[uuid.UUID] = None

    class Config:
        use_enum_values = True


class MachineResponse(MachineBase):
    id: uuid.UUID
    rpm: float
    maintenance_rules: List[MaintenanceRuleResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Compressor Schemas
class CompressorBase(BaseModel):
    name: str
    serial_number: Optional[str] = None
    status: AssetStatus = AssetStatus.active

    @field_validator("serial_number", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class CompressorCreate(CompressorBase):
    rpm: float = Field(default=0, ge=0)
    maintenance_rules: List[MaintenanceRuleIn] = []

    class Config:
        use_enum_values = True


class CompressorUpdate(BaseModel):
    name: Optional[str] = None
    serial_number: Optional[str] = None
    status: Optional[AssetStatus] = None

    class Config:
        use_enum_values = True


class CompressorResponse(CompressorBase):
    id: uuid.UUID
    rpm: float
    maintenance_rules: List[MaintenanceRuleResponse] = []
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


# Service events
class ServiceRecordCreate(BaseModel):
    service_name: str
    at_rpm: Optional[float] = Field(default=None, ge=0)  # Defaults to the asset's current RPM
    service_date: Optional[date] = None
    remarks: Optional[str] = None


class ServiceHistoryResponse(BaseModel):
    id: uuid.UUID
    machine_id: Optional[uuid.UUID] = None
    compressor_id: Optional[uuid.UUID] = None
    daily_entry_id: Optional[uuid.UUID] = None
    service_name: Optional[str] = None
    service_type: str
    rpm_at_service: float
    service_date: date
    rule_matched: bool
    remarks: Optional[str] = None
    created_by: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True


class MaintenanceAlertResponse(BaseModel):
    alert_type: AlertType = AlertType.schedule
    asset_type: AssetType
    asset_id: uuid.UUID
    asset_name: str
    fitting_id: Optional[uuid.UUID] = None  # Set for fitted-item alerts
    service_name: str
    current_rpm: float
    cycle_length: float
    last_service_rpm: float
    next_due_rpm: float
    remaining: float
    severity: AlertSeverity
