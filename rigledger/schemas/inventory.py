import uuid
from datetime import date, datetime
from typing import Annotated, List, Optional, Union, Literal

from pydantic import BaseModel, Field, field_validator
import enum


class ItemCategory(str, enum.Enum):
    spare = "spare"
    service_item = "service_item"
    drilling_tool = "drilling_tool"


class ServiceType(str, enum.Enum):
    machine = "machine"
    compressor = "compressor"
    drilling_tool = "drilling_tool"


class FittingStatus(str, enum.Enum):
    fitted = "fitted"
    removed = "removed"


class InventoryItemBase(BaseModel):
    name: str
    part_number: Optional[str] = None
    unit: str = "nos"
    category: ItemCategory = ItemCategory.spare
    service_interval_rpm: Optional[float] = Field(default=None, gt=0)  # Usage between services while fitted

    @field_validator("part_number", mode="before")
    @classmethod
    def empty_str_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class InventoryItemCreate(InventoryItemBase):
    opening_balance: float = Field(default=0, ge=0)

    class Config:
        use_enum_values = True


class InventoryItemResponse(InventoryItemBase):
    id: uuid.UUID
    balance: float
    inward: float
    outward: float
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class StockReceive(BaseModel):
    quantity: float = Field(gt=0)


# Item actions carried on a daily entry or posted directly
class FitAction(BaseModel):
    action: Literal["fit"]
    item_id: uuid.UUID
    quantity: float = Field(default=1, gt=0)
    fitted_rpm: Optional[float] = Field(default=None, ge=0)  # Defaults to the asset's current RPM
    fitted_meter: Optional[float] = Field(default=None, ge=0)  # Defaults to the entry's meter


class RemoveAction(BaseModel):
    action: Literal["remove"]
    fitting_id: uuid.UUID
    removed_rpm: Optional[float] = Field(default=None, ge=0)
    removed_meter: Optional[float] = Field(default=None, ge=0)


ItemAction = Annotated[Union[FitAction, RemoveAction], Field(discriminator="action")]


class FittingCreate(BaseModel):
    item_id: uuid.UUID
    service_type: ServiceType
    machine_id: Optional[uuid.UUID] = None
    compressor_id: Optional[uuid.UUID] = None
    daily_entry_id: Optional[uuid.UUID] = None
    quantity: float = Field(default=1, gt=0)
    fitted_date: Optional[date] = None
    fitted_rpm: Optional[float] = Field(default=None, ge=0)
    fitted_meter: Optional[float] = Field(default=None, ge=0)

    class Config:
        use_enum_values = True


class FittingRemove(BaseModel):
    removed_date: Optional[date] = None
    removed_rpm: Optional[float] = Field(default=None, ge=0)
    removed_meter: Optional[float] = Field(default=None, ge=0)


class FittingResponse(BaseModel):
    id: uuid.UUID
    item_id: uuid.UUID
    daily_entry_id: Optional[uuid.UUID] = None
    service_history_id: Optional[uuid.UUID] = None
    machine_id: Optional[uuid.UUID] = None
    compressor_id: Optional[uuid.UUID] = None
    service_type: ServiceType
    fitted_date: date
    fitted_rpm: float
    fitted_meter: Optional[float] = None
    removed_date: Optional[date] = None
    removed_rpm: Optional[float] = None
    removed_meter: Optional[float] = None
    total_rpm_run: Optional[float] = None
    total_meter_run: Optional[float] = None
    run_rpm: float = 0
    run_meter: float = 0
    quantity: float
    status: FittingStatus
    created_by: Optional[str] = None
    created_at: datetime
    updated_by: Optional[str] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FittingListResponse(BaseModel):
    items: List[FittingResponse]
    total: int
