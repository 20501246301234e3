import uuid
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import InventoryItem
from ..schemas.inventory import (
    ItemCategory,
    InventoryItemCreate,
    InventoryItemResponse,
    StockReceive,
    FittingCreate,
    FittingRemove,
    FittingResponse,
    FittingListResponse,
    FittingStatus,
    ServiceType,
)
from ..services import inventory_ledger, fitting, scheduler
from ..services.errors import ValidationFailed


router = APIRouter(prefix="/inventory", tags=["inventory"])


# ---------- ITEMS ----------
@router.get("/items", response_model=List[InventoryItemResponse])
def list_items(
    category: Optional[ItemCategory] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("inventory:read"))
):
    query = db.query(InventoryItem).filter(InventoryItem.deleted_at.is_(None))
    if category:
        query = query.filter(InventoryItem.category == category.value)
    if search:
        query = query.filter(InventoryItem.name.ilike(f"%{search}%"))
    return query.order_by(InventoryItem.name.asc()).all()


@router.get("/items/{item_id}", response_model=InventoryItemResponse)
def get_item(
    item_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("inventory:read"))
):
    return inventory_ledger.get_item(db, item_id)


@router.post("/items", response_model=InventoryItemResponse, status_code=201)
def create_item(
    body: InventoryItemCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("inventory:write"))
):
    data = body.dict(exclude={"opening_balance"})
    item = InventoryItem(
        **data,
        balance=body.opening_balance,
        inward=body.opening_balance,
        outward=0,
    )
    db.add(item)
    db.commit()
    db.refresh(item)
    return item


@router.post("/items/{item_id}/receive", response_model=InventoryItemResponse)
def receive_stock(
    item_id: uuid.UUID,
    body: StockReceive,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("inventory:write"))
):
    """Stock-in adjustment"""
    try:
        item = inventory_ledger.receive(db, item_id, body.quantity)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(item)
    return item


# ---------- FITTINGS ----------
@router.get("/fittings", response_model=FittingListResponse)
def list_fittings(
    machine_id: Optional[uuid.UUID] = Query(None),
    compressor_id: Optional[uuid.UUID] = Query(None),
    item_id: Optional[uuid.UUID] = Query(None),
    status: Optional[FittingStatus] = Query(None),
    service_type: Optional[ServiceType] = Query(None),
    daily_entry_id: Optional[uuid.UUID] = Query(None),
    service_history_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("inventory:read"))
):
    records = fitting.list_fittings(
        db,
        machine_id=machine_id,
        compressor_id=compressor_id,
        item_id=item_id,
        status=status.value if status else None,
        service_type=service_type.value if service_type else None,
        daily_entry_id=daily_entry_id,
        service_history_id=service_history_id,
    )
    return {"items": records, "total": len(records)}


@router.post("/fittings", response_model=FittingResponse, status_code=201)
def fit_item(
    body: FittingCreate,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("inventory:write"))
):
    """Fit an item to a machine or compressor, consuming stock"""
    if (body.machine_id is None) == (body.compressor_id is None):
        raise ValidationFailed("Exactly one of machine_id or compressor_id is required", field="machine_id")
    try:
        if body.machine_id:
            asset = scheduler.get_asset(db, "machine", body.machine_id)
        else:
            asset = scheduler.get_asset(db, "compressor", body.compressor_id)
        record = fitting.fit(
            db,
            body.item_id,
            asset,
            body.service_type,
            quantity=body.quantity,
            at_rpm=body.fitted_rpm,
            at_meter=body.fitted_meter,
            fitted_date=body.fitted_date,
            daily_entry_id=body.daily_entry_id,
            actor=user.username,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


@router.post("/fittings/{fitting_id}/remove", response_model=FittingResponse)
def remove_item(
    fitting_id: uuid.UUID,
    body: FittingRemove,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("inventory:write"))
):
    """Remove a fitted item; stock is not returned"""
    try:
        record = fitting.remove(
            db,
            fitting_id,
            at_rpm=body.removed_rpm,
            at_meter=body.removed_meter,
            removed_date=body.removed_date,
            actor=user.username,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record
