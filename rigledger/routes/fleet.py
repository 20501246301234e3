import uuid
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import Machine, Compressor, ServiceHistory
from ..schemas.fleet import (
    AssetType,
    AssetStatus,
    MachineCreate,
    MachineUpdate,
    MachineResponse,
    CompressorCreate,
    CompressorUpdate,
    CompressorResponse,
    ScheduleReplace,
    ServiceRecordCreate,
    ServiceHistoryResponse,
    MaintenanceAlertResponse,
)
from ..services import scheduler

router = APIRouter(prefix="/fleet", tags=["fleet"])


# ---------- ALERTS ----------
@router.get("/alerts", response_model=List[MaintenanceAlertResponse])
def get_maintenance_alerts(
    severity: Optional[str] = Query(None),
    alert_type: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    """Schedule and fitted-item alerts across live, active assets, most overdue first"""
    alerts = scheduler.compute_maintenance_alerts(db)
    if severity:
        alerts = [a for a in alerts if a["severity"] == severity]
    if alert_type:
        alerts = [a for a in alerts if a["alert_type"] == alert_type]
    return alerts


# ---------- MACHINES ----------
@router.get("/machines", response_model=List[MachineResponse])
def list_machines(
    site_id: Optional[uuid.UUID] = Query(None),
    status: Optional[AssetStatus] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    query = db.query(Machine).filter(Machine.deleted_at.is_(None))
    if site_id:
        query = query.filter(Machine.site_id == site_id)
    if status:
        query = query.filter(Machine.status == status.value)
    if search:
        query = query.filter(Machine.machine_number.ilike(f"%{search}%"))
    return query.order_by(Machine.machine_number).limit(500).all()


@router.get("/machines/{machine_id}", response_model=MachineResponse)
def get_machine(
    machine_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    return scheduler.get_asset(db, "machine", machine_id)


@router.post("/machines", response_model=MachineResponse, status_code=201)
def create_machine(
    machine: MachineCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write"))
):
    if db.query(Machine.id).filter(Machine.machine_number == machine.machine_number).first():
        raise HTTPException(status_code=409, detail="Machine number already exists")
    data = machine.dict(exclude={"maintenance_rules"})
    try:
        new_machine = Machine(**data)
        db.add(new_machine)
        db.flush()
        scheduler.replace_schedule(db, new_machine, [r.dict() for r in machine.maintenance_rules])
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(new_machine)
    return new_machine


@router.put("/machines/{machine_id}", response_model=MachineResponse)
def update_machine(
    machine_id: uuid.UUID,
    machine_update: MachineUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write"))
):
    """Update machine details. The RPM counter only moves through daily entries."""
    machine = scheduler.get_asset(db, "machine", machine_id, lock=True)
    for key, value in machine_update.dict(exclude_unset=True).items():
        setattr(machine, key, value)
    machine.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(machine)
    return machine


# ---------- COMPRESSORS ----------
@router.get("/compressors", response_model=List[CompressorResponse])
def list_compressors(
    status: Optional[AssetStatus] = Query(None),
    search: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    query = db.query(Compressor).filter(Compressor.deleted_at.is_(None))
    if status:
        query = query.filter(Compressor.status == status.value)
    if search:
        query = query.filter(Compressor.name.ilike(f"%{search}%"))
    return query.order_by(Compressor.name).limit(500).all()


@router.get("/compressors/{compressor_id}", response_model=CompressorResponse)
def get_compressor(
    compressor_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    return scheduler.get_asset(db, "compressor", compressor_id)


@router.post("/compressors", response_model=CompressorResponse, status_code=201)
def create_compressor(
    compressor: CompressorCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write"))
):
    data = compressor.dict(exclude={"maintenance_rules"})
    try:
        new_compressor = Compressor(**data)
        db.add(new_compressor)
        db.flush()
        scheduler.replace_schedule(db, new_compressor, [r.dict() for r in compressor.maintenance_rules])
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(new_compressor)
    return new_compressor


@router.put("/compressors/{compressor_id}", response_model=CompressorResponse)
def update_compressor(
    compressor_id: uuid.UUID,
    compressor_update: CompressorUpdate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write"))
):
    compressor = scheduler.get_asset(db, "compressor", compressor_id, lock=True)
    for key, value in compressor_update.dict(exclude_unset=True).items():
        setattr(compressor, key, value)
    compressor.updated_at = datetime.now(timezone.utc)
    db.commit()
    db.refresh(compressor)
    return compressor


# ---------- SCHEDULE & SERVICE ----------
@router.put("/{asset_type}/{asset_id}/schedule")
def replace_asset_schedule(
    asset_type: AssetType,
    asset_id: uuid.UUID,
    payload: ScheduleReplace,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:write"))
):
    """Replace an asset's maintenance schedule"""
    try:
        asset = scheduler.get_asset(db, asset_type.value, asset_id, lock=True)
        scheduler.replace_schedule(db, asset, [r.dict() for r in payload.rules])
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(asset)
    return {
        "asset_type": asset_type.value,
        "asset_id": str(asset.id),
        "rules": [
            {
                "service_name": r.service_name,
                "cycle_length": r.cycle_length,
                "last_service_rpm": r.last_service_rpm,
                "next_due_rpm": (r.last_service_rpm or 0) + (r.cycle_length or 0),
                "remaining": (r.last_service_rpm or 0) + (r.cycle_length or 0) - (asset.rpm or 0),
            }
            for r in asset.maintenance_rules
        ],
    }


@router.post("/{asset_type}/{asset_id}/services", response_model=ServiceHistoryResponse, status_code=201)
def record_asset_service(
    asset_type: AssetType,
    asset_id: uuid.UUID,
    payload: ServiceRecordCreate,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("fleet:write"))
):
    """Record a maintenance event outside a daily entry"""
    try:
        asset = scheduler.get_asset(db, asset_type.value, asset_id, lock=True)
        history = scheduler.record_service(
            db,
            asset,
            payload.service_name,
            at_rpm=payload.at_rpm,
            service_date=payload.service_date,
            actor=user.username,
            remarks=payload.remarks,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(history)
    return history


@router.get("/{asset_type}/{asset_id}/service-history", response_model=List[ServiceHistoryResponse])
def get_service_history(
    asset_type: AssetType,
    asset_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("fleet:read"))
):
    asset = scheduler.get_asset(db, asset_type.value, asset_id)
    column = ServiceHistory.machine_id if asset_type == AssetType.machine else ServiceHistory.compressor_id
    return db.query(ServiceHistory).filter(column == asset.id).order_by(
        ServiceHistory.service_date.desc(),
        ServiceHistory.created_at.desc(),
    ).limit(500).all()
