import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_permissions
from ..schemas.daily_entry import (
    DailyEntryCreate,
    DailyEntryUpdate,
    DailyEntryResponse,
    DailyEntryListResponse,
    ReferenceCodeResponse,
    LastReadingsResponse,
)
from ..services import daily_entry as daily_entry_service
from ..services.audit import get_audit_logs

router = APIRouter(prefix="/daily-entries", tags=["daily-entries"])


@router.get("/reference-code", response_model=ReferenceCodeResponse)
def preview_reference_code(
    db: Session = Depends(get_db),
    _=Depends(require_permissions("daily_entries:read", "daily_entries:write"))
):
    """Next reference code; not reserved until an entry is saved"""
    return {"ref_no": daily_entry_service.generate_reference_code(db)}


@router.get("/last-readings", response_model=LastReadingsResponse)
def get_last_readings(
    machine_id: uuid.UUID = Query(...),
    compressor_id: Optional[uuid.UUID] = Query(None),
    exclude_entry_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("daily_entries:read"))
):
    """Closing readings of the latest entry, to prefill opening readings"""
    return daily_entry_service.last_closing_readings(
        db, machine_id, compressor_id=compressor_id, exclude_entry_id=exclude_entry_id
    )


@router.get("", response_model=DailyEntryListResponse)
def list_daily_entries(
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    site_id: Optional[uuid.UUID] = Query(None),
    machine_id: Optional[uuid.UUID] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    page: int = Query(1, ge=1),
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("daily_entries:read"))
):
    items, total = daily_entry_service.list_daily_entries(
        db,
        start_date=start_date,
        end_date=end_date,
        site_id=site_id,
        machine_id=machine_id,
        employee_id=employee_id,
        page=page,
        limit=limit,
    )
    return {"items": items, "total": total, "page": page, "limit": limit}


@router.get("/{entry_id}", response_model=DailyEntryResponse)
def get_daily_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("daily_entries:read"))
):
    return daily_entry_service.get_daily_entry(db, entry_id)


@router.get("/{entry_id}/audit")
def get_daily_entry_audit(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("daily_entries:read"))
):
    logs = get_audit_logs(db, entity_type="daily_entry", entity_id=entry_id)
    return [
        {
            "id": str(log.id),
            "action": log.action,
            "actor": log.actor,
            "changes": log.changes_json,
            "timestamp_utc": log.timestamp_utc.isoformat() if log.timestamp_utc else None,
            "integrity_hash": log.integrity_hash,
        }
        for log in logs
    ]


@router.post("", response_model=DailyEntryResponse, status_code=201)
def create_daily_entry(
    payload: DailyEntryCreate,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("daily_entries:write"))
):
    """Record a shift: readings, counters, item actions and attendance in one transaction"""
    try:
        entry = daily_entry_service.create_daily_entry(db, payload, actor=user.username)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry


@router.put("/{entry_id}", response_model=DailyEntryResponse)
def update_daily_entry(
    entry_id: uuid.UUID,
    patch: DailyEntryUpdate,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("daily_entries:write"))
):
    try:
        entry = daily_entry_service.update_daily_entry(db, entry_id, patch, actor=user.username)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(entry)
    return entry


@router.delete("/{entry_id}")
def delete_daily_entry(
    entry_id: uuid.UUID,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("daily_entries:write"))
):
    """Soft delete; counters, fittings and attendance are left as recorded"""
    try:
        entry = daily_entry_service.delete_daily_entry(db, entry_id, actor=user.username)
        db.commit()
    except Exception:
        db.rollback()
        raise
    return {"message": f"Daily entry {entry.ref_no} deleted successfully"}
