import uuid
from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ..db import get_db
from ..auth.security import require_permissions
from ..models.models import Worker
from ..schemas.attendance import (
    WorkerCreate,
    WorkerResponse,
    AttendanceUpsert,
    AttendanceBatch,
    AttendanceResponse,
    AttendanceBatchSummary,
)
from ..services import attendance as attendance_service

router = APIRouter(prefix="/attendance", tags=["attendance"])


# ---------- WORKERS ----------
@router.get("/workers", response_model=List[WorkerResponse])
def list_workers(
    site_id: Optional[uuid.UUID] = Query(None),
    status: Optional[str] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("attendance:read"))
):
    query = db.query(Worker).filter(Worker.deleted_at.is_(None))
    if site_id:
        query = query.filter(Worker.site_id == site_id)
    if status:
        query = query.filter(Worker.status == status)
    return query.order_by(Worker.name.asc()).all()


@router.post("/workers", response_model=WorkerResponse, status_code=201)
def create_worker(
    body: WorkerCreate,
    db: Session = Depends(get_db),
    _=Depends(require_permissions("attendance:write"))
):
    existing = db.query(Worker.id).filter(
        Worker.employee_code == body.employee_code,
        Worker.deleted_at.is_(None),
    ).first()
    if existing:
        raise HTTPException(status_code=409, detail="Employee code already exists")
    worker = Worker(**body.dict())
    db.add(worker)
    db.commit()
    db.refresh(worker)
    return worker


# ---------- ATTENDANCE ----------
@router.get("", response_model=List[AttendanceResponse])
def list_attendance(
    on_date: date = Query(..., alias="date"),
    site_id: Optional[uuid.UUID] = Query(None),
    employee_id: Optional[uuid.UUID] = Query(None),
    db: Session = Depends(get_db),
    _=Depends(require_permissions("attendance:read"))
):
    return attendance_service.list_attendance(db, on_date, site_id=site_id, employee_id=employee_id)


@router.post("/upsert", response_model=AttendanceResponse)
def upsert_attendance(
    body: AttendanceUpsert,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("attendance:write"))
):
    """Create or update one worker's attendance for a date"""
    try:
        record = attendance_service.upsert_attendance(db, body.dict(exclude_unset=True), actor=user.username)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(record)
    return record


@router.post("/batch", response_model=AttendanceBatchSummary)
def upsert_attendance_batch(
    body: AttendanceBatch,
    db: Session = Depends(get_db),
    user=Depends(require_permissions("attendance:write"))
):
    """Upsert attendance for many workers on one date"""
    try:
        summary = attendance_service.upsert_attendance_batch(
            db,
            [r.dict(exclude_unset=True) for r in body.records],
            actor=user.username,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    return summary
