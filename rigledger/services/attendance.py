"""
Attendance reconciler.

One attendance row per worker per date. Salary increases on a row are
deducted from the worker's outstanding wage advance (floored at zero);
decreases never restore it.
"""
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Optional, List, Dict, Any

import structlog
from sqlalchemy import insert, update
from sqlalchemy.orm import Session

from ..models.models import AttendanceRecord, Worker
from .errors import NotFound, ValidationFailed


logger = structlog.get_logger(__name__)

CENT = Decimal("0.01")
ZERO = Decimal("0")

UPDATABLE_FIELDS = ("presence", "work_status", "salary", "site_id", "machine_id")


def _money(value) -> Decimal:
    if value is None:
        return ZERO
    return Decimal(str(value)).quantize(CENT)


def ratchet_advance(advanced_amount, previous_salary, new_salary) -> Decimal:
    """
    New outstanding advance after a salary change on one attendance row.

    Only a positive difference is deducted; the result never drops below zero.
    """
    advance = _money(advanced_amount)
    diff = _money(new_salary) - _money(previous_salary)
    if diff > 0:
        return max(ZERO, advance - diff)
    return advance


def _get_worker(db: Session, employee_id: uuid.UUID) -> Worker:
    worker = db.query(Worker).filter(
        Worker.id == employee_id,
        Worker.deleted_at.is_(None),
    ).with_for_update().first()
    if worker is None:
        raise NotFound(f"Worker {employee_id} not found", field="employee_id")
    return worker


def upsert_attendance(db: Session, record: Dict[str, Any], actor: Optional[str] = None) -> AttendanceRecord:
    """
    Create or update the attendance row for (employee, date).

    Args:
        db: Database session
        record: employee_id and date plus any of presence, work_status,
            salary, site_id, machine_id. Keys that are absent keep their
            stored values on update.
        actor: Username for audit columns

    Returns:
        The attendance row
    """
    employee_id = record.get("employee_id")
    on_date = record.get("date")
    if employee_id is None or on_date is None:
        raise ValidationFailed("employee_id and date are required")

    worker = _get_worker(db, employee_id)
    existing = db.query(AttendanceRecord).filter(
        AttendanceRecord.employee_id == employee_id,
        AttendanceRecord.date == on_date,
    ).with_for_update().first()

    now = datetime.now(timezone.utc)
    if existing is None:
        previous_salary = ZERO
        attendance = AttendanceRecord(
            employee_id=employee_id,
            date=on_date,
            presence=record.get("presence") or "present",
            work_status=record.get("work_status") or "working",
            salary=_money(record.get("salary")),
            site_id=record.get("site_id"),
            machine_id=record.get("machine_id"),
            created_by=actor,
            updated_by=actor,
        )
        db.add(attendance)
        created = True
    else:
        attendance = existing
        previous_salary = _money(existing.salary)
        for field in UPDATABLE_FIELDS:
            if field in record and record[field] is not None:
                value = _money(record[field]) if field == "salary" else record[field]
                setattr(attendance, field, value)
        attendance.updated_by = actor
        attendance.updated_at = now
        created = False

    new_advance = ratchet_advance(worker.advanced_amount, previous_salary, attendance.salary)
    if new_advance != _money(worker.advanced_amount):
        logger.info(
            "advance_deducted",
            employee_id=str(worker.id),
            previous_advance=str(_money(worker.advanced_amount)),
            advance=str(new_advance),
        )
        worker.advanced_amount = new_advance
        worker.updated_at = now

    db.flush()
    logger.info(
        "attendance_upserted",
        employee_id=str(employee_id),
        date=str(on_date),
        created=created,
    )
    return attendance


def upsert_attendance_batch(db: Session, records: List[Dict[str, Any]], actor: Optional[str] = None) -> Dict[str, int]:
    """
    Upsert attendance for many workers on one date.

    Workers and existing rows are fetched once; inserts, updates and
    advance changes are applied as bulk statements. Semantics match
    upsert_attendance.
    """
    if not records:
        raise ValidationFailed("At least one attendance record is required", field="records")

    on_date = records[0].get("date")
    if on_date is None:
        raise ValidationFailed("date is required", field="date")
    employee_ids = []
    for record in records:
        if record.get("date") != on_date:
            raise ValidationFailed("All records in a batch must share one date", field="date")
        if record.get("employee_id") in employee_ids:
            raise ValidationFailed(f"Duplicate worker {record.get('employee_id')} in batch", field="employee_id")
        employee_ids.append(record.get("employee_id"))

    workers = db.query(Worker).filter(
        Worker.id.in_(employee_ids),
        Worker.deleted_at.is_(None),
    ).with_for_update().all()
    worker_map = {w.id: w for w in workers}
    missing = [str(e) for e in employee_ids if e not in worker_map]
    if missing:
        raise NotFound(f"Workers not found: {', '.join(missing)}", field="employee_id")

    existing_rows = db.query(AttendanceRecord).filter(
        AttendanceRecord.employee_id.in_(employee_ids),
        AttendanceRecord.date == on_date,
    ).with_for_update().all()
    attendance_map = {a.employee_id: a for a in existing_rows}

    now = datetime.now(timezone.utc)
    inserts = []
    updates = []
    worker_updates = []
    for record in records:
        employee_id = record["employee_id"]
        worker = worker_map[employee_id]
        existing = attendance_map.get(employee_id)
        if existing is None:
            previous_salary = ZERO
            new_salary = _money(record.get("salary"))
            inserts.append({
                "id": uuid.uuid4(),
                "employee_id": employee_id,
                "date": on_date,
                "presence": record.get("presence") or "present",
                "work_status": record.get("work_status") or "working",
                "salary": new_salary,
                "site_id": record.get("site_id"),
                "machine_id": record.get("machine_id"),
                "created_by": actor,
                "created_at": now,
                "updated_by": actor,
            })
        else:
            previous_salary = _money(existing.salary)
            row = {"id": existing.id, "updated_by": actor, "updated_at": now}
            for field in UPDATABLE_FIELDS:
                if field in record and record[field] is not None:
                    row[field] = _money(record[field]) if field == "salary" else record[field]
            new_salary = row.get("salary", previous_salary)
            updates.append(row)

        new_advance = ratchet_advance(worker.advanced_amount, previous_salary, new_salary)
        if new_advance != _money(worker.advanced_amount):
            worker_updates.append({"id": worker.id, "advanced_amount": new_advance, "updated_at": now})

    db.flush()
    if inserts:
        db.execute(insert(AttendanceRecord), inserts)
    if updates:
        db.execute(update(AttendanceRecord), updates)
    if worker_updates:
        db.execute(update(Worker), worker_updates)

    # Bulk statements bypass the identity map
    for obj in existing_rows + workers:
        db.expire(obj)

    summary = {
        "total": len(records),
        "created": len(inserts),
        "updated": len(updates),
        "updated_workers": len(worker_updates),
    }
    logger.info("attendance_batch_upserted", date=str(on_date), **summary)
    return summary


def list_attendance(
    db: Session,
    on_date: date,
    site_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
) -> List[AttendanceRecord]:
    query = db.query(AttendanceRecord).filter(AttendanceRecord.date == on_date)
    if site_id:
        query = query.filter(AttendanceRecord.site_id == site_id)
    if employee_id:
        query = query.filter(AttendanceRecord.employee_id == employee_id)
    return query.order_by(AttendanceRecord.created_at).all()
