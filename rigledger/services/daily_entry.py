"""
Daily entry transaction coordinator.

One shift submission is validated, persisted and then drives, in order:
counter advance and service events for the machine then the compressor,
fit/remove actions for machine items, compressor items and drilling tools,
and attendance for every roster member. Nothing here commits; the caller
owns the transaction, so any error leaves no partial writes behind.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Tuple

import structlog
from sqlalchemy import func
from sqlalchemy.orm import Session, selectinload

from ..models.models import DailyEntry, RosterAssignment, ReferenceSequence
from ..schemas.daily_entry import DailyEntryCreate, DailyEntryUpdate
from ..schemas.inventory import FitAction
from ..config import settings
from . import scheduler, fitting, attendance
from .audit import create_audit_log, compute_diff, snapshot
from .errors import (
    InvariantViolation,
    MissingOperator,
    MissingRequiredField,
    NotFound,
)


logger = structlog.get_logger(__name__)

# Columns copied straight from the payload onto the entry
READING_FIELDS = (
    "date",
    "shift",
    "site_id",
    "machine_id",
    "compressor_id",
    "machine_opening_rpm",
    "machine_closing_rpm",
    "compressor_opening_rpm",
    "compressor_closing_rpm",
    "machine_hsd",
    "compressor_hsd",
    "meter",
    "no_of_holes",
    "machine_service_done",
    "compressor_service_done",
    "notes",
)

ROSTER_FIELDS = ("employees", "employee_id", "additional_employee_ids")

# An explicit null in a patch leaves these unchanged
NON_NULL_FIELDS = ("date", "shift", "machine_service_done", "compressor_service_done")

AUDIT_FIELDS = READING_FIELDS + ("ref_no", "primary_employee_id")


def _format_reference(prefix: str, number: int) -> str:
    return f"{prefix}{number:0{settings.reference_pad}d}"


def generate_reference_code(db: Session, reserve: bool = False) -> str:
    """
    Next daily entry reference code, e.g. VA-003.

    The number is one past the larger of the live codes carrying the prefix
    and the last number issued from the sequence row. Codes already present
    (including tombstoned entries) are skipped.

    Args:
        db: Database session
        reserve: Lock and advance the sequence row so concurrent creators
            never receive the same code. A plain preview leaves it untouched.
    """
    prefix = settings.reference_prefix
    live_count = db.query(func.count(DailyEntry.id)).filter(
        DailyEntry.ref_no.like(f"{prefix}%"),
        DailyEntry.deleted_at.is_(None),
    ).scalar() or 0

    query = db.query(ReferenceSequence).filter(ReferenceSequence.prefix == prefix)
    if reserve:
        query = query.with_for_update()
    sequence = query.first()
    last_issued = sequence.last_value if sequence is not None else 0

    number = max(live_count, last_issued) + 1
    code = _format_reference(prefix, number)
    while db.query(DailyEntry.id).filter(DailyEntry.ref_no == code).first() is not None:
        number += 1
        code = _format_reference(prefix, number)

    if reserve:
        if sequence is None:
            db.add(ReferenceSequence(prefix=prefix, last_value=number))
        else:
            sequence.last_value = number
        db.flush()
    return code


def normalize_roster(
    employees: Optional[list],
    employee_id: Optional[uuid.UUID],
    additional_employee_ids: Optional[List[uuid.UUID]],
    shift: int,
) -> List[Dict[str, Any]]:
    """
    Roster rows from either the structured employees list or the legacy
    employee_id/additional_employee_ids fields. Repeated workers keep
    their first assignment.
    """
    members = []
    seen = set()
    if employees:
        for member in employees:
            if member.employee_id in seen:
                continue
            seen.add(member.employee_id)
            members.append({
                "employee_id": member.employee_id,
                "role": getattr(member.role, "value", member.role) or "operator",
                "shift": member.shift or shift,
            })
    elif employee_id:
        candidates = [(employee_id, shift)]
        for index, extra_id in enumerate(additional_employee_ids or []):
            candidates.append((extra_id, 2 + index))
        for worker_id, worker_shift in candidates:
            if worker_id in seen:
                continue
            seen.add(worker_id)
            members.append({"employee_id": worker_id, "role": "operator", "shift": worker_shift})
    return members


def _primary_operator(roster: List[Dict[str, Any]], shift: int) -> Optional[uuid.UUID]:
    for member in roster:
        if member["role"] == "operator" and member["shift"] == shift:
            return member["employee_id"]
    return None


def _check_required(merged: Dict[str, Any], roster: List[Dict[str, Any]]) -> None:
    if merged.get("site_id") is None:
        raise MissingRequiredField("Site is required", field="site_id")
    if merged.get("machine_id") is None:
        raise MissingRequiredField("Machine is required", field="machine_id")
    if merged.get("date") is None:
        raise MissingRequiredField("Date is required", field="date")
    if _primary_operator(roster, merged["shift"]) is None:
        raise MissingOperator(
            f"At least one operator is required for shift {merged['shift']}",
            field="employees",
        )


def _replace_roster(db: Session, entry: DailyEntry, roster: List[Dict[str, Any]]) -> None:
    # Old rows go first so re-adding the same worker does not hit the unique key
    entry.roster.clear()
    db.flush()
    for member in roster:
        entry.roster.append(RosterAssignment(
            employee_id=member["employee_id"],
            role=member["role"],
            shift=member["shift"],
        ))
    entry.primary_employee_id = _primary_operator(roster, entry.shift)
    db.flush()


def _roster_dicts(entry: DailyEntry) -> List[Dict[str, Any]]:
    return [
        {"employee_id": r.employee_id, "role": r.role, "shift": r.shift}
        for r in entry.roster
    ]


def _header_for(db: Session, entry: DailyEntry, asset, *action_lists, actor: Optional[str] = None) -> Optional[uuid.UUID]:
    """Service event id for the entry's fits on an asset; None when the lists hold no fits"""
    if not any(isinstance(a, FitAction) for actions in action_lists for a in (actions or ())):
        return None
    return scheduler.service_header(db, asset, entry.id, service_date=entry.date, actor=actor).id


def _run_item_actions(db: Session, entry: DailyEntry, machine, compressor, payload, actor: Optional[str]) -> None:
    if payload.machine_items:
        header_id = _header_for(db, entry, machine, payload.machine_items, actor=actor)
        fitting.apply_actions(
            db, payload.machine_items, machine, "machine",
            entry=entry, actor=actor, service_history_id=header_id,
        )
    if payload.compressor_items or payload.drilling_tools:
        if compressor is None:
            raise MissingRequiredField("Compressor is required for compressor items and drilling tools", field="compressor_id")
        header_id = _header_for(db, entry, compressor, payload.compressor_items, payload.drilling_tools, actor=actor)
        if payload.compressor_items:
            fitting.apply_actions(
                db, payload.compressor_items, compressor, "compressor",
                entry=entry, actor=actor, service_history_id=header_id,
            )
        if payload.drilling_tools:
            fitting.apply_actions(
                db, payload.drilling_tools, compressor, "drilling_tool",
                entry=entry, actor=actor, service_history_id=header_id,
            )


def _sync_attendance(db: Session, entry: DailyEntry, roster: List[Dict[str, Any]], actor: Optional[str]) -> None:
    for member in roster:
        attendance.upsert_attendance(db, {
            "employee_id": member["employee_id"],
            "date": entry.date,
            "presence": "present",
            "work_status": "working",
            "site_id": entry.site_id,
            "machine_id": entry.machine_id,
        }, actor=actor)


def create_daily_entry(db: Session, payload: DailyEntryCreate, actor: Optional[str] = None) -> DailyEntry:
    """
    Record one shift for a machine and apply all of its side effects.

    Args:
        db: Database session
        payload: Validated submission
        actor: Username from the verified token

    Returns:
        The persisted entry

    Raises:
        MissingRequiredField: site or machine missing
        MissingOperator: no operator assigned to the entry's shift
        NotFound: machine, compressor, item, fitting or worker missing
        InsufficientBalance: a fit action would overdraw stock
        NotFitted: a remove action targets an already removed fitting
    """
    merged = {field: getattr(payload, field) for field in READING_FIELDS}
    roster = normalize_roster(payload.employees, payload.employee_id, payload.additional_employee_ids, payload.shift)
    _check_required(merged, roster)

    machine = scheduler.get_asset(db, "machine", payload.machine_id, lock=True)
    compressor = None
    if payload.compressor_id:
        compressor = scheduler.get_asset(db, "compressor", payload.compressor_id, lock=True)

    if payload.ref_no:
        if db.query(DailyEntry.id).filter(DailyEntry.ref_no == payload.ref_no).first() is not None:
            raise InvariantViolation(f"Reference code {payload.ref_no} is already in use", field="ref_no")
        ref_no = payload.ref_no
    else:
        ref_no = generate_reference_code(db, reserve=True)

    entry = DailyEntry(ref_no=ref_no, created_by=actor, **merged)
    db.add(entry)
    db.flush()
    _replace_roster(db, entry, roster)

    # 1. Usage counters and service events
    machine_delta = scheduler.advance(machine, entry.machine_opening_rpm, entry.machine_closing_rpm)
    fitting.track_usage(db, machine, machine_delta)
    if entry.machine_service_done:
        scheduler.record_service(
            db, machine, payload.machine_service_name,
            at_rpm=machine.rpm, service_date=entry.date, daily_entry_id=entry.id, actor=actor,
        )
    if compressor is not None:
        compressor_delta = scheduler.advance(compressor, entry.compressor_opening_rpm, entry.compressor_closing_rpm)
        fitting.track_usage(db, compressor, compressor_delta, meter_delta=entry.meter)
        if entry.compressor_service_done:
            scheduler.record_service(
                db, compressor, payload.compressor_service_name,
                at_rpm=compressor.rpm, service_date=entry.date, daily_entry_id=entry.id, actor=actor,
            )
    db.flush()

    # 2. Item lifecycle
    _run_item_actions(db, entry, machine, compressor, payload, actor)

    # 3. Attendance
    _sync_attendance(db, entry, roster, actor)

    create_audit_log(
        db,
        entity_type="daily_entry",
        entity_id=entry.id,
        action="CREATE",
        actor=actor,
        source="api",
        changes_json={"after": snapshot(entry, AUDIT_FIELDS)},
        context={"ref_no": entry.ref_no},
    )
    logger.info(
        "daily_entry_created",
        entry_id=str(entry.id),
        ref_no=entry.ref_no,
        machine_id=str(entry.machine_id),
        shift=entry.shift,
        roster_size=len(roster),
    )
    return entry


def get_daily_entry(db: Session, entry_id: uuid.UUID, lock: bool = False) -> DailyEntry:
    query = db.query(DailyEntry).filter(DailyEntry.id == entry_id, DailyEntry.deleted_at.is_(None))
    if lock:
        query = query.with_for_update()
    entry = query.first()
    if entry is None:
        raise NotFound(f"Daily entry {entry_id} not found")
    return entry


def _advance_on_update(
    db: Session,
    asset_type: str,
    old_id,
    new_id,
    old_delta: float,
    new_delta: float,
    old_meter: Optional[float] = None,
    new_meter: Optional[float] = None,
):
    """
    Advance by the growth in shift delta for the same asset, or the full
    delta for a new one. Items still fitted to the asset gain the same usage.
    """
    if new_id is None:
        return None
    asset = scheduler.get_asset(db, asset_type, new_id, lock=True)
    if old_id == new_id:
        applied = scheduler.advance_by(asset, new_delta - old_delta)
        meter_growth = float(new_meter or 0) - float(old_meter or 0)
    else:
        applied = scheduler.advance_by(asset, new_delta)
        meter_growth = float(new_meter or 0)
    fitting.track_usage(db, asset, applied, meter_delta=meter_growth if asset_type == "compressor" else None)
    return asset


def update_daily_entry(db: Session, entry_id: uuid.UUID, patch: DailyEntryUpdate, actor: Optional[str] = None) -> DailyEntry:
    """
    Apply a partial update to an entry.

    Fields missing from the patch keep their stored values. The roster is
    replaced only when the patch carries roster fields. Counters move by
    the increase in shift delta only, so re-saving an entry never double
    counts and lowering a reading never winds a counter back.
    """
    entry = get_daily_entry(db, entry_id, lock=True)
    before = snapshot(entry, AUDIT_FIELDS)

    data = patch.dict(exclude_unset=True)
    merged = {}
    for field in READING_FIELDS:
        if field in data and not (field in NON_NULL_FIELDS and data[field] is None):
            merged[field] = data[field]
        else:
            merged[field] = getattr(entry, field)

    roster_replaced = any(field in patch.model_fields_set for field in ROSTER_FIELDS)
    if roster_replaced:
        roster = normalize_roster(patch.employees, patch.employee_id, patch.additional_employee_ids, merged["shift"])
    else:
        roster = _roster_dicts(entry)
    _check_required(merged, roster)

    old_machine_id = entry.machine_id
    old_compressor_id = entry.compressor_id
    old_machine_delta = scheduler.shift_delta(entry.machine_opening_rpm, entry.machine_closing_rpm)
    old_compressor_delta = scheduler.shift_delta(entry.compressor_opening_rpm, entry.compressor_closing_rpm)
    old_meter = entry.meter

    # Flags are events; only an explicit true in this patch records a service
    machine_service_requested = bool(data.get("machine_service_done"))
    compressor_service_requested = bool(data.get("compressor_service_done"))

    for field, value in merged.items():
        setattr(entry, field, value)
    entry.updated_by = actor
    entry.updated_at = datetime.now(timezone.utc)
    db.flush()

    if roster_replaced:
        _replace_roster(db, entry, roster)
    else:
        entry.primary_employee_id = _primary_operator(roster, entry.shift)

    # 1. Usage counters and service events
    machine = _advance_on_update(
        db, "machine", old_machine_id, entry.machine_id,
        old_machine_delta, scheduler.shift_delta(entry.machine_opening_rpm, entry.machine_closing_rpm),
    )
    if machine_service_requested:
        scheduler.record_service(
            db, machine, patch.machine_service_name,
            at_rpm=machine.rpm, service_date=entry.date, daily_entry_id=entry.id, actor=actor,
        )
    compressor = _advance_on_update(
        db, "compressor", old_compressor_id, entry.compressor_id,
        old_compressor_delta, scheduler.shift_delta(entry.compressor_opening_rpm, entry.compressor_closing_rpm),
        old_meter=old_meter, new_meter=entry.meter,
    )
    if compressor is not None and compressor_service_requested:
        scheduler.record_service(
            db, compressor, patch.compressor_service_name,
            at_rpm=compressor.rpm, service_date=entry.date, daily_entry_id=entry.id, actor=actor,
        )
    db.flush()

    # 2. Item lifecycle
    _run_item_actions(db, entry, machine, compressor, patch, actor)

    # 3. Attendance
    _sync_attendance(db, entry, roster, actor)

    changes = compute_diff(before, snapshot(entry, AUDIT_FIELDS))
    create_audit_log(
        db,
        entity_type="daily_entry",
        entity_id=entry.id,
        action="UPDATE",
        actor=actor,
        source="api",
        changes_json=changes,
        context={"ref_no": entry.ref_no, "roster_replaced": roster_replaced},
    )
    logger.info(
        "daily_entry_updated",
        entry_id=str(entry.id),
        ref_no=entry.ref_no,
        changed_fields=sorted(changes.keys()),
        roster_replaced=roster_replaced,
    )
    return entry


def delete_daily_entry(db: Session, entry_id: uuid.UUID, actor: Optional[str] = None) -> DailyEntry:
    """Tombstone an entry. Counters, fittings and attendance stay as they are."""
    entry = get_daily_entry(db, entry_id, lock=True)
    entry.deleted_at = datetime.now(timezone.utc)
    entry.updated_by = actor
    db.flush()
    create_audit_log(
        db,
        entity_type="daily_entry",
        entity_id=entry.id,
        action="DELETE",
        actor=actor,
        source="api",
        context={"ref_no": entry.ref_no},
    )
    logger.info("daily_entry_deleted", entry_id=str(entry.id), ref_no=entry.ref_no)
    return entry


def list_daily_entries(
    db: Session,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
    site_id: Optional[uuid.UUID] = None,
    machine_id: Optional[uuid.UUID] = None,
    employee_id: Optional[uuid.UUID] = None,
    page: int = 1,
    limit: int = 50,
) -> Tuple[List[DailyEntry], int]:
    query = db.query(DailyEntry).filter(DailyEntry.deleted_at.is_(None))
    if start_date:
        query = query.filter(DailyEntry.date >= start_date)
    if end_date:
        query = query.filter(DailyEntry.date <= end_date)
    if site_id:
        query = query.filter(DailyEntry.site_id == site_id)
    if machine_id:
        query = query.filter(DailyEntry.machine_id == machine_id)
    if employee_id:
        query = query.filter(DailyEntry.roster.any(RosterAssignment.employee_id == employee_id))

    total = query.count()
    items = query.options(
        selectinload(DailyEntry.roster),
        selectinload(DailyEntry.fittings),
    ).order_by(
        DailyEntry.date.desc(),
        DailyEntry.shift.desc(),
        DailyEntry.created_at.desc(),
    ).offset((page - 1) * limit).limit(limit).all()
    return items, total


def last_closing_readings(
    db: Session,
    machine_id: uuid.UUID,
    compressor_id: Optional[uuid.UUID] = None,
    exclude_entry_id: Optional[uuid.UUID] = None,
) -> Dict[str, Any]:
    """
    Highest closing readings of the machine's most recent working date,
    used to prefill the next entry's opening readings. Every shift of that
    date counts, so a later shift only wins when its reading is higher.
    """
    query = db.query(DailyEntry).filter(
        DailyEntry.machine_id == machine_id,
        DailyEntry.deleted_at.is_(None),
    )
    if exclude_entry_id:
        query = query.filter(DailyEntry.id != exclude_entry_id)

    latest = query.order_by(DailyEntry.date.desc(), DailyEntry.created_at.desc()).first()
    if latest is None:
        return {"date": None, "machine_closing_rpm": None, "compressor_closing_rpm": None}

    same_day = query.filter(DailyEntry.date == latest.date).all()

    machine_readings = [e.machine_closing_rpm for e in same_day if e.machine_closing_rpm is not None]
    compressor_readings = [
        e.compressor_closing_rpm for e in same_day
        if compressor_id and e.compressor_id == compressor_id and e.compressor_closing_rpm is not None
    ]
    return {
        "date": latest.date,
        "machine_closing_rpm": max(machine_readings) if machine_readings else None,
        "compressor_closing_rpm": max(compressor_readings) if compressor_readings else None,
    }
