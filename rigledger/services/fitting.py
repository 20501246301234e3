"""
Fitting lifecycle: items fitted to and removed from machines and compressors.

A fitting record is created `fitted` and moves once to `removed`. Fitting
consumes stock through the inventory ledger; removal never restocks.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, List, Sequence, Union

import structlog
from sqlalchemy.orm import Session

from ..models.models import Machine, Compressor, FittingRecord, DailyEntry
from ..schemas.inventory import FitAction, RemoveAction
from . import inventory_ledger
from .errors import NotFitted, NotFound, ValidationFailed


logger = structlog.get_logger(__name__)

Asset = Union[Machine, Compressor]


def _check_target(asset: Asset, service_type: str) -> None:
    if service_type == "machine" and not isinstance(asset, Machine):
        raise ValidationFailed("Machine items can only be fitted to a machine", field="service_type")
    if service_type in ("compressor", "drilling_tool") and not isinstance(asset, Compressor):
        label = "Drilling tools" if service_type == "drilling_tool" else "Compressor items"
        raise ValidationFailed(f"{label} can only be fitted to a compressor", field="service_type")
    if service_type not in ("machine", "compressor", "drilling_tool"):
        raise ValidationFailed(f"Unknown service type {service_type!r}", field="service_type")


def fit(
    db: Session,
    item_id: uuid.UUID,
    asset: Asset,
    service_type: str,
    quantity: float = 1,
    at_rpm: Optional[float] = None,
    at_meter: Optional[float] = None,
    fitted_date: Optional[date] = None,
    daily_entry_id: Optional[uuid.UUID] = None,
    actor: Optional[str] = None,
    service_history_id: Optional[uuid.UUID] = None,
) -> FittingRecord:
    """
    Fit an item to an asset.

    Args:
        db: Database session
        item_id: Inventory item being fitted
        asset: Target machine or compressor
        service_type: machine|compressor|drilling_tool
        quantity: Units consumed from stock
        at_rpm: Asset reading at fitting time (defaults to the asset's counter)
        at_meter: Meter reading at fitting time
        fitted_date: Defaults to today
        daily_entry_id: Owning entry, None for direct use
        actor: Username for audit columns
        service_history_id: Service event the consumed item is booked under

    Returns:
        The new fitting record

    Raises:
        InsufficientBalance: stock is short; nothing is written
    """
    _check_target(asset, service_type)

    # Stock first so a shortfall leaves no fitting behind
    item = inventory_ledger.consume(db, item_id, quantity)

    record = FittingRecord(
        item_id=item.id,
        daily_entry_id=daily_entry_id,
        service_history_id=service_history_id,
        machine_id=asset.id if isinstance(asset, Machine) else None,
        compressor_id=asset.id if isinstance(asset, Compressor) else None,
        service_type=service_type,
        fitted_date=fitted_date or date.today(),
        fitted_rpm=float(asset.rpm or 0) if at_rpm is None else float(at_rpm),
        fitted_meter=at_meter,
        quantity=float(quantity),
        status="fitted",
        created_by=actor,
    )
    db.add(record)
    db.flush()
    logger.info(
        "item_fitted",
        fitting_id=str(record.id),
        item_id=str(item.id),
        asset_type=asset.asset_type,
        asset_id=str(asset.id),
        service_type=service_type,
        quantity=record.quantity,
        fitted_rpm=record.fitted_rpm,
    )
    return record


def _fitting_asset(db: Session, record: FittingRecord) -> Optional[Asset]:
    if record.machine_id:
        return db.get(Machine, record.machine_id)
    if record.compressor_id:
        return db.get(Compressor, record.compressor_id)
    return None


def remove(
    db: Session,
    fitting_id: uuid.UUID,
    at_rpm: Optional[float] = None,
    at_meter: Optional[float] = None,
    removed_date: Optional[date] = None,
    actor: Optional[str] = None,
) -> FittingRecord:
    """
    Remove a fitted item. Raises NotFitted when the record is already
    removed; the record is left as it was.
    """
    record = db.query(FittingRecord).filter(FittingRecord.id == fitting_id).with_for_update().first()
    if record is None:
        raise NotFound(f"Fitting {fitting_id} not found")
    if record.status != "fitted":
        raise NotFitted(f"Fitting {fitting_id} is already removed")

    if at_rpm is None:
        asset = _fitting_asset(db, record)
        at_rpm = float(asset.rpm or 0) if asset is not None else record.fitted_rpm

    record.removed_date = removed_date or date.today()
    record.removed_rpm = float(at_rpm)
    record.removed_meter = at_meter
    record.total_rpm_run = float(at_rpm) - float(record.fitted_rpm)
    if at_meter is not None and record.fitted_meter is not None:
        record.total_meter_run = float(at_meter) - float(record.fitted_meter)
    else:
        record.total_meter_run = None
    record.status = "removed"
    record.updated_by = actor
    record.updated_at = datetime.now(timezone.utc)
    db.flush()
    logger.info(
        "item_removed",
        fitting_id=str(record.id),
        item_id=str(record.item_id),
        total_rpm_run=record.total_rpm_run,
        total_meter_run=record.total_meter_run,
    )
    return record


def open_fittings(db: Session, asset: Asset) -> List[FittingRecord]:
    column = FittingRecord.machine_id if isinstance(asset, Machine) else FittingRecord.compressor_id
    return db.query(FittingRecord).filter(column == asset.id, FittingRecord.status == "fitted").all()


def track_usage(
    db: Session,
    asset: Asset,
    rpm_delta: float,
    meter_delta: Optional[float] = None,
) -> List[FittingRecord]:
    """
    Add one shift's usage to every item still fitted to the asset.

    RPM goes to all open fittings. Metres drilled only count against
    drilling tools. Negative deltas are ignored, like the asset counter.
    """
    rpm_delta = max(0.0, float(rpm_delta or 0))
    meter_delta = max(0.0, float(meter_delta or 0))
    if rpm_delta == 0 and meter_delta == 0:
        return []

    records = open_fittings(db, asset)
    for record in records:
        record.run_rpm = float(record.run_rpm or 0) + rpm_delta
        if record.service_type == "drilling_tool":
            record.run_meter = float(record.run_meter or 0) + meter_delta
    db.flush()
    if records:
        logger.info(
            "fitting_usage_tracked",
            asset_type=asset.asset_type,
            asset_id=str(asset.id),
            fittings=len(records),
            rpm_delta=rpm_delta,
            meter_delta=meter_delta,
        )
    return records


def apply_actions(
    db: Session,
    actions: Sequence[Union[FitAction, RemoveAction]],
    asset: Asset,
    service_type: str,
    entry: Optional[DailyEntry] = None,
    actor: Optional[str] = None,
    service_history_id: Optional[uuid.UUID] = None,
) -> List[FittingRecord]:
    """Run a list of fit/remove actions against one asset, in order."""
    records = []
    meter = entry.meter if entry is not None else None
    on_date = entry.date if entry is not None else None
    for action in actions:
        if isinstance(action, FitAction):
            records.append(fit(
                db,
                action.item_id,
                asset,
                service_type,
                quantity=action.quantity,
                at_rpm=action.fitted_rpm,
                at_meter=action.fitted_meter if action.fitted_meter is not None else meter,
                fitted_date=on_date,
                daily_entry_id=entry.id if entry is not None else None,
                actor=actor,
                service_history_id=service_history_id,
            ))
        elif isinstance(action, RemoveAction):
            existing = db.get(FittingRecord, action.fitting_id)
            if existing is not None and asset.id not in (existing.machine_id, existing.compressor_id):
                raise ValidationFailed(
                    f"Fitting {action.fitting_id} does not belong to {asset.asset_type} {asset.id}",
                    field="fitting_id",
                )
            if existing is not None and existing.service_type != service_type:
                raise ValidationFailed(
                    f"Fitting {action.fitting_id} is a {existing.service_type} fitting, not {service_type}",
                    field="fitting_id",
                )
            records.append(remove(
                db,
                action.fitting_id,
                at_rpm=action.removed_rpm,
                at_meter=action.removed_meter if action.removed_meter is not None else meter,
                removed_date=on_date,
                actor=actor,
            ))
        else:
            raise ValidationFailed(f"Unsupported item action {action!r}", field="action")
    return records


def list_fittings(
    db: Session,
    machine_id: Optional[uuid.UUID] = None,
    compressor_id: Optional[uuid.UUID] = None,
    item_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    service_type: Optional[str] = None,
    daily_entry_id: Optional[uuid.UUID] = None,
    service_history_id: Optional[uuid.UUID] = None,
) -> List[FittingRecord]:
    query = db.query(FittingRecord)
    if machine_id:
        query = query.filter(FittingRecord.machine_id == machine_id)
    if compressor_id:
        query = query.filter(FittingRecord.compressor_id == compressor_id)
    if item_id:
        query = query.filter(FittingRecord.item_id == item_id)
    if status:
        query = query.filter(FittingRecord.status == status)
    if service_type:
        query = query.filter(FittingRecord.service_type == service_type)
    if daily_entry_id:
        query = query.filter(FittingRecord.daily_entry_id == daily_entry_id)
    if service_history_id:
        query = query.filter(FittingRecord.service_history_id == service_history_id)
    return query.order_by(FittingRecord.fitted_date.desc(), FittingRecord.created_at.desc()).all()
