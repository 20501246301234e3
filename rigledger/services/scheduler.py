"""
Usage counter and maintenance scheduler.
Owns the cumulative RPM counters of machines and compressors and their
named service cycles; computes next-due values and alert severity.
"""
import uuid
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Any, Iterable, Union

import structlog
from sqlalchemy.orm import Session, selectinload

from ..models.models import Machine, Compressor, MaintenanceRule, ServiceHistory, FittingRecord, InventoryItem
from ..config import settings
from .errors import NotFound, ValidationFailed


logger = structlog.get_logger(__name__)

Asset = Union[Machine, Compressor]

ASSET_MODELS = {
    "machine": Machine,
    "compressor": Compressor,
}

SEVERITY_CRITICAL = "critical"
SEVERITY_WARNING = "warning"

ALERT_SCHEDULE = "schedule"
ALERT_FITTED_ITEM = "fitted_item"

# Service event that entry items are booked under when no service was recorded
DAILY_MAINTENANCE = "Daily Maintenance"


def get_asset(db: Session, asset_type: str, asset_id: uuid.UUID, lock: bool = False) -> Asset:
    """
    Load a live machine or compressor.

    Args:
        db: Database session
        asset_type: machine|compressor
        asset_id: Asset ID
        lock: Take a row lock (SELECT ... FOR UPDATE) for read-modify-write

    Raises:
        NotFound: when the asset does not exist or is soft-deleted
    """
    model = ASSET_MODELS.get(asset_type)
    if model is None:
        raise ValidationFailed(f"Unknown asset type {asset_type!r}", field="asset_type")
    query = db.query(model).filter(model.id == asset_id, model.deleted_at.is_(None))
    if lock:
        query = query.with_for_update()
    asset = query.first()
    if asset is None:
        raise NotFound(f"{asset_type.title()} {asset_id} not found")
    return asset


def asset_label(asset: Asset) -> str:
    if isinstance(asset, Machine):
        return asset.machine_number
    return asset.name


def shift_delta(opening: Optional[float], closing: Optional[float]) -> float:
    """Usage contributed by one shift. Missing or reversed readings contribute zero."""
    if opening is None or closing is None:
        return 0.0
    return max(0.0, float(closing) - float(opening))


def advance_by(asset: Asset, delta: float) -> float:
    """Add a non-negative delta to the asset's counter; negative deltas are ignored."""
    delta = max(0.0, float(delta or 0))
    if delta > 0:
        asset.rpm = float(asset.rpm or 0) + delta
        asset.updated_at = datetime.now(timezone.utc)
    logger.info(
        "counter_advanced",
        asset_type=asset.asset_type,
        asset_id=str(asset.id),
        delta=delta,
        rpm=asset.rpm,
    )
    return delta


def advance(asset: Asset, opening: Optional[float], closing: Optional[float]) -> float:
    return advance_by(asset, shift_delta(opening, closing))


def record_service(
    db: Session,
    asset: Asset,
    service_name: Optional[str],
    at_rpm: Optional[float] = None,
    service_date: Optional[date] = None,
    daily_entry_id: Optional[uuid.UUID] = None,
    actor: Optional[str] = None,
    remarks: Optional[str] = None,
) -> ServiceHistory:
    """
    Record a maintenance event against an asset.

    The schedule rule whose name matches exactly gets its last-service
    reading moved to at_rpm; the cycle length is untouched. An unmatched
    name changes no schedule (no implicit rule creation) but the event is
    still written to the service history.
    """
    if at_rpm is None:
        at_rpm = asset.rpm or 0

    rule = None
    if service_name:
        rule = next((r for r in asset.maintenance_rules if r.service_name == service_name), None)
    if rule is not None:
        rule.last_service_rpm = float(at_rpm)
    else:
        logger.warning(
            "maintenance_rule_not_found",
            asset_type=asset.asset_type,
            asset_id=str(asset.id),
            service_name=service_name,
        )

    history = ServiceHistory(
        machine_id=asset.id if isinstance(asset, Machine) else None,
        compressor_id=asset.id if isinstance(asset, Compressor) else None,
        daily_entry_id=daily_entry_id,
        service_name=service_name,
        service_type=asset.asset_type,
        rpm_at_service=float(at_rpm),
        service_date=service_date or date.today(),
        rule_matched=rule is not None,
        remarks=remarks,
        created_by=actor,
    )
    db.add(history)
    db.flush()
    return history


def service_header(
    db: Session,
    asset: Asset,
    daily_entry_id: uuid.UUID,
    service_date: Optional[date] = None,
    actor: Optional[str] = None,
) -> ServiceHistory:
    """
    Service history row that an entry's consumed items are booked under.

    Reuses the event the entry already recorded for this asset; otherwise
    opens a "Daily Maintenance" event that touches no schedule rule.
    """
    column = ServiceHistory.machine_id if isinstance(asset, Machine) else ServiceHistory.compressor_id
    existing = db.query(ServiceHistory).filter(
        ServiceHistory.daily_entry_id == daily_entry_id,
        column == asset.id,
    ).order_by(ServiceHistory.created_at).first()
    if existing is not None:
        return existing

    history = ServiceHistory(
        machine_id=asset.id if isinstance(asset, Machine) else None,
        compressor_id=asset.id if isinstance(asset, Compressor) else None,
        daily_entry_id=daily_entry_id,
        service_name=DAILY_MAINTENANCE,
        service_type=asset.asset_type,
        rpm_at_service=float(asset.rpm or 0),
        service_date=service_date or date.today(),
        rule_matched=False,
        remarks="Created from daily entry items",
        created_by=actor,
    )
    db.add(history)
    db.flush()
    logger.info(
        "service_header_created",
        asset_type=asset.asset_type,
        asset_id=str(asset.id),
        daily_entry_id=str(daily_entry_id),
    )
    return history


def replace_schedule(db: Session, asset: Asset, rules: Iterable[Dict[str, Any]]) -> List[MaintenanceRule]:
    """
    Replace an asset's maintenance schedule.

    Rules are matched by service name so existing rows are updated in place;
    rules missing from the new list are removed.
    """
    rules = list(rules)
    seen = set()
    for rule in rules:
        name = (rule.get("service_name") or "").strip()
        if not name:
            raise ValidationFailed("Service name is required", field="service_name")
        if name in seen:
            raise ValidationFailed(f"Duplicate service name {name!r}", field="service_name")
        seen.add(name)
        cycle = rule.get("cycle_length")
        if cycle is None or float(cycle) <= 0:
            raise ValidationFailed(f"Cycle length for {name!r} must be positive", field="cycle_length")
        if float(rule.get("last_service_rpm") or 0) < 0:
            raise ValidationFailed(f"Last service RPM for {name!r} must be non-negative", field="last_service_rpm")

    existing = {r.service_name: r for r in asset.maintenance_rules}
    updated: List[MaintenanceRule] = []
    for position, rule in enumerate(rules):
        name = rule["service_name"].strip()
        row = existing.pop(name, None)
        if row is None:
            row = MaintenanceRule(service_name=name)
        row.position = position
        row.cycle_length = float(rule["cycle_length"])
        row.last_service_rpm = float(rule.get("last_service_rpm") or 0)
        updated.append(row)

    asset.maintenance_rules = updated
    asset.updated_at = datetime.now(timezone.utc)
    db.flush()
    return updated


def _rule_numbers(rule: MaintenanceRule) -> Optional[tuple]:
    try:
        cycle = float(rule.cycle_length)
        last = float(rule.last_service_rpm or 0)
    except (TypeError, ValueError):
        return None
    if cycle <= 0:
        return None
    return cycle, last


def severity_for(remaining: float, warning_window: float) -> Optional[str]:
    """critical when due or overdue, warning inside the window, otherwise no alert"""
    if remaining <= 0:
        return SEVERITY_CRITICAL
    if remaining <= warning_window:
        return SEVERITY_WARNING
    return None


def compute_alerts(asset: Asset, warning_window: Optional[float] = None) -> List[Dict[str, Any]]:
    """
    Maintenance alerts for one asset.

    Severity is critical when the service is due or overdue (remaining <= 0)
    and warning when remaining is within the warning window. Rules with a
    missing or non-positive cycle are skipped.
    """
    if warning_window is None:
        warning_window = settings.alert_warning_window

    current = float(asset.rpm or 0)
    alerts = []
    for rule in asset.maintenance_rules:
        numbers = _rule_numbers(rule)
        if numbers is None:
            logger.warning(
                "maintenance_rule_malformed",
                asset_type=asset.asset_type,
                asset_id=str(asset.id),
                service_name=rule.service_name,
            )
            continue
        cycle, last = numbers
        next_due = last + cycle
        remaining = next_due - current
        severity = severity_for(remaining, warning_window)
        if severity is None:
            continue
        alerts.append({
            "alert_type": ALERT_SCHEDULE,
            "asset_type": asset.asset_type,
            "asset_id": asset.id,
            "asset_name": asset_label(asset),
            "fitting_id": None,
            "service_name": rule.service_name,
            "current_rpm": current,
            "cycle_length": cycle,
            "last_service_rpm": last,
            "next_due_rpm": next_due,
            "remaining": remaining,
            "severity": severity,
        })
    return alerts


def _live(asset: Optional[Asset]) -> bool:
    return asset is not None and asset.deleted_at is None and asset.status == "active"


def compute_item_alerts(db: Session, warning_window: Optional[float] = None) -> List[Dict[str, Any]]:
    """
    Alerts for items still fitted to live, active assets.

    An item's cycle is its service interval, measured from zero at fitting
    time against the usage it has run since. Items without an interval
    raise no alerts.
    """
    if warning_window is None:
        warning_window = settings.alert_warning_window

    records = db.query(FittingRecord).join(InventoryItem, FittingRecord.item_id == InventoryItem.id).options(
        selectinload(FittingRecord.item),
        selectinload(FittingRecord.machine),
        selectinload(FittingRecord.compressor),
    ).filter(
        FittingRecord.status == "fitted",
        InventoryItem.service_interval_rpm.isnot(None),
        InventoryItem.service_interval_rpm > 0,
    ).all()

    alerts = []
    for record in records:
        asset = record.machine or record.compressor
        if not _live(asset):
            continue
        interval = float(record.item.service_interval_rpm)
        used = float(record.run_rpm or 0)
        remaining = interval - used
        severity = severity_for(remaining, warning_window)
        if severity is None:
            continue
        alerts.append({
            "alert_type": ALERT_FITTED_ITEM,
            "asset_type": asset.asset_type,
            "asset_id": asset.id,
            "asset_name": asset_label(asset),
            "fitting_id": record.id,
            "service_name": record.item.name,
            "current_rpm": used,
            "cycle_length": interval,
            "last_service_rpm": 0.0,
            "next_due_rpm": interval,
            "remaining": remaining,
            "severity": severity,
        })
    return alerts


def compute_maintenance_alerts(db: Session) -> List[Dict[str, Any]]:
    """Schedule and fitted-item alerts across all live, active assets, most overdue first"""
    alerts = []
    for model in (Machine, Compressor):
        assets = db.query(model).options(selectinload(model.maintenance_rules)).filter(
            model.deleted_at.is_(None),
            model.status == "active",
        ).all()
        for asset in assets:
            alerts.extend(compute_alerts(asset))
    alerts.extend(compute_item_alerts(db))
    alerts.sort(key=lambda a: a["remaining"])
    return alerts
