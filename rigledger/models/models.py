import uuid
from datetime import datetime, date
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Integer,
    Float,
    Numeric,
    JSON,
    UniqueConstraint,
    CheckConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# =====================
# Fleet domain
# =====================

class Compressor(Base):
    """Air compressors paired with drilling machines"""
    __tablename__ = "compressors"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    serial_number: Mapped[Optional[str]] = mapped_column(String(100))
    rpm: Mapped[float] = mapped_column(Float, nullable=False, default=0)  # Cumulative usage counter, never decreases
    status: Mapped[str] = mapped_column(String(50), default="active", index=True)  # active|inactive
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    maintenance_rules = relationship(
        "MaintenanceRule",
        back_populates="compressor",
        cascade="all, delete-orphan",
        order_by="MaintenanceRule.position",
    )

    __mapper_args__ = {"version_id_col": version}

    asset_type = "compressor"


class Machine(Base):
    """Drilling machines"""
    __tablename__ = "machines"

    id: Mapped[uuid.UUID] = uuid_pk()
    machine_number: Mapped[str] = mapped_column(String(100), unique=True, nullable=False, index=True)
    machine_type: Mapped[Optional[str]] = mapped_column(String(100))
    rpm: Mapped[float] = mapped_column(Float, nullable=False, default=0)  # Cumulative usage counter, never decreases
    status: Mapped[str] = mapped_column(String(50), default="active", index=True)  # active|inactive
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)  # Site reference data lives outside this service
    compressor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("compressors.id", ondelete="SET NULL"))
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    maintenance_rules = relationship(
        "MaintenanceRule",
        back_populates="machine",
        cascade="all, delete-orphan",
        order_by="MaintenanceRule.position",
    )
    compressor = relationship("Compressor")

    __mapper_args__ = {"version_id_col": version}

    asset_type = "machine"


class MaintenanceRule(Base):
    """One named service cycle in an asset's maintenance schedule"""
    __tablename__ = "maintenance_rules"

    id: Mapped[uuid.UUID] = uuid_pk()
    machine_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("machines.id", ondelete="CASCADE"), index=True)
    compressor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("compressors.id", ondelete="CASCADE"), index=True)
    position: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    service_name: Mapped[str] = mapped_column(String(255), nullable=False)
    cycle_length: Mapped[Optional[float]] = mapped_column(Float)  # RPM between services
    last_service_rpm: Mapped[float] = mapped_column(Float, nullable=False, default=0)

    machine = relationship("Machine", back_populates="maintenance_rules")
    compressor = relationship("Compressor", back_populates="maintenance_rules")

    __table_args__ = (
        CheckConstraint(
            "(machine_id IS NULL) <> (compressor_id IS NULL)",
            name="ck_maintenance_rule_single_asset",
        ),
        UniqueConstraint("machine_id", "service_name", name="uq_rule_machine_name"),
        UniqueConstraint("compressor_id", "service_name", name="uq_rule_compressor_name"),
    )


class ServiceHistory(Base):
    """Maintenance events recorded against a machine or compressor"""
    __tablename__ = "service_history"

    id: Mapped[uuid.UUID] = uuid_pk()
    machine_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("machines.id", ondelete="CASCADE"), index=True)
    compressor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("compressors.id", ondelete="CASCADE"), index=True)
    daily_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("daily_entries.id", ondelete="SET NULL"), index=True)
    service_name: Mapped[Optional[str]] = mapped_column(String(255))
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)  # machine|compressor
    rpm_at_service: Mapped[float] = mapped_column(Float, nullable=False)
    service_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    rule_matched: Mapped[bool] = mapped_column(Boolean, default=False)
    remarks: Mapped[Optional[str]] = mapped_column(Text)
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)

    fittings = relationship("FittingRecord", back_populates="service_history")

    __table_args__ = (
        Index('idx_service_history_machine_date', 'machine_id', 'service_date'),
        Index('idx_service_history_compressor_date', 'compressor_id', 'service_date'),
    )


# =====================
# Inventory domain
# =====================

class InventoryItem(Base):
    """Consumables, spares and drilling tools held in stock"""
    __tablename__ = "inventory_items"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    part_number: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    unit: Mapped[str] = mapped_column(String(20), default="nos")  # kg|ltr|mtr|nos|set|unit|kit
    category: Mapped[str] = mapped_column(String(50), default="spare", index=True)  # spare|service_item|drilling_tool
    balance: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    inward: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    outward: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    service_interval_rpm: Mapped[Optional[float]] = mapped_column(Float)  # RPM a fitted unit runs between services
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_inventory_item_balance_non_negative"),
    )


class FittingRecord(Base):
    """An item instance fitted to a machine or compressor"""
    __tablename__ = "fitting_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    item_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("inventory_items.id", ondelete="RESTRICT"), nullable=False, index=True)
    daily_entry_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("daily_entries.id", ondelete="SET NULL"), index=True)
    service_history_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("service_history.id", ondelete="SET NULL"), index=True)
    machine_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("machines.id", ondelete="RESTRICT"), index=True)
    compressor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("compressors.id", ondelete="RESTRICT"), index=True)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)  # machine|compressor|drilling_tool
    fitted_date: Mapped[date] = mapped_column(Date, nullable=False)
    fitted_rpm: Mapped[float] = mapped_column(Float, nullable=False)
    fitted_meter: Mapped[Optional[float]] = mapped_column(Float)
    removed_date: Mapped[Optional[date]] = mapped_column(Date)
    removed_rpm: Mapped[Optional[float]] = mapped_column(Float)
    removed_meter: Mapped[Optional[float]] = mapped_column(Float)
    total_rpm_run: Mapped[Optional[float]] = mapped_column(Float)
    total_meter_run: Mapped[Optional[float]] = mapped_column(Float)
    run_rpm: Mapped[float] = mapped_column(Float, nullable=False, default=0)  # Usage accumulated from entries while fitted
    run_meter: Mapped[float] = mapped_column(Float, nullable=False, default=0)
    quantity: Mapped[float] = mapped_column(Float, nullable=False, default=1)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="fitted", index=True)  # fitted|removed
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    item = relationship("InventoryItem")
    machine = relationship("Machine")
    compressor = relationship("Compressor")
    service_history = relationship("ServiceHistory", back_populates="fittings")

    __table_args__ = (
        CheckConstraint(
            "(machine_id IS NULL) <> (compressor_id IS NULL)",
            name="ck_fitting_single_asset",
        ),
        Index('idx_fitting_machine_status', 'machine_id', 'status'),
        Index('idx_fitting_compressor_status', 'compressor_id', 'status'),
    )


# =====================
# Workforce domain
# =====================

class Worker(Base):
    """Site workers: operators and helpers"""
    __tablename__ = "workers"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_code: Mapped[str] = mapped_column(String(20), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    designation: Mapped[Optional[str]] = mapped_column(String(100))
    status: Mapped[str] = mapped_column(String(50), default="active")  # active|inactive|resigned
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    daily_salary: Mapped[float] = mapped_column(Numeric(10, 2), default=0)
    advanced_amount: Mapped[float] = mapped_column(Numeric(12, 2), nullable=False, default=0)  # Wage advance still owed
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)


class AttendanceRecord(Base):
    """Daily attendance, one row per worker per date"""
    __tablename__ = "attendance_records"

    id: Mapped[uuid.UUID] = uuid_pk()
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="RESTRICT"), nullable=False, index=True)
    date: Mapped[Date] = mapped_column(Date, nullable=False, index=True)  # Local date
    presence: Mapped[str] = mapped_column(String(20), nullable=False, default="present")  # present|absent
    work_status: Mapped[str] = mapped_column(String(20), nullable=False, default="working")  # working|non-working
    salary: Mapped[float] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    machine_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("machines.id", ondelete="SET NULL"))
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))

    employee = relationship("Worker")

    __table_args__ = (
        UniqueConstraint("employee_id", "date", name="uq_attendance_employee_date"),
    )


# =====================
# Daily entry domain
# =====================

class DailyEntry(Base):
    """One shift's readings for a machine (and optionally its compressor)"""
    __tablename__ = "daily_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    ref_no: Mapped[str] = mapped_column(String(50), unique=True, nullable=False, index=True)
    date: Mapped[Date] = mapped_column(Date, nullable=False, index=True)  # Local date
    shift: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    site_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    machine_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("machines.id", ondelete="RESTRICT"), nullable=False, index=True)
    compressor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("compressors.id", ondelete="RESTRICT"), index=True)
    machine_opening_rpm: Mapped[Optional[float]] = mapped_column(Float)
    machine_closing_rpm: Mapped[Optional[float]] = mapped_column(Float)
    compressor_opening_rpm: Mapped[Optional[float]] = mapped_column(Float)
    compressor_closing_rpm: Mapped[Optional[float]] = mapped_column(Float)
    machine_hsd: Mapped[Optional[float]] = mapped_column(Float)  # Diesel used by the machine
    compressor_hsd: Mapped[Optional[float]] = mapped_column(Float)
    meter: Mapped[Optional[float]] = mapped_column(Float)  # Metres drilled
    no_of_holes: Mapped[Optional[float]] = mapped_column(Float, default=0)
    machine_service_done: Mapped[bool] = mapped_column(Boolean, default=False)
    compressor_service_done: Mapped[bool] = mapped_column(Boolean, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    primary_employee_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="SET NULL"))
    created_by: Mapped[Optional[str]] = mapped_column(String(100))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow)
    updated_by: Mapped[Optional[str]] = mapped_column(String(100))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), index=True)

    roster = relationship(
        "RosterAssignment",
        back_populates="daily_entry",
        cascade="all, delete-orphan",
        order_by="RosterAssignment.shift",
    )
    fittings = relationship("FittingRecord", order_by="FittingRecord.created_at")
    machine = relationship("Machine")
    compressor = relationship("Compressor")

    __table_args__ = (
        CheckConstraint("shift IN (1, 2)", name="ck_daily_entry_shift"),
        Index('idx_daily_entry_machine_date', 'machine_id', 'date'),
    )


class RosterAssignment(Base):
    """Worker assigned to a daily entry with a role and shift"""
    __tablename__ = "daily_entry_employees"

    id: Mapped[uuid.UUID] = uuid_pk()
    daily_entry_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("daily_entries.id", ondelete="CASCADE"), nullable=False, index=True)
    employee_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("workers.id", ondelete="RESTRICT"), nullable=False, index=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default="operator")  # operator|helper
    shift: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    daily_entry = relationship("DailyEntry", back_populates="roster")
    employee = relationship("Worker")

    __table_args__ = (
        UniqueConstraint("daily_entry_id", "employee_id", name="uq_roster_entry_employee"),
    )


class ReferenceSequence(Base):
    """Last issued number per reference-code prefix"""
    __tablename__ = "reference_sequences"

    prefix: Mapped[str] = mapped_column(String(20), primary_key=True)
    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)


class AuditLog(Base):
    """Append-only audit log for daily entry changes"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # daily_entry|fitting|attendance
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # CREATE|UPDATE|DELETE
    actor: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
