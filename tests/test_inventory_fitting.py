import uuid
from datetime import date

import pytest
from sqlalchemy.orm.exc import StaleDataError

from rigledger.models.models import FittingRecord, InventoryItem
from rigledger.schemas.inventory import FitAction, RemoveAction
from rigledger.services import fitting, inventory_ledger
from rigledger.services.errors import InsufficientBalance, NotFitted, NotFound, ValidationFailed


def test_consume_and_receive_track_movements(db, oil_filter):
    inventory_ledger.consume(db, oil_filter.id, 2)
    inventory_ledger.receive(db, oil_filter.id, 4)
    assert oil_filter.balance == 7
    assert oil_filter.outward == 2
    assert oil_filter.inward == 9


def test_consume_shortfall_leaves_balance(db, oil_filter):
    with pytest.raises(InsufficientBalance):
        inventory_ledger.consume(db, oil_filter.id, 6)
    assert oil_filter.balance == 5
    assert oil_filter.outward == 0


def test_consume_rejects_non_positive_quantity(db, oil_filter):
    with pytest.raises(ValidationFailed):
        inventory_ledger.consume(db, oil_filter.id, 0)


def test_fit_creates_record_and_consumes_stock(db, machine, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine", quantity=2, at_meter=12.5, actor="supervisor")
    assert record.status == "fitted"
    assert record.fitted_rpm == 1000
    assert record.fitted_meter == 12.5
    assert record.machine_id == machine.id
    assert record.compressor_id is None
    assert oil_filter.balance == 3
    assert oil_filter.outward == 2


def test_fit_with_insufficient_stock_writes_nothing(db, machine, oil_filter):
    with pytest.raises(InsufficientBalance):
        fitting.fit(db, oil_filter.id, machine, "machine", quantity=10)
    assert db.query(FittingRecord).count() == 0
    assert oil_filter.balance == 5


def test_fit_unknown_item(db, machine):
    with pytest.raises(NotFound):
        fitting.fit(db, uuid.uuid4(), machine, "machine")


def test_drilling_tool_requires_compressor(db, machine, compressor, drill_bit):
    with pytest.raises(ValidationFailed):
        fitting.fit(db, drill_bit.id, machine, "drilling_tool")
    record = fitting.fit(db, drill_bit.id, compressor, "drilling_tool", at_meter=100)
    assert record.service_type == "drilling_tool"
    assert record.compressor_id == compressor.id


def test_remove_computes_run_totals(db, compressor, drill_bit):
    record = fitting.fit(db, drill_bit.id, compressor, "drilling_tool", at_rpm=500, at_meter=100)
    removed = fitting.remove(db, record.id, at_rpm=620, at_meter=340, removed_date=date(2024, 5, 2))
    assert removed.status == "removed"
    assert removed.total_rpm_run == 120
    assert removed.total_meter_run == 240
    assert removed.removed_date == date(2024, 5, 2)
    # no restock on removal
    assert drill_bit.balance == 1


def test_remove_without_meters_leaves_meter_run_empty(db, machine, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine")
    removed = fitting.remove(db, record.id, at_rpm=1100)
    assert removed.total_rpm_run == 100
    assert removed.total_meter_run is None


def test_remove_defaults_to_current_counter(db, machine, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine")
    machine.rpm = 1040
    removed = fitting.remove(db, record.id)
    assert removed.removed_rpm == 1040
    assert removed.total_rpm_run == 40


def test_remove_twice_raises_and_keeps_record(db, machine, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine")
    fitting.remove(db, record.id, at_rpm=1100)
    with pytest.raises(NotFitted):
        fitting.remove(db, record.id, at_rpm=1300)
    assert record.removed_rpm == 1100
    assert record.total_rpm_run == 100


def test_apply_actions_dispatches_by_tag(db, machine, oil_filter):
    first = fitting.fit(db, oil_filter.id, machine, "machine")
    records = fitting.apply_actions(db, [
        RemoveAction(action="remove", fitting_id=first.id, removed_rpm=1200),
        FitAction(action="fit", item_id=oil_filter.id),
    ], machine, "machine")
    assert [r.status for r in records] == ["removed", "fitted"]
    assert oil_filter.balance == 3


def test_apply_actions_rejects_foreign_fitting(db, machine, compressor, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine")
    with pytest.raises(ValidationFailed):
        fitting.apply_actions(db, [RemoveAction(action="remove", fitting_id=record.id)], compressor, "compressor")


def test_list_fittings_filters(db, machine, compressor, oil_filter, drill_bit):
    fitting.fit(db, oil_filter.id, machine, "machine")
    fitting.fit(db, drill_bit.id, compressor, "drilling_tool")
    assert len(fitting.list_fittings(db, machine_id=machine.id)) == 1
    assert len(fitting.list_fittings(db, service_type="drilling_tool")) == 1
    assert len(fitting.list_fittings(db, status="removed")) == 0


def test_apply_actions_rejects_fitting_from_other_list(db, compressor, oil_filter):
    record = fitting.fit(db, oil_filter.id, compressor, "compressor")
    with pytest.raises(ValidationFailed):
        fitting.apply_actions(db, [RemoveAction(action="remove", fitting_id=record.id)], compressor, "drilling_tool")
    assert record.status == "fitted"
    assert record.removed_rpm is None


def test_track_usage_adds_to_open_fittings_only(db, compressor, oil_filter, drill_bit):
    filter_fit = fitting.fit(db, oil_filter.id, compressor, "compressor")
    bit_fit = fitting.fit(db, drill_bit.id, compressor, "drilling_tool", at_meter=0)
    spent = fitting.fit(db, drill_bit.id, compressor, "drilling_tool")
    fitting.remove(db, spent.id, at_rpm=510)

    fitting.track_usage(db, compressor, 30, meter_delta=80)
    fitting.track_usage(db, compressor, 15)

    assert filter_fit.run_rpm == 45
    assert filter_fit.run_meter == 0
    assert bit_fit.run_rpm == 45
    assert bit_fit.run_meter == 80
    assert spent.run_rpm == 0


def test_track_usage_ignores_negative_deltas(db, machine, oil_filter):
    record = fitting.fit(db, oil_filter.id, machine, "machine")
    assert fitting.track_usage(db, machine, -20, meter_delta=-5) == []
    assert record.run_rpm == 0


def test_concurrent_consume_loses_no_update(file_session_factory):
    setup = file_session_factory()
    item = InventoryItem(name="Engine oil filter", category="service_item", balance=5, inward=5, outward=0)
    setup.add(item)
    setup.commit()
    item_id = item.id
    setup.close()

    first = file_session_factory()
    second = file_session_factory()
    first.get(InventoryItem, item_id)
    second.get(InventoryItem, item_id)

    inventory_ledger.consume(first, item_id, 2)
    first.commit()

    with pytest.raises(StaleDataError):
        inventory_ledger.consume(second, item_id, 1)
        second.commit()
    second.rollback()
    first.close()
    second.close()

    check = file_session_factory()
    stored = check.get(InventoryItem, item_id)
    assert stored.balance == 3
    assert stored.outward == 2
    assert stored.version == 2
    check.close()
