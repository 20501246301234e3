import uuid

import pytest
from sqlalchemy.orm.exc import StaleDataError

from rigledger.models.models import Compressor, InventoryItem, Machine, ServiceHistory
from rigledger.services import fitting, scheduler
from rigledger.services.errors import NotFound, ValidationFailed


def _compressor_with_rule(db, rpm, cycle=250, last=750, status="active"):
    c = Compressor(name=f"CMP-{rpm}", rpm=rpm, status=status)
    db.add(c)
    db.flush()
    scheduler.replace_schedule(db, c, [{"service_name": "Compressor Service", "cycle_length": cycle, "last_service_rpm": last}])
    db.commit()
    return c


def test_advance_adds_shift_delta(db, machine):
    delta = scheduler.advance(machine, 100, 130)
    assert delta == 30
    assert machine.rpm == 1030


def test_advance_ignores_reversed_and_missing_readings(db, machine):
    assert scheduler.advance(machine, 200, 150) == 0
    assert scheduler.advance(machine, None, 150) == 0
    assert scheduler.advance(machine, 100, None) == 0
    assert machine.rpm == 1000


def test_advance_by_never_decreases(db, machine):
    scheduler.advance_by(machine, -40)
    assert machine.rpm == 1000


def test_record_service_moves_matching_rule(db, machine):
    history = scheduler.record_service(db, machine, "Engine Oil", at_rpm=1000)
    rule = machine.maintenance_rules[0]
    assert rule.last_service_rpm == 1000
    assert rule.cycle_length == 250
    assert history.rule_matched is True
    assert history.machine_id == machine.id
    assert history.service_type == "machine"


def test_record_service_unknown_name_leaves_schedule(db, machine):
    history = scheduler.record_service(db, machine, "Gearbox", at_rpm=1000)
    assert [r.service_name for r in machine.maintenance_rules] == ["Engine Oil"]
    assert machine.maintenance_rules[0].last_service_rpm == 900
    assert history.rule_matched is False
    assert db.query(ServiceHistory).count() == 1


def test_warning_alert_inside_window(db):
    c = _compressor_with_rule(db, rpm=980)
    alerts = scheduler.compute_alerts(c)
    assert len(alerts) == 1
    assert alerts[0]["next_due_rpm"] == 1000
    assert alerts[0]["remaining"] == 20
    assert alerts[0]["severity"] == "warning"


def test_critical_alert_when_overdue(db):
    c = _compressor_with_rule(db, rpm=1010)
    alerts = scheduler.compute_alerts(c)
    assert alerts[0]["remaining"] == -10
    assert alerts[0]["severity"] == "critical"


def test_due_exactly_is_critical(db):
    c = _compressor_with_rule(db, rpm=1000)
    assert scheduler.compute_alerts(c)[0]["severity"] == "critical"


def test_no_alert_outside_window(db):
    c = _compressor_with_rule(db, rpm=900)
    assert scheduler.compute_alerts(c) == []


def test_malformed_rule_is_skipped(db, machine):
    machine.maintenance_rules[0].cycle_length = None
    db.flush()
    machine.rpm = 5000
    assert scheduler.compute_alerts(machine) == []


def test_fleet_alerts_sorted_and_skip_inactive(db):
    _compressor_with_rule(db, rpm=980)
    _compressor_with_rule(db, rpm=1010)
    _compressor_with_rule(db, rpm=2000, status="inactive")
    alerts = scheduler.compute_maintenance_alerts(db)
    assert [a["remaining"] for a in alerts] == [-10, 20]


def test_replace_schedule_updates_in_place(db, machine):
    rule_id = machine.maintenance_rules[0].id
    scheduler.replace_schedule(db, machine, [
        {"service_name": "Hydraulic Filter", "cycle_length": 500},
        {"service_name": "Engine Oil", "cycle_length": 300, "last_service_rpm": 950},
    ])
    db.commit()
    db.refresh(machine)
    names = [r.service_name for r in machine.maintenance_rules]
    assert names == ["Hydraulic Filter", "Engine Oil"]
    engine_oil = machine.maintenance_rules[1]
    assert engine_oil.id == rule_id
    assert engine_oil.cycle_length == 300


@pytest.mark.parametrize("rules", [
    [{"service_name": "A", "cycle_length": 0}],
    [{"service_name": "", "cycle_length": 100}],
    [{"service_name": "A", "cycle_length": 100}, {"service_name": "A", "cycle_length": 200}],
])
def test_replace_schedule_rejects_bad_rules(db, machine, rules):
    with pytest.raises(ValidationFailed):
        scheduler.replace_schedule(db, machine, rules)


def test_get_asset_missing_raises(db):
    with pytest.raises(NotFound):
        scheduler.get_asset(db, "machine", uuid.uuid4())


def test_get_asset_skips_tombstoned(db, machine):
    from datetime import datetime
    machine.deleted_at = datetime.utcnow()
    db.commit()
    with pytest.raises(NotFound):
        scheduler.get_asset(db, "machine", machine.id)


def _fitted_bit(db, compressor, interval, run_rpm):
    item = InventoryItem(name="Button bit 89mm", category="drilling_tool", balance=1, inward=1, outward=0, service_interval_rpm=interval)
    db.add(item)
    db.flush()
    record = fitting.fit(db, item.id, compressor, "drilling_tool")
    fitting.track_usage(db, compressor, run_rpm)
    db.commit()
    return record


def test_fitted_item_warning_alert(db, compressor):
    record = _fitted_bit(db, compressor, interval=300, run_rpm=260)
    alerts = scheduler.compute_item_alerts(db)
    assert len(alerts) == 1
    alert = alerts[0]
    assert alert["alert_type"] == "fitted_item"
    assert alert["fitting_id"] == record.id
    assert alert["asset_id"] == compressor.id
    assert alert["service_name"] == "Button bit 89mm"
    assert alert["current_rpm"] == 260
    assert alert["remaining"] == 40
    assert alert["severity"] == "warning"


def test_fitted_item_overdue_is_critical(db, compressor):
    _fitted_bit(db, compressor, interval=300, run_rpm=320)
    assert scheduler.compute_item_alerts(db)[0]["severity"] == "critical"


def test_removed_or_unscheduled_items_raise_no_alert(db, compressor, drill_bit):
    record = _fitted_bit(db, compressor, interval=300, run_rpm=320)
    fitting.fit(db, drill_bit.id, compressor, "drilling_tool")
    fitting.track_usage(db, compressor, 1000)
    fitting.remove(db, record.id)
    db.commit()
    assert scheduler.compute_item_alerts(db) == []


def test_fleet_alerts_include_fitted_items(db, compressor):
    _fitted_bit(db, compressor, interval=300, run_rpm=310)
    _compressor_with_rule(db, rpm=980)
    alerts = scheduler.compute_maintenance_alerts(db)
    assert [(a["alert_type"], a["remaining"]) for a in alerts] == [("fitted_item", -10), ("schedule", 20)]


def test_fitted_item_on_inactive_asset_skipped(db, compressor):
    _fitted_bit(db, compressor, interval=300, run_rpm=320)
    compressor.status = "inactive"
    db.commit()
    assert scheduler.compute_item_alerts(db) == []


def test_service_header_reuses_recorded_service(db, machine):
    entry_id = uuid.uuid4()
    recorded = scheduler.record_service(db, machine, "Engine Oil", daily_entry_id=entry_id)
    assert scheduler.service_header(db, machine, entry_id).id == recorded.id


def test_service_header_opens_daily_maintenance(db, machine):
    entry_id = uuid.uuid4()
    header = scheduler.service_header(db, machine, entry_id)
    assert header.service_name == "Daily Maintenance"
    assert header.rule_matched is False
    assert header.rpm_at_service == 1000
    assert machine.maintenance_rules[0].last_service_rpm == 900
    assert scheduler.service_header(db, machine, entry_id).id == header.id


def test_concurrent_counter_advance_loses_no_update(file_session_factory):
    setup = file_session_factory()
    m = Machine(machine_number="DRL-09", rpm=1000)
    setup.add(m)
    setup.commit()
    machine_id = m.id
    setup.close()

    first = file_session_factory()
    second = file_session_factory()
    first_machine = scheduler.get_asset(first, "machine", machine_id, lock=True)
    second_machine = scheduler.get_asset(second, "machine", machine_id, lock=True)

    scheduler.advance(first_machine, 100, 150)
    first.commit()

    scheduler.advance(second_machine, 100, 130)
    with pytest.raises(StaleDataError):
        second.commit()
    second.rollback()
    first.close()
    second.close()

    check = file_session_factory()
    stored = check.get(Machine, machine_id)
    assert stored.rpm == 1050
    assert stored.version == 2
    check.close()
