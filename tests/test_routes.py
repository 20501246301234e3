import uuid

from rigledger.auth.security import create_access_token

SITE = str(uuid.uuid4())


def _entry_body(machine, operator, **overrides):
    body = {
        "date": "2024-05-01",
        "shift": 1,
        "site_id": SITE,
        "machine_id": str(machine.id),
        "machine_opening_rpm": 100,
        "machine_closing_rpm": 150,
        "employees": [{"employee_id": str(operator.id), "role": "operator"}],
    }
    body.update(overrides)
    return body


def test_requires_token(client):
    assert client.get("/fleet/alerts").status_code == 401


def test_permission_checked(client):
    token = create_access_token("viewer", permissions=["fleet:read"])
    headers = {"Authorization": f"Bearer {token}"}
    assert client.get("/fleet/alerts", headers=headers).status_code == 200
    assert client.get("/daily-entries", headers=headers).status_code == 403


def test_invalid_token(client):
    assert client.get("/fleet/alerts", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_reference_code_preview(client, admin_headers):
    resp = client.get("/daily-entries/reference-code", headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json() == {"ref_no": "VA-001"}


def test_create_entry_and_read_back(client, admin_headers, machine, operator):
    resp = client.post("/daily-entries", json=_entry_body(machine, operator), headers=admin_headers)
    assert resp.status_code == 201, resp.text
    body = resp.json()
    assert body["ref_no"] == "VA-001"
    assert body["created_by"] == "supervisor"
    assert body["roster"] == [{"employee_id": str(operator.id), "role": "operator", "shift": 1}]

    detail = client.get(f"/daily-entries/{body['id']}", headers=admin_headers)
    assert detail.status_code == 200

    machine_resp = client.get(f"/fleet/machines/{machine.id}", headers=admin_headers)
    assert machine_resp.json()["rpm"] == 1050

    audit = client.get(f"/daily-entries/{body['id']}/audit", headers=admin_headers)
    assert [a["action"] for a in audit.json()] == ["CREATE"]


def test_missing_operator_returns_422_and_no_row(client, admin_headers, machine, operator):
    body = _entry_body(machine, operator, employees=[{"employee_id": str(operator.id), "role": "helper"}])
    resp = client.post("/daily-entries", json=body, headers=admin_headers)
    assert resp.status_code == 422
    assert resp.json()["code"] == "missing_operator"
    assert client.get("/daily-entries", headers=admin_headers).json()["total"] == 0


def test_malformed_date_rejected(client, admin_headers, machine, operator):
    resp = client.post("/daily-entries", json=_entry_body(machine, operator, date="2024-02-30"), headers=admin_headers)
    assert resp.status_code == 422


def test_insufficient_stock_rolls_back_entry(client, admin_headers, machine, operator, oil_filter):
    body = _entry_body(machine, operator, machine_items=[{"action": "fit", "item_id": str(oil_filter.id), "quantity": 50}])
    resp = client.post("/daily-entries", json=body, headers=admin_headers)
    assert resp.status_code == 409
    assert resp.json()["code"] == "insufficient_balance"
    assert client.get("/daily-entries", headers=admin_headers).json()["total"] == 0
    assert client.get(f"/fleet/machines/{machine.id}", headers=admin_headers).json()["rpm"] == 1000
    assert client.get(f"/inventory/items/{oil_filter.id}", headers=admin_headers).json()["balance"] == 5


def test_update_and_delete_entry(client, admin_headers, machine, operator):
    created = client.post("/daily-entries", json=_entry_body(machine, operator), headers=admin_headers).json()
    resp = client.put(f"/daily-entries/{created['id']}", json={"machine_closing_rpm": 180}, headers=admin_headers)
    assert resp.status_code == 200
    assert resp.json()["machine_closing_rpm"] == 180
    assert client.get(f"/fleet/machines/{machine.id}", headers=admin_headers).json()["rpm"] == 1080

    assert client.delete(f"/daily-entries/{created['id']}", headers=admin_headers).status_code == 200
    assert client.get(f"/daily-entries/{created['id']}", headers=admin_headers).status_code == 404


def test_last_readings(client, admin_headers, machine, operator):
    client.post("/daily-entries", json=_entry_body(machine, operator), headers=admin_headers)
    resp = client.get("/daily-entries/last-readings", params={"machine_id": str(machine.id)}, headers=admin_headers)
    assert resp.json()["machine_closing_rpm"] == 150


def test_fit_and_remove_via_api(client, admin_headers, compressor, drill_bit):
    fit = client.post("/inventory/fittings", json={
        "item_id": str(drill_bit.id),
        "service_type": "drilling_tool",
        "compressor_id": str(compressor.id),
        "fitted_meter": 10,
    }, headers=admin_headers)
    assert fit.status_code == 201, fit.text
    fitting_id = fit.json()["id"]
    assert fit.json()["fitted_rpm"] == 500

    removed = client.post(f"/inventory/fittings/{fitting_id}/remove", json={"removed_rpm": 560, "removed_meter": 70}, headers=admin_headers)
    assert removed.json()["total_rpm_run"] == 60
    assert removed.json()["total_meter_run"] == 60

    again = client.post(f"/inventory/fittings/{fitting_id}/remove", json={"removed_rpm": 600}, headers=admin_headers)
    assert again.status_code == 409
    assert again.json()["code"] == "not_fitted"

    listed = client.get("/inventory/fittings", params={"status": "removed"}, headers=admin_headers).json()
    assert listed["total"] == 1


def test_fit_requires_single_target(client, admin_headers, drill_bit):
    resp = client.post("/inventory/fittings", json={"item_id": str(drill_bit.id), "service_type": "machine"}, headers=admin_headers)
    assert resp.status_code == 422


def test_item_create_and_receive(client, admin_headers):
    item = client.post("/inventory/items", json={"name": "Drill rod 3m", "category": "drilling_tool", "opening_balance": 4}, headers=admin_headers).json()
    resp = client.post(f"/inventory/items/{item['id']}/receive", json={"quantity": 6}, headers=admin_headers)
    assert resp.json()["balance"] == 10
    assert resp.json()["inward"] == 10


def test_fleet_alerts_endpoint(client, admin_headers):
    comp = client.post("/fleet/compressors", json={
        "name": "CMP-9",
        "rpm": 980,
        "maintenance_rules": [{"service_name": "Compressor Service", "cycle_length": 250, "last_service_rpm": 750}],
    }, headers=admin_headers)
    assert comp.status_code == 201, comp.text
    alerts = client.get("/fleet/alerts", headers=admin_headers).json()
    assert alerts == [{
        "alert_type": "schedule",
        "asset_type": "compressor",
        "asset_id": comp.json()["id"],
        "asset_name": "CMP-9",
        "fitting_id": None,
        "service_name": "Compressor Service",
        "current_rpm": 980.0,
        "cycle_length": 250.0,
        "last_service_rpm": 750.0,
        "next_due_rpm": 1000.0,
        "remaining": 20.0,
        "severity": "warning",
    }]


def test_fitted_item_alert_after_entry(client, admin_headers, machine, compressor, operator):
    item = client.post("/inventory/items", json={
        "name": "Button bit 89mm", "category": "drilling_tool", "opening_balance": 1, "service_interval_rpm": 30,
    }, headers=admin_headers).json()
    fit = client.post("/inventory/fittings", json={
        "item_id": item["id"], "service_type": "drilling_tool", "compressor_id": str(compressor.id),
    }, headers=admin_headers).json()

    body = _entry_body(machine, operator, compressor_id=str(compressor.id), compressor_opening_rpm=0, compressor_closing_rpm=40)
    assert client.post("/daily-entries", json=body, headers=admin_headers).status_code == 201

    alerts = client.get("/fleet/alerts", params={"alert_type": "fitted_item"}, headers=admin_headers).json()
    assert len(alerts) == 1
    assert alerts[0]["fitting_id"] == fit["id"]
    assert alerts[0]["asset_name"] == "CMP-01"
    assert alerts[0]["remaining"] == -10
    assert alerts[0]["severity"] == "critical"

    listed = client.get("/inventory/fittings", params={"status": "fitted"}, headers=admin_headers).json()
    assert listed["items"][0]["run_rpm"] == 40


def test_schedule_replace_and_manual_service(client, admin_headers, machine):
    resp = client.put(f"/fleet/machine/{machine.id}/schedule", json={"rules": [
        {"service_name": "Engine Oil", "cycle_length": 250, "last_service_rpm": 800},
    ]}, headers=admin_headers)
    assert resp.json()["rules"][0]["remaining"] == 50

    service = client.post(f"/fleet/machine/{machine.id}/services", json={"service_name": "Engine Oil"}, headers=admin_headers)
    assert service.status_code == 201
    assert service.json()["rpm_at_service"] == 1000
    history = client.get(f"/fleet/machine/{machine.id}/service-history", headers=admin_headers).json()
    assert len(history) == 1


def test_unknown_machine_returns_404(client, admin_headers):
    resp = client.get(f"/fleet/machines/{uuid.uuid4()}", headers=admin_headers)
    assert resp.status_code == 404
    assert resp.json()["code"] == "not_found"


def test_attendance_endpoints(client, admin_headers, operator, helper):
    single = client.post("/attendance/upsert", json={
        "employee_id": str(operator.id), "date": "2024-05-01", "salary": 200,
    }, headers=admin_headers)
    assert single.status_code == 200, single.text

    batch = client.post("/attendance/batch", json={"records": [
        {"employee_id": str(operator.id), "date": "2024-05-01", "salary": 150},
        {"employee_id": str(helper.id), "date": "2024-05-01", "presence": "absent"},
    ]}, headers=admin_headers)
    assert batch.json() == {"total": 2, "created": 1, "updated": 1, "updated_workers": 0}

    rows = client.get("/attendance", params={"date": "2024-05-01"}, headers=admin_headers).json()
    assert len(rows) == 2

    workers = {w["id"]: w for w in client.get("/attendance/workers", headers=admin_headers).json()}
    assert float(workers[str(operator.id)]["advanced_amount"]) == 300


def test_empty_batch_rejected(client, admin_headers):
    resp = client.post("/attendance/batch", json={"records": []}, headers=admin_headers)
    assert resp.status_code == 422
