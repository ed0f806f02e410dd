from __future__ import annotations

from reporthub.service import service


def _coll(name: str):
    return service.registry.get(name).collection


def _seed_report(**fields):
    doc = {
        "report_id": "R-100",
        "user_id": "u1",
        "title": "Villa",
        "pg_count": 2,
        "report_status": "INCOMPLETE",
        "asset_data": [
            {"id": "m1", "pg_no": "1", "submitState": 1},
            {"id": "m2", "pg_no": "2", "submitState": 0},
        ],
    }
    doc.update(fields)
    return _coll("reports").insert_one(doc)


def test_healthz_reports_registry(client):
    resp = client.get("/healthz", headers={"x-trace-id": "trace_health"})
    assert resp.status_code == 200
    body = resp.json()
    assert body["success"] is True
    assert body["data"]["registry_version"] == "2"
    assert body["data"]["providers"] == 6
    assert body["meta"]["trace_id"] == "trace_health"
    assert resp.headers["x-trace-id"] == "trace_health"


def test_get_by_report_id_returns_provider_and_document(client):
    doc = _seed_report()
    resp = client.get("/api/v1/reports/by-report-id/R-100")
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["provider"] == "reports"
    assert data["document"]["_id"] == doc["_id"]


def test_unknown_report_returns_does_not_exist(client):
    resp = client.get("/api/v1/reports/by-report-id/R-404")
    assert resp.status_code == 404
    body = resp.json()
    assert body["success"] is False
    assert body["error"]["code"] == "REPORT_NOT_FOUND"
    assert body["error"]["message"] == "Report does not exist"


def test_get_by_internal_id_validates_identifier(client):
    doc = _seed_report()
    assert client.get(f"/api/v1/reports/{doc['_id'].upper()}").status_code == 200
    resp = client.get("/api/v1/reports/not-an-object-id")
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REPORT_ID_INVALID"


def test_lookup_requires_caller_and_scopes_by_owner(client):
    _seed_report()
    assert client.get("/api/v1/reports/lookup", params={"report_id": "R-100"}).status_code == 401
    mine = client.get("/api/v1/reports/lookup", params={"report_id": "R-100"}, headers={"x-user-id": "u1"})
    assert mine.status_code == 200
    other = client.get("/api/v1/reports/lookup", params={"report_id": "R-100"}, headers={"x-user-id": "u2"})
    assert other.status_code == 404


def test_existence_check_uses_office_scope(client):
    _seed_report(company_office_id="office-1")
    resp = client.get("/api/v1/reports/by-report-id/R-100/exists", headers={"x-company-office-id": "office-1"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["exists"] is True
    assert data["asset_count"] == 2
    assert data["title"] == "Villa"
    other_office = client.get("/api/v1/reports/by-report-id/R-100/exists", params={"office_id": "office-2"})
    assert other_office.json()["data"] == {"exists": False}
    assert other_office.json()["message"] == "Report does not exist"


def test_missing_pages_endpoint(client):
    _seed_report(pg_count=3)
    data = client.get("/api/v1/reports/by-report-id/R-100/missing-pages").json()["data"]
    assert data["missing_pages"] == [3]
    assert data["has_missing"] is True


def test_recompute_status_respects_guard(client):
    doc = _seed_report()
    resp = client.post(f"/api/v1/reports/{doc['_id']}/recompute-status")
    assert resp.json()["data"] == {"status": "INCOMPLETE", "applied": True}

    sent = client.patch(f"/api/v1/reports/{doc['_id']}/status", json={"status": "SENT"})
    assert sent.json()["data"] == {"status": "SENT"}

    client.post(f"/api/v1/reports/{doc['_id']}/assets/mark-complete")
    guarded = client.post(f"/api/v1/reports/{doc['_id']}/recompute-status")
    assert guarded.json()["data"] == {"status": "SENT", "applied": False}


def test_direct_status_rejects_unknown_value(client):
    doc = _seed_report()
    resp = client.patch(f"/api/v1/reports/{doc['_id']}/status", json={"status": "ARCHIVED"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "REPORT_STATUS_INVALID"
    assert client.patch(f"/api/v1/reports/{doc['_id']}/status", json={}).status_code == 400


def test_asset_edit_endpoints(client):
    doc = _seed_report()
    resp = client.patch(f"/api/v1/reports/{doc['_id']}/assets/m2/submit-state", json={"submit_state": 1})
    assert resp.status_code == 200
    assert resp.json()["data"]["index"] == 1
    recomputed = client.post(f"/api/v1/reports/{doc['_id']}/recompute-status").json()["data"]
    assert recomputed["status"] == "COMPLETE"

    missing = client.patch(f"/api/v1/reports/{doc['_id']}/assets/zzz/submit-state", json={"submit_state": 1})
    assert missing.status_code == 404
    assert missing.json()["error"]["code"] == "ASSET_NOT_FOUND"

    ids = client.put(f"/api/v1/reports/{doc['_id']}/assets/ids", json={"ids_with_pages": [["901", 1]]})
    assert ids.json()["data"]["assigned"] == 1
    stored = _coll("reports").find({"_id": doc["_id"]})
    assert [a["id"] for a in stored["asset_data"]] == ["901", "m2"]


def test_write_on_unknown_internal_id_is_not_found(client):
    resp = client.post("/api/v1/reports/665f1c2a9b1e8a0012345678/recompute-status")
    assert resp.status_code == 404
    assert resp.json()["error"]["code"] == "REPORT_NOT_FOUND"


def test_common_asset_fields_endpoint(client):
    doc = _seed_report(company_office_id="office-1")
    resp = client.patch(
        "/api/v1/reports/by-report-id/R-100/assets/common-fields",
        json={"region": "Eastern", "owner_name": "Saad"},
        headers={"x-office-id": "office-1"},
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["fields"] == ["owner_name", "region"]
    stored = _coll("reports").find({"_id": doc["_id"]})
    assert [a["owner_name"] for a in stored["asset_data"]] == ["Saad", "Saad"]
    missing = client.patch("/api/v1/reports/by-report-id/R-404/assets/common-fields", json={"city": "Abha"})
    assert missing.status_code == 404
