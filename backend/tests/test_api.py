"""End-to-end tests through the HTTP API."""

import pytest
from datetime import datetime, timedelta, timezone

API = "/api/v1"


def sheet_rows():
    return [
        {"machine_code": "A-01", "coil_code": "C1", "sku_code": "SKU-1", "sku_name": "Chocolate Bar",
         "location_name": "Central Station", "par": 10, "current": 4},
        {"machine_code": "A-01", "coil_code": "C2", "sku_code": "SKU-2", "sku_name": "Crisps",
         "location_name": "Central Station", "par": 8, "total": 6},
        {"machine_code": "A-01", "coil_code": "C3", "sku_code": "SKU-3", "par": 5},
        {"machine_code": "A-01", "coil_code": "", "sku_code": "SKU-4"},
    ]


@pytest.fixture
def run_id(client, company_headers):
    response = client.post(f"{API}/runs", json={"picker_id": "p-7"}, headers=company_headers)
    assert response.status_code == 201
    return response.json()["id"]


@pytest.fixture
def imported(client, company_headers, run_id):
    response = client.post(
        f"{API}/run-imports",
        json={"rows": sheet_rows(), "run_id": run_id, "source": "monday.xlsx"},
        headers=company_headers,
    )
    assert response.status_code == 201
    return response.json()


def get_run(client, company_headers, run_id):
    response = client.get(f"{API}/runs/{run_id}", headers=company_headers)
    assert response.status_code == 200
    return response.json()


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/health"

    def test_metrics(self, client, company_headers, run_id):
        response = client.get("/metrics")
        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "pick_entries_created_total" in response.text


class TestCompanyScope:
    def test_missing_header(self, client):
        assert client.get(f"{API}/runs").status_code == 422

    def test_unknown_company(self, client):
        response = client.get(f"{API}/runs", headers={"X-Company-ID": "999"})
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"

    def test_other_company_cannot_see_run(self, client, other_company, run_id):
        response = client.get(f"{API}/runs/{run_id}", headers={"X-Company-ID": str(other_company.id)})
        assert response.status_code == 404


class TestImportAndPicking:
    def test_import_reports_failures_and_generates_picks(self, imported):
        assert len(imported["resolved"]) == 3
        assert imported["failures"] == [
            {
                "row_index": 3,
                "error": "malformed_import_row",
                "detail": "Import row 3 is missing coil_code",
                "missing": ["coil_code"],
                "value": None,
            }
        ]
        assert len(imported["picks"]["created"]) == 3

    def test_negative_override_rejects_only_its_row(self, client, company_headers):
        rows = sheet_rows()[:2]
        rows[1]["manual_override"] = -1
        response = client.post(f"{API}/run-imports", json={"rows": rows}, headers=company_headers)

        assert response.status_code == 201
        body = response.json()
        assert [e["row_index"] for e in body["resolved"]] == [0]
        assert len(body["failures"]) == 1
        assert body["failures"][0]["row_index"] == 1
        assert body["failures"][0]["error"] == "invalid_override"
        assert body["failures"][0]["value"] == -1

    def test_run_snapshot_after_import(self, client, company_headers, run_id, imported):
        run = get_run(client, company_headers, run_id)

        assert run["status"] == "PICKING"
        assert run["picking_started_at"] is not None
        entries = {e["coil_code"]: e for e in run["pick_entries"]}
        # default pointer is total; C1 and C3 fall back to par
        assert entries["C1"]["count"] == 10
        assert entries["C2"]["count"] == 6
        assert entries["C3"]["count"] == 5
        assert entries["C1"]["sku_code"] == "SKU-1"
        assert entries["C1"]["machine_code"] == "A-01"
        assert entries["C1"]["status"] == "PENDING"

    def test_count_pointer_applies_to_new_runs_only(self, client, company_headers, run_id, imported):
        sku_id = imported["resolved"][0]["sku_id"]
        response = client.patch(
            f"{API}/skus/{sku_id}/count-pointer",
            json={"count_needed_pointer": "CURRENT"},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert response.json()["count_needed_pointer"] == "current"

        old_run = get_run(client, company_headers, run_id)
        assert {e["coil_code"]: e["count"] for e in old_run["pick_entries"]}["C1"] == 10

        new_run_id = client.post(f"{API}/runs", json={}, headers=company_headers).json()["id"]
        response = client.post(
            f"{API}/runs/{new_run_id}/pick-entries/generate",
            json={"entities": [imported["resolved"][0]]},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert response.json()["run"]["pick_entries"][0]["count"] == 4

    def test_invalid_count_pointer(self, client, company_headers, imported):
        sku_id = imported["resolved"][0]["sku_id"]
        response = client.patch(
            f"{API}/skus/{sku_id}/count-pointer",
            json={"count_needed_pointer": "spoil"},
            headers=company_headers,
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_pointer"

    def test_full_picking_and_delivery_flow(self, client, company_headers, run_id, imported):
        pick_ids = imported["picks"]["created"]

        response = client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": pick_ids[:2], "status": "PICKED"},
            headers=company_headers,
        )
        assert response.json()["status"] == "PICKING"

        response = client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": pick_ids[2:], "status": "SKIPPED"},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert response.json()["status"] == "READY"
        assert response.json()["picking_ended_at"] is not None

        tomorrow = (datetime.now(timezone.utc) + timedelta(days=1)).isoformat()
        response = client.post(
            f"{API}/runs/{run_id}/schedule", json={"scheduled_for": tomorrow}, headers=company_headers
        )
        assert response.json()["status"] == "SCHEDULED"

        response = client.post(f"{API}/runs/{run_id}/start", headers=company_headers)
        assert response.json()["status"] == "IN_PROGRESS"

        response = client.post(f"{API}/runs/{run_id}/complete", headers=company_headers)
        assert response.json()["status"] == "COMPLETED"
        assert response.json()["completed_at"] is not None

        response = client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": pick_ids[:1], "status": "PENDING"},
            headers=company_headers,
        )
        assert response.status_code == 409
        assert response.json()["error"] == "run_locked"

    def test_list_runs_by_status(self, client, company_headers, run_id, imported):
        response = client.get(f"{API}/runs", params={"status": "PICKING"}, headers=company_headers)
        assert [r["id"] for r in response.json()] == [run_id]
        response = client.get(f"{API}/runs", params={"status": "READY"}, headers=company_headers)
        assert response.json() == []


class TestPickEntryEdits:
    def test_override_and_version_conflict(self, client, company_headers, run_id, imported):
        pick_id = imported["picks"]["created"][0]
        url = f"{API}/runs/{run_id}/pick-entries/{pick_id}/override"

        response = client.patch(url, json={"override_count": 7, "expected_version": 1}, headers=company_headers)
        assert response.status_code == 200
        assert response.json()["count"] == 7
        assert response.json()["version"] == 2

        response = client.patch(url, json={"override_count": 3, "expected_version": 1}, headers=company_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "concurrent_modification"

        response = client.patch(url, json={"override_count": None}, headers=company_headers)
        assert response.json()["count"] == 10
        assert response.json()["override_count"] is None

    def test_expiry_overrides(self, client, company_headers, run_id, imported):
        pick_id = imported["picks"]["created"][0]
        url = f"{API}/runs/{run_id}/pick-entries/{pick_id}/expiry-overrides"

        response = client.put(
            url,
            json={"overrides": [{"expiry_date": "2024-08-01", "quantity": 4},
                                {"expiry_date": "2024-07-01", "quantity": 6}]},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert [o["expiry_date"] for o in response.json()["expiry_overrides"]] == ["2024-07-01", "2024-08-01"]

        response = client.put(
            url, json={"overrides": [{"expiry_date": "2024-07-01", "quantity": 11}]}, headers=company_headers
        )
        assert response.status_code == 422
        assert response.json()["error"] == "invalid_override"

    @pytest.mark.parametrize("expiry_date", ["2025-02-30", "2024-13-01", "2023-02-29"])
    def test_impossible_expiry_date_rejected(
        self, client, company_headers, run_id, imported, expiry_date
    ):
        pick_id = imported["picks"]["created"][0]
        response = client.put(
            f"{API}/runs/{run_id}/pick-entries/{pick_id}/expiry-overrides",
            json={"overrides": [{"expiry_date": expiry_date, "quantity": 1}]},
            headers=company_headers,
        )
        assert response.status_code == 422

    def test_leap_day_expiry_date_accepted(self, client, company_headers, run_id, imported):
        pick_id = imported["picks"]["created"][0]
        response = client.put(
            f"{API}/runs/{run_id}/pick-entries/{pick_id}/expiry-overrides",
            json={"overrides": [{"expiry_date": "2024-02-29", "quantity": 1}]},
            headers=company_headers,
        )
        assert response.status_code == 200

    def test_substitute(self, client, company_headers, run_id, imported):
        pick_id = imported["picks"]["created"][0]
        replacement_sku = imported["resolved"][2]["sku_id"]

        response = client.post(
            f"{API}/runs/{run_id}/pick-entries/{pick_id}/substitute",
            json={"sku_id": replacement_sku},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert response.json()["sku_code"] == "SKU-3"
        assert response.json()["coil_code"] == "C1"

    def test_delete_pick_entry(self, client, company_headers, run_id, imported):
        pick_ids = imported["picks"]["created"]
        client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": pick_ids[:2], "status": "PICKED"},
            headers=company_headers,
        )

        url = f"{API}/runs/{run_id}/pick-entries/{pick_ids[2]}"
        assert client.delete(url, headers=company_headers).status_code == 204

        run = get_run(client, company_headers, run_id)
        assert run["status"] == "READY"
        assert sorted(e["id"] for e in run["pick_entries"]) == sorted(pick_ids[:2])
        assert client.delete(url, headers=company_headers).status_code == 404

    def test_missing_pick_entry(self, client, company_headers, run_id):
        response = client.patch(
            f"{API}/runs/{run_id}/pick-entries/999/override",
            json={"override_count": 1},
            headers=company_headers,
        )
        assert response.status_code == 404

    def test_illegal_transition(self, client, company_headers, run_id, imported):
        response = client.post(f"{API}/runs/{run_id}/start", headers=company_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "invalid_transition"


class TestChocolateBoxes:
    def test_add_list_delete(self, client, company_headers, run_id, imported):
        machine_id = imported["resolved"][0]["machine_id"]
        url = f"{API}/runs/{run_id}/chocolate-boxes"

        response = client.post(url, json={"number": 1, "machine_id": machine_id}, headers=company_headers)
        assert response.status_code == 201
        box_id = response.json()["id"]

        response = client.post(url, json={"number": 1, "machine_id": machine_id}, headers=company_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_chocolate_box"

        assert [b["number"] for b in client.get(url, headers=company_headers).json()] == [1]

        response = client.delete(f"{url}/{box_id}", headers=company_headers)
        assert response.status_code == 204
        assert client.get(url, headers=company_headers).json() == []

    def test_update(self, client, company_headers, run_id, imported):
        machine_id = imported["resolved"][0]["machine_id"]
        url = f"{API}/runs/{run_id}/chocolate-boxes"
        client.post(url, json={"number": 1, "machine_id": machine_id}, headers=company_headers)
        box_id = client.post(
            url, json={"number": 2, "machine_id": machine_id}, headers=company_headers
        ).json()["id"]

        response = client.patch(f"{url}/{box_id}", json={"number": 5}, headers=company_headers)
        assert response.status_code == 200
        assert response.json()["number"] == 5
        assert response.json()["machine_id"] == machine_id

        response = client.patch(f"{url}/{box_id}", json={"number": 1}, headers=company_headers)
        assert response.status_code == 409
        assert response.json()["error"] == "duplicate_chocolate_box"

        response = client.patch(f"{url}/{box_id}", json={"machine_id": 999}, headers=company_headers)
        assert response.status_code == 404


class TestAnalyticsApi:
    def test_breakdown_of_empty_company(self, client, company_headers):
        response = client.post(
            f"{API}/analytics/pick-entries/breakdown",
            json={"aggregation": "week", "time_zone": "UTC"},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert len(response.json()["points"]) == 8
        assert response.json()["percentage_change"]["trend"] == "neutral"

    def test_invalid_time_zone(self, client, company_headers):
        response = client.get(
            f"{API}/analytics/momentum", params={"time_zone": "Mars/Base"}, headers=company_headers
        )
        assert response.status_code == 400
        assert response.json()["error"] == "invalid_time_zone"

    def test_picked_entries_show_up(self, client, company_headers, run_id, imported):
        client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": imported["picks"]["created"], "status": "PICKED"},
            headers=company_headers,
        )

        response = client.get(f"{API}/analytics/momentum", params={"time_zone": "UTC"}, headers=company_headers)
        assert response.status_code == 200
        assert response.json()["current_week"]["total"] == 21

        response = client.get(
            f"{API}/analytics/period-comparison",
            params={"aggregation": "month", "time_zone": "UTC"},
            headers=company_headers,
        )
        assert response.status_code == 200
        assert response.json()["current"]["total"] == 21

    def test_breakdown_lists_available_filters(self, client, company_headers, run_id, imported):
        client.post(
            f"{API}/runs/{run_id}/pick-entries/status",
            json={"pick_ids": imported["picks"]["created"], "status": "PICKED"},
            headers=company_headers,
        )
        url = f"{API}/analytics/pick-entries/breakdown"

        response = client.post(url, json={"aggregation": "week", "time_zone": "UTC"}, headers=company_headers)
        assert response.status_code == 200
        available = response.json()["available_filters"]
        assert [o["label"] for o in available["sku"]] == ["Chocolate Bar", "Crisps", "SKU-3"]
        assert [o["label"] for o in available["machine"]] == ["A-01"]
        assert [o["label"] for o in available["location"]] == ["Central Station"]

        machine_id = imported["resolved"][0]["machine_id"]
        response = client.post(
            url,
            json={"aggregation": "week", "time_zone": "UTC", "focus": {"machine_id": machine_id}},
            headers=company_headers,
        )
        available = response.json()["available_filters"]
        assert len(available["sku"]) == 3
        assert available["machine"] == []
        assert available["location"] == []
