"""Tests for the health record, blood pressure and profile API endpoints."""
import json

import pytest
from fastapi.testclient import TestClient

from backend.src.api.dependencies import get_pod, reset_state
from backend.src.main import app

client = TestClient(app)

CSV_HEADER = "timestamp,systolic,diastolic,heart_rate,feeling,notes\n"

PROFILE = {
    "name": "A",
    "address": "1 Main St",
    "bestContactPhone": "0400 000 000",
    "alternativeContactNumber": "",
    "email": "a@example.com",
    "dateOfBirth": "1990-01-01",
    "gender": "Female",
    "identifyAsIndigenous": False,
}


@pytest.fixture(autouse=True)
def override_pod(locked_pod):
    reset_state()
    app.dependency_overrides[get_pod] = lambda: locked_pod
    yield locked_pod
    app.dependency_overrides.clear()
    reset_state()


@pytest.fixture
def key_header(security_key):
    return {"X-Security-Key": security_key}


def _upload_csv(content, headers, **params):
    return client.post(
        "/api/bp/import",
        files={"file": ("readings.csv", content.encode("utf-8"), "text/csv")},
        params=params,
        headers=headers,
    )


class TestBloodPressure:
    """Tests for /api/bp endpoints."""

    def test_import_and_export(self, key_header):
        content = CSV_HEADER + "2025-03-02 08:00:00,130,85,70,,\n2025-03-01 08:15:00,120,80,62,Good,walk\n"

        imported = _upload_csv(content, key_header)
        assert imported.status_code == 200
        assert imported.json()["saved"] == 2
        assert imported.json()["success"] is True

        exported = client.get("/api/bp/export", headers=key_header)
        assert exported.status_code == 200
        assert exported.headers["content-type"].startswith("text/csv")
        lines = exported.text.splitlines()
        assert lines[0] == "timestamp,systolic,diastolic,heart_rate,feeling,notes"
        assert lines[1].startswith("2025-03-01T08:15:00Z,")
        assert lines[2].startswith("2025-03-02T08:00:00Z,")

    def test_import_requires_key(self):
        response = _upload_csv(CSV_HEADER, {})
        assert response.status_code == 401

    def test_missing_columns(self, key_header):
        response = _upload_csv("timestamp,systolic\n2025-03-01 08:15:00,120\n", key_header)
        assert response.status_code == 400
        detail = response.json()["detail"]
        assert detail["code"] == "missing_columns"
        assert detail["columns"] == ["diastolic", "heart_rate"]

    def test_no_valid_rows(self, key_header):
        response = _upload_csv(CSV_HEADER + "2025-03-01 08:15:00,,,,,\n", key_header)
        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "import_failed"

    def test_duplicate_dates_need_overwrite(self, key_header):
        _upload_csv(CSV_HEADER + "2025-03-01 07:00:00,110,70,60,,\n", key_header)
        content = CSV_HEADER + "2025-03-01 08:15:00,120,80,62,,\n"

        conflict = _upload_csv(content, key_header)
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["files"] == ["blood_pressure_2025-03-01T07-00-00.json.enc.ttl"]

        replaced = _upload_csv(content, key_header, overwrite="true")
        assert replaced.status_code == 200
        assert replaced.json()["overridden_files"] == ["blood_pressure_2025-03-01T07-00-00.json.enc.ttl"]

    def test_partial_import_reports_rows(self, key_header):
        content = CSV_HEADER + "2025-03-01 08:15:00,120,80,62,,\nsoon,1,1,1,,\n2025-03-03 08:00:00,,80,60,,\n"
        response = _upload_csv(content, key_header)

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is False
        assert payload["failed_rows"] == [2]
        assert payload["skipped_rows"] == [3]

    def test_export_without_records(self, key_header):
        response = client.get("/api/bp/export", headers=key_header)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "no_records"


class TestHealthRecords:
    """Tests for /api/health/{data_type} endpoints."""

    def _upload(self, data_type, content, headers):
        return client.post(
            f"/api/health/{data_type}/import",
            files={"file": ("records.csv", content.encode("utf-8"), "text/csv")},
            headers=headers,
        )

    def test_lists_supported_types(self):
        response = client.get("/api/health/types")
        assert response.status_code == 200
        payload = response.json()
        assert payload["importable"] == ["blood_pressure", "diary", "medication", "vaccination"]
        assert payload["exportable"] == ["blood_pressure", "diary", "medication"]

    def test_medication_import_and_export(self, key_header):
        content = (
            "timestamp,name,dosage,frequency,start_date,notes\n"
            "2025-03-01 08:00:00,Metformin,500mg,Twice daily,2025-01-01,with food\n"
        )
        imported = self._upload("medication", content, key_header)
        assert imported.status_code == 200
        assert imported.json()["saved"] == 1

        exported = client.get("/api/health/medication/export", headers=key_header)
        assert exported.status_code == 200
        assert 'filename="medication.csv"' in exported.headers["content-disposition"]
        lines = exported.text.splitlines()
        assert lines[0] == "timestamp,name,dosage,frequency,start_date,notes"
        assert lines[1] == "2025-03-01T08:00:00Z,Metformin,500mg,Twice daily,2025-01-01,with food"

    def test_vaccination_missing_columns(self, key_header):
        response = self._upload("vaccination", "date,vaccine\n2025-03-01,Influenza\n", key_header)
        assert response.status_code == 400
        assert response.json()["detail"]["columns"] == ["provider"]

    def test_unknown_type(self, key_header):
        response = self._upload("glucose", "timestamp\n", key_header)
        assert response.status_code == 404
        detail = response.json()["detail"]
        assert detail["code"] == "unknown_data_type"
        assert "medication" in detail["supported"]

    def test_vaccination_has_no_export(self, key_header):
        response = client.get("/api/health/vaccination/export", headers=key_header)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "unknown_data_type"

    def test_import_requires_key(self):
        response = self._upload("diary", "date,title,description\n", {})
        assert response.status_code == 401


class TestProfile:
    """Tests for /api/profile endpoints."""

    def test_validate_valid_profile(self):
        response = client.post("/api/profile/validate", json={"data": PROFILE})

        assert response.status_code == 200
        payload = response.json()
        assert payload["valid"] is True
        assert payload["shape"] == "data"
        assert payload["preview"][0] == {"label": "Name", "value": "A"}

    def test_validate_reports_missing_fields(self):
        payload = client.post("/api/profile/validate", json={"name": "A"}).json()
        assert payload["valid"] is False
        assert payload["shape"] is None
        assert "address" in payload["missing"]
        assert payload["preview"] == []

    def test_import_export_and_fetch(self, key_header):
        created = client.post("/api/profile/import", json={"responses": PROFILE}, headers=key_header)
        assert created.status_code == 201
        assert created.json()["file_name"].startswith("profile_")

        exported = client.get("/api/profile/export", headers=key_header)
        assert exported.status_code == 200
        assert exported.text.endswith("\n")
        assert json.loads(exported.text)["data"]["email"] == "a@example.com"
        assert ".json" in exported.headers["content-disposition"]

        fetched = client.get("/api/profile", headers=key_header).json()
        assert fetched["name"] == "A"
        assert fetched["identifyAsIndigenous"] is False

    def test_import_invalid_profile(self, key_header):
        response = client.post("/api/profile/import", json=dict(PROFILE, email="bad"), headers=key_header)
        assert response.status_code == 422
        assert response.json()["detail"]["errors"] == ["Invalid email format"]

    def test_second_import_needs_overwrite(self, key_header):
        client.post("/api/profile/import", json=PROFILE, headers=key_header)

        conflict = client.post("/api/profile/import", json=dict(PROFILE, name="B"), headers=key_header)
        assert conflict.status_code == 409
        assert conflict.json()["detail"]["code"] == "duplicates"

        replaced = client.post(
            "/api/profile/import",
            json=dict(PROFILE, name="B"),
            params={"overwrite": "true"},
            headers=key_header,
        )
        assert replaced.status_code == 201
        assert client.get("/api/profile", headers=key_header).json()["name"] == "B"

    def test_export_without_profile(self, key_header):
        response = client.get("/api/profile/export", headers=key_header)
        assert response.status_code == 404
        assert response.json()["detail"]["code"] == "not_found"

    def test_fetch_requires_key(self):
        assert client.get("/api/profile").status_code == 401
