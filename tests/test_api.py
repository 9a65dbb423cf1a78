import os
from concurrent.futures import Future

import pytest
from fastapi.testclient import TestClient

os.environ["SKIP_DB_INIT"] = "1"
from app.main import app
from app.api.dependencies import get_import_service
from app.core.config import settings
from app.domain.imports.pipeline import AppointmentImportService

client = TestClient(app)

PREFIX = "/api/v1/admin/import"

CSV_CONTENT = (
    "client_name;client_email;client_phone;date;time;services;duration\n"
    "Ana Anić;ana@example.com;;15.01.2024;10:00;Šišanje;\n"
    "Lejla Hodžić;lejla@example.com;;;11:00;;\n"
    "Dino Dizdar;;061 999 888;17.01.2024;12:30;Feniranje, Masaža;40\n"
).encode("utf-8")


@pytest.fixture
def service(import_service):
    app.dependency_overrides[get_import_service] = lambda: import_service
    yield import_service
    app.dependency_overrides.clear()


def upload(content=CSV_CONTENT, filename="appointments.csv", content_type="text/csv"):
    return client.post(f"{PREFIX}/upload", files={"file": (filename, content, content_type)})


def body(catalog, **extra):
    payload = {"salon_id": catalog["salon_id"], "staff_id": catalog["staff_id"]}
    payload.update(extra)
    return payload


def test_root():
    response = client.get("/")
    assert response.status_code == 200
    assert response.json() == {"message": "Appointment Import API", "version": "1.0.0"}


def test_health():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"


class TestUpload:
    def test_upload_csv(self, service):
        response = upload()

        assert response.status_code == 200
        payload = response.json()
        assert payload["success"] is True
        data = payload["data"]
        assert data["filename"] == "appointments.csv"
        assert data["file_size"] == len(CSV_CONTENT)
        assert data["total_rows"] == 3
        assert data["detected_columns"][0] == "client_name"
        assert len(data["preview"]) == 3
        assert data["preview"][0]["client_name"] == "Ana Anić"

    def test_preview_is_limited(self, service):
        lines = "\n".join(f"Client {index};15.01.2024;10:00" for index in range(25))
        response = upload(f"client_name;date;time\n{lines}\n".encode("utf-8"))

        assert response.status_code == 200
        assert response.json()["data"]["total_rows"] == 25
        assert len(response.json()["data"]["preview"]) == 10

    def test_too_large(self, service, monkeypatch):
        monkeypatch.setattr(settings, "import_max_file_size_mb", 0)
        response = upload()
        assert response.status_code == 413

    def test_unsupported_format(self, service):
        response = upload(b"hello", filename="notes.txt", content_type="text/plain")
        assert response.status_code == 415

    def test_unparseable_json(self, service):
        response = upload(b"{oops", filename="export.json", content_type="application/json")
        assert response.status_code == 415


class TestValidate:
    def test_validate(self, service, catalog):
        import_id = upload().json()["data"]["import_id"]

        response = client.post(f"{PREFIX}/{import_id}/validate", json=body(catalog))

        assert response.status_code == 200
        data = response.json()["data"]
        assert (data["total_rows"], data["valid_rows"], data["invalid_rows"]) == (3, 2, 1)
        assert data["errors"] == [
            {
                "row": 2,
                "data": {
                    "client_name": "Lejla Hodžić",
                    "client_email": "lejla@example.com",
                    "client_phone": None,
                    "date": None,
                    "time": "11:00",
                    "services": None,
                    "duration": None,
                },
                "errors": ["date missing/unparseable"],
            }
        ]
        mapping = data["service_mapping"]
        assert (mapping["matched"], mapping["unmatched"]) == (2, 1)
        by_name = {entry["import_name"]: entry for entry in mapping["mappings"]}
        assert by_name["Šišanje"]["match_type"] == "exact"
        assert by_name["Feniranje"]["service_id"] == catalog["services"]["Feniranje"]
        assert by_name["Masaža"]["match_type"] == "none"
        assert by_name["Masaža"]["service_id"] is None
        assert data["user_creation"] == {"existing_users": 1, "new_guest_users": 1}

    def test_unknown_import(self, service, catalog):
        response = client.post(f"{PREFIX}/does-not-exist/validate", json=body(catalog))
        assert response.status_code == 404

    def test_unknown_mapping_field_rejected(self, service, catalog):
        import_id = upload().json()["data"]["import_id"]
        response = client.post(
            f"{PREFIX}/{import_id}/validate",
            json=body(catalog, mapping={"colour": "Boja"}),
        )
        assert response.status_code == 422

    def test_custom_mapping(self, service, catalog):
        content = "Klijent;Datum;Vrijeme\nAna;15.01.2024;10:00\n".encode("utf-8")
        import_id = upload(content).json()["data"]["import_id"]

        response = client.post(
            f"{PREFIX}/{import_id}/validate",
            json=body(catalog, mapping={"name": "Klijent", "date": "Datum", "time": "Vrijeme"}),
        )

        assert response.status_code == 200
        assert response.json()["data"]["valid_rows"] == 1


class TestProcess:
    def test_process_status_and_errors(self, service, catalog):
        import_id = upload().json()["data"]["import_id"]

        response = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog, skip_invalid=True))

        assert response.status_code == 202
        data = response.json()["data"]
        batch_id = data["import_batch_id"]
        assert data["status"] == "completed"

        status = client.get(f"{PREFIX}/batch/{batch_id}/status").json()["data"]
        assert status["status"] == "completed"
        assert (status["total_rows"], status["successful_rows"], status["failed_rows"]) == (3, 2, 1)
        assert status["progress"] == 100

        errors = client.get(f"{PREFIX}/batch/{batch_id}/errors")
        assert errors.status_code == 200
        assert errors.headers["content-type"].startswith("text/csv")
        assert f'filename="import_errors_{batch_id}.csv"' in errors.headers["content-disposition"]
        lines = errors.content.decode("utf-8-sig").splitlines()
        assert lines[0].startswith("row;client_name;")
        assert len(lines) == 2
        assert lines[1].startswith("2;Lejla Hodžić;")
        assert lines[1].endswith("date missing/unparseable")

    def test_reprocessing_after_completion_creates_new_batch(self, service, catalog):
        import_id = upload().json()["data"]["import_id"]
        first = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog)).json()["data"]
        second = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog)).json()["data"]
        assert first["import_batch_id"] != second["import_batch_id"]

    def test_unknown_import(self, service, catalog):
        response = client.post(f"{PREFIX}/does-not-exist/process", json=body(catalog))
        assert response.status_code == 404

    def test_unknown_batch(self, service):
        assert client.get(f"{PREFIX}/batch/missing/status").status_code == 404
        assert client.get(f"{PREFIX}/batch/missing/errors").status_code == 404


class PendingRunner:
    def submit(self, fn, *args):
        return Future()

    def shutdown(self, wait=True):
        pass


def test_running_batch_conflicts(session_factory, catalog):
    pending = AppointmentImportService(session_factory, runner=PendingRunner())
    app.dependency_overrides[get_import_service] = lambda: pending
    try:
        import_id = upload().json()["data"]["import_id"]
        first = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog))
        assert first.status_code == 202
        assert first.json()["data"]["status"] == "queued"
        batch_id = first.json()["data"]["import_batch_id"]

        second = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog))
        assert second.status_code == 409

        errors = client.get(f"{PREFIX}/batch/{batch_id}/errors")
        assert errors.status_code == 409
    finally:
        app.dependency_overrides.clear()


def test_history(service, catalog):
    import_id = upload().json()["data"]["import_id"]
    batch_id = client.post(f"{PREFIX}/{import_id}/process", json=body(catalog)).json()["data"]["import_batch_id"]

    response = client.get(f"{PREFIX}/history", params={"salon_id": catalog["salon_id"]})

    assert response.status_code == 200
    data = response.json()["data"]
    assert data["total_count"] == 1
    (batch,) = data["batches"]
    assert batch["id"] == batch_id
    assert batch["filename"] == "appointments.csv"
    assert batch["status"] == "completed"
    assert (batch["successful_rows"], batch["failed_rows"]) == (2, 1)
    assert batch["salon"]["name"] == "Salon Lana"

    assert client.get(f"{PREFIX}/history", params={"status": "bogus"}).status_code == 422
