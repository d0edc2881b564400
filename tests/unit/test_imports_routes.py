"""
API tests for the import routes.
"""

from unittest.mock import patch

import pytest

from tests.factories import CONTACT_HEADERS, CONTACT_MAPPING, ContactRowFactory, customer_row, make_csv


@pytest.fixture
def seeded(mock_supabase):
    mock_supabase.set_table_data("customers", [customer_row("Acme Corp", id="cust-1")])
    return mock_supabase


def upload(client, rows, entity_type="contacts", filename="contacts.csv"):
    content = make_csv(CONTACT_HEADERS, rows)
    return client.post(
        f"/api/imports/{entity_type}/upload",
        files={"file": (filename, content, "text/csv")},
    )


def uploaded_and_mapped(client, rows) -> str:
    import_id = upload(client, rows).json()["import_id"]
    response = client.post(f"/api/imports/sessions/{import_id}/mapping", json={"mappings": CONTACT_MAPPING})
    assert response.status_code == 200
    return import_id


class TestSchemaRoutes:

    def test_list_entity_types(self, test_client):
        response = test_client.get("/api/imports/entity-types")

        assert response.status_code == 200
        types = {t["entity_type"] for t in response.json()}
        assert {"contacts", "leads", "employees", "candidates", "opportunities", "attendance", "invoices"} <= types

    def test_fields_for_entity_type(self, test_client):
        response = test_client.get("/api/imports/contacts/fields")

        assert response.status_code == 200
        email = next(f for f in response.json() if f["key"] == "email")
        assert email["required"] is True

    def test_unknown_entity_type_is_404(self, test_client):
        response = test_client.get("/api/imports/payroll/fields")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "IMPORT_ENTITY_TYPE_NOT_FOUND"


class TestUploadRoute:

    def test_upload_csv(self, test_client):
        response = upload(test_client, ContactRowFactory.create_batch(3))

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "uploaded"
        assert data["total_rows"] == 3
        assert data["columns"] == CONTACT_HEADERS

    def test_empty_file_is_400(self, test_client):
        response = test_client.post(
            "/api/imports/contacts/upload",
            files={"file": ("empty.csv", b"", "text/csv")},
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "MALFORMED_FILE"


class TestSessionRoutes:

    def test_get_session(self, test_client):
        import_id = upload(test_client, ContactRowFactory.create_batch(1)).json()["import_id"]

        response = test_client.get(f"/api/imports/sessions/{import_id}")

        assert response.status_code == 200
        assert response.json()["status"] == "uploaded"

    def test_unknown_session_is_404(self, test_client):
        response = test_client.get("/api/imports/sessions/nope")

        assert response.status_code == 404
        assert response.json()["error"]["code"] == "IMPORT_SESSION_NOT_FOUND"

    def test_invalid_mapping_is_422(self, test_client):
        import_id = upload(test_client, ContactRowFactory.create_batch(1)).json()["import_id"]

        response = test_client.post(
            f"/api/imports/sessions/{import_id}/mapping",
            json={"mappings": [{"target_field": "email", "source_column": "Nope"}]},
        )

        assert response.status_code == 422
        assert response.json()["error"]["code"] == "IMPORT_INVALID_MAPPING"

    def test_validate(self, test_client, seeded):
        import_id = uploaded_and_mapped(test_client, [ContactRowFactory.create(customer="Globex")])

        response = test_client.post(f"/api/imports/sessions/{import_id}/validate")

        assert response.status_code == 200
        assert response.json()["unmatched"] == {"customer": ["globex"]}

    def test_execute_then_conflict(self, test_client, seeded):
        import_id = uploaded_and_mapped(test_client, ContactRowFactory.create_batch(2))

        first = test_client.post(f"/api/imports/sessions/{import_id}/execute", json={"update_existing": True})
        second = test_client.post(f"/api/imports/sessions/{import_id}/execute")

        assert first.status_code == 200
        assert first.json()["created_count"] == 2
        assert second.status_code == 409
        assert second.json()["error"]["code"] == "IMPORT_SESSION_ALREADY_EXECUTED"

    def test_execute_unmapped_is_409(self, test_client):
        import_id = upload(test_client, ContactRowFactory.create_batch(1)).json()["import_id"]

        response = test_client.post(f"/api/imports/sessions/{import_id}/execute")

        assert response.status_code == 409
        assert response.json()["error"]["code"] == "IMPORT_SESSION_INVALID_STATE"

    def test_discard(self, test_client):
        import_id = upload(test_client, ContactRowFactory.create_batch(1)).json()["import_id"]

        assert test_client.delete(f"/api/imports/sessions/{import_id}").status_code == 204
        assert test_client.delete(f"/api/imports/sessions/{import_id}").status_code == 204
        assert test_client.get(f"/api/imports/sessions/{import_id}").status_code == 404

    def test_history(self, test_client, seeded):
        import_id = uploaded_and_mapped(test_client, ContactRowFactory.create_batch(1))
        test_client.post(f"/api/imports/sessions/{import_id}/execute")

        response = test_client.get("/api/imports/history", params={"entity_type": "contacts"})

        assert response.status_code == 200
        assert response.json()[0]["id"] == import_id


class TestHealth:

    def test_health_reports_degraded_database(self, test_client):
        with patch("main.check_connection", return_value={"status": "unhealthy", "error": "down"}):
            response = test_client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "degraded"
