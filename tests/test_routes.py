# tests/test_routes.py
"""API tests through the Flask test client."""

import io
import json


def add_vehicle(client, vehicle_type="bus", number="50", students=None):
    response = client.post("/api/vehicles", json={
        "type": vehicle_type,
        "number": number,
        "students": students or [],
    })
    assert response.status_code == 201, response.get_json()
    return response.get_json()["vehicle"]


class TestAuthentication:
    def test_mutations_require_pin(self, client):
        response = client.post("/api/vehicles", json={"type": "bus", "number": "50"})
        assert response.status_code == 401
        assert response.get_json()["kind"] == "unauthorized"

    def test_reads_are_public(self, client):
        assert client.get("/api/vehicles").status_code == 200
        assert client.get("/api/stats").status_code == 200

    def test_pin_required(self, client):
        response = client.post("/api/verify-pin", json={})
        assert response.status_code == 400

    def test_status_and_logout(self, admin_client):
        assert admin_client.get("/api/admin-status").get_json() == {"authenticated": True}
        admin_client.post("/api/admin-logout")
        assert admin_client.get("/api/admin-status").get_json() == {"authenticated": False}
        assert admin_client.post("/api/reset").status_code == 401

    def test_configured_pin_is_enforced(self, admin_client):
        response = admin_client.post("/api/admin-settings", json={"pin": "4321", "school_name": "Hillside"})
        assert response.status_code == 200
        admin_client.post("/api/admin-logout")

        assert admin_client.post("/api/verify-pin", json={"pin": "0000"}).status_code == 401
        assert admin_client.post("/api/verify-pin", json={"pin": 4321}).status_code == 200


class TestVehicleEndpoints:
    def test_add_and_list(self, admin_client):
        vehicle = add_vehicle(admin_client, "taxi", "1", [{"name": "Emma", "pathway": "Futures"}])
        assert vehicle["id"] == 1
        assert vehicle["students"][0]["status"] == "not_arrived"

        vehicles = admin_client.get("/api/vehicles").get_json()
        assert [v["number"] for v in vehicles] == ["1"]

    def test_duplicate_returns_conflict(self, admin_client):
        add_vehicle(admin_client, "bus", "50")
        response = admin_client.post("/api/vehicles", json={"type": "bus", "number": "50"})
        assert response.status_code == 409
        assert response.get_json()["kind"] == "conflict"
        assert len(admin_client.get("/api/vehicles").get_json()) == 1

    def test_invalid_type_returns_validation_error(self, admin_client):
        response = admin_client.post("/api/vehicles", json={"type": "train", "number": "1"})
        assert response.status_code == 400
        assert response.get_json()["kind"] == "validation_error"

    def test_non_object_body(self, admin_client):
        response = admin_client.post("/api/vehicles", json=["bus", "50"])
        assert response.status_code == 400

    def test_toggle_bus(self, admin_client):
        bus = add_vehicle(admin_client, "bus", "50")
        response = admin_client.post(f"/api/vehicles/{bus['id']}/toggle")
        body = response.get_json()
        assert response.status_code == 200
        assert body["message"] == "Bus 50 marked as Arrived"
        assert body["vehicle"]["status"] == "arrived"
        assert body["vehicle"]["arrival_time"] is not None

    def test_toggle_unknown_vehicle(self, admin_client):
        response = admin_client.post("/api/vehicles/999/toggle")
        assert response.status_code == 404
        assert response.get_json()["kind"] == "not_found"

    def test_toggle_student(self, admin_client):
        taxi = add_vehicle(admin_client, "taxi", "1", [
            {"name": "Emma", "pathway": "Futures"},
            {"name": "Harper", "pathway": "Preparations"},
        ])
        response = admin_client.post(f"/api/vehicles/{taxi['id']}/students/0/toggle")
        body = response.get_json()
        assert body["student"]["status"] == "arrived"
        assert body["vehicle"]["status"] == "partial"

    def test_toggle_bus_student_is_invalid(self, admin_client):
        bus = add_vehicle(admin_client, "bus", "50", [{"name": "Lucas", "pathway": "Horizons"}])
        response = admin_client.post(f"/api/vehicles/{bus['id']}/students/0/toggle")
        assert response.status_code == 400
        assert response.get_json()["kind"] == "invalid_operation"

    def test_filters(self, admin_client):
        bus = add_vehicle(admin_client, "bus", "50")
        add_vehicle(admin_client, "taxi", "1")
        admin_client.post("/api/vehicles/adhoc", json={"description": "Aunt in red van"})
        admin_client.post(f"/api/vehicles/{bus['id']}/toggle")

        assert [v["type"] for v in admin_client.get("/api/vehicles/buses").get_json()] == ["bus"]
        assert [v["type"] for v in admin_client.get("/api/vehicles/taxis").get_json()] == ["taxi", "adhoc"]
        assert [v["number"] for v in admin_client.get("/api/vehicles/arrived").get_json()] == ["50"]
        assert len(admin_client.get("/api/vehicles?type=taxi").get_json()) == 1
        assert len(admin_client.get("/api/vehicles?arrived=true").get_json()) == 1
        assert admin_client.get("/api/vehicles?type=boat").status_code == 400

    def test_update_and_delete(self, admin_client):
        bus = add_vehicle(admin_client, "bus", "50")
        response = admin_client.put(f"/api/vehicles/{bus['id']}", json={"type": "bus", "number": "60"})
        assert response.get_json()["vehicle"]["number"] == "60"

        response = admin_client.delete(f"/api/vehicles/{bus['id']}")
        assert response.get_json()["message"] == "Bus 60 has been removed successfully"
        assert admin_client.get(f"/api/vehicles/{bus['id']}").status_code == 404

    def test_batch_toggle(self, admin_client):
        first = add_vehicle(admin_client, "bus", "50")
        second = add_vehicle(admin_client, "bus", "51")
        response = admin_client.post("/api/vehicles/batch-toggle", json={
            "vehicle_ids": [first["id"], 999, second["id"]],
        })
        body = response.get_json()
        assert response.status_code == 200
        assert body["success_count"] == 2
        assert body["failure_count"] == 1
        assert body["success"] is False

    def test_mutation_is_persisted(self, admin_client, flask_app):
        add_vehicle(admin_client, "bus", "77")
        with open(flask_app.config["DATA_PERSISTENCE_FILE"]) as f:
            saved = json.load(f)
        assert [v["number"] for v in saved] == ["77"]

    def test_responses_are_not_cached(self, client):
        response = client.get("/api/vehicles")
        assert response.headers["Cache-Control"] == "no-cache, no-store, must-revalidate"


class TestStudentEndpoints:
    def test_add_update_delete(self, admin_client):
        taxi = add_vehicle(admin_client, "taxi", "1", [{"name": "Emma", "pathway": "Futures"}])
        admin_client.post(f"/api/vehicles/{taxi['id']}/students/0/toggle")

        response = admin_client.post(f"/api/vehicles/{taxi['id']}/students",
                                     json={"name": "Harper", "pathway": "Preparations"})
        assert response.status_code == 201
        assert response.get_json()["vehicle"]["status"] == "partial"

        response = admin_client.put(f"/api/vehicles/{taxi['id']}/students/1",
                                    json={"name": "Harper T", "pathway": "Futures"})
        assert response.get_json()["student"]["name"] == "Harper T"

        response = admin_client.delete(f"/api/vehicles/{taxi['id']}/students/1")
        assert response.get_json()["vehicle"]["status"] == "arrived"

    def test_missing_fields(self, admin_client):
        taxi = add_vehicle(admin_client, "taxi", "1")
        response = admin_client.post(f"/api/vehicles/{taxi['id']}/students", json={"name": "Emma"})
        assert response.status_code == 400

    def test_bad_index(self, admin_client):
        taxi = add_vehicle(admin_client, "taxi", "1")
        assert admin_client.delete(f"/api/vehicles/{taxi['id']}/students/0").status_code == 404


class TestResetEndpoints:
    def test_afternoon_and_day_reset(self, admin_client):
        arrived = add_vehicle(admin_client, "bus", "50")
        absent = add_vehicle(admin_client, "bus", "51")
        admin_client.post(f"/api/vehicles/{arrived['id']}/toggle")
        admin_client.post(f"/api/vehicles/{absent['id']}/toggle")
        admin_client.post(f"/api/vehicles/{absent['id']}/toggle")

        response = admin_client.post("/api/reset/afternoon")
        assert response.get_json()["reset_count"] == 1
        statuses = [v["status"] for v in admin_client.get("/api/vehicles").get_json()]
        assert statuses == ["not_arrived", "absent"]

        response = admin_client.post("/api/reset/day")
        assert response.get_json()["reset_count"] == 1
        statuses = [v["status"] for v in admin_client.get("/api/vehicles").get_json()]
        assert statuses == ["not_arrived", "not_arrived"]


class TestStatsAndHealth:
    def test_stats(self, admin_client):
        bus = add_vehicle(admin_client, "bus", "50", [{"name": "Lucas", "pathway": "Horizons"}])
        admin_client.post(f"/api/vehicles/{bus['id']}/toggle")
        stats = admin_client.get("/api/stats").get_json()
        assert stats["vehicles"]["arrived"] == 1
        assert stats["students"]["arrived"] == 1

    def test_health(self, client):
        body = client.get("/health").get_json()
        assert body["status"] == "healthy"
        assert body["total_vehicles"] == 0


class TestCsvEndpoints:
    def test_template_uses_pathway_label(self, admin_client):
        admin_client.post("/api/admin-settings", json={"pathway_label": "House"})
        response = admin_client.get("/api/csv-template")
        assert response.mimetype == "text/csv"
        assert response.get_data(as_text=True).splitlines()[0] == "VehicleType,VehicleNumber,StudentName,House"

    def test_import_upload(self, admin_client):
        content = b"VehicleType,VehicleNumber,StudentName,Pathway\nbus,50,Ann,Explorers\ntaxi,1,Bea,Futures\n"
        response = admin_client.post("/api/vehicles/import", data={
            "file": (io.BytesIO(content), "vehicles.csv"),
        }, content_type="multipart/form-data")
        body = response.get_json()
        assert body["success"] is True
        assert body["imported_count"] == 2

    def test_import_rejects_non_utf8_upload(self, admin_client):
        content = "VehicleType,VehicleNumber,StudentName,Pathway\nbus,50,Ren\xe9e,Explorers\n".encode("latin-1")
        response = admin_client.post("/api/vehicles/import", data={
            "file": (io.BytesIO(content), "vehicles.csv"),
        }, content_type="multipart/form-data")
        assert response.status_code == 400
        assert response.get_json()["error"] == "CSV must be UTF-8 encoded"
        assert admin_client.get("/api/vehicles").get_json() == []

    def test_import_empty(self, admin_client):
        response = admin_client.post("/api/vehicles/import", data="", content_type="text/csv")
        assert response.status_code == 400


class TestSettingsEndpoints:
    def test_pin_never_returned(self, admin_client):
        admin_client.post("/api/admin-settings", json={"pin": "1234", "dark_mode": True})
        settings = admin_client.get("/api/admin-settings").get_json()
        assert "pin" not in settings
        assert "pin_hash" not in settings
        assert settings["has_pin"] is True
        assert settings["dark_mode"] is True

    def test_partial_update_keeps_other_fields(self, admin_client):
        admin_client.post("/api/admin-settings", json={"school_name": "Hillside", "theme": "green"})
        admin_client.post("/api/admin-settings", json={"theme": "purple"})
        settings = admin_client.get("/api/admin-settings").get_json()
        assert settings["school_name"] == "Hillside"
        assert settings["theme"] == "purple"
        assert settings["pathway_label"] == "Pathway"

    def test_settings_update_requires_pin(self, client):
        assert client.post("/api/admin-settings", json={"theme": "green"}).status_code == 401
