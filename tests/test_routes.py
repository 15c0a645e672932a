"""
Route tests through the full application with an in-memory database and a
scripted completion provider.
"""

import json

import pytest
from fastapi.testclient import TestClient

from wardround.main import app
from wardround.services.audit_service import audit_service
from wardround.services.extraction_service import extraction_service
from wardround.utils.security import get_current_user


@pytest.fixture
def audit_entries(monkeypatch):
    entries = []
    monkeypatch.setattr(audit_service, "record_in_background", entries.append)
    return entries


@pytest.fixture
def login_as(fake_db, audit_entries):
    def login(user):
        app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(app)

    yield login
    app.dependency_overrides.clear()


@pytest.fixture
def client(login_as, resident):
    return login_as(resident)


def create_patient(client, **fields):
    body = {"name": "Somchai", "room": "12", "diagnosis": "CAP", "allergies": "Penicillin", **fields}
    response = client.post("/api/patients/", json=body)
    assert response.status_code == 201
    return response.json()


class TestAuthRoutes:

    def test_me(self, client):
        response = client.get("/api/auth/me")
        assert response.status_code == 200
        assert response.json()["email"] == "resident@hospital.org"

    def test_users_is_admin_only(self, client):
        assert client.get("/api/auth/users").status_code == 403

    def test_register_validation_error_shape(self, client):
        response = client.post("/api/auth/register", json={"email": "not-an-email", "name": "X", "password": "short"})
        assert response.status_code == 400
        body = response.json()
        assert body["message"] == "Validation Error"
        assert {error["field"] for error in body["errors"]} >= {"email", "password"}


class TestPatientRoutes:

    def test_create_get_and_list(self, client, audit_entries):
        created = create_patient(client)
        assert created["acuity"] == "Stable"
        assert created["createdBy"] == "user-resident"

        assert client.get(f"/api/patients/{created['id']}").json()["name"] == "Somchai"
        assert [p["id"] for p in client.get("/api/patients/", params={"search": "som"}).json()] == [created["id"]]
        assert client.get("/api/patients/", params={"search": "nobody"}).json() == []
        assert audit_entries[0].resource_id == created["id"]

    def test_missing_patient_is_404(self, client):
        assert client.get("/api/patients/does-not-exist").status_code == 404

    def test_update_and_statistics(self, client):
        created = create_patient(client)
        create_patient(client, name="Malee", room="14")
        response = client.put(f"/api/patients/{created['id']}", json={"acuity": "Unstable"})
        assert response.json()["acuity"] == "Unstable"

        stats = client.get("/api/patients/statistics").json()
        assert stats == {"totalPatients": 2, "stable": 1, "watch": 0, "unstable": 1, "pendingTasks": 0}

    def test_delete_requires_attending(self, login_as, resident, attending):
        created = create_patient(login_as(resident))
        assert login_as(resident).delete(f"/api/patients/{created['id']}").status_code == 403
        assert login_as(attending).delete(f"/api/patients/{created['id']}").status_code == 200
        assert login_as(attending).get(f"/api/patients/{created['id']}").status_code == 404

    def test_tasks(self, client):
        patient_id = create_patient(client)["id"]
        task = client.post(f"/api/patients/{patient_id}/tasks", json={"description": "Repeat K"}).json()
        assert task["id"]

        updated = client.put(f"/api/patients/{patient_id}/tasks/{task['id']}", json={"isCompleted": True}).json()
        assert updated["isCompleted"] is True
        assert updated["description"] == "Repeat K"

        assert client.delete(f"/api/patients/{patient_id}/tasks/{task['id']}").status_code == 200
        assert client.delete(f"/api/patients/{patient_id}/tasks/{task['id']}").status_code == 404

    def test_medication_toggle_and_allergy_conflicts(self, client):
        patient_id = create_patient(client)["id"]
        med = client.post(f"/api/patients/{patient_id}/medications", json={"name": "Amoxicillin"}).json()
        assert med["isActive"] is True

        conflicts = client.get(f"/api/patients/{patient_id}/allergy-conflicts").json()
        assert [c["medicationId"] for c in conflicts] == [med["id"]]

        stopped = client.patch(
            f"/api/patients/{patient_id}/medications/{med['id']}/toggle", json={"isActive": False}
        ).json()
        assert stopped["isActive"] is False
        assert stopped["endDate"]
        assert client.get(f"/api/patients/{patient_id}/allergy-conflicts").json() == []
        assert len(client.get(f"/api/patients/{patient_id}").json()["medications"]) == 1

    def test_manual_lab(self, client):
        patient_id = create_patient(client)["id"]
        response = client.post(f"/api/patients/{patient_id}/labs", json={
            "testName": "Cr", "value": "1.5", "unit": "mg/dL", "dateTime": "14/06/2567 09:00",
        })
        assert response.status_code == 201
        assert response.json()["patient"]["labs"]["creatinine"] == [
            {"date": "2024-06-14 09:00", "value": 1.5, "subResults": None},
        ]

    def test_problem_list_undo_redo(self, client):
        patient_id = create_patient(client)["id"]
        url = f"/api/patients/{patient_id}/problems"
        first = client.put(url, json={"problems": [{"problem": "CAP"}]}).json()
        assert (first["historyLength"], first["canUndo"]) == (1, False)

        second = client.put(url, json={"problems": [{"problem": "CAP"}, {"problem": "AKI"}]}).json()
        assert second["canUndo"] is True

        undone = client.post(f"{url}/undo").json()
        assert [p["problem"] for p in undone["problems"]] == ["CAP"]
        redone = client.post(f"{url}/redo").json()
        assert [p["problem"] for p in redone["problems"]] == ["CAP", "AKI"]

        client.post(f"{url}/undo")
        assert client.post(f"{url}/undo").status_code == 400


class TestReconcileRoutes:

    def test_reviewed_labs_are_saved_once(self, client):
        patient_id = create_patient(client)["id"]
        body = {"kind": "lab", "records": [
            {"testName": "Creatinine", "value": 1.4, "unit": "mg/dL", "dateTime": "14/06/2567 09:00"},
            {"value": 2},
        ]}
        first = client.post(f"/api/patients/{patient_id}/reconcile", json=body).json()
        assert first["added"] == 1
        assert len(first["validationErrors"]) == 1

        second = client.post(f"/api/patients/{patient_id}/reconcile", json=body).json()
        assert (second["added"], second["skipped"]) == (0, 1)

        stored = client.get(f"/api/patients/{patient_id}").json()
        assert [p["value"] for p in stored["labs"]["creatinine"]] == [1.4]

    def test_object_kind(self, client):
        patient_id = create_patient(client)["id"]
        response = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "discharge_summary", "record": {"dischargeDiagnosis": "CAP, resolved"},
        })
        assert response.json()["patient"]["dischargeSummary"]["dischargeDiagnosis"] == "CAP, resolved"

    def test_kind_that_cannot_be_stored_is_400(self, client):
        patient_id = create_patient(client)["id"]
        response = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "pre_round_summary", "record": {"subjective": "ok"},
        })
        assert response.status_code == 400

    def test_bulk_handoff_apply(self, client):
        patient_id = create_patient(client, room="Room 12")["id"]
        response = client.post("/api/patients/handoff/apply", json={"updates": [
            {"roomNumber": "12", "update": {"actionList": "f/u K"}, "acuity": "Unstable"},
            {"roomNumber": "99", "update": {}},
        ]})
        assert response.json() == {"applied": [patient_id], "unmatched": ["99"]}

        stored = client.get(f"/api/patients/{patient_id}").json()
        assert stored["handoff"]["actionList"] == "f/u K"
        assert stored["acuity"] == "Unstable"


class TestAIRoutes:

    def test_scan_labs_does_not_save(self, client, make_provider, monkeypatch):
        reply = json.dumps({"results": [
            {"testName": "K", "value": "3.1", "unit": "mmol/L", "dateTime": "14/06/2567 06:00"},
        ]})
        monkeypatch.setattr(extraction_service, "provider", make_provider(reply))
        patient_id = create_patient(client)["id"]

        response = client.post(
            "/api/ai/scan/labs", params={"patient_id": patient_id}, json={"images": ["AAAA"]}
        )
        assert response.status_code == 200
        assert response.json()["results"][0]["dateTime"] == "2024-06-14 06:00"
        assert client.get(f"/api/patients/{patient_id}").json()["labs"]["k"] == []

    def test_scan_with_provider_down_is_empty(self, client, make_provider, monkeypatch):
        monkeypatch.setattr(extraction_service, "provider", make_provider(error="Completion provider unreachable"))
        response = client.post("/api/ai/scan/medications", json={"images": ["AAAA"]})
        assert response.status_code == 200
        assert response.json()["records"] == []

    def test_scan_requires_images(self, client):
        assert client.post("/api/ai/scan/echo", json={"images": []}).status_code == 400


class TestGridFilledReconcile:

    def placeholder_batch(self):
        return [
            {"testName": "WBC", "value": 8.1, "dateTime": "2024-06-14 00:00"},
            {"testName": "Hgb", "value": 11.2, "dateTime": "2024-06-14 00:00"},
            {"testName": "WBC", "value": 9.0, "dateTime": "2024-06-15 00:00"},
            {"testName": "Hgb", "value": None, "dateTime": "2024-06-15 00:00"},
        ]

    def test_placeholders_are_not_validation_errors(self, client):
        patient_id = create_patient(client)["id"]
        body = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "lab", "records": self.placeholder_batch(),
        }).json()
        assert body["validationErrors"] == []
        assert (body["added"], body["skipped"]) == (3, 1)
        assert [p["value"] for p in body["patient"]["labs"]["hgb"]] == [11.2]

    def test_placeholders_are_stored_with_fill_grid(self, client):
        patient_id = create_patient(client)["id"]
        body = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "lab", "records": self.placeholder_batch(), "fillGrid": True,
        }).json()
        assert body["added"] == 4
        assert [p["value"] for p in body["patient"]["labs"]["hgb"]] == [11.2, None]


class TestBedsideScanRoutes:

    def test_patient_sticker_then_save(self, client, make_provider, monkeypatch):
        reply = json.dumps({"name": "นาย สมชาย", "hn": "HN0001", "age": 67, "gender": "M", "diagnosis": "CAP"})
        monkeypatch.setattr(extraction_service, "provider", make_provider(reply))
        scanned = client.post("/api/ai/scan/patient", json={"images": ["AAAA"]}).json()
        assert scanned["kind"] == "patient_demographics"
        assert scanned["record"]["hn"] == "HN0001"

        patient_id = create_patient(client, diagnosis="")["id"]
        saved = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "patient_demographics", "record": scanned["record"],
        }).json()
        assert saved["updated"] == 1
        assert (saved["patient"]["hn"], saved["patient"]["age"], saved["patient"]["diagnosis"]) == ("HN0001", 67, "CAP")
        assert saved["patient"]["name"] == "Somchai"

    def test_unreadable_vitals(self, client, make_provider, monkeypatch):
        monkeypatch.setattr(extraction_service, "provider", make_provider('{"readable": false}'))
        body = client.post("/api/ai/scan/vitals", json={"images": ["AAAA"]}).json()
        assert body["record"] is None
        assert body["validationErrors"] == ["Vitals flowsheet unreadable"]

    def test_chronic_diseases_from_history(self, client, make_provider, monkeypatch):
        reply = json.dumps([{"type": "CKD stage 3", "lastValues": {"eGFR": 45}}])
        monkeypatch.setattr(extraction_service, "provider", make_provider(reply))
        body = client.post("/api/ai/parse/chronic-diseases", json={"text": "CKD stage 3, eGFR 45"}).json()
        assert body["records"] == [{
            "type": "CKD stage 3", "diagnosisDate": "", "lastValues": {"eGFR": 45},
            "lastExam": {}, "complications": "",
        }]

        patient_id = create_patient(client)["id"]
        saved = client.post(f"/api/patients/{patient_id}/reconcile", json={
            "kind": "chronic_disease", "records": body["records"],
        }).json()
        assert saved["added"] == 1
        assert saved["patient"]["admissionNote"]["chronicDiseases"][0]["type"] == "CKD stage 3"
