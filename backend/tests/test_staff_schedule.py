import re
from datetime import date, timedelta

import pytest

TODAY = date.today().isoformat()
HH_MM = re.compile(r"^\d{2}:\d{2}$")


@pytest.fixture
def nurse(client, staff_headers):
    headers = staff_headers("Nurse")
    user = client.get("/auth/me", headers=headers).json()
    return {"id": user["id"], "headers": headers}


def add_shift(client, headers, staff_id, **overrides):
    payload = {
        "staff_id": staff_id,
        "shift_date": TODAY,
        "shift_type": "Day",
        "start_time": "07:00",
        "end_time": "19:00"
    }
    payload.update(overrides)
    return client.post("/staff-schedule", json=payload, headers=headers)


class TestRota:

    def test_create_shift(self, client, admin_headers, nurse):
        response = add_shift(client, admin_headers, nurse["id"])
        assert response.status_code == 201

        data = response.json()
        assert data["staff_name"] == "Test Nurse"
        assert data["attendance_status"] == "Scheduled"
        assert data["actual_start_time"] is None

    def test_day_off_clears_times(self, client, admin_headers, nurse):
        response = add_shift(client, admin_headers, nurse["id"], shift_type="Day Off")
        assert response.status_code == 201
        assert response.json()["start_time"] is None
        assert response.json()["end_time"] is None

    def test_working_shift_needs_times(self, client, admin_headers, nurse):
        response = add_shift(client, admin_headers, nurse["id"], shift_type="Night", end_time=None)
        assert response.status_code == 422

    def test_unknown_staff_member(self, client, admin_headers):
        response = add_shift(client, admin_headers, 999)
        assert response.status_code == 404

    def test_only_admin_manages_rota(self, client, nurse):
        response = add_shift(client, nurse["headers"], nurse["id"])
        assert response.status_code == 403

    def test_list_filters(self, client, admin_headers, nurse):
        tomorrow = (date.today() + timedelta(days=1)).isoformat()
        add_shift(client, admin_headers, nurse["id"], shift_type="Night", start_time="19:00", end_time="07:00")
        add_shift(client, admin_headers, nurse["id"], shift_date=tomorrow, shift_type="Day Off")

        response = client.get("/staff-schedule", params={"date": TODAY}, headers=nurse["headers"])
        assert [s["shift_type"] for s in response.json()] == ["Night"]

        response = client.get(
            "/staff-schedule",
            params={"start_date": TODAY, "end_date": tomorrow, "exclude_day_off": True},
            headers=nurse["headers"]
        )
        assert len(response.json()) == 1

    def test_update_to_day_off(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"]).json()
        response = client.put(
            f"/staff-schedule/{shift['id']}",
            json={"shift_type": "Day Off", "notes": "annual leave"},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["start_time"] is None
        assert response.json()["notes"] == "annual leave"

    def test_update_day_off_to_working_needs_times(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"], shift_type="Day Off").json()
        response = client.put(
            f"/staff-schedule/{shift['id']}",
            json={"shift_type": "Custom"},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_delete_shift(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"]).json()
        response = client.delete(f"/staff-schedule/{shift['id']}", headers=admin_headers)
        assert response.status_code == 204
        assert client.get(f"/staff-schedule/{shift['id']}", headers=admin_headers).status_code == 404


class TestAttendance:

    def test_clock_in_and_out(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"]).json()

        response = client.patch(
            f"/staff-schedule/{shift['id']}/attendance",
            json={"attendance_status": "Clocked In"},
            headers=nurse["headers"]
        )
        assert response.status_code == 200
        assert HH_MM.match(response.json()["actual_start_time"])
        assert response.json()["actual_end_time"] is None

        response = client.patch(
            f"/staff-schedule/{shift['id']}/attendance",
            json={"attendance_status": "Clocked Out", "actual_end_time": "19:20"},
            headers=nurse["headers"]
        )
        assert response.json()["attendance_status"] == "Clocked Out"
        assert response.json()["actual_end_time"] == "19:20"

    def test_late_keeps_given_start(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"]).json()
        response = client.patch(
            f"/staff-schedule/{shift['id']}/attendance",
            json={"attendance_status": "Late", "actual_start_time": "07:40"},
            headers=admin_headers
        )
        assert response.json()["actual_start_time"] == "07:40"

    def test_day_off_attendance_rejected(self, client, admin_headers, nurse):
        shift = add_shift(client, admin_headers, nurse["id"], shift_type="Day Off").json()
        response = client.patch(
            f"/staff-schedule/{shift['id']}/attendance",
            json={"attendance_status": "Clocked In"},
            headers=nurse["headers"]
        )
        assert response.status_code == 400

    def test_cannot_clock_in_for_colleague(self, client, admin_headers, nurse, staff_headers):
        shift = add_shift(client, admin_headers, nurse["id"]).json()
        response = client.patch(
            f"/staff-schedule/{shift['id']}/attendance",
            json={"attendance_status": "Clocked In"},
            headers=staff_headers("Doctor")
        )
        assert response.status_code == 403
