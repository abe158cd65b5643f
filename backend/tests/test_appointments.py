from datetime import date, timedelta

TOMORROW = (date.today() + timedelta(days=1)).isoformat()


def book(client, headers, patient_id, **overrides):
    payload = {
        "patient_id": patient_id,
        "provider_name": "Dr. Lindqvist",
        "appointment_date": TOMORROW,
        "appointment_time": "09:30",
        "appointment_type": "Consultation",
        "reason": "persistent cough"
    }
    payload.update(overrides)
    return client.post("/appointments", json=payload, headers=headers)


class TestAppointmentBooking:

    def test_book_appointment(self, client, admin_headers, patient):
        response = book(client, admin_headers, patient["id"])
        assert response.status_code == 201

        data = response.json()
        assert data["status"] == "Scheduled"
        assert data["patient_name"] == "Grace Mensah"
        assert data["payment_status"] == "Pending Payment"
        assert data["invoice_id"] is None

    def test_unknown_patient(self, client, admin_headers):
        response = book(client, admin_headers, 999)
        assert response.status_code == 404

    def test_invalid_time_format(self, client, admin_headers, patient):
        response = book(client, admin_headers, patient["id"], appointment_time="9.30am")
        assert response.status_code == 422

    def test_double_booking_conflicts(self, client, admin_headers, patient):
        assert book(client, admin_headers, patient["id"]).status_code == 201
        response = book(client, admin_headers, patient["id"])
        assert response.status_code == 409

    def test_cancelled_slot_can_be_rebooked(self, client, admin_headers, patient):
        first = book(client, admin_headers, patient["id"]).json()
        client.patch(
            f"/appointments/{first['id']}/status",
            json={"status": "Cancelled", "cancellation_reason": "patient unwell"},
            headers=admin_headers
        )
        assert book(client, admin_headers, patient["id"]).status_code == 201

    def test_filters(self, client, admin_headers, patient):
        book(client, admin_headers, patient["id"])
        book(client, admin_headers, patient["id"], provider_name="Dr. Okafor", appointment_time="11:00")
        book(client, admin_headers, patient["id"], appointment_date=date.today().isoformat())

        response = client.get("/appointments", params={"date": TOMORROW}, headers=admin_headers)
        assert len(response.json()) == 2
        assert [a["appointment_time"] for a in response.json()] == ["09:30", "11:00"]

        response = client.get("/appointments", params={"provider_name": "okafor"}, headers=admin_headers)
        assert len(response.json()) == 1


class TestAppointmentStatus:

    def test_full_lifecycle(self, client, admin_headers, patient):
        appointment = book(client, admin_headers, patient["id"]).json()

        for new_status in ("Confirmed", "Arrived", "Completed"):
            response = client.patch(
                f"/appointments/{appointment['id']}/status",
                json={"status": new_status},
                headers=admin_headers
            )
            assert response.status_code == 200
            assert response.json()["status"] == new_status

    def test_invalid_transition(self, client, admin_headers, patient):
        appointment = book(client, admin_headers, patient["id"]).json()
        response = client.patch(
            f"/appointments/{appointment['id']}/status",
            json={"status": "Completed"},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_cancellation_reason_recorded(self, client, admin_headers, patient):
        appointment = book(client, admin_headers, patient["id"]).json()
        response = client.patch(
            f"/appointments/{appointment['id']}/status",
            json={"status": "Cancelled", "cancellation_reason": "clashes with work"},
            headers=admin_headers
        )
        assert response.json()["cancellation_reason"] == "clashes with work"

    def test_reschedule(self, client, admin_headers, patient):
        appointment = book(client, admin_headers, patient["id"]).json()
        response = client.put(
            f"/appointments/{appointment['id']}",
            json={"appointment_time": "14:00"},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["appointment_time"] == "14:00"

    def test_completed_appointment_cannot_be_edited(self, client, admin_headers, patient):
        appointment = book(client, admin_headers, patient["id"]).json()
        for new_status in ("Arrived", "Completed"):
            client.patch(
                f"/appointments/{appointment['id']}/status",
                json={"status": new_status},
                headers=admin_headers
            )

        response = client.put(
            f"/appointments/{appointment['id']}",
            json={"notes": "late edit"},
            headers=admin_headers
        )
        assert response.status_code == 400
