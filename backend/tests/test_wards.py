from decimal import Decimal


def admit(client, headers, patient_id, bed_id, admission_date=None):
    payload = {
        "patient_id": patient_id,
        "bed_id": bed_id,
        "reason_for_admission": "post operative observation",
        "primary_doctor": "Dr. Okafor"
    }
    if admission_date:
        payload["admission_date"] = admission_date
    response = client.post("/admissions", json=payload, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestWards:

    def test_create_with_beds(self, ward):
        assert ward["name"] == "General Medicine"
        assert Decimal(ward["per_diem_rate"]) == Decimal("180.00")
        assert [bed["label"] for bed in ward["beds"]] == ["Bed 1", "Bed 2", "Bed 3"]
        assert {bed["status"] for bed in ward["beds"]} == {"Available"}

    def test_duplicate_name_conflicts(self, client, admin_headers, ward):
        response = client.post("/wards", json={"name": " general medicine"}, headers=admin_headers)
        assert response.status_code == 409

    def test_only_admin_creates(self, client, staff_headers):
        response = client.post("/wards", json={"name": "Surgical"}, headers=staff_headers("Nurse"))
        assert response.status_code == 403

    def test_update_tariff(self, client, admin_headers, ward):
        response = client.put(f"/wards/{ward['id']}", json={"per_diem_rate": "200.00"}, headers=admin_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["per_diem_rate"]) == Decimal("200.00")
        assert response.json()["name"] == "General Medicine"

    def test_add_bed(self, client, admin_headers, ward):
        response = client.post(f"/wards/{ward['id']}/beds", json={"label": "Side room"}, headers=admin_headers)
        assert response.status_code == 201
        assert response.json()["status"] == "Available"

        response = client.post(f"/wards/{ward['id']}/beds", json={"label": "bed 2"}, headers=admin_headers)
        assert response.status_code == 409

    def test_available_beds(self, client, admin_headers, ward, patient):
        admit(client, admin_headers, patient["id"], ward["beds"][0]["id"])

        response = client.get("/wards/available-beds", headers=admin_headers)
        assert [bed["label"] for bed in response.json()] == ["Bed 2", "Bed 3"]


class TestBedStatus:

    def test_housekeeping_status(self, client, ward, staff_headers):
        bed = ward["beds"][2]
        response = client.patch(
            f"/wards/{ward['id']}/beds/{bed['id']}/status",
            json={"status": "Maintenance"},
            headers=staff_headers("Nurse")
        )
        assert response.status_code == 200
        assert response.json()["status"] == "Maintenance"

    def test_cannot_mark_occupied(self, client, admin_headers, ward):
        bed = ward["beds"][0]
        response = client.patch(
            f"/wards/{ward['id']}/beds/{bed['id']}/status",
            json={"status": "Occupied"},
            headers=admin_headers
        )
        assert response.status_code == 422

    def test_occupied_bed_is_locked(self, client, admin_headers, ward, patient):
        bed = ward["beds"][0]
        admit(client, admin_headers, patient["id"], bed["id"])

        response = client.patch(
            f"/wards/{ward['id']}/beds/{bed['id']}/status",
            json={"status": "Available"},
            headers=admin_headers
        )
        assert response.status_code == 400

        response = client.delete(f"/wards/{ward['id']}/beds/{bed['id']}", headers=admin_headers)
        assert response.status_code == 409

        response = client.delete(f"/wards/{ward['id']}", headers=admin_headers)
        assert response.status_code == 409

    def test_bed_from_another_ward(self, client, admin_headers, ward):
        other = client.post("/wards", json={"name": "Paediatrics", "bed_count": 1}, headers=admin_headers).json()
        response = client.delete(f"/wards/{other['id']}/beds/{ward['beds'][0]['id']}", headers=admin_headers)
        assert response.status_code == 404

    def test_delete_keeps_admission_history(self, client, admin_headers, ward, patient):
        bed = ward["beds"][0]
        admission = admit(client, admin_headers, patient["id"], bed["id"])
        client.post(
            f"/admissions/{admission['id']}/discharge",
            json={"discharge_summary": "recovered"},
            headers=admin_headers
        )

        response = client.delete(f"/wards/{ward['id']}", headers=admin_headers)
        assert response.status_code == 204

        response = client.get(f"/admissions/{admission['id']}", headers=admin_headers)
        assert response.json()["bed_id"] is None
        assert response.json()["room"] == "General Medicine"
        assert response.json()["bed"] == "Bed 1"


class TestHospitalStayBilling:

    def discharged_stay(self, client, headers, ward, patient):
        admission = admit(client, headers, patient["id"], ward["beds"][1]["id"], "2030-01-01T10:00:00")
        client.post(
            f"/admissions/{admission['id']}/discharge",
            json={"discharge_summary": "recovered", "discharge_date": "2030-01-04T09:00:00"},
            headers=headers
        )
        return admission

    def test_stay_billed_at_ward_tariff(self, client, admin_headers, ward, patient):
        admission = self.discharged_stay(client, admin_headers, ward, patient)

        response = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "admission_id": admission["id"]},
            headers=admin_headers
        )
        assert response.status_code == 201, response.text

        line = response.json()["line_items"][0]
        assert line["description"] == "Hospital stay: General Medicine Bed 2, 3 night(s)"
        assert line["quantity"] == 3
        assert line["source_type"] == "hospital_stay"
        assert Decimal(line["total"]) == Decimal("540.00")

        response = client.get(f"/admissions/{admission['id']}", headers=admin_headers)
        assert response.json()["invoice_id"] is not None

    def test_stay_billed_once(self, client, admin_headers, ward, patient):
        admission = self.discharged_stay(client, admin_headers, ward, patient)
        payload = {"patient_id": patient["id"], "admission_id": admission["id"]}

        invoice = client.post("/billing/invoices", json=payload, headers=admin_headers).json()
        response = client.post("/billing/invoices", json=payload, headers=admin_headers)
        assert response.status_code == 400

        client.patch(f"/billing/invoices/{invoice['id']}/cancel", headers=admin_headers)
        response = client.get(f"/admissions/{admission['id']}", headers=admin_headers)
        assert response.json()["invoice_id"] is None

        response = client.post("/billing/invoices", json=payload, headers=admin_headers)
        assert response.status_code == 201
