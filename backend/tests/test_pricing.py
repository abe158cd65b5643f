from datetime import date
from decimal import Decimal

import pytest


def book(client, headers, patient_id, appointment_type, appointment_time):
    return client.post(
        "/appointments",
        json={
            "patient_id": patient_id,
            "provider_name": "Dr. Okafor",
            "appointment_date": date.today().isoformat(),
            "appointment_time": appointment_time,
            "appointment_type": appointment_type
        },
        headers=headers
    ).json()


@pytest.fixture
def ecg(client, admin_headers):
    response = client.post("/pricing/services", json={"name": "ECG", "price": "45.00"}, headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


class TestGeneralFees:

    def test_defaults_before_any_update(self, client, staff_headers):
        response = client.get("/pricing/general-fees", headers=staff_headers("Receptionist"))
        assert response.status_code == 200
        assert Decimal(response.json()["consultation_fee"]) == Decimal("75.00")
        assert Decimal(response.json()["checkup_fee"]) == Decimal("50.00")
        assert response.json()["updated_by"] is None

    def test_update(self, client, admin_headers):
        response = client.put("/pricing/general-fees", json={"checkup_fee": "40.00"}, headers=admin_headers)
        assert response.status_code == 200
        assert Decimal(response.json()["checkup_fee"]) == Decimal("40.00")
        assert Decimal(response.json()["consultation_fee"]) == Decimal("75.00")
        assert response.json()["updated_by"] == "System Administrator"

        client.put("/pricing/general-fees", json={"consultation_fee": "90.00"}, headers=admin_headers)
        response = client.get("/pricing/general-fees", headers=admin_headers)
        assert Decimal(response.json()["checkup_fee"]) == Decimal("40.00")
        assert Decimal(response.json()["consultation_fee"]) == Decimal("90.00")

    def test_only_admin_sets_fees(self, client, staff_headers):
        response = client.put(
            "/pricing/general-fees",
            json={"consultation_fee": "10.00"},
            headers=staff_headers("Receptionist")
        )
        assert response.status_code == 403

    def test_appointment_billed_by_type(self, client, admin_headers, patient):
        client.put("/pricing/general-fees", json={"checkup_fee": "40.00"}, headers=admin_headers)
        checkup = book(client, admin_headers, patient["id"], "Check-up", "10:30")
        follow_up = book(client, admin_headers, patient["id"], "Follow-up", "11:00")

        totals = []
        for appointment in (checkup, follow_up):
            invoice = client.post(
                "/billing/invoices",
                json={"patient_id": patient["id"], "appointment_id": appointment["id"]},
                headers=admin_headers
            ).json()
            totals.append(Decimal(invoice["total_amount"]))

        assert totals == [Decimal("40.00"), Decimal("75.00")]


class TestCatalog:

    def test_add_and_list(self, client, admin_headers, staff_headers, ecg):
        client.post("/pricing/services", json={"name": "Ambulance transfer", "price": "150.00"}, headers=admin_headers)
        client.post("/pricing/lab-tests", json={"name": "Urinalysis", "price": "15.00"}, headers=admin_headers)

        response = client.get("/pricing/services", headers=staff_headers("Receptionist"))
        assert [s["name"] for s in response.json()] == ["Ambulance transfer", "ECG"]
        assert {s["category"] for s in response.json()} == {"General Service"}

        response = client.get("/pricing/lab-tests", headers=admin_headers)
        assert [t["name"] for t in response.json()] == ["Urinalysis"]

    def test_duplicate_name_conflicts(self, client, admin_headers, ecg):
        response = client.post("/pricing/services", json={"name": "ecg ", "price": "50.00"}, headers=admin_headers)
        assert response.status_code == 409

        # the same name is fine in the other catalog
        response = client.post("/pricing/lab-tests", json={"name": "ECG", "price": "50.00"}, headers=admin_headers)
        assert response.status_code == 201

    def test_unknown_catalog(self, client, admin_headers):
        response = client.get("/pricing/ward-snacks", headers=admin_headers)
        assert response.status_code == 404

    def test_deactivate_hides_entry(self, client, admin_headers, ecg):
        response = client.put(f"/pricing/services/{ecg['id']}", json={"is_active": False}, headers=admin_headers)
        assert response.json()["is_active"] is False

        assert client.get("/pricing/services", headers=admin_headers).json() == []
        response = client.get("/pricing/services", params={"include_inactive": True}, headers=admin_headers)
        assert [s["id"] for s in response.json()] == [ecg["id"]]

    def test_delete(self, client, admin_headers, ecg):
        response = client.delete(f"/pricing/services/{ecg['id']}", headers=admin_headers)
        assert response.status_code == 204
        assert client.delete(f"/pricing/services/{ecg['id']}", headers=admin_headers).status_code == 404

    def test_entry_belongs_to_its_catalog(self, client, admin_headers, ecg):
        response = client.put(f"/pricing/lab-tests/{ecg['id']}", json={"price": "1.00"}, headers=admin_headers)
        assert response.status_code == 404

    def test_nurse_cannot_edit_catalog(self, client, staff_headers):
        response = client.post(
            "/pricing/services",
            json={"name": "ECG", "price": "45.00"},
            headers=staff_headers("Nurse")
        )
        assert response.status_code == 403


class TestServiceBilling:

    def test_service_lines_use_catalog_price(self, client, admin_headers, patient, ecg):
        response = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "services": [{"service_id": ecg["id"], "quantity": 2}]},
            headers=admin_headers
        )
        assert response.status_code == 201

        line = response.json()["line_items"][0]
        assert line["description"] == "ECG"
        assert line["source_type"] == "general_service"
        assert line["source_id"] == ecg["id"]
        assert Decimal(line["total"]) == Decimal("90.00")

    def test_price_change_leaves_issued_invoices(self, client, admin_headers, patient, ecg):
        invoice = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "services": [{"service_id": ecg["id"]}]},
            headers=admin_headers
        ).json()
        client.put(f"/pricing/services/{ecg['id']}", json={"price": "60.00"}, headers=admin_headers)

        response = client.get(f"/billing/invoices/{invoice['id']}", headers=admin_headers)
        assert Decimal(response.json()["total_amount"]) == Decimal("45.00")

    def test_retired_service_rejected(self, client, admin_headers, patient, ecg):
        client.put(f"/pricing/services/{ecg['id']}", json={"is_active": False}, headers=admin_headers)
        response = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "services": [{"service_id": ecg["id"]}]},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_unknown_service(self, client, admin_headers, patient):
        response = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "services": [{"service_id": 999}]},
            headers=admin_headers
        )
        assert response.status_code == 404
