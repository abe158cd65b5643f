from decimal import Decimal


def prescribe(client, headers, patient_id, medication_id, quantity=10, **overrides):
    payload = {
        "patient_id": patient_id,
        "medication_id": medication_id,
        "quantity": quantity,
        "instructions": "one capsule three times a day"
    }
    payload.update(overrides)
    return client.post("/pharmacy/prescriptions", json=payload, headers=headers)


def bill_and_pay(client, headers, patient_id, prescription_id):
    invoice = client.post(
        "/billing/invoices",
        json={"patient_id": patient_id, "prescription_ids": [prescription_id]},
        headers=headers
    ).json()
    response = client.post(
        f"/billing/invoices/{invoice['id']}/payments",
        json={"amount": invoice["total_amount"], "method": "card"},
        headers=headers
    )
    assert response.status_code == 200, response.text
    return response.json()


class TestInventory:

    def test_create_medication(self, client, admin_headers, medication):
        assert medication["stock"] == 50
        assert medication["stock_status"] == "In Stock"
        assert Decimal(medication["price_per_unit"]) == Decimal("0.80")

    def test_default_reorder_level(self, client, admin_headers):
        response = client.post(
            "/pharmacy/medications",
            json={"name": "Cetirizine", "dosage": "10mg", "price_per_unit": "0.30", "stock": 5},
            headers=admin_headers
        )
        assert response.status_code == 201
        assert response.json()["reorder_level"] == 10
        assert response.json()["stock_status"] == "Low Stock"

    def test_low_stock_listing(self, client, admin_headers, medication):
        client.post(
            "/pharmacy/medications",
            json={"name": "Omeprazole", "dosage": "20mg", "price_per_unit": "1.10", "stock": 0},
            headers=admin_headers
        )

        response = client.get("/pharmacy/medications/low-stock", headers=admin_headers)
        assert [m["name"] for m in response.json()] == ["Omeprazole"]
        assert response.json()[0]["stock_status"] == "Out of Stock"

        response = client.get("/pharmacy/medications", params={"stock_status": "In Stock"}, headers=admin_headers)
        assert [m["name"] for m in response.json()] == ["Amoxicillin"]

    def test_restock_logs_movement(self, client, admin_headers, medication):
        response = client.post(
            f"/pharmacy/medications/{medication['id']}/restock",
            json={"quantity": 25, "supplier": "PharmaDirect"},
            headers=admin_headers
        )
        assert response.status_code == 200
        assert response.json()["stock"] == 75
        assert response.json()["supplier"] == "PharmaDirect"

        response = client.get(f"/pharmacy/medications/{medication['id']}/movements", headers=admin_headers)
        movements = {m["reason"]: m for m in response.json()["movements"]}
        assert set(movements) == {"RESTOCK", "INITIAL_STOCK"}
        assert movements["RESTOCK"]["quantity"] == 25
        assert movements["RESTOCK"]["stock_after"] == 75

    def test_nurse_cannot_edit_inventory(self, client, staff_headers, medication):
        response = client.put(
            f"/pharmacy/medications/{medication['id']}",
            json={"reorder_level": 5},
            headers=staff_headers("Nurse")
        )
        assert response.status_code == 403

    def test_medication_in_use_cannot_be_deleted(self, client, admin_headers, patient, medication):
        prescribe(client, admin_headers, patient["id"], medication["id"])
        response = client.delete(f"/pharmacy/medications/{medication['id']}", headers=admin_headers)
        assert response.status_code == 409


class TestPrescriptions:

    def test_prescription_copies_medication(self, client, admin_headers, patient, medication):
        response = prescribe(client, admin_headers, patient["id"], medication["id"])
        assert response.status_code == 201

        data = response.json()
        assert data["medication_name"] == "Amoxicillin"
        assert data["dosage"] == "250mg"
        assert data["prescribed_by"] == "System Administrator"
        assert data["status"] == "Pending"
        assert data["is_billed"] is False

    def test_zero_quantity_rejected(self, client, admin_headers, patient, medication):
        response = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=0)
        assert response.status_code == 422

    def test_billed_quantity_is_locked(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "prescription_ids": [prescription["id"]]},
            headers=admin_headers
        )

        response = client.put(
            f"/pharmacy/prescriptions/{prescription['id']}",
            json={"quantity": 20},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_cancel(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        response = client.patch(f"/pharmacy/prescriptions/{prescription['id']}/cancel", headers=admin_headers)
        assert response.json()["status"] == "Cancelled"

    def test_cancel_blocked_while_invoiced(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        invoice = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "prescription_ids": [prescription["id"]]},
            headers=admin_headers
        ).json()

        response = client.patch(f"/pharmacy/prescriptions/{prescription['id']}/cancel", headers=admin_headers)
        assert response.status_code == 400
        assert invoice["invoice_number"] in response.json()["detail"]

        client.patch(f"/billing/invoices/{invoice['id']}/cancel", headers=admin_headers)
        response = client.patch(f"/pharmacy/prescriptions/{prescription['id']}/cancel", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelled"


class TestDispensing:

    def test_dispense_decrements_stock(self, client, admin_headers, staff_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=12).json()
        bill_and_pay(client, admin_headers, patient["id"], prescription["id"])

        pharmacist = staff_headers("Pharmacist")
        response = client.patch(f"/pharmacy/dispensing/{prescription['id']}/ready", headers=pharmacist)
        assert response.status_code == 200
        assert response.json()["status"] == "Ready for Pickup"

        response = client.post(f"/pharmacy/dispensing/{prescription['id']}/dispense", headers=pharmacist)
        assert response.status_code == 200

        data = response.json()
        assert data["stock_remaining"] == 38
        assert data["prescription"]["status"] == "Dispensed"
        assert data["prescription"]["dispensed_by"] == "Test Pharmacist"
        assert data["refill_prescription_id"] is None

        medication_now = client.get(f"/pharmacy/medications/{medication['id']}", headers=admin_headers).json()
        assert medication_now["stock"] == 38

        movements = client.get(
            f"/pharmacy/medications/{medication['id']}/movements",
            params={"movement_type": "OUT"},
            headers=admin_headers
        ).json()["movements"]
        assert movements[0]["quantity"] == 12
        assert movements[0]["reference"]["id"] == prescription["id"]

    def test_unpaid_prescription_not_ready(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        response = client.patch(f"/pharmacy/dispensing/{prescription['id']}/ready", headers=admin_headers)
        assert response.status_code == 400

    def test_insufficient_stock(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=60).json()

        response = client.patch(f"/pharmacy/dispensing/{prescription['id']}/fill", headers=admin_headers)
        assert response.status_code == 400
        assert "Insufficient stock" in response.json()["detail"]

    def test_stock_taken_between_ready_and_dispense(self, client, admin_headers, patient, medication):
        first = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=30).json()
        second = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=30).json()
        for prescription in (first, second):
            bill_and_pay(client, admin_headers, patient["id"], prescription["id"])
            client.patch(f"/pharmacy/dispensing/{prescription['id']}/ready", headers=admin_headers)

        assert client.post(f"/pharmacy/dispensing/{first['id']}/dispense", headers=admin_headers).status_code == 200

        response = client.post(f"/pharmacy/dispensing/{second['id']}/dispense", headers=admin_headers)
        assert response.status_code == 400
        assert "Available: 20" in response.json()["detail"]

        # the failed dispense leaves both records untouched
        assert client.get(f"/pharmacy/medications/{medication['id']}", headers=admin_headers).json()["stock"] == 20
        second_now = client.get(f"/pharmacy/prescriptions/{second['id']}", headers=admin_headers).json()
        assert second_now["status"] == "Ready for Pickup"

    def test_second_dispense_rejected(self, client, admin_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"], quantity=12).json()
        bill_and_pay(client, admin_headers, patient["id"], prescription["id"])
        client.patch(f"/pharmacy/dispensing/{prescription['id']}/ready", headers=admin_headers)

        url = f"/pharmacy/dispensing/{prescription['id']}/dispense"
        assert client.post(url, headers=admin_headers).status_code == 200
        response = client.post(url, headers=admin_headers)
        assert response.status_code == 400

        assert client.get(f"/pharmacy/medications/{medication['id']}", headers=admin_headers).json()["stock"] == 38
        movements = client.get(
            f"/pharmacy/medications/{medication['id']}/movements",
            params={"movement_type": "OUT"},
            headers=admin_headers
        ).json()["movements"]
        assert len(movements) == 1

    def test_refill_is_spawned(self, client, admin_headers, patient, medication):
        prescription = prescribe(
            client, admin_headers, patient["id"], medication["id"],
            quantity=5, refillable=True, refills_remaining=2
        ).json()
        bill_and_pay(client, admin_headers, patient["id"], prescription["id"])
        client.patch(f"/pharmacy/dispensing/{prescription['id']}/ready", headers=admin_headers)

        response = client.post(f"/pharmacy/dispensing/{prescription['id']}/dispense", headers=admin_headers)
        refill_id = response.json()["refill_prescription_id"]
        assert refill_id is not None

        refill = client.get(f"/pharmacy/prescriptions/{refill_id}", headers=admin_headers).json()
        assert refill["status"] == "Pending"
        assert refill["refills_remaining"] == 1
        assert refill["payment_status"] == "Pending Payment"

    def test_receptionist_cannot_dispense(self, client, admin_headers, staff_headers, patient, medication):
        prescription = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        response = client.post(
            f"/pharmacy/dispensing/{prescription['id']}/dispense",
            headers=staff_headers("Receptionist")
        )
        assert response.status_code == 403

    def test_queue(self, client, admin_headers, patient, medication):
        kept = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        cancelled = prescribe(client, admin_headers, patient["id"], medication["id"]).json()
        client.patch(f"/pharmacy/prescriptions/{cancelled['id']}/cancel", headers=admin_headers)

        response = client.get("/pharmacy/dispensing/queue", headers=admin_headers)
        assert [p["id"] for p in response.json()] == [kept["id"]]
