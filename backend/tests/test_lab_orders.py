from datetime import date
from decimal import Decimal

import fakeredis

from frontoffice import redis_client


def place_order(client, headers, patient_id, tests=None):
    return client.post(
        "/lab/orders",
        json={
            "patient_id": patient_id,
            "ordering_doctor": "Dr. Okafor",
            "clinical_notes": "fatigue, rule out anaemia",
            "tests": tests or [
                {"name": "Complete Blood Count", "price": "25.00"},
                {"name": "Ferritin", "price": "30.00", "unit": "ng/mL"}
            ]
        },
        headers=headers
    )


class TestLabOrders:

    def test_place_order_numbers_are_sequential(self, client, admin_headers, patient):
        first = place_order(client, admin_headers, patient["id"])
        second = place_order(client, admin_headers, patient["id"])
        assert first.status_code == 201

        today = date.today()
        prefix = f"LAB{today.year}-{today.month:02d}-"
        assert first.json()["order_number"] == f"{prefix}00001"
        assert second.json()["order_number"] == f"{prefix}00002"
        assert first.json()["status"] == "Pending Sample"
        assert [t["status"] for t in first.json()["tests"]] == ["Pending Result", "Pending Result"]

    def test_order_needs_tests(self, client, admin_headers, patient):
        response = client.post(
            "/lab/orders",
            json={"patient_id": patient["id"], "ordering_doctor": "Dr. Okafor", "tests": []},
            headers=admin_headers
        )
        assert response.status_code == 422

    def test_full_workflow(self, client, admin_headers, staff_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        order_id = order["id"]
        test_ids = [t["id"] for t in order["tests"]]

        response = client.patch(f"/lab/orders/{order_id}/collect-sample", json={}, headers=admin_headers)
        assert response.json()["status"] == "Sample Collected"
        assert response.json()["sample_collector"] == "System Administrator"

        response = client.patch(f"/lab/orders/{order_id}/processing", headers=admin_headers)
        assert response.json()["status"] == "Processing"

        # one result in, still processing
        response = client.put(
            f"/lab/orders/{order_id}/results",
            json={"results": [{"test_id": test_ids[0], "result": "Hb 13.2 g/dL"}]},
            headers=admin_headers
        )
        assert response.json()["status"] == "Processing"

        response = client.put(
            f"/lab/orders/{order_id}/results",
            json={"results": [{"test_id": test_ids[1], "result": "85", "reference_range": "30-400"}]},
            headers=admin_headers
        )
        assert response.json()["status"] == "Awaiting Verification"

        lab_headers = staff_headers("Lab Technician")
        response = client.patch(f"/lab/orders/{order_id}/verify", headers=lab_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "Results Ready"
        assert response.json()["verified_by"] == "Test Lab Technician"
        assert response.json()["verification_date"] is not None

    def test_results_before_sample_rejected(self, client, admin_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        response = client.put(
            f"/lab/orders/{order['id']}/results",
            json={"results": [{"test_id": order["tests"][0]["id"], "result": "normal"}]},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_result_for_foreign_test_rejected(self, client, admin_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        client.patch(f"/lab/orders/{order['id']}/collect-sample", json={}, headers=admin_headers)
        response = client.put(
            f"/lab/orders/{order['id']}/results",
            json={"results": [{"test_id": 9999, "result": "normal"}]},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_receptionist_cannot_verify(self, client, admin_headers, staff_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        response = client.patch(f"/lab/orders/{order['id']}/verify", headers=staff_headers("Receptionist"))
        assert response.status_code == 403

    def test_cancel_order(self, client, admin_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        response = client.patch(f"/lab/orders/{order['id']}/cancel", headers=admin_headers)
        assert response.status_code == 200
        assert response.json()["status"] == "Cancelled"
        assert {t["status"] for t in response.json()["tests"]} == {"Cancelled"}

        response = client.patch(f"/lab/orders/{order['id']}/cancel", headers=admin_headers)
        assert response.status_code == 400

    def test_list_filters_by_status(self, client, admin_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        place_order(client, admin_headers, patient["id"])
        client.patch(f"/lab/orders/{order['id']}/collect-sample", json={}, headers=admin_headers)

        response = client.get("/lab/orders", params={"status": "Sample Collected"}, headers=admin_headers)
        assert [o["id"] for o in response.json()] == [order["id"]]

    def test_numbering_continues_when_counters_are_lost(self, client, admin_headers, patient):
        place_order(client, admin_headers, patient["id"])
        place_order(client, admin_headers, patient["id"])

        # a fresh Redis holds no counters
        redis_client._redis_client = fakeredis.FakeAsyncRedis(decode_responses=True)

        response = place_order(client, admin_headers, patient["id"])
        assert response.status_code == 201
        assert response.json()["order_number"].endswith("-00003")

    def test_cancel_blocked_while_invoiced(self, client, admin_headers, patient):
        order = place_order(client, admin_headers, patient["id"]).json()
        invoice = client.post(
            "/billing/invoices",
            json={"patient_id": patient["id"], "lab_order_ids": [order["id"]]},
            headers=admin_headers
        ).json()

        response = client.patch(f"/lab/orders/{order['id']}/cancel", headers=admin_headers)
        assert response.status_code == 400
        assert invoice["invoice_number"] in response.json()["detail"]

        client.patch(f"/billing/invoices/{invoice['id']}/cancel", headers=admin_headers)
        response = client.patch(f"/lab/orders/{order['id']}/cancel", headers=admin_headers)
        assert response.status_code == 200


class TestCatalogPrices:

    def test_price_taken_from_catalog(self, client, admin_headers, patient):
        client.post("/pricing/lab-tests", json={"name": "Lipid Panel", "price": "40.00"}, headers=admin_headers)

        response = place_order(client, admin_headers, patient["id"], tests=[{"name": "lipid panel"}])
        assert response.status_code == 201
        test = response.json()["tests"][0]
        assert test["name"] == "Lipid Panel"
        assert Decimal(test["price"]) == Decimal("40.00")

    def test_given_price_overrides_catalog(self, client, admin_headers, patient):
        client.post("/pricing/lab-tests", json={"name": "Lipid Panel", "price": "40.00"}, headers=admin_headers)

        response = place_order(client, admin_headers, patient["id"], tests=[{"name": "Lipid Panel", "price": "35.00"}])
        assert Decimal(response.json()["tests"][0]["price"]) == Decimal("35.00")

    def test_unpriced_test_rejected(self, client, admin_headers, patient):
        response = place_order(client, admin_headers, patient["id"], tests=[{"name": "Vitamin D"}])
        assert response.status_code == 400
        assert "Vitamin D" in response.json()["detail"]

    def test_inactive_catalog_entry_ignored(self, client, admin_headers, patient):
        entry = client.post(
            "/pricing/lab-tests", json={"name": "Vitamin D", "price": "55.00"}, headers=admin_headers
        ).json()
        client.put(f"/pricing/lab-tests/{entry['id']}", json={"is_active": False}, headers=admin_headers)

        response = place_order(client, admin_headers, patient["id"], tests=[{"name": "Vitamin D"}])
        assert response.status_code == 400
