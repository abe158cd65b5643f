from datetime import date, timedelta

# invoice and payment timestamps are UTC, so ranges straddle today
YESTERDAY = (date.today() - timedelta(days=1)).isoformat()
TOMORROW = (date.today() + timedelta(days=1)).isoformat()
RANGE = {"start_date": YESTERDAY, "end_date": TOMORROW}


def invoice_with_payment(client, headers, patient_id, paid="30.00", method="cash"):
    invoice = client.post(
        "/billing/invoices",
        json={
            "patient_id": patient_id,
            "line_items": [{"description": "Wound care", "quantity": 1, "unit_price": "50.00"}]
        },
        headers=headers
    ).json()
    if paid:
        client.post(
            f"/billing/invoices/{invoice['id']}/payments",
            json={"amount": paid, "method": method},
            headers=headers
        )
    return invoice


class TestSummaryReports:

    def test_summary(self, client, admin_headers, patient, medication):
        invoice_with_payment(client, admin_headers, patient["id"])
        client.post(
            "/billing/invoices",
            json={
                "patient_id": patient["id"],
                "status": "Draft",
                "line_items": [{"description": "Pending estimate", "quantity": 1, "unit_price": "500.00"}]
            },
            headers=admin_headers
        )
        client.post(
            "/appointments",
            json={
                "patient_id": patient["id"],
                "provider_name": "Dr. Okafor",
                "appointment_date": date.today().isoformat(),
                "appointment_time": "09:00",
                "appointment_type": "Follow-up"
            },
            headers=admin_headers
        )

        response = client.get("/reports/summary", params=RANGE, headers=admin_headers)
        assert response.status_code == 200

        data = response.json()
        assert data["invoices"]["count"] == 2
        # drafts never count as billed
        assert data["invoices"]["total_billed"] == 50.0
        assert data["invoices"]["total_collected"] == 30.0
        assert data["invoices"]["outstanding"] == 20.0
        assert data["invoices"]["by_status"] == {"Partially Paid": 1, "Draft": 1}
        assert data["appointments"]["total"] == 1
        assert data["lab_orders"]["average_turnaround_hours"] is None
        assert data["low_stock_count"] == 0

    def test_inverted_range_rejected(self, client, admin_headers):
        response = client.get(
            "/reports/summary",
            params={"start_date": TOMORROW, "end_date": YESTERDAY},
            headers=admin_headers
        )
        assert response.status_code == 400

    def test_revenue(self, client, admin_headers, patient):
        invoice_with_payment(client, admin_headers, patient["id"], paid="50.00", method="card")
        invoice_with_payment(client, admin_headers, patient["id"], paid="10.00", method="cash")

        response = client.get("/reports/revenue", params=RANGE, headers=admin_headers)
        data = response.json()
        assert data["total_invoices"] == 2
        assert data["revenue"] == {"billed": 100.0, "collected": 60.0, "outstanding": 40.0}
        assert data["by_payment_method"] == {"card": 50.0, "cash": 10.0}
        assert sum(day["collected"] for day in data["daily_breakdown"]) == 60.0

    def test_appointment_rates(self, client, admin_headers, patient):
        for slot in ("09:00", "10:00"):
            client.post(
                "/appointments",
                json={
                    "patient_id": patient["id"],
                    "provider_name": "Dr. Okafor",
                    "appointment_date": date.today().isoformat(),
                    "appointment_time": slot,
                    "appointment_type": "Consultation"
                },
                headers=admin_headers
            )
        appointments = client.get("/appointments", headers=admin_headers).json()
        client.patch(
            f"/appointments/{appointments[0]['id']}/status",
            json={"status": "Cancelled"},
            headers=admin_headers
        )

        response = client.get("/reports/appointments", params=RANGE, headers=admin_headers)
        data = response.json()
        assert data["total_appointments"] == 2
        assert data["metrics"]["cancellation_rate"] == 50.0
        assert data["by_day"] == [{"date": date.today().isoformat(), "count": 2}]

    def test_pharmacy_low_stock(self, client, admin_headers, medication):
        client.post(
            "/pharmacy/medications",
            json={"name": "Salbutamol", "dosage": "100mcg", "price_per_unit": "4.50", "stock": 2, "reorder_level": 5},
            headers=admin_headers
        )
        response = client.get("/reports/pharmacy", params=RANGE, headers=admin_headers)
        data = response.json()
        assert [m["name"] for m in data["low_stock"]] == ["Salbutamol"]
        assert data["dispensed_units"] == 0
        assert data["top_dispensed_medications"] == []

    def test_outstanding_invoices(self, client, admin_headers, patient):
        partial = invoice_with_payment(client, admin_headers, patient["id"], paid="20.00")
        invoice_with_payment(client, admin_headers, patient["id"], paid="50.00")
        unpaid = invoice_with_payment(client, admin_headers, patient["id"], paid=None)

        response = client.get("/reports/outstanding-invoices", headers=admin_headers)
        data = response.json()
        assert data["total"] == 2
        assert data["total_outstanding"] == 80.0
        assert {i["id"] for i in data["invoices"]} == {partial["id"], unpaid["id"]}
        assert {i["days_overdue"] for i in data["invoices"]} == {0}


class TestDailySummaries:

    def test_generate_and_list(self, client, admin_headers, patient):
        invoice_with_payment(client, admin_headers, patient["id"])

        response = client.post("/reports/daily-summary", headers=admin_headers)
        assert response.status_code == 200

        stored = response.json()
        assert stored["date"] == date.today().isoformat()
        assert stored["generated_by"] == "System Administrator"
        assert "invoices" in stored

        # regenerating the same day replaces the snapshot
        client.post("/reports/daily-summary", headers=admin_headers)

        response = client.get("/reports/daily-summaries", headers=admin_headers)
        assert response.json()["total_days"] == 1
        assert response.json()["summaries"][0]["date"] == date.today().isoformat()

    def test_specific_date(self, client, admin_headers):
        past = (date.today() - timedelta(days=10)).isoformat()
        response = client.post("/reports/daily-summary", params={"report_date": past}, headers=admin_headers)
        assert response.json()["date"] == past
        assert response.json()["invoices"]["count"] == 0

        response = client.get(
            "/reports/daily-summaries",
            params={"start_date": past, "end_date": past},
            headers=admin_headers
        )
        assert [s["date"] for s in response.json()["summaries"]] == [past]
