STAFF_PASSWORD = "staffpass123"


def login(client, username: str, password: str) -> dict:
    response = client.post("/auth/login", json={"username": username, "password": password})
    assert response.status_code == 200, response.text
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


def patient_payload(**overrides) -> dict:
    payload = {
        "first_name": "Grace",
        "last_name": "Mensah",
        "gender": "Female",
        "date_of_birth": "1984-03-12",
        "contact_number": "555-0101",
        "email": "grace.mensah@example.com",
        "address": {
            "line1": "12 Main Street",
            "city": "Springfield",
            "state": "IL",
            "postal_code": "62701"
        },
        "allergies": ["Penicillin"]
    }
    payload.update(overrides)
    return payload
