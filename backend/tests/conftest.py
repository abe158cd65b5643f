import os
from pathlib import Path

import pytest
import fakeredis
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

TEST_DB_PATH = Path("./test_frontoffice.db")

# Settings are read at import time, so the environment has to be in place first
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{TEST_DB_PATH}"
os.environ["MONGO_URL"] = "mongodb://localhost:27017"
os.environ["REDIS_URL"] = "redis://localhost:6379/0"
os.environ["SECRET_KEY"] = "test-secret-key-not-for-production"

from frontoffice import mongo_client, redis_client  # noqa: E402
from frontoffice.config import settings  # noqa: E402
from frontoffice.main import app  # noqa: E402
from tests.utils import STAFF_PASSWORD, login, patient_payload  # noqa: E402


@pytest.fixture
def client():
    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()

    mongo_client._mongo_db = AsyncMongoMockClient()["test_front_office"]
    redis_client._redis_client = fakeredis.FakeAsyncRedis(decode_responses=True)

    # entering the context runs startup: tables, bootstrap admin, mongo indexes
    with TestClient(app, base_url="http://testserver") as test_client:
        yield test_client

    if TEST_DB_PATH.exists():
        TEST_DB_PATH.unlink()


@pytest.fixture
def admin_headers(client):
    return login(client, settings.FIRST_ADMIN_USERNAME, settings.FIRST_ADMIN_PASSWORD)


@pytest.fixture
def staff_headers(client, admin_headers):
    """Factory: create a staff account with the given role and return its auth headers"""
    def _make(role: str, username: str = None) -> dict:
        username = username or role.lower().replace(" ", "_")
        response = client.post(
            "/users",
            json={
                "username": username,
                "email": f"{username}@frontoffice-hospital.org",
                "full_name": f"Test {role}",
                "role": role,
                "password": STAFF_PASSWORD
            },
            headers=admin_headers
        )
        assert response.status_code == 201, response.text
        return login(client, username, STAFF_PASSWORD)

    return _make


@pytest.fixture
def patient(client, admin_headers):
    response = client.post("/patients", json=patient_payload(), headers=admin_headers)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def medication(client, admin_headers):
    response = client.post(
        "/pharmacy/medications",
        json={
            "name": "Amoxicillin",
            "dosage": "250mg",
            "category": "Antibiotic",
            "supplier": "MedSupply Co",
            "price_per_unit": "0.80",
            "stock": 50,
            "reorder_level": 10
        },
        headers=admin_headers
    )
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def ward(client, admin_headers):
    response = client.post(
        "/wards",
        json={
            "name": "General Medicine",
            "description": "Adult medical admissions",
            "per_diem_rate": "180.00",
            "bed_count": 3
        },
        headers=admin_headers
    )
    assert response.status_code == 201, response.text
    return response.json()
