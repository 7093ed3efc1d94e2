"""API tests. The service is overridden with an in-memory store; no Neo4j needed."""

from concurrent.futures import ThreadPoolExecutor

import pytest
from fastapi.testclient import TestClient

from api.main import app, get_service
from contact_identity.application import IdentityService, PersistenceError
from contact_identity.infrastructure import InMemoryContactRepository


@pytest.fixture
def repo():
    return InMemoryContactRepository()


@pytest.fixture
def client(repo):
    service = IdentityService(repo)
    app.dependency_overrides[get_service] = lambda: service
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def test_health(client):
    r = client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}


def test_identify_creates_primary(client):
    r = client.post(
        "/identify", json={"email": "lorraine@hillvalley.edu", "phoneNumber": "123456"}
    )
    assert r.status_code == 200
    assert r.json() == {
        "contact": {
            "primaryContactId": 1,
            "emails": ["lorraine@hillvalley.edu"],
            "phoneNumbers": ["123456"],
            "secondaryContactIds": [],
        }
    }


def test_identify_accepts_numeric_phone(client):
    client.post("/identify", json={"email": "mcfly@hillvalley.edu", "phoneNumber": 123456})
    r = client.post("/identify", json={"phoneNumber": "123456"})
    assert r.status_code == 200
    assert r.json()["contact"]["phoneNumbers"] == ["123456"]
    assert r.json()["contact"]["secondaryContactIds"] == []


def test_identify_merges_groups(client):
    client.post("/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "919191"})
    client.post("/identify", json={"email": "biffsucks@hillvalley.edu", "phoneNumber": "717171"})

    r = client.post(
        "/identify", json={"email": "george@hillvalley.edu", "phoneNumber": "717171"}
    )

    assert r.status_code == 200
    assert r.json()["contact"] == {
        "primaryContactId": 1,
        "emails": ["george@hillvalley.edu", "biffsucks@hillvalley.edu"],
        "phoneNumbers": ["919191", "717171"],
        "secondaryContactIds": [2],
    }


@pytest.mark.parametrize(
    "body", [{}, {"email": None, "phoneNumber": None}, {"email": "", "phoneNumber": " "}]
)
def test_identify_without_email_or_phone_is_400(client, repo, body):
    r = client.post("/identify", json=body)
    assert r.status_code == 400
    assert "email or phoneNumber" in r.json()["detail"]
    assert repo.list_all() == []


def test_identify_rejects_malformed_body(client):
    r = client.post("/identify", json={"email": ["not", "a", "string"]})
    assert r.status_code == 422


def test_store_failure_is_500(client, repo, monkeypatch):
    def fail(criteria):
        raise PersistenceError("Could not find contacts: connection refused")

    monkeypatch.setattr(repo, "find_contacts", fail)
    r = client.post("/identify", json={"email": "doc@hillvalley.edu"})
    assert r.status_code == 500
    assert r.json() == {"detail": "Could not find contacts: connection refused"}


def test_memory_store_from_environment(monkeypatch):
    monkeypatch.setenv("CONTACT_STORE", "memory")
    monkeypatch.setenv("PHONE_NORMALIZATION", "e164")
    monkeypatch.setenv("PHONE_DEFAULT_REGION", "US")
    with TestClient(app) as client:
        first = client.post("/identify", json={"phoneNumber": "+1 202 555 1234"})
        second = client.post("/identify", json={"phoneNumber": "(202) 555-1234"})
    assert first.json() == second.json()
    assert first.json()["contact"]["phoneNumbers"] == ["+12025551234"]


def test_concurrent_first_requests_share_one_store(monkeypatch):
    monkeypatch.setenv("CONTACT_STORE", "memory")
    monkeypatch.delenv("PHONE_NORMALIZATION", raising=False)
    with TestClient(app) as client:
        assert isinstance(app.state.service, IdentityService)
        with ThreadPoolExecutor(max_workers=8) as pool:
            responses = list(
                pool.map(
                    lambda i: client.post(
                        "/identify", json={"email": f"user{i}@example.com"}
                    ),
                    range(8),
                )
            )
        again = client.post("/identify", json={"email": "user0@example.com"})

    ids = sorted(r.json()["contact"]["primaryContactId"] for r in responses)
    assert ids == list(range(1, 9))
    assert again.json() == responses[0].json()
    assert app.state.service is None


def test_unknown_store_kind_fails_startup(monkeypatch):
    monkeypatch.setenv("CONTACT_STORE", "postgres")
    with pytest.raises(RuntimeError):
        with TestClient(app):
            pass
