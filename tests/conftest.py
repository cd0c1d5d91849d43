import pytest
from fastapi.testclient import TestClient
from mongomock_motor import AsyncMongoMockClient

from main import create_app
from utils.config import Settings


@pytest.fixture
def settings():
    return Settings(
        access_token_secret="test-secret",
        stripe_secret_key="sk_test_123",
        cors_origins=["http://testserver"],
        default_post_limit=5,
    )


@pytest.fixture
def db():
    return AsyncMongoMockClient()["ama_test"]


@pytest.fixture
def client(settings, db):
    with TestClient(create_app(settings, db=db)) as c:
        yield c


@pytest.fixture
def add_post(client):
    """Create a post through the API and return its id"""
    def _add_post(title="How do I learn Python?", tag="python", email="author@example.com", **extra):
        body = {
            "authorName": "Author",
            "authorEmail": email,
            "title": title,
            "tag": tag,
            "description": "Looking for **good** resources.",
        }
        body.update(extra)
        response = client.post("/add-post", json=body)
        assert response.status_code == 200, response.text
        return response.json()["insertedId"]
    return _add_post


@pytest.fixture
def login(client):
    def _login(email="reader@example.com"):
        response = client.post("/jwt", json={"email": email})
        assert response.status_code == 200
        return response
    return _login
