import base64

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from recipebook.main import app
from recipebook.db import Base, get_db
from recipebook.deps import get_blob_store, get_token_codec, limiter
from recipebook.core.gate import AuthorizationGate
from recipebook.core.tokens import TokenCodec
from recipebook.services.metadata import MetadataStore
from recipebook.services.recipes import RecipePersistenceEngine
from recipebook.storage.blobs import LocalBlobStore

# --- Test Database Setup ---

SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # one shared connection so every session sees the same in-memory DB
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# HS512 wants at least 64 bytes of key
TEST_SIGNING_KEY = b"recipebook-test-signing-key-" + b"x" * 64

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def setup_database():
    """Create tables before each test, drop after."""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def codec():
    return TokenCodec(TEST_SIGNING_KEY)


@pytest.fixture
def gate(codec):
    return AuthorizationGate(codec)


@pytest.fixture
def blob_store(tmp_path):
    return LocalBlobStore(tmp_path / "blobs")


@pytest.fixture
def client(codec, blob_store):
    """Test client with DB, blob store and signing key overridden."""
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_token_codec] = lambda: codec
    app.dependency_overrides[get_blob_store] = lambda: blob_store
    limiter.enabled = False
    with TestClient(app) as c:
        yield c
    limiter.enabled = True
    app.dependency_overrides.clear()


@pytest.fixture
def db_session():
    """Direct database session for setup."""
    session = TestingSessionLocal()
    yield session
    session.close()


@pytest.fixture
def metadata(db_session):
    return MetadataStore(db_session)


@pytest.fixture
def recipe_engine(metadata, blob_store, gate):
    return RecipePersistenceEngine(metadata, blob_store, gate)


import fakeredis
import fakeredis.aioredis
from recipebook.infra import redis_client


@pytest.fixture(autouse=True)
def mock_redis():
    server = fakeredis.FakeServer()
    redis_client._redis_async = fakeredis.aioredis.FakeRedis(server=server, decode_responses=True)
    yield redis_client._redis_async
    redis_client._redis_async = None


# --- Helpers ---

def register(client, name, password="correct-horse"):
    resp = client.post("/api/users", json={"username": name, "password": password})
    assert resp.status_code == 201, resp.text
    return resp.json()


def login_headers(client, name, password="correct-horse"):
    resp = client.post("/api/users/login", json={"username": name, "password": password})
    assert resp.status_code == 200, resp.text
    return {"Authorization": f"Bearer {resp.json()['access_token']}"}


def recipe_payload(name="Pancakes", **overrides):
    payload = {
        "name": name,
        "description": "Fluffy breakfast pancakes",
        "preparation_time": 600,
        "cooking_time": 900,
        "ingredients": [
            {"name": "flour", "quantity": {"grams": 200}},
            {"name": "milk", "quantity": {"liters": 0.3}},
            {"name": "eggs", "quantity": {"count": 2}},
        ],
        "steps": ["Mix everything", "Fry in a hot pan"],
    }
    payload.update(overrides)
    return payload


def png_base64():
    return base64.b64encode(PNG_BYTES).decode("ascii")
