"""Shared fixtures: a fake transform engine and an in-memory audit database."""

import os
import sys

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fhir_bridge.api.routes import get_gateway, get_shr_client, get_signing_service
from fhir_bridge.etl.gateway import TransformGateway
from fhir_bridge.main import app
from fhir_bridge.models.database import Base, get_db
from fhir_bridge.services.shr_client import SHRClient
from fhir_bridge.services.signing import SigningService

FAKE_ENGINE = os.path.join(os.path.dirname(os.path.abspath(__file__)), "fake_engine.py")
TEST_SECRET = "test-download-secret"


@pytest.fixture
def staging_dir(tmp_path):
    path = tmp_path / "staging"
    path.mkdir()
    return path


@pytest.fixture
def engine_command():
    return [sys.executable, FAKE_ENGINE]


@pytest.fixture
def gateway(engine_command, staging_dir):
    return TransformGateway(engine_command, timeout=5.0, tmp_dir=str(staging_dir))


@pytest.fixture
def db_session():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


@pytest.fixture
def client(db_session, gateway):
    def _db():
        yield db_session

    app.dependency_overrides[get_db] = _db
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_signing_service] = lambda: SigningService(TEST_SECRET)
    app.dependency_overrides[get_shr_client] = lambda: SHRClient("https://shr.example.test")
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
