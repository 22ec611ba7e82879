# tests/conftest.py
"""Shared fixtures: an isolated app environment and a controllable clock."""

import sys
import os
import tempfile
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

# Must be set before the app module is imported
_DATA_DIR = tempfile.mkdtemp(prefix="arrival-board-tests-")
os.environ["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
os.environ["DATA_PERSISTENCE_FILE"] = os.path.join(_DATA_DIR, "vehicles-data.json")
os.environ["SCHEDULER_ENABLED"] = "false"
os.environ["DEPLOYMENT_ENV"] = "testing"
os.environ["WTF_CSRF_ENABLED"] = "false"

import pytest
from datetime import datetime, timedelta

from vehicle_store import VehicleStore


class FakeClock:
    def __init__(self, start=None):
        self.now = start or datetime(2026, 3, 2, 8, 0)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(clock):
    return VehicleStore(clock=clock)


@pytest.fixture
def flask_app():
    from main import app
    from app import db, store as app_store
    from models import AdminSettings

    app.config["TESTING"] = True
    app_store.replace_all([])
    with app.app_context():
        AdminSettings.query.delete()
        db.session.commit()
    yield app


@pytest.fixture
def client(flask_app):
    return flask_app.test_client()


@pytest.fixture
def admin_client(client):
    # No PIN configured yet, so any PIN is accepted
    response = client.post("/api/verify-pin", json={"pin": "0000"})
    assert response.status_code == 200
    return client
