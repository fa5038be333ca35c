"""
Fixtures for API tests: an application wired to the per-test database and
a scripted classification engine.
"""

import pytest
from fastapi.testclient import TestClient

from inbox_triage.api.app import create_app


@pytest.fixture
def client(db, make_engine, payload):
    """
    TestClient around a fresh app.

    The engine answers with a confident classification by default; tests can
    swap it with ``client.app.state.engine = make_engine(...)``.
    """
    app = create_app()
    app.state.db = db
    app.state.engine = make_engine(payload(confidence=0.9))

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def headers(user):
    return {"X-User-Id": user.id}
