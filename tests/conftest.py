import os
import tempfile
from datetime import datetime, timedelta, timezone

# Keep the suite away from the real data/ and logs/ directories
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("AUDIT_LOG_DIR", tempfile.mkdtemp(prefix="creditbook-audit-"))

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session

from creditbook.core.rate_limit import limiter
from creditbook.db.engine import build_engine, create_db_and_tables, get_session
from creditbook.db.store import DocumentStore
from creditbook.main import app
from creditbook.services import ledger_service
from creditbook.services.ledger_service import LedgerService


@pytest.fixture
def engine():
    engine = build_engine("sqlite://")
    create_db_and_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture
def store(session):
    return DocumentStore(session)


@pytest.fixture
def service(store):
    return LedgerService(store)


@pytest.fixture
def clock(monkeypatch):
    """Deterministic, strictly increasing ledger clock (one second per tick)."""
    state = {"now": datetime(2026, 1, 1, 9, 0, 0, tzinfo=timezone.utc)}

    def tick():
        state["now"] += timedelta(seconds=1)
        return state["now"]

    monkeypatch.setattr(ledger_service, "utcnow", tick)
    return state


@pytest.fixture
def api(engine):
    def override_session():
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_session
    limiter.enabled = False
    try:
        yield TestClient(app)
    finally:
        limiter.enabled = True
        app.dependency_overrides.clear()
