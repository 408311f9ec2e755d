from __future__ import annotations

import datetime as dt
import os
import tempfile
from pathlib import Path
from typing import Generator, List

_TEST_DATA_DIR = Path(tempfile.mkdtemp(prefix="eodreport-tests-"))
os.environ.setdefault("EOD_DATABASE_URL", f"sqlite:///{_TEST_DATA_DIR / 'app.db'}")
os.environ.setdefault("EOD_JSON_DIR", str(_TEST_DATA_DIR / "state"))

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from eodreport import models
from eodreport.database import get_db
from eodreport.main import app
from eodreport.schemas import TaskEntry
from eodreport.state import ConnectionMonitor, LocalConfigState


@pytest.fixture(scope="session")
def temp_db_path() -> Generator[Path, None, None]:
    with tempfile.TemporaryDirectory() as tmpdir:
        path = Path(tmpdir) / "test.db"
        yield path


@pytest.fixture(scope="session")
def engine(temp_db_path: Path):
    url = f"sqlite:///{temp_db_path}"
    engine = create_engine(url, connect_args={"check_same_thread": False}, future=True)

    # Let SQLAlchemy own BEGIN so SAVEPOINTs nest inside the per-test transaction.
    @event.listens_for(engine, "connect")
    def _autocommit_driver(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    models.Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture(scope="function")
def session(engine) -> Generator[Session, None, None]:
    connection = engine.connect()
    transaction = connection.begin()
    # Each commit in the code under test releases a savepoint, so a failed
    # step rolls back only itself and the outer transaction resets the test.
    SessionTesting = sessionmaker(
        bind=connection,
        autoflush=False,
        autocommit=False,
        future=True,
        join_transaction_mode="create_savepoint",
    )
    session = SessionTesting()
    try:
        yield session
    finally:
        session.close()
        transaction.rollback()
        connection.close()


@pytest.fixture()
def local_config(tmp_path: Path) -> LocalConfigState:
    state = LocalConfigState(tmp_path / "eod-config.json")
    state.load()
    return state


@pytest.fixture(scope="function")
def client(session: Session, local_config: LocalConfigState) -> Generator[TestClient, None, None]:
    def override_get_db():
        try:
            yield session
        finally:
            session.close()

    previous_config = app.state.local_config
    previous_monitor = app.state.connection_monitor
    app.state.local_config = local_config
    app.state.connection_monitor = ConnectionMonitor()
    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()
    app.state.local_config = previous_config
    app.state.connection_monitor = previous_monitor


@pytest.fixture()
def sample_day() -> dt.date:
    return dt.date(2024, 1, 15)


@pytest.fixture()
def sample_tasks() -> List[TaskEntry]:
    return [
        TaskEntry(name="Fix login redirect", time=1.5, status="Completed"),
        TaskEntry(name="Review invoices", time=2.25, status="In Progress"),
        TaskEntry(name="Standup", time=0.25, status="Completed"),
    ]
