from typing import Dict, List

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import select
from sqlalchemy.orm import sessionmaker

from src.core.db import build_engine, get_db, get_session_factory
from src.core.dispatcher_client import DispatchError, DispatchEvent, get_dispatcher
from src.core.security import ROLE_USER, create_access_token
from src.main import app
from src.models import Base
from src.models.scheduled_task import ScheduledTask
from src.services.task_registry import sync_tasks_to_database
from src.tasks.registry import list_definitions


class FakeDispatcher:
    """Records events instead of posting them; set `fail` to simulate an outage."""

    def __init__(self):
        self.events: List[DispatchEvent] = []
        self.fail = False

    def send(self, event: DispatchEvent) -> List[str]:
        if self.fail:
            raise DispatchError("dispatcher unreachable: connection refused")
        self.events.append(event)
        return [f"evt-{len(self.events)}"]


@pytest.fixture
def engine(tmp_path):
    eng = build_engine(f"sqlite:///{tmp_path / 'bizadmin-test.db'}")
    Base.metadata.create_all(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, autocommit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def dispatcher():
    return FakeDispatcher()


@pytest.fixture
def synced(db) -> Dict[str, str]:
    """Sync the registry and return {function_id: row id}."""
    sync_tasks_to_database(db, list_definitions(), code_version="test")
    return {t.function_id: t.id for t in db.execute(select(ScheduledTask)).scalars()}


@pytest.fixture
def client(session_factory, dispatcher):
    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = _get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    try:
        # no context manager: the startup sync must not touch the configured database
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _headers(role: str = ROLE_USER, user_id: str = "user-1") -> Dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user_id, role=role)}"}

    return _headers
