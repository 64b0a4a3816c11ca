# tests/conftest.py
from datetime import datetime, timezone

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import create_engine

import db
from workflow.transitions import StatusStateMachine

from tests.fakes import RecordingDispatcher

NOW = datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


@pytest.fixture
def engine():
    eng = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    db.init_db(eng)
    yield eng
    eng.dispose()


@pytest.fixture
def store(engine):
    return db.SqlWorkItemStore(engine)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def machine(store, dispatcher):
    return StatusStateMachine(store, dispatcher, clock=lambda: NOW)


@pytest.fixture
def users(engine):
    alice = db.get_or_create_user("alice@example.com", "Alice", bind=engine)
    bob = db.get_or_create_user("bob@example.com", "Bob", bind=engine)
    carol = db.get_or_create_user("carol@example.com", "Carol", bind=engine)
    return alice.id, bob.id, carol.id


@pytest.fixture
def project_id(engine):
    return db.create_project("Website relaunch", bind=engine)
