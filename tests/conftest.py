"""Shared fixtures: a throwaway SQLite datastore with two tenants."""

import os
import tempfile

import pytest

from sunny.database import Database
from sunny.models import ToolContext


@pytest.fixture
def db():
    with tempfile.NamedTemporaryFile(suffix=".db", delete=False) as f:
        db_path = f.name

    db = Database(f"sqlite:///{db_path}")
    db.create_tables()
    yield db

    db.engine.dispose()
    os.unlink(db_path)


@pytest.fixture
def tenants(db):
    """Two tenants, each with one owner. Returns ``{"a": id, "b": id}``."""
    with db.session_scope() as session:
        a = db.create_tenant(session, name="Golden Hour PJ", phone="555-0100")
        b = db.create_tenant(session, name="Other Studio", phone="555-0199")
        db.add_member(session, a.id, "user-a")
        db.add_member(session, b.id, "user-b")
        ids = {"a": a.id, "b": b.id}
    return ids


@pytest.fixture
def ctx(db, tenants):
    return ToolContext(db=db, tenant_id=tenants["a"], user_id="user-a")
