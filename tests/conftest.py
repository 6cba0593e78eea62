# tests/conftest.py
import os

# Must be set before the app is imported: config is read at import time
os.environ["IS_TESTING"] = "true"
os.environ["APP_ENV"] = "testing"
os.environ.setdefault("DATABASE_URL", "sqlite://")

from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel

# Import your app and key dependencies
from main import app
from app.database import build_engine
from app.dependencies import get_session
from app.models import Box, Freezer, Rack, User, UserRole
from app.utils.security import get_password_hash, create_access_token

# In-memory SQLite database (fast & disposable), one shared connection
engine = build_engine("sqlite://")

PASSWORD = "password123"

@pytest.fixture(name="session")
def session_fixture():
    """Creates fresh tables for a test and drops them afterwards."""
    SQLModel.metadata.create_all(engine)
    with Session(engine) as session:
        yield session
    SQLModel.metadata.drop_all(engine)

@pytest.fixture(name="client")
def client_fixture(session: Session):
    """
    Returns a TestClient that forces the app to use our TEST database
    instead of the one configured for the server.
    """
    # OVERRIDE the get_session dependency to use our in-memory DB
    def get_session_override():
        return session

    app.dependency_overrides[get_session] = get_session_override
    client = TestClient(app)
    yield client

    # Clean up overrides
    app.dependency_overrides.clear()

def _make_user(session: Session, email: str, name: str, role: UserRole) -> User:
    user = User(email=email, name=name, hashed_password=get_password_hash(PASSWORD), role=role)
    session.add(user)
    session.commit()
    session.refresh(user)
    return user

def _token_for(user: User) -> str:
    return create_access_token({"sub": str(user.id), "role": user.role})

@pytest.fixture(name="admin_user")
def admin_user_fixture(session):
    return _make_user(session, "admin@test.lab", "Admin", UserRole.ADMIN)

@pytest.fixture(name="admin_token")
def admin_token_fixture(admin_user):
    return _token_for(admin_user)

@pytest.fixture(name="operator_token")
def operator_token_fixture(session):
    return _token_for(_make_user(session, "operator@test.lab", "Operator", UserRole.OPERATOR))

@pytest.fixture(name="viewer_token")
def viewer_token_fixture(session):
    return _token_for(_make_user(session, "viewer@test.lab", "Viewer", UserRole.VIEWER))

@pytest.fixture
def admin_headers(admin_token):
    return {"Authorization": f"Bearer {admin_token}"}

@pytest.fixture
def operator_headers(operator_token):
    return {"Authorization": f"Bearer {operator_token}"}

@pytest.fixture
def viewer_headers(viewer_token):
    return {"Authorization": f"Bearer {viewer_token}"}

@pytest.fixture(name="storage")
def storage_fixture(session):
    """Freezer F1 -> rack R1 -> box B1 with a 5x5 grid."""
    freezer = Freezer(name="F1", location="Lab A", temperature="-80°C")
    rack = Rack(name="R1", freezer=freezer)
    box = Box(name="B1", rows=5, cols=5, rack=rack)
    session.add(box)
    session.commit()
    for obj in (freezer, rack, box):
        session.refresh(obj)
    return SimpleNamespace(freezer=freezer, rack=rack, box=box)
