"""
Shared fixtures: a file-backed SQLite database per test, user/project
factories and an API client with the database dependency overridden.
"""
from datetime import datetime, timedelta
from itertools import count
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.auth import create_access_token, hash_password
from app.database import Base, get_db
from app.dependencies import get_storage
from app.main import app
from app.models.db_models import (
    ProjectCategory, ProjectDB, ProjectState, UserDB, UserRole,
)
from app.services.storage import LocalObjectStorage

PASSWORD = "password123"
PASSWORD_HASH = hash_password(PASSWORD)

_sequence = count()


@pytest.fixture
def engine(tmp_path):
    """File database so concurrent sessions see each other's commits."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'registry.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture
def make_user(db):
    """Create a user; registration order follows call order."""
    def _make_user(role=UserRole.PROJECT_AUTHORITY, name=None, email=None, jurisdiction=None, specializations=None):
        n = next(_sequence)
        user = UserDB(
            id=str(uuid4()),
            email=email or f"user{n}@example.com",
            name=name or f"User {n}",
            password_hash=PASSWORD_HASH,
            role=role,
            jurisdiction=jurisdiction,
            specializations=specializations or [],
            created_at=datetime(2024, 1, 1) + timedelta(minutes=n),
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture
def admin(make_user):
    return make_user(UserRole.ADMIN, name="Admin")


@pytest.fixture
def authority(make_user):
    return make_user(UserRole.PROJECT_AUTHORITY, name="Authority")


@pytest.fixture
def officer(make_user):
    return make_user(UserRole.OFFICER, name="Officer", jurisdiction="Pune", specializations=["forestry"])


@pytest.fixture
def make_project(db):
    """Insert a project directly in a given state, bypassing the workflow."""
    def _make_project(authority, officer=None, state=ProjectState.PENDING, **fields):
        n = next(_sequence)
        values = {
            "name": f"Project {n}",
            "description": "Mangrove restoration",
            "category": ProjectCategory.FORESTRY,
            "city": "Pune",
            "region": "Maharashtra",
            "country": "India",
            "land_area": 120.0,
            "land_area_unit": "ha",
            "estimated_credits": 1000.0,
        }
        values.update(fields)
        project = ProjectDB(
            id=str(uuid4()),
            authority_id=authority.id,
            assigned_officer_id=officer.id if officer else None,
            state=state,
            documents=[],
            images=[],
            created_at=datetime(2024, 1, 1) + timedelta(minutes=n),
            **values,
        )
        db.add(project)
        db.commit()
        db.refresh(project)
        return project
    return _make_project


@pytest.fixture
def client(session_factory, tmp_path):
    def override_get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    storage = LocalObjectStorage(root=str(tmp_path / "uploads"), base_url="/uploads")
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_storage] = lambda: storage
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    def _auth_headers(user: UserDB) -> dict:
        token = create_access_token(user.id, user.email, user.role)
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers
