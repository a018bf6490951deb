"""
Shared pytest fixtures.

Uses a file-backed SQLite database so no Postgres is required for tests.
Every test gets its own organization, so tests never see each other's rows.
"""
import os

SQLITE_URL = "sqlite:///./test_analytics.db"
os.environ.setdefault("DATABASE_URL", SQLITE_URL)
os.environ.setdefault("APP_ENV", "test")

import uuid
from datetime import date, datetime
from typing import Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.db.base import Base, get_db, get_session_factory
from app.main import app
from app.models import Checkin, Organization, Shoutout, Team, User, Vacation, Win

engine = create_engine(SQLITE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


def override_get_session_factory():
    return TestingSessionLocal


@pytest.fixture(scope="session", autouse=True)
def create_tables():
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture()
def session_factory():
    return TestingSessionLocal


@pytest.fixture()
def client(db):
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = override_get_session_factory
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Data builders
# ---------------------------------------------------------------------------

class Seed:
    """Writes rows for one organization. Ids are prefixed so tests stay isolated."""

    def __init__(self, db, org: Organization):
        self.db = db
        self.org = org

    @property
    def org_id(self) -> str:
        return self.org.id

    def _id(self, name: str) -> str:
        return f"{self.org.id}:{name}"

    def team(self, name: str, leader: Optional[str] = None) -> Team:
        team = Team(
            id=self._id(name),
            organization_id=self.org.id,
            name=name,
            leader_id=self._id(leader) if leader else None,
        )
        self.db.add(team)
        self.db.commit()
        return team

    def user(self, name: str, team: Optional[str] = None, active: bool = True) -> User:
        user = User(
            id=self._id(name),
            organization_id=self.org.id,
            team_id=self._id(team) if team else None,
            name=name,
            is_active=active,
        )
        self.db.add(user)
        self.db.commit()
        return user

    def checkin(
        self,
        user: str,
        week_of: date,
        mood: int = 3,
        submitted_at: Optional[datetime] = None,
        reviewed_by: Optional[str] = None,
        reviewed_at: Optional[datetime] = None,
        complete: bool = True,
    ) -> Checkin:
        checkin = Checkin(
            organization_id=self.org.id,
            user_id=self._id(user),
            week_of=week_of,
            overall_mood=mood,
            is_complete=complete,
            submitted_at=submitted_at,
            reviewed_by=self._id(reviewed_by) if reviewed_by else None,
            reviewed_at=reviewed_at,
        )
        self.db.add(checkin)
        self.db.commit()
        return checkin

    def shoutout(self, sender: str, recipient: str, at: datetime, public: bool = True) -> Shoutout:
        shoutout = Shoutout(
            organization_id=self.org.id,
            from_user_id=self._id(sender),
            to_user_id=self._id(recipient),
            is_public=public,
            created_at=at,
        )
        self.db.add(shoutout)
        self.db.commit()
        return shoutout

    def win(self, user: str, at: datetime) -> Win:
        win = Win(organization_id=self.org.id, user_id=self._id(user), created_at=at)
        self.db.add(win)
        self.db.commit()
        return win

    def vacation(self, user: str, week_of: date, created_at: Optional[datetime] = None) -> Vacation:
        vacation = Vacation(organization_id=self.org.id, user_id=self._id(user), week_of=week_of)
        if created_at is not None:
            vacation.created_at = created_at
        self.db.add(vacation)
        self.db.commit()
        return vacation


@pytest.fixture()
def seed(db):
    """A fresh organization due Friday 17:00 UTC."""
    org = Organization(id=f"org-{uuid.uuid4().hex[:12]}", name="Acme")
    db.add(org)
    db.commit()
    return Seed(db, org)


@pytest.fixture()
def make_seed(db):
    def _make(**org_fields) -> Seed:
        org = Organization(id=f"org-{uuid.uuid4().hex[:12]}", name="Acme", **org_fields)
        db.add(org)
        db.commit()
        return Seed(db, org)
    return _make
