"""
Pytest configuration and shared fixtures for testing the Office Space API.
"""
import os

os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from pybreaker import CircuitBreaker
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from officespace import models
from officespace.database import Base, create_db_engine
from officespace.deps import get_db, get_lock_provider, get_notifier, get_password_hash
from officespace.locks import MemoryLockProvider
from officespace.main import app
from officespace.notifications import Notifier


# Use an in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_db_engine(SQLALCHEMY_DATABASE_URL, poolclass=StaticPool)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

PASSWORD = "secret-password"


@pytest.fixture(scope="function")
def db_session():
    """
    Create a fresh database session for each test.
    """
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def notifier():
    """
    Notifier writing to the test database, with its own circuit breaker.
    """
    return Notifier(
        TestingSessionLocal,
        breaker=CircuitBreaker(fail_max=5, reset_timeout=60, name="test_notifications"),
    )


@pytest.fixture
def lock_provider():
    return MemoryLockProvider()


@pytest.fixture(scope="function")
def client(db_session, notifier, lock_provider):
    """
    Create a test client with the test database.
    """
    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_notifier] = lambda: notifier
    app.dependency_overrides[get_lock_provider] = lambda: lock_provider
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session):
    """
    Factory creating users directly through the ORM.
    """
    counter = {"n": 0}

    def _make(name=None, is_admin=False):
        counter["n"] += 1
        name = name or f"user{counter['n']}"
        user = models.User(
            name=name,
            email=f"{name.lower().replace(' ', '.')}@example.com",
            hashed_password=get_password_hash(PASSWORD),
            is_admin=is_admin,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


@pytest.fixture
def host(make_user):
    return make_user("Host")


@pytest.fixture
def visitor(make_user):
    return make_user("Visitor")


@pytest.fixture
def admin(make_user):
    return make_user("Admin", is_admin=True)


@pytest.fixture
def login(client):
    """
    Return a function that logs a user in and builds the auth header.
    """
    def _login(user):
        response = client.post(
            "/users/login",
            params={"email": user.email, "password": PASSWORD},
        )
        assert response.status_code == 200, response.text
        return get_auth_header(response.json()["access_token"])

    return _login


@pytest.fixture
def make_tag(db_session):
    counter = {"n": 0}

    def _make(name=None):
        counter["n"] += 1
        tag = models.Tag(name=name or f"tag_{counter['n']}")
        db_session.add(tag)
        db_session.commit()
        db_session.refresh(tag)
        return tag

    return _make


@pytest.fixture
def make_office(db_session, make_user):
    """
    Factory for approved, visible offices. Pass ``user`` to choose the owner.
    """
    def _make(user=None, tags=(), **overrides):
        owner = user or make_user()
        data = dict(
            title="Office",
            description="A quiet office",
            lat=-1.246683793171039,
            lng=116.85410448618018,
            address_line1="Jl. Sudirman 1",
            approval_status=models.Office.APPROVAL_APPROVED,
            hidden=False,
            price_per_day=1_000,
            monthly_discount=0,
        )
        data.update(overrides)
        office = models.Office(user_id=owner.id, **data)
        office.tags = list(tags)
        db_session.add(office)
        db_session.commit()
        db_session.refresh(office)
        return office

    return _make


@pytest.fixture
def make_reservation(db_session, make_user, make_office):
    """
    Factory for reservations; by default an active one from tomorrow for five days.
    """
    def _make(office=None, user=None, start_date=None, end_date=None, **overrides):
        start_date = start_date or date.today() + timedelta(days=1)
        end_date = end_date or date.today() + timedelta(days=5)
        reservation = models.Reservation(
            office_id=(office or make_office()).id,
            user_id=(user or make_user()).id,
            start_date=start_date,
            end_date=end_date,
            status=overrides.pop("status", models.Reservation.STATUS_ACTIVE),
            price=overrides.pop("price", 10_000),
        )
        db_session.add(reservation)
        db_session.commit()
        db_session.refresh(reservation)
        return reservation

    return _make


def get_auth_header(token: str) -> dict:
    """
    Helper function to create authorization header.
    """
    return {"Authorization": f"Bearer {token}"}


def days_from_now(days: int) -> str:
    return (date.today() + timedelta(days=days)).isoformat()
