"""Shared test fixtures."""

import uuid
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from welfare.config import Settings
from welfare.database.base import Base
from welfare.grievances.models import Grievance
from welfare.notifications.models import DeliveryAttempt, Notification
from welfare.schemes.models import Application, WelfareScheme
from welfare.users.models import User, UserRole

# Models must be imported so Base.metadata.create_all() sees all tables.
_ALL_MODELS = [User, WelfareScheme, Application, Grievance, Notification, DeliveryAttempt]


@pytest.fixture
def engine():
    """In-memory SQLite database shared by every session of a test.

    Note: SQLite doesn't support all PostgreSQL features (JSONB, row locks),
    but works for service and scheduler logic testing.
    """
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def test_settings():
    """Settings with a fixed timezone and no .env influence."""
    return Settings(_env_file=None, scheduler_timezone="UTC", log_dir="logs")


def _make_user(db_session, email, role, **kwargs):
    user = User(id=uuid.uuid4(), email=email, full_name=email.split("@")[0], role=role, **kwargs)
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture
def test_user(db_session):
    """An active officer."""
    return _make_user(db_session, "officer@example.com", UserRole.OFFICER, date_of_birth=date(1980, 6, 15))


@pytest.fixture
def other_user(db_session):
    """An active family member."""
    return _make_user(db_session, "family@example.com", UserRole.FAMILY_MEMBER)


@pytest.fixture
def admin_user(db_session):
    return _make_user(db_session, "admin@example.com", UserRole.ADMIN)


@pytest.fixture
def make_user(db_session):
    """Factory for additional users."""

    def _factory(email, role=UserRole.OFFICER, **kwargs):
        return _make_user(db_session, email, role, **kwargs)

    return _factory
