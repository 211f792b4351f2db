"""
Pytest configuration and fixtures for backend tests.

Provides shared fixtures for:
- Test database sessions
- Recurring series service
- Sample data factories (series, registrations)
- FastAPI test client
"""

import os
import pytest
from datetime import datetime
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ['ECOSERIES_DB_URL'] = 'sqlite:///:memory:'
os.environ['ECOSERIES_ENV'] = 'test'

from backend.src.config.settings import AppSettings
from backend.src.models import Base, VolunteerRegistration
from backend.src.services.recurring_series_service import RecurringSeriesService


# ============================================================================
# Database Fixtures
# ============================================================================

@pytest.fixture(scope='function')
def test_db_engine():
    """Create an in-memory SQLite database engine for testing."""
    from sqlalchemy import event

    engine = create_engine(
        'sqlite:///:memory:',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )

    # Enable foreign key constraints for SQLite
    # This must be set for each connection
    def _fk_pragma_on_connect(dbapi_con, con_record):
        dbapi_con.execute('pragma foreign_keys=ON')

    event.listen(engine, 'connect', _fk_pragma_on_connect)

    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture(scope='function')
def test_db_session(test_db_engine):
    """Create a test database session."""
    TestingSessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        bind=test_db_engine
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


# ============================================================================
# Service Fixtures
# ============================================================================

@pytest.fixture
def test_settings():
    """Settings with explicit defaults, independent of the environment."""
    return AppSettings(
        ECOSERIES_DEFAULT_DURATION_MINUTES=120,
        ECOSERIES_MAX_RECURRENCE_INTERVAL=52,
    )


@pytest.fixture
def series_service(test_db_session, test_settings):
    """RecurringSeriesService bound to the test session."""
    return RecurringSeriesService(test_db_session, settings=test_settings)


# ============================================================================
# Sample Data Factories
# ============================================================================

@pytest.fixture
def sample_series_data():
    """Factory for creating sample series creation kwargs."""
    def _create(
        title='Beach cleanup',
        recurrence_type='weekly',
        recurrence_value=None,
        start_date=datetime(2026, 3, 7, 9, 0),
        duration_minutes=180,
        end_date=None,
        max_instances=None,
        organization_id='org-42',
        creator_id='user-7',
        **extra
    ):
        data = {
            'title': title,
            'recurrence_type': recurrence_type,
            'recurrence_value': recurrence_value,
            'start_date': start_date,
            'duration_minutes': duration_minutes,
            'end_date': end_date,
            'max_instances': max_instances,
            'organization_id': organization_id,
            'creator_id': creator_id,
        }
        data.update(extra)
        return data
    return _create


@pytest.fixture
def sample_series(series_service, sample_series_data):
    """Factory for creating series through the service (instance #1 included)."""
    def _create(**kwargs):
        return series_service.create_series(**sample_series_data(**kwargs))
    return _create


@pytest.fixture
def add_registrations(test_db_session):
    """
    Factory for attaching volunteer registrations to an instance.

    Each item of `attended` becomes one registration (True, False or None).
    """
    def _add(instance, attended):
        for i, flag in enumerate(attended):
            test_db_session.add(VolunteerRegistration(
                instance_id=instance.id,
                volunteer_ref=f'vol-{instance.instance_number}-{i}',
                attended=flag,
            ))
        test_db_session.commit()
    return _add


# ============================================================================
# API Fixtures
# ============================================================================

@pytest.fixture
def test_client(test_db_session):
    """Create a FastAPI test client bound to the test database session."""
    from fastapi.testclient import TestClient
    from backend.src.main import app
    from backend.src.db.database import get_db

    def get_test_db():
        try:
            yield test_db_session
        finally:
            pass

    app.dependency_overrides[get_db] = get_test_db

    with TestClient(app) as client:
        yield client

    app.dependency_overrides.clear()
