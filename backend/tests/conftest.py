"""
Test configuration and fixtures.

Provides:
- A file-backed SQLite database per test (threads need a shared file, not :memory:)
- A session factory so concurrent tests can give every thread its own Session
- Seed helpers for counselors and counsel requests
"""
import os
import tempfile
from datetime import timedelta
from typing import Generator, List, Optional
from uuid import uuid4

# Keep the module-level engine off PostgreSQL when the package is imported
os.environ.setdefault(
    "DATABASE_URL",
    "sqlite:///" + os.path.join(tempfile.gettempdir(), "counsel_engine_import.db"),
)

import pytest
from sqlalchemy.orm import Session, sessionmaker

from counsel_engine.database import build_engine, init_db
from counsel_engine.models.db_models import (
    CounselorDB, CounselRequestDB, AppointmentDB,
    ApplicationStatus, RequestStatus, AppointmentStatus, utcnow,
)


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture(scope="function")
def engine(tmp_path):
    engine = build_engine(f"sqlite:///{tmp_path / 'counsel.db'}")
    init_db(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="function")
def db(session_factory) -> Generator[Session, None, None]:
    session = session_factory()
    yield session
    session.close()


# =============================================================================
# Seed Helpers
# =============================================================================

def seed_counselor(
    session: Session,
    counselor_id: Optional[str] = None,
    home_region: str = "CES",
    serving_regions: Optional[List[str]] = None,
    is_online: bool = True,
    is_available: Optional[bool] = True,
    application_status: ApplicationStatus = ApplicationStatus.APPROVED,
    rating: float = 4.0,
    active_requests: int = 0,
    max_active_requests: int = 5,
    name: Optional[str] = None,
) -> str:
    counselor_id = counselor_id or f"counselor-{uuid4().hex[:8]}"
    session.add(CounselorDB(
        id=counselor_id,
        name=name or f"Counselor {counselor_id}",
        email=f"{counselor_id}@example.org",
        phone="+211900000000",
        application_status=application_status,
        is_online=is_online,
        is_available=is_available,
        home_region=home_region,
        serving_regions=serving_regions if serving_regions is not None else [home_region],
        specializations=[],
        rating=rating,
        total_cases=0,
        completed_cases=0,
        active_requests=active_requests,
        max_active_requests=max_active_requests,
        applied_at=utcnow(),
        created_at=utcnow(),
    ))
    session.commit()
    return counselor_id


def seed_request(
    session: Session,
    region: str = "CES",
    status: RequestStatus = RequestStatus.BROADCASTING,
    broadcasted_to: Optional[List[str]] = None,
    expires_in: timedelta = timedelta(minutes=5),
    counselor_id: Optional[str] = None,
    user_id: str = "user-1",
) -> str:
    request_id = str(uuid4())
    now = utcnow()
    broadcasted_to = list(broadcasted_to or [])
    session.add(CounselRequestDB(
        id=request_id,
        user_id=user_id,
        user_name="Test User",
        note="Dispute over a plot boundary",
        legal_category="land",
        region=region,
        status=status,
        counselor_id=counselor_id,
        broadcasted_to=broadcasted_to,
        broadcast_count=len(broadcasted_to),
        expires_at=now + expires_in,
        created_at=now,
        updated_at=now,
    ))
    session.commit()
    return request_id


def fresh(session_factory, model, object_id):
    """Read a row through a brand-new session."""
    with session_factory() as session:
        row = session.get(model, object_id)
        if row is not None:
            session.expunge(row)
        return row


@pytest.fixture
def make_counselor(db):
    def _make(**kwargs) -> str:
        return seed_counselor(db, **kwargs)
    return _make


@pytest.fixture
def make_request(db):
    def _make(**kwargs) -> str:
        return seed_request(db, **kwargs)
    return _make



@pytest.fixture
def reload(session_factory):
    def _reload(model, object_id):
        return fresh(session_factory, model, object_id)
    return _reload
