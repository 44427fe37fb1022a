"""
Test configuration and fixtures for Campus Events Service.
Runs the services against an in-memory SQLite database with Redis,
Celery and the file store replaced by mocks.
"""

import io
import pytest
import jwt
from contextlib import ExitStack
from datetime import timedelta
from decimal import Decimal
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from unittest.mock import AsyncMock, patch

from campus_events.core.config import config
from campus_events.core.time_utils import utcnow
from campus_events.db.database import db_manager
from campus_events.db.redis_client import redis_manager
from campus_events.models.event import (
    Base, Event, EventType, EventStatus, Eligibility, MerchandiseVariant
)
from campus_events.models.registration import Registration
from campus_events.services.attendance_service import attendance_service
from campus_events.services.event_service import event_service
from campus_events.services.proof_storage import PaymentProofStorage
from campus_events.services.registration_service import registration_service
from campus_events.services.ticket_codec import TicketCodec

TEST_KEY = "000102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f"
OTHER_KEY = "ffeeddccbbaa99887766554433221100ffeeddccbbaa99887766554433221100"
TEST_JWT_SECRET = "campus-events-test-secret-with-enough-length"

CONSISTENCY_CONFIG = {"lock_timeout_seconds": 30, "enable_distributed_locks": False}

# Test database
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestingSessionLocal = sessionmaker(
    bind=engine,
    autocommit=False,
    autoflush=False,
    expire_on_commit=False
)


@pytest.fixture
def database():
    """Wire the global database manager to a fresh in-memory schema."""
    Base.metadata.create_all(bind=engine)
    with patch.object(db_manager, "engine", engine), \
         patch.object(db_manager, "session_factory", TestingSessionLocal), \
         patch.object(db_manager, "_initialized", True):
        yield db_manager
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session(database):
    """Session for arranging and inspecting rows directly."""
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def mock_publisher():
    """Mock domain event publisher."""
    return AsyncMock()


@pytest.fixture
def mock_notifications():
    """Mock Celery notification dispatch."""
    return AsyncMock()


@pytest.fixture
def codec():
    return TicketCodec(TEST_KEY)


@pytest.fixture
def other_codec():
    """Codec holding a different key."""
    return TicketCodec(OTHER_KEY)


@pytest.fixture
def proof_storage(tmp_path):
    """Payment proof storage writing into a temporary directory."""
    storage = PaymentProofStorage(upload_dir=str(tmp_path / "payment-proofs"))
    storage.upload_config = {
        "upload_dir": storage.upload_dir,
        "max_upload_size_mb": 5,
        "allowed_image_types": ["image/jpeg", "image/jpg", "image/png"],
    }
    return storage


@pytest.fixture
def services(database, codec, mock_publisher, mock_notifications, proof_storage):
    """Configure the global service instances for tests and restore them afterwards."""
    with ExitStack() as stack:
        for service in (registration_service, attendance_service):
            stack.enter_context(patch.object(service, "consistency_config", dict(CONSISTENCY_CONFIG)))
            stack.enter_context(patch.object(service, "ticket_codec", codec))
            stack.enter_context(patch.object(service, "event_publisher", mock_publisher))
        stack.enter_context(patch.object(registration_service, "notification_service", mock_notifications))
        stack.enter_context(patch.object(registration_service, "proof_storage", proof_storage))
        stack.enter_context(patch.object(event_service, "event_publisher", mock_publisher))
        stack.enter_context(patch.object(event_service, "notification_service", mock_notifications))
        yield {
            "registration": registration_service,
            "attendance": attendance_service,
            "event": event_service,
        }


# Principals
@pytest.fixture
def organizer():
    return {
        "user_id": 100,
        "role": "club",
        "email": "club@iiit.ac.in",
        "name": "Robotics Club",
        "college_name": "IIIT",
        "is_iiitian": True,
    }


@pytest.fixture
def other_organizer():
    return {
        "user_id": 101,
        "role": "club",
        "email": "other@iiit.ac.in",
        "name": "Drama Club",
        "college_name": "IIIT",
        "is_iiitian": True,
    }


@pytest.fixture
def admin():
    return {
        "user_id": 1000,
        "role": "admin",
        "email": "admin@iiit.ac.in",
        "name": "Admin",
        "college_name": "IIIT",
        "is_iiitian": True,
    }


@pytest.fixture
def participant():
    return {
        "user_id": 1,
        "role": "user",
        "email": "asha@iiit.ac.in",
        "name": "Asha Rao",
        "college_name": "IIIT",
        "is_iiitian": True,
    }


@pytest.fixture
def external_participant():
    return {
        "user_id": 2,
        "role": "user",
        "email": "vikram@example.com",
        "name": "Vikram Sen",
        "college_name": "Other College",
        "is_iiitian": False,
    }


# Row factories
@pytest.fixture
def make_event(db_session, organizer):
    """Insert an event directly, published by default."""

    def _make_event(**overrides):
        now = utcnow()
        variants = overrides.pop("variants", None)
        values = dict(
            organizer_id=organizer["user_id"],
            name="Robotics Workshop",
            description="Hands-on robotics workshop",
            event_type=EventType.NORMAL,
            eligibility=Eligibility.ALL,
            registration_deadline=now + timedelta(days=1),
            event_start_date=now + timedelta(days=2),
            event_end_date=now + timedelta(days=2, hours=3),
            registration_limit=50,
            registration_fee=Decimal("0"),
            requires_approval=False,
            purchase_limit=1,
            status=EventStatus.PUBLISHED,
            custom_form={"fields": [], "locked": False},
            total_registrations=0,
            total_revenue=Decimal("0"),
            total_attendance=0,
        )
        values.update(overrides)
        event = Event(**values)
        if variants:
            event.variants = [MerchandiseVariant(**v) for v in variants]
        db_session.add(event)
        db_session.commit()
        return event

    return _make_event


@pytest.fixture
def merchandise_event(make_event):
    """Paid merchandise event with a single variant of 2 units at 300."""
    return make_event(
        name="Club T-Shirt",
        description="Official club t-shirt",
        event_type=EventType.MERCHANDISE,
        registration_limit=None,
        purchase_limit=2,
        custom_form=None,
        variants=[
            {"variant_id": "M-BLACK", "size": "M", "color": "Black",
             "stock_quantity": 2, "price": Decimal("300")},
        ],
    )


@pytest.fixture
def reload(db_session):
    """Fetch a fresh copy of a row."""

    def _reload(model, row_id):
        db_session.expire_all()
        return db_session.query(model).filter(model.id == row_id).first()

    return _reload


@pytest.fixture
def set_event_status(db_session):
    def _set_event_status(event_id, status):
        db_session.query(Event).filter(Event.id == event_id).update({Event.status: status})
        db_session.commit()

    return _set_event_status


@pytest.fixture
def png_bytes():
    """A small valid PNG image."""
    buffer = io.BytesIO()
    Image.new("RGB", (8, 8), color="white").save(buffer, format="PNG")
    return buffer.getvalue()


# API
def make_token(user: dict) -> str:
    first_name, _, last_name = (user.get("name") or "").partition(" ")
    payload = {
        "user_id": user["user_id"],
        "role": user["role"],
        "email": user.get("email"),
        "first_name": first_name,
        "last_name": last_name,
        "college_name": user.get("college_name"),
        "is_iiitian": user.get("is_iiitian", False),
        "exp": utcnow() + timedelta(hours=1),
    }
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def auth_headers():
    """Build a bearer header for a principal."""

    def _auth_headers(user: dict) -> dict:
        return {"Authorization": f"Bearer {make_token(user)}"}

    return _auth_headers


@pytest.fixture
def expired_token(participant):
    payload = {"user_id": participant["user_id"], "role": "user", "exp": utcnow() - timedelta(minutes=1)}
    return jwt.encode(payload, TEST_JWT_SECRET, algorithm="HS256")


@pytest.fixture
def client(services):
    """Test client with auth, Redis and service dependencies mocked."""
    with patch.object(config, "get_jwt_secret", AsyncMock(return_value=TEST_JWT_SECRET)), \
         patch.object(config, "get_jwt_algorithm", AsyncMock(return_value="HS256")), \
         patch.object(redis_manager, "initialize", AsyncMock()), \
         patch.object(redis_manager, "health_check", AsyncMock(return_value=True)), \
         patch.object(db_manager, "close", AsyncMock()):
        from campus_events.main import app
        with TestClient(app) as test_client:
            yield test_client


@pytest.fixture
def find_registration(db_session):
    """Fetch the registration of a user for an event."""

    def _find_registration(event_id: int, user_id: int) -> Registration:
        db_session.expire_all()
        return db_session.query(Registration).filter(
            Registration.event_id == event_id,
            Registration.user_id == user_id
        ).first()

    return _find_registration
