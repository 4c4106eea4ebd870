"""
Swachh Netra admin API - test configuration and fixtures
"""
import os
from typing import Callable, Generator

import pytest
from faker import Faker
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

# Set testing environment before the app reads its settings
os.environ["DATABASE_URL"] = "sqlite:///./test.db"
os.environ["JWT_SECRET"] = "test-jwt-secret-key-for-testing"
os.environ["AUTO_CREATE_DB"] = "false"
os.environ["RATE_LIMIT"] = "100000/minute"
os.environ["TZ_DEFAULT"] = "Asia/Kolkata"

from wasteadmin.main import app
from wasteadmin.db import Base, SessionLocal, engine, utcnow
from wasteadmin.identity.factory import get_identity_provider
from wasteadmin.identity.local_provider import LocalIdentityProvider, create_access_token, get_password_hash
from wasteadmin.models.models import ApprovalRequest, FeederPoint, User, Vehicle
from wasteadmin.schemas.common import UserRole
from wasteadmin.services.permissions import permissions_for_role

fake = Faker()

DEFAULT_PASSWORD = "testpassword123"


@pytest.fixture(autouse=True)
def _schema() -> Generator[None, None, None]:
    """Fresh tables for each test"""
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db_session() -> Generator[Session, None, None]:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def identity() -> LocalIdentityProvider:
    return get_identity_provider()


@pytest.fixture
def client() -> Generator[TestClient, None, None]:
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def make_user(db_session: Session, identity: LocalIdentityProvider) -> Callable[..., User]:
    """Create an identity account plus a portal user with role-derived permissions"""

    def _make(role: UserRole = UserRole.driver, is_active: bool = True, **fields) -> User:
        email = fields.pop("email", None) or fake.unique.email()
        full_name = fields.pop("full_name", None) or fake.name()
        uid = identity.create_account(email=email, display_name=full_name, password=DEFAULT_PASSWORD)
        if not is_active:
            identity.set_disabled(uid, True)
        user = User(
            id=uid,
            email=email.lower(),
            full_name=full_name,
            role=role.value,
            is_active=is_active,
            permissions=permissions_for_role(role),
            created_at=fields.pop("created_at", None) or utcnow(),
            **fields,
        )
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _make


def headers_for(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(user.id)}"}


@pytest.fixture
def admin_user(make_user) -> User:
    return make_user(UserRole.admin)


@pytest.fixture
def admin_headers(admin_user: User) -> dict:
    return headers_for(admin_user)


@pytest.fixture
def driver_user(make_user) -> User:
    return make_user(UserRole.driver)


@pytest.fixture
def driver_headers(driver_user: User) -> dict:
    return headers_for(driver_user)


@pytest.fixture
def make_vehicle(db_session: Session) -> Callable[..., Vehicle]:
    def _make(status: str = "available", **fields) -> Vehicle:
        vehicle = Vehicle(
            registration_number=fields.pop("registration_number", None)
            or fake.unique.bothify("MH##??####").upper(),
            make=fields.pop("make", "Tata"),
            model=fields.pop("model", "Ace"),
            vehicle_type=fields.pop("vehicle_type", "truck"),
            status=status,
            created_at=fields.pop("created_at", None) or utcnow(),
            **fields,
        )
        db_session.add(vehicle)
        db_session.commit()
        db_session.refresh(vehicle)
        return vehicle

    return _make


@pytest.fixture
def make_feeder_point(db_session: Session) -> Callable[..., FeederPoint]:
    def _make(**fields) -> FeederPoint:
        point = FeederPoint(
            name=fields.pop("name", None) or f"FP {fake.street_name()}",
            location=fields.pop("location", None) or fake.street_address(),
            area=fields.pop("area", "Ward 12"),
            created_at=utcnow(),
            **fields,
        )
        db_session.add(point)
        db_session.commit()
        db_session.refresh(point)
        return point

    return _make


@pytest.fixture
def make_approval_request(db_session: Session) -> Callable[..., ApprovalRequest]:
    def _make(role: str = "driver", **fields) -> ApprovalRequest:
        req = ApprovalRequest(
            email=fields.pop("email", None) or fake.unique.email(),
            full_name=fields.pop("full_name", None) or fake.name(),
            phone=fields.pop("phone", None) or fake.msisdn(),
            role=role,
            password_hash=get_password_hash(DEFAULT_PASSWORD),
            status=fields.pop("status", "pending"),
            created_at=utcnow(),
            **fields,
        )
        db_session.add(req)
        db_session.commit()
        db_session.refresh(req)
        return req

    return _make


@pytest.fixture
def auth_headers() -> Callable[[User], dict]:
    """Bearer headers for any user"""
    return headers_for
