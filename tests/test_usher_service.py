"""
Tests for usher account management
"""

import pytest
from pydantic import ValidationError as SchemaError
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.core.errors import ErrorCode, UsherAdminError, ValidationError
from app.models import Usher
from app.schemas.usher import UsherCreate, UsherUpdate
from app.services.checkin_service import Actor
from app.services.repositories import UsherRepo
from app.services.usher_service import UsherService

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_ushers.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

@pytest.fixture
def db_session():
    """Create test database session"""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)

@pytest.fixture
def admin():
    return Actor(username="admin", full_name="Head Admin", role="Admin")

@pytest.fixture
def staff(db_session):
    db_session.add_all([
        Usher(usher_id="U1", username="admin", full_name="Head Admin", role="Admin", api_token="admin-token"),
        Usher(usher_id="U2", username="jane", full_name="Jane Usher", role="Usher", api_token="jane-token"),
    ])
    db_session.commit()

def test_create_usher_issues_token(db_session, staff, admin):
    usher, token = UsherService.create_usher(
        UsherCreate(username="mike_door", full_name="  Mike Front Door ", role="Usher"), admin, db_session
    )

    assert usher["usher_id"] == "U3"
    assert usher["full_name"] == "Mike Front Door"
    assert usher["active"] is True
    assert "api_token" not in usher
    assert len(token) >= 32
    assert UsherRepo.get_active_by_token(db_session, token).username == "mike_door"

def test_create_usher_rejects_taken_username(db_session, staff, admin):
    with pytest.raises(UsherAdminError) as exc_info:
        UsherService.create_usher(UsherCreate(username="JANE", full_name="Other Jane"), admin, db_session)

    assert exc_info.value.code == ErrorCode.USERNAME_TAKEN
    assert db_session.query(Usher).count() == 2

def test_create_usher_rejects_blank_name(db_session, staff, admin):
    with pytest.raises(ValidationError):
        UsherService.create_usher(UsherCreate(username="blank", full_name="   "), admin, db_session)

def test_create_usher_schema_rules():
    with pytest.raises(SchemaError):
        UsherCreate(username="no spaces", full_name="Bad Name")
    with pytest.raises(SchemaError):
        UsherCreate(username="ok_name", full_name="Bad Role", role="Owner")

def test_next_id_skips_foreign_ids(db_session, staff):
    db_session.add(Usher(usher_id="X99", username="legacy", full_name="Legacy Import"))
    db_session.add(Usher(usher_id="U10", username="tenth", full_name="Tenth Usher"))
    db_session.commit()

    assert UsherRepo.next_id(db_session) == "U11"

def test_list_ushers_by_full_name(db_session, staff):
    assert [u["username"] for u in UsherService.list_ushers(db_session)] == ["admin", "jane"]

def test_update_fields_and_rotate_token(db_session, staff, admin):
    usher, token = UsherService.update_usher(
        "U2", UsherUpdate(full_name="Jane Q. Usher", role="Admin", rotate_token=True), admin, db_session
    )

    assert usher["full_name"] == "Jane Q. Usher"
    assert usher["role"] == "Admin"
    assert token is not None and token != "jane-token"
    assert UsherRepo.get_active_by_token(db_session, "jane-token") is None
    assert UsherRepo.get_active_by_token(db_session, token).usher_id == "U2"

def test_update_without_rotation_keeps_token(db_session, staff, admin):
    _, token = UsherService.update_usher("U2", UsherUpdate(full_name="Jane Doe"), admin, db_session)

    assert token is None
    assert UsherRepo.get_active_by_token(db_session, "jane-token").full_name == "Jane Doe"

def test_update_requires_a_field(db_session, staff, admin):
    with pytest.raises(ValidationError):
        UsherService.update_usher("U2", UsherUpdate(), admin, db_session)

def test_update_unknown_usher(db_session, staff, admin):
    with pytest.raises(UsherAdminError) as exc_info:
        UsherService.update_usher("U404", UsherUpdate(full_name="Nobody"), admin, db_session)
    assert exc_info.value.code == ErrorCode.NOT_FOUND

def test_deactivate_revokes_token_and_reactivate_issues_new(db_session, staff, admin):
    usher = UsherService.deactivate_usher("U2", admin, db_session)

    assert usher["active"] is False
    assert UsherRepo.get_active_by_token(db_session, "jane-token") is None
    assert db_session.get(Usher, "U2").api_token is None

    usher, token = UsherService.update_usher("U2", UsherUpdate(active=True), admin, db_session)
    assert usher["active"] is True
    assert UsherRepo.get_active_by_token(db_session, token).usher_id == "U2"

def test_cannot_remove_yourself(db_session, staff, admin):
    db_session.add(Usher(usher_id="U3", username="second", full_name="Second Admin", role="Admin"))
    db_session.commit()

    with pytest.raises(UsherAdminError) as exc_info:
        UsherService.deactivate_usher("U1", admin, db_session)
    assert exc_info.value.code == ErrorCode.INVALID_OPERATION

    with pytest.raises(UsherAdminError):
        UsherService.update_usher("U1", UsherUpdate(active=False), admin, db_session)
    assert db_session.get(Usher, "U1").active is True

def test_cannot_remove_last_active_admin(db_session, staff):
    other_admin = Actor(username="ghost", full_name="Ghost Admin", role="Admin")

    with pytest.raises(UsherAdminError) as exc_info:
        UsherService.deactivate_usher("U1", other_admin, db_session)
    assert "last active admin" in exc_info.value.message

    with pytest.raises(UsherAdminError):
        UsherService.update_usher("U1", UsherUpdate(role="Usher"), other_admin, db_session)
    assert db_session.get(Usher, "U1").role == "Admin"
