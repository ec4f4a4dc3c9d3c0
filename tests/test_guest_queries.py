"""
Tests for guest detail, list and search queries
"""

import pytest
from datetime import datetime, timedelta
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from app.core.db import Base
from app.models import Guest, GuestStatus
from app.schemas.guest import SearchRequest
from app.services.cache_service import ReadCache, guest_detail_key
from app.services.checkin_service import Actor, CheckInService
from app.services.guest_query_service import GuestQueryService

# Test database setup
SQLALCHEMY_DATABASE_URL = "sqlite:///./test_queries.db"
engine = create_engine(SQLALCHEMY_DATABASE_URL, connect_args={"check_same_thread": False})
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

T0 = datetime(2024, 6, 15, 18, 0, 0)

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
def cache():
    return ReadCache(default_ttl=30)

@pytest.fixture
def queries(cache):
    return GuestQueryService(cache=cache)

@pytest.fixture
def guest_list(db_session):
    """Seed guests; two of them already checked in"""
    rows = [
        Guest(id="G001", first_name="John", last_name="Doe", email="john@example.com",
              phone="555-0100", ticket_type="VIP", plus_ones_allowed=2),
        Guest(id="G002", first_name="Jane", last_name="Smith", email="jane.smith@example.com",
              ticket_type="General"),
        Guest(id="G003", first_name="Bob", last_name="Johnson", phone="555-0199", ticket_type="General"),
        Guest(id="G004", first_name="Alice", last_name="Brown", ticket_type="VIP",
              status=GuestStatus.CHECKED_IN.value, check_in_time=T0 + timedelta(minutes=5),
              confirmation_code="X-1", checked_in_by="Jane Usher"),
        Guest(id="G005", first_name="Carol", last_name="Doe", ticket_type="Staff",
              status=GuestStatus.CHECKED_IN.value, check_in_time=T0,
              confirmation_code="X-2", checked_in_by="Jane Usher"),
    ]
    for guest in rows:
        db_session.add(guest)
    db_session.commit()
    return rows

# -------- list --------

def test_list_orders_by_last_then_first_name(db_session, guest_list, queries):
    data, cached = queries.list_guests(db_session)

    assert not cached
    names = [(g["last_name"], g["first_name"]) for g in data["guests"]]
    assert names == [("Brown", "Alice"), ("Doe", "Carol"), ("Doe", "John"), ("Johnson", "Bob"), ("Smith", "Jane")]
    assert data["pagination"] == {
        "total": 5, "page": 1, "limit": 50, "total_pages": 1, "has_more": False, "showing": 5,
    }

def test_list_pagination(db_session, guest_list, queries):
    data, _ = queries.list_guests(db_session, page=2, limit=2)

    assert [g["id"] for g in data["guests"]] == ["G001", "G003"]
    assert data["pagination"]["total_pages"] == 3
    assert data["pagination"]["has_more"] is True
    assert data["pagination"]["showing"] == 2

def test_list_limit_is_capped(db_session, guest_list, queries):
    data, _ = queries.list_guests(db_session, page=1, limit=500)
    assert data["pagination"]["limit"] == 100

def test_list_filters(db_session, guest_list, queries):
    data, _ = queries.list_guests(db_session, status=GuestStatus.CHECKED_IN.value)
    assert {g["id"] for g in data["guests"]} == {"G004", "G005"}

    data, _ = queries.list_guests(db_session, ticket_type="General")
    assert {g["id"] for g in data["guests"]} == {"G002", "G003"}

def test_list_is_cached_until_invalidated(db_session, guest_list, queries, cache):
    queries.list_guests(db_session)
    _, cached = queries.list_guests(db_session)
    assert cached

    service = CheckInService(cache=cache)
    service.check_in("G001", plus_ones=0, notes="", actor=Actor(username="jane"), db=db_session)

    data, cached = queries.list_guests(db_session)
    assert not cached
    john = next(g for g in data["guests"] if g["id"] == "G001")
    assert john["status"] == GuestStatus.CHECKED_IN.value

def test_list_without_cache(db_session, guest_list):
    queries = GuestQueryService(cache=None)
    _, cached = queries.list_guests(db_session)
    _, cached_again = queries.list_guests(db_session)
    assert not cached and not cached_again

# -------- detail --------

def test_guest_detail_with_history(db_session, guest_list, queries, cache):
    service = CheckInService(cache=cache)
    actor = Actor(username="jane", full_name="Jane Usher")
    service.check_in("G001", plus_ones=1, notes="", actor=actor, db=db_session)
    service.undo_check_in("G001", reason="typo", actor=actor, db=db_session)

    data, cached = queries.get_guest_detail("G001", db_session)

    assert not cached
    assert data["guest"]["id"] == "G001"
    assert data["guest"]["status"] == GuestStatus.NOT_CHECKED_IN.value
    assert data["history_count"] == 2
    # Newest first
    assert [h["action"] for h in data["check_in_history"]] == ["Undo Check In", "Check In"]

    again, cached = queries.get_guest_detail("G001", db_session)
    assert cached
    assert again == data

def test_guest_detail_is_json_ready(db_session, guest_list, queries):
    data, _ = queries.get_guest_detail("G004", db_session)
    assert data["guest"]["check_in_time"] == "2024-06-15T18:05:00"

def test_guest_detail_not_found(db_session, guest_list, queries, cache):
    data, cached = queries.get_guest_detail("NOPE", db_session)
    assert data is None
    assert not cached
    assert cache.get(guest_detail_key("NOPE")) is None

def test_detail_read_straddling_invalidation_is_not_cached(db_session, guest_list, cache, monkeypatch):
    queries = GuestQueryService(cache=cache)
    original = GuestQueryService._generation

    def generation_then_write(self):
        generation = original(self)
        # A mutation commits and invalidates between the generation read and the store write
        cache.invalidate_pattern("guests:*")
        return generation

    monkeypatch.setattr(GuestQueryService, "_generation", generation_then_write)
    queries.get_guest_detail("G001", db_session)

    assert cache.get(guest_detail_key("G001")) is None

# -------- search --------

def test_cache_hits_return_copies(db_session, guest_list, queries):
    queries.get_guest_detail("G001", db_session)
    queries.list_guests(db_session)

    detail, cached = queries.get_guest_detail("G001", db_session)
    assert cached
    detail["cached"] = True
    detail.pop("history_count")
    listing, cached = queries.list_guests(db_session)
    assert cached
    listing["guests"] = []

    detail, _ = queries.get_guest_detail("G001", db_session)
    assert "cached" not in detail
    assert detail["history_count"] == 0
    listing, _ = queries.list_guests(db_session)
    assert len(listing["guests"]) == 5

def test_search_matches_name_email_phone_and_id(db_session, guest_list):
    def ids(query):
        result = GuestQueryService.search_guests(SearchRequest(query=query), db_session)
        return {g["id"] for g in result["guests"]}

    assert ids("doe") == {"G001", "G005"}
    assert ids("JANE.SMITH") == {"G002"}
    assert ids("0199") == {"G003"}
    assert ids("g004") == {"G004"}
    assert ids("john doe") == {"G001"}

def test_search_filters_and_sort(db_session, guest_list):
    search = SearchRequest(
        query="",
        status=GuestStatus.CHECKED_IN.value,
        sort_by="checkInTime",
        sort_order="desc",
    )
    result = GuestQueryService.search_guests(search, db_session)

    assert [g["id"] for g in result["guests"]] == ["G004", "G005"]
    assert result["total"] == 2
    assert result["sort"] == {"field": "checkInTime", "order": "desc"}

def test_search_by_ticket_type(db_session, guest_list):
    search = SearchRequest(query="", ticket_type="VIP", sort_by="name")
    result = GuestQueryService.search_guests(search, db_session)
    assert [g["id"] for g in result["guests"]] == ["G004", "G001"]

def test_search_caps_results(db_session):
    for i in range(120):
        db_session.add(Guest(id=f"S{i:03d}", first_name="Many", last_name=f"Guest{i:03d}", ticket_type="General"))
    db_session.commit()

    result = GuestQueryService.search_guests(SearchRequest(query="many"), db_session)
    assert result["total"] == 100
