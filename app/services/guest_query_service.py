"""
Cached guest read queries (detail, list) and uncached search
"""

import logging
from typing import Any, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.config import settings
from app.models import Guest
from app.schemas.common import Pagination
from app.schemas.guest import CheckInLogResponse, GuestResponse, SearchRequest
from app.services.cache_service import ReadCache, guest_detail_key, guest_list_key
from app.services.repositories import CheckInLogRepo, GuestRepo

logger = logging.getLogger(__name__)

SORT_COLUMNS = {
    "name": Guest.last_name,
    "checkInTime": Guest.check_in_time,
    "ticketType": Guest.ticket_type,
}

class GuestQueryService:
    """Read-side guest queries fronted by the read cache"""

    HISTORY_LIMIT = 50
    SEARCH_LIMIT = 100

    def __init__(self, cache: Optional[ReadCache] = None, ttl: float = settings.CACHE_TTL_SECONDS):
        self.cache = cache
        self.ttl = ttl

    def get_guest_detail(self, guest_id: str, db: Session) -> Tuple[Optional[Dict[str, Any]], bool]:
        """Guest plus recent audit history. Returns (data, served_from_cache)."""
        key = guest_detail_key(guest_id)
        cached = self._cached(key)
        if cached is not None:
            return dict(cached), True
        generation = self._generation()

        guest = GuestRepo.get(db, guest_id)
        if not guest:
            return None, False

        history = CheckInLogRepo.history_for_guest(db, guest_id, limit=self.HISTORY_LIMIT)
        data = {
            "guest": GuestResponse.model_validate(guest).model_dump(mode="json"),
            "check_in_history": [
                CheckInLogResponse.model_validate(entry).model_dump(mode="json") for entry in history
            ],
            "history_count": len(history),
        }
        self._store(key, data, generation)
        return data, False

    def list_guests(
        self,
        db: Session,
        page: int = 1,
        limit: int = 50,
        status: Optional[str] = None,
        ticket_type: Optional[str] = None,
    ) -> Tuple[Dict[str, Any], bool]:
        """Paginated guest list ordered by last name then first name"""
        page = max(1, page)
        limit = min(100, max(1, limit))
        key = guest_list_key(page, limit, status, ticket_type)
        cached = self._cached(key)
        if cached is not None:
            return dict(cached), True
        generation = self._generation()

        guests, total = GuestRepo.list_page(db, page, limit, status=status, ticket_type=ticket_type)
        data = {
            "guests": [GuestResponse.model_validate(g).model_dump(mode="json") for g in guests],
            "pagination": Pagination.build(total, page, limit, len(guests)).model_dump(),
        }
        self._store(key, data, generation)
        return data, False

    @staticmethod
    def search_guests(search: SearchRequest, db: Session) -> Dict[str, Any]:
        """Substring search across names, contact fields and id. Never cached."""
        guests = GuestRepo.search(
            db,
            text=search.query,
            status=search.status,
            ticket_type=search.ticket_type,
            sort_column=SORT_COLUMNS[search.sort_by],
            descending=search.sort_order == "desc",
            limit=GuestQueryService.SEARCH_LIMIT,
        )
        logger.info(f"Guest search '{search.query}' returned {len(guests)} results")
        return {
            "guests": [GuestResponse.model_validate(g).model_dump(mode="json") for g in guests],
            "total": len(guests),
            "query": search.query,
            "filters": {"status": search.status, "ticket_type": search.ticket_type},
            "sort": {"field": search.sort_by, "order": search.sort_order},
        }

    def _cached(self, key: str):
        if self.cache is None:
            return None
        return self.cache.get(key)

    def _generation(self) -> Optional[int]:
        return self.cache.generation if self.cache is not None else None

    def _store(self, key: str, data: Dict[str, Any], generation: Optional[int]) -> None:
        if self.cache is not None:
            self.cache.set(key, data, self.ttl, generation=generation)
