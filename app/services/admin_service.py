"""
Admin dashboard statistics and audit trail queries
"""

import logging
from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy import case, func
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import ValidationError
from app.models import CheckInAction, Guest, GuestStatus
from app.schemas.common import Pagination
from app.schemas.guest import CheckInLogResponse
from app.services.cache_service import STATS_KEY, ReadCache
from app.services.repositories import CheckInLogRepo, GuestRepo
from app.utils.clock import utcnow

logger = logging.getLogger(__name__)


def format_hour(hour: int) -> str:
    """Format an hour of day (0-23) as a 12-hour label"""
    if hour == 0:
        return "12 AM"
    if hour < 12:
        return f"{hour} AM"
    if hour == 12:
        return "12 PM"
    return f"{hour - 12} PM"


class AdminService:
    """Aggregate statistics and audit log access"""

    AUDIT_MAX_LIMIT = 200

    def __init__(
        self,
        cache: Optional[ReadCache] = None,
        ttl: float = settings.STATS_CACHE_TTL_SECONDS,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.cache = cache
        self.ttl = ttl
        self._clock = clock

    def get_stats(self, db: Session) -> Tuple[Dict[str, Any], bool]:
        """Dashboard statistics. Returns (data, served_from_cache)."""
        if self.cache is not None:
            cached = self.cache.get(STATS_KEY)
            if cached is not None:
                return dict(cached), True
        generation = self.cache.generation if self.cache is not None else None

        checked_in_filter = Guest.status == GuestStatus.CHECKED_IN.value
        totals = db.query(
            func.count(Guest.id),
            func.sum(case((checked_in_filter, 1), else_=0)),
            func.sum(case((checked_in_filter, Guest.plus_ones_checked_in), else_=0)),
        ).one()
        total_guests = int(totals[0] or 0)
        checked_in = int(totals[1] or 0)
        total_plus_ones = int(totals[2] or 0)

        by_ticket = (
            db.query(
                Guest.ticket_type,
                func.count(Guest.id),
                func.coalesce(func.sum(Guest.plus_ones_checked_in), 0),
            )
            .filter(checked_in_filter)
            .group_by(Guest.ticket_type)
            .order_by(func.count(Guest.id).desc())
            .all()
        )

        now = self._clock()
        check_in_times = GuestRepo.checked_in_times(db)
        last_hour = sum(1 for t in check_in_times if t >= now - timedelta(hours=1))

        hourly = Counter(
            t.replace(minute=0, second=0, microsecond=0)
            for t in check_in_times
            if t >= now - timedelta(hours=24)
        )
        busiest = Counter(t.hour for t in check_in_times).most_common(5)

        data = {
            "overview": {
                "total_guests": total_guests,
                "checked_in": checked_in,
                "not_checked_in": total_guests - checked_in,
                "check_in_percentage": round(checked_in / total_guests * 100) if total_guests else 0,
                "total_plus_ones": total_plus_ones,
                "total_attendees": checked_in + total_plus_ones,
            },
            "recent": {"last_hour": last_hour},
            "by_ticket_type": [
                {
                    "ticket_type": ticket_type,
                    "count": int(count),
                    "plus_ones": int(plus_ones),
                    "total": int(count) + int(plus_ones),
                }
                for ticket_type, count, plus_ones in by_ticket
            ],
            "last_24_hours": [
                {"hour": hour.isoformat(), "count": count}
                for hour, count in sorted(hourly.items(), reverse=True)
            ],
            "busiest_hours": [
                {"hour_of_day": hour, "count": count, "hour_label": format_hour(hour)}
                for hour, count in busiest
            ],
            "generated_at": now.isoformat(),
        }

        if self.cache is not None:
            self.cache.set(STATS_KEY, data, self.ttl, generation=generation)
        logger.info(f"Admin stats generated: {checked_in}/{total_guests} checked in")
        return data, False

    def get_audit_log(
        self,
        db: Session,
        page: int = 1,
        limit: int = 50,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        usher_name: Optional[str] = None,
        start_date: Optional[str] = None,
        end_date: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Audit trail page, newest first"""
        page = max(1, page)
        limit = min(self.AUDIT_MAX_LIMIT, max(1, limit))
        if action and action not in {a.value for a in CheckInAction}:
            raise ValidationError(f"Unknown action '{action}'", {"field": "action"})

        start = self._parse_date(start_date, "start_date")
        end = self._parse_date(end_date, "end_date")
        if end is not None:
            # Include the whole end day
            end = end + timedelta(days=1)

        entries, total = CheckInLogRepo.query_page(
            db,
            page,
            limit,
            guest_id=guest_id,
            action=action,
            usher_name=usher_name,
            start=start,
            end=end,
        )
        return {
            "logs": [CheckInLogResponse.model_validate(e).model_dump(mode="json") for e in entries],
            "pagination": Pagination.build(total, page, limit, len(entries)).model_dump(),
            "filters": {
                "guest_id": guest_id,
                "action": action,
                "usher_name": usher_name,
                "start_date": start_date,
                "end_date": end_date,
            },
        }

    @staticmethod
    def _parse_date(value: Optional[str], field_name: str) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.combine(date.fromisoformat(value[:10]), datetime.min.time())
        except ValueError:
            raise ValidationError(
                f"Invalid {field_name} format. Use ISO format (YYYY-MM-DD)",
                {"field": field_name},
            )
