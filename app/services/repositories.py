"""
Repository layer over the relational store.
"""

from __future__ import annotations

from dataclasses import dataclass, fields
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import func, or_, select, update
from sqlalchemy.orm import Session

from app.models import CheckInAction, CheckInLog, Guest, GuestStatus, Usher


class _Unset:
    """Marker for a patch slot that should keep the stored value."""

    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


@dataclass(frozen=True)
class GuestPatch:
    """Partial update of a guest row.

    Every slot defaults to UNSET and is skipped; ``None`` is a real value
    and clears the column.
    """

    status: Any = UNSET
    check_in_time: Any = UNSET
    confirmation_code: Any = UNSET
    plus_ones_checked_in: Any = UNSET
    checked_in_by: Any = UNSET
    notes: Any = UNSET
    last_modified: Any = UNSET

    def values(self) -> Dict[str, Any]:
        return {
            f.name: getattr(self, f.name)
            for f in fields(self)
            if getattr(self, f.name) is not UNSET
        }


# -------- Guest repository --------

class GuestRepo:
    @staticmethod
    def get(db: Session, guest_id: str) -> Optional[Guest]:
        return db.get(Guest, guest_id)

    @staticmethod
    def get_for_update(db: Session, guest_id: str) -> Optional[Guest]:
        """Read a guest under an exclusive row lock held until commit/rollback.

        ``populate_existing`` makes a re-read inside the same session see the
        committed row rather than a stale identity-map copy.
        """
        stmt = (
            select(Guest)
            .where(Guest.id == guest_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return db.execute(stmt).scalar_one_or_none()

    @staticmethod
    def apply_patch(
        db: Session,
        guest_id: str,
        patch: GuestPatch,
        expected_status: str,
        expected_code: Any = UNSET,
    ) -> bool:
        """Apply the patch only if the guest is still in the state that was read.

        Returns False when no row matched, meaning a concurrent transaction
        already moved the guest out of the expected state.
        """
        conditions = [Guest.id == guest_id, Guest.status == expected_status]
        if expected_code is not UNSET:
            conditions.append(Guest.confirmation_code == expected_code)
        stmt = (
            update(Guest)
            .where(*conditions)
            .values(**patch.values())
            .execution_options(synchronize_session=False)
        )
        result = db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def list_page(
        db: Session,
        page: int,
        limit: int,
        status: Optional[str] = None,
        ticket_type: Optional[str] = None,
    ) -> Tuple[List[Guest], int]:
        query = db.query(Guest)
        if status:
            query = query.filter(Guest.status == status)
        if ticket_type:
            query = query.filter(Guest.ticket_type == ticket_type)

        total = query.count()
        guests = (
            query.order_by(Guest.last_name.asc(), Guest.first_name.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return guests, total

    @staticmethod
    def search(
        db: Session,
        text: str = "",
        status: Optional[str] = None,
        ticket_type: Optional[str] = None,
        sort_column=None,
        descending: bool = False,
        limit: int = 100,
    ) -> List[Guest]:
        query = db.query(Guest)
        text = (text or "").strip()
        if text:
            term = f"%{text.lower()}%"
            full_name = func.lower(Guest.first_name + " " + Guest.last_name)
            query = query.filter(
                or_(
                    func.lower(Guest.first_name).like(term),
                    func.lower(Guest.last_name).like(term),
                    func.lower(Guest.email).like(term),
                    func.lower(Guest.phone).like(term),
                    func.lower(Guest.id).like(term),
                    full_name.like(term),
                )
            )
        if status:
            query = query.filter(Guest.status == status)
        if ticket_type:
            query = query.filter(Guest.ticket_type == ticket_type)

        sort_column = sort_column if sort_column is not None else Guest.last_name
        order = sort_column.desc() if descending else sort_column.asc()
        return query.order_by(order, Guest.first_name.asc()).limit(limit).all()

    @staticmethod
    def existing_ids(db: Session, guest_ids: List[str]) -> List[str]:
        if not guest_ids:
            return []
        rows = db.query(Guest.id).filter(Guest.id.in_(guest_ids)).all()
        return [row[0] for row in rows]

    @staticmethod
    def all_ordered(db: Session) -> List[Guest]:
        return db.query(Guest).order_by(Guest.last_name, Guest.first_name).all()

    @staticmethod
    def checked_in_times(db: Session, since: Optional[datetime] = None) -> List[datetime]:
        query = db.query(Guest.check_in_time).filter(
            Guest.status == GuestStatus.CHECKED_IN.value,
            Guest.check_in_time.isnot(None),
        )
        if since is not None:
            query = query.filter(Guest.check_in_time >= since)
        return [row[0] for row in query.all()]


# -------- Check-in log repository --------

class CheckInLogRepo:
    @staticmethod
    def append(
        db: Session,
        *,
        timestamp: datetime,
        guest_id: str,
        guest_name: str,
        action: CheckInAction,
        usher_name: str,
        plus_ones_count: int,
        notes: str,
        confirmation_code: Optional[str],
    ) -> CheckInLog:
        """Insert an audit row in the caller's transaction. Rows are never updated."""
        entry = CheckInLog(
            timestamp=timestamp,
            guest_id=guest_id,
            guest_name=guest_name,
            action=action.value,
            usher_name=usher_name,
            plus_ones_count=plus_ones_count,
            notes=notes,
            confirmation_code=confirmation_code,
        )
        db.add(entry)
        db.flush()
        return entry

    @staticmethod
    def history_for_guest(db: Session, guest_id: str, limit: int = 50) -> List[CheckInLog]:
        return (
            db.query(CheckInLog)
            .filter(CheckInLog.guest_id == guest_id)
            .order_by(CheckInLog.timestamp.desc(), CheckInLog.id.desc())
            .limit(limit)
            .all()
        )

    @staticmethod
    def query_page(
        db: Session,
        page: int,
        limit: int,
        guest_id: Optional[str] = None,
        action: Optional[str] = None,
        usher_name: Optional[str] = None,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None,
    ) -> Tuple[List[CheckInLog], int]:
        query = db.query(CheckInLog)
        if guest_id:
            query = query.filter(CheckInLog.guest_id == guest_id)
        if action:
            query = query.filter(CheckInLog.action == action)
        if usher_name:
            query = query.filter(func.lower(CheckInLog.usher_name).like(f"%{usher_name.lower()}%"))
        if start is not None:
            query = query.filter(CheckInLog.timestamp >= start)
        if end is not None:
            query = query.filter(CheckInLog.timestamp < end)

        total = query.count()
        entries = (
            query.order_by(CheckInLog.timestamp.desc(), CheckInLog.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return entries, total

    @staticmethod
    def all_chronological(db: Session) -> List[CheckInLog]:
        return db.query(CheckInLog).order_by(CheckInLog.timestamp.asc(), CheckInLog.id.asc()).all()


# -------- Usher repository --------

class UsherRepo:
    @staticmethod
    def get_active_by_token(db: Session, token: str) -> Optional[Usher]:
        return (
            db.query(Usher)
            .filter(Usher.api_token == token, Usher.active.is_(True))
            .first()
        )

    @staticmethod
    def get(db: Session, usher_id: str) -> Optional[Usher]:
        return db.get(Usher, usher_id)

    @staticmethod
    def get_by_username(db: Session, username: str) -> Optional[Usher]:
        """Case-insensitive username lookup"""
        return (
            db.query(Usher)
            .filter(func.lower(Usher.username) == username.lower())
            .first()
        )

    @staticmethod
    def list_all(db: Session) -> List[Usher]:
        return db.query(Usher).order_by(Usher.full_name.asc()).all()

    @staticmethod
    def token_exists(db: Session, token: str) -> bool:
        return db.query(Usher.usher_id).filter(Usher.api_token == token).first() is not None

    @staticmethod
    def count_active_with_role(db: Session, role: str) -> int:
        return (
            db.query(func.count(Usher.usher_id))
            .filter(Usher.role == role, Usher.active.is_(True))
            .scalar()
        ) or 0

    @staticmethod
    def next_id(db: Session) -> str:
        """Next id in the U1, U2, ... sequence"""
        numbers = [
            int(usher_id[1:])
            for (usher_id,) in db.query(Usher.usher_id).all()
            if usher_id[:1] == "U" and usher_id[1:].isdigit()
        ]
        return f"U{max(numbers, default=0) + 1}"
