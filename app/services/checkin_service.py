"""
Guest check-in transaction engine.

Three state-changing operations (check-in, undo, bulk check-in), each run as
one transaction against the store:

- the guest row is read under an exclusive lock,
- business rules are validated,
- the guest update and its audit row commit together,
- guest read caches are invalidated after commit.

Business-rule failures come back as typed results. Store failures roll the
transaction back and raise ``StoreError``.
"""

import contextlib
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.config import settings
from app.core.errors import CheckInFailure, ErrorCode, StoreError, ValidationError
from app.models import CheckInAction, Guest, GuestStatus
from app.schemas.guest import BulkCheckInEntry, GuestResponse
from app.services.cache_service import GUEST_KEY_PATTERN, ReadCache
from app.services.repositories import CheckInLogRepo, GuestPatch, GuestRepo, UNSET
from app.utils.clock import epoch_millis, utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Actor:
    """The authenticated usher or admin performing an operation"""
    username: str
    full_name: Optional[str] = None
    role: str = "Usher"

    @property
    def display_name(self) -> str:
        return self.full_name or self.username


@dataclass(frozen=True)
class CheckInResult:
    guest: Optional[GuestResponse] = None
    confirmation_code: Optional[str] = None
    failure: Optional[CheckInFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class PreviousCheckIn:
    confirmation_code: Optional[str]
    check_in_time: Optional[datetime]
    plus_ones: int
    checked_in_by: Optional[str]


@dataclass(frozen=True)
class UndoResult:
    guest: Optional[GuestResponse] = None
    previous: Optional[PreviousCheckIn] = None
    failure: Optional[CheckInFailure] = None

    @property
    def ok(self) -> bool:
        return self.failure is None


@dataclass(frozen=True)
class BulkCheckedIn:
    guest_id: str
    guest_name: str
    confirmation_code: str
    plus_ones: int
    ticket_type: str


@dataclass(frozen=True)
class BulkFailure:
    guest_id: str
    code: ErrorCode
    reason: str
    guest_name: Optional[str] = None
    details: Dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class BulkCheckInResult:
    """Outcome of a bulk call.

    A non-empty ``failed`` list means the whole batch was rolled back and
    ``checked_in`` is empty.
    """
    checked_in: List[BulkCheckedIn]
    failed: List[BulkFailure]
    total_requested: int

    @property
    def committed(self) -> bool:
        return not self.failed


class CheckInService:
    """Check-in transaction engine"""

    def __init__(
        self,
        cache: Optional[ReadCache] = None,
        clock: Callable[[], datetime] = utcnow,
        undo_window_seconds: int = settings.UNDO_WINDOW_SECONDS,
        max_bulk_size: int = settings.MAX_BULK_SIZE,
    ):
        self.cache = cache
        self._clock = clock
        self.undo_window_ms = undo_window_seconds * 1000
        self.max_bulk_size = max_bulk_size

    # -------- single check-in --------

    def check_in(
        self,
        guest_id: str,
        plus_ones: int,
        notes: Optional[str],
        actor: Actor,
        db: Session,
    ) -> CheckInResult:
        """Check in one guest with ``plus_ones`` companions"""
        guest_id = self._require_guest_id(guest_id)
        if plus_ones is None or plus_ones < 0:
            raise ValidationError("Plus ones cannot be negative", {"field": "plus_ones"})
        notes = notes or ""

        try:
            guest = GuestRepo.get_for_update(db, guest_id)
            failure = self._check_in_failure(guest, guest_id, plus_ones)
            if failure is None:
                now = self._clock()
                code = self.confirmation_code(actor, guest, now)
                patch = self._check_in_patch(now, code, plus_ones, notes, actor)
                if GuestRepo.apply_patch(db, guest_id, patch, GuestStatus.NOT_CHECKED_IN.value):
                    CheckInLogRepo.append(
                        db,
                        timestamp=now,
                        guest_id=guest_id,
                        guest_name=guest.full_name,
                        action=CheckInAction.CHECK_IN,
                        usher_name=actor.display_name,
                        plus_ones_count=plus_ones,
                        notes=notes,
                        confirmation_code=code,
                    )
                    snapshot = self._snapshot(guest, patch)
                    db.commit()
                else:
                    # Lost the race on a store without row locks
                    guest = GuestRepo.get_for_update(db, guest_id)
                    failure = self._lost_race_failure(guest, guest_id, plus_ones)
            if failure is not None:
                db.rollback()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Check-in for guest {guest_id} failed in store", exc_info=True)
            raise StoreError("Failed to check in guest") from exc
        except Exception:
            db.rollback()
            raise

        if failure is not None:
            logger.warning(f"Check-in refused for guest {guest_id} by {actor.username}: {failure}")
            return CheckInResult(failure=failure)

        self._invalidate()
        logger.info(
            f"Guest {guest_id} ({snapshot.first_name} {snapshot.last_name}) checked in by "
            f"{actor.username} with {plus_ones} plus ones, confirmation {code}"
        )
        return CheckInResult(guest=snapshot, confirmation_code=code)

    # -------- undo --------

    def undo_check_in(
        self,
        guest_id: str,
        reason: Optional[str],
        actor: Actor,
        db: Session,
    ) -> UndoResult:
        """Reverse a check-in made within the undo window"""
        guest_id = self._require_guest_id(guest_id)
        reason = (reason or "").strip()

        try:
            guest = GuestRepo.get_for_update(db, guest_id)
            now = self._clock()
            failure = self._undo_failure(guest, guest_id, now)
            if failure is None:
                previous = PreviousCheckIn(
                    confirmation_code=guest.confirmation_code,
                    check_in_time=guest.check_in_time,
                    plus_ones=guest.plus_ones_checked_in,
                    checked_in_by=guest.checked_in_by,
                )
                patch = GuestPatch(
                    status=GuestStatus.NOT_CHECKED_IN.value,
                    check_in_time=None,
                    confirmation_code=None,
                    plus_ones_checked_in=0,
                    checked_in_by=None,
                    last_modified=now,
                )
                applied = GuestRepo.apply_patch(
                    db,
                    guest_id,
                    patch,
                    GuestStatus.CHECKED_IN.value,
                    expected_code=previous.confirmation_code,
                )
                if applied:
                    if reason:
                        undo_notes = f"Undo: {reason}. Previous confirmation: {previous.confirmation_code}"
                    else:
                        undo_notes = f"Undo check-in. Previous confirmation: {previous.confirmation_code}"
                    CheckInLogRepo.append(
                        db,
                        timestamp=now,
                        guest_id=guest_id,
                        guest_name=guest.full_name,
                        action=CheckInAction.UNDO_CHECK_IN,
                        usher_name=actor.display_name,
                        plus_ones_count=previous.plus_ones,
                        notes=undo_notes,
                        confirmation_code=previous.confirmation_code,
                    )
                    snapshot = self._snapshot(guest, patch)
                    db.commit()
                else:
                    guest = GuestRepo.get_for_update(db, guest_id)
                    failure = self._undo_failure(guest, guest_id, self._clock())
                    if failure is None:
                        # Re-checked in under a new code after our read
                        failure = CheckInFailure(
                            code=ErrorCode.INVALID_CHECK_IN,
                            message="Check-in changed while undoing; reload and retry",
                            details={"confirmation_code": guest.confirmation_code},
                        )
            if failure is not None:
                db.rollback()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error(f"Undo for guest {guest_id} failed in store", exc_info=True)
            raise StoreError("Failed to undo check-in") from exc
        except Exception:
            db.rollback()
            raise

        if failure is not None:
            logger.warning(f"Undo refused for guest {guest_id} by {actor.username}: {failure}")
            return UndoResult(failure=failure)

        self._invalidate()
        logger.info(
            f"Check-in undone for guest {guest_id} by {actor.username}, "
            f"voided confirmation {previous.confirmation_code}"
        )
        return UndoResult(guest=snapshot, previous=previous)

    # -------- bulk --------

    def bulk_check_in(
        self,
        entries: Sequence[BulkCheckInEntry],
        actor: Actor,
        db: Session,
    ) -> BulkCheckInResult:
        """Check in every entry or none of them.

        Every entry is scanned so the full failure set is reported; any
        failure rolls back the whole batch.
        """
        self._validate_bulk(entries)
        now = self._clock()
        checked_in: List[BulkCheckedIn] = []
        failed: List[BulkFailure] = []

        try:
            for entry in entries:
                guest_id = str(entry.guest_id).strip()
                try:
                    with self._entry_scope(db):
                        outcome = self._bulk_entry(db, guest_id, entry, actor, now)
                except SQLAlchemyError as exc:
                    logger.warning(f"Bulk entry {guest_id} failed: {exc}")
                    outcome = BulkFailure(
                        guest_id=guest_id,
                        code=ErrorCode.PROCESSING_ERROR,
                        reason=str(exc.__class__.__name__),
                    )
                if isinstance(outcome, BulkFailure):
                    failed.append(outcome)
                else:
                    checked_in.append(outcome)

            if failed:
                db.rollback()
            else:
                db.commit()
        except SQLAlchemyError as exc:
            db.rollback()
            logger.error("Bulk check-in failed in store", exc_info=True)
            raise StoreError("Failed to process bulk check-in") from exc
        except Exception:
            db.rollback()
            raise

        if failed:
            logger.warning(
                f"Bulk check-in by {actor.username} rolled back: "
                f"{len(failed)} of {len(entries)} failed "
                f"({', '.join(f'{f.guest_id}:{f.code.value}' for f in failed)})"
            )
            return BulkCheckInResult(checked_in=[], failed=failed, total_requested=len(entries))

        self._invalidate()
        logger.info(
            f"Bulk check-in by {actor.username} committed {len(checked_in)} guests: "
            f"{[c.guest_id for c in checked_in]}"
        )
        return BulkCheckInResult(checked_in=checked_in, failed=[], total_requested=len(entries))

    def _bulk_entry(self, db: Session, guest_id: str, entry: BulkCheckInEntry, actor: Actor, now: datetime):
        plus_ones = entry.plus_ones or 0
        notes = entry.notes or ""

        if len(guest_id) > Guest.id.type.length:
            return BulkFailure(
                guest_id=guest_id,
                code=ErrorCode.INVALID_GUEST_ID,
                reason=f"Guest ID must be at most {Guest.id.type.length} characters",
            )

        guest = GuestRepo.get_for_update(db, guest_id)
        failure = self._check_in_failure(guest, guest_id, plus_ones)
        if failure is None:
            code = self.confirmation_code(actor, guest, now)
            patch = self._check_in_patch(now, code, plus_ones, notes, actor)
            if GuestRepo.apply_patch(db, guest_id, patch, GuestStatus.NOT_CHECKED_IN.value):
                CheckInLogRepo.append(
                    db,
                    timestamp=now,
                    guest_id=guest_id,
                    guest_name=guest.full_name,
                    action=CheckInAction.BULK_CHECK_IN,
                    usher_name=actor.display_name,
                    plus_ones_count=plus_ones,
                    notes=notes,
                    confirmation_code=code,
                )
                return BulkCheckedIn(
                    guest_id=guest_id,
                    guest_name=guest.full_name,
                    confirmation_code=code,
                    plus_ones=plus_ones,
                    ticket_type=guest.ticket_type,
                )
            guest = GuestRepo.get_for_update(db, guest_id)
            failure = self._lost_race_failure(guest, guest_id, plus_ones)

        return BulkFailure(
            guest_id=guest_id,
            code=failure.code,
            reason=failure.message,
            guest_name=guest.full_name if guest is not None else None,
            details=failure.details,
        )

    def _validate_bulk(self, entries: Sequence[BulkCheckInEntry]) -> None:
        if not entries:
            raise ValidationError("guests array cannot be empty", {"field": "guests"})
        if len(entries) > self.max_bulk_size:
            raise ValidationError(
                f"Cannot check in more than {self.max_bulk_size} guests at once",
                {"requested": len(entries), "maximum": self.max_bulk_size},
            )
        for index, entry in enumerate(entries):
            if entry.guest_id is None or not str(entry.guest_id).strip():
                raise ValidationError(f"Guest at index {index} is missing guest_id", {"index": index})
            if entry.plus_ones is not None and entry.plus_ones < 0:
                raise ValidationError(
                    f"Guest at index {index} has invalid plus_ones value",
                    {"index": index, "value": entry.plus_ones},
                )

    @staticmethod
    def _entry_scope(db: Session):
        # pysqlite turns the release of an outermost savepoint into a commit,
        # so SQLite scans run without per-entry savepoints.
        if db.get_bind().dialect.name == "sqlite":
            return contextlib.nullcontext()
        return db.begin_nested()

    # -------- rules --------

    @staticmethod
    def _check_in_failure(guest: Optional[Guest], guest_id: str, plus_ones: int) -> Optional[CheckInFailure]:
        if guest is None:
            return CheckInFailure(
                code=ErrorCode.NOT_FOUND,
                message=f"Guest with ID {guest_id} not found",
                details={"guest_id": guest_id},
            )
        if guest.status == GuestStatus.CHECKED_IN.value:
            return CheckInFailure(
                code=ErrorCode.ALREADY_CHECKED_IN,
                message=f"{guest.full_name} is already checked in",
                details={
                    "check_in_time": guest.check_in_time,
                    "checked_in_by": guest.checked_in_by,
                    "confirmation_code": guest.confirmation_code,
                },
            )
        if plus_ones > guest.plus_ones_allowed:
            return CheckInFailure(
                code=ErrorCode.PLUS_ONES_EXCEEDED,
                message=(
                    f"Guest is only allowed {guest.plus_ones_allowed} plus ones, "
                    f"but {plus_ones} were requested"
                ),
                details={"requested": plus_ones, "allowed": guest.plus_ones_allowed},
            )
        return None

    def _lost_race_failure(self, guest: Optional[Guest], guest_id: str, plus_ones: int) -> CheckInFailure:
        """Classify a guarded update that matched no row"""
        failure = self._check_in_failure(guest, guest_id, plus_ones)
        if failure is None:
            # Checked in and undone again between our read and write
            failure = CheckInFailure(
                code=ErrorCode.PROCESSING_ERROR,
                message="Guest changed while checking in; reload and retry",
                details={"guest_id": guest_id},
            )
        return failure

    def _undo_failure(self, guest: Optional[Guest], guest_id: str, now: datetime) -> Optional[CheckInFailure]:
        if guest is None:
            return CheckInFailure(
                code=ErrorCode.NOT_FOUND,
                message=f"Guest with ID {guest_id} not found",
                details={"guest_id": guest_id},
            )
        if guest.status != GuestStatus.CHECKED_IN.value:
            return CheckInFailure(
                code=ErrorCode.NOT_CHECKED_IN,
                message=f"{guest.full_name} is not checked in",
                details={"current_status": guest.status},
            )
        if guest.check_in_time is None:
            return CheckInFailure(
                code=ErrorCode.INVALID_CHECK_IN,
                message="Guest has no valid check-in time",
            )
        elapsed_ms = (now - guest.check_in_time).total_seconds() * 1000
        if elapsed_ms > self.undo_window_ms:
            seconds_elapsed = int(elapsed_ms // 1000)
            max_seconds = self.undo_window_ms // 1000
            return CheckInFailure(
                code=ErrorCode.TIME_WINDOW_EXPIRED,
                message=(
                    f"Cannot undo check-in after {max_seconds} seconds. "
                    f"{seconds_elapsed} seconds have elapsed."
                ),
                details={
                    "check_in_time": guest.check_in_time,
                    "seconds_elapsed": seconds_elapsed,
                    "max_allowed_seconds": max_seconds,
                },
            )
        return None

    # -------- helpers --------

    @staticmethod
    def confirmation_code(actor: Actor, guest: Guest, now: datetime) -> str:
        """``{username}-{first}{last}-{epoch millis}``, upper-cased.

        A display token, unique only to the millisecond per actor and name.
        """
        return f"{actor.username}-{guest.first_name}{guest.last_name}-{epoch_millis(now)}".upper()

    @staticmethod
    def _check_in_patch(now: datetime, code: str, plus_ones: int, notes: str, actor: Actor) -> GuestPatch:
        return GuestPatch(
            status=GuestStatus.CHECKED_IN.value,
            check_in_time=now,
            confirmation_code=code,
            plus_ones_checked_in=plus_ones,
            checked_in_by=actor.display_name,
            # Blank notes never overwrite what is stored
            notes=notes if notes else UNSET,
            last_modified=now,
        )

    @staticmethod
    def _snapshot(guest: Guest, patch: GuestPatch) -> GuestResponse:
        return GuestResponse.model_validate(guest).model_copy(update=patch.values())

    @staticmethod
    def _require_guest_id(guest_id) -> str:
        guest_id = str(guest_id).strip() if guest_id is not None else ""
        if not guest_id:
            raise ValidationError("Guest ID is required", {"field": "guest_id"})
        return guest_id

    def _invalidate(self) -> None:
        if self.cache is not None:
            self.cache.invalidate_pattern(GUEST_KEY_PATTERN)
