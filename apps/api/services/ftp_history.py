"""
FTP history.

Append-only: recording a new FTP never edits an older row. The FTP in
effect on a date is the row with the latest effective_date on or before
it (ties go to the most recently recorded).
"""

from datetime import date
from typing import List, Optional
from uuid import UUID
from sqlalchemy.orm import Session
import logging

from core.clock import utc_now, utc_today
from core.exceptions import InvariantViolation
from models import FTPHistory

logger = logging.getLogger(__name__)

TEST_TYPES = ("ramp", "20min", "8min", "auto_detected", "manual")


def record_ftp(
    db: Session,
    user_id: UUID,
    ftp_watts: int,
    effective_date: Optional[date] = None,
    lthr_bpm: Optional[int] = None,
    test_type: str = "manual",
    ride_id: Optional[UUID] = None,
    notes: Optional[str] = None,
) -> FTPHistory:
    if ftp_watts is None or ftp_watts <= 0:
        raise InvariantViolation(f"FTP must be positive, got {ftp_watts!r}")
    if lthr_bpm is not None and not (0 < lthr_bpm < 220):
        raise InvariantViolation(f"LTHR must be between 0 and 220 bpm, got {lthr_bpm!r}")
    if test_type not in TEST_TYPES:
        raise InvariantViolation(f"Unknown FTP test type: {test_type!r}")

    entry = FTPHistory(
        user_id=user_id,
        ftp_watts=ftp_watts,
        lthr_bpm=lthr_bpm,
        effective_date=effective_date or utc_today(),
        test_type=test_type,
        ride_id=ride_id,
        notes=notes,
        created_at=utc_now(),
    )
    db.add(entry)
    db.commit()
    db.refresh(entry)

    logger.info(f"Recorded FTP {ftp_watts}W for user {user_id} effective {entry.effective_date} ({test_type})")
    return entry


def get_current_ftp(db: Session, user_id: UUID, as_of: Optional[date] = None) -> Optional[FTPHistory]:
    """FTP row in effect on `as_of`, or None if nothing was recorded by then."""
    if as_of is None:
        as_of = utc_today()
    return (
        db.query(FTPHistory)
        .filter(FTPHistory.user_id == user_id, FTPHistory.effective_date <= as_of)
        .order_by(FTPHistory.effective_date.desc(), FTPHistory.created_at.desc())
        .first()
    )


def get_ftp_history(db: Session, user_id: UUID, limit: int = 20) -> List[FTPHistory]:
    return (
        db.query(FTPHistory)
        .filter(FTPHistory.user_id == user_id)
        .order_by(FTPHistory.effective_date.desc(), FTPHistory.created_at.desc())
        .limit(limit)
        .all()
    )
