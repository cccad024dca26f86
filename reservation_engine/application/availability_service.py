# reservation_engine/application/availability_service.py

import logging
from datetime import date, datetime, time

from sqlalchemy.orm import Session

from reservation_engine.config import ReservationSettings
from reservation_engine.domain.timing import (
    compute_end_time,
    parse_start_time,
    to_calendar_date,
    validate_duration,
    validate_interval,
    validate_party_size,
)
from reservation_engine.infrastructure.db.models import DiningTable
from reservation_engine.infrastructure.repositories.booking_repository import (
    BookingRepository,
)
from reservation_engine.infrastructure.repositories.table_repository import (
    TableRepository,
)

logger = logging.getLogger(__name__)


class ConflictChecker:
    """Read-only overlap test for one table on one calendar date."""

    def __init__(self, db: Session):
        self.booking_repository = BookingRepository(db)

    def has_conflict(
        self,
        table_id: int,
        booking_date: date | datetime,
        start_time: time,
        end_time: time,
        exclude_booking_id: int | None = None,
    ) -> bool:
        validate_interval(start_time, end_time)
        return self.booking_repository.has_overlap(
            table_id=table_id,
            booking_date=to_calendar_date(booking_date),
            start_time=start_time,
            end_time=end_time,
            exclude_booking_id=exclude_booking_id,
        )


class AvailabilityService:
    """
    Finds tables that can seat a party for a slot.

    The free-table query shares its overlap predicate with ConflictChecker,
    so a table returned here never has a conflict for the same interval.
    """

    def __init__(self, db: Session, settings: ReservationSettings):
        self.settings = settings
        self.table_repository = TableRepository(db)

    def resolve_slot(
        self,
        start_time: str | time,
        duration_hours: int,
        party_size: int,
    ) -> tuple[time, time]:
        """Validate slot inputs and return the ``(start, end)`` times."""
        validate_duration(
            duration_hours,
            self.settings.min_duration_hours,
            self.settings.max_duration_hours,
        )
        validate_party_size(
            party_size,
            self.settings.min_party_size,
            self.settings.max_party_size,
        )
        start = parse_start_time(start_time)
        return start, compute_end_time(start, duration_hours)

    def find_available_tables(
        self,
        branch_id: int,
        booking_date: date | datetime,
        start_time: str | time,
        duration_hours: int,
        party_size: int,
        zone: str | None = None,
    ) -> list[DiningTable]:
        start, end = self.resolve_slot(start_time, duration_hours, party_size)
        calendar_date = to_calendar_date(booking_date)
        zone = zone.strip() if zone and zone.strip() else None

        tables = self.table_repository.find_free(
            branch_id=branch_id,
            booking_date=calendar_date,
            start_time=start,
            end_time=end,
            party_size=party_size,
            zone=zone,
        )
        logger.debug(
            "Availability branch=%s date=%s %s-%s party=%s zone=%s -> %s tables",
            branch_id,
            calendar_date,
            start,
            end,
            party_size,
            zone,
            len(tables),
        )
        return sorted(tables, key=lambda t: (t.zone, t.table_number))
