# reservation_engine/infrastructure/repositories/table_repository.py

from datetime import date, time

from sqlalchemy import exists, func, select
from sqlalchemy.orm import Session

from reservation_engine.infrastructure.db.models import Booking, Branch, DiningTable
from reservation_engine.infrastructure.repositories.booking_repository import (
    overlapping_bookings,
)


class TableRepository:

    def __init__(self, db: Session):
        self.db = db

    def lock_table(self, table_id: int) -> DiningTable | None:
        """
        SELECT ... FOR UPDATE
        Serializes concurrent bookings of the same table.
        """

        stmt = (
            select(DiningTable)
            .where(DiningTable.id == table_id)
            .with_for_update()
        )

        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, table_id: int) -> DiningTable | None:
        stmt = select(DiningTable).where(DiningTable.id == table_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_number(self, branch_id: int, table_number: str) -> DiningTable | None:
        stmt = (
            select(DiningTable)
            .where(DiningTable.branch_id == branch_id)
            .where(DiningTable.table_number == table_number)
        )
        return self.db.execute(stmt).scalar_one_or_none()

    def list_for_branch(self, branch_id: int, include_inactive: bool = False) -> list[DiningTable]:
        stmt = select(DiningTable).where(DiningTable.branch_id == branch_id)
        if not include_inactive:
            stmt = stmt.where(DiningTable.is_active.is_(True))
        tables = list(self.db.execute(stmt).scalars().all())
        return sorted(tables, key=lambda t: (t.zone, t.table_number))

    def find_free(
        self,
        branch_id: int,
        booking_date: date,
        start_time: time,
        end_time: time,
        party_size: int,
        zone: str | None = None,
    ) -> list[DiningTable]:
        stmt = (
            select(DiningTable)
            .where(DiningTable.branch_id == branch_id)
            .where(DiningTable.is_active.is_(True))
            .where(DiningTable.capacity >= party_size)
            .where(
                ~overlapping_bookings(
                    DiningTable.id,
                    booking_date,
                    start_time,
                    end_time,
                ).exists()
            )
        )
        if zone:
            stmt = stmt.where(func.lower(DiningTable.zone) == zone.strip().lower())

        return list(self.db.execute(stmt).scalars().all())

    def has_bookings(self, table_id: int) -> bool:
        stmt = select(exists().where(Booking.table_id == table_id))
        return bool(self.db.execute(stmt).scalar())

    def add(self, table: DiningTable) -> DiningTable:
        self.db.add(table)
        self.db.flush()
        return table

    def delete(self, table: DiningTable) -> None:
        self.db.delete(table)

    # -----------------------------
    # Branches
    # -----------------------------
    def get_branch(self, branch_id: int) -> Branch | None:
        stmt = select(Branch).where(Branch.id == branch_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def list_branches(self, include_inactive: bool = False) -> list[Branch]:
        stmt = select(Branch).order_by(Branch.name)
        if not include_inactive:
            stmt = stmt.where(Branch.is_active.is_(True))
        return list(self.db.execute(stmt).scalars().all())

    def add_branch(self, branch: Branch) -> Branch:
        self.db.add(branch)
        self.db.flush()
        return branch
