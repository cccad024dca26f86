# reservation_engine/application/catalog_service.py

import logging
from dataclasses import dataclass
from decimal import Decimal

from sqlalchemy.orm import Session

from reservation_engine.config import ReservationSettings
from reservation_engine.domain.exceptions import (
    ConflictError,
    NotFoundError,
    StateError,
    ValidationError,
)
from reservation_engine.domain.pricing import ZERO, to_money
from reservation_engine.infrastructure.db.models import Branch, DiningTable
from reservation_engine.infrastructure.db.session import atomic
from reservation_engine.infrastructure.repositories.table_repository import (
    TableRepository,
)

logger = logging.getLogger(__name__)


@dataclass
class TableDraft:
    zone: str
    table_type: str
    capacity: int
    minimum_spend: Decimal = ZERO
    base_price: Decimal = ZERO
    is_active: bool = True
    notes: str | None = None


class CatalogService:
    """Branches and the tables they own."""

    def __init__(self, db: Session, settings: ReservationSettings):
        self.db = db
        self.settings = settings
        self.table_repository = TableRepository(db)

    # -----------------------------
    # Branches
    # -----------------------------
    def list_branches(self, include_inactive: bool = False) -> list[Branch]:
        return self.table_repository.list_branches(include_inactive)

    def get_branch(self, branch_id: int) -> Branch:
        branch = self.table_repository.get_branch(branch_id)
        if branch is None:
            raise NotFoundError("Branch", branch_id)
        return branch

    def create_branch(self, name: str, address: str, phone: str | None = None) -> Branch:
        if not name or not name.strip():
            raise ValidationError("Branch name is required", field="name")
        if not address or not address.strip():
            raise ValidationError("Branch address is required", field="address")

        with atomic(self.db):
            branch = self.table_repository.add_branch(
                Branch(name=name.strip(), address=address.strip(), phone=phone, is_active=True)
            )
        logger.info("Created branch %s (%s)", branch.id, branch.name)
        return branch

    def set_branch_active(self, branch_id: int, is_active: bool) -> Branch:
        with atomic(self.db):
            branch = self.get_branch(branch_id)
            branch.is_active = is_active
        return branch

    # -----------------------------
    # Tables
    # -----------------------------
    def list_tables(self, branch_id: int, include_inactive: bool = False) -> list[DiningTable]:
        self.get_branch(branch_id)
        return self.table_repository.list_for_branch(branch_id, include_inactive)

    def get_table(self, table_id: int) -> DiningTable:
        table = self.table_repository.get_by_id(table_id)
        if table is None:
            raise NotFoundError("Table", table_id)
        return table

    def _check_draft(self, draft: TableDraft) -> None:
        if not draft.zone or not draft.zone.strip():
            raise ValidationError("Zone is required", field="zone")
        if not draft.table_type or not draft.table_type.strip():
            raise ValidationError("Table type is required", field="table_type")
        if not self.settings.min_party_size <= draft.capacity <= self.settings.max_party_size:
            raise ValidationError(
                f"Capacity must be between {self.settings.min_party_size} "
                f"and {self.settings.max_party_size}",
                field="capacity",
            )
        if draft.minimum_spend < 0 or draft.base_price < 0:
            raise ValidationError("Prices cannot be negative", field="minimum_spend")

    @staticmethod
    def _apply_draft(table: DiningTable, draft: TableDraft) -> None:
        table.zone = draft.zone.strip()
        table.table_type = draft.table_type.strip()
        table.capacity = draft.capacity
        table.minimum_spend = to_money(draft.minimum_spend)
        table.base_price = to_money(draft.base_price)
        table.is_active = draft.is_active
        table.notes = draft.notes

    def create_table(self, branch_id: int, table_number: str, draft: TableDraft) -> DiningTable:
        number = (table_number or "").strip()
        if not number:
            raise ValidationError("Table number is required", field="table_number")
        self._check_draft(draft)

        with atomic(self.db):
            self.get_branch(branch_id)
            if self.table_repository.get_by_number(branch_id, number) is not None:
                raise ConflictError(f"Table {number} already exists in branch {branch_id}")
            table = DiningTable(branch_id=branch_id, table_number=number)
            self._apply_draft(table, draft)
            self.table_repository.add(table)

        logger.info("Created table %s (%s) in branch %s", table.id, number, branch_id)
        return table

    def update_table(self, table_id: int, draft: TableDraft) -> DiningTable:
        """Pricing, seating and active flag change; branch and number do not."""
        self._check_draft(draft)
        with atomic(self.db):
            table = self.table_repository.lock_table(table_id)
            if table is None:
                raise NotFoundError("Table", table_id)
            self._apply_draft(table, draft)

        logger.info("Updated table %s", table_id)
        return table

    def delete_table(self, table_id: int) -> None:
        with atomic(self.db):
            table = self.table_repository.lock_table(table_id)
            if table is None:
                raise NotFoundError("Table", table_id)
            if self.table_repository.has_bookings(table_id):
                raise StateError(
                    f"Table {table.table_number} has bookings; deactivate it instead"
                )
            self.table_repository.delete(table)

        logger.info("Deleted table %s", table_id)
