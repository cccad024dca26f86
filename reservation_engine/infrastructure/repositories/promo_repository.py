# reservation_engine/infrastructure/repositories/promo_repository.py

from sqlalchemy import func, select
from sqlalchemy.orm import Session

from reservation_engine.infrastructure.db.models import PromoCode


class PromoRepository:

    def __init__(self, db: Session):
        self.db = db

    def get_by_code(self, code: str) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.code == code)
        return self.db.execute(stmt).scalar_one_or_none()

    def lock_by_code(self, code: str) -> PromoCode | None:
        """
        SELECT ... FOR UPDATE
        Linearizes use-count increments for one code.
        """
        stmt = select(PromoCode).where(PromoCode.code == code).with_for_update()
        return self.db.execute(stmt).scalar_one_or_none()

    def get_by_id(self, promo_id: int) -> PromoCode | None:
        stmt = select(PromoCode).where(PromoCode.id == promo_id)
        return self.db.execute(stmt).scalar_one_or_none()

    def code_taken(self, code: str, exclude_id: int | None = None) -> bool:
        stmt = select(PromoCode.id).where(func.upper(PromoCode.code) == code.upper())
        if exclude_id is not None:
            stmt = stmt.where(PromoCode.id != exclude_id)
        return self.db.execute(stmt.limit(1)).first() is not None

    def list_all(self) -> list[PromoCode]:
        stmt = select(PromoCode).order_by(PromoCode.valid_to.desc())
        return list(self.db.execute(stmt).scalars().all())

    def add(self, promo: PromoCode) -> PromoCode:
        self.db.add(promo)
        self.db.flush()
        return promo

    def delete(self, promo: PromoCode) -> None:
        self.db.delete(promo)
