from datetime import date, timedelta
from decimal import Decimal

from reservation_engine.application.catalog_service import CatalogService, TableDraft
from reservation_engine.application.promo_service import PromoDraft, PromoService
from reservation_engine.config import ReservationSettings
from reservation_engine.infrastructure.db.models import Base
from reservation_engine.infrastructure.db.session import build_engine, build_session_factory

BRANCHES = [
    {
        "name": "Riverside",
        "address": "88 Charoen Krung Road, Bangkok",
        "phone": "+66 2 000 1111",
        "tables": [
            ("A1", "Indoor", "Standard", 2, "800"),
            ("A2", "Indoor", "Standard", 4, "1200"),
            ("B1", "Indoor", "Booth", 6, "2500"),
            ("T1", "Outdoor", "Terrace", 4, "2000"),
            ("T2", "Outdoor", "Terrace", 6, "3000"),
            ("V1", "VIP", "Private Room", 10, "8000"),
        ],
    },
    {
        "name": "Sukhumvit",
        "address": "15 Sukhumvit Soi 11, Bangkok",
        "phone": "+66 2 000 2222",
        "tables": [
            ("S1", "Indoor", "Standard", 2, "600"),
            ("S2", "Indoor", "Standard", 4, "1000"),
            ("R1", "Rooftop", "Lounge", 8, "5000"),
        ],
    },
]


def seed_catalog(catalog: CatalogService) -> None:
    existing = {branch.name: branch for branch in catalog.list_branches(include_inactive=True)}

    for item in BRANCHES:
        branch = existing.get(item["name"])
        if branch is None:
            branch = catalog.create_branch(item["name"], item["address"], item["phone"])

        numbers = {table.table_number for table in catalog.list_tables(branch.id, include_inactive=True)}
        for number, zone, table_type, capacity, minimum_spend in item["tables"]:
            if number in numbers:
                continue
            catalog.create_table(
                branch.id,
                number,
                TableDraft(
                    zone=zone,
                    table_type=table_type,
                    capacity=capacity,
                    minimum_spend=Decimal(minimum_spend),
                ),
            )


def seed_promos(promos: PromoService) -> None:
    today = date.today()
    drafts = [
        PromoDraft(
            code="WELCOME10",
            description="10% off your first table",
            valid_from=today,
            valid_to=today + timedelta(days=90),
            max_uses=500,
            discount_percent=Decimal("10"),
        ),
        PromoDraft(
            code="FRIDAY500",
            description="500 off Friday terrace bookings",
            valid_from=today,
            valid_to=today + timedelta(days=60),
            max_uses=100,
            discount_amount=Decimal("500"),
            minimum_spend=Decimal("2000"),
            applicable_days=["Friday"],
            applicable_zones=["Outdoor"],
        ),
    ]

    taken = {promo.code for promo in promos.list_promos()}
    for draft in drafts:
        if draft.code not in taken:
            promos.create_promo(draft)


def main() -> None:
    settings = ReservationSettings.from_env()
    engine = build_engine(settings)
    Base.metadata.create_all(bind=engine)

    db = build_session_factory(engine)()
    try:
        seed_catalog(CatalogService(db, settings))
        seed_promos(PromoService(db))
        print("Seed complete: Riverside and Sukhumvit branches, tables and promo codes added.")
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    main()
