import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI
from sqlalchemy import text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import OperationalError

from reservation_engine.api.routes.admin_routes import admin_router
from reservation_engine.api.routes.routes import router
from reservation_engine.config import ReservationSettings
from reservation_engine.infrastructure.db.models import Base
from reservation_engine.infrastructure.db.session import (
    build_engine,
    build_session_factory,
)
from reservation_engine.infrastructure.payments.razorpay_gateway import (
    RazorpayDepositGateway,
)

logger = logging.getLogger(__name__)


def configure_logging(settings: ReservationSettings) -> None:
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


def _wait_for_db(engine: Engine, settings: ReservationSettings) -> None:
    # Handles the common case where API starts before Postgres is ready.
    max_retries = settings.db_connect_max_retries
    retry_delay_seconds = settings.db_connect_retry_delay

    for attempt in range(1, max_retries + 1):
        try:
            with engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            logger.info("Database is reachable.")
            return
        except OperationalError:
            if attempt == max_retries:
                logger.exception(
                    "Database not reachable after %s attempts. Check DATABASE_URL and Postgres status.",
                    max_retries,
                )
                raise
            logger.warning(
                "Database not ready (attempt %s/%s). Retrying in %.1f seconds...",
                attempt,
                max_retries,
                retry_delay_seconds,
            )
            time.sleep(retry_delay_seconds)


def create_app(settings: ReservationSettings | None = None) -> FastAPI:
    """
    Build the ASGI app. Settings, engine and collaborators are created once
    at start-up and kept on ``app.state``.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        resolved = settings or ReservationSettings.from_env()
        configure_logging(resolved)

        engine = build_engine(resolved)
        _wait_for_db(engine, resolved)
        Base.metadata.create_all(bind=engine)

        app.state.settings = resolved
        app.state.engine = engine
        app.state.session_factory = build_session_factory(engine)
        app.state.deposit_gateway = RazorpayDepositGateway.from_settings(resolved)
        logger.info("Table Reservation Engine started (timezone %s)", resolved.service_timezone)
        try:
            yield
        finally:
            engine.dispose()

    app = FastAPI(title="Table Reservation Engine", lifespan=lifespan)
    app.include_router(router)
    app.include_router(admin_router)
    return app


app = create_app()
