"""
Run the no-show and reminder sweeps once. Meant to be triggered by cron,
e.g. every five minutes:

    */5 * * * * python scripts/run_sweeps.py
"""

import logging

from reservation_engine.application.sweeps import run_no_show_sweep, run_reminder_sweep
from reservation_engine.config import ReservationSettings
from reservation_engine.domain.timing import utc_now
from reservation_engine.infrastructure.db.session import build_engine, build_session_factory
from reservation_engine.infrastructure.notifications.outbox_notifier import OutboxNotifier
from reservation_engine.main import configure_logging

logger = logging.getLogger("reservation_engine.sweeps")


def main() -> None:
    settings = ReservationSettings.from_env()
    configure_logging(settings)

    engine = build_engine(settings)
    db = build_session_factory(engine)()
    now = utc_now()
    try:
        notifier = OutboxNotifier(db)
        no_shows = run_no_show_sweep(db, notifier, settings, now)
        reminders = run_reminder_sweep(db, notifier, settings, now)
        logger.info(
            "Sweeps finished: %s no-shows, %s reminders",
            len(no_shows),
            len(reminders),
        )
    finally:
        db.close()
        engine.dispose()


if __name__ == "__main__":
    main()
