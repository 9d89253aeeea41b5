"""
Console commands.

``officespace-send-reminders`` is meant to run once a day from cron; it
notifies visitors and hosts about reservations starting today.
"""
import logging
import sys
from datetime import date
from typing import Optional

from sqlalchemy.orm import Session, joinedload

from . import models
from .config import get_settings
from .database import SessionLocal, init_db
from .notifications import HostReservationStarting, Notifier, UserReservationStarting

logger = logging.getLogger(__name__)


def send_due_reservation_notifications(
    db: Session,
    notifier: Notifier,
    today: Optional[date] = None,
) -> int:
    """Notify both sides of every active reservation starting ``today``."""
    today = today or date.today()
    reservations = (
        db.query(models.Reservation)
        .options(joinedload(models.Reservation.office))
        .filter(
            models.Reservation.status == models.Reservation.STATUS_ACTIVE,
            models.Reservation.start_date == today,
        )
        .order_by(models.Reservation.id)
        .all()
    )
    for reservation in reservations:
        notifier.send([reservation.user_id], UserReservationStarting(reservation))
        notifier.send([reservation.office.user_id], HostReservationStarting(reservation))

    logger.info("Sent reminders for %d reservations starting %s", len(reservations), today)
    return len(reservations)


def send_reminders() -> int:
    logging.basicConfig(
        level=get_settings().log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stdout,
    )
    init_db()
    with SessionLocal() as db:
        send_due_reservation_notifications(db, Notifier(SessionLocal))
    return 0


if __name__ == "__main__":
    sys.exit(send_reminders())
