"""
Notification dispatch.

Notifications snapshot the data they need when they are built, so they can
be delivered from a background task after the request session is gone.
Delivery writes one row per recipient to the ``notifications`` table.
"""
import logging
from typing import Any, Callable, Dict, Iterable, List

from pybreaker import CircuitBreaker, CircuitBreakerError
from sqlalchemy.orm import Session

from . import models
from .circuit_breaker import notification_circuit_breaker

logger = logging.getLogger(__name__)


class BaseNotification:
    type = "notification"

    def __init__(self, data: Dict[str, Any]):
        self.data = data

    def to_dict(self) -> Dict[str, Any]:
        return dict(self.data)

    def __repr__(self):
        return f"<{self.type} {self.data}>"


class OfficePendingApproval(BaseNotification):
    type = "office_pending_approval"

    def __init__(self, office: models.Office):
        super().__init__({"office_id": office.id, "title": office.title})


class _ReservationNotification(BaseNotification):
    def __init__(self, reservation: models.Reservation):
        super().__init__(
            {
                "reservation_id": reservation.id,
                "office_id": reservation.office_id,
                "user_id": reservation.user_id,
                "start_date": reservation.start_date.isoformat(),
                "end_date": reservation.end_date.isoformat(),
                "price": reservation.price,
            }
        )


class NewReservation(_ReservationNotification):
    type = "new_reservation"


class NewHostReservation(_ReservationNotification):
    type = "new_host_reservation"


class UserReservationStarting(_ReservationNotification):
    type = "user_reservation_starting"


class HostReservationStarting(_ReservationNotification):
    type = "host_reservation_starting"


class Notifier:
    def __init__(
        self,
        session_factory: Callable[[], Session],
        breaker: CircuitBreaker = notification_circuit_breaker,
    ):
        self._session_factory = session_factory
        self._breaker = breaker

    def send(self, user_ids: Iterable[int], notification: BaseNotification) -> None:
        """
        Deliver ``notification`` to every user in ``user_ids``.

        Never raises: a failed delivery is logged and dropped, the caller's
        own work has already been committed.
        """
        recipients = [user_id for user_id in user_ids if user_id is not None]
        if not recipients:
            return
        try:
            self._breaker.call(self._store, recipients, notification)
        except CircuitBreakerError:
            logger.warning("Notification circuit open, dropped %r for %s", notification, recipients)
        except Exception:
            logger.exception("Failed to deliver %r to %s", notification, recipients)
        else:
            logger.info("Delivered %s to %s", notification.type, recipients)

    def _store(self, user_ids: List[int], notification: BaseNotification) -> None:
        with self._session_factory() as db:
            db.add_all(
                [
                    models.Notification(
                        user_id=user_id,
                        type=notification.type,
                        data=notification.to_dict(),
                    )
                    for user_id in user_ids
                ]
            )
            db.commit()


def admin_ids(db: Session) -> List[int]:
    return [user_id for (user_id,) in db.query(models.User.id).filter(models.User.is_admin.is_(True))]
