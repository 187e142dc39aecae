# src/services/notification_dispatcher.py
from enum import Enum

from services.expiration import format_campus_time
from utils.errors import ConstraintViolation, Inconsistent, StoreError, TransientIO
from utils.logger import setup_logger

logger = setup_logger(__name__)


class DispatchResult(Enum):
    SUCCESS = "success"
    ALREADY_SENT = "alreadySent"
    FAILURE = "failure"


def build_expiration_message(visit):
    return (
        "Visitor ID Expired but is not Timed Out!\n"
        f"Visit ID: {visit.visit_code}\n"
        f"Expired: {format_campus_time(visit.expiration)}"
    )


class NotificationDispatcher:
    """At most one stored notification per (guard, visit)."""

    def __init__(self, store):
        self.store = store

    def dispatch(self, visit):
        guard_id = visit.security_id
        extra_log = {"request_id": self.store.request_id, "visit_id": visit.id, "guard_id": guard_id}

        if not guard_id:
            # Heuristic gate assignments are display-only; nobody to notify
            logger.warning(f"⚠️ Visit {visit.visit_code} has no responsible guard, not dispatching", extra=extra_log)
            return DispatchResult.FAILURE

        try:
            existing = self.store.select_notifications(guard_id, visit_id=visit.id)
            if existing:
                logger.info(f"🔁 Notification already exists for visit {visit.visit_code}", extra=extra_log)
                self._heal_flag(visit, guard_id, extra_log)
                return DispatchResult.ALREADY_SENT

            try:
                notification = self.store.insert_notification(guard_id, visit.id, build_expiration_message(visit))
            except ConstraintViolation:
                # Lost the race to a concurrent dispatcher; its row is the one notification
                logger.info(f"🔁 Concurrent dispatch won for visit {visit.visit_code}", extra=extra_log)
                self._heal_flag(visit, guard_id, extra_log)
                return DispatchResult.ALREADY_SENT

            logger.info(f"🔔 Notification {notification.id} stored for visit {visit.visit_code}", extra=extra_log)
        except TransientIO as e:
            logger.error(f"❌ Store unavailable while dispatching {visit.visit_code}: {str(e)}", extra=extra_log)
            return DispatchResult.FAILURE

        try:
            self._mark_notified(visit, guard_id)
        except Inconsistent as e:
            # The row exists, so this still counts as sent; next cycle reconciles the flag
            logger.error(f"💥 INCONSISTENT: {str(e)}", extra=extra_log)
        return DispatchResult.SUCCESS

    def _mark_notified(self, visit, guard_id):
        try:
            matched = self.store.update_visit_flag(visit.id, guard_id, "notification_sent", True)
        except StoreError as e:
            raise Inconsistent(f"notification stored for {visit.visit_code} but flag update failed: {str(e)}") from e
        if matched == 0:
            raise Inconsistent(f"flag update for {visit.visit_code} matched no rows for guard {guard_id}")
        visit.notification_sent = True

    def _heal_flag(self, visit, guard_id, extra_log):
        if visit.notification_sent:
            return
        try:
            self._mark_notified(visit, guard_id)
        except Inconsistent as e:
            logger.warning(f"⚠️ Could not reconcile visit {visit.visit_code}: {str(e)}", extra=extra_log)
            return
        logger.info(f"🩹 Reconciled notification_sent for visit {visit.visit_code}", extra=extra_log)
