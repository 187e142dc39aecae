# src/services/guard_session.py
from services import notification_service
from services.notification_feed import NotificationFeed
from services.visit_closer import close_visit
from utils.logger import setup_logger
from utils.scheduler import run_expiration_cycle

logger = setup_logger(__name__)


class GuardSession:
    """
    Everything one signed-in guard owns: the live notification feed and the
    periodic expiration cycle. ``start`` acquires both, ``stop`` releases
    both; use it as a context manager to guarantee the release.
    """

    def __init__(self, guard_id, store, scheduler=None, on_alert=None, on_change=None):
        self.guard_id = guard_id
        self.store = store
        self.scheduler = scheduler
        self.feed = NotificationFeed(store, guard_id, on_alert=on_alert, on_change=on_change)
        self.active = False

    def start(self):
        logger.info(f"🛡️ Starting session for guard {self.guard_id}")
        self.active = True
        self.feed.open()
        self.refresh()
        if self.scheduler is not None:
            self.scheduler.add_guard(self.store, self.guard_id)
        return self

    def stop(self):
        if not self.active:
            return
        self.active = False
        if self.scheduler is not None:
            self.scheduler.remove_guard(self.guard_id)
        self.feed.close()
        logger.info(f"👋 Session ended for guard {self.guard_id}")

    def __enter__(self):
        return self.start()

    def __exit__(self, exc_type, exc, tb):
        self.stop()
        return False

    def refresh(self, now=None):
        """Pull-to-refresh: run an expiration cycle now and retry a failed feed load."""
        summary = run_expiration_cycle(self.store, self.guard_id, now=now)
        if not self.active:
            logger.debug(f"Session for guard {self.guard_id} ended mid-cycle, discarding result")
            return {"status": "discarded", "guard_id": self.guard_id}
        if self.feed.load_failed or not self.feed.connected:
            self.feed.reconnect()
        return summary

    # -- guard actions ------------------------------------------------------

    def time_out(self, visit_id):
        return close_visit(self.store, visit_id)

    def mark_read(self, notification_id):
        return notification_service.mark_as_read(self.store, self.guard_id, notification_id)

    def mark_all_read(self):
        return notification_service.mark_all_as_read(self.store, self.guard_id)

    def clear_all(self):
        return notification_service.clear_all(self.store, self.guard_id)

    @property
    def notifications(self):
        return self.feed.notifications

    @property
    def unread_count(self):
        return self.feed.unread_count
