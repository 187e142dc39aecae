# src/services/notification_feed.py
"""
Live unread-notification list for one guard.

The list is rebuilt from the store on every (re)connect and then kept
current from the change feed. Events are applied in receipt order; an event
whose sequence number is not newer than the last one applied on the current
connection is ignored.
"""
import threading

from models.models import Notification
from utils.errors import StoreError
from utils.logger import setup_logger

logger = setup_logger(__name__)

TABLE = Notification.__tablename__


class NotificationFeed:

    def __init__(self, store, guard_id, on_alert=None, on_change=None):
        self.store = store
        self.guard_id = guard_id
        self.on_alert = on_alert
        self.on_change = on_change
        self.load_failed = False
        self._items = []
        self._lock = threading.RLock()
        self._subscription = None
        self._last_seq = 0
        self._closing = False

    # -- lifecycle ----------------------------------------------------------

    def open(self):
        """Subscribe, then load the authoritative unread list."""
        with self._lock:
            self._closing = False
            self._last_seq = 0
            try:
                self._subscription = self.store.subscribe(
                    TABLE, self.guard_id,
                    on_insert=self._on_insert,
                    on_update=self._on_update,
                    on_delete=self._on_delete,
                    on_disconnect=self._on_disconnect,
                )
            except StoreError as e:
                logger.error(f"❌ Could not subscribe notifications for guard {self.guard_id}: {str(e)}")
                self._subscription = None
            self.refresh()
        return self

    def close(self):
        with self._lock:
            self._closing = True
            if self._subscription is not None:
                self._subscription.close()
                self._subscription = None

    def reconnect(self):
        logger.info(f"🔄 Reconnecting notification feed for guard {self.guard_id}")
        self.close()
        return self.open()

    @property
    def connected(self):
        return self._subscription is not None and not self._subscription.closed

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    # -- state --------------------------------------------------------------

    def refresh(self):
        """Replace the list with the store's unread notifications, newest first."""
        try:
            rows = self.store.select_notifications(self.guard_id, unread_only=True)
        except StoreError as e:
            logger.error(f"❌ Failed to load notifications for guard {self.guard_id}: {str(e)}")
            with self._lock:
                self.load_failed = True
            self._changed()
            return False

        with self._lock:
            self._items = [row.to_dict() for row in rows]
            self.load_failed = False
        logger.info(f"📥 Loaded {len(rows)} unread notifications for guard {self.guard_id}")
        self._changed()
        if self._items:
            self._alert(self._items[0])
        return True

    @property
    def notifications(self):
        with self._lock:
            return [dict(item) for item in self._items]

    @property
    def unread_count(self):
        with self._lock:
            return sum(1 for item in self._items if not item.get("read"))

    # -- event handlers -----------------------------------------------------

    def _accept(self, change):
        if change.seq <= self._last_seq:
            logger.debug(f"Ignoring stale event #{change.seq} (last applied #{self._last_seq})")
            return False
        self._last_seq = change.seq
        return True

    def _on_insert(self, change):
        row = dict(change.new)
        with self._lock:
            if not self._accept(change):
                return
            self._items = [item for item in self._items if item["id"] != row["id"]]
            if not row.get("read"):
                self._items.insert(0, row)
        self._changed()
        self._alert(row)

    def _on_update(self, change):
        row = dict(change.new)
        with self._lock:
            if not self._accept(change):
                return
            self._items = [row if item["id"] == row["id"] else item for item in self._items]
            # The list only ever shows the unread subset
            self._items = [item for item in self._items if not item.get("read")]
        self._changed()

    def _on_delete(self, change):
        row_id = change.old["id"]
        with self._lock:
            if not self._accept(change):
                return
            self._items = [item for item in self._items if item["id"] != row_id]
        self._changed()

    def _on_disconnect(self):
        if self._closing:
            return
        logger.warning(f"⚠️ Notification feed dropped for guard {self.guard_id}, falling back to full refresh")
        self._subscription = None
        self.reconnect()

    # -- callbacks ----------------------------------------------------------

    def _alert(self, row):
        if self.on_alert and not row.get("read"):
            try:
                self.on_alert(dict(row))
            except Exception as e:
                logger.warning(f"Alert callback failed for notification {row.get('id')}: {str(e)}")

    def _changed(self):
        if self.on_change:
            try:
                self.on_change(self.notifications, self.unread_count)
            except Exception as e:
                logger.warning(f"Change callback failed for guard {self.guard_id}: {str(e)}")
