# src/utils/realtime.py
"""
In-process change feed for the notifications table.

Row changes are captured from the ORM flush, held until the transaction
commits, and then published by the store to every subscription whose guard
filter matches the row's ``user_id``. Rolled-back changes are never
published.
"""
import itertools
import threading
from dataclasses import dataclass
from typing import Callable, Optional

from sqlalchemy import event

from models.models import Notification
from utils.logger import setup_logger

logger = setup_logger(__name__)

INSERT = "INSERT"
UPDATE = "UPDATE"
DELETE = "DELETE"

PENDING_KEY = "feed_pending"
COMMITTED_KEY = "feed_committed"

TRACKED_TABLES = {Notification: Notification.__tablename__}


@dataclass(frozen=True)
class ChangeEvent:
    seq: int
    table: str
    type: str
    new: Optional[dict] = None
    old: Optional[dict] = None

    @property
    def row(self):
        return self.new if self.new is not None else self.old


class Subscription:
    """Handle returned by ``ChangeFeedHub.subscribe``; must be closed by its owner."""

    def __init__(self, hub, table, guard_id, on_insert, on_update, on_delete, on_disconnect=None):
        self.hub = hub
        self.table = table
        self.guard_id = guard_id
        self.handlers = {INSERT: on_insert, UPDATE: on_update, DELETE: on_delete}
        self.on_disconnect = on_disconnect
        self.closed = False

    def matches(self, change):
        row = change.row or {}
        return change.table == self.table and row.get("user_id") == self.guard_id

    def deliver(self, change):
        handler = self.handlers.get(change.type)
        if handler:
            handler(change)

    def close(self):
        if self.closed:
            return
        self.closed = True
        self.hub._remove(self)
        logger.debug(f"Subscription closed for {self.table}, guard {self.guard_id}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False


class ChangeFeedHub:
    """Fan-out of committed row changes to filtered subscriptions."""

    def __init__(self):
        self._lock = threading.RLock()
        self._delivery_lock = threading.RLock()
        self._subscriptions = []
        self._seq = itertools.count(1)

    def subscribe(self, table, guard_id, on_insert, on_update, on_delete,
                  on_disconnect: Optional[Callable[[], None]] = None):
        sub = Subscription(self, table, guard_id, on_insert, on_update, on_delete, on_disconnect)
        with self._lock:
            self._subscriptions.append(sub)
        logger.info(f"📡 Subscribed to {table} changes for guard {guard_id}")
        return sub

    def _remove(self, sub):
        with self._lock:
            if sub in self._subscriptions:
                self._subscriptions.remove(sub)

    @property
    def subscription_count(self):
        with self._lock:
            return len(self._subscriptions)

    def publish(self, table, change_type, new=None, old=None):
        # Numbering and delivery are one critical section: receipt order is sequence order
        with self._delivery_lock:
            with self._lock:
                change = ChangeEvent(seq=next(self._seq), table=table, type=change_type, new=new, old=old)
                targets = [s for s in self._subscriptions if s.matches(change)]

            dropped = []
            for sub in targets:
                try:
                    sub.deliver(change)
                except Exception as e:
                    logger.error(f"❌ Subscriber for guard {sub.guard_id} failed on {change.type} #{change.seq}: {str(e)}")
                    dropped.append(sub)

            # A subscriber that cannot apply an event has lost sync; cut it loose so it resyncs
            for sub in dropped:
                self._drop(sub)
        return change

    def _drop(self, sub):
        sub.closed = True
        self._remove(sub)
        if sub.on_disconnect:
            try:
                sub.on_disconnect()
            except Exception as e:
                logger.error(f"❌ Disconnect handler for guard {sub.guard_id} failed: {str(e)}")

    def disconnect_all(self):
        """Drop every subscription, e.g. when the backing channel goes away."""
        with self._lock:
            subs = list(self._subscriptions)
        logger.warning(f"⚠️ Change feed disconnecting {len(subs)} subscription(s)")
        for sub in subs:
            self._drop(sub)


def track_notification_changes(session_factory):
    """Record notification row changes on every session the factory produces."""

    @event.listens_for(session_factory, "after_flush")
    def _collect(session, flush_context):
        pending = session.info.setdefault(PENDING_KEY, [])
        for obj in session.new:
            if type(obj) in TRACKED_TABLES:
                pending.append((TRACKED_TABLES[type(obj)], INSERT, obj.to_dict(), None))
        for obj in session.dirty:
            if type(obj) in TRACKED_TABLES and session.is_modified(obj, include_collections=False):
                pending.append((TRACKED_TABLES[type(obj)], UPDATE, obj.to_dict(), {"id": obj.id, "user_id": obj.user_id}))
        for obj in session.deleted:
            if type(obj) in TRACKED_TABLES:
                pending.append((TRACKED_TABLES[type(obj)], DELETE, None, obj.to_dict()))

    @event.listens_for(session_factory, "after_commit")
    def _promote(session):
        pending = session.info.pop(PENDING_KEY, [])
        if pending:
            session.info.setdefault(COMMITTED_KEY, []).extend(pending)

    @event.listens_for(session_factory, "after_rollback")
    def _discard(session):
        session.info.pop(PENDING_KEY, None)

    return session_factory


def publish_committed(session, hub):
    """Publish changes committed on ``session``; called after commit returns."""
    changes = session.info.pop(COMMITTED_KEY, [])
    if hub is None:
        return []
    return [hub.publish(table, change_type, new=new, old=old) for table, change_type, new, old in changes]
