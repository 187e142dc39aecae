import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from sqlalchemy.exc import IntegrityError, DBAPIError, OperationalError

from models.models import Visit, Visitor, Guard, Notification, as_utc
from utils.errors import ConstraintViolation, NotFound, TransientIO
from utils.logger import setup_logger
from utils.realtime import publish_committed

logger = setup_logger(__name__)

VISIT_FLAGS = {"notification_sent"}


@dataclass
class VisitFilter:
    """Predicate for ``StoreClient.select_visits``; ``None`` fields are not applied."""
    security_id: Optional[str] = None
    time_out_is_null: Optional[bool] = None
    expiration_lte: Optional[datetime] = None
    notification_sent: Optional[bool] = None
    visit_id: Optional[int] = None


class StoreClient:
    """Query, mutation and subscribe capability over the gate database."""

    def __init__(self, session, hub=None, request_id=None):
        self.session = session
        self.hub = hub
        self.request_id = request_id or str(uuid.uuid4())

    # -- plumbing -----------------------------------------------------------

    def _read(self, action, fn):
        try:
            return fn()
        except (OperationalError, DBAPIError) as e:
            self.session.rollback()
            logger.error(f"❌ Store read failed ({action}): {str(e)}", extra={"request_id": self.request_id})
            raise TransientIO(f"{action} failed") from e

    def _write(self, action, fn):
        try:
            result = fn()
            self.session.commit()
        except IntegrityError as e:
            self.session.rollback()
            logger.warning(f"⚠️ Constraint rejected {action}: {str(e.orig)}", extra={"request_id": self.request_id})
            raise ConstraintViolation(f"{action} violates a uniqueness constraint") from e
        except (OperationalError, DBAPIError) as e:
            self.session.rollback()
            logger.error(f"❌ Store write failed ({action}): {str(e)}", extra={"request_id": self.request_id})
            raise TransientIO(f"{action} failed") from e
        publish_committed(self.session, self.hub)
        return result

    def close(self):
        """Release the thread's session back to the pool."""
        self.session.remove()

    # -- visits -------------------------------------------------------------

    def select_visits(self, flt):
        def run():
            query = self.session.query(Visit).populate_existing()
            if flt.visit_id is not None:
                query = query.filter(Visit.id == flt.visit_id)
            if flt.security_id is not None:
                query = query.filter(Visit.security_id == flt.security_id)
            if flt.time_out_is_null is True:
                query = query.filter(Visit.time_out.is_(None))
            elif flt.time_out_is_null is False:
                query = query.filter(Visit.time_out.isnot(None))
            if flt.expiration_lte is not None:
                query = query.filter(Visit.expiration <= as_utc(flt.expiration_lte))
            if flt.notification_sent is not None:
                query = query.filter(Visit.notification_sent == flt.notification_sent)
            return query.order_by(Visit.expiration.asc(), Visit.id.asc()).all()
        return self._read("select_visits", run)

    def get_visit(self, visit_id):
        visits = self.select_visits(VisitFilter(visit_id=visit_id))
        return visits[0] if visits else None

    def require_visit(self, visit_id):
        visit = self.get_visit(visit_id)
        if visit is None:
            raise NotFound(f"visit {visit_id} does not exist")
        return visit

    def list_visits(self):
        return self._read(
            "list_visits",
            lambda: self.session.query(Visit).populate_existing().order_by(Visit.time_of_visit.desc()).all()
        )

    def insert_visit(self, visit_code, visitor_id, purpose, time_of_visit, expiration, security_id=None):
        def run():
            visit = Visit(
                visit_code=visit_code,
                visitor_id=visitor_id,
                purpose=purpose,
                time_of_visit=as_utc(time_of_visit),
                expiration=as_utc(expiration),
                security_id=security_id,
                notification_sent=False,
            )
            self.session.add(visit)
            self.session.flush()
            return visit
        return self._write("insert_visit", run)

    def update_visit_flag(self, visit_id, guard_id, field, value):
        """Set a visit flag scoped to (visit, guard). Returns the matched row count."""
        if field not in VISIT_FLAGS:
            raise ValueError(f"Unsupported visit flag: {field}")

        def run():
            return self.session.query(Visit).filter(
                Visit.id == visit_id,
                Visit.security_id == guard_id,
            ).update({field: value}, synchronize_session="evaluate")
        return self._write("update_visit_flag", run)

    def update_visit_time_out(self, visit_id, timestamp):
        def run():
            return self.session.query(Visit).filter(Visit.id == visit_id).update(
                {Visit.time_out: as_utc(timestamp)}, synchronize_session="evaluate"
            )
        return self._write("update_visit_time_out", run)

    # -- visitors / guards --------------------------------------------------

    def list_visitors(self):
        return self._read("list_visitors", lambda: self.session.query(Visitor).order_by(Visitor.id).all())

    def find_visitor_by_id_number(self, id_number):
        return self._read(
            "find_visitor_by_id_number",
            lambda: self.session.query(Visitor).filter_by(id_number=id_number).first()
        )

    def insert_visitor(self, name, card_type, id_number, phone_number):
        def run():
            visitor = Visitor(name=name, card_type=card_type, id_number=id_number, phone_number=phone_number)
            self.session.add(visitor)
            self.session.flush()
            return visitor
        return self._write("insert_visitor", run)

    def list_guards(self):
        return self._read("list_guards", lambda: self.session.query(Guard).order_by(Guard.id).all())

    def get_guard(self, guard_id):
        return self._read("get_guard", lambda: self.session.get(Guard, guard_id))

    def insert_guard(self, name, assign_gate, guard_id=None, active=True, confirmed=True):
        def run():
            guard = Guard(name=name, assign_gate=assign_gate, active=active, confirmed=confirmed)
            if guard_id:
                guard.id = guard_id
            self.session.add(guard)
            self.session.flush()
            return guard
        return self._write("insert_guard", run)

    # -- notifications ------------------------------------------------------

    def select_notifications(self, user_id, visit_id=None, unread_only=False):
        def run():
            query = self.session.query(Notification).populate_existing().filter(Notification.user_id == user_id)
            if visit_id is not None:
                query = query.filter(Notification.visit_id == visit_id)
            if unread_only:
                query = query.filter(Notification.read.is_(False))
            return query.order_by(Notification.created_at.desc(), Notification.id.desc()).all()
        return self._read("select_notifications", run)

    def insert_notification(self, guard_id, visit_id, content):
        """Single INSERT; the (user_id, visit_id) unique constraint makes it insert-if-absent."""
        def run():
            notification = Notification(user_id=guard_id, visit_id=visit_id, content=content, read=False)
            self.session.add(notification)
            self.session.flush()
            return notification
        return self._write("insert_notification", run)

    def mark_notifications_read(self, user_id, notification_ids=None):
        """Mark the guard's unread notifications (optionally only ``notification_ids``) read."""
        def run():
            query = self.session.query(Notification).filter(
                Notification.user_id == user_id,
                Notification.read.is_(False),
            )
            if notification_ids is not None:
                query = query.filter(Notification.id.in_(list(notification_ids)))
            rows = query.all()
            for row in rows:
                row.read = True
            self.session.flush()
            return len(rows)
        return self._write("mark_notifications_read", run)

    def delete_notifications(self, user_id, notification_ids=None):
        def run():
            query = self.session.query(Notification).filter(Notification.user_id == user_id)
            if notification_ids is not None:
                query = query.filter(Notification.id.in_(list(notification_ids)))
            rows = query.all()
            for row in rows:
                self.session.delete(row)
            self.session.flush()
            return len(rows)
        return self._write("delete_notifications", run)

    # -- change feed --------------------------------------------------------

    def subscribe(self, table, guard_id, on_insert, on_update, on_delete, on_disconnect=None):
        if self.hub is None:
            logger.error("Change feed requested but no hub is configured", extra={"request_id": self.request_id})
            raise TransientIO("change feed unavailable")
        return self.hub.subscribe(table, guard_id, on_insert, on_update, on_delete, on_disconnect)
