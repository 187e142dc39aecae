# src/models/models.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, DateTime, Integer, Boolean, Text, Index, UniqueConstraint
from sqlalchemy.types import TypeDecorator
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow():
    return datetime.now(timezone.utc)


def as_utc(value):
    """SQLite hands back naive datetimes; everything we store is UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timezone-aware UTC in and out, whatever the backend keeps."""
    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        return as_utc(value)

    def process_result_value(self, value, dialect):
        return as_utc(value)


class Visitor(Base):
    __tablename__ = "visitors"
    id = Column(Integer, primary_key=True)
    name = Column(String, nullable=False)
    card_type = Column(String, nullable=True)
    id_number = Column(String, unique=True, nullable=False)
    phone_number = Column(String, nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "card_type": self.card_type,
            "id_number": self.id_number,
            "phone_number": self.phone_number,
        }


class Guard(Base):
    __tablename__ = "security"
    id = Column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name = Column(String, nullable=False)
    assign_gate = Column(String, nullable=True)
    active = Column(Boolean, default=True)
    confirmed = Column(Boolean, default=False)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "assign_gate": self.assign_gate,
            "active": self.active,
            "confirmed": self.confirmed,
        }


class Visit(Base):
    __tablename__ = "visits"
    __table_args__ = (
        # Evaluator predicate: security_id = G AND time_out IS NULL AND notification_sent = false AND expiration <= now
        Index("ix_visits_expiry_scan", "security_id", "time_out", "notification_sent", "expiration"),
    )
    id = Column(Integer, primary_key=True)
    visit_code = Column(String(16), unique=True, nullable=False)
    visitor_id = Column(Integer, nullable=True)  # loose reference, not enforced
    purpose = Column(Text, nullable=True)
    time_of_visit = Column(UTCDateTime, nullable=False, default=utcnow)
    expiration = Column(UTCDateTime, nullable=False)
    time_out = Column(UTCDateTime, nullable=True)
    notification_sent = Column(Boolean, nullable=False, default=False)
    security_id = Column(String(36), nullable=True)
    created_at = Column(UTCDateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "visit_code": self.visit_code,
            "visitor_id": self.visitor_id,
            "purpose": self.purpose,
            "time_of_visit": _iso(self.time_of_visit),
            "expiration": _iso(self.expiration),
            "time_out": _iso(self.time_out),
            "notification_sent": bool(self.notification_sent),
            "security_id": self.security_id,
            "created_at": _iso(self.created_at),
        }


class Notification(Base):
    __tablename__ = "notifications"
    __table_args__ = (
        UniqueConstraint("user_id", "visit_id", name="uq_notifications_user_visit"),
    )
    id = Column(Integer, primary_key=True)
    user_id = Column(String(36), nullable=False, index=True)
    visit_id = Column(Integer, nullable=False)
    content = Column(Text, nullable=False)
    read = Column(Boolean, nullable=False, default=False)
    created_at = Column(UTCDateTime, default=utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "user_id": self.user_id,
            "visit_id": self.visit_id,
            "content": self.content,
            "read": bool(self.read),
            "created_at": _iso(self.created_at),
        }


def _iso(value):
    value = as_utc(value)
    return value.isoformat() if value else None
