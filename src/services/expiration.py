# src/services/expiration.py
from datetime import datetime, timedelta, timezone

from api.store_client import VisitFilter
from config import get_config
from models.models import as_utc
from utils.logger import setup_logger

logger = setup_logger(__name__)
cfg = get_config()

ONGOING = "ongoing"
EXPIRED_UNACKNOWLEDGED = "expired_unacknowledged"
EXPIRED_NOTIFIED = "expired_notified"
COMPLETED = "completed"


def compute_expiration(entry, offset_hours=None, cutoff_hour=None):
    """
    Fixed same-day cutoff for a visit entered at ``entry``.

    The entry instant is shifted by the campus offset to get the local
    calendar date, the wall clock is set to the cutoff hour on that date, and
    the result is shifted back to UTC. An entry after the local cutoff gets
    an expiration earlier than the entry itself.
    """
    offset = timedelta(hours=cfg.CAMPUS_UTC_OFFSET_HOURS if offset_hours is None else offset_hours)
    cutoff = cfg.EXPIRATION_CUTOFF_HOUR if cutoff_hour is None else cutoff_hour

    local_wall = as_utc(entry) + offset
    local_cutoff = local_wall.replace(hour=cutoff, minute=0, second=0, microsecond=0)
    return local_cutoff - offset


def classify(visit, now=None):
    """One of ongoing, expired_unacknowledged, expired_notified, completed."""
    if visit.time_out is not None:
        return COMPLETED
    now = as_utc(now) if now else datetime.now(timezone.utc)
    if now < as_utc(visit.expiration):
        return ONGOING
    if visit.notification_sent:
        return EXPIRED_NOTIFIED
    return EXPIRED_UNACKNOWLEDGED


def find_expired_unnotified(store, guard_id, now=None):
    """Visits for ``guard_id`` past their cutoff, still open, with no notification flag."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    visits = store.select_visits(VisitFilter(
        security_id=guard_id,
        time_out_is_null=True,
        expiration_lte=now,
        notification_sent=False,
    ))
    logger.debug(f"Found {len(visits)} expired unnotified visits for guard {guard_id}")
    return visits


def find_expired_open(store, guard_id, now=None):
    """Every visit for ``guard_id`` past its cutoff and not timed out, notified or not."""
    now = as_utc(now) if now else datetime.now(timezone.utc)
    return store.select_visits(VisitFilter(
        security_id=guard_id,
        time_out_is_null=True,
        expiration_lte=now,
    ))


def format_campus_time(instant):
    """e.g. ``Oct 19, 2026 10:00 PM`` in campus wall-clock time."""
    local = as_utc(instant).astimezone(cfg.campus_timezone())
    hour = local.hour % 12 or 12
    meridiem = "PM" if local.hour >= 12 else "AM"
    return f"{local.strftime('%b')} {local.day}, {local.year} {hour}:{local.minute:02d} {meridiem}"
