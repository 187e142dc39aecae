# src/services/visit_closer.py
from datetime import datetime, timezone

from utils.errors import StoreError
from utils.logger import setup_logger

logger = setup_logger(__name__)


def close_visit(store, visit_id, now=None):
    """
    Time a visitor out.

    Sets ``time_out`` unconditionally, so closing an already-closed visit
    overwrites the earlier timestamp. Notifications already sent for the
    visit are left alone. Returns True on success.
    """
    now = now or datetime.now(timezone.utc)
    extra_log = {"request_id": store.request_id, "visit_id": visit_id}
    try:
        matched = store.update_visit_time_out(visit_id, now)
    except StoreError as e:
        logger.error(f"❌ Failed to time out visit {visit_id}: {str(e)}", extra=extra_log)
        return False

    if not matched:
        logger.warning(f"⚠️ Visit {visit_id} not found, nothing timed out", extra=extra_log)
        return False

    logger.info(f"🚪 Visit {visit_id} timed out at {now.isoformat()}", extra=extra_log)
    return True
