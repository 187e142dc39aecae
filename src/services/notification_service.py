# src/services/notification_service.py
from utils.errors import StoreError
from utils.logger import setup_logger

logger = setup_logger(__name__)


def list_notifications(store, guard_id, unread_only=False):
    return [n.to_dict() for n in store.select_notifications(guard_id, unread_only=unread_only)]


def mark_as_read(store, guard_id, notification_id):
    """Acknowledge one notification. Returns the number of rows changed."""
    try:
        changed = store.mark_notifications_read(guard_id, [notification_id])
    except StoreError as e:
        logger.error(f"❌ Error marking notification {notification_id} as read: {str(e)}")
        raise
    logger.info(f"Marked notification {notification_id} read for guard {guard_id} ({changed} changed)")
    return changed


def mark_all_as_read(store, guard_id):
    try:
        changed = store.mark_notifications_read(guard_id)
    except StoreError as e:
        logger.error(f"❌ Error marking all notifications as read for guard {guard_id}: {str(e)}")
        raise
    logger.info(f"Marked {changed} notifications read for guard {guard_id}")
    return changed


def clear_all(store, guard_id):
    """Delete every notification of the guard; visits keep their notification flag."""
    try:
        deleted = store.delete_notifications(guard_id)
    except StoreError as e:
        logger.error(f"❌ Error clearing notifications for guard {guard_id}: {str(e)}")
        raise
    logger.info(f"🧹 Cleared {deleted} notifications for guard {guard_id}")
    return deleted
