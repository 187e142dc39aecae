import sys
import os
import logging
from sqlalchemy import inspect, text

# Add src to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), 'src')))

from utils.database import init_db
from utils.logger import setup_logger

logger = setup_logger(__name__)
logging.getLogger().setLevel(logging.INFO)

def run_migration(session=None):
    """Bring a pre-existing database up to the notification engine's schema."""
    print("🚀 Starting database migration...")
    session = session or init_db()
    try:
        inspector = inspect(session.get_bind())

        print("🔍 Checking if 'notification_sent' column exists...")
        columns = [c["name"] for c in inspector.get_columns("visits")]
        if "notification_sent" in columns:
            print("✅ Column 'notification_sent' already exists.")
        else:
            print("➕ Adding 'notification_sent' column...")
            session.execute(text("ALTER TABLE visits ADD COLUMN notification_sent BOOLEAN NOT NULL DEFAULT FALSE;"))
            session.commit()
            print("✅ Added 'notification_sent' column.")

        print("🔍 Checking expiry scan index on visits...")
        visit_indexes = [i["name"] for i in inspector.get_indexes("visits")]
        if "ix_visits_expiry_scan" in visit_indexes:
            print("✅ Index 'ix_visits_expiry_scan' already exists.")
        else:
            session.execute(text(
                "CREATE INDEX ix_visits_expiry_scan ON visits (security_id, time_out, notification_sent, expiration);"
            ))
            session.commit()
            print("✅ Created index 'ix_visits_expiry_scan'.")

        print("🔍 Checking notifications (user_id, visit_id) uniqueness...")
        indexes = [i["name"] for i in inspector.get_indexes("notifications")]
        uniques = [u["name"] for u in inspector.get_unique_constraints("notifications")]
        if "uq_notifications_user_visit" in indexes + uniques:
            print("✅ Unique index already exists.")
        else:
            # Keep the oldest row of every duplicated pair before the index can be built
            removed = session.execute(text(
                "DELETE FROM notifications WHERE id NOT IN ("
                "SELECT MIN(id) FROM notifications GROUP BY user_id, visit_id);"
            )).rowcount
            print(f"🧹 Removed {removed} duplicate notification(s).")
            session.execute(text(
                "CREATE UNIQUE INDEX uq_notifications_user_visit ON notifications (user_id, visit_id);"
            ))
            session.commit()
            print("✅ Migration successful: unique index created.")

    except Exception as e:
        print(f"❌ Migration failed: {e}")
        session.rollback()
    finally:
        session.close()
        print("👋 Migration script finished.")

if __name__ == "__main__":
    run_migration()
