import os
import shutil
import sys
import tempfile
import unittest

from sqlalchemy import create_engine, inspect, text

import helpers  # noqa: F401 (puts src on the path)
from utils.database import init_db

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from run_migration import run_migration  # noqa: E402

LEGACY_SCHEMA = [
    "CREATE TABLE visits (id INTEGER PRIMARY KEY, visit_code VARCHAR(16) NOT NULL UNIQUE, "
    "visitor_id INTEGER, purpose TEXT, time_of_visit DATETIME NOT NULL, expiration DATETIME NOT NULL, "
    "time_out DATETIME, security_id VARCHAR(36), created_at DATETIME)",
    "CREATE TABLE notifications (id INTEGER PRIMARY KEY, user_id VARCHAR(36) NOT NULL, "
    "visit_id INTEGER NOT NULL, content TEXT NOT NULL, read BOOLEAN NOT NULL DEFAULT 0, created_at DATETIME)",
    "INSERT INTO notifications (user_id, visit_id, content) VALUES ('guard-main', 1, 'first')",
    "INSERT INTO notifications (user_id, visit_id, content) VALUES ('guard-main', 1, 'duplicate')",
]


class TestRunMigration(unittest.TestCase):

    def setUp(self):
        self.tmp_dir = tempfile.mkdtemp()
        self.url = f"sqlite:///{os.path.join(self.tmp_dir, 'legacy.db')}"
        engine = create_engine(self.url)
        with engine.begin() as conn:
            for statement in LEGACY_SCHEMA:
                conn.execute(text(statement))
        engine.dispose()

    def tearDown(self):
        shutil.rmtree(self.tmp_dir, ignore_errors=True)

    def test_legacy_database_gets_flag_and_indexes(self):
        print("\nTesting run_migration on a legacy database...")
        session = init_db(self.url)
        engine = session.get_bind()
        run_migration(session)

        inspector = inspect(engine)
        self.assertIn("notification_sent", [c["name"] for c in inspector.get_columns("visits")])
        visit_indexes = {i["name"]: i["column_names"] for i in inspector.get_indexes("visits")}
        self.assertEqual(
            visit_indexes.get("ix_visits_expiry_scan"),
            ["security_id", "time_out", "notification_sent", "expiration"],
        )
        self.assertIn("uq_notifications_user_visit", [i["name"] for i in inspector.get_indexes("notifications")])
        with engine.connect() as conn:
            self.assertEqual(conn.execute(text("SELECT COUNT(*) FROM notifications")).scalar(), 1)
        engine.dispose()

    def test_second_run_changes_nothing(self):
        session = init_db(self.url)
        engine = session.get_bind()
        run_migration(session)
        run_migration(session)

        visit_indexes = [i["name"] for i in inspect(engine).get_indexes("visits")]
        self.assertEqual(visit_indexes.count("ix_visits_expiry_scan"), 1)
        engine.dispose()


if __name__ == '__main__':
    unittest.main()
