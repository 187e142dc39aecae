import sys
import os
import shutil
import tempfile
from datetime import datetime, timezone

# Add src to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '../src')))

from api.store_client import StoreClient
from utils.database import init_db
from utils.realtime import ChangeFeedHub

GUARD_ID = "guard-main"

# 09:00 campus time (UTC+8) on Oct 19, 2026
ENTRY_0900_LOCAL = datetime(2026, 10, 19, 1, 0, tzinfo=timezone.utc)
# 22:00 campus time, the cutoff for that entry
CUTOFF_2200_LOCAL = datetime(2026, 10, 19, 14, 0, tzinfo=timezone.utc)
# 23:00 campus time the same day
EVAL_2300_LOCAL = datetime(2026, 10, 19, 15, 0, tzinfo=timezone.utc)


def make_store(with_hub=True):
    """Fresh in-memory database per call."""
    session = init_db("sqlite://")
    return StoreClient(session, hub=ChangeFeedHub() if with_hub else None)


def add_visit(store, code="VST-ABC123", guard_id=GUARD_ID, entry=ENTRY_0900_LOCAL,
              expiration=CUTOFF_2200_LOCAL, visitor_id=None, purpose="Delivery"):
    return store.insert_visit(
        visit_code=code,
        visitor_id=visitor_id,
        purpose=purpose,
        time_of_visit=entry,
        expiration=expiration,
        security_id=guard_id,
    )


def count_notifications(store, guard_id=GUARD_ID, visit_id=None):
    return len(store.select_notifications(guard_id, visit_id=visit_id))


def make_file_store():
    """Store over a temporary SQLite file, for tests that write from several threads."""
    path = os.path.join(tempfile.mkdtemp(), "neuvis.db")
    session = init_db(f"sqlite:///{path}")
    return StoreClient(session, hub=ChangeFeedHub())


def drop_file_store(store):
    engine = store.session.get_bind()
    store.close()
    engine.dispose()
    shutil.rmtree(os.path.dirname(engine.url.database), ignore_errors=True)
