import sys
import os
import logging

# Add src to path
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), 'src')))

from api.store_client import StoreClient
from utils.database import init_db
from utils.logger import setup_logger
from utils.scheduler import run_expiration_cycle

# Setup logging to console
logger = setup_logger(__name__)
logging.getLogger().setLevel(logging.INFO)

def main(guard_ids):
    print("🚀 Starting manual expiration check...")
    store = StoreClient(init_db())

    if not guard_ids:
        guard_ids = [guard.id for guard in store.list_guards() if guard.active]
        print(f"No guard given, checking {len(guard_ids)} active guard(s)")

    for guard_id in guard_ids:
        print(f"\n🔔 Checking expired visits for guard {guard_id}...")
        try:
            summary = run_expiration_cycle(store, guard_id)
            print(f"✅ {summary}")
        except Exception as e:
            print(f"❌ Expiration check failed for {guard_id}: {e}")

    store.close()

if __name__ == "__main__":
    main(sys.argv[1:])
