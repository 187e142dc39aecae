
import os
import sys

# Add src to path just in case we need to import config
sys.path.append(os.path.abspath(os.path.join(os.path.dirname(__file__), 'src')))

try:
    from config import Config

    print("Checking environment variables...")
    if Config.DB_SECRET_NAME:
        print(f"✅ DB_SECRET_NAME is set ({Config.DB_SECRET_NAME}), credentials come from Secrets Manager.")
    elif os.getenv("DATABASE_URL"):
        print("✅ DATABASE_URL is set.")
    else:
        print(f"⚠️ Neither DB_SECRET_NAME nor DATABASE_URL set, using {Config.DATABASE_URL}.")

    print(f"ℹ️ Expiration check every {Config.EXPIRY_CHECK_INTERVAL_MINUTES} min, "
          f"cutoff {Config.EXPIRATION_CUTOFF_HOUR}:00 at UTC+{Config.CAMPUS_UTC_OFFSET_HOURS}.")
    if len(Config.GATE_ROTATION) < 2:
        print("❌ GATE_ROTATION should list at least two gates.")
    else:
        print(f"✅ Gate rotation: {', '.join(Config.GATE_ROTATION)}")

except ImportError:
    print("Could not import config.")
except Exception as e:
    print(f"Error checking config: {e}")
