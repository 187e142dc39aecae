# config.py
from datetime import timedelta, timezone
import os

class Config:
    FLASK_ENV = os.getenv("FLASK_ENV", "development")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

    # Database: DATABASE_URL wins unless a Secrets Manager secret is configured
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///neuvis.db")
    DB_SECRET_NAME = os.getenv("DB_SECRET_NAME")
    AWS_DEFAULT_REGION = os.getenv("AWS_DEFAULT_REGION", "ap-southeast-1")

    # Expiration engine
    EXPIRY_CHECK_INTERVAL_MINUTES = int(os.getenv("EXPIRY_CHECK_INTERVAL_MINUTES", "5"))
    CAMPUS_UTC_OFFSET_HOURS = int(os.getenv("CAMPUS_UTC_OFFSET_HOURS", "8"))  # Asia/Manila
    EXPIRATION_CUTOFF_HOUR = int(os.getenv("EXPIRATION_CUTOFF_HOUR", "22"))
    GATE_ROTATION = [g.strip() for g in os.getenv("GATE_ROTATION", "Gate 1,Gate 2").split(",") if g.strip()]

    UNKNOWN_VISITOR = "Unknown Visitor"
    UNKNOWN_GUARD = "Security Staff"

    @classmethod
    def campus_timezone(cls):
        """Fixed-offset campus timezone (no DST)."""
        return timezone(timedelta(hours=cls.CAMPUS_UTC_OFFSET_HOURS))

def get_config():
    """Return config based on environment."""
    env = os.getenv("FLASK_ENV", "development")
    if env == "production":
        return ProductionConfig()
    return DevelopmentConfig()

class DevelopmentConfig(Config):
    """Development configuration."""
    DEBUG = True

class ProductionConfig(Config):
    """Production configuration."""
    DEBUG = False
