from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, scoped_session
from sqlalchemy.exc import OperationalError
from sqlalchemy.pool import StaticPool
import boto3
import json
from time import sleep
from urllib.parse import quote_plus

from config import get_config
from models.models import Base, Visitor, Guard, Visit, Notification  # noqa: F401 (re-exported)
from utils.logger import setup_logger
from utils.realtime import track_notification_changes

logger = setup_logger(__name__)
config = get_config()


def get_secret(secret_name):
    """Retrieve DB credentials from AWS Secrets Manager; None if unavailable."""
    from botocore.config import Config as BotoConfig

    boto_config = BotoConfig(
        connect_timeout=10,
        read_timeout=10,
        retries={'max_attempts': 1}
    )
    client = boto3.client('secretsmanager', region_name=config.AWS_DEFAULT_REGION, config=boto_config)

    try:
        logger.info(f"Fetching secret {secret_name}...")
        response = client.get_secret_value(SecretId=secret_name)
        logger.info("Secret fetched successfully")
        return json.loads(response['SecretString'])
    except Exception as e:
        logger.warning(f"Secret fetch failed (using DATABASE_URL): {str(e)}")
        return None


def resolve_database_url():
    """Postgres URL from Secrets Manager when configured, else DATABASE_URL."""
    if config.DB_SECRET_NAME:
        secret = get_secret(config.DB_SECRET_NAME)
        if secret:
            user = secret.get("username")
            password = secret.get("password")
            host = secret.get("host")
            dbname = secret.get("dbname")
            port = secret.get("port", 5432)
            if not all([user, password, host, dbname]):
                logger.error("Missing DB connection parameters in secret.")
                raise ValueError("Incomplete DB credentials in secret")
            # pg8000: pure Python driver, no C extension
            return f"postgresql+pg8000://{user}:{quote_plus(password)}@{host}:{port}/{dbname}"
    return config.DATABASE_URL


def _engine_kwargs(url):
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url == "sqlite://":
            # One shared connection, otherwise every checkout sees an empty database
            kwargs["poolclass"] = StaticPool
        return kwargs
    return dict(
        pool_size=5,
        max_overflow=5,
        pool_timeout=30,
        pool_recycle=1800,
        pool_pre_ping=True,
    )


def init_db(database_url=None):
    """Create the engine and schema, returning a thread-scoped session registry."""
    logger.info("START: init_db()")
    db_url = database_url or resolve_database_url()

    retries = 3
    for attempt in range(retries):
        try:
            logger.info(f"Connecting to DB (attempt {attempt+1}/{retries})...")
            engine = create_engine(db_url, **_engine_kwargs(db_url))
            with engine.connect():
                logger.info("✅ Database connection successful.")
            Base.metadata.create_all(engine)
            session_factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
            track_notification_changes(session_factory)
            logger.info("END: init_db()")
            return scoped_session(session_factory)
        except OperationalError as e:
            logger.warning(f"OperationalError: {e}")
            if "too many connections" in str(e) and attempt < retries - 1:
                sleep(2)
                continue
            raise
        except Exception as e:
            logger.error(f"Unexpected error during DB init: {str(e)}")
            raise
