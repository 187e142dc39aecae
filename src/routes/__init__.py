# src/routes/__init__.py
from utils.logger import setup_logger
from .visits import visits_bp
from .notifications import notifications_bp

logger = setup_logger(__name__)

def register_routes(app):
    try:
        logger.info("Registering visits_bp")
        app.register_blueprint(visits_bp)
        logger.info("Registering notifications_bp")
        app.register_blueprint(notifications_bp)
        logger.info("All blueprints registered successfully")
    except Exception as e:
        logger.error(f"Error registering blueprints: {str(e)}")
        raise
