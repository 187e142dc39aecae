# app.py - HTTP entry point for the gate service
import atexit

from flask import Flask, jsonify

from api.store_client import StoreClient
from config import get_config
from routes import register_routes
from utils.database import init_db
from utils.logger import setup_logger
from utils.realtime import ChangeFeedHub
from utils.scheduler import ExpirationScheduler

logger = setup_logger(__name__)
config = get_config()


def create_app(database_url=None, start_scheduler=False):
    app = Flask(__name__)
    app.config["DEBUG"] = getattr(config, "DEBUG", False)

    session = init_db(database_url)
    hub = ChangeFeedHub()
    app.config["STORE"] = StoreClient(session, hub=hub)
    app.config["FEED_HUB"] = hub

    scheduler = ExpirationScheduler()
    app.config["SCHEDULER"] = scheduler
    if start_scheduler:
        scheduler.start()
        atexit.register(scheduler.shutdown)

    register_routes(app)

    @app.teardown_appcontext
    def remove_session(exception=None):
        session.remove()

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200

    logger.info("🚀 Gate service app created")
    return app


if __name__ == "__main__":
    create_app(start_scheduler=True).run(host="0.0.0.0", port=5000)
