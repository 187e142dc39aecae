from flask import Blueprint, request, jsonify, current_app
import traceback

from services import notification_service
from utils.errors import StoreError
from utils.logger import setup_logger
from utils.scheduler import run_expiration_cycle

notifications_bp = Blueprint('notifications', __name__)
logger = setup_logger(__name__)


def _store():
    return current_app.config["STORE"]


def _guard_id():
    data = request.get_json(silent=True)
    if isinstance(data, dict) and data.get("guard_id"):
        return data["guard_id"]
    return request.args.get("guard_id")


@notifications_bp.route("/notifications", methods=["GET"])
def list_notifications_route():
    guard_id = request.args.get("guard_id")
    if not guard_id:
        return jsonify({"error": "guard_id is required"}), 400
    unread_only = request.args.get("unread_only", "false").lower() == "true"
    try:
        items = notification_service.list_notifications(_store(), guard_id, unread_only=unread_only)
    except StoreError:
        logger.error(f"Error loading notifications for {guard_id}: {traceback.format_exc()}")
        return jsonify({"error": "Failed to load notifications"}), 503
    unread = sum(1 for n in items if not n["read"])
    return jsonify({"notifications": items, "unread_count": unread}), 200


@notifications_bp.route("/notifications/<int:notification_id>/read", methods=["POST"])
def mark_read_route(notification_id):
    guard_id = _guard_id()
    if not guard_id:
        return jsonify({"error": "guard_id is required"}), 400
    try:
        changed = notification_service.mark_as_read(_store(), guard_id, notification_id)
    except StoreError:
        return jsonify({"error": "Failed to update notification"}), 503
    return jsonify({"status": "ok", "updated": changed}), 200


@notifications_bp.route("/notifications/read-all", methods=["POST"])
def mark_all_read_route():
    guard_id = _guard_id()
    if not guard_id:
        return jsonify({"error": "guard_id is required"}), 400
    try:
        changed = notification_service.mark_all_as_read(_store(), guard_id)
    except StoreError:
        return jsonify({"error": "Failed to update notifications"}), 503
    return jsonify({"status": "ok", "updated": changed}), 200


@notifications_bp.route("/notifications", methods=["DELETE"])
def clear_all_route():
    guard_id = _guard_id()
    if not guard_id:
        return jsonify({"error": "guard_id is required"}), 400
    try:
        deleted = notification_service.clear_all(_store(), guard_id)
    except StoreError:
        return jsonify({"error": "Failed to clear notifications"}), 503
    return jsonify({"status": "ok", "deleted": deleted}), 200


@notifications_bp.route("/guards/<guard_id>/refresh", methods=["POST"])
def refresh_route(guard_id):
    summary = run_expiration_cycle(_store(), guard_id)
    status_code = 503 if summary.get("status") == "failed" else 200
    if status_code != 200:
        return jsonify({"error": "Failed to check expired visits"}), status_code
    return jsonify(summary), status_code


@notifications_bp.route("/guards/<guard_id>/session", methods=["POST"])
def start_guard_schedule_route(guard_id):
    scheduler = current_app.config["SCHEDULER"]
    summary = run_expiration_cycle(_store(), guard_id)
    scheduler.add_guard(_store(), guard_id)
    return jsonify({"status": "scheduled", "interval_minutes": scheduler.interval_minutes, "cycle": summary}), 200


@notifications_bp.route("/guards/<guard_id>/session", methods=["DELETE"])
def stop_guard_schedule_route(guard_id):
    current_app.config["SCHEDULER"].remove_guard(guard_id)
    return jsonify({"status": "unscheduled"}), 200
