from datetime import datetime, timezone

from flask import Blueprint, request, jsonify, current_app
import traceback
import uuid

from services.checkin_service import check_in
from services.correlator import EntityCorrelator
from services.expiration import classify, find_expired_open
from services.visit_closer import close_visit
from utils.errors import NotFound, StoreError
from utils.logger import setup_logger

visits_bp = Blueprint('visits', __name__)
logger = setup_logger(__name__)


def _store():
    return current_app.config["STORE"]


@visits_bp.route("/visits", methods=["POST"])
def check_in_route():
    request_id = str(uuid.uuid4())
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        logger.debug(f"Received malformed JSON or no JSON in request body: {request.data}", extra={"request_id": request_id})
        data = {}

    name = data.get("name")
    id_number = data.get("id_number")
    if not name or not id_number:
        logger.error(f"Missing required parameters: name={name}, id_number={'set' if id_number else None}",
                     extra={"request_id": request_id})
        return jsonify({"error": "name and id_number are required"}), 400

    try:
        visit = check_in(
            _store(),
            name=name,
            card_type=data.get("card_type"),
            id_number=id_number,
            purpose=data.get("purpose"),
            phone_number=data.get("phone_number"),
            guard_id=data.get("guard_id"),
        )
        return jsonify(visit.to_dict()), 201
    except ValueError as e:
        return jsonify({"error": str(e)}), 400
    except StoreError:
        logger.error(f"Check-in failed: {traceback.format_exc()}", extra={"request_id": request_id})
        return jsonify({"error": "Failed to check in visitor"}), 503


@visits_bp.route("/visits/<int:visit_id>/time-out", methods=["POST"])
def time_out_route(visit_id):
    store = _store()
    try:
        store.require_visit(visit_id)
    except NotFound:
        return jsonify({"error": "Visit not found"}), 404
    except StoreError:
        return jsonify({"error": "Failed to time out visit"}), 503

    if not close_visit(store, visit_id):
        return jsonify({"error": "Failed to time out visit"}), 503
    return jsonify({"status": "Visit timed out", "visit_id": visit_id}), 200


@visits_bp.route("/visits/expired", methods=["GET"])
def expired_visits_route():
    guard_id = request.args.get("guard_id")
    if not guard_id:
        return jsonify({"error": "guard_id is required"}), 400

    store = _store()
    now = datetime.now(timezone.utc)
    try:
        visits = find_expired_open(store, guard_id, now)
        visitors = store.list_visitors()
        guards = store.list_guards()
    except StoreError:
        logger.error(f"Error loading expired visits for guard {guard_id}: {traceback.format_exc()}")
        return jsonify({"error": "Failed to load expired visits"}), 503

    correlator = EntityCorrelator()
    payload = []
    for visit in visits:
        item = visit.to_dict()
        item["status"] = classify(visit, now)
        item.update(correlator.correlate(visit, visitors, guards).to_dict())
        payload.append(item)
    return jsonify({"count": len(payload), "visits": payload}), 200


@visits_bp.route("/visits/log", methods=["GET"])
def visit_log_route():
    try:
        rows = EntityCorrelator().correlate_all(_store())
    except StoreError:
        logger.error(f"Error building visit log: {traceback.format_exc()}")
        return jsonify({"error": "Failed to load visits"}), 503

    payload = []
    for visit, correlation in rows:
        item = visit.to_dict()
        item["status"] = classify(visit)
        item.update(correlation.to_dict())
        payload.append(item)
    return jsonify({"count": len(payload), "visits": payload}), 200
