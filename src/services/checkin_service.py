# src/services/checkin_service.py
import random
import string
from datetime import datetime, timezone

from services.expiration import compute_expiration
from utils.errors import ConstraintViolation, TransientIO
from utils.logger import setup_logger

logger = setup_logger(__name__)

VISIT_CODE_PREFIX = "VST-"
VISIT_CODE_ALPHABET = string.ascii_uppercase + string.digits
VISIT_CODE_LENGTH = 6


def sanitize_id_number(id_number):
    """Trim whitespace; 'nan'/'null' style placeholders count as missing."""
    if not id_number or str(id_number).strip().lower() in ["nan", "null", "", "none"]:
        return None
    return str(id_number).strip()


def generate_visit_code(rng=random):
    return VISIT_CODE_PREFIX + "".join(rng.choice(VISIT_CODE_ALPHABET) for _ in range(VISIT_CODE_LENGTH))


def find_or_create_visitor(store, name, card_type, id_number, phone_number=None):
    """Visitors are keyed by ID number: presenting a known number reuses the row."""
    id_number = sanitize_id_number(id_number)
    if not id_number:
        raise ValueError("id_number is required")

    visitor = store.find_visitor_by_id_number(id_number)
    if visitor:
        logger.info(f"👤 Visitor already exists with ID: {visitor.id}")
        return visitor

    try:
        visitor = store.insert_visitor(name, card_type, id_number, phone_number)
        logger.info(f"🆕 Created visitor {visitor.id} for ID number ending {id_number[-4:]}")
        return visitor
    except ConstraintViolation:
        # Registered concurrently by another gate
        visitor = store.find_visitor_by_id_number(id_number)
        if visitor is None:
            raise
        return visitor


def check_in(store, name, card_type, id_number, purpose, phone_number=None, guard_id=None, now=None, max_code_attempts=5):
    """Register a visitor (deduplicated) and open a visit with the same-day cutoff."""
    now = now or datetime.now(timezone.utc)
    visitor = find_or_create_visitor(store, name, card_type, id_number, phone_number)
    expiration = compute_expiration(now)

    for attempt in range(max_code_attempts):
        visit_code = generate_visit_code()
        try:
            visit = store.insert_visit(
                visit_code=visit_code,
                visitor_id=visitor.id,
                purpose=purpose,
                time_of_visit=now,
                expiration=expiration,
                security_id=guard_id,
            )
            logger.info(f"✅ Checked in visitor {visitor.id} as {visit_code}, expires {expiration.isoformat()}")
            return visit
        except ConstraintViolation:
            logger.warning(f"Visit code collision on {visit_code} (attempt {attempt + 1}/{max_code_attempts})")

    raise TransientIO("Could not allocate a unique visit code")
