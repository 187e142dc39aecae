# src/services/correlator.py
"""
Resolve a visit to the visitor and guard it belongs to.

Visits do not always carry usable foreign keys: ``visitor_id`` may be
missing and ``security_id`` is only set on some check-in paths. Resolution
therefore runs an ordered list of matchers, first match wins, and falls back
to display placeholders. Nothing here reads the clock or random state, so the
same inputs always produce the same result.
"""
from dataclasses import dataclass
from typing import Any, Optional, Sequence

from config import get_config
from utils.logger import setup_logger

logger = setup_logger(__name__)
cfg = get_config()


@dataclass(frozen=True)
class Matched:
    value: Any


class _NoMatch:
    def __repr__(self):
        return "NO_MATCH"

    def __bool__(self):
        return False


NO_MATCH = _NoMatch()


@dataclass(frozen=True)
class Correlation:
    visit_id: int
    visitor_name: str
    visitor: Optional[dict]
    guard_name: str
    guard: Optional[dict]
    gate: Optional[str]
    visitor_strategy: Optional[str]
    guard_strategy: Optional[str]

    def to_dict(self):
        return {
            "visit_id": self.visit_id,
            "visitor_name": self.visitor_name,
            "visitor": self.visitor,
            "guard_name": self.guard_name,
            "guard": self.guard,
            "gate": self.gate,
            "visitor_strategy": self.visitor_strategy,
            "guard_strategy": self.guard_strategy,
        }


# -- visitor matchers -------------------------------------------------------

def match_exact_id(visit, visitor):
    if visit.visitor_id is not None and visitor.id is not None and visit.visitor_id == visitor.id:
        return Matched(visitor)
    return NO_MATCH


def match_code_segment(visit, visitor):
    """``VST-<segment>``: the part after the first delimiter names the visitor id."""
    code = visit.visit_code or ""
    if "-" not in code or visitor.id is None:
        return NO_MATCH
    segment = code.split("-")[1]
    if segment and segment == str(visitor.id):
        return Matched(visitor)
    return NO_MATCH


def match_id_number_substring(visit, visitor):
    code = visit.visit_code or ""
    id_number = visitor.id_number or ""
    if not code or not id_number:
        return NO_MATCH
    if code in id_number or id_number in code:
        return Matched(visitor)
    return NO_MATCH


VISITOR_MATCHERS = (
    ("exact_id", match_exact_id),
    ("code_segment", match_code_segment),
    ("id_number_substring", match_id_number_substring),
)


def resolve_visitor(visit, visitors, matchers=VISITOR_MATCHERS):
    """Return (visitor, strategy name) or (None, None)."""
    for name, matcher in matchers:
        for visitor in visitors:
            result = matcher(visit, visitor)
            if result:
                return result.value, name
    return None, None


# -- guard resolution -------------------------------------------------------

class GateAssigner:
    """Derives a gate label for a visit that has no explicit guard reference."""

    def gate_for(self, visit) -> Optional[str]:
        raise NotImplementedError


class GateRotation(GateAssigner):
    """Pseudo-assignment ``visit.id mod len(gates)`` over a fixed gate rotation."""

    def __init__(self, gates: Sequence[str] = None):
        self.gates = list(cfg.GATE_ROTATION if gates is None else gates)

    def gate_for(self, visit):
        if visit.id is None or not self.gates:
            return None
        return self.gates[visit.id % len(self.gates)]


def resolve_guard(visit, guards, assigner: GateAssigner):
    """Return (guard, gate, strategy name); guard may be None when nothing matched."""
    if visit.security_id:
        for guard in guards:
            if guard.id == visit.security_id:
                return guard, guard.assign_gate, "explicit"

    gate = assigner.gate_for(visit)
    if gate is not None:
        for guard in guards:
            if guard.assign_gate == gate:
                return guard, gate, "gate_rotation"
    return None, gate, None


# -- public API -------------------------------------------------------------

class EntityCorrelator:

    def __init__(self, assigner: GateAssigner = None,
                 matchers: Sequence[tuple] = VISITOR_MATCHERS):
        self.assigner = assigner or GateRotation()
        self.matchers = tuple(matchers)

    def correlate(self, visit, visitors, guards) -> Correlation:
        """Best-effort identities for ``visit``. Never raises."""
        try:
            visitor, visitor_strategy = resolve_visitor(visit, visitors, self.matchers)
            guard, gate, guard_strategy = resolve_guard(visit, guards, self.assigner)
        except Exception as e:
            logger.error(f"❌ Correlation failed for visit {getattr(visit, 'id', None)}: {str(e)}")
            visitor, visitor_strategy, guard, gate, guard_strategy = None, None, None, None, None

        return Correlation(
            visit_id=getattr(visit, "id", None),
            visitor_name=visitor.name if visitor is not None and visitor.name else cfg.UNKNOWN_VISITOR,
            visitor=visitor.to_dict() if visitor is not None else None,
            guard_name=guard.name if guard is not None and guard.name else cfg.UNKNOWN_GUARD,
            guard=guard.to_dict() if guard is not None else None,
            gate=gate,
            visitor_strategy=visitor_strategy,
            guard_strategy=guard_strategy,
        )

    def correlate_all(self, store):
        """Resolve every visit for an admin log with one read of each table."""
        visits = store.list_visits()
        visitors = store.list_visitors()
        guards = store.list_guards()
        logger.info(f"🔗 Correlating {len(visits)} visits against {len(visitors)} visitors, {len(guards)} guards")
        return [(visit, self.correlate(visit, visitors, guards)) for visit in visits]


def correlate(visit, visitors, guards, assigner: GateAssigner = None) -> Correlation:
    return EntityCorrelator(assigner).correlate(visit, visitors, guards)
