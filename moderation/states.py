"""
Moderation states and the transition table.

One table per entity type, checked when the table is built: every action
maps to exactly one Transition, and no transition leaves a terminal state.
Date-derived itinerary phases (Upcoming/Ongoing/Completed) are not stored
states; see moderation.projection.
"""
from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional

from ecotrust.errors import IllegalTransitionError, UnknownEntityTypeError
from ecotrust.models import AuditEntry


class EntityType(str, Enum):
    REVIEW = "review"
    ITINERARY = "itinerary"


class ModerationState(str, Enum):
    PENDING = "Pending"
    APPROVED = "Approved"
    FLAGGED = "Flagged"
    REJECTED = "Rejected"
    HIDDEN = "Hidden"
    DELETED = "Deleted"


class ModerationAction(str, Enum):
    APPROVE = "approve"
    FLAG = "flag"
    REJECT = "reject"
    HIDE = "hide"
    DELETE = "delete"


class ItineraryPhase(str, Enum):
    """Read-time projection from itinerary dates."""
    DRAFT = "Draft"
    UPCOMING = "Upcoming"
    ONGOING = "Ongoing"
    COMPLETED = "Completed"


@dataclass(frozen=True)
class Transition:
    entity_type: EntityType
    action: ModerationAction
    valid_from: frozenset
    target: ModerationState
    reason_required: bool = False


@dataclass(frozen=True)
class EntityStates:
    """State set of one entity type."""
    initial: ModerationState
    states: frozenset
    terminal: frozenset


class TransitionTable:
    """
    Usage:
        transition = TRANSITIONS.lookup("review", "reject")
        transition.reason_required   # True
    """

    def __init__(self, entity_states: dict, transitions: Iterable[Transition]):
        self.entity_states = dict(entity_states)
        self._transitions = {}

        for t in transitions:
            states = self.entity_states.get(t.entity_type)
            if states is None:
                raise ValueError(f"No states declared for {t.entity_type.value}")
            key = (t.entity_type, t.action)
            if key in self._transitions:
                raise ValueError(f"Duplicate transition: {t.entity_type.value}/{t.action.value}")
            if not t.valid_from:
                raise ValueError(f"{t.entity_type.value}/{t.action.value} has no source states")
            unknown = (set(t.valid_from) | {t.target}) - states.states
            if unknown:
                raise ValueError(
                    f"{t.entity_type.value}/{t.action.value} uses unknown states: "
                    + ', '.join(sorted(s.value for s in unknown))
                )
            if t.valid_from & states.terminal:
                raise ValueError(f"{t.entity_type.value}/{t.action.value} leaves a terminal state")
            self._transitions[key] = t

    def lookup(self, entity_type, action) -> Transition:
        """
        Raises:
            IllegalTransitionError: the entity type has no such action
        """
        entity_type = parse_entity_type(entity_type)
        parsed_action = parse_action(entity_type, action)
        transition = self._transitions.get((entity_type, parsed_action))
        if transition is None:
            raise IllegalTransitionError(entity_type.value, parsed_action.value)
        return transition

    def initial_state(self, entity_type) -> ModerationState:
        return self.entity_states[parse_entity_type(entity_type)].initial

    def is_terminal(self, entity_type, state) -> bool:
        return ModerationState(state) in self.entity_states[parse_entity_type(entity_type)].terminal

    def actions_for(self, entity_type, state) -> list:
        """Actions allowed from a state, in table order."""
        entity_type = parse_entity_type(entity_type)
        state = ModerationState(state)
        return [
            t.action for (kind, _), t in self._transitions.items()
            if kind == entity_type and state in t.valid_from
        ]

    def replay(self, entity_type, trail: Iterable[AuditEntry]) -> ModerationState:
        """
        State reached by applying an audit trail from the initial state.

        Raises:
            IllegalTransitionError: the trail contains a step the table forbids
        """
        entity_type = parse_entity_type(entity_type)
        state = self.initial_state(entity_type)
        for entry in trail:
            transition = self.lookup(entity_type, entry.action)
            if state not in transition.valid_from:
                raise IllegalTransitionError(entity_type.value, transition.action.value, state.value)
            state = transition.target
        return state


def parse_entity_type(value) -> EntityType:
    try:
        return EntityType(value)
    except ValueError:
        raise UnknownEntityTypeError(value) from None


def parse_action(entity_type: EntityType, value) -> ModerationAction:
    try:
        return ModerationAction(value)
    except ValueError:
        raise IllegalTransitionError(entity_type.value, str(value)) from None


def normalize_reason(reason: Optional[str]) -> Optional[str]:
    """Strip whitespace; blank becomes None."""
    if reason is None:
        return None
    reason = reason.strip()
    return reason or None


# =============================================================================
# TABLE
# =============================================================================

S = ModerationState
A = ModerationAction

_ITINERARY_OPEN = frozenset({S.PENDING, S.APPROVED, S.FLAGGED, S.HIDDEN})

ENTITY_STATES = {
    EntityType.REVIEW: EntityStates(
        initial=S.PENDING,
        states=frozenset({S.PENDING, S.APPROVED, S.FLAGGED, S.REJECTED}),
        terminal=frozenset({S.REJECTED}),
    ),
    EntityType.ITINERARY: EntityStates(
        initial=S.PENDING,
        states=_ITINERARY_OPEN | {S.DELETED},
        terminal=frozenset({S.DELETED}),
    ),
}

TRANSITIONS = TransitionTable(ENTITY_STATES, [
    # review
    Transition(EntityType.REVIEW, A.APPROVE, frozenset({S.PENDING}), S.APPROVED),
    Transition(EntityType.REVIEW, A.FLAG, frozenset({S.PENDING, S.APPROVED}), S.FLAGGED),
    Transition(EntityType.REVIEW, A.REJECT, frozenset({S.APPROVED, S.FLAGGED}), S.REJECTED, reason_required=True),
    # itinerary: approve clears the override, phase is recomputed from dates
    Transition(EntityType.ITINERARY, A.APPROVE, frozenset({S.FLAGGED, S.HIDDEN}), S.APPROVED),
    Transition(EntityType.ITINERARY, A.FLAG, _ITINERARY_OPEN, S.FLAGGED, reason_required=True),
    Transition(EntityType.ITINERARY, A.HIDE, _ITINERARY_OPEN, S.HIDDEN, reason_required=True),
    Transition(EntityType.ITINERARY, A.DELETE, _ITINERARY_OPEN, S.DELETED, reason_required=True),
])

INITIAL_STATES = {kind: states.initial for kind, states in ENTITY_STATES.items()}
