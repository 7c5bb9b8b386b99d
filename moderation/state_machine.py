"""
Moderation State Machine
Applies admin actions to reviews and itineraries.

    apply(entity_id, action, reason?, actor_id?)
        1. read entity + version
        2. look up the transition (unsupported action -> IllegalTransitionError)
        3. reason check (MissingReasonError), before anything is written
        4. source-state check (IllegalTransitionError)
        5. state + audit entry written together, guarded by version

A rejected action leaves state and trail untouched. A VersionConflict is
retried once against the freshly read state.
"""
import logging
from dataclasses import replace
from typing import Optional

from ecotrust.clock import Clock, SystemClock
from ecotrust.config import CONFLICT_RETRIES, SYSTEM_ACTOR
from ecotrust.errors import IllegalTransitionError, MissingReasonError
from ecotrust.models import AuditEntry, ModeratedEntity
from ecotrust.stores import ModerationStore, retry_on_conflict

from .states import TRANSITIONS, ModerationState, TransitionTable, normalize_reason

logger = logging.getLogger(__name__)


class ModerationStateMachine:
    """
    Usage:
        machine = ModerationStateMachine(ModerationStore(db))
        review = machine.apply("rev-7", "reject", reason="spam", actor_id="admin-1")
    """

    def __init__(
        self,
        store: ModerationStore,
        clock: Clock = None,
        table: TransitionTable = TRANSITIONS,
        conflict_retries: int = CONFLICT_RETRIES,
    ):
        self.store = store
        self.clock = clock or SystemClock()
        self.table = table
        self.conflict_retries = conflict_retries

    def apply(
        self,
        entity_id: str,
        action: str,
        reason: Optional[str] = None,
        actor_id: str = SYSTEM_ACTOR,
    ) -> ModeratedEntity:
        """
        Apply one admin action.

        Returns:
            The entity as committed (state and trail included).

        Raises:
            NotFoundError: unknown entity
            UnknownEntityTypeError: entity type has no moderation table
            IllegalTransitionError: action unsupported or invalid from current state
            MissingReasonError: action needs a reason and none was given
            VersionConflict: still losing after the retry
        """
        reason = normalize_reason(reason)
        actor_id = actor_id or SYSTEM_ACTOR
        attempts = []

        def attempt() -> ModeratedEntity:
            attempts.append(1)
            entity, version = self.store.get(entity_id)
            transition = self.table.lookup(entity.entity_type, action)

            if transition.reason_required and reason is None:
                raise MissingReasonError(transition.entity_type.value, transition.action.value)

            current = ModerationState(entity.state)
            if current not in transition.valid_from:
                if len(attempts) > 1 and current == transition.target:
                    # Lost the race to an identical action: already where we wanted to be
                    logger.info(
                        f"{entity_id}: concurrent {transition.action.value} already committed, "
                        f"state is {current.value}"
                    )
                    return entity
                raise IllegalTransitionError(
                    transition.entity_type.value, transition.action.value, current.value
                )

            entry = AuditEntry(
                action=transition.action.value,
                actor_id=actor_id,
                timestamp=self.clock.now(),
                from_state=current.value,
                to_state=transition.target.value,
                reason=reason,
            )
            self.store.put(entity_id, transition.target, entry, version)
            logger.info(
                f"{transition.entity_type.value} {entity_id}: {current.value} -> "
                f"{transition.target.value} ({transition.action.value} by {actor_id})"
            )
            return replace(
                entity,
                state=transition.target.value,
                audit_trail=entity.audit_trail + (entry,),
            )

        return retry_on_conflict(attempt, retries=self.conflict_retries)

    def allowed_actions(self, entity_id: str) -> list:
        """Actions valid from the entity's current state."""
        entity, _ = self.store.get(entity_id)
        return [a.value for a in self.table.actions_for(entity.entity_type, entity.state)]

    def verify(self, entity_id: str) -> bool:
        """True if replaying the stored trail reproduces the stored state."""
        entity, _ = self.store.get(entity_id)
        replayed = self.table.replay(entity.entity_type, entity.audit_trail)
        return replayed.value == entity.state
