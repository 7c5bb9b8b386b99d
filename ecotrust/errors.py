"""
Error taxonomy shared by the recalculation and moderation subsystems.

Batch-level errors (InvalidFilterError, StorageError during pre-flight)
reject a batch before any oracle call. Everything else raised while a
batch is running is captured per item.
"""


class EcoTrustError(Exception):
    """Base class for all EcoTrust errors."""


class InvalidFilterError(EcoTrustError):
    """Selection criteria contain an unknown key or value."""


class StorageError(EcoTrustError):
    """The storage layer is unreachable or returned a database error."""


class NotFoundError(EcoTrustError):
    """Listing or moderated entity does not exist."""

    def __init__(self, kind: str, entity_id: str):
        self.kind = kind
        self.entity_id = entity_id
        super().__init__(f"{kind} not found: {entity_id}")


class MissingProvenanceError(EcoTrustError):
    """Listing has no external place reference, so it cannot be scored."""

    def __init__(self, listing_id: str):
        self.listing_id = listing_id
        super().__init__(
            "Missing external place reference: recalculation requires provenance"
        )


class OracleError(EcoTrustError):
    """Scoring oracle failed (transient or permanent)."""


class OracleTimeoutError(OracleError):
    """Oracle call exceeded its per-call timeout."""


class OracleRateLimitError(OracleError):
    """Oracle rejected the call because of rate limiting."""


class MalformedOracleResponseError(OracleError):
    """Oracle answered, but the payload could not be used."""


class IllegalTransitionError(EcoTrustError):
    """Moderation action is not valid from the entity's current state."""

    def __init__(self, entity_type: str, action: str, state: str = None):
        self.entity_type = entity_type
        self.action = action
        self.state = state
        if state is None:
            message = f"Action '{action}' is not supported for {entity_type}"
        else:
            message = f"Cannot {action} {entity_type} in state {state}"
        super().__init__(message)


class UnknownEntityTypeError(EcoTrustError):
    """Entity type has no moderation table."""

    def __init__(self, entity_type):
        self.entity_type = entity_type
        super().__init__(f"Unknown entity type: {entity_type!r}")


class InvalidInitialStateError(EcoTrustError):
    """New entity does not start in its type's initial state."""

    def __init__(self, entity_id: str, state: str, expected: str):
        self.entity_id = entity_id
        self.state = state
        self.expected = expected
        super().__init__(f"Entity {entity_id} must start in {expected}, not {state}")


class MissingReasonError(EcoTrustError):
    """Moderation action requires a non-blank reason."""

    def __init__(self, entity_type: str, action: str):
        self.entity_type = entity_type
        self.action = action
        super().__init__(f"A reason is required to {action} a {entity_type}")


class VersionConflict(EcoTrustError):
    """Optimistic write lost against a concurrent writer."""

    def __init__(self, entity_id: str, expected_version: int):
        self.entity_id = entity_id
        self.expected_version = expected_version
        super().__init__(
            f"Version conflict on {entity_id} (expected version {expected_version})"
        )
