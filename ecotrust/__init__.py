"""
EcoTrust core: eco-score provenance and moderation storage shared by
the recalc and moderation packages.
"""
from .clock import Clock, SystemClock, FixedClock
from .database import TrustDB
from .models import Listing, ListingKind, ScoreMetadata, ModeratedEntity, AuditEntry
from .stores import ScoreMetadataStore, ModerationStore, retry_on_conflict

__all__ = [
    'Clock', 'SystemClock', 'FixedClock',
    'TrustDB',
    'Listing', 'ListingKind', 'ScoreMetadata', 'ModeratedEntity', 'AuditEntry',
    'ScoreMetadataStore', 'ModerationStore', 'retry_on_conflict',
]
