"""
Optimistic-concurrency stores over TrustDB.

Both stores follow the same contract:
    get(id)                          -> (value, version)
    put(id, ..., expected_version)   -> new version, or raises VersionConflict

A put never blocks on another entity: the guard is the row's own version,
checked inside a single UPDATE ... WHERE version = ? statement.
"""

import sqlite3
import logging
from dataclasses import replace
from enum import Enum
from typing import Callable, Iterable, TypeVar

from ecotrust.config import CONFLICT_RETRIES, DEFAULT_SCORES
from ecotrust.database import TrustDB, dumps, loads, to_iso, from_iso
from ecotrust.errors import InvalidInitialStateError, NotFoundError, VersionConflict
from ecotrust.models import (
    AuditEntry,
    Listing,
    ListingKind,
    ModeratedEntity,
    ScoreMetadata,
    categories_for,
    overall_rating,
)

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_on_conflict(operation: Callable[[], T], retries: int = CONFLICT_RETRIES) -> T:
    """
    Run a read-modify-write operation, re-running it after a VersionConflict.

    `operation` must re-read its entity on every call. After `retries`
    extra attempts the last VersionConflict propagates to the caller.
    """
    attempt = 0
    while True:
        try:
            return operation()
        except VersionConflict as e:
            if attempt >= retries:
                logger.warning(f"{e}: giving up after {attempt + 1} attempts")
                raise
            attempt += 1
            logger.warning(f"{e}: re-reading and retrying ({attempt}/{retries})")


def _text(value) -> str:
    """Enum members are stored by value."""
    return value.value if isinstance(value, Enum) else str(value)


# =============================================================================
# SCORE METADATA
# =============================================================================

class ScoreMetadataStore:
    """
    Per-listing scores and their provenance.

    Usage:
        store = ScoreMetadataStore(TrustDB("data/ecotrust.db"))
        listing, version = store.get("acc-1")
        store.put("acc-1", updated_listing, expected_version=version)
    """

    def __init__(self, db: TrustDB):
        self.db = db

    def check_available(self):
        """Raise StorageError if the store cannot be reached."""
        self.db.ping()

    def add_listing(self, listing: Listing) -> int:
        """Insert a listing (CRUD-layer entry point). Returns its version."""
        row = self._to_row(listing)
        columns = ', '.join(row)
        placeholders = ', '.join('?' * len(row))
        with self.db.transaction() as conn:
            conn.execute(
                f'INSERT INTO listings ({columns}, version) VALUES ({placeholders}, 0)',
                tuple(row.values()),
            )
        return 0

    def get(self, listing_id: str) -> tuple[Listing, int]:
        row = self.db.execute('SELECT * FROM listings WHERE id = ?', (listing_id,)).fetchone()
        if row is None:
            raise NotFoundError('Listing', listing_id)
        return self._from_row(row), row['version']

    def list_listings(self) -> list[Listing]:
        """All listings in id order."""
        rows = self.db.execute('SELECT * FROM listings ORDER BY id').fetchall()
        return [self._from_row(row) for row in rows]

    def put(self, listing_id: str, listing: Listing, expected_version: int) -> int:
        """
        Overwrite the score fields of a listing if nobody wrote in between.

        Only category_scores, overall_rating and score_metadata are written;
        identity and provenance reference belong to the CRUD layer.

        Returns:
            The new version.

        Raises:
            VersionConflict: the row is no longer at expected_version
            NotFoundError: the listing was removed
        """
        meta = listing.score_metadata
        with self.db.transaction() as conn:
            cursor = conn.execute('''
                UPDATE listings
                SET category_scores_json = ?, overall_rating = ?,
                    confidence_level = ?, last_calculated = ?,
                    reviews_analyzed = ?, keyword_matches = ?,
                    is_default = ?, last_error = ?,
                    version = version + 1
                WHERE id = ? AND version = ?
            ''', (
                dumps(listing.category_scores),
                listing.overall_rating,
                meta.confidence_level,
                to_iso(meta.last_calculated),
                meta.reviews_analyzed,
                meta.keyword_matches,
                1 if meta.is_default else 0,
                meta.last_error,
                listing_id,
                expected_version,
            ))
            if cursor.rowcount == 0:
                exists = conn.execute('SELECT 1 FROM listings WHERE id = ?', (listing_id,)).fetchone()
                if exists is None:
                    raise NotFoundError('Listing', listing_id)
                raise VersionConflict(listing_id, expected_version)

        logger.debug(f"Listing {listing_id}: version {expected_version} -> {expected_version + 1}")
        return expected_version + 1

    def initialize_defaults(self, listing_id: str) -> bool:
        """
        Give a never-calculated listing placeholder scores for its type.

        Placeholders are marked is_default with confidence 1 and leave
        last_calculated empty, so the listing still counts as never processed.

        Returns:
            True if defaults were written, False if the listing already has
            a calculation on record.
        """
        def _apply() -> bool:
            listing, version = self.get(listing_id)
            if not listing.score_metadata.never_calculated:
                return False
            scores = default_scores_for(listing)
            updated = replace(
                listing,
                category_scores=scores,
                overall_rating=overall_rating(scores),
                score_metadata=ScoreMetadata(
                    confidence_level=1,
                    is_default=True,
                    last_error=listing.score_metadata.last_error,
                ),
            )
            self.put(listing_id, updated, version)
            return True

        applied = retry_on_conflict(_apply)
        if applied:
            logger.info(f"Listing {listing_id}: default scores initialized")
        return applied

    def get_statistics(self) -> dict:
        """Counts used by `recalc --status`."""
        cursor = self.db.execute('''
            SELECT
                COUNT(*) AS total,
                SUM(CASE WHEN confidence_level <= 2 THEN 1 ELSE 0 END) AS low,
                SUM(CASE WHEN confidence_level = 3 THEN 1 ELSE 0 END) AS medium,
                SUM(CASE WHEN confidence_level >= 4 THEN 1 ELSE 0 END) AS high,
                SUM(CASE WHEN last_calculated IS NULL THEN 1 ELSE 0 END) AS never_calculated,
                SUM(CASE WHEN external_place_ref IS NOT NULL THEN 1 ELSE 0 END) AS with_external_ref,
                SUM(CASE WHEN is_default = 1 THEN 1 ELSE 0 END) AS defaults,
                SUM(CASE WHEN last_error IS NOT NULL THEN 1 ELSE 0 END) AS with_error
            FROM listings
        ''')
        row = cursor.fetchone()
        total = row['total'] or 0
        return {
            'total': total,
            'by_confidence': {
                'low': row['low'] or 0,
                'medium': row['medium'] or 0,
                'high': row['high'] or 0,
            },
            'never_calculated': row['never_calculated'] or 0,
            'with_external_ref': row['with_external_ref'] or 0,
            'without_external_ref': total - (row['with_external_ref'] or 0),
            'defaults': row['defaults'] or 0,
            'with_error': row['with_error'] or 0,
        }

    # ------------------------------------------------------------------

    @staticmethod
    def _to_row(listing: Listing) -> dict:
        meta = listing.score_metadata
        return {
            'id': listing.id,
            'kind': listing.kind.value,
            'name': listing.name,
            'listing_type': listing.listing_type,
            'external_place_ref': listing.external_place_ref,
            'category_scores_json': dumps(listing.category_scores),
            'overall_rating': listing.overall_rating,
            'confidence_level': meta.confidence_level,
            'last_calculated': to_iso(meta.last_calculated),
            'reviews_analyzed': meta.reviews_analyzed,
            'keyword_matches': meta.keyword_matches,
            'is_default': 1 if meta.is_default else 0,
            'last_error': meta.last_error,
        }

    @staticmethod
    def _from_row(row: sqlite3.Row) -> Listing:
        kind = ListingKind(row['kind'])
        stored = loads(row['category_scores_json'], default={}) or {}
        # Canonical category order, unknown keys dropped
        scores = {name: stored[name] for name in categories_for(kind) if name in stored}
        return Listing(
            id=row['id'],
            kind=kind,
            name=row['name'] or '',
            listing_type=row['listing_type'] or 'hotel',
            external_place_ref=row['external_place_ref'],
            category_scores=scores,
            overall_rating=row['overall_rating'],
            score_metadata=ScoreMetadata(
                confidence_level=row['confidence_level'] or 1,
                last_calculated=from_iso(row['last_calculated']),
                reviews_analyzed=row['reviews_analyzed'] or 0,
                keyword_matches=row['keyword_matches'] or 0,
                is_default=bool(row['is_default']),
                last_error=row['last_error'],
            ),
        )


def default_scores_for(listing: Listing) -> dict:
    """Placeholder scores for the listing's type, in category order."""
    if listing.kind == ListingKind.RESTAURANT:
        table = DEFAULT_SCORES['restaurant']
    else:
        table = DEFAULT_SCORES.get(listing.listing_type, DEFAULT_SCORES['hotel'])
    return {name: table[name] for name in listing.categories if name in table}


# =============================================================================
# MODERATION
# =============================================================================

class ModerationStore:
    """
    Moderation state plus append-only audit trail per entity.

    State and audit row are written in the same transaction, so a reader
    sees either both or neither.
    """

    def __init__(self, db: TrustDB):
        self.db = db

    def add_entity(self, entity: ModeratedEntity) -> int:
        """
        Insert a review/itinerary in its initial state. Returns its version.

        Raises:
            UnknownEntityTypeError: no moderation table for entity_type
            InvalidInitialStateError: state is not the type's initial state
        """
        # moderation.state_machine imports this module
        from moderation.states import TRANSITIONS

        initial = TRANSITIONS.initial_state(entity.entity_type)
        if _text(entity.state) != initial.value:
            raise InvalidInitialStateError(entity.id, _text(entity.state), initial.value)

        with self.db.transaction() as conn:
            conn.execute('''
                INSERT INTO moderated_entities (id, entity_type, state, start_date, end_date, version)
                VALUES (?, ?, ?, ?, ?, 0)
            ''', (
                entity.id,
                _text(entity.entity_type),
                _text(entity.state),
                to_iso(entity.start_date),
                to_iso(entity.end_date),
            ))
        return 0

    def get(self, entity_id: str) -> tuple[ModeratedEntity, int]:
        # Read entity and trail from one snapshot so they match
        with self.db.transaction(read_only=True) as conn:
            row = conn.execute(
                'SELECT * FROM moderated_entities WHERE id = ?', (entity_id,)
            ).fetchone()
            if row is None:
                raise NotFoundError('Entity', entity_id)
            trail = self._read_trail(conn, entity_id)

        entity = ModeratedEntity(
            id=row['id'],
            entity_type=row['entity_type'],
            state=row['state'],
            audit_trail=trail,
            start_date=from_iso(row['start_date']),
            end_date=from_iso(row['end_date']),
        )
        return entity, row['version']

    def put(self, entity_id: str, new_state: str, entry: AuditEntry, expected_version: int) -> int:
        """
        Move an entity to new_state and append entry to its trail, atomically.

        Raises:
            VersionConflict: someone committed a transition after our read
            NotFoundError: the entity was removed
        """
        with self.db.transaction() as conn:
            cursor = conn.execute('''
                UPDATE moderated_entities
                SET state = ?, version = version + 1
                WHERE id = ? AND version = ?
            ''', (_text(new_state), entity_id, expected_version))
            if cursor.rowcount == 0:
                exists = conn.execute(
                    'SELECT 1 FROM moderated_entities WHERE id = ?', (entity_id,)
                ).fetchone()
                if exists is None:
                    raise NotFoundError('Entity', entity_id)
                raise VersionConflict(entity_id, expected_version)

            conn.execute('''
                INSERT INTO moderation_audit
                    (entity_id, action, reason, actor_id, from_state, to_state, created_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
            ''', (
                entity_id,
                _text(entry.action),
                entry.reason,
                entry.actor_id,
                _text(entry.from_state),
                _text(entry.to_state),
                to_iso(entry.timestamp),
            ))

        return expected_version + 1

    def history(self, entity_id: str) -> tuple:
        """Audit trail for one entity, oldest first."""
        entity, _ = self.get(entity_id)
        return entity.audit_trail

    def list_entities(self, entity_type: str = None, states: Iterable[str] = None) -> list[str]:
        """Entity ids, optionally narrowed by type and state."""
        query = 'SELECT id FROM moderated_entities WHERE 1=1'
        params = []
        if entity_type is not None:
            query += ' AND entity_type = ?'
            params.append(_text(entity_type))
        if states:
            states = [_text(s) for s in states]
            query += f" AND state IN ({','.join('?' * len(states))})"
            params.extend(states)
        query += ' ORDER BY id'
        return [row['id'] for row in self.db.execute(query, tuple(params)).fetchall()]

    def get_statistics(self) -> dict:
        """Counts by entity type and state."""
        rows = self.db.execute('''
            SELECT entity_type, state, COUNT(*) AS n
            FROM moderated_entities
            GROUP BY entity_type, state
        ''').fetchall()
        stats = {}
        for row in rows:
            stats.setdefault(row['entity_type'], {})[row['state']] = row['n']
        return stats

    @staticmethod
    def _read_trail(conn, entity_id: str) -> tuple:
        rows = conn.execute('''
            SELECT action, reason, actor_id, from_state, to_state, created_at
            FROM moderation_audit
            WHERE entity_id = ?
            ORDER BY seq
        ''', (entity_id,)).fetchall()
        return tuple(
            AuditEntry(
                action=row['action'],
                actor_id=row['actor_id'],
                timestamp=from_iso(row['created_at']),
                from_state=row['from_state'],
                to_state=row['to_state'],
                reason=row['reason'],
            )
            for row in rows
        )
