"""
Tests for ecotrust/database.py and ecotrust/stores.py.

Run:
    pytest tests/test_stores.py -v
    pytest tests/test_stores.py -v -k "conflict"
"""
import sqlite3
import threading
from unittest.mock import patch

import pytest

from conftest import NOW, days_ago
from ecotrust.database import TrustDB
from ecotrust.errors import (
    InvalidInitialStateError,
    NotFoundError,
    StorageError,
    UnknownEntityTypeError,
    VersionConflict,
)
from ecotrust.models import AuditEntry, ListingKind, ModeratedEntity
from ecotrust.stores import ModerationStore, retry_on_conflict
from moderation.states import EntityType, ModerationState


class TestTrustDB:

    def test_creates_tables(self, db):
        tables = {
            row['name'] for row in
            db.execute("SELECT name FROM sqlite_master WHERE type='table'").fetchall()
        }
        assert {'listings', 'moderated_entities', 'moderation_audit'} <= tables

    def test_auto_migrate_adds_missing_columns(self, tmp_path):
        path = tmp_path / "old.db"
        conn = sqlite3.connect(str(path))
        conn.execute("CREATE TABLE listings (id TEXT PRIMARY KEY, kind TEXT, name TEXT)")
        conn.commit()
        conn.close()

        db = TrustDB(str(path))
        try:
            columns = {row['name'] for row in db.execute('PRAGMA table_info(listings)').fetchall()}
            assert {'confidence_level', 'last_calculated', 'is_default', 'version'} <= columns
        finally:
            db.close()

    def test_unopenable_path_is_storage_error(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        with pytest.raises(StorageError):
            TrustDB(str(blocker / "sub" / "db.sqlite"))

    def test_transaction_rolls_back_on_error(self, db, make_listing):
        make_listing("acc-1")
        with pytest.raises(RuntimeError):
            with db.transaction() as conn:
                conn.execute("UPDATE listings SET name = 'changed' WHERE id = 'acc-1'")
                raise RuntimeError("abort")
        row = db.execute("SELECT name FROM listings WHERE id = 'acc-1'").fetchone()
        assert row['name'] == 'Listing acc-1'

    def test_sqlite_errors_become_storage_errors(self, db):
        with pytest.raises(StorageError):
            db.execute("SELECT * FROM no_such_table")

    def test_release_connection_closes_only_calling_thread(self, db):
        assert db.open_connections == 1

        seen = []

        def worker():
            db.ping()
            seen.append(db.open_connections)
            db.release_connection()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        assert seen == [2]
        assert db.open_connections == 1

        db.release_connection()
        assert db.open_connections == 0
        # Next use reopens
        db.ping()
        assert db.open_connections == 1

    def test_release_without_connection_is_noop(self, db):
        def worker():
            db.release_connection()

        thread = threading.Thread(target=worker)
        thread.start()
        thread.join()
        assert db.open_connections == 1


class TestScoreMetadataStore:

    def test_get_returns_listing_and_version(self, score_store, make_listing):
        make_listing("acc-1", confidence=3, last_calculated=days_ago(2))
        listing, version = score_store.get("acc-1")

        assert version == 0
        assert listing.score_metadata.confidence_level == 3
        assert listing.score_metadata.last_calculated == days_ago(2)
        assert listing.category_scores == {"energy_efficiency": 3.0, "waste_management": 2.0}

    def test_get_unknown_raises(self, score_store):
        with pytest.raises(NotFoundError):
            score_store.get("nope")

    def test_put_bumps_version(self, score_store, make_listing):
        make_listing("acc-1")
        listing, version = score_store.get("acc-1")
        listing.score_metadata.last_error = "x"
        assert score_store.put("acc-1", listing, version) == 1
        assert score_store.get("acc-1")[1] == 1

    def test_put_with_stale_version_conflicts(self, score_store, make_listing):
        make_listing("acc-1")
        listing, version = score_store.get("acc-1")
        score_store.put("acc-1", listing, version)

        with pytest.raises(VersionConflict) as exc:
            score_store.put("acc-1", listing, version)
        assert exc.value.expected_version == 0

    def test_put_unknown_raises_not_found(self, score_store, make_listing):
        listing = make_listing("acc-1")
        with pytest.raises(NotFoundError):
            score_store.put("ghost", listing, 0)

    def test_scores_roundtrip_in_category_order(self, score_store, make_listing):
        make_listing("acc-1", scores={"carbon_footprint": 4.0, "energy_efficiency": 2.0, "bogus": 1.0})
        listing, _ = score_store.get("acc-1")
        assert list(listing.category_scores) == ["energy_efficiency", "carbon_footprint"]

    def test_list_listings(self, score_store, make_listing):
        make_listing("b")
        make_listing("a")
        assert [l.id for l in score_store.list_listings()] == ["a", "b"]

    def test_check_available(self, db, score_store):
        score_store.check_available()
        with patch.object(db, 'execute', side_effect=StorageError("disk I/O error")):
            with pytest.raises(StorageError):
                score_store.check_available()


class TestDefaults:

    def test_initialize_defaults_for_never_calculated(self, score_store, make_listing):
        make_listing("acc-1", listing_type="eco-lodge", confidence=3, scores={})
        assert score_store.initialize_defaults("acc-1") is True

        listing, version = score_store.get("acc-1")
        meta = listing.score_metadata
        assert meta.is_default is True
        assert meta.confidence_level == 1
        assert meta.last_calculated is None
        assert set(listing.category_scores) == set(listing.categories)
        assert listing.overall_rating is not None
        assert version == 1

    def test_restaurant_defaults(self, score_store, make_listing):
        make_listing("res-1", kind=ListingKind.RESTAURANT, scores={})
        score_store.initialize_defaults("res-1")
        listing, _ = score_store.get("res-1")
        assert "organic_ingredients" in listing.category_scores

    def test_defaults_never_overwrite_a_calculation(self, score_store, make_listing):
        make_listing("acc-1", last_calculated=days_ago(1))
        assert score_store.initialize_defaults("acc-1") is False
        listing, version = score_store.get("acc-1")
        assert listing.score_metadata.is_default is False
        assert version == 0


class TestStatistics:

    def test_score_statistics(self, score_store, make_listing):
        make_listing("a", confidence=1, ref=None)
        make_listing("b", confidence=3, last_calculated=days_ago(1))
        make_listing("c", confidence=5, last_calculated=days_ago(1), last_error="timeout")
        make_listing("d", is_default=True)

        stats = score_store.get_statistics()
        assert stats['total'] == 4
        assert stats['by_confidence'] == {'low': 2, 'medium': 1, 'high': 1}
        assert stats['never_calculated'] == 2
        assert stats['with_external_ref'] == 3
        assert stats['without_external_ref'] == 1
        assert stats['defaults'] == 1
        assert stats['with_error'] == 1

    def test_empty_statistics(self, score_store):
        stats = score_store.get_statistics()
        assert stats['total'] == 0
        assert stats['by_confidence'] == {'low': 0, 'medium': 0, 'high': 0}


class TestModerationStore:

    def entry(self, action="flag", from_state="Pending", to_state="Flagged", reason=None):
        return AuditEntry(action=action, actor_id="admin-1", timestamp=NOW,
                          from_state=from_state, to_state=to_state, reason=reason)

    def test_new_entity_has_empty_trail(self, moderation_store, make_entity):
        make_entity("rev-1")
        entity, version = moderation_store.get("rev-1")
        assert entity.state == "Pending"
        assert entity.audit_trail == ()
        assert version == 0

    def test_put_updates_state_and_appends_entry(self, moderation_store, make_entity):
        make_entity("rev-1")
        new_version = moderation_store.put("rev-1", "Flagged", self.entry(reason="spam"), 0)

        entity, version = moderation_store.get("rev-1")
        assert new_version == version == 1
        assert entity.state == "Flagged"
        assert entity.audit_trail == (self.entry(reason="spam"),)

    def test_conflict_writes_nothing(self, moderation_store, make_entity):
        make_entity("rev-1")
        moderation_store.put("rev-1", "Flagged", self.entry(), 0)

        with pytest.raises(VersionConflict):
            moderation_store.put("rev-1", "Approved", self.entry("approve", "Pending", "Approved"), 0)

        entity, _ = moderation_store.get("rev-1")
        assert entity.state == "Flagged"
        assert len(entity.audit_trail) == 1

    def test_unknown_entity(self, moderation_store):
        with pytest.raises(NotFoundError):
            moderation_store.get("ghost")
        with pytest.raises(NotFoundError):
            moderation_store.put("ghost", "Flagged", self.entry(), 0)

    def test_itinerary_dates_roundtrip(self, moderation_store, make_entity):
        make_entity("itin-1", "itinerary", start_date=days_ago(-3), end_date=days_ago(-10))
        entity, _ = moderation_store.get("itin-1")
        assert entity.start_date == days_ago(-3)
        assert entity.end_date == days_ago(-10)

    def test_history_oldest_first(self, moderation_store, make_entity):
        make_entity("rev-1")
        moderation_store.put("rev-1", "Approved", self.entry("approve", "Pending", "Approved"), 0)
        moderation_store.put("rev-1", "Flagged", self.entry("flag", "Approved", "Flagged"), 1)
        assert [e.action for e in moderation_store.history("rev-1")] == ["approve", "flag"]

    def test_list_and_statistics(self, moderation_store, make_entity):
        make_entity("rev-1")
        make_entity("rev-2")
        make_entity("itin-1", "itinerary")
        moderation_store.put("rev-2", "Flagged", self.entry(), 0)

        assert moderation_store.list_entities(entity_type="review") == ["rev-1", "rev-2"]
        assert moderation_store.list_entities(states=["Flagged"]) == ["rev-2"]
        assert moderation_store.get_statistics() == {
            "review": {"Pending": 1, "Flagged": 1},
            "itinerary": {"Pending": 1},
        }

    def test_add_rejects_non_initial_state(self, moderation_store):
        entity = ModeratedEntity(id="rev-1", entity_type="review", state="Approved")
        with pytest.raises(InvalidInitialStateError) as exc:
            moderation_store.add_entity(entity)
        assert (exc.value.state, exc.value.expected) == ("Approved", "Pending")
        assert moderation_store.list_entities() == []

    def test_add_rejects_unknown_type(self, moderation_store):
        entity = ModeratedEntity(id="evt-1", entity_type="event", state="Pending")
        with pytest.raises(UnknownEntityTypeError):
            moderation_store.add_entity(entity)
        assert moderation_store.list_entities() == []

    def test_add_accepts_enum_members(self, moderation_store):
        moderation_store.add_entity(ModeratedEntity(
            id="itin-1", entity_type=EntityType.ITINERARY, state=ModerationState.PENDING,
        ))
        entity, _ = moderation_store.get("itin-1")
        assert (entity.entity_type, entity.state) == ("itinerary", "Pending")

    def test_get_does_not_wait_for_writers(self, db_path, make_entity):
        make_entity("rev-1")
        reader = TrustDB(db_path, busy_timeout=0.1)
        writer = TrustDB(db_path)
        try:
            with writer.transaction():
                # Writer holds the write lock; a snapshot read still succeeds
                entity, version = ModerationStore(reader).get("rev-1")
            assert (entity.state, version) == ("Pending", 0)
        finally:
            writer.close()
            reader.close()

    def test_concurrent_puts_one_winner(self, db_path, make_entity):
        """Two writers holding the same version: exactly one commits."""
        make_entity("rev-1")
        barrier = threading.Barrier(2)
        outcomes = []
        lock = threading.Lock()

        def writer(to_state):
            store = ModerationStore(TrustDB(db_path))
            try:
                barrier.wait()
                store.put("rev-1", to_state, self.entry("x", "Pending", to_state), 0)
                result = "ok"
            except VersionConflict:
                result = "conflict"
            finally:
                store.db.close()
            with lock:
                outcomes.append(result)

        threads = [threading.Thread(target=writer, args=(s,)) for s in ("Flagged", "Approved")]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert sorted(outcomes) == ["conflict", "ok"]
        entity, version = ModerationStore(TrustDB(db_path)).get("rev-1")
        assert version == 1
        assert len(entity.audit_trail) == 1
        assert entity.audit_trail[0].to_state == entity.state


class TestRetryOnConflict:

    def test_retries_once_then_succeeds(self):
        calls = []

        def op():
            calls.append(1)
            if len(calls) == 1:
                raise VersionConflict("x", 0)
            return "done"

        assert retry_on_conflict(op) == "done"
        assert len(calls) == 2

    def test_second_conflict_surfaces(self):
        calls = []

        def op():
            calls.append(1)
            raise VersionConflict("x", len(calls))

        with pytest.raises(VersionConflict):
            retry_on_conflict(op, retries=1)
        assert len(calls) == 2
