"""
Recalculation Orchestrator
Drives ScoreOracle over a set of listings and writes results back.

Per item:
    1. read listing (with version)
    2. no external_place_ref -> MissingProvenanceError, recorded as last_error
    3. oracle.compute() under a hard per-call deadline (OracleTimeoutError)
    4. success -> overwrite scores + metadata; failure -> only last_error
    5. write guarded by version, retried once on VersionConflict

Per-item failures are counted, never raised. Only invalid criteria and a
storage outage at pre-flight reject a batch, before any oracle call.
"""
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Union

from ecotrust.clock import Clock, SystemClock
from ecotrust.config import (
    CONFLICT_RETRIES,
    ORACLE_TIMEOUT,
    RECALC_CONCURRENCY,
    RECALC_MAX_CONCURRENCY,
)
from ecotrust.errors import (
    EcoTrustError,
    MissingProvenanceError,
    OracleError,
    OracleTimeoutError,
)
from ecotrust.models import Listing
from ecotrust.oracle.backend import ScoreOracle
from ecotrust.oracle.client import OracleResult
from ecotrust.stores import ScoreMetadataStore, retry_on_conflict

from ..domain.filter_engine import (
    FilterCriteria,
    FilterEngine,
    LOW_CONFIDENCE,
    NEVER_PROCESSED,
    parse_criteria,
)
from ..domain.score_calculator import apply_failure, apply_success
from .batch_processor import BatchProcessor, unique

logger = logging.getLogger(__name__)

Criteria = Union[None, Mapping, FilterCriteria]


@dataclass
class ItemOutcome:
    """Outcome of recalculating one listing."""
    listing_id: str
    success: bool
    error: Optional[str] = None


@dataclass
class BatchReport:
    """
    Summary of one batch.

    Unless cancelled, successful + failed == total_processed == len(target_ids).
    A cancelled batch reports only the items a worker actually started.
    """
    target_ids: list
    total_processed: int = 0
    successful: int = 0
    failed: int = 0
    errors: dict = field(default_factory=dict)   # listing_id -> reason
    cancelled: bool = False
    elapsed_seconds: float = 0.0

    @property
    def rate(self) -> float:
        if self.elapsed_seconds > 0:
            return self.total_processed / self.elapsed_seconds
        return 0.0

    def to_dict(self) -> dict:
        return {
            'totalProcessed': self.total_processed,
            'successful': self.successful,
            'failed': self.failed,
            'errors': dict(self.errors),
            'cancelled': self.cancelled,
        }


class RecalculationOrchestrator:
    """
    Usage:
        orchestrator = RecalculationOrchestrator(store, HttpScoreOracle())
        report = orchestrator.run_filtered({"confidence": "low"})
        print(report.successful, report.failed)
    """

    def __init__(
        self,
        store: ScoreMetadataStore,
        oracle: ScoreOracle,
        clock: Clock = None,
        concurrency_limit: int = RECALC_CONCURRENCY,
        oracle_timeout: float = ORACLE_TIMEOUT,
        conflict_retries: int = CONFLICT_RETRIES,
        show_progress: bool = False,
    ):
        self.store = store
        self.oracle = oracle
        self.clock = clock or SystemClock()
        self.filter_engine = FilterEngine(self.clock)
        self.concurrency_limit = self._check_concurrency(concurrency_limit)
        self.oracle_timeout = oracle_timeout
        self.conflict_retries = conflict_retries
        self.show_progress = show_progress

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    def run_batch(
        self,
        listing_ids: Iterable[str],
        concurrency_limit: int = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        """
        Recalculate the given listings with a bounded worker pool.

        Raises:
            StorageError: the store is unreachable (nothing attempted)
            ValueError: concurrency_limit below 1
        """
        target_ids = unique(listing_ids)
        workers = self._check_concurrency(
            self.concurrency_limit if concurrency_limit is None else concurrency_limit
        )

        # Pre-flight: a storage outage rejects the whole batch
        self.store.check_available()

        report = BatchReport(target_ids=target_ids)
        if not target_ids:
            logger.info("Empty batch, nothing to recalculate")
            return report

        logger.info(
            f"Recalculating {len(target_ids)} listings with {workers} workers via {self.oracle.name}"
        )

        processor = BatchProcessor(
            items=target_ids,
            process_fn=self.recalculate_listing,
            max_workers=workers,
            show_progress=self.show_progress,
            cancel_event=cancel_event,
            is_success=lambda outcome: outcome.success,
            on_worker_exit=self.store.db.release_connection,
        )
        results, stats = processor.run()

        for listing_id, outcome in results.items():
            if isinstance(outcome, Exception):
                report.errors[listing_id] = f"{type(outcome).__name__}: {outcome}"
            elif not outcome.success:
                report.errors[listing_id] = outcome.error

        report.total_processed = stats.processed
        report.successful = stats.succeeded
        report.failed = stats.failed
        report.cancelled = stats.cancelled
        report.elapsed_seconds = stats.elapsed_seconds

        logger.info(
            f"Batch finished: {report.successful} ok, {report.failed} failed, "
            f"{report.total_processed}/{len(target_ids)} processed"
            + (" (cancelled)" if report.cancelled else "")
        )
        return report

    def run_filtered(self, criteria: Criteria = None, **kwargs) -> BatchReport:
        """Recalculate every listing matching criteria ("all filtered")."""
        return self._run_selection([criteria], **kwargs)

    def run_low_confidence(self, criteria: Criteria = None, **kwargs) -> BatchReport:
        """Listings with confidence < 3, within the current criteria."""
        return self._run_selection([criteria, LOW_CONFIDENCE], **kwargs)

    def run_never_processed(self, criteria: Criteria = None, **kwargs) -> BatchReport:
        """Listings never calculated, within the current criteria."""
        return self._run_selection([criteria, NEVER_PROCESSED], **kwargs)

    def run_single(self, listing_id: str) -> BatchReport:
        """Recalculate one listing; same report shape as a batch."""
        return self.run_batch([listing_id], concurrency_limit=1)

    def select(self, *criteria_list: Criteria) -> list[str]:
        """Ids of stored listings matching every criteria set."""
        parsed = [parse_criteria(criteria) for criteria in criteria_list]
        return self.filter_engine.select_all(self.store.list_listings(), parsed)

    # ------------------------------------------------------------------
    # Per item
    # ------------------------------------------------------------------

    def recalculate_listing(self, listing_id: str) -> ItemOutcome:
        """Recalculate one listing. Never raises for per-item problems."""
        try:
            listing, _ = self.store.get(listing_id)
            if not listing.has_external_ref:
                raise MissingProvenanceError(listing_id)
            result = self._compute(listing)
        except (MissingProvenanceError, OracleError) as e:
            logger.warning(f"Listing {listing_id}: {e}")
            self._record_failure(listing_id, str(e))
            return ItemOutcome(listing_id, success=False, error=str(e))
        except EcoTrustError as e:
            # NotFoundError / StorageError: nothing to write back to
            logger.warning(f"Listing {listing_id}: {e}")
            return ItemOutcome(listing_id, success=False, error=str(e))

        now = self.clock.now()
        try:
            self._write(listing_id, lambda current: apply_success(current, result, now))
        except EcoTrustError as e:
            logger.warning(f"Listing {listing_id}: write failed: {e}")
            return ItemOutcome(listing_id, success=False, error=str(e))

        logger.debug(f"Listing {listing_id}: recalculated (confidence {result.confidence_level})")
        return ItemOutcome(listing_id, success=True)

    def _compute(self, listing: Listing) -> OracleResult:
        """
        Call the oracle with a hard deadline of oracle_timeout seconds.

        The call runs on its own thread; when the deadline passes the item
        fails with OracleTimeoutError and an overrunning call is abandoned.
        """
        executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix='oracle')
        future = executor.submit(
            self.oracle.compute,
            listing.external_place_ref,
            listing.categories,
            timeout=self.oracle_timeout,
        )
        try:
            return future.result(timeout=self.oracle_timeout)
        except FuturesTimeoutError:
            future.cancel()
            raise OracleTimeoutError(
                f"Oracle {self.oracle.name} timed out after {self.oracle_timeout}s"
            ) from None
        except OracleError:
            raise
        except Exception as e:
            # A broken oracle implementation is still just a failed item
            raise OracleError(f"Oracle {self.oracle.name} failed: {type(e).__name__}: {e}") from e
        finally:
            executor.shutdown(wait=False)

    def _record_failure(self, listing_id: str, message: str):
        """Store last_error; scores and confidence stay as they are."""
        try:
            self._write(listing_id, lambda current: apply_failure(current, message))
        except EcoTrustError as e:
            logger.warning(f"Listing {listing_id}: could not record error: {e}")

    def _write(self, listing_id: str, transform: Callable[[Listing], Listing]) -> int:
        """Re-read, apply transform, write with version guard (retried on conflict)."""
        def attempt() -> int:
            current, version = self.store.get(listing_id)
            return self.store.put(listing_id, transform(current), version)

        return retry_on_conflict(attempt, retries=self.conflict_retries)

    # ------------------------------------------------------------------

    def _run_selection(
        self,
        criteria_list: list,
        concurrency_limit: int = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> BatchReport:
        # Criteria are validated before the store is touched
        parsed = [parse_criteria(criteria) for criteria in criteria_list]
        self.store.check_available()
        listing_ids = self.filter_engine.select_all(self.store.list_listings(), parsed)
        logger.info(
            f"Selected {len(listing_ids)} listings ("
            + '; '.join(criteria.describe() for criteria in parsed)
            + ")"
        )
        return self.run_batch(listing_ids, concurrency_limit=concurrency_limit, cancel_event=cancel_event)

    @staticmethod
    def _check_concurrency(limit: int) -> int:
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise ValueError(f"concurrency_limit must be a positive integer, got {limit!r}")
        if limit > RECALC_MAX_CONCURRENCY:
            logger.warning(f"concurrency_limit {limit} capped at {RECALC_MAX_CONCURRENCY}")
            return RECALC_MAX_CONCURRENCY
        return limit
