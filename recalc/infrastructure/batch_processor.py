"""
Batch Processor
Bounded worker pool with progress bar and cooperative cancellation.
"""
import sys
import time
import queue
import logging
import threading
from dataclasses import dataclass
from typing import Callable, Generic, Iterable, Optional, TypeVar
from concurrent.futures import ThreadPoolExecutor

logger = logging.getLogger(__name__)

T = TypeVar('T')
R = TypeVar('R')


@dataclass
class BatchResult:
    """Result of batch processing."""
    processed: int      # items a worker picked up
    succeeded: int
    failed: int
    cancelled: bool
    elapsed_seconds: float

    @property
    def rate(self) -> float:
        """Items per second."""
        if self.elapsed_seconds > 0:
            return self.processed / self.elapsed_seconds
        return 0.0


class ProgressBar:
    """Simple progress bar for terminal."""

    def __init__(self, total: int, prefix: str = '', width: int = 40):
        self.total = total
        self.prefix = prefix
        self.width = width
        self.current = 0
        self.failed = 0
        self.start_time = time.time()
        self._lock = threading.Lock()

    def increment(self, was_failure: bool = False):
        """Increment by 1 (safe to call from worker threads)."""
        with self._lock:
            self.current += 1
            if was_failure:
                self.failed += 1
            self._render()

    def _render(self):
        """Render progress bar to terminal."""
        if self.total == 0:
            return

        percent = self.current / self.total
        filled = int(self.width * percent)
        # ASCII-only so it renders on any console encoding
        bar = '#' * filled + '-' * (self.width - filled)

        elapsed = time.time() - self.start_time
        rate = self.current / elapsed if elapsed > 0 else 0
        eta = (self.total - self.current) / rate if rate > 0 else 0

        status = f"{self.current}/{self.total} ({self.failed} failed)"
        timing = f"{rate:.1f}/s, ETA {eta:.0f}s"

        line = f"\r{self.prefix} [{bar}] {percent:6.1%} {status} | {timing}"
        sys.stdout.write(line)
        sys.stdout.flush()

    def finish(self):
        """Finish progress bar."""
        elapsed = time.time() - self.start_time
        print(f"\nDone: {self.current} processed, {self.failed} failed in {elapsed:.1f}s")


def unique(items: Iterable[T]) -> list[T]:
    """Drop repeated items, keeping first-seen order."""
    seen = set()
    result = []
    for item in items:
        if item not in seen:
            seen.add(item)
            result.append(item)
    return result


class BatchProcessor(Generic[T, R]):
    """
    Run process_fn over items with at most `max_workers` in flight.

    Items are deduplicated and handed out from one shared queue, so no item
    is ever processed twice. Setting `cancel_event` stops workers from
    picking up new items; items already in flight finish normally.

    Usage:
        processor = BatchProcessor(
            items=listing_ids,
            process_fn=recalculate_listing,
            max_workers=5,
            is_success=lambda outcome: outcome.success,
        )
        results, stats = processor.run()
    """

    def __init__(
        self,
        items: Iterable[T],
        process_fn: Callable[[T], R],
        max_workers: int = 4,
        show_progress: bool = False,
        cancel_event: Optional[threading.Event] = None,
        is_success: Callable[[R], bool] = None,
        on_worker_exit: Optional[Callable[[], None]] = None,
    ):
        if max_workers < 1:
            raise ValueError(f"max_workers must be >= 1, got {max_workers}")
        self.items = unique(items)
        self.process_fn = process_fn
        self.max_workers = max_workers
        self.show_progress = show_progress
        self.cancel_event = cancel_event or threading.Event()
        self.is_success = is_success or (lambda result: True)
        self.on_worker_exit = on_worker_exit

    def run(self) -> tuple[dict, BatchResult]:
        """
        Run batch processing.

        Returns:
            Tuple of (results by item, BatchResult stats). An item whose
            process_fn raised maps to the exception instance.
        """
        start_time = time.time()
        results = {}
        results_lock = threading.Lock()
        counts = {'succeeded': 0, 'failed': 0}

        pending = queue.Queue()
        for item in self.items:
            pending.put(item)

        progress = None
        if self.show_progress:
            progress = ProgressBar(len(self.items), prefix='Processing')

        def worker():
            try:
                while not self.cancel_event.is_set():
                    try:
                        item = pending.get_nowait()
                    except queue.Empty:
                        return

                    try:
                        result = self.process_fn(item)
                        ok = self.is_success(result)
                    except Exception as e:
                        logger.exception(f"Unhandled error while processing {item!r}")
                        result, ok = e, False

                    with results_lock:
                        results[item] = result
                        counts['succeeded' if ok else 'failed'] += 1

                    if progress:
                        progress.increment(was_failure=not ok)
            finally:
                # Release per-thread resources such as SQLite connections
                if self.on_worker_exit:
                    self.on_worker_exit()

        workers = min(self.max_workers, len(self.items)) or 1
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix='recalc') as executor:
            futures = [executor.submit(worker) for _ in range(workers)]
            try:
                for future in futures:
                    future.result()
            except KeyboardInterrupt:
                # Ctrl+C: let in-flight items finish, pick up nothing new
                logger.warning("Interrupted, finishing in-flight items")
                self.cancel_event.set()
                for future in futures:
                    future.result()

        if progress:
            progress.finish()

        cancelled = self.cancel_event.is_set() and len(results) < len(self.items)
        if cancelled:
            logger.info(f"Batch cancelled after {len(results)}/{len(self.items)} items")

        return results, BatchResult(
            processed=len(results),
            succeeded=counts['succeeded'],
            failed=counts['failed'],
            cancelled=cancelled,
            elapsed_seconds=time.time() - start_time,
        )
