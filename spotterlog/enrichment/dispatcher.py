"""
Enrichment dispatcher - fire-and-forget submission of enrichment attempts.

Request handlers call ``submit()`` after the sighting is committed and
return immediately. Attempts run on a fixed pool of daemon threads
reading from a bounded queue, so:

- backpressure is explicit: a full queue rejects the submission and the
  sighting is marked FAILED (it can be retried later) instead of being
  left ENRICHING forever
- shutdown can drain: ``stop(drain=True)`` lets queued attempts finish
  before the threads are joined

No ordering is promised between attempts. Two attempts for the same
sighting may race; whichever records its status last wins.
"""

import logging
import queue
import threading
from typing import Optional, List

from spotterlog.config import config
from spotterlog.enrichment.worker import EnrichmentWorker
from spotterlog.models import EnrichmentStatus

logger = logging.getLogger(__name__)

_STOP = object()


class EnrichmentDispatcher:
    """Bounded task queue plus worker threads running ``EnrichmentWorker.enrich``."""

    def __init__(
        self,
        worker: EnrichmentWorker,
        workers: Optional[int] = None,
        queue_size: Optional[int] = None,
    ):
        self.worker = worker
        self.num_workers = workers or config.enrichment.workers
        self.queue_size = queue_size if queue_size is not None else config.enrichment.queue_size

        self._queue: queue.Queue = queue.Queue(maxsize=self.queue_size)
        self._threads: List[threading.Thread] = []
        self._running = False
        self._lock = threading.Lock()

        # Statistics
        self._submitted = 0
        self._completed = 0
        self._rejected = 0

    def start(self) -> None:
        """Start the worker threads."""
        with self._lock:
            if self._running:
                logger.warning('Enrichment dispatcher already running')
                return
            self._running = True
            self._threads = [
                threading.Thread(
                    target=self._run,
                    name=f'enrichment-{i}',
                    daemon=True,
                )
                for i in range(self.num_workers)
            ]
            for thread in self._threads:
                thread.start()

        logger.info(f'Enrichment dispatcher started with {self.num_workers} workers')

    def submit(self, sighting_id: int) -> bool:
        """
        Queue an enrichment attempt. Never blocks.

        Returns False if the attempt was rejected, in which case the
        sighting has already been marked FAILED.
        """
        # Checked under the lock so nothing is queued behind stop()'s sentinels
        with self._lock:
            running = self._running
            accepted = False
            if running:
                try:
                    self._queue.put_nowait(sighting_id)
                    self._submitted += 1
                    accepted = True
                except queue.Full:
                    pass

        if accepted:
            return True
        if not running:
            logger.warning(f'Enrichment dispatcher not running, rejecting sighting {sighting_id}')
        else:
            logger.warning(f'Enrichment queue full ({self.queue_size}), rejecting sighting {sighting_id}')
        return self._reject(sighting_id)

    def _reject(self, sighting_id: int) -> bool:
        with self._lock:
            self._rejected += 1
        try:
            self.worker.sightings.update_enrichment(sighting_id, EnrichmentStatus.FAILED)
        except Exception:
            logger.exception(f'Could not record FAILED status for sighting {sighting_id}')
        return False

    def _run(self) -> None:
        while True:
            item = self._queue.get()
            try:
                if item is _STOP:
                    return
                # enrich() handles its own errors; this guard keeps the thread alive regardless
                try:
                    self.worker.enrich(item)
                except Exception:
                    logger.exception(f'Enrichment worker crashed on sighting {item}')
                with self._lock:
                    self._completed += 1
            finally:
                self._queue.task_done()

    def wait_idle(self, timeout: Optional[float] = None) -> bool:
        """
        Block until every queued attempt has finished.

        Returns False if ``timeout`` elapsed first.
        """
        if timeout is None:
            self._queue.join()
            return True

        # Queue.join() has no timeout; poll the unfinished counter instead
        with self._queue.all_tasks_done:
            if self._queue.unfinished_tasks:
                self._queue.all_tasks_done.wait_for(lambda: not self._queue.unfinished_tasks, timeout)
            return not self._queue.unfinished_tasks

    def stop(self, drain: bool = True, timeout: float = 5.0) -> None:
        """Stop the worker threads, optionally finishing queued attempts first."""
        with self._lock:
            if not self._running:
                return
            self._running = False
            threads = list(self._threads)

        if not drain:
            dropped = 0
            while True:
                try:
                    self._queue.get_nowait()
                except queue.Empty:
                    break
                self._queue.task_done()
                dropped += 1
            if dropped:
                logger.warning(f'Dropped {dropped} queued enrichment attempts on shutdown')

        for _ in threads:
            self._queue.put(_STOP)
        for thread in threads:
            thread.join(timeout=timeout)

        logger.info('Enrichment dispatcher stopped')

    @property
    def running(self) -> bool:
        return self._running

    @property
    def stats(self) -> dict:
        """Get dispatcher statistics."""
        with self._lock:
            return {
                'running': self._running,
                'workers': self.num_workers,
                'queue_depth': self._queue.qsize(),
                'submitted': self._submitted,
                'completed': self._completed,
                'rejected': self._rejected,
            }
