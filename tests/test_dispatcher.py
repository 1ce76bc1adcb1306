"""Tests for the background enrichment dispatcher."""

import threading

import pytest

from spotterlog.enrichment import EnrichmentDispatcher
from spotterlog.models import EnrichmentStatus


class BlockingWorker:
    """Stands in for EnrichmentWorker; holds each attempt until released."""

    def __init__(self, sightings):
        self.sightings = sightings
        self.started = threading.Event()
        self.release = threading.Event()
        self.seen = []

    def enrich(self, sighting_id):
        self.seen.append(sighting_id)
        self.started.set()
        self.release.wait(5)
        return EnrichmentStatus.ENRICHED


@pytest.fixture()
def running_dispatcher(worker):
    dispatcher = EnrichmentDispatcher(worker, workers=2, queue_size=10)
    dispatcher.start()
    yield dispatcher
    dispatcher.stop()


class TestEnrichmentDispatcher:
    def test_submitted_sightings_are_enriched(self, running_dispatcher, make_sighting, sighting_repo) -> None:
        ids = [make_sighting(callsign=f'BAW{i}', icao24=None).id for i in range(3)]

        for sighting_id in ids:
            assert running_dispatcher.submit(sighting_id) is True
        assert running_dispatcher.wait_idle(timeout=5)

        for sighting_id in ids:
            assert sighting_repo.get(sighting_id).enrichment_status is EnrichmentStatus.ENRICHED
        stats = running_dispatcher.stats
        assert stats['submitted'] == 3
        assert stats['completed'] == 3
        assert stats['rejected'] == 0

    def test_submit_before_start_marks_failed(self, worker, make_sighting, sighting_repo) -> None:
        dispatcher = EnrichmentDispatcher(worker, workers=1, queue_size=10)
        sighting = make_sighting()

        assert dispatcher.submit(sighting.id) is False
        assert sighting_repo.get(sighting.id).enrichment_status is EnrichmentStatus.FAILED
        assert dispatcher.stats['rejected'] == 1

    def test_full_queue_rejects_and_marks_failed(self, sighting_repo, make_sighting) -> None:
        blocking = BlockingWorker(sighting_repo)
        dispatcher = EnrichmentDispatcher(blocking, workers=1, queue_size=1)
        dispatcher.start()
        try:
            first, second, third = (make_sighting() for _ in range(3))

            assert dispatcher.submit(first.id)
            assert blocking.started.wait(5)
            # The only worker is busy, so this one fills the queue
            assert dispatcher.submit(second.id)
            assert dispatcher.submit(third.id) is False

            assert sighting_repo.get(third.id).enrichment_status is EnrichmentStatus.FAILED
            assert sighting_repo.get(second.id).enrichment_status is EnrichmentStatus.ENRICHING

            blocking.release.set()
            assert dispatcher.wait_idle(timeout=5)
            assert blocking.seen == [first.id, second.id]
        finally:
            blocking.release.set()
            dispatcher.stop()

    def test_wait_idle_times_out_while_busy(self, sighting_repo, make_sighting) -> None:
        blocking = BlockingWorker(sighting_repo)
        dispatcher = EnrichmentDispatcher(blocking, workers=1, queue_size=5)
        dispatcher.start()
        try:
            dispatcher.submit(make_sighting().id)
            assert blocking.started.wait(5)

            assert dispatcher.wait_idle(timeout=0.05) is False
        finally:
            blocking.release.set()
            dispatcher.stop()

    def test_stop_drains_queue(self, sighting_repo, make_sighting) -> None:
        blocking = BlockingWorker(sighting_repo)
        blocking.release.set()
        dispatcher = EnrichmentDispatcher(blocking, workers=1, queue_size=10)
        dispatcher.start()

        ids = [make_sighting().id for _ in range(4)]
        for sighting_id in ids:
            dispatcher.submit(sighting_id)
        dispatcher.stop(drain=True)

        assert sorted(blocking.seen) == sorted(ids)
        assert dispatcher.running is False
        assert dispatcher.stats['completed'] == 4

    def test_submit_after_stop_is_rejected(self, running_dispatcher, make_sighting) -> None:
        running_dispatcher.stop()

        assert running_dispatcher.submit(make_sighting().id) is False

    def test_crashing_worker_does_not_kill_thread(self, sighting_repo, make_sighting) -> None:
        class CrashingWorker(BlockingWorker):
            def enrich(self, sighting_id):
                self.seen.append(sighting_id)
                raise RuntimeError('boom')

        crashing = CrashingWorker(sighting_repo)
        dispatcher = EnrichmentDispatcher(crashing, workers=1, queue_size=10)
        dispatcher.start()
        try:
            dispatcher.submit(make_sighting().id)
            dispatcher.submit(make_sighting().id)
            assert dispatcher.wait_idle(timeout=5)

            assert len(crashing.seen) == 2
            assert dispatcher.stats['completed'] == 2
        finally:
            dispatcher.stop()

    def test_submits_racing_stop_are_run_or_failed(self, sighting_repo, make_sighting) -> None:
        blocking = BlockingWorker(sighting_repo)
        blocking.release.set()
        dispatcher = EnrichmentDispatcher(blocking, workers=2, queue_size=100)
        dispatcher.start()

        ids = [make_sighting().id for _ in range(40)]
        accepted = {}
        start = threading.Barrier(5)

        def submit_batch(batch):
            start.wait()
            for sighting_id in batch:
                accepted[sighting_id] = dispatcher.submit(sighting_id)

        threads = [threading.Thread(target=submit_batch, args=(ids[i::4],)) for i in range(4)]
        for t in threads:
            t.start()
        start.wait()
        dispatcher.stop(drain=True)
        for t in threads:
            t.join()

        # Accepted attempts ran before the workers exited; the rest were failed
        ran = set(blocking.seen)
        for sighting_id, ok in accepted.items():
            if ok:
                assert sighting_id in ran
            else:
                assert sighting_repo.get(sighting_id).enrichment_status is EnrichmentStatus.FAILED
        assert dispatcher.stats['queue_depth'] == 0
