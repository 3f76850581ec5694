import io

from conftest import FakeDetector, FakeEditor, FakeVerifier, mark, png_bytes
from rich.console import Console

from brand_scrub.cancellation import CancelToken
from brand_scrub.config import Config
from brand_scrub.errors import Cancelled, ServiceUnavailable
from brand_scrub.idempotency import MemoryIdempotencyStore
from brand_scrub.models import PipelineResult, PipelineStatus, Verification, WorkItem
from brand_scrub.orchestrator import Orchestrator
from brand_scrub.pipeline import BatchReport, BatchRunner


def quiet_console():
    return Console(file=io.StringIO(), width=120)


def items(*ids):
    return [WorkItem(image_id, png_bytes(64, 48)) for image_id in ids]


class ScriptedOrchestrator:
    """Stands in for Orchestrator; maps image id -> status or exception."""

    def __init__(self, outcomes, config=None):
        self.outcomes = outcomes
        self.config = config or Config(pacing_seconds=0.0)
        self.seen = []

    def run(self, item, cancel=None):
        self.seen.append(item.image_id)
        outcome = self.outcomes.get(item.image_id, PipelineStatus.CLEANED_BY_EDIT)
        if isinstance(outcome, BaseException):
            raise outcome
        error = "boom" if outcome == PipelineStatus.FAILED else None
        return PipelineResult(image_id=item.image_id, status=outcome, error=error)


class RecordingToken(CancelToken):
    def __init__(self):
        super().__init__()
        self.waits = []

    def wait(self, seconds):
        self.waits.append(seconds)
        return super().wait(0)


def runner(orchestrator, store, **kwargs):
    kwargs.setdefault("config", orchestrator.config)
    return BatchRunner(orchestrator, store, console=quiet_console(), **kwargs)


def test_batch_continues_after_a_failure():
    orchestrator = ScriptedOrchestrator(
        {"b": PipelineStatus.FAILED, "c": PipelineStatus.SKIPPED_CLEAN}
    )
    report = runner(orchestrator, MemoryIdempotencyStore()).run(items("a", "b", "c"))

    assert orchestrator.seen == ["a", "b", "c"]
    assert report.total == 3
    assert report.counts[PipelineStatus.CLEANED_BY_EDIT] == 1
    assert report.counts[PipelineStatus.FAILED] == 1
    assert report.counts[PipelineStatus.SKIPPED_CLEAN] == 1
    assert report.failures == [("b", "boom")]


def test_complete_images_are_marked_and_failures_released():
    store = MemoryIdempotencyStore()
    orchestrator = ScriptedOrchestrator({"b": PipelineStatus.FAILED})
    runner(orchestrator, store).run(items("a", "b"))

    assert store.is_complete("a")
    assert not store.is_complete("b")
    # failed image is claimable again
    assert store.claim("b")


def test_rerun_skips_completed_and_retries_failed():
    store = MemoryIdempotencyStore()
    first = ScriptedOrchestrator({"b": PipelineStatus.FAILED})
    runner(first, store).run(items("a", "b"))

    second = ScriptedOrchestrator({})
    report = runner(second, store).run(items("a", "b"))

    assert second.seen == ["b"]
    assert report.counts[PipelineStatus.SKIPPED_ALREADY_DONE] == 1
    assert report.counts[PipelineStatus.CLEANED_BY_EDIT] == 1


def test_real_orchestrator_resume_makes_no_port_calls(config, policy):
    store = MemoryIdempotencyStore()
    detector = FakeDetector([mark("Nike")])
    verifier = FakeVerifier(Verification(5.0))
    orchestrator = Orchestrator(
        detector, FakeEditor(), verifier, config=config, retry_policy=policy, store=store
    )
    runner(orchestrator, store).run(items("sku-1"))
    assert store.is_complete("sku-1")
    calls = len(detector.calls)

    report = runner(orchestrator, store).run(items("sku-1"))

    assert report.counts[PipelineStatus.SKIPPED_ALREADY_DONE] == 1
    assert len(detector.calls) == calls


def test_detection_outage_is_reported_and_left_resumable(config, policy):
    store = MemoryIdempotencyStore()
    orchestrator = Orchestrator(
        FakeDetector(ServiceUnavailable("down")),
        FakeEditor(),
        FakeVerifier(),
        config=config,
        retry_policy=policy,
        store=store,
    )
    report = runner(orchestrator, store).run(items("x"))

    assert report.counts[PipelineStatus.FAILED] == 1
    assert "Detection failed" in report.failures[0][1]
    assert not store.is_complete("x")


def test_cancel_before_start_processes_nothing():
    cancel = CancelToken()
    cancel.cancel()
    orchestrator = ScriptedOrchestrator({})
    report = runner(orchestrator, MemoryIdempotencyStore(), cancel=cancel).run(items("a", "b"))

    assert orchestrator.seen == []
    assert report.total == 0
    assert report.cancelled


def test_cancel_mid_image_releases_it_and_stops():
    store = MemoryIdempotencyStore()
    orchestrator = ScriptedOrchestrator({"b": Cancelled("stop")})
    report = runner(orchestrator, store).run(items("a", "b", "c"))

    assert orchestrator.seen == ["a", "b"]
    assert report.total == 1
    assert store.is_complete("a")
    assert store.claim("b")


def test_crashing_orchestrator_is_recorded_as_failed():
    store = MemoryIdempotencyStore()
    orchestrator = ScriptedOrchestrator({"a": RuntimeError("disk full")})
    report = runner(orchestrator, store).run(items("a", "b"))

    assert report.failures == [("a", "RuntimeError: disk full")]
    assert report.counts[PipelineStatus.CLEANED_BY_EDIT] == 1
    assert not store.is_complete("a")


def test_in_flight_claim_elsewhere_is_skipped():
    store = MemoryIdempotencyStore()
    store.claim("a")
    orchestrator = ScriptedOrchestrator({})
    report = runner(orchestrator, store).run(items("a"))

    assert orchestrator.seen == []
    assert report.counts[PipelineStatus.SKIPPED_ALREADY_DONE] == 1


def test_pacing_between_items_that_reached_the_services():
    store = MemoryIdempotencyStore(completed={"b"})
    cancel = RecordingToken()
    orchestrator = ScriptedOrchestrator({}, config=Config(pacing_seconds=2.0))
    runner(orchestrator, store, cancel=cancel).run(items("a", "b", "c"))

    # a -> pause -> b (skipped, no pause) -> c
    assert cancel.waits == [2.0]
    assert orchestrator.seen == ["a", "c"]


def test_parallel_workers_process_every_item_once():
    config = Config(pacing_seconds=0.0, workers=3)
    store = MemoryIdempotencyStore()
    orchestrator = ScriptedOrchestrator({"e": PipelineStatus.FAILED}, config=config)
    ids = ["a", "b", "c", "d", "e", "f"]
    report = runner(orchestrator, store).run(items(*ids))

    assert sorted(orchestrator.seen) == ids
    assert report.total == 6
    assert report.counts[PipelineStatus.FAILED] == 1
    assert all(store.is_complete(i) for i in ids if i != "e")


def test_on_result_callback_sees_every_result_and_errors_are_contained():
    seen = []

    def handler(result):
        seen.append(result.image_id)
        if result.image_id == "a":
            raise OSError("disk full")

    orchestrator = ScriptedOrchestrator({})
    report = runner(orchestrator, MemoryIdempotencyStore(), on_result=handler).run(items("a", "b"))

    assert seen == ["a", "b"]
    assert report.total == 2


def test_report_to_dict():
    report = BatchReport()
    report.record(PipelineResult(image_id="a", status=PipelineStatus.CLEANED_BY_EDIT))
    report.record(PipelineResult(image_id="b", status=PipelineStatus.FAILED, error="Detection failed"))

    data = report.to_dict()

    assert data["summary"]["total_processed"] == 2
    assert data["summary"]["cleaned_by_edit"] == 1
    assert data["summary"]["failed"] == 1
    assert data["summary"]["skipped_clean"] == 0
    assert data["failures"] == [{"image_id": "b", "error": "Detection failed"}]
    assert [r["image_id"] for r in data["results"]] == ["a", "b"]
