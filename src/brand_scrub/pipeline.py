"""Batch orchestration over a queue of work items."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from typing import Callable, Iterable

from rich.console import Console
from rich.progress import Progress, SpinnerColumn, TextColumn

from .cancellation import CancelToken
from .config import Config
from .errors import Cancelled
from .idempotency import IdempotencyStore
from .models import PipelineResult, PipelineStatus, WorkItem
from .orchestrator import Orchestrator

logger = logging.getLogger(__name__)

STATUS_STYLES = {
    PipelineStatus.SKIPPED_ALREADY_DONE: "dim",
    PipelineStatus.SKIPPED_CLEAN: "green",
    PipelineStatus.CLEANED_BY_EDIT: "green",
    PipelineStatus.CLEANED_BY_REMEDIATION: "yellow",
    PipelineStatus.FAILED: "red",
}


@dataclass
class BatchReport:
    """Aggregate outcome of one batch run."""

    counts: dict[PipelineStatus, int] = field(
        default_factory=lambda: {status: 0 for status in PipelineStatus}
    )
    failures: list[tuple[str, str]] = field(default_factory=list)
    results: list[dict] = field(default_factory=list)
    elapsed_seconds: float = 0.0
    cancelled: bool = False

    @property
    def total(self) -> int:
        return sum(self.counts.values())

    def record(self, result: PipelineResult) -> None:
        self.counts[result.status] += 1
        if result.status == PipelineStatus.FAILED:
            self.failures.append((result.image_id, result.error or "unknown error"))
        self.results.append(result.summary())

    def to_dict(self) -> dict:
        return {
            "summary": {
                "total_processed": self.total,
                **{status.value: count for status, count in self.counts.items()},
                "elapsed_seconds": round(self.elapsed_seconds, 3),
                "cancelled": self.cancelled,
            },
            "failures": [{"image_id": i, "error": e} for i, e in self.failures],
            "results": self.results,
        }


class BatchRunner:
    """Runs the orchestrator over a work queue.

    One image is processed through all of its passes before the next starts
    unless ``workers`` > 1, in which case the store's atomic claim keeps any
    image id from running twice at once. A failing image never stops the batch.
    """

    def __init__(
        self,
        orchestrator: Orchestrator,
        store: IdempotencyStore,
        config: Config | None = None,
        cancel: CancelToken | None = None,
        console: Console | None = None,
        on_result: Callable[[PipelineResult], None] | None = None,
    ):
        self.orchestrator = orchestrator
        self.store = store
        self.config = config or orchestrator.config
        self.cancel = cancel or CancelToken()
        self.console = console or Console()
        self.on_result = on_result
        self._lock = threading.Lock()

    def run(self, items: Iterable[WorkItem]) -> BatchReport:
        report = BatchReport()
        started = time.perf_counter()

        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task("Starting batch...", total=None)
            if self.config.workers > 1:
                self._run_parallel(items, report, progress, task)
            else:
                self._run_sequential(items, report, progress, task)

        report.elapsed_seconds = time.perf_counter() - started
        if self.cancel.cancelled:
            report.cancelled = True

        self.console.print(
            f"\n[bold green]Complete![/bold green] {report.total} images in "
            f"{report.elapsed_seconds:.1f}s"
            + (" [yellow](cancelled)[/yellow]" if report.cancelled else "")
        )
        for status, count in report.counts.items():
            if count:
                self.console.print(f"  [{STATUS_STYLES[status]}]{status.value}[/]: {count}")
        for image_id, error in report.failures:
            self.console.print(f"  [red]✗ {image_id}[/red]: {error}")
        return report

    def _run_sequential(self, items, report, progress, task) -> None:
        pause = False
        for item in items:
            if pause and self.cancel.wait(self.config.pacing_seconds):
                break
            if self.cancel.cancelled:
                break

            progress.update(task, description=f"Processing {item.image_id}...")
            result = self._process(item)
            if result is None:
                break
            self._record(report, result)
            # Pace only after items that reached the external services.
            pause = result.status != PipelineStatus.SKIPPED_ALREADY_DONE

    def _run_parallel(self, items, report, progress, task) -> None:
        slots = threading.BoundedSemaphore(self.config.workers)

        def worker(item: WorkItem) -> None:
            try:
                progress.update(task, description=f"Processing {item.image_id}...")
                result = self._process(item)
                if result is None:
                    return
                self._record(report, result)
                if result.status != PipelineStatus.SKIPPED_ALREADY_DONE:
                    self.cancel.wait(self.config.pacing_seconds)
            finally:
                slots.release()

        with ThreadPoolExecutor(max_workers=self.config.workers) as pool:
            futures = []
            for item in items:
                slots.acquire()
                if self.cancel.cancelled:
                    slots.release()
                    break
                futures.append(pool.submit(worker, item))
            wait(futures)

    def _process(self, item: WorkItem) -> PipelineResult | None:
        """Run one item end to end. Returns None if cancelled mid-run."""
        if not self.store.claim(item.image_id):
            logger.info("%s already complete or in flight; skipping", item.image_id)
            return PipelineResult(image_id=item.image_id, status=PipelineStatus.SKIPPED_ALREADY_DONE)

        try:
            result = self.orchestrator.run(item, cancel=self.cancel)
        except Cancelled:
            # Not marked complete: the next run picks the image up again.
            self.store.release(item.image_id)
            logger.info("%s cancelled; left resumable", item.image_id)
            return None
        except Exception as e:
            logger.exception("Orchestrator crashed on %s", item.image_id)
            result = PipelineResult(
                image_id=item.image_id,
                status=PipelineStatus.FAILED,
                error=f"{type(e).__name__}: {e}",
            )

        if result.status.is_complete:
            self.store.mark_complete(item.image_id, result.status.value)
        else:
            self.store.release(item.image_id)
        return result

    def _record(self, report: BatchReport, result: PipelineResult) -> None:
        with self._lock:
            report.record(result)
            style = STATUS_STYLES[result.status]
            risk = "" if result.residual_risk is None else f" (risk {result.residual_risk:.0f})"
            self.console.print(f"[{style}]{result.status.value}[/] {result.image_id}{risk}")

        if self.on_result is not None:
            try:
                self.on_result(result)
            except Exception:
                logger.exception("Result handler failed for %s", result.image_id)
