"""Per-image state machine: detect, decide, edit in passes, verify, remediate.

Generative editing is best effort; remediation is the backstop. Every image
ends in exactly one terminal status:

    Start -> Detecting -> Clean                           (skipped_clean)
                       -> Editing(i) -> Verifying(i) -> Clean (cleaned_by_edit)
                                                     -> Editing(i + 1)
                                                     -> Remediating
                          Editing(i) failed or rejected -> Remediating
    Remediating                                      -> Done (cleaned_by_remediation)

Detection or verification failures end the run as ``failed``.
"""

from __future__ import annotations

import logging
import time

import numpy as np

from .cancellation import CancelToken
from .config import Config
from .errors import Cancelled, PortError
from .idempotency import IdempotencyStore
from .imaging import decode_image
from .integrity import check_structure
from .models import (
    Detection,
    PassResult,
    PipelineResult,
    PipelineStatus,
    RemediationStyle,
    Strategy,
    WorkItem,
)
from .ports import Detector, Editor, Verifier
from .geometry import scale_detections
from .remediation import remediate
from .retry import RetryPolicy
from .strategy import brand_names, build_instruction, choose_strategy, classify, removal_targets

logger = logging.getLogger(__name__)


class Orchestrator:
    """Drives one image through the brand-removal pipeline."""

    def __init__(
        self,
        detector: Detector,
        editor: Editor,
        verifier: Verifier,
        config: Config | None = None,
        retry_policy: RetryPolicy | None = None,
        store: IdempotencyStore | None = None,
        style: RemediationStyle | None = None,
    ):
        self.detector = detector
        self.editor = editor
        self.verifier = verifier
        self.config = config or Config()
        self.retry_policy = retry_policy or RetryPolicy.from_config(self.config)
        self.store = store
        self.style = style or self.config.remediation_style

    def run(self, item: WorkItem, cancel: CancelToken | None = None) -> PipelineResult:
        """Process one work item. Only ``Cancelled`` escapes this method."""
        run = _Run(self, item, cancel)
        try:
            return run.execute()
        except Cancelled:
            raise
        except Exception as e:
            logger.exception("Unexpected error processing %s", item.image_id)
            return run.finish(PipelineStatus.FAILED, error=f"{type(e).__name__}: {e}")


class _Run:
    """Mutable state of a single pipeline invocation."""

    def __init__(self, owner: Orchestrator, item: WorkItem, cancel: CancelToken | None):
        self.owner = owner
        self.config = owner.config
        self.policy = owner.retry_policy
        self.item = item
        self.cancel = cancel
        self.started = time.perf_counter()
        self.passes: list[PassResult] = []
        self.strategy: Strategy | None = None
        self.edit_error: str | None = None

    @property
    def image_id(self) -> str:
        return self.item.image_id

    def finish(
        self,
        status: PipelineStatus,
        final_image: np.ndarray | None = None,
        error: str | None = None,
    ) -> PipelineResult:
        logger.info("%s -> %s", self.image_id, status.value)
        return PipelineResult(
            image_id=self.image_id,
            status=status,
            passes=tuple(self.passes),
            final_image=final_image,
            error=error,
            strategy=self.strategy,
            edit_error=self.edit_error,
            elapsed_seconds=time.perf_counter() - self.started,
        )

    def execute(self) -> PipelineResult:
        store = self.owner.store
        if store is not None and store.is_complete(self.image_id):
            return self.finish(PipelineStatus.SKIPPED_ALREADY_DONE)

        try:
            image = decode_image(self.item.image_bytes)
        except PortError as e:
            return self.finish(PipelineStatus.FAILED, error=str(e))

        # Detecting
        try:
            detections = self._detect(image)
        except PortError as e:
            return self.finish(PipelineStatus.FAILED, error=f"Detection failed: {e}")

        targets = removal_targets(detections, self.config)
        if not targets:
            return self.finish(PipelineStatus.SKIPPED_CLEAN, final_image=image)

        categories = classify(detections, self.config)
        self.strategy = choose_strategy(categories, self.config)
        brands = brand_names(targets)
        expected = frozenset(brands)
        logger.info(
            "%s: %d target(s) %s, categories=%s, strategy=%s/%d",
            self.image_id,
            len(targets),
            brands,
            sorted(c.value for c in categories),
            self.strategy.intensity.value,
            self.strategy.max_passes,
        )

        current = image
        risk = max(t.confidence for t in targets)
        residual: frozenset[str] = frozenset()
        edited = False

        for pass_number in range(1, self.strategy.max_passes + 1):
            if self.cancel is not None:
                self.cancel.raise_if_cancelled()

            # Editing(i)
            instruction = build_instruction(brands, categories, self.strategy.intensity, pass_number)
            try:
                output = self.policy.call(
                    self.owner.editor.edit,
                    current,
                    instruction,
                    self.strategy.intensity,
                    pass_number,
                    description=f"edit pass {pass_number} of {self.image_id}",
                )
            except PortError as e:
                self.edit_error = f"Edit pass {pass_number} failed: {e}"
                logger.warning("%s: %s; falling back to remediation", self.image_id, self.edit_error)
                break

            if self.config.structural_check:
                structure = check_structure(image, output, self.config)
                if not structure.is_valid:
                    # The edit changed the product itself; remediate the last accepted image.
                    self.edit_error = f"Edit pass {pass_number} rejected: {structure.reason}"
                    logger.warning("%s: %s; falling back to remediation", self.image_id, self.edit_error)
                    break

            # Verifying(i)
            try:
                verification = self.policy.call(
                    self.owner.verifier.verify,
                    output,
                    expected,
                    description=f"verify pass {pass_number} of {self.image_id}",
                )
            except PortError as e:
                return self.finish(PipelineStatus.FAILED, error=f"Verification failed: {e}")

            self.passes.append(
                PassResult(
                    pass_number=pass_number,
                    risk_before=risk,
                    risk_after=verification.risk_score,
                    residual_labels=verification.residual_labels,
                )
            )
            current = output
            edited = True
            risk = verification.risk_score
            residual = verification.residual_labels

            if risk < self.config.clean_threshold and not residual:
                return self.finish(PipelineStatus.CLEANED_BY_EDIT, final_image=current)

            logger.info(
                "%s: pass %d residual risk %.0f, labels=%s",
                self.image_id, pass_number, risk, sorted(residual),
            )

        # Remediating
        final = self._remediate(current, image, detections, edited, set(brands) | set(residual))
        return self.finish(PipelineStatus.CLEANED_BY_REMEDIATION, final_image=final)

    def _detect(self, image: np.ndarray) -> list[Detection]:
        return self.policy.call(
            self.owner.detector.detect,
            image,
            description=f"detect {self.image_id}",
        )

    def _remediate(
        self,
        image: np.ndarray,
        original: np.ndarray,
        pre_edit: list[Detection],
        edited: bool,
        keywords: set[str],
    ) -> np.ndarray:
        detections = pre_edit
        if edited:
            # Edits can move or reshape marks; locate them again on the current image.
            try:
                return remediate(
                    image, self._detect(image), self.owner.style, self.config, extra_keywords=keywords
                )
            except PortError as e:
                logger.warning(
                    "%s: re-detection before remediation failed (%s); using pre-edit detections",
                    self.image_id, e,
                )

        if image.shape[:2] != original.shape[:2]:
            # Editors may answer at another resolution.
            oh, ow = original.shape[:2]
            h, w = image.shape[:2]
            detections = scale_detections(pre_edit, (ow, oh), (w, h))
        return remediate(image, detections, self.owner.style, self.config, extra_keywords=keywords)
