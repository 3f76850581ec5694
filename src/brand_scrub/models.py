"""Core data types passed between pipeline stages."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum

import numpy as np


class DetectionKind(str, Enum):
    MARK = "mark"
    TEXT = "text"


class ElementCategory(str, Enum):
    MARK = "mark"
    WORDMARK = "wordmark"
    PATTERN = "pattern"
    SILHOUETTE = "silhouette"


class Intensity(str, Enum):
    MODERATE = "moderate"
    AGGRESSIVE = "aggressive"


class RemediationStyle(str, Enum):
    BLUR = "blur"
    SOLID_FILL = "solid_fill"


class PipelineStatus(str, Enum):
    SKIPPED_ALREADY_DONE = "skipped_already_done"
    SKIPPED_CLEAN = "skipped_clean"
    CLEANED_BY_EDIT = "cleaned_by_edit"
    CLEANED_BY_REMEDIATION = "cleaned_by_remediation"
    FAILED = "failed"

    @property
    def is_complete(self) -> bool:
        """Whether the image can be marked done in the idempotency index."""
        return self in (
            PipelineStatus.SKIPPED_CLEAN,
            PipelineStatus.CLEANED_BY_EDIT,
            PipelineStatus.CLEANED_BY_REMEDIATION,
        )


Point = tuple[float, float]
Box = tuple[int, int, int, int]


@dataclass(frozen=True)
class Detection:
    """A labeled visual element found by an analysis service.

    Polygon vertices are in pixel space of the analysed image.
    """

    label: str
    kind: DetectionKind
    confidence: float
    polygon: tuple[Point, ...]


@dataclass(frozen=True)
class Region:
    """Clipped, padded, axis-aligned box derived from a detection."""

    bounding_box: Box
    source_detection: Detection

    @property
    def width(self) -> int:
        return self.bounding_box[2] - self.bounding_box[0]

    @property
    def height(self) -> int:
        return self.bounding_box[3] - self.bounding_box[1]


@dataclass(frozen=True)
class Verification:
    risk_score: float
    residual_labels: frozenset[str] = frozenset()


@dataclass(frozen=True)
class Strategy:
    intensity: Intensity
    max_passes: int


@dataclass(frozen=True)
class PassResult:
    pass_number: int
    risk_before: float
    risk_after: float
    residual_labels: frozenset[str] = frozenset()


@dataclass(frozen=True)
class WorkItem:
    """One unit of work supplied by the catalog system."""

    image_id: str
    image_bytes: bytes = field(repr=False)


@dataclass(frozen=True)
class PipelineResult:
    image_id: str
    status: PipelineStatus
    passes: tuple[PassResult, ...] = ()
    final_image: np.ndarray | None = field(default=None, repr=False, compare=False)
    error: str | None = None
    strategy: Strategy | None = None
    edit_error: str | None = None
    elapsed_seconds: float = 0.0

    @property
    def residual_risk(self) -> float | None:
        """Risk reported by the last verification pass, if any ran."""
        if not self.passes:
            return None
        return self.passes[-1].risk_after

    def summary(self) -> dict:
        """JSON-friendly view without the pixel data."""
        return {
            "image_id": self.image_id,
            "status": self.status.value,
            "passes": [
                {
                    "pass_number": p.pass_number,
                    "risk_before": p.risk_before,
                    "risk_after": p.risk_after,
                    "residual_labels": sorted(p.residual_labels),
                }
                for p in self.passes
            ],
            "residual_risk": self.residual_risk,
            "strategy": (
                {
                    "intensity": self.strategy.intensity.value,
                    "max_passes": self.strategy.max_passes,
                }
                if self.strategy
                else None
            ),
            "error": self.error,
            "edit_error": self.edit_error,
            "elapsed_seconds": round(self.elapsed_seconds, 3),
        }
