"""Verification built on top of any Detector."""

from __future__ import annotations

from typing import AbstractSet

import numpy as np

from ..config import Config
from ..geometry import relevant_detections
from ..models import DetectionKind, Verification
from ..ports import Detector, Verifier

MARK_POINTS = 40
MARK_CAP = 60
TEXT_POINTS = 20
TEXT_CAP = 40


class DetectionVerifier(Verifier):
    """Scores residual risk by re-running detection on the edited image.

    Each relevant mark adds 40 points (capped at 60), each relevant text 20
    (capped at 40). Expected labels count as brand keywords, so a brand seen
    before editing is always reported if it is still there.
    """

    name = "detection"

    def __init__(self, detector: Detector, config: Config | None = None):
        self.detector = detector
        self.config = config or Config()

    def verify(self, image: np.ndarray, expected_labels: AbstractSet[str]) -> Verification:
        detections = self.detector.detect(image)
        keywords = list(self.config.brand_keywords) + [label.lower() for label in expected_labels]
        relevant = [
            d for d in relevant_detections(detections, keywords, self.config.relevance_confidence)
            if d.confidence >= self.config.detection_min_confidence
        ]

        marks = sum(1 for d in relevant if d.kind == DetectionKind.MARK)
        texts = len(relevant) - marks
        risk = min(min(marks * MARK_POINTS, MARK_CAP) + min(texts * TEXT_POINTS, TEXT_CAP), 100)
        return Verification(
            risk_score=float(risk),
            residual_labels=frozenset(d.label for d in relevant),
        )
