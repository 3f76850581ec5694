from __future__ import annotations

from abc import ABC, abstractmethod
from typing import AbstractSet

import numpy as np

from .models import Detection, Intensity, Verification


class Detector(ABC):
    """
    Finds logos and text in an image.

    IMPORTANT:
    - Returning an empty list means "nothing found" and is not an error.
    - Transport failures raise ServiceUnavailable; unparseable payloads raise
      MalformedResponse. Adapters never retry on their own.
    """

    name: str = "detector"

    @abstractmethod
    def detect(self, image: np.ndarray) -> list[Detection]:
        raise NotImplementedError


class Editor(ABC):
    """
    Applies a natural-language removal instruction to an image.

    The instruction is opaque here; poll-based providers must still present
    a single blocking call.
    """

    name: str = "editor"

    @abstractmethod
    def edit(
        self,
        image: np.ndarray,
        instruction: str,
        intensity: Intensity,
        pass_number: int,
    ) -> np.ndarray:
        raise NotImplementedError


class Verifier(ABC):
    """Scores residual brand risk (0-100) on an edited image."""

    name: str = "verifier"

    @abstractmethod
    def verify(self, image: np.ndarray, expected_labels: AbstractSet[str]) -> Verification:
        raise NotImplementedError
