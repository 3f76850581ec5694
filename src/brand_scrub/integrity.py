"""Structural integrity check for generative edits.

An edit that removes a logo changes a small part of the photo. An edit that
repaints the product, drops the box or hallucinates a new scene changes most
of it. Both images are compared as small greyscale thumbnails.
"""

from dataclasses import dataclass

import cv2
import numpy as np

from .config import Config


@dataclass(frozen=True)
class StructuralCheck:
    is_valid: bool
    mean_diff: float
    changed_fraction: float
    reason: str | None = None


def _thumbnail(image: np.ndarray, size: tuple[int, int]) -> np.ndarray:
    gray = cv2.cvtColor(image, cv2.COLOR_RGB2GRAY)
    if gray.shape[1] == size[0] and gray.shape[0] == size[1]:
        return gray
    return cv2.resize(gray, size, interpolation=cv2.INTER_AREA)


def _compare_size(image: np.ndarray, max_dimension: int) -> tuple[int, int]:
    """(width, height) fitting inside max_dimension, never enlarged."""
    h, w = image.shape[:2]
    scale = min(1.0, max_dimension / max(h, w))
    return max(1, round(w * scale)), max(1, round(h * scale))


def check_structure(original: np.ndarray, edited: np.ndarray, config: Config) -> StructuralCheck:
    """Compare an edit against the original image.

    The edited image is resampled to the original's thumbnail size, so edits
    returned at a different resolution are still comparable.

    Returns:
        StructuralCheck; invalid when the mean greyscale difference reaches
        ``structural_max_mean_diff`` or the share of pixels changed by more
        than ``structural_pixel_delta`` reaches ``structural_max_changed_fraction``
    """
    size = _compare_size(original, config.structural_compare_size)
    before = _thumbnail(original, size).astype(np.int16)
    after = _thumbnail(edited, size).astype(np.int16)

    diff = np.abs(before - after)
    mean_diff = float(diff.mean())
    changed_fraction = float((diff > config.structural_pixel_delta).mean())

    reason = None
    if mean_diff >= config.structural_max_mean_diff:
        reason = f"mean difference {mean_diff:.1f} >= {config.structural_max_mean_diff:g}"
    elif changed_fraction >= config.structural_max_changed_fraction:
        reason = (
            f"{changed_fraction:.0%} of pixels changed "
            f"(limit {config.structural_max_changed_fraction:.0%})"
        )
    return StructuralCheck(
        is_valid=reason is None,
        mean_diff=mean_diff,
        changed_fraction=changed_fraction,
        reason=reason,
    )
