"""Deterministic masking of brand regions (blur or opaque fill).

This is the terminal fallback of the pipeline: it never touches the network
and always returns an image.
"""

import logging
from typing import Iterable

import cv2
import numpy as np

from .config import Config
from .geometry import merge_overlapping, regions_from, relevant_detections
from .models import Detection, Region, RemediationStyle

logger = logging.getLogger(__name__)


def remediate(
    image: np.ndarray,
    detections: Iterable[Detection],
    style: RemediationStyle,
    config: Config,
    extra_keywords: Iterable[str] = (),
) -> np.ndarray:
    """Obscure every brand-relevant detection in the image.

    Args:
        image: Input image as numpy array (RGB)
        detections: Detections in pixel space of ``image``
        style: Blur the region or replace it with an opaque fill
        config: Thresholds, padding and kernel size
        extra_keywords: Labels known to be brands for this image only

    Only detections whose label matches a keyword, or whose confidence is
    above ``relevance_confidence``, are masked. The orchestrator widens the
    keyword list with the brands it targeted and the verifier's residual
    labels, so a mark it tried to edit away is masked even below the bar.

    Returns:
        A new image with regions masked, or the input unchanged when no
        region survives filtering
    """
    regions = remediation_regions(image, detections, config, extra_keywords)
    if not regions:
        return image

    result = image.copy()
    for region in regions:
        x1, y1, x2, y2 = region.bounding_box
        patch = result[y1:y2, x1:x2]
        if style == RemediationStyle.SOLID_FILL:
            result[y1:y2, x1:x2] = _fill_colour(patch)
        else:
            result[y1:y2, x1:x2] = cv2.GaussianBlur(
                patch,
                (config.blur_kernel, config.blur_kernel),
                0,
            )

    logger.info("Masked %d region(s) with %s", len(regions), style.value)
    return result


def remediation_regions(
    image: np.ndarray,
    detections: Iterable[Detection],
    config: Config,
    extra_keywords: Iterable[str] = (),
) -> list[Region]:
    """Regions that remediation would mask, after relevance filtering."""
    keywords = list(config.brand_keywords) + [k.lower() for k in extra_keywords if k]
    relevant = relevant_detections(detections, keywords, config.relevance_confidence)

    height, width = image.shape[:2]
    regions = regions_from(
        relevant,
        padding_px=config.region_padding_px,
        min_size_px=config.min_region_px,
        image_bounds=(width, height),
    )
    return merge_overlapping(regions, config.merge_iou_threshold)


def _fill_colour(patch: np.ndarray) -> np.ndarray:
    """Median colour of the patch border, so the fill matches the material."""
    border = np.concatenate(
        [patch[0, :], patch[-1, :], patch[:, 0], patch[:, -1]],
        axis=0,
    )
    return np.median(border, axis=0).astype(patch.dtype)
