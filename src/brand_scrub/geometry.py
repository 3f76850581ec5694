"""Region geometry: turn raw detections into clipped, padded pixel boxes.

Everything here is pure. The same functions feed the remediation engine
(mask placement) and the strategy selector (relevance filtering).
"""

from __future__ import annotations

import math
from dataclasses import replace
from typing import Iterable, Sequence

from .models import Box, Detection, Point, Region

MIN_SUBSTRING_LEN = 3


def bounding_box(polygon: Sequence[Point]) -> tuple[float, float, float, float] | None:
    """Tight (x_min, y_min, x_max, y_max) around a polygon, or None if empty."""
    if not polygon:
        return None
    xs = [p[0] for p in polygon]
    ys = [p[1] for p in polygon]
    return min(xs), min(ys), max(xs), max(ys)


def denormalize_polygon(points: Iterable[Point], width: int, height: int) -> tuple[Point, ...]:
    """Convert 0-1 normalized coordinates to pixel space."""
    return tuple((float(x) * width, float(y) * height) for x, y in points)


def scale_detections(
    detections: Iterable[Detection],
    from_size: tuple[int, int],
    to_size: tuple[int, int],
) -> list[Detection]:
    """Map detections from one image size (width, height) to another."""
    sx = to_size[0] / from_size[0]
    sy = to_size[1] / from_size[1]
    return [
        replace(d, polygon=tuple((x * sx, y * sy) for x, y in d.polygon))
        for d in detections
    ]


def regions_from(
    detections: Iterable[Detection],
    padding_px: int,
    min_size_px: int,
    image_bounds: tuple[int, int],
) -> list[Region]:
    """Derive one clipped region per detection.

    Args:
        detections: Detections in pixel space
        padding_px: Pixels added on every side before clipping
        min_size_px: Regions narrower or shorter than this are dropped
        image_bounds: (width, height) of the image

    Returns:
        Regions in detection order. Degenerate boxes are silently dropped.
    """
    width, height = image_bounds
    regions = []
    for detection in detections:
        box = bounding_box(detection.polygon)
        if box is None:
            continue

        x_min = max(0, math.floor(box[0]) - padding_px)
        y_min = max(0, math.floor(box[1]) - padding_px)
        x_max = min(width, math.ceil(box[2]) + padding_px)
        y_max = min(height, math.ceil(box[3]) + padding_px)

        if x_max - x_min < min_size_px or y_max - y_min < min_size_px:
            continue

        regions.append(Region(bounding_box=(x_min, y_min, x_max, y_max), source_detection=detection))
    return regions


def matches_keyword(label: str, keywords: Iterable[str]) -> bool:
    """Case-insensitive keyword match on a detection label.

    Keywords match as substrings so run-together labels ("NIKEAIR",
    "Jordan23") still count. Labels or keywords shorter than three
    characters must match the whole label exactly.
    """
    text = label.strip().lower()
    if not text:
        return False
    for keyword in keywords:
        keyword = keyword.strip().lower()
        if not keyword:
            continue
        if len(text) < MIN_SUBSTRING_LEN or len(keyword) < MIN_SUBSTRING_LEN:
            if text == keyword:
                return True
        elif keyword in text:
            return True
    return False


def is_brand_relevant(detection: Detection, keywords: Iterable[str], confidence_bar: float) -> bool:
    """A detection is relevant if its label names a known brand or its
    confidence is above the bar."""
    if detection.confidence > confidence_bar:
        return True
    return matches_keyword(detection.label, keywords)


def relevant_detections(
    detections: Iterable[Detection],
    keywords: Iterable[str],
    confidence_bar: float,
) -> list[Detection]:
    keywords = list(keywords)
    return [d for d in detections if is_brand_relevant(d, keywords, confidence_bar)]


def iou(a: Box, b: Box) -> float:
    x1 = max(a[0], b[0])
    y1 = max(a[1], b[1])
    x2 = min(a[2], b[2])
    y2 = min(a[3], b[3])
    inter = max(0, x2 - x1) * max(0, y2 - y1)
    area_a = (a[2] - a[0]) * (a[3] - a[1])
    area_b = (b[2] - b[0]) * (b[3] - b[1])
    union = area_a + area_b - inter
    if union <= 0:
        return 0.0
    return inter / union


def merge_overlapping(regions: Sequence[Region], iou_threshold: float = 0.3) -> list[Region]:
    """Union boxes that overlap by more than iou_threshold.

    The merged region keeps the source detection of the first box in the group.
    """
    if len(regions) <= 1:
        return list(regions)

    merged = []
    used = set()
    for i, region in enumerate(regions):
        if i in used:
            continue
        box = region.bounding_box
        for j in range(i + 1, len(regions)):
            if j in used:
                continue
            other = regions[j].bounding_box
            if iou(box, other) > iou_threshold:
                box = (
                    min(box[0], other[0]),
                    min(box[1], other[1]),
                    max(box[2], other[2]),
                    max(box[3], other[3]),
                )
                used.add(j)
        used.add(i)
        merged.append(Region(bounding_box=box, source_detection=region.source_detection))
    return merged
