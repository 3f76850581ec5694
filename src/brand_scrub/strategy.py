"""Element classification, strategy choice and edit instruction templates."""

from __future__ import annotations

from typing import AbstractSet, Iterable, Sequence

from .config import Config
from .geometry import matches_keyword
from .models import Detection, DetectionKind, ElementCategory, Intensity, Strategy

# Checked in order; the first table that matches decides the category.
CATEGORY_KEYWORDS: tuple[tuple[ElementCategory, tuple[str, ...]], ...] = (
    (ElementCategory.MARK, ("logo", "swoosh", "jumpman", "wings", "emblem", "symbol", "trefoil")),
    (ElementCategory.WORDMARK, ("text", "wordmark", "lettering")),
    (ElementCategory.PATTERN, ("monogram", "pattern", "stripes", "print", "checkerboard", "damier")),
    (ElementCategory.SILHOUETTE, ("silhouette", "shape", "design", "contour", "outline")),
)

PRIORITY = (ElementCategory.MARK, ElementCategory.WORDMARK, ElementCategory.PATTERN)

DIRECTIVES = {
    ElementCategory.MARK: (
        "COMPLETELY REMOVE every logo symbol and emblem. Fill the area with the "
        "matching material texture and colour. Ensure NO traces of the mark remain."
    ),
    ElementCategory.WORDMARK: (
        "COMPLETELY REMOVE all visible brand text and wordmarks. Replace with "
        "matching material texture. NO lettering should remain visible."
    ),
    ElementCategory.PATTERN: (
        "REMOVE the repeating brand monogram pattern. Replace it with the plain "
        "base colour of the material while keeping the material texture."
    ),
}

SILHOUETTE_DIRECTIVE = (
    "DO NOT alter the product silhouette or overall design. "
    "This is product design, not branding."
)

ESCALATION_LADDER = (
    "Apply careful brand removal with subtle, texture-preserving inpainting.",
    "Use stronger brand elimination with enhanced texture matching.",
    "Execute aggressive brand removal ensuring complete elimination.",
    "Execute maximum-force brand removal; nothing from the list above may survive.",
)

CRITICAL_RULES = (
    "Maintain the overall product design and silhouette",
    "Match exact colours and textures of surrounding materials",
    "Preserve stitching lines, panel shapes, and construction details",
    "Also remove brand elements from any visible box or packaging, keeping its original colour",
    "ONLY edit brand elements, NOT design elements",
    "Result must look natural and unedited",
)


def categorize(detection: Detection, config: Config) -> ElementCategory | None:
    """Coarse category of one detection, or None if it is not brand-relevant."""
    if detection.confidence < config.detection_min_confidence:
        return None

    for category, words in CATEGORY_KEYWORDS:
        if matches_keyword(detection.label, words):
            return category

    if detection.kind == DetectionKind.MARK:
        return ElementCategory.MARK
    if matches_keyword(detection.label, config.brand_keywords):
        return ElementCategory.WORDMARK
    return None


def classify(detections: Iterable[Detection], config: Config | None = None) -> frozenset[ElementCategory]:
    config = config or Config()
    categories = (categorize(d, config) for d in detections)
    return frozenset(c for c in categories if c is not None)


def removal_targets(detections: Iterable[Detection], config: Config | None = None) -> list[Detection]:
    """Detections whose category counts toward 'needs removal'."""
    config = config or Config()
    targets = []
    for detection in detections:
        category = categorize(detection, config)
        if category is not None and category != ElementCategory.SILHOUETTE:
            targets.append(detection)
    return targets


def choose_strategy(categories: AbstractSet[ElementCategory], config: Config | None = None) -> Strategy:
    """Gentle single pass for one element type, escalation for several."""
    config = config or Config()
    distinct = {c for c in categories if c != ElementCategory.SILHOUETTE}
    if len(distinct) >= config.multi_category_threshold:
        return Strategy(intensity=Intensity.AGGRESSIVE, max_passes=config.aggressive_max_passes)
    return Strategy(intensity=Intensity.MODERATE, max_passes=config.moderate_max_passes)


def brand_names(detections: Iterable[Detection]) -> list[str]:
    """Unique labels, sorted case-insensitively."""
    seen = {}
    for d in detections:
        label = d.label.strip()
        if label and label.lower() not in seen:
            seen[label.lower()] = label
    return [seen[k] for k in sorted(seen)]


def build_instruction(
    brands: Sequence[str],
    categories: AbstractSet[ElementCategory],
    intensity: Intensity,
    pass_number: int,
) -> str:
    """Deterministic edit instruction for one pass.

    Later passes only change how forcefully the same targets are described.
    """
    start = 0 if intensity == Intensity.MODERATE else 1
    step = min(start + max(pass_number, 1) - 1, len(ESCALATION_LADDER) - 1)
    intensity_line = ESCALATION_LADDER[step]

    active = [c for c in PRIORITY if c in categories]
    brand_list = ", ".join(brands) if brands else "unidentified brand"

    if not active:
        lines = [
            "Remove all brand elements from this product while maintaining design integrity.",
            "",
            f"INTENSITY: {intensity_line}",
        ]
    else:
        lines = [
            "TARGETED BRAND REMOVAL",
            "",
            f"Detected brands: {brand_list}",
            "",
            "SPECIFIC EDITS REQUIRED (in order of priority):",
            "",
        ]
        for i, category in enumerate(active, 1):
            lines.append(f"{i}. [{category.value.upper()}] {DIRECTIVES[category]}")
            lines.append("")
        if ElementCategory.SILHOUETTE in categories:
            lines.append(f"PRESERVE: {SILHOUETTE_DIRECTIVE}")
            lines.append("")
        lines.append(f"INTENSITY: {intensity_line}")

    if pass_number > 1:
        lines.append(
            f"ESCALATION: pass {pass_number}. Earlier passes left visible traces; "
            "be more forceful on the same targets."
        )

    lines.append("")
    lines.append("CRITICAL RULES:")
    lines.extend(f"- {rule}" for rule in CRITICAL_RULES)
    return "\n".join(lines)
