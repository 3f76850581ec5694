"""Write cleaned images, per-image sidecars and the batch report."""

import json
from datetime import datetime
from pathlib import Path

from PIL import Image

from .models import PipelineResult
from .pipeline import BatchReport


def export_result(result: PipelineResult, output_dir: Path, quality: int = 95) -> Path | None:
    """Export the final image as JPEG next to a JSON sidecar.

    Args:
        result: Terminal pipeline result
        output_dir: Directory to save output
        quality: JPEG quality (1-100)

    Returns:
        Path to the saved image, or None when the result carries no image
        (failed or already-done items still get a sidecar)
    """
    output_dir.mkdir(parents=True, exist_ok=True)
    _save_sidecar(result, output_dir / f"{result.image_id}.json")

    if result.final_image is None:
        return None

    output_path = output_dir / f"{result.image_id}_clean.jpg"
    pil_image = Image.fromarray(result.final_image)
    if pil_image.mode != "RGB":
        pil_image = pil_image.convert("RGB")

    pil_image.save(
        output_path,
        "JPEG",
        quality=quality,
        subsampling=0,  # 4:4:4 for best quality
    )
    return output_path


def _save_sidecar(result: PipelineResult, sidecar_path: Path) -> None:
    sidecar_data = result.summary()
    sidecar_data["processed_date"] = datetime.now().isoformat()

    with open(sidecar_path, "w") as f:
        json.dump(sidecar_data, f, indent=2)


def save_report(report: BatchReport, path: Path) -> None:
    """Save the aggregate batch report as JSON."""
    path.parent.mkdir(parents=True, exist_ok=True)
    data = report.to_dict()
    data["timestamp"] = datetime.now().isoformat()
    with open(path, "w") as f:
        json.dump(data, f, indent=2)
