"""Image decoding, encoding and work-queue loading."""

import base64
import io
from pathlib import Path
from typing import Iterator

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import InvalidImage
from .models import WorkItem

SUPPORTED_EXTENSIONS = {".jpg", ".jpeg", ".png", ".webp", ".tif", ".tiff"}


def decode_image(image_bytes: bytes) -> np.ndarray:
    """Decode image bytes into an RGB uint8 array.

    Raises:
        InvalidImage: if the bytes are empty or not a readable image
    """
    if not image_bytes:
        raise InvalidImage("Empty image payload")
    try:
        img = Image.open(io.BytesIO(image_bytes))
        # Convert to RGB if necessary
        if img.mode != "RGB":
            img = img.convert("RGB")
        return np.array(img)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise InvalidImage(f"Cannot decode image: {e}") from e


def encode_image(image: np.ndarray, fmt: str = "PNG", quality: int = 90) -> bytes:
    """Encode an RGB array to PNG or JPEG bytes."""
    pil_image = Image.fromarray(image)
    if pil_image.mode != "RGB":
        pil_image = pil_image.convert("RGB")

    buffer = io.BytesIO()
    if fmt.upper() in ("JPEG", "JPG"):
        pil_image.save(buffer, format="JPEG", quality=quality)
    else:
        pil_image.save(buffer, format="PNG")
    return buffer.getvalue()


def image_to_base64(image: np.ndarray, max_dimension: int = 2048) -> str:
    """Convert numpy array to base64-encoded JPEG, downscaled for upload."""
    pil_image = Image.fromarray(image)

    # Resize if too large (vision APIs have image size limits)
    if max(pil_image.size) > max_dimension:
        ratio = max_dimension / max(pil_image.size)
        new_size = (int(pil_image.width * ratio), int(pil_image.height * ratio))
        pil_image = pil_image.resize(new_size, Image.LANCZOS)

    buffer = io.BytesIO()
    pil_image.save(buffer, format="JPEG", quality=90)
    return base64.standard_b64encode(buffer.getvalue()).decode("utf-8")


def resize_to(image: np.ndarray, width: int, height: int) -> np.ndarray:
    """Resize to exactly (width, height); returns the input if it already fits."""
    if image.shape[1] == width and image.shape[0] == height:
        return image
    pil_img = Image.fromarray(image)
    resized = pil_img.resize((width, height), Image.LANCZOS)
    return np.array(resized)


def image_to_data_uri(image: np.ndarray) -> str:
    """PNG data URI, the form Replicate accepts for file inputs."""
    data = base64.b64encode(encode_image(image, "PNG")).decode("utf-8")
    return f"data:image/png;base64,{data}"


def iter_directory(input_dir: Path) -> Iterator[WorkItem]:
    """Yield one work item per supported image file, sorted by name.

    The image id is the file stem. Bytes are read lazily, one file at a time.
    """
    paths = sorted(
        f for f in input_dir.iterdir()
        if f.is_file() and f.suffix.lower() in SUPPORTED_EXTENSIONS
    )
    for path in paths:
        yield WorkItem(image_id=path.stem, image_bytes=path.read_bytes())
