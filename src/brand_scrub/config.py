"""Configuration management."""

from pathlib import Path

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import RemediationStyle

DEFAULT_BRAND_KEYWORDS = [
    "nike",
    "swoosh",
    "jordan",
    "jumpman",
    "air",
    "sb",
    "adidas",
    "trefoil",
    "puma",
    "reebok",
    "new balance",
    "under armour",
    "asics",
    "converse",
    "vans",
    "fila",
    "gucci",
    "louis vuitton",
    "lv",
    "prada",
    "versace",
    "balenciaga",
    "off-white",
    "supreme",
    "yeezy",
]


class Config(BaseModel):
    """Pipeline configuration."""

    # Verification
    clean_threshold: float = Field(default=30.0, ge=0, le=100)

    # Relevance filtering
    brand_keywords: list[str] = Field(default_factory=lambda: list(DEFAULT_BRAND_KEYWORDS))
    relevance_confidence: float = Field(default=85.0, ge=0, le=100)
    detection_min_confidence: float = Field(default=50.0, ge=0, le=100)

    # Strategy
    multi_category_threshold: int = Field(default=2, ge=1)
    moderate_max_passes: int = Field(default=1, ge=1)
    aggressive_max_passes: int = Field(default=3, ge=1)

    # Structural integrity of edits (greyscale diff against the original)
    structural_check: bool = True
    structural_compare_size: int = Field(default=512, ge=32)
    structural_max_mean_diff: float = Field(default=30.0, ge=0, le=255)
    structural_pixel_delta: int = Field(default=50, ge=0, le=255)
    structural_max_changed_fraction: float = Field(default=0.2, ge=0, le=1)

    # Region geometry
    region_padding_px: int = Field(default=0, ge=0)
    min_region_px: int = Field(default=10, ge=1)
    merge_iou_threshold: float = Field(default=0.3, ge=0, le=1)

    # Remediation
    remediation_style: RemediationStyle = RemediationStyle.BLUR
    blur_kernel: int = Field(default=51, ge=3)

    # Retry / backoff (seconds)
    retry_initial_delay: float = Field(default=1.0, ge=0)
    retry_max_delay: float = Field(default=10.0, ge=0)
    retry_multiplier: float = Field(default=2.0, ge=1)
    retry_max_attempts: int = Field(default=4, ge=1)

    # Batch
    pacing_seconds: float = Field(default=2.0, ge=0)
    workers: int = Field(default=1, ge=1)

    # Providers
    detection_model: str = "claude-sonnet-4-20250514"
    verification_model: str = "claude-sonnet-4-20250514"
    editing_model: str = "qwen/qwen-image-edit"
    edit_poll_interval: float = Field(default=1.0, gt=0)
    edit_timeout: float = Field(default=120.0, gt=0)
    max_upload_dimension: int = Field(default=2048, ge=256)

    @field_validator("blur_kernel")
    @classmethod
    def _odd_kernel(cls, value: int) -> int:
        # Gaussian kernels must be odd
        return value if value % 2 == 1 else value + 1

    @field_validator("brand_keywords")
    @classmethod
    def _lowercase_keywords(cls, value: list[str]) -> list[str]:
        return [k.strip().lower() for k in value if k.strip()]


def load_config(path: Path) -> Config:
    """Load configuration from YAML file."""
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    return Config(**data)


def save_config(config: Config, path: Path) -> None:
    """Save configuration to YAML file."""
    with open(path, "w") as f:
        yaml.dump(config.model_dump(mode="json"), f, default_flow_style=False)
