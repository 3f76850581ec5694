"""Detection and verification through the Claude Vision API."""

from __future__ import annotations

import json
import logging
import os
from typing import AbstractSet

import anthropic
import numpy as np
from pydantic import BaseModel, Field, ValidationError

from ..errors import InvalidImage, MalformedResponse, PortError, ServiceUnavailable
from ..geometry import denormalize_polygon
from ..imaging import image_to_base64
from ..models import Detection, DetectionKind, Verification
from ..ports import Detector, Verifier

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-20250514"

DETECTION_PROMPT = """You are a brand detection expert. Analyze this product image and detect ALL visible brand elements.

For EACH detection, provide:
- brand: the brand or element name (e.g. "Nike swoosh", "NIKE AIR", "Louis Vuitton monogram")
- type: "logo" for symbols, emblems and patterns, "text" for lettering and wordmarks
- confidence: 0-100
- polygon: precise vertices tight around the element, normalized 0-1

Confidence guide:
- 90-100: large, centered logos
- 70-89: medium logos, prominent text
- 50-69: small logos, subtle branding
- 0-49: uncertain

Return ONLY valid JSON, no markdown:
{
  "regions": [
    {
      "brand": "Nike swoosh",
      "type": "logo",
      "confidence": 98,
      "polygon": [{"x": 0.45, "y": 0.30}, {"x": 0.55, "y": 0.30}, {"x": 0.55, "y": 0.40}, {"x": 0.45, "y": 0.40}]
    }
  ]
}

If nothing is visible return {"regions": []}."""


def _verification_prompt(expected_labels: AbstractSet[str]) -> str:
    expected = ", ".join(sorted(expected_labels)) or "any brand"
    return f"""Analyze this edited product photo and detect ANY remaining brand elements.

Previously present: {expected}

Look for:
- Logos, symbols and emblems
- Brand text and wordmarks
- Repeating monogram patterns
Product shape and silhouette alone are NOT brand elements.

Return ONLY JSON:
{{
  "brands": ["Brand1"],
  "riskScore": 0-100
}}

Risk scale: 0-20 clean, 21-40 minor traces, 41+ needs more work.
Be VERY STRICT."""


class _Vertex(BaseModel):
    x: float
    y: float


class _Region(BaseModel):
    brand: str
    type: str = "logo"
    confidence: float = Field(ge=0, le=100)
    polygon: list[_Vertex] = Field(default_factory=list)


class _DetectionPayload(BaseModel):
    regions: list[_Region] = Field(default_factory=list)


class _VerificationPayload(BaseModel):
    brands: list[str] = Field(default_factory=list)
    risk_score: float = Field(alias="riskScore", ge=0, le=100)


def parse_json_response(response_text: str) -> dict:
    """Extract a JSON object from a model response.

    Raises:
        MalformedResponse: if no JSON object can be recovered
    """
    # First, try to parse the entire response as JSON
    try:
        data = json.loads(response_text)
        if isinstance(data, dict):
            return data
    except json.JSONDecodeError:
        pass

    # Try to extract JSON from markdown code block
    if "```json" in response_text:
        start = response_text.find("```json") + 7
        end = response_text.find("```", start)
        if end > start:
            try:
                return json.loads(response_text[start:end].strip())
            except json.JSONDecodeError:
                pass

    # Try to find JSON object in response
    start = response_text.find("{")
    end = response_text.rfind("}") + 1
    if start >= 0 and end > start:
        try:
            return json.loads(response_text[start:end])
        except json.JSONDecodeError:
            pass

    raise MalformedResponse(f"Could not parse response as JSON: {response_text[:120]!r}")


class _ClaudeVisionClient:
    """Shared request plumbing and error translation."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str = DEFAULT_MODEL,
        max_dimension: int = 2048,
        client: anthropic.Anthropic | None = None,
    ):
        if client is None:
            api_key = api_key or os.environ.get("ANTHROPIC_API_KEY")
            if not api_key:
                raise ValueError("ANTHROPIC_API_KEY not set")
            client = anthropic.Anthropic(api_key=api_key)
        self._client = client
        self.model = model
        self.max_dimension = max_dimension

    def _ask(self, image: np.ndarray, prompt: str) -> str:
        image_base64 = image_to_base64(image, self.max_dimension)
        try:
            message = self._client.messages.create(
                model=self.model,
                max_tokens=2048,
                messages=[
                    {
                        "role": "user",
                        "content": [
                            {
                                "type": "image",
                                "source": {
                                    "type": "base64",
                                    "media_type": "image/jpeg",
                                    "data": image_base64,
                                },
                            },
                            {
                                "type": "text",
                                "text": prompt,
                            },
                        ],
                    }
                ],
            )
        except (anthropic.APIConnectionError, anthropic.RateLimitError, anthropic.InternalServerError) as e:
            raise ServiceUnavailable(f"Claude API unavailable: {e}") from e
        except anthropic.BadRequestError as e:
            raise InvalidImage(f"Claude rejected the image: {e}") from e
        except anthropic.APIStatusError as e:
            raise PortError(f"Claude API error {e.status_code}: {e}") from e

        texts = [block.text for block in message.content if getattr(block, "type", "") == "text"]
        if not texts:
            raise MalformedResponse("Claude response contained no text block")
        return texts[0]


class ClaudeVisionDetector(_ClaudeVisionClient, Detector):
    name = "claude-vision"

    def detect(self, image: np.ndarray) -> list[Detection]:
        data = parse_json_response(self._ask(image, DETECTION_PROMPT))
        try:
            payload = _DetectionPayload.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(f"Unexpected detection payload: {e}") from e

        height, width = image.shape[:2]
        detections = [
            Detection(
                label=region.brand,
                kind=DetectionKind.TEXT if region.type.lower() == "text" else DetectionKind.MARK,
                confidence=region.confidence,
                polygon=denormalize_polygon(((v.x, v.y) for v in region.polygon), width, height),
            )
            for region in payload.regions
        ]
        logger.debug("Claude found %d element(s)", len(detections))
        return detections


class ClaudeVisionVerifier(_ClaudeVisionClient, Verifier):
    name = "claude-vision"

    def verify(self, image: np.ndarray, expected_labels: AbstractSet[str]) -> Verification:
        data = parse_json_response(self._ask(image, _verification_prompt(expected_labels)))
        try:
            payload = _VerificationPayload.model_validate(data)
        except ValidationError as e:
            raise MalformedResponse(f"Unexpected verification payload: {e}") from e

        residual = frozenset(b.strip() for b in payload.brands if b.strip())
        return Verification(risk_score=payload.risk_score, residual_labels=residual)
