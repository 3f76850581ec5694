"""Prompt-guided image editing on Replicate (submit, then poll).

Replicate predictions are asynchronous; ``ReplicateEditor.edit`` hides the
polling and returns only once the prediction reached a terminal state.
"""

from __future__ import annotations

import logging
import os
import time
from typing import Callable

import httpx
import numpy as np
import replicate
import requests
from replicate.exceptions import ReplicateError

from ..errors import InvalidImage, MalformedResponse, PortError, ServiceUnavailable
from ..imaging import decode_image, image_to_data_uri, resize_to
from ..models import Intensity
from ..ports import Editor

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "qwen/qwen-image-edit"
PENDING_STATES = {"starting", "processing"}


def _translate_replicate_error(e: ReplicateError) -> PortError:
    status = getattr(e, "status", None)
    if status is None or status == 429 or status >= 500:
        return ServiceUnavailable(f"Replicate unavailable: {e}")
    if status == 422:
        return InvalidImage(f"Replicate rejected the input: {e}")
    return PortError(f"Replicate error {status}: {e}")


class ReplicateEditor(Editor):
    name = "replicate"

    def __init__(
        self,
        api_token: str | None = None,
        model: str = DEFAULT_MODEL,
        poll_interval: float = 1.0,
        timeout: float = 120.0,
        client: replicate.Client | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if client is None:
            api_token = api_token or os.environ.get("REPLICATE_API_TOKEN")
            if not api_token:
                raise ValueError("REPLICATE_API_TOKEN not set")
            client = replicate.Client(api_token=api_token)
        self._client = client
        self._session = session or requests.Session()
        self.model = model
        self.poll_interval = poll_interval
        self.timeout = timeout
        self._sleep = sleep
        self._clock = clock

    def edit(
        self,
        image: np.ndarray,
        instruction: str,
        intensity: Intensity,
        pass_number: int,
    ) -> np.ndarray:
        logger.debug("Submitting %s edit pass %d to %s", intensity.value, pass_number, self.model)
        try:
            prediction = self._client.predictions.create(
                model=self.model,
                input={
                    "image": image_to_data_uri(image),
                    "prompt": instruction,
                    "output_format": "png",
                    "output_quality": 90,
                },
            )
            prediction = self._wait(prediction)
        except ReplicateError as e:
            raise _translate_replicate_error(e) from e
        except httpx.HTTPError as e:
            raise ServiceUnavailable(f"Replicate transport error: {e}") from e

        if prediction.status == "failed":
            raise ServiceUnavailable(f"Prediction {prediction.id} failed: {prediction.error or 'unknown error'}")
        if prediction.status == "canceled":
            raise ServiceUnavailable(f"Prediction {prediction.id} was canceled")

        edited = decode_image(self._download(self._output_url(prediction)))
        # Keep the catalog resolution; the model may answer at its own size.
        height, width = image.shape[:2]
        return resize_to(edited, width, height)

    def _wait(self, prediction):
        deadline = self._clock() + self.timeout
        polls = 0
        while prediction.status in PENDING_STATES:
            if self._clock() > deadline:
                try:
                    prediction.cancel()
                except (ReplicateError, httpx.HTTPError):
                    logger.debug("Could not cancel prediction %s", prediction.id)
                raise ServiceUnavailable(
                    f"Prediction {prediction.id} still {prediction.status} after {self.timeout:.0f}s"
                )
            polls += 1
            self._sleep(self.poll_interval)
            prediction.reload()
        logger.debug("Prediction %s %s after %d poll(s)", prediction.id, prediction.status, polls)
        return prediction

    @staticmethod
    def _output_url(prediction) -> str:
        output = prediction.output
        if isinstance(output, list):
            output = output[0] if output else None
        if not output:
            raise MalformedResponse(f"Prediction {prediction.id} succeeded without output")
        return str(output)

    def _download(self, url: str) -> bytes:
        try:
            response = self._session.get(url, timeout=60)
            response.raise_for_status()
        except requests.HTTPError as e:
            status = e.response.status_code if e.response is not None else 0
            if status >= 500 or status == 429:
                raise ServiceUnavailable(f"Download of edited image failed: {e}") from e
            raise MalformedResponse(f"Edited image URL not retrievable: {e}") from e
        except requests.RequestException as e:
            raise ServiceUnavailable(f"Download of edited image failed: {e}") from e
        return response.content
