import io

import numpy as np
import pytest
from PIL import Image

from brand_scrub.config import Config
from brand_scrub.models import Detection, DetectionKind, Verification, WorkItem
from brand_scrub.ports import Detector, Editor, Verifier
from brand_scrub.retry import RetryPolicy


def png_bytes(width: int = 200, height: int = 160, color=(200, 200, 200)) -> bytes:
    img = Image.new("RGB", (width, height), color=color)
    buf = io.BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def box(x1, y1, x2, y2):
    return ((x1, y1), (x2, y1), (x2, y2), (x1, y2))


def mark(label="Nike", confidence=95.0, polygon=None):
    return Detection(label, DetectionKind.MARK, confidence, polygon or box(20, 20, 80, 60))


def text(label="NIKE AIR", confidence=90.0, polygon=None):
    return Detection(label, DetectionKind.TEXT, confidence, polygon or box(100, 100, 180, 130))


class _Scripted:
    """Replays a script of responses; the last entry repeats forever.

    An entry that is an exception instance is raised instead of returned.
    """

    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def _next(self):
        response = self.responses[min(len(self.calls) - 1, len(self.responses) - 1)]
        if isinstance(response, BaseException):
            raise response
        return response


class FakeDetector(_Scripted, Detector):
    def __init__(self, *responses):
        super().__init__(*(responses or ([],)))

    def detect(self, image):
        self.calls.append(image)
        return list(self._next())


class FakeEditor(_Scripted, Editor):
    """Returns the input brightened by one step unless scripted otherwise."""

    def __init__(self, *responses):
        super().__init__(*(responses or (None,)))

    def edit(self, image, instruction, intensity, pass_number):
        self.calls.append((image, instruction, intensity, pass_number))
        response = self._next()
        if response is None:
            return np.clip(image.astype(np.int16) + 1, 0, 255).astype(np.uint8)
        return response


class FakeVerifier(_Scripted, Verifier):
    def __init__(self, *responses):
        super().__init__(*(responses or (Verification(0.0),)))

    def verify(self, image, expected_labels):
        self.calls.append((image, expected_labels))
        return self._next()


@pytest.fixture
def config():
    return Config(pacing_seconds=0.0)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    return RetryPolicy(initial_delay=1.0, max_delay=10.0, multiplier=2.0, max_attempts=3, sleep=sleeps.append)


@pytest.fixture
def item():
    return WorkItem(image_id="sku-1", image_bytes=png_bytes())
