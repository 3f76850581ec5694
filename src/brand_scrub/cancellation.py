import threading

from .errors import Cancelled


class CancelToken:
    """Cooperative stop flag checked between images and between passes."""

    def __init__(self) -> None:
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise Cancelled("Cancellation requested")

    def wait(self, seconds: float) -> bool:
        """Sleep up to ``seconds``; returns True early if cancelled."""
        if seconds <= 0:
            return self._event.is_set()
        return self._event.wait(seconds)
