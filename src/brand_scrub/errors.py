"""Exception hierarchy shared by ports, adapters and the orchestrator."""


class BrandScrubError(Exception):
    """Base class for all brand_scrub errors."""


class PortError(BrandScrubError):
    """A call through a Detection/Editing/Verification port failed."""


class ServiceUnavailable(PortError):
    """Transient transport or provider failure. Safe to retry."""


class MalformedResponse(PortError):
    """Provider answered but the payload could not be parsed."""


class InvalidImage(PortError):
    """The image bytes could not be decoded or were rejected by a provider."""


class Exhausted(PortError):
    """Retries ran out on a transient failure."""

    def __init__(self, description: str, attempts: int, last_error: BaseException):
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class Cancelled(BrandScrubError):
    """A cooperative cancellation request was observed."""
