"""Error taxonomy for the signal engine.

Every error here is recovered locally by the component that catches it;
none of them stops the scheduler.
"""


class SignalEngineError(Exception):
    pass


class UpstreamQuotaExceeded(SignalEngineError):
    """Daily or monthly budget for an upstream source is spent (or it answered 429)."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(message or f"{source}: quota exhausted")


class UpstreamTransientError(SignalEngineError):
    """Network failure or 5xx from an upstream source. Retryable."""

    def __init__(self, source: str, message: str = ""):
        self.source = source
        super().__init__(message or f"{source}: transient failure")


class MalformedSnapshot(SignalEngineError):
    """Provider returned an asset record missing required fields."""


class ClassifierInvariantViolation(SignalEngineError):
    """Classifier got an out-of-range input (negative risk, NaN score)."""


class QueueSaturation(SignalEngineError):
    """A queue tier is at its size ceiling."""

    def __init__(self, tier: str, size: int):
        self.tier = tier
        self.size = size
        super().__init__(f"queue tier {tier} saturated at {size} tasks")
