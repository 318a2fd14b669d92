"""ChartSOP — error taxonomy.

Rule violations and tolerance warnings are not exceptions: they are
accumulated as strings on ``ValidationOutcome``.  Only schema problems,
infrastructure faults, and cancellation are raised.
"""

from typing import Optional


class ChartSOPError(Exception):
    """Base class for every error raised by the analysis core."""


class SchemaError(ChartSOPError, ValueError):
    """A vision response is missing a required field or has a malformed one."""

    def __init__(self, message: str, field: Optional[str] = None) -> None:
        super().__init__(message)
        self.field = field


class InfrastructureFailure(ChartSOPError):
    """The system is broken, as opposed to "no trade setup right now"."""


class CaptureError(InfrastructureFailure):
    """A chart screenshot could not be acquired."""


class VisionError(InfrastructureFailure):
    """The vision-analysis call failed."""


class VisionTimeout(VisionError):
    """The vision-analysis call exceeded its timeout."""


class PersistenceError(InfrastructureFailure):
    """A report or rendered image could not be written."""


class JobCancelled(ChartSOPError):
    """A job was cancelled between pipeline stages."""

    def __init__(self, stage: str) -> None:
        super().__init__(f"Job cancelled before stage '{stage}'")
        self.stage = stage
