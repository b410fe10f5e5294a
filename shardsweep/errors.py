"""
Exception hierarchy for the shardsweep harness.

Every failure the harness can observe falls into one of these buckets:
- Transient remote errors, retried by the caller up to a fixed budget
- Fatal errors, which abort the whole run
- Confirmed inconsistencies, the finding the harness exists to produce
"""

from typing import TYPE_CHECKING, List, Optional

if TYPE_CHECKING:
    from shardsweep.models import InconsistencyReport


class HarnessError(Exception):
    """Base class for all harness errors."""


class ConfigError(HarnessError):
    """Raised when the harness configuration is invalid."""


class RemoteError(HarnessError):
    """A remote call against a node failed; may succeed when retried."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class FatalError(HarnessError):
    """Unrecoverable condition; the run must stop."""


class RetryExhaustedError(FatalError):
    """A remote call kept failing after its full attempt budget."""

    def __init__(self, description: str, attempts: int, last_error: Exception):
        super().__init__(f"{description} failed after {attempts} attempts: {last_error}")
        self.description = description
        self.attempts = attempts
        self.last_error = last_error


class PollTimeoutError(FatalError):
    """A polling loop did not observe its condition within the wall-clock bound."""


class StructuralMismatchError(FatalError):
    """Two nodes returned different point IDs at the same scan cursor position."""

    def __init__(self, left: int, right: int, pair: str):
        super().__init__(f"point ids are not equal ({pair}): {left}, {right}")
        self.left = left
        self.right = right
        self.pair = pair


class UnsupportedPointIdError(FatalError):
    """A point ID of a kind the harness does not handle (UUID) was returned."""


class MissingPointError(FatalError):
    """A point required to build the next mutation was not returned by a node."""


class InconsistencyError(HarnessError):
    """
    Confirmed inconsistency: nodes still disagree after the checker's full
    retry budget.

    Carries the reports of the last check cycle.
    """

    def __init__(self, reports: List["InconsistencyReport"], attempts: int):
        self.reports = list(reports)
        self.attempts = attempts
        lines = "\n".join(report.format() for report in self.reports)
        super().__init__(f"INCONSISTENCIES AFTER {attempts} ATTEMPTS\n{lines}")
