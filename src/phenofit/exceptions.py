"""phenofit exception hierarchy.

All exceptions follow a three-part message pattern: what failed,
likely cause, and suggested fix.

Numerical trouble inside a single pixel fit is never raised; it is
recorded as data (a high RMSE or a missing cell). Only configuration
problems and caller precondition violations surface as exceptions.
"""

from __future__ import annotations


class PhenofitError(Exception):
    """Base exception for all phenofit errors.

    Args:
        what: Description of what failed.
        cause: Likely cause of the failure.
        fix: Suggested action to resolve the issue.

    Example:
        >>> raise PhenofitError(
        ...     what="Operation failed",
        ...     cause="Unexpected internal state",
        ...     fix="Please report this issue",
        ... )
    """

    def __init__(
        self,
        what: str,
        cause: str = "",
        fix: str = "",
    ) -> None:
        """Initialize with structured error context.

        Args:
            what: Description of what failed.
            cause: Likely cause of the failure.
            fix: Suggested action to resolve the issue.
        """
        self.what = what
        self.cause = cause
        self.fix = fix
        super().__init__(self._format_message())

    def _format_message(self) -> str:
        """Build the multi-line error message from parts.

        Returns:
            Formatted message with optional Cause and Fix lines.
        """
        parts = [self.what]
        if self.cause:
            parts.append(f"Cause: {self.cause}")
        if self.fix:
            parts.append(f"Fix: {self.fix}")
        return "\n".join(parts)


class ConfigurationError(PhenofitError):
    """Raised for configuration errors detected before fitting starts.

    Example:
        >>> raise ConfigurationError(
        ...     what="Invalid fit settings",
        ...     cause="rows_per_task must be positive",
        ...     fix="Pass rows_per_task >= 1",
        ... )
    """


class InconsistentBoundsError(ConfigurationError):
    """Raised when a configured interval has ``min > max``.

    Example:
        >>> raise InconsistentBoundsError(
        ...     what="Inconsistent parameter bounds",
        ...     cause="sos_min (200.0) > sos_max (100.0)",
        ...     fix="Ensure every minimum is <= its maximum",
        ... )
    """


class InsufficientDataError(PhenofitError):
    """Raised when the optimizer is called with too few observations.

    Grid-level code never lets this escape: pixels below the minimum
    observation count are recorded as absent instead.
    """


class FitCancelledError(PhenofitError):
    """Raised when a long-running fit observes its cancel event.

    Partially computed results are discarded.
    """


class ProviderError(PhenofitError):
    """Raised for crop-calendar provider failures after retries exhausted.

    Example:
        >>> raise ProviderError(
        ...     what="FAO crop calendar request failed",
        ...     cause="HTTP 503 after 3 retries",
        ...     fix="Check https://api-cropcalendar.apps.fao.org status",
        ... )
    """
