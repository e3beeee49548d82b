"""
Exception classes for expected event and average hazard ratio calculations.

All errors derive from ExpectedEventsError. Input errors also derive from
ValueError so callers catching ValueError keep working.
"""

from typing import Optional


class ExpectedEventsError(Exception):
    """Base class for errors raised by this package."""
    pass


class InvalidScheduleError(ExpectedEventsError, ValueError):
    """
    A rate table is malformed.

    Raised for non-positive segment durations, negative or non-finite rates,
    non-positive hazard ratios, or strata weights that do not sum to 1.

    Attributes
    ----------
    stratum : str or None
        Stratum the offending row belongs to
    segment : int or None
        Zero-based index of the offending segment
    """

    def __init__(self, message: str, stratum: Optional[str] = None,
                 segment: Optional[int] = None):
        self.stratum = stratum
        self.segment = segment
        where = []
        if stratum is not None:
            where.append(f"stratum={stratum!r}")
        if segment is not None:
            where.append(f"segment={segment}")
        if where:
            message = f"{message} ({', '.join(where)})"
        super().__init__(message)


class DegenerateInputError(ExpectedEventsError):
    """Total expected events is zero where a weighted average needs it positive."""
    pass


class UnreachableTargetError(ExpectedEventsError):
    """
    An event-count target cannot be reached.

    Attributes
    ----------
    target : float
        Requested number of events
    attainable : float
        Largest expected event count found in the search horizon
    """

    def __init__(self, target: float, attainable: float, horizon: float):
        self.target = target
        self.attainable = attainable
        self.horizon = horizon
        super().__init__(
            f"Target of {target:g} events is not reachable: at most "
            f"{attainable:.4f} expected events by duration {horizon:g}"
        )


class NonMonotonicDurationError(ExpectedEventsError, ValueError):
    """A duration is non-positive, or a sequence of durations is not increasing."""
    pass
