"""
Search options for event-driven cutoff calculations.
"""

from dataclasses import dataclass


@dataclass
class SearchOptions:
    """
    Options controlling the root search for a target number of events.

    Attributes
    ----------
    initial_upper : float
        First upper bracket tried for the analysis time
    escape_duration : float
        Largest duration searched before the target is declared unreachable
    xtol : float
        Absolute tolerance on the returned duration
    rtol : float
        Relative tolerance on the returned duration
    max_iter : int
        Maximum number of root-finding iterations
    """
    initial_upper: float = 12.0
    escape_duration: float = 1e4
    xtol: float = 1e-8
    rtol: float = 1e-10
    max_iter: int = 200

    def __post_init__(self):
        if self.initial_upper <= 0:
            raise ValueError("initial_upper must be positive")
        if self.escape_duration < self.initial_upper:
            raise ValueError("escape_duration must be >= initial_upper")
        if self.xtol <= 0 or self.rtol <= 0:
            raise ValueError("Tolerances must be positive")
        if self.max_iter < 1 or not isinstance(self.max_iter, int):
            raise ValueError("max_iter must be a positive integer")
