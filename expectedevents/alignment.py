"""
Common refinement of several piecewise schedules.
"""

import logging
from typing import Sequence, Tuple

import numpy as np

from .schedules import PiecewiseSchedule
from .utils import as_durations

logger = logging.getLogger(__name__)


class IntervalAligner:
    """
    Merge the breakpoints of several schedules into one grid.

    Every input schedule is constant on each interval of the returned grid.
    The schedules must already share an axis (see PiecewiseSchedule.rebased).
    Schedules that end before the total duration are read past their end by
    their own convention: open-ended schedules keep their last rates, closed
    ones are zero.

    Parameters
    ----------
    tolerance : float
        Breakpoints closer than tolerance * max(1, total_duration) are merged,
        keeping the earlier one.
    """

    def __init__(self, tolerance: float = 1e-10):
        if tolerance < 0:
            raise ValueError("tolerance must be non-negative")
        self.tolerance = tolerance

    def align(self, schedules: Sequence[PiecewiseSchedule], total_duration: float) -> np.ndarray:
        """
        Sorted union of breakpoints on [0, total_duration].

        Parameters
        ----------
        schedules : sequence of PiecewiseSchedule
            Schedules on a common axis
        total_duration : float
            End of the grid

        Returns
        -------
        np.ndarray
            Grid starting at 0 and ending exactly at total_duration
        """
        total_duration = float(as_durations(total_duration)[0])
        candidates = [np.array([0.0, total_duration])]
        for schedule in schedules:
            bp = schedule.breakpoints
            candidates.append(bp[(bp > 0) & (bp < total_duration)])
        points = np.sort(np.concatenate(candidates), kind='stable')

        gap = self.tolerance * max(1.0, total_duration)
        grid = [0.0]
        for p in points[1:]:
            if p - grid[-1] > gap:
                grid.append(p)
        if len(grid) == 1:
            grid.append(total_duration)
        else:
            grid[-1] = total_duration

        logger.debug("Aligned %d schedules into %d intervals on [0, %g]",
                     len(schedules), len(grid) - 1, total_duration)
        return np.asarray(grid, dtype=float)

    def intervals(self, schedules: Sequence[PiecewiseSchedule],
                  total_duration: float) -> Tuple[np.ndarray, np.ndarray]:
        """Start and end of each interval of the aligned grid."""
        grid = self.align(schedules, total_duration)
        return grid[:-1], grid[1:]


def align_breakpoints(*schedules: PiecewiseSchedule, total_duration: float,
                      tolerance: float = 1e-10) -> np.ndarray:
    """Convenience wrapper around IntervalAligner.align."""
    return IntervalAligner(tolerance).align(schedules, total_duration)
