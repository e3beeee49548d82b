"""
Expected events and time at risk for one stratum and treatment arm.

Subjects enter as a Poisson process with piecewise constant rate g(s) on the
calendar axis, and after entry are subject to piecewise constant failure and
dropout hazards. At analysis time T the expected number of events in the
follow-up interval (t0, t1] is

    n = lambda * Q * (G * D * phi1(r D) + g * D**2 * phi2(r D))

where D = t1 - t0, r = lambda + eta, Q is the probability of being event and
dropout free at t0, G is the expected enrollment by calendar time T - t1, g is
the enrollment rate on (T - t1, T - t0], phi1(x) = (1 - exp(-x)) / x and
phi2(x) = (x - 1 + exp(-x)) / x**2. The bracketed term divided by lambda is
the expected time at risk in the interval. Follow-up intervals are the common
refinement of the hazard breakpoints and the enrollment breakpoints reflected
about T, so every rate is constant inside each interval.
"""

from dataclasses import dataclass, asdict
import logging
from typing import List, Optional, Union
import warnings

import numpy as np
import pandas as pd

from .alignment import IntervalAligner
from .exceptions import InvalidScheduleError
from .schedules import (
    PiecewiseSchedule, HazardSchedule, enrollment_from_table, hazards_from_table
)
from .utils import as_durations, survival_integral, entry_integral

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ExpectedEventRow:
    """Expected events and time at risk in one follow-up interval."""
    stratum: str
    arm: str
    interval_start: float
    interval_end: float
    failure_rate: float
    hazard_ratio: float
    expected_events: float
    expected_time_at_risk: float


class ExpectedEventsEngine:
    """
    Closed-form expected events for one stratum and arm.

    Parameters
    ----------
    enrollment : PiecewiseSchedule
        Enrollment rates on the calendar axis, already scaled to this arm
    hazard : HazardSchedule
        Failure, hazard ratio and dropout rates since enrollment
    arm : str
        'control' or 'experimental'; the experimental failure rate is
        fail_rate * hr
    aligner : IntervalAligner, optional
        Used to build the follow-up grid
    """

    def __init__(self, enrollment: PiecewiseSchedule, hazard: HazardSchedule,
                 arm: str = "control", aligner: Optional[IntervalAligner] = None):
        if not isinstance(hazard, HazardSchedule):
            raise TypeError("hazard must be a HazardSchedule")
        self.enrollment = enrollment
        self.hazard = hazard
        self.arm = arm
        self.aligner = aligner or IntervalAligner()
        self._fail, self._dropout = hazard.arm_rates(arm)

    def intervals(self, total_duration: float) -> dict:
        """
        Per-interval quantities on the refined follow-up grid.

        Parameters
        ----------
        total_duration : float
            Time from start of enrollment to analysis

        Returns
        -------
        dict
            Arrays 'start', 'end', 'segment' (hazard segment index),
            'fail_rate', 'dropout_rate', 'hr', 'survival' (Q at start),
            'enrolled' (G), 'enroll_rate' (g), 'events' and 'time_at_risk'
        """
        total = float(as_durations(total_duration)[0])
        reflected = self.enrollment.rebased(total, reverse=True)
        grid = self.aligner.align([self.hazard, reflected], total)
        start, end = grid[:-1], grid[1:]
        width = end - start
        mid = (start + end) / 2

        segment = np.minimum(self.hazard.segment_index(mid), self.hazard.n_segments - 1)
        fail = self._fail[segment]
        dropout = self._dropout[segment]
        rate = fail + dropout
        x = rate * width

        q = np.exp(-x)
        survival = np.concatenate([[1.0], np.cumprod(q)[:-1]])
        enrolled = self.enrollment.cumulative(np.maximum(total - end, 0.0))
        enroll_rate = self.enrollment.rate_at(total - mid)

        time_at_risk = survival * (enrolled * width * survival_integral(x)
                                   + enroll_rate * width ** 2 * entry_integral(x))
        events = fail * time_at_risk

        logger.debug("stratum=%s arm=%s T=%g: %d intervals, %.6g events",
                     self.hazard.stratum, self.arm, total, len(width), events.sum())
        return {
            'start': start,
            'end': end,
            'segment': segment,
            'fail_rate': fail,
            'dropout_rate': dropout,
            'hr': self.hazard.column('hr')[segment],
            'survival': survival,
            'enrolled': enrolled,
            'enroll_rate': enroll_rate,
            'events': events,
            'time_at_risk': time_at_risk,
        }

    def rows(self, total_duration: float, by_segment: bool = True) -> List[ExpectedEventRow]:
        """
        Expected events by follow-up interval.

        Parameters
        ----------
        total_duration : float
            Time from start of enrollment to analysis
        by_segment : bool
            If True, sum the refined intervals back to hazard segments
            (truncated at total_duration); otherwise return every refined
            interval.

        Returns
        -------
        list of ExpectedEventRow
        """
        iv = self.intervals(total_duration)
        if by_segment:
            keys, first = np.unique(iv['segment'], return_index=True)
            last = np.append(first[1:], len(iv['segment'])) - 1
            events = np.add.reduceat(iv['events'], first)
            at_risk = np.add.reduceat(iv['time_at_risk'], first)
            start, end = iv['start'][first], iv['end'][last]
            fail, hr = iv['fail_rate'][first], iv['hr'][first]
        else:
            events, at_risk = iv['events'], iv['time_at_risk']
            start, end = iv['start'], iv['end']
            fail, hr = iv['fail_rate'], iv['hr']

        return [
            ExpectedEventRow(
                stratum=self.hazard.stratum,
                arm=self.arm,
                interval_start=float(start[i]),
                interval_end=float(end[i]),
                failure_rate=float(fail[i]),
                hazard_ratio=float(hr[i]),
                expected_events=float(events[i]),
                expected_time_at_risk=float(at_risk[i]),
            )
            for i in range(len(events))
        ]

    def total_events(self, total_duration: float) -> float:
        """Expected number of events by total_duration."""
        return float(np.sum(self.intervals(total_duration)['events']))

    def total_time_at_risk(self, total_duration: float) -> float:
        """Expected total follow-up time at risk by total_duration."""
        return float(np.sum(self.intervals(total_duration)['time_at_risk']))


def rows_to_frame(rows: List[ExpectedEventRow]) -> pd.DataFrame:
    """Collect ExpectedEventRow records into a DataFrame."""
    columns = list(ExpectedEventRow.__dataclass_fields__)
    return pd.DataFrame([asdict(r) for r in rows], columns=columns)


def expected_event(enroll_rate: pd.DataFrame,
                   fail_rate: pd.DataFrame,
                   total_duration: float,
                   simple: bool = True) -> Union[float, pd.DataFrame]:
    """
    Expected events for a single stratum and arm.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Enrollment rates (columns: duration, rate)
    fail_rate : pd.DataFrame
        Failure and dropout rates since enrollment (columns: duration,
        fail_rate, dropout_rate); the last rates apply indefinitely
    total_duration : float
        Time from start of enrollment to analysis
    simple : bool
        If True return the total; otherwise return one row per failure rate
        segment

    Returns
    -------
    float or pd.DataFrame
        Total expected events, or a DataFrame with columns t (segment start),
        fail_rate, Events and time_at_risk

    Example
    -------
    >>> enroll_rate = pd.DataFrame({'duration': [1, 1], 'rate': [3, 2]})
    >>> fail_rate = pd.DataFrame({'duration': [4, 3], 'fail_rate': [.03, .06],
    ...                           'dropout_rate': [.001, .002]})
    >>> expected_event(enroll_rate, fail_rate, total_duration=7)
    """
    if len(as_durations(total_duration)) != 1:
        raise ValueError("expected_event takes a single total_duration; use ahr() for a sequence")
    enrollments = enrollment_from_table(enroll_rate)
    hazards = hazards_from_table(fail_rate)
    if len(enrollments) != 1 or len(hazards) != 1:
        raise InvalidScheduleError("expected_event handles a single stratum; use ahr() for strata")
    if 'hr' in fail_rate.columns:
        warnings.warn("expected_event ignores the 'hr' column; events are for the control rates")

    engine = ExpectedEventsEngine(next(iter(enrollments.values())), next(iter(hazards.values())))
    if simple:
        return engine.total_events(total_duration)

    rows = engine.rows(total_duration)
    return pd.DataFrame({
        't': [r.interval_start for r in rows],
        'fail_rate': [r.failure_rate for r in rows],
        'Events': [r.expected_events for r in rows],
        'time_at_risk': [r.expected_time_at_risk for r in rows],
    })
