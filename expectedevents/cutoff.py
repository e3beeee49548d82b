"""
Analysis cutoff rules: calendar time, minimum follow-up and event targets.

Expected events is non-decreasing in the analysis time when all rates are
non-negative, so the time at which a target is reached is found with a
bracketed root search on events(T) - target.
"""

from dataclasses import dataclass
import logging
from typing import Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd
from scipy.optimize import brentq

from .ahr import AverageHazardRatioEstimator
from .exceptions import (
    InvalidScheduleError, NonMonotonicDurationError, UnreachableTargetError
)
from .options import SearchOptions
from .strata import StrataAggregator, build_strata

logger = logging.getLogger(__name__)

CUTOFF_KINDS = ("duration", "min_followup", "events",
                "max_duration_events", "max_followup_events")


@dataclass(frozen=True)
class CutoffSpec:
    """
    Rule for when an analysis is performed.

    Attributes
    ----------
    kind : str
        One of 'duration' (fixed calendar time), 'min_followup' (end of
        enrollment plus a minimum follow-up), 'events' (target expected
        events), 'max_duration_events' or 'max_followup_events' (the later
        of the two rules)
    duration : float, optional
        Calendar time from start of enrollment
    min_followup : float, optional
        Follow-up after the last subject is enrolled
    events : float, optional
        Target number of expected events
    """
    kind: str
    duration: Optional[float] = None
    min_followup: Optional[float] = None
    events: Optional[float] = None

    def __post_init__(self):
        if self.kind not in CUTOFF_KINDS:
            raise ValueError(f"kind must be one of {CUTOFF_KINDS}, got {self.kind!r}")
        if self.kind in ("duration", "max_duration_events"):
            if self.duration is None or not self.duration > 0:
                raise NonMonotonicDurationError(f"Cutoff duration must be positive, got {self.duration}")
        if self.kind in ("min_followup", "max_followup_events"):
            if self.min_followup is None or self.min_followup < 0:
                raise ValueError(f"min_followup must be non-negative, got {self.min_followup}")
        if self.kind in ("events", "max_duration_events", "max_followup_events"):
            if self.events is None or not self.events > 0:
                raise ValueError(f"Target events must be positive, got {self.events}")

    @classmethod
    def at_duration(cls, duration: float) -> 'CutoffSpec':
        return cls(kind="duration", duration=duration)

    @classmethod
    def at_min_followup(cls, min_followup: float) -> 'CutoffSpec':
        return cls(kind="min_followup", min_followup=min_followup)

    @classmethod
    def at_events(cls, events: float) -> 'CutoffSpec':
        return cls(kind="events", events=events)

    @classmethod
    def max_of_duration_events(cls, duration: float, events: float) -> 'CutoffSpec':
        return cls(kind="max_duration_events", duration=duration, events=events)

    @classmethod
    def max_of_followup_events(cls, min_followup: float, events: float) -> 'CutoffSpec':
        return cls(kind="max_followup_events", min_followup=min_followup, events=events)


class CutoffResolver:
    """
    Translate cutoff rules into analysis times.

    Parameters
    ----------
    aggregator : StrataAggregator
        Expected events over strata and arms
    options : SearchOptions, optional
        Bracketing and tolerance settings for event targets
    """

    def __init__(self, aggregator: StrataAggregator, options: Optional[SearchOptions] = None):
        self.aggregator = aggregator
        self.options = options or SearchOptions()

    def events_at(self, duration: float) -> float:
        """Expected events at a calendar time (zero at time 0)."""
        if duration <= 0:
            return 0.0
        return self.aggregator.total_events(duration)

    def time_for_events(self, target: float) -> float:
        """
        Calendar time at which expected events reach target.

        Raises
        ------
        UnreachableTargetError
            If the target is not below the events expected with unlimited
            follow-up, or is not reached by options.escape_duration
        """
        if not target > 0:
            raise ValueError(f"Target events must be positive, got {target}")
        opts = self.options

        limit = self.aggregator.asymptotic_events()
        if target >= limit:
            raise UnreachableTargetError(target, limit, np.inf)

        lower, upper = 0.0, min(opts.initial_upper, opts.escape_duration)
        reached = self.events_at(upper)
        while reached < target:
            if upper >= opts.escape_duration:
                raise UnreachableTargetError(target, reached, opts.escape_duration)
            lower, upper = upper, min(2 * upper, opts.escape_duration)
            reached = self.events_at(upper)
            logger.debug("Bracketing %g events: %.6g expected at T=%g", target, reached, upper)

        if reached == target:
            return upper
        duration = brentq(lambda t: self.events_at(t) - target, lower, upper,
                          xtol=opts.xtol, rtol=opts.rtol, maxiter=opts.max_iter)
        logger.debug("Target of %g events reached at T=%.8g", target, duration)
        return float(duration)

    def followup_time(self, min_followup: float) -> float:
        """End of enrollment plus min_followup."""
        end = self.aggregator.enrollment_end()
        if not np.isfinite(end):
            raise InvalidScheduleError("Minimum follow-up cutoff needs enrollment that stops")
        duration = end + min_followup
        if not duration > 0:
            raise NonMonotonicDurationError("Minimum follow-up cutoff resolves to time 0")
        return duration

    def resolve(self, spec: CutoffSpec) -> float:
        """Analysis time for one cutoff rule."""
        if spec.kind == "duration":
            return float(spec.duration)
        if spec.kind == "min_followup":
            return self.followup_time(spec.min_followup)
        by_events = self.time_for_events(spec.events)
        if spec.kind == "events":
            return by_events
        if spec.kind == "max_duration_events":
            return max(float(spec.duration), by_events)
        return max(self.followup_time(spec.min_followup), by_events)

    def resolve_many(self, specs: Sequence[CutoffSpec]) -> np.ndarray:
        """
        Analysis times for a sequence of analyses.

        Raises
        ------
        NonMonotonicDurationError
            If a later analysis resolves to an earlier time
        """
        times = np.array([self.resolve(s) for s in specs], dtype=float)
        if np.any(np.diff(times) < 0):
            raise NonMonotonicDurationError(
                f"Analysis times must be non-decreasing, got {times.tolist()}")
        return times


def expected_time(enroll_rate: pd.DataFrame,
                  fail_rate: pd.DataFrame,
                  target_event: float,
                  ratio: float = 1.0,
                  strata: Union[pd.DataFrame, Mapping[str, float], None] = None,
                  options: Optional[SearchOptions] = None) -> pd.DataFrame:
    """
    Time at which a target number of expected events is reached.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Enrollment rates (columns: stratum, duration, rate)
    fail_rate : pd.DataFrame
        Failure rates (columns: stratum, duration, fail_rate, hr, dropout_rate)
    target_event : float
        Target number of expected events
    ratio : float
        Randomization ratio (experimental:control)
    strata : pd.DataFrame or mapping, optional
        Stratum prevalences
    options : SearchOptions, optional
        Root search settings

    Returns
    -------
    pd.DataFrame
        One row with columns Time, AHR, Events, info, info0
    """
    aggregator = StrataAggregator(build_strata(enroll_rate, fail_rate, strata), ratio=ratio)
    duration = CutoffResolver(aggregator, options).time_for_events(target_event)
    return AverageHazardRatioEstimator(aggregator).table(duration)


def analysis_ahr(enroll_rate: pd.DataFrame,
                 fail_rate: pd.DataFrame,
                 cutoffs: Sequence[CutoffSpec],
                 ratio: float = 1.0,
                 strata: Union[pd.DataFrame, Mapping[str, float], None] = None,
                 options: Optional[SearchOptions] = None) -> pd.DataFrame:
    """
    AHR, expected events and information at planned analyses.

    Parameters
    ----------
    enroll_rate, fail_rate : pd.DataFrame
        Rate tables as for ahr()
    cutoffs : sequence of CutoffSpec
        One rule per analysis, in analysis order
    ratio : float
        Randomization ratio (experimental:control)
    strata : pd.DataFrame or mapping, optional
        Stratum prevalences
    options : SearchOptions, optional
        Root search settings

    Returns
    -------
    pd.DataFrame
        Columns Analysis, Time, AHR, Events, info, info0
    """
    if len(cutoffs) == 0:
        raise ValueError("At least one cutoff is required")
    aggregator = StrataAggregator(build_strata(enroll_rate, fail_rate, strata), ratio=ratio)
    times = CutoffResolver(aggregator, options).resolve_many(cutoffs)
    table = AverageHazardRatioEstimator(aggregator).table(times)
    table.insert(0, 'Analysis', np.arange(1, len(times) + 1))
    return table
