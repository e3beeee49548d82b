"""
Expected Events and Average Hazard Ratio for Time-to-Event Trials

This package computes the expected number of events over time in a stratified,
randomized trial with piecewise constant enrollment, failure and dropout rates,
and derives the average hazard ratio (AHR) and statistical information used to
size fixed and group sequential designs under non-proportional hazards.
"""

__version__ = "1.0.0"

from .exceptions import (
    ExpectedEventsError, InvalidScheduleError, DegenerateInputError,
    UnreachableTargetError, NonMonotonicDurationError
)
from .options import SearchOptions
from .schedules import (
    PiecewiseSchedule, EnrollmentSchedule, HazardSchedule, Stratum,
    enrollment_from_table, hazards_from_table, strata_from_table
)
from .alignment import IntervalAligner, align_breakpoints
from .engine import ExpectedEventsEngine, ExpectedEventRow, expected_event, rows_to_frame
from .strata import StrataAggregator, StratumInput, build_strata
from .ahr import AverageHazardRatioEstimator, AHRResult, ahr, average_hazard_ratio
from .cutoff import CutoffSpec, CutoffResolver, expected_time, analysis_ahr
from .accrual import expected_accrual

__all__ = [
    # Errors
    'ExpectedEventsError', 'InvalidScheduleError', 'DegenerateInputError',
    'UnreachableTargetError', 'NonMonotonicDurationError',
    # Options
    'SearchOptions',
    # Schedules
    'PiecewiseSchedule', 'EnrollmentSchedule', 'HazardSchedule', 'Stratum',
    'enrollment_from_table', 'hazards_from_table', 'strata_from_table',
    # Alignment
    'IntervalAligner', 'align_breakpoints',
    # Expected events
    'ExpectedEventsEngine', 'ExpectedEventRow', 'expected_event', 'rows_to_frame',
    'StrataAggregator', 'StratumInput', 'build_strata',
    # Average hazard ratio
    'AverageHazardRatioEstimator', 'AHRResult', 'ahr', 'average_hazard_ratio',
    # Cutoffs
    'CutoffSpec', 'CutoffResolver', 'expected_time', 'analysis_ahr',
    # Accrual
    'expected_accrual',
]
