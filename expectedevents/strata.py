"""
Aggregation of expected events over strata and treatment arms.
"""

from dataclasses import dataclass
import logging
import math
from typing import Dict, List, Mapping, Optional, Sequence, Union
import warnings

import numpy as np
import pandas as pd

from .alignment import IntervalAligner
from .engine import ExpectedEventsEngine, ExpectedEventRow
from .exceptions import InvalidScheduleError
from .schedules import (
    DEFAULT_STRATUM, EnrollmentSchedule, HazardSchedule, Stratum,
    enrollment_from_table, hazards_from_table, strata_from_table
)
from .utils import allocation

logger = logging.getLogger(__name__)

ARMS = HazardSchedule.ARMS


@dataclass
class StratumInput:
    """Schedules for one stratum, with enrollment before prevalence scaling."""
    stratum: Stratum
    enrollment: EnrollmentSchedule
    hazard: HazardSchedule


def _lookup(schedules: Dict[str, object], name: str, table: str):
    if name in schedules:
        return schedules[name]
    if DEFAULT_STRATUM in schedules:
        return schedules[DEFAULT_STRATUM]
    raise InvalidScheduleError(f"No {table} rates for stratum", stratum=name)


def build_strata(enroll_rate: pd.DataFrame,
                 fail_rate: pd.DataFrame,
                 strata: Union[pd.DataFrame, Mapping[str, float], None] = None) -> List[StratumInput]:
    """
    Match enrollment and failure rate tables by stratum.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Enrollment rates (columns: stratum, duration, rate)
    fail_rate : pd.DataFrame
        Failure rates (columns: stratum, duration, fail_rate, hr, dropout_rate)
    strata : pd.DataFrame or mapping, optional
        Stratum prevalences. A stratum without its own enrollment rows uses
        the rows of stratum 'All'. Every stratum with its own rates must
        have a prevalence. Without prevalences every stratum in the
        failure table must have its own enrollment rates, which are used as
        given.

    Returns
    -------
    list of StratumInput
    """
    enrollments = enrollment_from_table(enroll_rate)
    hazards = hazards_from_table(fail_rate)

    if strata is None:
        names = list(hazards)
        unused = [n for n in enrollments if n not in hazards and n != DEFAULT_STRATUM]
        if unused:
            raise InvalidScheduleError(f"Enrollment strata {unused} have no failure rates")
        if len(names) > 1 and any(n not in enrollments for n in names):
            missing = [n for n in names if n not in enrollments]
            raise InvalidScheduleError(
                f"Strata {missing} have no enrollment rates; supply strata prevalences "
                "to split overall enrollment")
    else:
        names = None

    result = []
    weighted = strata_from_table(strata, names or ())
    if strata is not None:
        listed = {s.name for s in weighted}
        for name in list(hazards) + list(enrollments):
            if name != DEFAULT_STRATUM and name not in listed:
                raise InvalidScheduleError("Stratum has rates but no prevalence", stratum=name)

    for stratum in weighted:
        if strata is not None and stratum.name in enrollments and stratum.name != DEFAULT_STRATUM:
            warnings.warn(f"Stratum {stratum.name!r} has its own enrollment rates; "
                          f"they are multiplied by its prevalence {stratum.prevalence:g}")
        result.append(StratumInput(
            stratum=stratum,
            enrollment=_lookup(enrollments, stratum.name, "enrollment"),
            hazard=_lookup(hazards, stratum.name, "failure"),
        ))
    return result


class StrataAggregator:
    """
    Expected events summed over strata and arms.

    Each stratum's enrollment is multiplied by its prevalence and by the arm
    allocation fraction. Hazard schedules of all strata are split on a common
    follow-up grid so rows from different strata line up.

    Parameters
    ----------
    strata_inputs : sequence of StratumInput
        One entry per stratum
    ratio : float
        Randomization ratio (experimental:control)
    aligner : IntervalAligner, optional
        Used for the common grid and inside each engine
    """

    def __init__(self, strata_inputs: Sequence[StratumInput], ratio: float = 1.0,
                 aligner: Optional[IntervalAligner] = None):
        if len(strata_inputs) == 0:
            raise InvalidScheduleError("At least one stratum is required")
        names = [s.stratum.name for s in strata_inputs]
        if len(set(names)) != len(names):
            raise InvalidScheduleError(f"Duplicate strata in {names}")
        self.strata_inputs = list(strata_inputs)
        self.ratio = ratio
        self.allocation = dict(zip(ARMS, allocation(ratio)))
        self.aligner = aligner or IntervalAligner()

    def common_grid(self, total_duration: float) -> np.ndarray:
        """Union of every stratum's hazard breakpoints on [0, total_duration]."""
        return self.aligner.align([s.hazard for s in self.strata_inputs], total_duration)

    def rows(self, total_duration: float) -> List[ExpectedEventRow]:
        """
        Engine rows for every stratum and arm on the common grid.

        Returns
        -------
        list of ExpectedEventRow
            Ordered by stratum, then arm, then interval
        """
        grid = self.common_grid(total_duration)
        rows = []
        for s in self.strata_inputs:
            hazard = s.hazard.refined(grid)
            for arm in ARMS:
                enrollment = s.enrollment.scaled(s.stratum.prevalence * self.allocation[arm])
                engine = ExpectedEventsEngine(enrollment, hazard, arm=arm, aligner=self.aligner)
                rows.extend(engine.rows(total_duration))
        return rows

    def segment_table(self, total_duration: float) -> pd.DataFrame:
        """
        Expected events by stratum and common-grid interval, arms side by side.

        Returns
        -------
        pd.DataFrame
            Columns Stratum, t, t_end, HR, control, experimental, Events,
            time_at_risk
        """
        records = {}
        for r in self.rows(total_duration):
            key = (r.stratum, r.interval_start)
            rec = records.setdefault(key, {
                'Stratum': r.stratum,
                't': r.interval_start,
                't_end': r.interval_end,
                'HR': r.hazard_ratio,
                'control': 0.0,
                'experimental': 0.0,
                'time_at_risk': 0.0,
            })
            rec[r.arm] += r.expected_events
            rec['time_at_risk'] += r.expected_time_at_risk

        table = pd.DataFrame(list(records.values()),
                             columns=['Stratum', 't', 't_end', 'HR', 'control',
                                      'experimental', 'time_at_risk'])
        table.insert(6, 'Events', table['control'] + table['experimental'])
        return table

    def interval_totals(self, total_duration: float) -> pd.DataFrame:
        """Expected events per common-grid interval, summed over strata."""
        table = self.segment_table(total_duration)
        return (table.groupby(['t', 't_end'], as_index=False, sort=True)
                [['control', 'experimental', 'Events', 'time_at_risk']].sum())

    def total_events(self, total_duration: float) -> float:
        """Expected events over all strata and arms."""
        total = math.fsum(r.expected_events for r in self.rows(total_duration))
        logger.debug("T=%g: %.10g expected events over %d strata",
                     float(total_duration), total, len(self.strata_inputs))
        return total

    def enrollment_end(self) -> float:
        """Calendar time at which enrollment stops in every stratum (inf if never)."""
        return max(s.enrollment.end for s in self.strata_inputs)

    def asymptotic_events(self) -> float:
        """
        Expected events if follow-up continued indefinitely.

        Infinite when enrollment never stops. A subject still at risk after
        the last hazard breakpoint has an event with probability
        fail / (fail + dropout) in the open-ended segment.
        """
        if not np.isfinite(self.enrollment_end()):
            return np.inf
        total = []
        for s in self.strata_inputs:
            for arm in ARMS:
                fail, dropout = s.hazard.arm_rates(arm)
                widths = s.hazard.durations
                finite = np.where(np.isfinite(widths), widths, 0.0)
                x = (fail + dropout) * finite
                survival = np.exp(-np.concatenate([[0.0], np.cumsum(x)[:-1]]))
                rate = fail + dropout
                with np.errstate(divide='ignore', invalid='ignore'):
                    share = np.where(rate > 0, fail / rate, 0.0)
                p_event = survival * np.where(np.isfinite(widths), -np.expm1(-x),
                                              (rate > 0).astype(float)) * share
                enrolled = s.enrollment.cumulative(s.enrollment.end)[0]
                total.append(enrolled * s.stratum.prevalence * self.allocation[arm]
                             * p_event.sum())
        return math.fsum(total)
