"""
Average hazard ratio and statistical information from expected events.

The average hazard ratio is the geometric mean of the piecewise hazard
ratios weighted by expected events:

    AHR = exp(sum(E_m * log(HR_m)) / sum(E_m))

Under the null hypothesis the information for log(HR) is approximated by
sum(E_m) * q_c * q_e, where q_c and q_e are the arm allocation fractions.
Under the alternative each stratum and segment contributes
1 / (1 / E_c + 1 / E_e), using the expected events on each arm.
"""

from dataclasses import dataclass
import math
from typing import List, Mapping, Sequence, Union

import numpy as np
import pandas as pd

from .exceptions import DegenerateInputError
from .strata import StrataAggregator, build_strata
from .utils import as_durations


@dataclass(frozen=True)
class AHRResult:
    """Summary at one analysis time."""
    total_duration: float
    total_expected_events: float
    ahr: float
    info_null: float
    info_alt: float


def _segment_info(control: np.ndarray, experimental: np.ndarray) -> np.ndarray:
    """Alternative hypothesis information; zero when either arm has no events."""
    both = (control > 0) & (experimental > 0)
    out = np.zeros(len(control))
    out[both] = control[both] * experimental[both] / (control[both] + experimental[both])
    return out


def average_hazard_ratio(events: Sequence[float], hr: Sequence[float]) -> float:
    """
    Event-weighted geometric mean of hazard ratios.

    Parameters
    ----------
    events : sequence of float
        Expected events per segment
    hr : sequence of float
        Hazard ratio per segment

    Returns
    -------
    float
    """
    events = np.asarray(events, dtype=float)
    hr = np.asarray(hr, dtype=float)
    total = math.fsum(events)
    if not total > 0:
        raise DegenerateInputError(
            "Total expected events is zero; the average hazard ratio is undefined")
    return math.exp(math.fsum(events * np.log(hr)) / total)


class AverageHazardRatioEstimator:
    """
    AHR and information for one or more analysis times.

    Parameters
    ----------
    aggregator : StrataAggregator
        Source of expected events by stratum, arm and segment
    """

    def __init__(self, aggregator: StrataAggregator):
        self.aggregator = aggregator
        q_c, q_e = aggregator.allocation['control'], aggregator.allocation['experimental']
        self._null_weight = q_c * q_e

    def detail(self, total_duration: Union[float, Sequence[float]]) -> pd.DataFrame:
        """
        Expected events and information per analysis time, stratum and segment.

        Returns
        -------
        pd.DataFrame
            Columns Time, Stratum, t, HR, Events, info, info0
        """
        frames = []
        for duration in as_durations(total_duration):
            table = self.aggregator.segment_table(duration)
            frames.append(pd.DataFrame({
                'Time': duration,
                'Stratum': table['Stratum'],
                't': table['t'],
                'HR': table['HR'],
                'Events': table['Events'],
                'info': _segment_info(table['control'].to_numpy(),
                                      table['experimental'].to_numpy()),
                'info0': table['Events'] * self._null_weight,
            }))
        return pd.concat(frames, ignore_index=True)

    def estimate(self, total_duration: Union[float, Sequence[float]]) -> List[AHRResult]:
        """One AHRResult per analysis time, each computed independently."""
        return [self._summarize(float(duration), self.detail(duration))
                for duration in as_durations(total_duration)]

    def _summarize(self, duration: float, rows: pd.DataFrame) -> AHRResult:
        events = rows['Events'].to_numpy()
        try:
            value = average_hazard_ratio(events, rows['HR'].to_numpy())
        except DegenerateInputError:
            raise DegenerateInputError(
                f"Total expected events is zero at duration {duration:g}; "
                "the average hazard ratio is undefined")
        return AHRResult(
            total_duration=duration,
            total_expected_events=math.fsum(events),
            ahr=value,
            info_null=math.fsum(rows['info0']),
            info_alt=math.fsum(rows['info']),
        )

    def table(self, total_duration: Union[float, Sequence[float]],
              simple: bool = True) -> pd.DataFrame:
        """
        Output table keyed by Time.

        Parameters
        ----------
        total_duration : float or sequence of float
            Analysis times
        simple : bool
            If True one row per time (Time, AHR, Events, info, info0);
            otherwise the detail rows

        Returns
        -------
        pd.DataFrame
        """
        if not simple:
            return self.detail(total_duration)
        results = self.estimate(total_duration)
        return pd.DataFrame({
            'Time': [r.total_duration for r in results],
            'AHR': [r.ahr for r in results],
            'Events': [r.total_expected_events for r in results],
            'info': [r.info_alt for r in results],
            'info0': [r.info_null for r in results],
        })


def ahr(enroll_rate: pd.DataFrame,
        fail_rate: pd.DataFrame,
        total_duration: Union[float, Sequence[float]],
        ratio: float = 1.0,
        simple: bool = True,
        strata: Union[pd.DataFrame, Mapping[str, float], None] = None) -> pd.DataFrame:
    """
    Average hazard ratio under non-proportional hazards.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Enrollment rates (columns: stratum, duration, rate)
    fail_rate : pd.DataFrame
        Control failure rates, hazard ratios and dropout rates since
        enrollment (columns: stratum, duration, fail_rate, hr, dropout_rate)
    total_duration : float or sequence of float
        Analysis times measured from the start of enrollment
    ratio : float
        Randomization ratio (experimental:control)
    simple : bool
        If True return one summary row per analysis time
    strata : pd.DataFrame or mapping, optional
        Stratum prevalences (columns: stratum, prevalence)

    Returns
    -------
    pd.DataFrame
        Columns Time, AHR, Events, info, info0 if simple, otherwise
        Time, Stratum, t, HR, Events, info, info0

    Example
    -------
    >>> enroll_rate = pd.DataFrame({'duration': [2, 2, 10], 'rate': [3, 6, 9]})
    >>> fail_rate = pd.DataFrame({'duration': [3, 100], 'fail_rate': [np.log(2) / 9] * 2,
    ...                           'hr': [0.9, 0.6], 'dropout_rate': [0.001] * 2})
    >>> ahr(enroll_rate, fail_rate, total_duration=[18, 24, 30])
    """
    aggregator = StrataAggregator(build_strata(enroll_rate, fail_rate, strata), ratio=ratio)
    return AverageHazardRatioEstimator(aggregator).table(total_duration, simple=simple)
