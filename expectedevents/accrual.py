"""
Expected cumulative enrollment under piecewise constant enrollment rates.
"""

from typing import Mapping, Sequence, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidScheduleError
from .schedules import DEFAULT_STRATUM, enrollment_from_table, strata_from_table


def expected_accrual(enroll_rate: pd.DataFrame,
                     times: Union[float, Sequence[float]],
                     strata: Union[pd.DataFrame, Mapping[str, float], None] = None) -> np.ndarray:
    """
    Expected number of subjects enrolled by each time.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Enrollment rates (columns: stratum, duration, rate)
    times : float or sequence of float
        Calendar times from start of enrollment
    strata : pd.DataFrame or mapping, optional
        Stratum prevalences; each stratum uses its own enrollment rows or,
        if it has none, the rows of stratum 'All', scaled by its prevalence

    Returns
    -------
    np.ndarray
        Expected enrollment, summed over strata

    Example
    -------
    >>> enroll_rate = pd.DataFrame({'duration': [3, 3, 18], 'rate': [5, 10, 20]})
    >>> expected_accrual(enroll_rate, [3, 6, 24])
    array([ 15.,  45., 405.])
    """
    times = np.atleast_1d(np.asarray(times, dtype=float))
    if np.any(times < 0):
        raise ValueError("times must be non-negative")
    enrollments = enrollment_from_table(enroll_rate)

    if strata is None:
        return np.sum([e.cumulative(times) for e in enrollments.values()], axis=0)

    total = np.zeros(len(times))
    for stratum in strata_from_table(strata):
        schedule = enrollments.get(stratum.name, enrollments.get(DEFAULT_STRATUM))
        if schedule is None:
            raise InvalidScheduleError("No enrollment rates for stratum", stratum=stratum.name)
        total += stratum.prevalence * schedule.cumulative(times)
    return total
