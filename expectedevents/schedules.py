"""
Piecewise constant rate schedules for enrollment, failure and dropout.

A schedule is an ordered list of segments, each with a duration and one or
more constant rates. Segments are right-open: segment j covers
[start_j, start_j + duration_j). The final segment either stops (rates are
zero afterwards) or is open-ended, in which case its duration is stored as
infinity and its rates apply indefinitely.
"""

from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Sequence, Tuple, Union

import numpy as np
import pandas as pd

from .exceptions import InvalidScheduleError

DEFAULT_STRATUM = "All"


@dataclass
class PiecewiseSchedule:
    """
    Piecewise constant rates on a time axis starting at 0.

    Attributes
    ----------
    durations : np.ndarray
        Segment durations; all positive, only the last may be infinite
    rates : np.ndarray
        Rates with shape (n_segments, n_columns)
    columns : tuple of str
        Name of each rate column
    open_ended : bool
        If True the last segment extends indefinitely
    stratum : str
        Stratum the schedule belongs to (used in error messages)
    """
    durations: np.ndarray
    rates: np.ndarray
    columns: Tuple[str, ...] = ("rate",)
    open_ended: bool = False
    stratum: str = DEFAULT_STRATUM

    def __post_init__(self):
        self.durations = np.atleast_1d(np.asarray(self.durations, dtype=float)).copy()
        rates = np.asarray(self.rates, dtype=float)
        if rates.ndim == 1:
            rates = rates.reshape(-1, 1)
        self.rates = rates.copy()
        self.columns = tuple(self.columns)
        self._validate()
        if self.open_ended:
            self.durations[-1] = np.inf

    def _validate(self):
        n = len(self.durations)
        if n == 0:
            raise InvalidScheduleError("Schedule must have at least one segment",
                                       stratum=self.stratum)
        if self.rates.shape != (n, len(self.columns)):
            raise InvalidScheduleError(
                f"Rates have shape {self.rates.shape}, expected {(n, len(self.columns))}",
                stratum=self.stratum)
        for j, d in enumerate(self.durations):
            last = j == n - 1
            if np.isnan(d) or d <= 0 or (np.isinf(d) and not last):
                raise InvalidScheduleError(f"Invalid segment duration {d}",
                                           stratum=self.stratum, segment=j)
        bad = ~np.isfinite(self.rates) | (self.rates < 0)
        if np.any(bad):
            j, c = np.argwhere(bad)[0]
            raise InvalidScheduleError(
                f"Invalid {self.columns[c]} {self.rates[j, c]}; rates must be finite and >= 0",
                stratum=self.stratum, segment=int(j))

    @property
    def n_segments(self) -> int:
        return len(self.durations)

    @property
    def starts(self) -> np.ndarray:
        return np.concatenate([[0.0], np.cumsum(self.durations[:-1])])

    @property
    def ends(self) -> np.ndarray:
        return self.starts + self.durations

    @property
    def end(self) -> float:
        """Time after which the schedule has no specified segment (inf if open-ended)."""
        return float(self.ends[-1])

    @property
    def breakpoints(self) -> np.ndarray:
        """Segment boundaries, including 0 and excluding an infinite end."""
        points = np.concatenate([[0.0], self.ends])
        return points[np.isfinite(points)]

    def column(self, name: str) -> np.ndarray:
        """Rates of one column, one value per segment."""
        try:
            return self.rates[:, self.columns.index(name)]
        except ValueError:
            raise KeyError(f"Schedule has no column {name!r}; columns are {self.columns}")

    def segment_index(self, t: Union[float, np.ndarray]) -> np.ndarray:
        """
        Index of the segment containing each time.

        Times at or past the end of a closed schedule map to n_segments.
        """
        t = np.atleast_1d(np.asarray(t, dtype=float))
        return np.searchsorted(self.ends, t, side='right')

    def rate_at(self, t: Union[float, np.ndarray], name: Optional[str] = None) -> np.ndarray:
        """
        Look up rates at the given times.

        Parameters
        ----------
        t : float or np.ndarray
            Times on this schedule's axis
        name : str, optional
            Column to return; defaults to the first column

        Returns
        -------
        np.ndarray
            Rate in force at each time, zero outside the schedule
        """
        values = self.column(name or self.columns[0])
        t = np.atleast_1d(np.asarray(t, dtype=float))
        idx = self.segment_index(t)
        inside = (t >= 0) & (idx < self.n_segments)
        out = np.zeros(len(t))
        out[inside] = values[idx[inside]]
        return out

    def cumulative(self, t: Union[float, np.ndarray], name: Optional[str] = None) -> np.ndarray:
        """
        Integral of a rate column from 0 to each time.

        For an enrollment schedule this is the expected number enrolled.
        """
        values = self.column(name or self.columns[0])
        t = np.atleast_1d(np.asarray(t, dtype=float))
        starts = self.starts
        finite = np.where(np.isfinite(self.durations), self.durations, 0.0)
        at_start = np.concatenate([[0.0], np.cumsum(finite * values)[:-1]])
        idx = np.minimum(self.segment_index(t), self.n_segments - 1)
        elapsed = np.clip(np.minimum(t, self.ends[idx]) - starts[idx], 0.0, None)
        out = at_start[idx] + values[idx] * elapsed
        return np.where(t > 0, out, 0.0)

    def rebased(self, origin: float, reverse: bool = False) -> 'PiecewiseSchedule':
        """
        Express the schedule on a shifted or reflected axis.

        With reverse=False the new axis is u = t - origin, keeping t >= origin.
        With reverse=True the new axis is u = origin - t for 0 <= t <= origin;
        applied to an enrollment schedule at analysis time origin, u is the
        follow-up time of a subject enrolled at calendar time t.

        Returns
        -------
        PiecewiseSchedule
            Plain schedule with the same columns
        """
        if origin < 0 or not np.isfinite(origin):
            raise ValueError("origin must be finite and non-negative")
        if reverse:
            if origin == 0:
                raise ValueError("Cannot reflect a schedule at origin 0")
            inner = self.breakpoints[(self.breakpoints > 0) & (self.breakpoints < origin)]
            points = np.concatenate([[0.0], inner, [origin]])
            mids = (points[:-1] + points[1:]) / 2
            rates = self._rates_at(mids)
            return PiecewiseSchedule(
                durations=np.diff(points)[::-1], rates=rates[::-1],
                columns=self.columns, open_ended=False, stratum=self.stratum)

        if origin >= self.end:
            return PiecewiseSchedule(
                durations=[np.inf], rates=np.zeros((1, len(self.columns))),
                columns=self.columns, open_ended=True, stratum=self.stratum)
        inner = self.breakpoints[self.breakpoints > origin]
        points = np.concatenate([[origin], inner])
        if self.open_ended:
            points = np.concatenate([points, [np.inf]])
        lefts = points[:-1]
        return PiecewiseSchedule(
            durations=np.diff(points), rates=self._rates_at(lefts),
            columns=self.columns, open_ended=self.open_ended, stratum=self.stratum)

    def refined(self, points: Sequence[float]) -> 'PiecewiseSchedule':
        """Split segments at additional breakpoints without changing any rate."""
        points = np.asarray(points, dtype=float)
        extra = points[(points > 0) & (points < self.end) & np.isfinite(points)]
        cuts = np.unique(np.concatenate([self.breakpoints, extra]))
        if self.open_ended:
            cuts = np.concatenate([cuts, [np.inf]])
        return self._evolve(durations=np.diff(cuts), rates=self._rates_at(cuts[:-1]))

    def _rates_at(self, t: np.ndarray) -> np.ndarray:
        return np.column_stack([self.rate_at(t, name) for name in self.columns])

    def _evolve(self, durations, rates) -> 'PiecewiseSchedule':
        return type(self)(durations=durations, rates=rates, columns=self.columns,
                          open_ended=self.open_ended, stratum=self.stratum)

    def to_frame(self) -> pd.DataFrame:
        """Rate table with stratum, duration and one column per rate."""
        df = pd.DataFrame(self.rates, columns=list(self.columns))
        df.insert(0, 'duration', self.durations)
        df.insert(0, 'stratum', self.stratum)
        return df


class EnrollmentSchedule(PiecewiseSchedule):
    """
    Enrollment rates on the calendar axis for one stratum.

    Enrollment stops after the last segment unless its duration is infinite.
    """

    def __post_init__(self):
        if np.isinf(np.asarray(self.durations, dtype=float)[-1:]).any():
            self.open_ended = True
        super().__post_init__()
        if not np.any(self.column('rate') > 0):
            raise InvalidScheduleError("Enrollment needs at least one positive rate",
                                       stratum=self.stratum)

    @classmethod
    def from_rates(cls, duration: Sequence[float], rate: Sequence[float],
                   stratum: str = DEFAULT_STRATUM) -> 'EnrollmentSchedule':
        return cls(durations=duration, rates=rate, columns=("rate",), stratum=stratum)

    def scaled(self, factor: float) -> 'EnrollmentSchedule':
        """Enrollment with every rate multiplied by factor (prevalence, allocation)."""
        if not factor > 0:
            raise InvalidScheduleError(f"Scaling factor must be positive, got {factor}",
                                       stratum=self.stratum)
        return self._evolve(durations=self.durations, rates=self.rates * factor)


class HazardSchedule(PiecewiseSchedule):
    """
    Failure rate, hazard ratio and dropout rate since enrollment for one stratum.

    The failure rate is the control arm hazard; the experimental arm hazard is
    fail_rate * hr. The last segment always applies indefinitely.
    """

    COLUMNS = ("fail_rate", "hr", "dropout_rate")
    ARMS = ("control", "experimental")

    def __post_init__(self):
        self.open_ended = True
        self.columns = self.COLUMNS
        super().__post_init__()
        hr = self.column('hr')
        if np.any(hr <= 0):
            j = int(np.argmax(hr <= 0))
            raise InvalidScheduleError(f"Hazard ratio must be positive, got {hr[j]}",
                                       stratum=self.stratum, segment=j)

    @classmethod
    def from_rates(cls, duration: Sequence[float], fail_rate: Sequence[float],
                   hr: Optional[Sequence[float]] = None,
                   dropout_rate: Optional[Sequence[float]] = None,
                   stratum: str = DEFAULT_STRATUM) -> 'HazardSchedule':
        n = len(np.atleast_1d(duration))
        hr = np.ones(n) if hr is None else hr
        dropout_rate = np.zeros(n) if dropout_rate is None else dropout_rate
        rates = np.column_stack([np.broadcast_to(np.asarray(x, dtype=float), (n,))
                                 for x in (fail_rate, hr, dropout_rate)])
        return cls(durations=duration, rates=rates, stratum=stratum)

    def arm_rates(self, arm: str) -> Tuple[np.ndarray, np.ndarray]:
        """
        Failure and dropout rates for one arm.

        Returns
        -------
        tuple
            (failure rate, dropout rate) per segment
        """
        if arm not in self.ARMS:
            raise ValueError(f"arm must be one of {self.ARMS}, got {arm!r}")
        fail = self.column('fail_rate')
        if arm == "experimental":
            fail = fail * self.column('hr')
        return fail, self.column('dropout_rate')


@dataclass
class Stratum:
    """A population subgroup and its share of enrollment."""
    name: str
    prevalence: float = 1.0

    def __post_init__(self):
        if not (0 < self.prevalence <= 1):
            raise InvalidScheduleError(
                f"Prevalence must be in (0, 1], got {self.prevalence}", stratum=self.name)


def _stratum_column(df: pd.DataFrame) -> pd.Series:
    if 'stratum' in df.columns:
        return df['stratum'].astype(str)
    return pd.Series(DEFAULT_STRATUM, index=df.index)


def _require(df: pd.DataFrame, columns: Sequence[str], table: str):
    missing = [c for c in columns if c not in df.columns]
    if missing:
        raise InvalidScheduleError(f"{table} table is missing columns {missing}")


def enrollment_from_table(enroll_rate: pd.DataFrame) -> Dict[str, EnrollmentSchedule]:
    """
    Build enrollment schedules from a rate table.

    Parameters
    ----------
    enroll_rate : pd.DataFrame
        Columns 'duration', 'rate' and optionally 'stratum'. Rows are in
        calendar order within each stratum.

    Returns
    -------
    dict
        Stratum name to EnrollmentSchedule, in order of first appearance
    """
    _require(enroll_rate, ['duration', 'rate'], "Enrollment")
    strata = _stratum_column(enroll_rate)
    schedules = {}
    for name, rows in enroll_rate.groupby(strata, sort=False):
        schedules[name] = EnrollmentSchedule.from_rates(
            rows['duration'].to_numpy(), rows['rate'].to_numpy(), stratum=name)
    return schedules


def hazards_from_table(fail_rate: pd.DataFrame) -> Dict[str, HazardSchedule]:
    """
    Build hazard schedules from a failure rate table.

    Parameters
    ----------
    fail_rate : pd.DataFrame
        Columns 'duration', 'fail_rate' and optionally 'hr' (default 1),
        'dropout_rate' (default 0) and 'stratum'.

    Returns
    -------
    dict
        Stratum name to HazardSchedule
    """
    _require(fail_rate, ['duration', 'fail_rate'], "Failure rate")
    strata = _stratum_column(fail_rate)
    schedules = {}
    for name, rows in fail_rate.groupby(strata, sort=False):
        schedules[name] = HazardSchedule.from_rates(
            duration=rows['duration'].to_numpy(),
            fail_rate=rows['fail_rate'].to_numpy(),
            hr=rows['hr'].to_numpy() if 'hr' in rows else None,
            dropout_rate=rows['dropout_rate'].to_numpy() if 'dropout_rate' in rows else None,
            stratum=name)
    return schedules


def strata_from_table(strata: Union[pd.DataFrame, Mapping[str, float], None],
                      names: Sequence[str] = ()) -> List[Stratum]:
    """
    Build strata with prevalence weights.

    Parameters
    ----------
    strata : pd.DataFrame, mapping or None
        Table with columns 'stratum' and 'prevalence', or a mapping from
        stratum name to prevalence. If None, every name in names gets weight 1
        and its enrollment rates are used as given.
    names : sequence of str
        Strata found in the rate tables

    Returns
    -------
    list of Stratum
    """
    if strata is None:
        return [Stratum(name=str(n)) for n in names]

    if isinstance(strata, pd.DataFrame):
        _require(strata, ['stratum', 'prevalence'], "Strata")
        weights = dict(zip(strata['stratum'].astype(str), strata['prevalence'].astype(float)))
    else:
        weights = {str(k): float(v) for k, v in strata.items()}

    total = sum(weights.values())
    if not np.isclose(total, 1.0, rtol=0, atol=1e-8):
        raise InvalidScheduleError(f"Stratum prevalences must sum to 1, got {total:.10g}")
    return [Stratum(name=k, prevalence=v) for k, v in weights.items()]
