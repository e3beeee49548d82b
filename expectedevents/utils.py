"""
Utility functions used throughout the expectedevents package.
"""

from typing import Sequence, Tuple, Union

import numpy as np

from .exceptions import NonMonotonicDurationError

# Below this value of rate * duration the exponential integrals are
# evaluated from their Taylor series.
SERIES_CUTOFF = 1e-3


def survival_integral(x: Union[float, np.ndarray]) -> np.ndarray:
    """
    Evaluate (1 - exp(-x)) / x, with its limit 1 at x = 0.

    Multiplied by a segment length D this is the expected time spent at risk
    in the segment by a subject at risk at its start, when the combined
    failure and dropout rate is x / D.

    Parameters
    ----------
    x : float or np.ndarray
        Non-negative rate times duration

    Returns
    -------
    np.ndarray
    """
    x = np.atleast_1d(np.asarray(x, dtype=float))
    out = np.empty_like(x)
    small = x < SERIES_CUTOFF
    xs = x[small]
    out[small] = 1 - xs / 2 + xs ** 2 / 6 - xs ** 3 / 24 + xs ** 4 / 120
    xl = x[~small]
    out[~small] = -np.expm1(-xl) / xl
    return out


def entry_integral(x: Union[float, np.ndarray]) -> np.ndarray:
    """
    Evaluate (x - 1 + exp(-x)) / x**2, with its limit 1/2 at x = 0.

    Multiplied by D**2 this is the time at risk accumulated in a segment of
    length D by subjects entering uniformly (unit density) over the segment.
    """
    x = np.atleast_1d(np.asarray(x, dtype=float))
    out = np.empty_like(x)
    small = x < SERIES_CUTOFF
    xs = x[small]
    out[small] = 0.5 - xs / 6 + xs ** 2 / 24 - xs ** 3 / 120 + xs ** 4 / 720
    xl = x[~small]
    out[~small] = (xl + np.expm1(-xl)) / xl ** 2
    return out


def allocation(ratio: float) -> Tuple[float, float]:
    """
    Proportion of subjects on each arm.

    Parameters
    ----------
    ratio : float
        Randomization ratio (experimental:control)

    Returns
    -------
    tuple
        (control fraction, experimental fraction)
    """
    if not np.isfinite(ratio) or ratio <= 0:
        raise ValueError("ratio must be positive and finite")
    q_e = ratio / (1 + ratio)
    return (1 - q_e, q_e)


def as_durations(total_duration: Union[float, Sequence[float]]) -> np.ndarray:
    """
    Coerce a scalar or sequence of trial durations to a 1-d array.

    Parameters
    ----------
    total_duration : float or sequence of float
        Durations from the start of enrollment

    Returns
    -------
    np.ndarray
    """
    durations = np.atleast_1d(np.asarray(total_duration, dtype=float))
    if durations.ndim != 1 or len(durations) == 0:
        raise NonMonotonicDurationError("total_duration must be a scalar or a non-empty sequence")
    if np.any(~np.isfinite(durations)) or np.any(durations <= 0):
        raise NonMonotonicDurationError(
            f"total_duration must be positive and finite, got {durations.tolist()}"
        )
    return durations
