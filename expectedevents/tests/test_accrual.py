"""
Tests for expected cumulative enrollment.
"""

import pytest
import numpy as np
import pandas as pd

from expectedevents import expected_accrual, InvalidScheduleError


@pytest.fixture
def enroll_rate():
    return pd.DataFrame({'duration': [3, 3, 18], 'rate': [5, 10, 20]})


class TestExpectedAccrual:
    """Tests for expected_accrual()."""

    def test_piecewise_accrual(self, enroll_rate):
        """Test cumulative enrollment at and between breakpoints."""
        np.testing.assert_allclose(expected_accrual(enroll_rate, [0, 1.5, 3, 6, 24]),
                                   [0, 7.5, 15, 45, 405])

    def test_flat_after_enrollment_ends(self, enroll_rate):
        """Test that no subjects are added after the last segment."""
        np.testing.assert_allclose(expected_accrual(enroll_rate, [24, 30, 100]), 405)

    def test_scalar_time(self, enroll_rate):
        """Test a single time."""
        result = expected_accrual(enroll_rate, 4)
        assert result.shape == (1,)
        assert result[0] == pytest.approx(25)

    def test_strata_enrollment_summed(self):
        """Test that stratum-specific enrollment is added up."""
        enroll_rate = pd.DataFrame({'stratum': ['A', 'B', 'B'], 'duration': [10, 5, 5],
                                    'rate': [2, 1, 3]})
        np.testing.assert_allclose(expected_accrual(enroll_rate, [5, 10]), [15, 40])

    def test_prevalence_splits_overall_enrollment(self, enroll_rate):
        """Test that prevalences of an overall rate add back to the total."""
        overall = expected_accrual(enroll_rate, [6, 12])
        split = expected_accrual(enroll_rate, [6, 12], strata={'A': .25, 'B': .75})
        np.testing.assert_allclose(split, overall)

    def test_missing_enrollment(self):
        """Test a weighted stratum with no enrollment rows."""
        enroll_rate = pd.DataFrame({'stratum': ['A'], 'duration': [10], 'rate': [2]})
        with pytest.raises(InvalidScheduleError):
            expected_accrual(enroll_rate, [5], strata={'A': .5, 'B': .5})

    def test_negative_time(self, enroll_rate):
        """Test that times before the start of enrollment are rejected."""
        with pytest.raises(ValueError):
            expected_accrual(enroll_rate, [-1, 2])


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
