"""
Tests for piecewise rate schedules.
"""

import pytest
import numpy as np
import pandas as pd

from expectedevents import (
    PiecewiseSchedule, EnrollmentSchedule, HazardSchedule, Stratum,
    InvalidScheduleError, enrollment_from_table, hazards_from_table, strata_from_table
)


class TestPiecewiseSchedule:
    """Tests for lookup and integration of piecewise rates."""

    @pytest.fixture
    def closed(self):
        return PiecewiseSchedule(durations=[2, 3], rates=[1, 4])

    @pytest.fixture
    def open_ended(self):
        return PiecewiseSchedule(durations=[2, 3], rates=[1, 4], open_ended=True)

    def test_rate_at_is_right_continuous(self, closed):
        """Test that a breakpoint belongs to the segment it starts."""
        rates = closed.rate_at([0, 1.9, 2, 4.9, 5, 10])
        np.testing.assert_array_equal(rates, [1, 1, 4, 4, 0, 0])

    def test_open_ended_keeps_last_rate(self, open_ended):
        """Test that the last rate applies indefinitely."""
        assert open_ended.end == np.inf
        assert open_ended.rate_at(100)[0] == 4
        np.testing.assert_array_equal(open_ended.breakpoints, [0, 2])

    def test_cumulative(self, closed, open_ended):
        """Test integral of the rate."""
        np.testing.assert_allclose(closed.cumulative([0, 1, 2, 5, 6]), [0, 1, 2, 14, 14])
        np.testing.assert_allclose(open_ended.cumulative([6]), [18])

    def test_cumulative_negative_time(self, closed):
        """Test that nothing accumulates before time 0."""
        assert closed.cumulative(-1)[0] == 0

    def test_reflect(self, closed):
        """Test reflecting the schedule about an analysis time."""
        reflected = closed.rebased(6, reverse=True)
        np.testing.assert_allclose(reflected.durations, [1, 3, 2])
        np.testing.assert_allclose(reflected.column('rate'), [0, 4, 1])
        assert reflected.end == 6

    def test_shift(self, closed, open_ended):
        """Test shifting the origin forward."""
        shifted = closed.rebased(1)
        np.testing.assert_allclose(shifted.durations, [1, 3])
        np.testing.assert_allclose(shifted.column('rate'), [1, 4])

        shifted_open = open_ended.rebased(1)
        assert shifted_open.open_ended
        np.testing.assert_allclose(shifted_open.durations, [1, np.inf])

    def test_shift_past_end(self, closed):
        """Test that a closed schedule shifted past its end is zero."""
        shifted = closed.rebased(10)
        assert shifted.rate_at(0)[0] == 0
        assert shifted.rate_at(50)[0] == 0

    def test_reflect_at_zero(self, closed):
        """Test that reflection needs a positive origin."""
        with pytest.raises(ValueError):
            closed.rebased(0, reverse=True)

    def test_invalid_duration(self):
        """Test that a non-positive duration names the segment."""
        with pytest.raises(InvalidScheduleError) as err:
            PiecewiseSchedule(durations=[2, 0, 3], rates=[1, 1, 1], stratum='A')
        assert err.value.segment == 1
        assert err.value.stratum == 'A'

    def test_infinite_duration_not_last(self):
        """Test that only the last segment may be infinite."""
        with pytest.raises(InvalidScheduleError):
            PiecewiseSchedule(durations=[np.inf, 3], rates=[1, 1])

    def test_negative_rate(self):
        """Test that negative rates are rejected."""
        with pytest.raises(InvalidScheduleError, match="rates must be finite"):
            PiecewiseSchedule(durations=[2, 3], rates=[1, -1])


class TestEnrollmentAndHazard:
    """Tests for enrollment and hazard schedules."""

    def test_enrollment_needs_positive_rate(self):
        """Test that enrollment with only zero rates is rejected."""
        with pytest.raises(InvalidScheduleError, match="positive rate"):
            EnrollmentSchedule.from_rates([2, 3], [0, 0])

    def test_enrollment_infinite_last_segment(self):
        """Test that an infinite last duration means enrollment never stops."""
        enrollment = EnrollmentSchedule.from_rates([2, np.inf], [1, 3])
        assert enrollment.open_ended
        assert enrollment.cumulative(12)[0] == pytest.approx(32)

    def test_enrollment_scaled(self):
        """Test scaling enrollment rates."""
        enrollment = EnrollmentSchedule.from_rates([2, 3], [3, 6]).scaled(0.5)
        np.testing.assert_allclose(enrollment.column('rate'), [1.5, 3])

    def test_hazard_is_open_ended(self):
        """Test that the last hazard segment extends indefinitely."""
        hazard = HazardSchedule.from_rates([4, 3], [.03, .06], dropout_rate=[.001, .002])
        assert hazard.end == np.inf
        assert hazard.rate_at(1000, 'fail_rate')[0] == .06
        np.testing.assert_array_equal(hazard.column('hr'), [1, 1])

    def test_hazard_ratio_must_be_positive(self):
        """Test that a zero hazard ratio is a caller error."""
        with pytest.raises(InvalidScheduleError, match="Hazard ratio"):
            HazardSchedule.from_rates([4, 3], [.03, .06], hr=[1, 0])

    def test_arm_rates(self):
        """Test experimental failure rate is control rate times hr."""
        hazard = HazardSchedule.from_rates([3, 10], [.1, .1], hr=[1, .5], dropout_rate=.01)
        fail_c, drop_c = hazard.arm_rates('control')
        fail_e, drop_e = hazard.arm_rates('experimental')
        np.testing.assert_allclose(fail_c, [.1, .1])
        np.testing.assert_allclose(fail_e, [.1, .05])
        np.testing.assert_allclose(drop_e, drop_c)
        with pytest.raises(ValueError):
            hazard.arm_rates('placebo')

    def test_refined(self):
        """Test splitting a hazard schedule keeps its rates."""
        hazard = HazardSchedule.from_rates([4, 3], [.03, .06])
        refined = hazard.refined([1, 5, 20])
        np.testing.assert_allclose(refined.durations, [1, 3, 1, 15, np.inf])
        np.testing.assert_allclose(refined.column('fail_rate'), [.03, .03, .06, .06, .06])
        assert isinstance(refined, HazardSchedule)

    def test_to_frame(self):
        """Test conversion back to a rate table."""
        df = HazardSchedule.from_rates([4, 3], [.03, .06], stratum='B').to_frame()
        assert list(df.columns) == ['stratum', 'duration', 'fail_rate', 'hr', 'dropout_rate']
        assert (df['stratum'] == 'B').all()


class TestTables:
    """Tests for building schedules from rate tables."""

    def test_enrollment_without_stratum(self):
        """Test that a table without a stratum column is stratum 'All'."""
        schedules = enrollment_from_table(pd.DataFrame({'duration': [2, 10], 'rate': [3, 6]}))
        assert list(schedules) == ['All']

    def test_hazards_by_stratum(self):
        """Test grouping failure rates by stratum in table order."""
        fail_rate = pd.DataFrame({
            'stratum': ['High', 'High', 'Low'],
            'duration': [3, 100, 100],
            'fail_rate': [.1, .05, .02],
        })
        schedules = hazards_from_table(fail_rate)
        assert list(schedules) == ['High', 'Low']
        assert schedules['High'].n_segments == 2
        np.testing.assert_array_equal(schedules['Low'].column('dropout_rate'), [0])

    def test_missing_column(self):
        """Test that missing columns are reported."""
        with pytest.raises(InvalidScheduleError, match="missing columns"):
            enrollment_from_table(pd.DataFrame({'duration': [2]}))

    def test_strata_weights(self):
        """Test reading prevalences from a table."""
        strata = strata_from_table(pd.DataFrame({'stratum': ['A', 'B'], 'prevalence': [.25, .75]}))
        assert [s.name for s in strata] == ['A', 'B']
        assert strata[1].prevalence == .75

    def test_strata_weights_must_sum_to_one(self):
        """Test that prevalences not summing to 1 are rejected."""
        with pytest.raises(InvalidScheduleError, match="sum to 1"):
            strata_from_table({'A': .5, 'B': .6})

    def test_stratum_prevalence_range(self):
        """Test that prevalence must be in (0, 1]."""
        with pytest.raises(InvalidScheduleError):
            Stratum(name='A', prevalence=0)


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
