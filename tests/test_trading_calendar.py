"""
Unit Tests for Trading Calendar Gap Detection
"""

import random
import unittest
from datetime import date

import pandas as pd

from stocker.models import Gap
from stocker.trading_calendar import (
    count_weekdays_between,
    find_gaps,
    is_trading_day,
    next_weekday,
    previous_weekday,
    significant_gaps,
    weekday_span,
)
from tests.factories import weekdays


class TestWeekdayHelpers(unittest.TestCase):
    """Unit tests for weekday arithmetic"""

    def test_is_trading_day(self):
        """Test weekends are not trading days"""
        self.assertTrue(is_trading_day(date(2024, 1, 5)))   # Friday
        self.assertFalse(is_trading_day(date(2024, 1, 6)))  # Saturday
        self.assertFalse(is_trading_day(date(2024, 1, 7)))  # Sunday

    def test_next_and_previous_weekday_skip_weekends(self):
        """Test stepping across a weekend"""
        self.assertEqual(next_weekday(date(2024, 1, 5)), date(2024, 1, 8))
        self.assertEqual(previous_weekday(date(2024, 1, 8)), date(2024, 1, 5))

    def test_count_weekdays_between_excludes_endpoints(self):
        """Test the open interval count"""
        self.assertEqual(count_weekdays_between(date(2024, 1, 5), date(2024, 1, 10)), 2)
        self.assertEqual(count_weekdays_between(date(2024, 1, 5), date(2024, 1, 8)), 0)
        self.assertEqual(count_weekdays_between(date(2024, 1, 8), date(2024, 1, 9)), 0)
        self.assertEqual(count_weekdays_between(date(2024, 1, 9), date(2024, 1, 9)), 0)

    def test_weekday_span_includes_endpoints(self):
        """Test the closed interval count"""
        self.assertEqual(weekday_span(date(2024, 1, 1), date(2024, 1, 5)), 5)
        self.assertEqual(weekday_span(date(2024, 1, 1), date(2024, 1, 14)), 10)
        self.assertEqual(weekday_span(date(2024, 1, 5), date(2024, 1, 1)), 0)


class TestFindGaps(unittest.TestCase):
    """Unit tests for find_gaps"""

    def test_friday_to_wednesday(self):
        """Test a two-day gap over a weekend"""
        gaps = find_gaps([date(2024, 1, 5), date(2024, 1, 10)])

        self.assertEqual(gaps, [Gap(start=date(2024, 1, 8), end=date(2024, 1, 9), days=2)])

    def test_weekend_only_is_not_a_gap(self):
        """Test Friday followed by Monday"""
        self.assertEqual(find_gaps([date(2024, 1, 5), date(2024, 1, 8)]), [])

    def test_short_inputs(self):
        """Test empty and single-date sequences"""
        self.assertEqual(find_gaps([]), [])
        self.assertEqual(find_gaps([date(2024, 1, 5)]), [])

    def test_contiguous_weekdays(self):
        """Test a full month of weekdays has no gaps"""
        self.assertEqual(find_gaps(weekdays("2024-01-01", "2024-01-31")), [])

    def test_accepts_datetime_index(self):
        """Test a series index is accepted directly"""
        index = pd.DatetimeIndex(["2024-01-02", "2024-01-03", "2024-01-05"], name="date")
        gaps = find_gaps(index)

        self.assertEqual(len(gaps), 1)
        self.assertEqual(gaps[0].start, date(2024, 1, 4))
        self.assertEqual(gaps[0].end, date(2024, 1, 4))
        self.assertEqual(gaps[0].days, 1)

    def test_multiple_gaps_in_order(self):
        """Test several gaps are reported in date order"""
        dates = [date(2024, 1, 2), date(2024, 1, 4), date(2024, 1, 5), date(2024, 1, 10)]
        gaps = find_gaps(dates)

        self.assertEqual([gap.start for gap in gaps], [date(2024, 1, 3), date(2024, 1, 8)])
        self.assertEqual([gap.days for gap in gaps], [1, 2])

    def test_gap_days_account_for_every_weekday(self):
        """Test stored dates plus gap days cover the whole weekday span"""
        rng = random.Random(7)
        all_days = weekdays("2023-01-02", "2023-12-29")

        for _ in range(20):
            sample = sorted(rng.sample(all_days, rng.randint(2, 120)))
            gaps = find_gaps(sample)

            self.assertEqual(
                weekday_span(sample[0], sample[-1]),
                len(sample) + sum(gap.days for gap in gaps)
            )
            for gap in gaps:
                self.assertTrue(is_trading_day(gap.start))
                self.assertTrue(is_trading_day(gap.end))
                self.assertLessEqual(gap.start, gap.end)

    def test_significant_gaps(self):
        """Test only gaps longer than ten trading days are significant"""
        dates = [date(2024, 1, 2), date(2024, 1, 17), date(2024, 1, 18), date(2024, 2, 5)]
        gaps = find_gaps(dates)

        self.assertEqual([gap.days for gap in gaps], [10, 11])
        self.assertEqual([gap.days for gap in significant_gaps(gaps)], [11])
        self.assertFalse(gaps[0].significant)
        self.assertTrue(gaps[1].significant)


if __name__ == "__main__":
    unittest.main()
