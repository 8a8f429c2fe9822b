import unittest

import pytest

from utils.errors import InvalidInput, InvalidPeriodFormat
from utils.escalation import escalate, indexation_factor
from utils.periods import Period, parse_period, quarter_of_month, quarter_periods, year_range


class ParsePeriodTests(unittest.TestCase):
    def test_bare_year_as_int_or_string(self) -> None:
        self.assertEqual(parse_period(2030), Period(year=2030))
        self.assertEqual(parse_period("2030"), Period(year=2030))
        self.assertEqual(parse_period("2030").fraction, 1.0)

    def test_quarter_string(self) -> None:
        period = parse_period("2031-Q3")
        self.assertEqual(period, Period(year=2031, quarter=3))
        self.assertEqual(period.granularity, "quarterly")
        self.assertEqual(period.fraction, 0.25)
        self.assertEqual(period.key, "2031-Q3")

    def test_month_string(self) -> None:
        period = parse_period("7/01/2029")
        self.assertEqual(period, Period(year=2029, month=7))
        self.assertAlmostEqual(period.fraction, 1.0 / 12.0)
        self.assertEqual(period.key, "07/01/2029")

    def test_period_instances_pass_through(self) -> None:
        period = Period(year=2028, quarter=1)
        self.assertIs(parse_period(period), period)


@pytest.mark.parametrize("value", ["2025-Q5", "2025-13", "13/01/2025", "Q1-2025", "", "year", True, 20.5])
def test_invalid_period_formats_raise(value) -> None:
    with pytest.raises(InvalidPeriodFormat) as excinfo:
        parse_period(value)
    assert isinstance(excinfo.value, InvalidInput)
    assert "Invalid time interval format" in str(excinfo.value)


def test_period_helpers() -> None:
    assert [quarter_of_month(m) for m in (1, 3, 4, 9, 12)] == [1, 1, 2, 3, 4]
    assert year_range(2025, 2027) == [2025, 2026, 2027]
    assert quarter_periods([2025])[-1] == "2025-Q4"
    assert len(quarter_periods([2025, 2026])) == 8


class EscalationTests(unittest.TestCase):
    def test_same_year_is_identity(self) -> None:
        self.assertEqual(escalate(80.0, 2025, 2025, 2.5), 80.0)

    def test_compounds_forward_and_backward(self) -> None:
        self.assertAlmostEqual(escalate(100.0, 2027, 2025, 2.5), 100.0 * 1.025**2)
        self.assertAlmostEqual(escalate(100.0, 2024, 2025, 2.5), 100.0 / 1.025)

    def test_missing_inputs_leave_price_unchanged(self) -> None:
        self.assertEqual(escalate(100.0, 2030, None, 2.5), 100.0)
        self.assertEqual(escalate(100.0, 2030, 2025, 0.0), 100.0)
        self.assertEqual(escalate(100.0, 2030, 2025, None), 100.0)
        self.assertEqual(escalate(0.0, 2030, 2025, 2.5), 0.0)

    def test_indexation_factor(self) -> None:
        self.assertEqual(indexation_factor(3.0, 2025, 2025), 1.0)
        self.assertAlmostEqual(indexation_factor(3.0, 2028, 2025), 1.03**3)


if __name__ == "__main__":
    unittest.main()
