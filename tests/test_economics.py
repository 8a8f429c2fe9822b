import unittest

from utils.economics import (
    NO_DEBT_SERVICE_DSCR,
    amortization_payment,
    calculate_dscr,
    calculate_irr,
    remaining_balance,
)
from utils.errors import InvalidInput, NotConverged


class AmortizationTests(unittest.TestCase):
    def test_level_payment_matches_annuity_formula(self) -> None:
        payment = amortization_payment(100.0, 0.06, 10)
        self.assertAlmostEqual(payment, 13.586795822, places=6)

    def test_zero_rate_repays_straight_line(self) -> None:
        self.assertAlmostEqual(amortization_payment(100.0, 0.0, 4), 25.0)

    def test_zero_principal_has_no_payment(self) -> None:
        self.assertEqual(amortization_payment(0.0, 0.06, 10), 0.0)

    def test_non_positive_tenor_raises(self) -> None:
        with self.assertRaises(InvalidInput):
            amortization_payment(100.0, 0.06, 0)

    def test_remaining_balance_closed_form(self) -> None:
        principal, rate, tenor = 100.0, 0.06, 10
        payment = amortization_payment(principal, rate, tenor)
        balance = principal
        for _ in range(3):
            balance -= payment - balance * rate
        self.assertAlmostEqual(remaining_balance(principal, rate, tenor, 3), balance, places=9)
        self.assertEqual(remaining_balance(principal, rate, tenor, 0), principal)
        self.assertEqual(remaining_balance(principal, rate, tenor, 10), 0.0)
        self.assertAlmostEqual(remaining_balance(principal, 0.0, tenor, 5), 50.0)


class DscrTests(unittest.TestCase):
    def test_ratio_of_cash_flow_to_debt_service(self) -> None:
        self.assertAlmostEqual(calculate_dscr(13.5, 10.0), 1.35)

    def test_no_debt_service_returns_sentinel(self) -> None:
        self.assertEqual(calculate_dscr(10.0, 0.0), NO_DEBT_SERVICE_DSCR)


class IrrTests(unittest.TestCase):
    def test_bond_like_flows_recover_coupon_rate(self) -> None:
        flows = [-100.0] + [10.0] * 9 + [110.0]
        irr = calculate_irr(flows)
        self.assertIsInstance(irr, float)
        self.assertAlmostEqual(irr, 0.10, places=6)

    def test_irr_zeroes_npv(self) -> None:
        flows = [-250.0, 30.0, 45.0, 60.0, 60.0, 60.0, 60.0, 40.0]
        irr = calculate_irr(flows)
        self.assertIsInstance(irr, float)
        npv = sum(cf / (1.0 + irr) ** idx for idx, cf in enumerate(flows))
        self.assertAlmostEqual(npv, 0.0, places=5)

    def test_all_positive_flows_do_not_converge(self) -> None:
        with self.assertLogs("utils.economics", level="WARNING"):
            result = calculate_irr([10.0, 10.0, 10.0])
        self.assertIsInstance(result, NotConverged)
        self.assertFalse(result)
        self.assertEqual(result.solver, "irr")

    def test_iteration_limit_reports_last_estimate(self) -> None:
        with self.assertLogs("utils.economics", level="WARNING"):
            result = calculate_irr([-100.0, 60.0, 60.0], max_iterations=1, tolerance=1e-15)
        self.assertIsInstance(result, NotConverged)
        self.assertEqual(result.iterations, 1)
        self.assertIsNotNone(result.last_estimate)


if __name__ == "__main__":
    unittest.main()
