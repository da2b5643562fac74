import unittest
from dataclasses import replace
from decimal import Decimal

from matching_engine import OrderMatcher, is_marketable, match
from portfolio import PortfolioLedger, place_limit_order, place_market_order
from testing_helpers import make_market


class TestMatching(unittest.TestCase):
    def setUp(self):
        self.cfg, self.market, self.engine = make_market({"X": 10.0, "Y": 50.0})
        ledger = PortfolioLedger.new(10000.0, self.cfg.asset_ids())
        ledger, _ = place_market_order(ledger, "X", "BUY", 100, 10.0)
        self.ledger = ledger
        self.matcher = OrderMatcher()

    def _batch(self, **prices):
        return tuple(replace(a, current_price=prices.get(a.id, a.current_price)) for a in self.market.snapshot())

    def test_thresholds_are_inclusive(self):
        ledger, buy = place_limit_order(self.ledger, "X", "BUY", 1, 9.0)
        ledger, sell = place_limit_order(ledger, "X", "SELL", 1, 11.0)
        self.assertTrue(is_marketable(buy, 9.0))
        self.assertFalse(is_marketable(buy, 9.01))
        self.assertTrue(is_marketable(sell, 11.0))
        self.assertFalse(is_marketable(sell, 10.99))

    def test_match_splits_in_placement_order(self):
        ledger, a = place_limit_order(self.ledger, "X", "BUY", 1, 9.0)
        ledger, b = place_limit_order(ledger, "X", "SELL", 5, 10.5)
        ledger, c = place_limit_order(ledger, "X", "BUY", 2, 9.5)
        executed, remaining = match(ledger.open_orders, self._batch(X=9.2))
        self.assertEqual(executed, [c])
        self.assertEqual(remaining, [a, b])

    def test_fill_happens_at_target_not_market(self):
        ledger, order = place_limit_order(self.ledger, "X", "BUY", 10, 9.0)
        ledger, fills = self.matcher.run(ledger, self._batch(X=8.0))
        self.assertEqual(len(fills), 1)
        self.assertEqual(fills[0].transaction.price, Decimal("9"))
        self.assertEqual(ledger.open_orders, ())
        # 100 @ 10 and 10 @ 9
        self.assertEqual(ledger.holding("X").quantity, 110)
        self.assertEqual(ledger.holding("X").avg_cost, Decimal("1090") / 110)
        self.assertEqual(fills[0].describe(), "Limit BUY filled: 10 Asset X @ $9.00")

    def test_unknown_asset_stays_resting(self):
        ledger, order = place_limit_order(self.ledger, "Z", "BUY", 1, 5.0)
        after, fills = self.matcher.run(ledger, self._batch())
        self.assertEqual(fills, [])
        self.assertEqual(after.open_orders, (order,))

    def test_no_orders_is_a_no_op(self):
        after, fills = self.matcher.run(self.ledger, self._batch(X=1.0))
        self.assertIs(after, self.ledger)
        self.assertEqual(fills, [])

    def test_each_order_fills_only_once(self):
        ledger, _ = place_limit_order(self.ledger, "X", "SELL", 40, 12.0)
        batch = self._batch(X=12.5)
        ledger, fills = self.matcher.run(ledger, batch)
        ledger, again = self.matcher.run(ledger, batch)
        self.assertEqual(len(fills), 1)
        self.assertEqual(again, [])
        self.assertEqual(len(ledger.transactions), 2)


if __name__ == "__main__":
    unittest.main()
