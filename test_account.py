import threading
import unittest
from dataclasses import replace
from decimal import Decimal

import notifications
from account import AccountSession
from errors import InsufficientFunds, InvalidSide, OrderNotFound, PersistenceUnavailable
from persistence import InMemoryLedgerStore, ledger_to_document
from portfolio import Holding
from testing_helpers import make_market


class FlakyStore(InMemoryLedgerStore):
    """In-memory store whose next `failures` saves raise."""

    def __init__(self, failures=0):
        super().__init__()
        self.failures = failures
        self.attempts = 0

    def _write(self, account_id, doc):
        self.attempts += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceUnavailable("store offline")
        super()._write(account_id, doc)


class TestGuestSession(unittest.TestCase):
    def setUp(self):
        self.cfg, self.market, self.engine = make_market({"X": 10.0})
        self.session = AccountSession(self.cfg, self.market).open()

    def tearDown(self):
        self.session.close()

    def test_guest_has_no_store(self):
        self.assertTrue(self.session.guest)
        self.assertEqual(self.session.ledger.cash_balance, Decimal("10000"))

    def test_market_order_executes_at_current_price(self):
        result = self.session.place_market_order("X", "BUY", 100)
        self.assertTrue(result.accepted)
        self.assertEqual(result.transaction.asset_name, "Asset X")
        self.assertEqual(self.session.ledger.cash_balance, Decimal("9000"))
        self.assertIs(result.ledger, self.session.ledger)

    def test_rejection_keeps_ledger_and_notifies(self):
        before = self.session.ledger
        result = self.session.place_limit_order("X", "BUY", 2000, 10.0)
        self.assertFalse(result.accepted)
        self.assertIsInstance(result.error, InsufficientFunds)
        self.assertIs(self.session.ledger, before)
        notes = self.session.notifier.history()
        self.assertEqual(notes[-1].severity, notifications.INFO)

    def test_unknown_asset_and_order_are_rejected(self):
        self.assertFalse(self.session.place_market_order("ZZZ", "BUY", 1).accepted)
        self.assertIsInstance(self.session.place_market_order("X", "HOLD", 1).error, InvalidSide)
        result = self.session.cancel_order("missing")
        self.assertFalse(result.accepted)
        self.assertIsInstance(result.error, OrderNotFound)

    def test_concurrent_requests_are_serialised(self):
        """
        Many threads buy at once. Every request sees the ledger committed by the
        one before it, so exactly the affordable number of orders succeed and no
        cash is lost or created.
        """
        results = [None] * 40
        barrier = threading.Barrier(len(results))

        def buy(i):
            barrier.wait()
            results[i] = self.session.place_market_order("X", "BUY", 30)

        threads = [threading.Thread(target=buy, args=(i,)) for i in range(len(results))]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        accepted = [r for r in results if r.accepted]
        # 10000 // 300 = 33 orders fit
        self.assertEqual(len(accepted), 33)
        ledger = self.session.ledger
        self.assertEqual(ledger.holding("X").quantity, 33 * 30)
        self.assertEqual(ledger.cash_balance, Decimal("100"))
        self.assertEqual(ledger.revision, 33)

    def test_limit_order_fills_on_matching_pass(self):
        self.session.place_market_order("X", "BUY", 100)
        placed = self.session.place_limit_order("X", "SELL", 50, 12.0)
        self.assertTrue(placed.accepted)
        self.engine.push("X", 12.5)
        fills = self.session.run_matching(self.market.advance())
        self.assertEqual([f.order.id for f in fills], [placed.order.id])
        self.assertEqual(self.session.ledger.cash_balance, Decimal("9600"))
        self.assertTrue(self.session.notifier.history()[-1].message.startswith("Limit SELL filled"))


class TestStoredSession(unittest.TestCase):
    def setUp(self):
        self.cfg, self.market, self.engine = make_market({"X": 10.0})

    def _session(self, store, **overrides):
        cfg = self.cfg
        if overrides:
            cfg = replace(cfg, **overrides)
        return AccountSession(cfg, self.market, account_id="acct-1", store=store)

    def test_first_open_saves_default_ledger(self):
        store = InMemoryLedgerStore()
        with self._session(store) as session:
            session.flush()
        ledger = store.load("acct-1", self.cfg.starting_cash, self.cfg.asset_ids())
        self.assertEqual(ledger.cash_balance, Decimal("10000"))

    def test_reopen_restores_saved_ledger(self):
        store = InMemoryLedgerStore()
        with self._session(store) as session:
            session.place_market_order("X", "BUY", 10)
            session.place_limit_order("X", "SELL", 4, 15.0)
            session.flush()
            saved = session.ledger
        with self._session(store) as session:
            self.assertEqual(session.ledger, saved)

    def test_failed_save_warns_and_keeps_change(self):
        store = FlakyStore(failures=10)
        session = self._session(store).open()
        try:
            result = session.place_market_order("X", "BUY", 10)
            session.flush()
            self.assertTrue(result.accepted)
            self.assertEqual(session.ledger.holding("X"), Holding(10, Decimal("10")))
            severities = [n.severity for n in session.notifier.history()]
            self.assertIn(notifications.WARNING, severities)
        finally:
            session.close()

    def test_save_is_retried_with_backoff(self):
        store = FlakyStore()
        session = self._session(store, persistence_retries=2, persistence_backoff_sec=0.001).open()
        try:
            session.flush()
            store.failures = 2
            store.attempts = 0
            session.place_market_order("X", "BUY", 1)
            session.flush()
            self.assertEqual(store.attempts, 3)
            self.assertEqual(store.load_document("acct-1")["revision"], 1)
        finally:
            session.close()

    def test_own_save_echo_is_ignored(self):
        store = InMemoryLedgerStore()
        with self._session(store) as session:
            session.place_market_order("X", "BUY", 10)
            session.flush()
            self.assertFalse(session.merge_snapshot(ledger_to_document(session.ledger)))

    def test_pushed_snapshot_is_merged_with_defaults(self):
        store = InMemoryLedgerStore()
        with self._session(store) as session:
            session.flush()
            store.push_external("acct-1", {"cashBalance": "1234.50", "holdings": {"X": {"quantity": 3}}})
            # the push is queued on the mailbox; any request runs after it
            session.run_matching(self.market.snapshot())
            ledger = session.ledger
            self.assertEqual(ledger.cash_balance, Decimal("1234.50"))
            self.assertEqual(ledger.holding("X"), Holding(3, Decimal("0")))
            self.assertEqual(ledger.transactions, ())
            self.assertEqual(ledger.revision, 1)

    def test_stale_snapshot_is_dropped(self):
        store = InMemoryLedgerStore()
        with self._session(store) as session:
            session.place_market_order("X", "BUY", 10)
            session.place_market_order("X", "BUY", 10)
            stale = {"cashBalance": "1", "revision": 1}
            self.assertFalse(session.merge_snapshot(stale))
            self.assertEqual(session.ledger.holding("X").quantity, 20)

    def test_unreadable_snapshot_is_reported(self):
        with self._session(InMemoryLedgerStore()) as session:
            for doc in ({"cashBalance": "-5"}, {"holdings": ["X"]}, {"transactions": [{"type": "BUY"}]}):
                with self.subTest(doc=doc):
                    self.assertFalse(session.merge_snapshot(doc))
                    self.assertEqual(session.notifier.history()[-1].severity, notifications.WARNING)
            self.assertEqual(session.ledger.cash_balance, Decimal("10000"))

    def test_unreadable_stored_ledger_falls_back_to_default(self):
        docs = (
            {"cashBalance": "100", "transactions": [{"type": "BUY"}]},
            {"cashBalance": "-5"},
            {"holdings": ["X"]},
            {"openOrders": [{"id": "o1", "assetId": "X", "type": "HOLD", "quantity": 1, "targetPrice": "1"}]},
        )
        for doc in docs:
            with self.subTest(doc=doc):
                store = InMemoryLedgerStore()
                store.push_external("acct-1", doc)
                with self._session(store) as session:
                    self.assertEqual(session.ledger.cash_balance, Decimal("10000"))
                    self.assertEqual(session.ledger.revision, 0)
                    self.assertEqual(session.notifier.history()[-1].severity, notifications.WARNING)
                    # still trades normally
                    self.assertTrue(session.place_market_order("X", "BUY", 1).accepted)

    def test_committed_holdings_cannot_be_rewritten(self):
        with self._session(InMemoryLedgerStore()) as session:
            session.place_market_order("X", "BUY", 10)
            with self.assertRaises(TypeError):
                session.ledger.holdings["X"] = Holding(999, Decimal("1"))
            self.assertEqual(session.ledger.holding("X").quantity, 10)


if __name__ == "__main__":
    unittest.main()
