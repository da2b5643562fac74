import os
import sqlite3
import tempfile
import unittest
from decimal import Decimal

from errors import LedgerInvariantError, LedgerNotFound, PersistenceUnavailable
from persistence import (
    InMemoryLedgerStore,
    SqliteLedgerStore,
    document_revision,
    ledger_from_document,
    ledger_to_document,
)
from portfolio import Holding, PortfolioLedger, place_limit_order, place_market_order


def sample_ledger():
    ledger = PortfolioLedger.new(10000.0, ["X", "Y"])
    ledger, _ = place_market_order(ledger, "X", "BUY", 12, 10.1, asset_name="Xcorp")
    ledger, _ = place_limit_order(ledger, "X", "SELL", 5, 11.0)
    ledger, _ = place_limit_order(ledger, "Y", "BUY", 3, 0.3)
    return ledger


class TestDocuments(unittest.TestCase):
    def test_document_uses_stored_field_names(self):
        doc = ledger_to_document(sample_ledger())
        self.assertEqual(doc["cashBalance"], "9877.9")
        self.assertEqual(doc["holdings"]["X"], {"quantity": 7, "avgCost": "10.1"})
        self.assertEqual(doc["transactions"][0]["orderType"], "MARKET")
        self.assertEqual([o["type"] for o in doc["openOrders"]], ["SELL", "BUY"])
        self.assertEqual(doc["revision"], 3)

    def test_reload_is_exact(self):
        ledger = sample_ledger()
        self.assertEqual(ledger_from_document(ledger_to_document(ledger), 10000.0, ["X", "Y"]), ledger)

    def test_missing_fields_get_defaults(self):
        ledger = ledger_from_document({"holdings": {"Z": {"quantity": 2, "avgCost": "4.5"}}}, 500, ["X"])
        self.assertEqual(ledger.cash_balance, Decimal("500"))
        self.assertEqual(ledger.holding("X"), Holding())
        self.assertEqual(ledger.holding("Z"), Holding(2, Decimal("4.5")))
        self.assertEqual((ledger.transactions, ledger.open_orders, ledger.revision), ((), (), 0))

    def test_bad_amounts_fall_back(self):
        doc = {"cashBalance": "12", "holdings": {"X": {"quantity": 1, "avgCost": "n/a"}}}
        with self.assertLogs("persistence", level="WARNING"):
            ledger = ledger_from_document(doc, 0, ["X"])
        self.assertEqual(ledger.holding("X"), Holding(1, Decimal("0")))

    def test_impossible_document_is_refused(self):
        with self.assertRaises(LedgerInvariantError):
            ledger_from_document({"holdings": {"X": {"quantity": -1}}}, 0, ["X"])

    def test_revision(self):
        self.assertEqual(document_revision({"revision": "7"}), 7)
        self.assertIsNone(document_revision({}))
        self.assertIsNone(document_revision({"revision": "x"}))


class StoreContract:
    """Shared checks run against every backend."""

    def make_store(self):
        raise NotImplementedError

    def setUp(self):
        self.store = self.make_store()

    def test_missing_account(self):
        with self.assertRaises(LedgerNotFound):
            self.store.load("nobody", 10000.0)

    def test_save_then_load(self):
        ledger = sample_ledger()
        self.store.save("acct-1", ledger)
        self.store.save("acct-1", ledger)
        self.assertEqual(self.store.load("acct-1", 10000.0, ["X", "Y"]), ledger)

    def test_subscribers_see_every_save(self):
        seen = []
        unsubscribe = self.store.subscribe("acct-1", seen.append)
        self.store.subscribe("acct-2", lambda doc: self.fail("wrong account"))
        self.store.save("acct-1", sample_ledger())
        unsubscribe()
        self.store.save("acct-1", sample_ledger())
        self.assertEqual(len(seen), 1)
        self.assertEqual(seen[0]["revision"], 3)

    def test_subscriber_error_does_not_fail_save(self):
        def broken(doc):
            raise RuntimeError("display gone")

        self.store.subscribe("acct-1", broken)
        with self.assertLogs("persistence", level="ERROR"):
            self.store.save("acct-1", sample_ledger())
        self.store.load_document("acct-1")


class TestInMemoryStore(StoreContract, unittest.TestCase):
    def make_store(self):
        return InMemoryLedgerStore()

    def test_loaded_document_is_a_copy(self):
        self.store.save("acct-1", sample_ledger())
        self.store.load_document("acct-1")["cashBalance"] = "0"
        self.assertEqual(self.store.load_document("acct-1")["cashBalance"], "9877.9")

    def test_push_external_notifies(self):
        seen = []
        self.store.subscribe("acct-1", seen.append)
        self.store.push_external("acct-1", {"cashBalance": "5"})
        self.assertEqual(seen, [{"cashBalance": "5"}])

    def test_unreadable_document_is_reported_as_unavailable(self):
        for doc in ({"transactions": [{"type": "BUY"}]}, {"cashBalance": "-5"}, {"holdings": ["X"]}):
            with self.subTest(doc=doc):
                self.store.push_external("acct-1", doc)
                with self.assertRaises(PersistenceUnavailable):
                    self.store.load("acct-1", 10000.0, ["X"])


class TestSqliteStore(StoreContract, unittest.TestCase):
    def make_store(self):
        self.tmp = tempfile.TemporaryDirectory()
        self.addCleanup(self.tmp.cleanup)
        return SqliteLedgerStore(os.path.join(self.tmp.name, "nested", "ledgers.sqlite3"))

    def test_survives_reopen(self):
        self.store.save("acct-1", sample_ledger())
        again = SqliteLedgerStore(str(self.store.path))
        self.assertEqual(again.load_document("acct-1")["revision"], 3)

    def test_unreadable_row_is_reported(self):
        with sqlite3.connect(self.store.path) as con:
            con.execute("INSERT INTO ledgers VALUES ('acct-9', 0, '{not json')")
        with self.assertRaises(PersistenceUnavailable):
            self.store.load_document("acct-9")


if __name__ == "__main__":
    unittest.main()
