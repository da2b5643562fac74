# persistence.py
# Document-store collaborator for account ledgers.
#
# The core treats storage as an opaque key-value store: one JSON document per
# account, always written as a full snapshot. Two backends are provided:
#   - InMemoryLedgerStore: dict of documents, for tests and single-process runs
#   - SqliteLedgerStore:  one row per account in a local SQLite file
# Both push every saved snapshot to subscribers of that account.

import copy
import json
import logging
import sqlite3
import threading
import time
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Dict, Optional

from errors import LedgerInvariantError, LedgerNotFound, PersistenceUnavailable
from portfolio import Holding, LimitOrder, PortfolioLedger, Transaction
from utils import OrderKind, Side, to_money

log = logging.getLogger("persistence")


# ---------------------------------------------------------------------------
# snapshot <-> document
# ---------------------------------------------------------------------------

def ledger_to_document(ledger: PortfolioLedger) -> Dict[str, Any]:
    """JSON-compatible snapshot. Money is written as decimal strings so it reloads exactly."""
    return {
        "cashBalance": str(ledger.cash_balance),
        "holdings": {
            asset_id: {"quantity": h.quantity, "avgCost": str(h.avg_cost)}
            for asset_id, h in ledger.holdings.items()
        },
        "transactions": [
            {
                "id": t.id,
                "type": t.side.value,
                "assetId": t.asset_id,
                "assetName": t.asset_name,
                "quantity": t.quantity,
                "price": str(t.price),
                "timestamp": t.timestamp,
                "orderType": t.order_kind.value,
            }
            for t in ledger.transactions
        ],
        "openOrders": [
            {
                "id": o.id,
                "assetId": o.asset_id,
                "type": o.side.value,
                "quantity": o.quantity,
                "targetPrice": str(o.target_price),
                "timestamp": o.timestamp,
                "costBasis": str(o.cost_basis),
            }
            for o in ledger.open_orders
        ],
        "revision": ledger.revision,
    }


def _money(value, default="0") -> Decimal:
    if value is None or value == "":
        return Decimal(default)
    try:
        return to_money(value)
    except (InvalidOperation, TypeError, ValueError):
        log.warning(f"Unreadable amount {value!r} in stored ledger, using {default}")
        return Decimal(default)


def document_revision(doc: Dict[str, Any]) -> Optional[int]:
    rev = (doc or {}).get("revision")
    try:
        return int(rev) if rev is not None else None
    except (TypeError, ValueError):
        return None


def ledger_from_document(doc, starting_cash, asset_ids=()) -> PortfolioLedger:
    """
    Rebuild a ledger from a stored or pushed document.

    Missing collections become empty, configured assets without a holding get
    a flat one, and a missing cash balance falls back to starting cash.
    """
    doc = doc or {}

    holdings = {asset_id: Holding() for asset_id in asset_ids}
    for asset_id, row in (doc.get("holdings") or {}).items():
        row = row or {}
        qty = int(row.get("quantity") or 0)
        holdings[str(asset_id)] = Holding(qty, _money(row.get("avgCost")) if qty > 0 else Decimal("0"))

    transactions = tuple(
        Transaction(
            id=str(t["id"]),
            side=Side(t["type"]),
            asset_id=str(t["assetId"]),
            asset_name=str(t.get("assetName") or t["assetId"]),
            quantity=int(t["quantity"]),
            price=_money(t["price"]),
            timestamp=int(t.get("timestamp") or 0),
            order_kind=OrderKind(t.get("orderType") or OrderKind.MARKET.value),
        )
        for t in (doc.get("transactions") or [])
    )

    open_orders = tuple(
        LimitOrder(
            id=str(o["id"]),
            asset_id=str(o["assetId"]),
            side=Side(o["type"]),
            quantity=int(o["quantity"]),
            target_price=_money(o["targetPrice"]),
            timestamp=int(o.get("timestamp") or 0),
            cost_basis=_money(o.get("costBasis")),
        )
        for o in (doc.get("openOrders") or [])
    )

    cash = doc.get("cashBalance")
    ledger = PortfolioLedger(
        cash_balance=_money(cash) if cash is not None else to_money(starting_cash),
        holdings=holdings,
        transactions=transactions,
        open_orders=open_orders,
        revision=document_revision(doc) or 0,
    )
    ledger.check_invariants()
    return ledger


# ---------------------------------------------------------------------------
# stores
# ---------------------------------------------------------------------------

class LedgerStore:
    """
    Base store: subscriber bookkeeping shared by every backend.

    Subclasses implement _read (return a document or None) and _write.
    """

    def __init__(self):
        self._subscribers = {}
        self._sub_lock = threading.Lock()

    def _read(self, account_id: str) -> Optional[Dict[str, Any]]:
        raise NotImplementedError

    def _write(self, account_id: str, doc: Dict[str, Any]) -> None:
        raise NotImplementedError

    def load_document(self, account_id: str) -> Dict[str, Any]:
        try:
            doc = self._read(account_id)
        except PersistenceUnavailable:
            raise
        except (sqlite3.Error, OSError, ValueError) as e:
            raise PersistenceUnavailable(f"load failed for {account_id}: {e}") from e
        if doc is None:
            raise LedgerNotFound(account_id)
        return doc

    def load(self, account_id: str, starting_cash, asset_ids=()) -> PortfolioLedger:
        doc = self.load_document(account_id)
        try:
            return ledger_from_document(doc, starting_cash, asset_ids)
        except (KeyError, TypeError, ValueError, AttributeError, LedgerInvariantError) as e:
            raise PersistenceUnavailable(f"stored ledger for {account_id} is unreadable: {e!r}") from e

    def save(self, account_id: str, ledger: PortfolioLedger) -> None:
        """Idempotent full-snapshot upsert, followed by a push to subscribers."""
        doc = ledger_to_document(ledger)
        try:
            self._write(account_id, doc)
        except PersistenceUnavailable:
            raise
        except (sqlite3.Error, OSError, TypeError, ValueError) as e:
            raise PersistenceUnavailable(f"save failed for {account_id}: {e}") from e
        self._notify(account_id, doc)

    def subscribe(self, account_id: str, on_change):
        with self._sub_lock:
            self._subscribers.setdefault(account_id, []).append(on_change)

        def unsubscribe():
            with self._sub_lock:
                subs = self._subscribers.get(account_id, [])
                if on_change in subs:
                    subs.remove(on_change)

        return unsubscribe

    def _notify(self, account_id: str, doc: Dict[str, Any]) -> None:
        with self._sub_lock:
            subs = list(self._subscribers.get(account_id, []))
        for callback in subs:
            try:
                callback(copy.deepcopy(doc))
            except Exception as e:
                log.error(f"Subscriber for {account_id} failed: {e}")


class InMemoryLedgerStore(LedgerStore):
    def __init__(self):
        super().__init__()
        self._docs = {}
        self._lock = threading.Lock()

    def _read(self, account_id):
        with self._lock:
            doc = self._docs.get(account_id)
            return copy.deepcopy(doc) if doc is not None else None

    def _write(self, account_id, doc):
        with self._lock:
            self._docs[account_id] = copy.deepcopy(doc)

    def push_external(self, account_id: str, doc: Dict[str, Any]) -> None:
        """Simulate a change made by another client of the same document."""
        self._write(account_id, doc)
        self._notify(account_id, doc)


class SqliteLedgerStore(LedgerStore):
    """SQLite-backed ledger documents, one row per account."""

    def __init__(self, path: str = "./.cache/ledgers.sqlite3"):
        super().__init__()
        self.path = Path(path)
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self._init_db()

    def _init_db(self) -> None:
        with sqlite3.connect(self.path) as con:
            con.execute(
                """
                CREATE TABLE IF NOT EXISTS ledgers (
                    account_id TEXT PRIMARY KEY,
                    updated_at_unix REAL NOT NULL,
                    ledger_json TEXT NOT NULL
                )
                """
            )
            con.commit()

    def _read(self, account_id):
        with sqlite3.connect(self.path) as con:
            cur = con.execute("SELECT ledger_json FROM ledgers WHERE account_id=?", (account_id,))
            row = cur.fetchone()
            if not row:
                return None
            return json.loads(row[0])

    def _write(self, account_id, doc):
        with sqlite3.connect(self.path) as con:
            con.execute(
                "INSERT INTO ledgers(account_id, updated_at_unix, ledger_json) VALUES(?,?,?) "
                "ON CONFLICT(account_id) DO UPDATE SET updated_at_unix=excluded.updated_at_unix, "
                "ledger_json=excluded.ledger_json",
                (account_id, time.time(), json.dumps(doc, ensure_ascii=False)),
            )
            con.commit()
