# account.py
# Module: AccountSession
# Description:
#   - Owns one account's PortfolioLedger for the lifetime of a session.
#   - Serialises every ledger mutation (user trades, cancels, matching passes,
#     pushed store snapshots) through a single-worker mailbox, so each request
#     reads the latest committed ledger, computes the next one and swaps it in
#     before the next request starts.
#   - Turns TradingErrors into rejected RequestResults at the request boundary.
#   - Hands committed ledgers to the document store asynchronously; a failed
#     save is reported, never rolled back.

import logging
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, replace
from typing import List, Optional

import notifications
from errors import LedgerInvariantError, LedgerNotFound, PersistenceUnavailable, TradingError
from matching_engine import Fill, OrderMatcher
from persistence import document_revision, ledger_from_document
from portfolio import (
    LimitOrder,
    PortfolioLedger,
    Transaction,
    cancel_order,
    place_limit_order,
    place_market_order,
)
from utils import coerce_side


@dataclass(frozen=True)
class RequestResult:
    accepted: bool
    ledger: PortfolioLedger
    error: Optional[TradingError] = None
    order: Optional[LimitOrder] = None
    transaction: Optional[Transaction] = None


class AccountSession:
    """
    Single logical mutator for one account's ledger.

    Public request methods block until the mailbox has applied the request.
    Reading `ledger` never blocks: it returns the last committed value.
    """

    def __init__(self, cfg, market, account_id=None, store=None, notifier=None, matcher=None, ledger=None):
        self.cfg = cfg
        self.market = market
        self.account_id = account_id
        self.store = store if account_id is not None else None
        self.notifier = notifier or notifications.NotificationCenter(ttl_ms=cfg.notification_ttl_ms)
        self.matcher = matcher or OrderMatcher()
        self._ledger = ledger or PortfolioLedger.new(cfg.starting_cash, cfg.asset_ids())
        label = account_id or "guest"
        self._mailbox = ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"mailbox-{label}")
        self._persist = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix=f"persist-{label}") if self.store else None
        )
        self._unsubscribe = None
        self._closed = False
        self.log = logging.getLogger("exchange")

    @property
    def guest(self) -> bool:
        return self.store is None

    @property
    def ledger(self) -> PortfolioLedger:
        return self._ledger

    # ---- lifecycle ----
    def open(self) -> "AccountSession":
        """Load (or initialise) the stored ledger and subscribe to pushed changes."""
        if self.guest:
            self.log.info("Guest session: ledger lives in memory only.")
            return self
        try:
            loaded = self.store.load(self.account_id, self.cfg.starting_cash, self.cfg.asset_ids())
            self._call(self._adopt, loaded)
            self.log.info(f"Loaded ledger for {self.account_id} (revision {loaded.revision})")
        except LedgerNotFound:
            self.log.info(f"No stored ledger for {self.account_id}; initialising default portfolio.")
            self._schedule_save(self._ledger)
        except PersistenceUnavailable as e:
            self.log.warning(f"Could not load ledger for {self.account_id}: {e}")
            self.notifier.publish("Portfolio could not be loaded; working offline", notifications.WARNING)
        try:
            self._unsubscribe = self.store.subscribe(self.account_id, self._on_remote_change)
        except PersistenceUnavailable as e:
            self.log.warning(f"Subscribe failed for {self.account_id}: {e}")
            self.notifier.publish("Live portfolio sync unavailable", notifications.WARNING)
        return self

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        if self._unsubscribe:
            self._unsubscribe()
        self._mailbox.shutdown(wait=True)
        if self._persist:
            self._persist.shutdown(wait=True)

    def __enter__(self):
        return self.open()

    def __exit__(self, exc_type, exc, tb):
        self.close()

    # ---- requests ----
    def place_market_order(self, asset_id, side, quantity) -> RequestResult:
        return self._call(self._guarded, self._do_market, asset_id, side, quantity)

    def place_limit_order(self, asset_id, side, quantity, target_price) -> RequestResult:
        return self._call(self._guarded, self._do_limit, asset_id, side, quantity, target_price)

    def cancel_order(self, order_id) -> RequestResult:
        return self._call(self._guarded, self._do_cancel, order_id)

    def run_matching(self, assets) -> List[Fill]:
        """One matching pass against `assets`, the batch published for this tick."""
        return self._call(self._do_matching, assets)

    def merge_snapshot(self, doc) -> bool:
        return self._call(self._merge_remote, doc)

    # ---- mailbox plumbing ----
    def _call(self, fn, *args):
        return self._mailbox.submit(fn, *args).result()

    def _guarded(self, fn, *args) -> RequestResult:
        try:
            return fn(*args)
        except TradingError as e:
            self.log.info(f"Request rejected: {e}")
            self.notifier.publish(str(e), notifications.INFO)
            return RequestResult(False, self._ledger, error=e)

    def _commit(self, ledger: PortfolioLedger) -> None:
        self._ledger = ledger
        self._schedule_save(ledger)

    def _adopt(self, ledger: PortfolioLedger) -> None:
        self._ledger = ledger

    # ---- request handlers (run on the mailbox thread only) ----
    def _do_market(self, asset_id, side, quantity) -> RequestResult:
        side = coerce_side(side)
        asset = self.market.get(asset_id)
        nxt, tx = place_market_order(self._ledger, asset_id, side, quantity, asset.current_price, asset.name)
        self._commit(nxt)
        self.notifier.publish(
            f"Trade executed: {side.value} {tx.quantity} {asset.name} @ ${tx.price:.2f}", notifications.SUCCESS
        )
        return RequestResult(True, nxt, transaction=tx)

    def _do_limit(self, asset_id, side, quantity, target_price) -> RequestResult:
        side = coerce_side(side)
        asset = self.market.get(asset_id)
        nxt, order = place_limit_order(self._ledger, asset_id, side, quantity, target_price)
        self._commit(nxt)
        self.notifier.publish(
            f"Order placed: limit {side.value} {order.quantity} {asset.name} @ ${order.target_price:.2f}",
            notifications.SUCCESS,
        )
        return RequestResult(True, nxt, order=order)

    def _do_cancel(self, order_id) -> RequestResult:
        nxt, order = cancel_order(self._ledger, order_id)
        self._commit(nxt)
        self.notifier.publish(f"Order {order.id} cancelled", notifications.INFO)
        return RequestResult(True, nxt, order=order)

    def _do_matching(self, assets) -> List[Fill]:
        nxt, fills = self.matcher.run(self._ledger, assets)
        if fills:
            self._commit(nxt)
            for fill in fills:
                self.notifier.publish(fill.describe(), notifications.SUCCESS)
        return fills

    def _merge_remote(self, doc) -> bool:
        """
        Adopt a snapshot pushed by the store.
        Snapshots at or below the current revision are echoes of our own saves
        (or older) and are dropped; a snapshot without a revision came from an
        outside writer and wins.
        """
        current = self._ledger
        rev = document_revision(doc)
        if rev is not None and rev <= current.revision:
            return False
        try:
            incoming = ledger_from_document(doc, self.cfg.starting_cash, self.cfg.asset_ids())
        except (KeyError, TypeError, ValueError, AttributeError, LedgerInvariantError) as e:
            self.log.error(f"Ignoring malformed pushed ledger for {self.account_id}: {e}")
            self.notifier.publish("Received an unreadable portfolio update", notifications.WARNING)
            return False
        if rev is None:
            incoming = replace(incoming, revision=current.revision + 1)
        self._ledger = incoming
        self.log.info(f"Merged pushed ledger for {self.account_id} (revision {incoming.revision})")
        return True

    def _on_remote_change(self, doc) -> None:
        if self._closed:
            return
        try:
            self._mailbox.submit(self._merge_remote, doc)
        except RuntimeError:
            self.log.debug(f"Dropped pushed ledger for {self.account_id}: session closing")

    # ---- persistence ----
    def _schedule_save(self, ledger: PortfolioLedger) -> None:
        if self._persist is None:
            return
        self._persist.submit(self._save, ledger)

    def _save(self, ledger: PortfolioLedger) -> bool:
        attempts = 1 + max(0, self.cfg.persistence_retries)
        for attempt in range(attempts):
            try:
                self.store.save(self.account_id, ledger)
                return True
            except PersistenceUnavailable as e:
                if attempt + 1 < attempts:
                    delay = self.cfg.persistence_backoff_sec * (2 ** attempt)
                    self.log.info(f"Save failed ({e}); retrying in {delay:.2f}s")
                    time.sleep(delay)
                    continue
                self.log.warning(f"Save failed for {self.account_id} at revision {ledger.revision}: {e}")
                self.notifier.publish("Portfolio could not be saved; changes kept locally", notifications.WARNING)
        return False

    def flush(self) -> None:
        """Block until every save scheduled so far has been attempted."""
        if self._persist is not None:
            self._persist.submit(lambda: None).result()
