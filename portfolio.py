# portfolio.py
# One account's ledger: cash, holdings, transaction log and resting limit orders.
#
# Every operation here is a pure transition: it takes a PortfolioLedger and
# returns a new one (or raises a TradingError and leaves the input alone).
# Escrow model:
#   - limit BUY  reserves qty * target cash at placement
#   - limit SELL reserves qty units at placement
# Settlement (fill) or cancellation releases the reservation exactly once.

import logging
from dataclasses import dataclass, field, replace
from decimal import Decimal, InvalidOperation
from numbers import Integral
from types import MappingProxyType
from typing import Dict, Mapping, Optional, Tuple

from errors import (
    InsufficientFunds,
    InsufficientHoldings,
    InvalidPrice,
    InvalidQuantity,
    LedgerInvariantError,
    OrderNotFound,
)
from utils import OrderKind, Side, coerce_side, current_timestamp_ms, get_next_id, to_money

ZERO = Decimal("0")

log = logging.getLogger("exchange")


@dataclass(frozen=True)
class Holding:
    quantity: int = 0
    avg_cost: Decimal = ZERO   # cost basis of the units currently held; 0 when flat


@dataclass(frozen=True)
class Transaction:
    """Settled trade. Never mutated once appended."""

    id: str
    side: Side
    asset_id: str
    asset_name: str
    quantity: int
    price: Decimal
    timestamp: int
    order_kind: OrderKind

    @property
    def notional(self) -> Decimal:
        return self.price * self.quantity


@dataclass(frozen=True)
class LimitOrder:
    """
    Resting instruction, filled in full or cancelled, never partially.

    cost_basis is only meaningful for SELL orders: it is the average cost of
    the units moved into escrow, used to put them back on cancel.
    """

    id: str
    asset_id: str
    side: Side
    quantity: int
    target_price: Decimal
    timestamp: int
    cost_basis: Decimal = ZERO

    @property
    def escrow_cash(self) -> Decimal:
        return self.target_price * self.quantity if self.side == Side.BUY else ZERO


@dataclass(frozen=True)
class PortfolioLedger:
    cash_balance: Decimal
    holdings: Mapping[str, Holding] = field(default_factory=dict)
    transactions: Tuple[Transaction, ...] = ()
    open_orders: Tuple[LimitOrder, ...] = ()
    revision: int = 0

    def __post_init__(self):
        # read-only view over a private copy; no two revisions share a dict
        object.__setattr__(self, "holdings", MappingProxyType(dict(self.holdings)))

    @staticmethod
    def new(starting_cash, asset_ids=()) -> "PortfolioLedger":
        return PortfolioLedger(
            cash_balance=to_money(starting_cash),
            holdings={asset_id: Holding() for asset_id in asset_ids},
        )

    def holding(self, asset_id: str) -> Holding:
        return self.holdings.get(asset_id) or Holding()

    def find_order(self, order_id: str) -> Optional[LimitOrder]:
        for order in self.open_orders:
            if order.id == order_id:
                return order
        return None

    # ---- derived values ----
    def escrowed_cash(self) -> Decimal:
        return sum((o.escrow_cash for o in self.open_orders), ZERO)

    def escrowed_units(self, asset_id: str) -> int:
        return sum(o.quantity for o in self.open_orders if o.side == Side.SELL and o.asset_id == asset_id)

    def holdings_value(self, prices: Mapping[str, float]) -> Decimal:
        total = ZERO
        for asset_id, h in self.holdings.items():
            if h.quantity and asset_id in prices:
                total += to_money(prices[asset_id]) * h.quantity
        return total

    def net_worth(self, prices: Mapping[str, float]) -> Decimal:
        """Cash + held units + everything sitting in escrow, marked at `prices`."""
        escrowed_units_value = ZERO
        for o in self.open_orders:
            if o.side == Side.SELL and o.asset_id in prices:
                escrowed_units_value += to_money(prices[o.asset_id]) * o.quantity
        return self.cash_balance + self.holdings_value(prices) + self.escrowed_cash() + escrowed_units_value

    def max_affordable(self, price) -> int:
        """Largest whole quantity the free cash can buy at `price`."""
        p = to_money(price)
        if p <= 0:
            return 0
        return int(self.cash_balance // p)

    def check_invariants(self) -> None:
        if self.cash_balance < 0:
            raise LedgerInvariantError(f"negative cash balance {self.cash_balance}")
        for asset_id, h in self.holdings.items():
            if h.quantity < 0:
                raise LedgerInvariantError(f"negative quantity {h.quantity} for {asset_id}")
            if h.avg_cost < 0:
                raise LedgerInvariantError(f"negative avg cost {h.avg_cost} for {asset_id}")
        order_ids = [o.id for o in self.open_orders]
        if len(set(order_ids)) != len(order_ids):
            raise LedgerInvariantError("duplicate open order id")
        for o in self.open_orders:
            if o.quantity <= 0 or o.target_price <= 0:
                raise LedgerInvariantError(f"malformed open order {o.id}")
        tx_ids = [t.id for t in self.transactions]
        if len(set(tx_ids)) != len(tx_ids):
            raise LedgerInvariantError("duplicate transaction id")


# ---- validation helpers ----

def _require_quantity(quantity) -> int:
    if isinstance(quantity, bool) or not isinstance(quantity, Integral) or quantity <= 0:
        raise InvalidQuantity(quantity)
    return int(quantity)


def _require_price(price) -> Decimal:
    try:
        value = to_money(price)
    except (InvalidOperation, TypeError, ValueError):
        raise InvalidPrice(price) from None
    if not value.is_finite() or value <= 0:
        raise InvalidPrice(price)
    return value


# ---- holding arithmetic ----

def _join_lot(holding: Holding, quantity: int, price: Decimal) -> Holding:
    """Add units at `price`, recomputing the weighted average cost."""
    if holding.quantity == 0:
        return Holding(quantity, price)
    total_qty = holding.quantity + quantity
    avg = (holding.avg_cost * holding.quantity + price * quantity) / total_qty
    return Holding(total_qty, avg)


def _remove_units(holding: Holding, quantity: int) -> Holding:
    """Take units out; the cost basis of the remaining lot does not change."""
    remaining = holding.quantity - quantity
    return Holding(remaining, holding.avg_cost if remaining > 0 else ZERO)


def _commit(ledger: PortfolioLedger, **changes) -> PortfolioLedger:
    nxt = replace(ledger, revision=ledger.revision + 1, **changes)
    nxt.check_invariants()
    return nxt


def _with_holding(ledger: PortfolioLedger, asset_id: str, holding: Holding) -> Dict[str, Holding]:
    holdings = dict(ledger.holdings)
    holdings[asset_id] = holding
    return holdings


def _new_transaction(side, asset_id, asset_name, quantity, price, kind, now=None) -> Transaction:
    return Transaction(
        id=get_next_id("tx-"),
        side=side,
        asset_id=asset_id,
        asset_name=asset_name or asset_id,
        quantity=quantity,
        price=price,
        timestamp=now if now is not None else current_timestamp_ms(),
        order_kind=kind,
    )


# ---- transitions ----

def place_market_order(ledger, asset_id, side, quantity, exec_price, asset_name=None, now=None):
    """
    Execute immediately at exec_price.

    Returns (ledger', transaction). BUY debits cash and joins the holding at
    the weighted average; SELL credits cash and leaves avg_cost untouched.
    """
    side = coerce_side(side)
    quantity = _require_quantity(quantity)
    price = _require_price(exec_price)
    holding = ledger.holding(asset_id)
    notional = price * quantity

    if side == Side.BUY:
        if ledger.cash_balance < notional:
            raise InsufficientFunds(notional, ledger.cash_balance)
        cash = ledger.cash_balance - notional
        holding = _join_lot(holding, quantity, price)
    else:
        if holding.quantity < quantity:
            raise InsufficientHoldings(asset_id, quantity, holding.quantity)
        cash = ledger.cash_balance + notional
        holding = _remove_units(holding, quantity)

    tx = _new_transaction(side, asset_id, asset_name, quantity, price, OrderKind.MARKET, now)
    nxt = _commit(
        ledger,
        cash_balance=cash,
        holdings=_with_holding(ledger, asset_id, holding),
        transactions=ledger.transactions + (tx,),
    )
    return nxt, tx


def place_limit_order(ledger, asset_id, side, quantity, target_price, now=None):
    """
    Rest an order and move its funds or units into escrow.
    Returns (ledger', order). No transaction is written until the fill.
    """
    side = coerce_side(side)
    quantity = _require_quantity(quantity)
    target = _require_price(target_price)
    holding = ledger.holding(asset_id)
    cash = ledger.cash_balance
    holdings = ledger.holdings
    cost_basis = ZERO

    if side == Side.BUY:
        reserved = target * quantity
        if cash < reserved:
            raise InsufficientFunds(reserved, cash)
        cash = cash - reserved
    else:
        if holding.quantity < quantity:
            raise InsufficientHoldings(asset_id, quantity, holding.quantity)
        cost_basis = holding.avg_cost
        holdings = _with_holding(ledger, asset_id, _remove_units(holding, quantity))

    order = LimitOrder(
        id=get_next_id("ord-"),
        asset_id=asset_id,
        side=side,
        quantity=quantity,
        target_price=target,
        timestamp=now if now is not None else current_timestamp_ms(),
        cost_basis=cost_basis,
    )
    nxt = _commit(ledger, cash_balance=cash, holdings=holdings, open_orders=ledger.open_orders + (order,))
    return nxt, order


def _without_order(ledger: PortfolioLedger, order_id: str) -> Tuple[LimitOrder, ...]:
    return tuple(o for o in ledger.open_orders if o.id != order_id)


def cancel_order(ledger, order_id):
    """
    Remove an open order and release its escrow.

    SELL units come back as a lot at the cost basis they had when escrowed,
    merged by weighted average with whatever was bought in the meantime.
    Returns (ledger', order).
    """
    order = ledger.find_order(order_id)
    if order is None:
        raise OrderNotFound(order_id)

    cash = ledger.cash_balance
    holdings = ledger.holdings
    if order.side == Side.BUY:
        cash = cash + order.target_price * order.quantity
    else:
        restored = _join_lot(ledger.holding(order.asset_id), order.quantity, order.cost_basis)
        holdings = _with_holding(ledger, order.asset_id, restored)

    nxt = _commit(ledger, cash_balance=cash, holdings=holdings, open_orders=_without_order(ledger, order_id))
    return nxt, order


def apply_fill(ledger, order, asset_name=None, now=None):
    """
    Settle a matched limit order at its target price.

    Only the matcher calls this. The order must still be open in `ledger`;
    a stale order (already filled or cancelled) raises OrderNotFound so it
    can never settle twice. Returns (ledger', transaction).
    """
    if ledger.find_order(order.id) is None:
        raise OrderNotFound(order.id)

    cash = ledger.cash_balance
    holdings = ledger.holdings
    if order.side == Side.BUY:
        # cash left the balance at placement
        holdings = _with_holding(
            ledger, order.asset_id, _join_lot(ledger.holding(order.asset_id), order.quantity, order.target_price)
        )
    else:
        # units left the holding at placement
        cash = cash + order.target_price * order.quantity

    tx = _new_transaction(
        order.side, order.asset_id, asset_name, order.quantity, order.target_price, OrderKind.LIMIT, now
    )
    nxt = _commit(
        ledger,
        cash_balance=cash,
        holdings=holdings,
        transactions=ledger.transactions + (tx,),
        open_orders=_without_order(ledger, order.id),
    )
    log.debug(f"Settled {order.side.value} limit {order.id}: {order.quantity} {order.asset_id} @ {order.target_price}")
    return nxt, tx
