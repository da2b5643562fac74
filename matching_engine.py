# matching_engine.py
# Module: OrderMatcher
# Description:
#   - Runs once per tick against the freshly published asset batch.
#   - Decides which of an account's resting limit orders execute.
#   - Settles executed orders through portfolio.apply_fill and reports fills.
#
# There is no counterparty book: each account's orders only ever trade
# against the simulated price. Orders are scanned in placement order and an
# executed order fills in full at its own target price.

import logging
from dataclasses import dataclass
from typing import List, Tuple

from portfolio import LimitOrder, PortfolioLedger, Transaction, apply_fill
from utils import Side, to_money


@dataclass(frozen=True)
class Fill:
    order: LimitOrder
    transaction: Transaction

    def describe(self, asset_name=None) -> str:
        name = asset_name or self.transaction.asset_name
        return (
            f"Limit {self.order.side.value} filled: {self.order.quantity} {name} "
            f"@ ${self.order.target_price:.2f}"
        )


def is_marketable(order: LimitOrder, price) -> bool:
    """BUY triggers at or below the target, SELL at or above it."""
    p = to_money(price)
    if order.side == Side.BUY:
        return p <= order.target_price
    return p >= order.target_price


def match(open_orders, assets) -> Tuple[List[LimitOrder], List[LimitOrder]]:
    """
    Split open orders into (executed, remaining) against one price snapshot.

    Args:
        open_orders: orders in placement order
        assets: the tick's asset batch; every order sees the same prices
    Returns:
        (executed, remaining), each preserving the input order
    """
    prices = {a.id: a.current_price for a in assets}
    executed, remaining = [], []
    for order in open_orders:
        price = prices.get(order.asset_id)
        # unknown asset: leave the order resting
        if price is not None and is_marketable(order, price):
            executed.append(order)
        else:
            remaining.append(order)
    return executed, remaining


class OrderMatcher:
    """
    Applies one matching pass to a ledger.

    run() must be called with the latest committed ledger of the account, from
    inside that account's serialised request path.
    """

    def __init__(self):
        self.log = logging.getLogger("exchange")
        self.trade_logger = logging.getLogger("trade")

    def run(self, ledger: PortfolioLedger, assets) -> Tuple[PortfolioLedger, List[Fill]]:
        if not ledger.open_orders:
            return ledger, []

        executed, remaining = match(ledger.open_orders, assets)
        names = {a.id: a.name for a in assets}
        prices = {a.id: a.current_price for a in assets}
        fills = []
        for order in executed:
            ledger, tx = apply_fill(ledger, order, asset_name=names.get(order.asset_id))
            fills.append(Fill(order, tx))
            self.trade_logger.info(
                f"T: Limit {order.side.value} order {order.id} filled for {order.quantity} {order.asset_id} "
                f"at {order.target_price:.2f}. LTP={prices[order.asset_id]:.2f}"
            )

        if len(executed) > 1:
            self.trade_logger.info(f"T: Matching pass filled {len(executed)} orders, {len(remaining)} still resting.")
        return ledger, fills
