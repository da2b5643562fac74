# testing_helpers.py
# Deterministic market fixtures shared by the unit tests.
import random

import config
from market_data import MarketData, PriceEngine


class ScriptedPriceEngine(PriceEngine):
    """PriceEngine whose next prices are queued by the test instead of drawn."""

    def __init__(self, history_length=50):
        super().__init__(
            volatility=0.0,
            price_floor=0.01,
            history_length=history_length,
            volume_range=(100, 100),
            rng=random.Random(0),
        )
        self.queue = {}

    def push(self, asset_id, *prices):
        self.queue.setdefault(asset_id, []).extend(prices)

    def advance_asset(self, asset, now):
        pending = self.queue.get(asset.id)
        price = pending.pop(0) if pending else asset.current_price
        return self.record_price(asset, price, now)


def make_market(prices=None, starting_cash=10000.0, history_length=50, **overrides):
    """Return (cfg, market, engine) for assets priced as given, e.g. {'X': 10.0}."""
    prices = prices or {"X": 10.0}
    table = {asset_id: {"name": f"Asset {asset_id}", "icon": "", "starting_price": p} for asset_id, p in prices.items()}
    cfg = config.SimulationConfig.from_module(
        assets=table, starting_cash=starting_cash, history_length=history_length, **overrides
    )
    engine = ScriptedPriceEngine(history_length=history_length)
    market = MarketData(engine, engine.seed_assets(cfg, seed_history=False))
    return cfg, market, engine
