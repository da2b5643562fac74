# market_data.py
# Simulate per-tick asset prices with a bounded uniform random walk and keep a
# fixed-length rolling history (price + volume) for every asset.
import logging
import random
from collections import deque
from dataclasses import dataclass, replace
from typing import Dict, Tuple

from errors import AssetNotFound
from utils import current_timestamp_ms


@dataclass(frozen=True)
class PricePoint:
    timestamp: int      # ms
    price: float
    volume: int


@dataclass(frozen=True)
class Asset:
    """
    One tradable asset as seen at a single tick.

    window_change_pct is measured from the oldest retained history point to
    current_price, so its window is exactly len(history) ticks rather than a
    fixed wall-clock span.
    """

    id: str
    name: str
    icon: str
    initial_price: float
    current_price: float
    history: Tuple[PricePoint, ...]
    window_change_pct: float = 0.0


def window_change_pct(history) -> float:
    """Percentage change between the first and last point of a history window."""
    if not history:
        return 0.0
    start = history[0].price
    if start <= 0:
        return 0.0
    return (history[-1].price - start) / start * 100.0


class PriceEngine:
    """Advances every asset by one tick. Pure apart from the random source."""

    def __init__(self, volatility, price_floor, history_length, volume_range, rng=None, clock=None):
        self.volatility = volatility
        self.price_floor = price_floor
        self.history_length = history_length
        self.volume_range = volume_range
        self.rng = rng or random.Random()
        self.clock = clock or current_timestamp_ms
        self.log = logging.getLogger("market")

    @classmethod
    def from_config(cls, cfg, rng=None, clock=None):
        return cls(cfg.volatility, cfg.price_floor, cfg.history_length, cfg.volume_range, rng=rng, clock=clock)

    def next_price(self, price: float) -> float:
        """Draw δ ~ U[-volatility, +volatility] and apply it, clamped at the floor."""
        delta = self.rng.uniform(-self.volatility, self.volatility)
        return max(self.price_floor, price * (1 + delta))

    def next_volume(self) -> int:
        lo, hi = self.volume_range
        return self.rng.randint(lo, hi)

    def advance_asset(self, asset: Asset, now: int) -> Asset:
        return self.record_price(asset, self.next_price(asset.current_price), now)

    def record_price(self, asset: Asset, new_price: float, now: int, volume=None) -> Asset:
        """Append one point to the asset's window and make it the current price."""
        if volume is None:
            volume = self.next_volume()
        # Bounded deque evicts the oldest point once the window is full
        window = deque(asset.history, maxlen=self.history_length)
        window.append(PricePoint(now, new_price, volume))
        history = tuple(window)
        return replace(
            asset,
            current_price=new_price,
            history=history,
            window_change_pct=window_change_pct(history),
        )

    def advance(self, assets):
        """
        Advance the whole batch by one tick.

        Every asset shares the same timestamp; the result is a new tuple so a
        reader holding the previous batch never sees a mix of ticks.
        """
        now = self.clock()
        advanced = tuple(self.advance_asset(a, now) for a in assets)
        for a in advanced:
            self.log.debug(f"Tick {a.id}: Price = {a.current_price:.4f} ({a.window_change_pct:+.2f}% over window)")
        return advanced

    def seed_assets(self, cfg, seed_history=True):
        """
        Build the initial batch from the configuration table.
        With seed_history the window is pre-filled with history_length flat
        points one tick period apart, so the chart starts full.
        """
        now = self.clock()
        period = cfg.tick_period_ms
        points = self.history_length if seed_history else 1
        assets = []
        for spec in cfg.assets:
            history = tuple(
                PricePoint(now - (points - 1 - i) * period, spec.starting_price, self.next_volume())
                for i in range(points)
            )
            assets.append(
                Asset(
                    id=spec.id,
                    name=spec.name,
                    icon=spec.icon,
                    initial_price=spec.starting_price,
                    current_price=spec.starting_price,
                    history=history,
                )
            )
        return tuple(assets)


class MarketData:
    """
    Process-wide holder of the current asset batch.

    Only the simulation clock calls advance(); everyone else reads snapshot().
    The batch is an immutable tuple replaced in a single reference assignment,
    so readers need no lock.
    """

    def __init__(self, engine: PriceEngine, assets):
        self.engine = engine
        self._assets = tuple(assets)
        self.tick_count = 0

    @classmethod
    def from_config(cls, cfg, rng=None, seed_history=True):
        engine = PriceEngine.from_config(cfg, rng=rng)
        return cls(engine, engine.seed_assets(cfg, seed_history=seed_history))

    def snapshot(self):
        return self._assets

    def publish(self, assets):
        self._assets = tuple(assets)

    def advance(self):
        assets = self.engine.advance(self._assets)
        self.publish(assets)
        self.tick_count += 1
        return assets

    def get(self, asset_id: str, assets=None) -> Asset:
        for a in (assets if assets is not None else self._assets):
            if a.id == asset_id:
                return a
        raise AssetNotFound(asset_id)

    def prices(self, assets=None) -> Dict[str, float]:
        return {a.id: a.current_price for a in (assets if assets is not None else self._assets)}
