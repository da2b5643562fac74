# config.py
# Static configuration table for the paper-trading simulator.
# Module-level constants are the reference configuration; SimulationConfig
# freezes them (plus any overrides) into one object handed to each component.

from dataclasses import dataclass, replace
from typing import Dict, Optional, Tuple

# Tradable assets: id -> display name, icon and starting price
ASSETS = {
    "TOM": {"name": "Tomato", "icon": "\U0001F345", "starting_price": 10.50},
    "CAR": {"name": "Carrot", "icon": "\U0001F955", "starting_price": 45.20},
    "BRO": {"name": "Broccoli", "icon": "\U0001F966", "starting_price": 7.80},
    "POT": {"name": "Potato", "icon": "\U0001F954", "starting_price": 22.00},
    "PEP": {"name": "Pepper", "icon": "\U0001F336", "starting_price": 31.90},
}

# Account
STARTING_CASH = 10000.00

# Clock and price path
TICK_PERIOD_MS = 1500          # one tick = one price move for every asset + one matching pass
HISTORY_LENGTH = 50            # rolling window size (ticks, not wall-clock time)
VOLATILITY = 0.02              # max relative move per tick (±2%)
PRICE_FLOOR = 0.01             # prices never drop below this
VOLUME_RANGE = (100, 2099)     # synthetic volume per tick, inclusive

# Notifications
NOTIFICATION_TTL_MS = 4000     # display lifetime of fill/error toasts

# Persistence
DB_PATH = "./.cache/ledgers.sqlite3"
PERSISTENCE_RETRIES = 0        # 0 = report and move on
PERSISTENCE_BACKOFF_SEC = 0.25

# TCP command surface
TCP_HOST = "127.0.0.1"
TCP_PORT = 5000
NUM_CLIENTS = 2


@dataclass(frozen=True)
class AssetSpec:
    id: str
    name: str
    icon: str
    starting_price: float


@dataclass(frozen=True)
class SimulationConfig:
    """Immutable snapshot of the configuration table."""

    assets: Tuple[AssetSpec, ...]
    starting_cash: float = STARTING_CASH
    tick_period_ms: int = TICK_PERIOD_MS
    history_length: int = HISTORY_LENGTH
    volatility: float = VOLATILITY
    price_floor: float = PRICE_FLOOR
    volume_range: Tuple[int, int] = VOLUME_RANGE
    notification_ttl_ms: int = NOTIFICATION_TTL_MS
    persistence_retries: int = PERSISTENCE_RETRIES
    persistence_backoff_sec: float = PERSISTENCE_BACKOFF_SEC
    db_path: Optional[str] = DB_PATH
    tcp_host: str = TCP_HOST
    tcp_port: int = TCP_PORT

    @staticmethod
    def from_module(assets: Optional[Dict[str, Dict[str, object]]] = None, **overrides) -> "SimulationConfig":
        """Build a config from the module constants, applying keyword overrides."""
        table = ASSETS if assets is None else assets
        specs = tuple(
            AssetSpec(
                id=str(asset_id),
                name=str(row["name"]),
                icon=str(row.get("icon", "")),
                starting_price=float(row["starting_price"]),
            )
            for asset_id, row in table.items()
        )
        cfg = SimulationConfig(assets=specs)
        if overrides:
            cfg = replace(cfg, **overrides)
        cfg.validate()
        return cfg

    @property
    def tick_period_sec(self) -> float:
        return self.tick_period_ms / 1000.0

    def asset_ids(self) -> Tuple[str, ...]:
        return tuple(a.id for a in self.assets)

    def validate(self) -> None:
        if not self.assets:
            raise ValueError("at least one asset must be configured")
        ids = self.asset_ids()
        if len(set(ids)) != len(ids):
            raise ValueError(f"asset ids must be unique: {ids}")
        for a in self.assets:
            if a.starting_price <= 0:
                raise ValueError(f"starting price for {a.id} must be positive")
        if self.history_length < 1:
            raise ValueError("history_length must be >= 1")
        if self.tick_period_ms <= 0:
            raise ValueError("tick_period_ms must be positive")
        if not (0 <= self.volatility < 1):
            raise ValueError("volatility must be in [0, 1)")
        if self.price_floor <= 0:
            raise ValueError("price_floor must be positive")
        lo, hi = self.volume_range
        if lo < 0 or hi < lo:
            raise ValueError(f"invalid volume_range {self.volume_range}")
        if self.starting_cash < 0:
            raise ValueError("starting_cash must be non-negative")
