# analysis/sensitivity.py
# Sweep the price-path parameters and summarise the resulting rolling-window
# statistics. Run as: python -m analysis.sensitivity
import itertools
import random

import pandas as pd

import config
from analysis.metrics import compute_metrics, history_frame
from market_data import MarketData

# ───── USER CONFIG ───────────────────────────────────────────────────────────
param_grid = {
    "volatility":     [0.005, 0.02, 0.05],
    "history_length": [20, 50, 200],
}
NUM_TICKS = 500
SEED = 7


def run_one(volatility, history_length, num_ticks=NUM_TICKS, seed=SEED):
    """Advance a fresh market num_ticks times and return per-asset metrics."""
    cfg = config.SimulationConfig.from_module(volatility=volatility, history_length=history_length)
    market = MarketData.from_config(cfg, rng=random.Random(seed), seed_history=False)
    for _ in range(num_ticks):
        market.advance()
    records = []
    for asset in market.snapshot():
        record = {"volatility": volatility, "history_length": history_length, "asset": asset.id}
        record.update(compute_metrics(history_frame(asset)))
        records.append(record)
    return records


def run_sweep(grid=None, num_ticks=NUM_TICKS):
    grid = grid or param_grid
    records = []
    for combo in itertools.product(*grid.values()):
        params = dict(zip(grid.keys(), combo))
        records.extend(run_one(num_ticks=num_ticks, **params))
    return pd.DataFrame(records)


if __name__ == "__main__":
    results_df = run_sweep()
    print("Sensitivity Analysis Results:")
    print(results_df.groupby(["volatility", "history_length"])[["vol", "window_change_pct"]].mean())
    results_df.to_csv("sensitivity_results.csv", index=False)
