# analysis/metrics.py
# pandas/numpy views over the simulator state for charts and reports:
# price history frames, moving average overlay, rolling-window statistics,
# a synthetic depth ladder, and a marked-to-market portfolio summary.
import random

import numpy as np
import pandas as pd


def history_frame(asset):
    """Price/volume history of one asset, indexed by tick timestamp."""
    if not asset.history:
        return pd.DataFrame(columns=["price", "volume"])
    df = pd.DataFrame(
        [(p.timestamp, p.price, p.volume) for p in asset.history],
        columns=["timestamp", "price", "volume"],
    )
    df["timestamp"] = pd.to_datetime(df["timestamp"], unit="ms")
    return df.set_index("timestamp")


def add_sma(df, window=5, column="price"):
    """Append an `sma` column; NaN until `window` points are available."""
    out = df.copy()
    out["sma"] = out[column].rolling(window=window, min_periods=window).mean()
    return out


def compute_metrics(df):
    """
    Statistics over the retained window only (not a wall-clock period).
    Volatility is the root sum of squared log returns.
    """
    prices = df["price"].astype(float)
    lr = np.log(prices).diff().dropna()
    if len(prices) >= 2 and prices.iloc[0] > 0:
        change = (prices.iloc[-1] - prices.iloc[0]) / prices.iloc[0] * 100.0
    else:
        change = 0.0
    return {
        "n": int(len(prices)),
        "vol": float(np.sqrt((lr ** 2).sum())) if len(lr) else 0.0,
        "skew": float(lr.skew()) if len(lr) > 2 else float("nan"),
        "kurt": float(lr.kurtosis()) if len(lr) > 3 else float("nan"),
        "window_change_pct": float(change),
        "total_volume": int(df["volume"].sum()) if "volume" in df else 0,
    }


def market_frame(assets):
    """One row per asset: current price, window change and window metrics."""
    rows = []
    for a in assets:
        m = compute_metrics(history_frame(a))
        rows.append({"id": a.id, "name": a.name, "price": a.current_price, **m})
    return pd.DataFrame(rows).set_index("id") if rows else pd.DataFrame()


def depth_ladder(price, levels=5, step=0.005, rng=None):
    """
    Display-only bid/ask ladder around `price`.
    Ask k sits at price*(1+step*k), bid k at price*(1-step*k); sizes are random.
    """
    rng = rng or random.Random()
    ks = np.arange(1, levels + 1)
    asks = pd.DataFrame({"price": price * (1 + step * ks), "size": [rng.randint(10, 109) for _ in ks]})
    bids = pd.DataFrame({"price": price * (1 - step * ks), "size": [rng.randint(10, 109) for _ in ks]})
    asks = asks.sort_values("price", ascending=False).reset_index(drop=True)
    asks["total"] = asks["size"][::-1].cumsum()[::-1]
    bids["total"] = bids["size"].cumsum()
    return bids, asks


def portfolio_summary(ledger, assets):
    """
    Mark the ledger to the given batch.

    Returns (holdings DataFrame, totals dict). Gain/loss uses avg cost, so it
    is the unrealized P&L of the units currently held.
    """
    prices = {a.id: a.current_price for a in assets}
    names = {a.id: a.name for a in assets}
    rows = []
    for asset_id, h in ledger.holdings.items():
        if h.quantity == 0 or asset_id not in prices:
            continue
        value = h.quantity * prices[asset_id]
        basis = h.quantity * float(h.avg_cost)
        gain = value - basis
        rows.append({
            "asset_id": asset_id,
            "name": names[asset_id],
            "quantity": h.quantity,
            "avg_cost": float(h.avg_cost),
            "price": prices[asset_id],
            "value": value,
            "cost_basis": basis,
            "gain": gain,
            "gain_pct": gain / basis * 100.0 if basis else np.nan,
        })
    holdings = pd.DataFrame(rows, columns=[
        "asset_id", "name", "quantity", "avg_cost", "price", "value", "cost_basis", "gain", "gain_pct",
    ]).set_index("asset_id")

    totals = {
        "cash": float(ledger.cash_balance),
        "holdings_value": float(holdings["value"].sum()) if len(holdings) else 0.0,
        "escrowed_cash": float(ledger.escrowed_cash()),
        "net_worth": float(ledger.net_worth(prices)),
        "open_orders": len(ledger.open_orders),
    }
    return holdings, totals


def transactions_frame(ledger):
    rows = [
        {
            "id": t.id,
            "timestamp": pd.to_datetime(t.timestamp, unit="ms"),
            "side": t.side.value,
            "asset_id": t.asset_id,
            "asset_name": t.asset_name,
            "quantity": t.quantity,
            "price": float(t.price),
            "notional": float(t.notional),
            "order_kind": t.order_kind.value,
        }
        for t in ledger.transactions
    ]
    return pd.DataFrame(rows, columns=[
        "id", "timestamp", "side", "asset_id", "asset_name", "quantity", "price", "notional", "order_kind",
    ])
