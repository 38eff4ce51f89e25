from __future__ import annotations

from typing import Dict, Sequence

import numpy as np
import pandas as pd

from signal_evolver.data.bars import MarketDataset


def make_bars(rows: int, seed: int = 0, start: str = "2022-01-03", drift: float = 0.0005, vol: float = 0.015) -> pd.DataFrame:
    """Seeded random-walk OHLCV frame on business days."""
    rng = np.random.default_rng(seed)
    idx = pd.bdate_range(start, periods=rows, tz="UTC")
    rets = rng.normal(drift, vol, size=rows)
    close = 50.0 * np.exp(np.cumsum(rets))
    open_ = close * (1.0 + rng.normal(0.0, vol / 3, size=rows))
    spread = np.abs(rng.normal(0.0, vol / 2, size=rows))
    high = np.maximum(open_, close) * (1.0 + spread)
    low = np.minimum(open_, close) * (1.0 - spread)
    volume = rng.integers(100_000, 1_000_000, size=rows).astype(float)
    return pd.DataFrame({"open": open_, "high": high, "low": low, "close": close, "volume": volume}, index=idx)


def make_flat_bars(closes: Sequence[float], start: str = "2022-01-03", spread: float = 0.0) -> pd.DataFrame:
    """Bars whose open/high/low sit ``spread`` around the given closes."""
    c = np.asarray(closes, dtype=float)
    idx = pd.bdate_range(start, periods=len(c), tz="UTC")
    return pd.DataFrame(
        {"open": c, "high": c * (1.0 + spread), "low": c * (1.0 - spread), "close": c, "volume": np.full(len(c), 1e6)},
        index=idx,
    )


def make_dataset(symbols: int = 4, rows: int = 140, seed: int = 0) -> MarketDataset:
    frames: Dict[str, pd.DataFrame] = {
        f"SYM{i}": make_bars(rows, seed=seed + i, drift=0.001 * ((i % 3) - 1) + 0.0005) for i in range(symbols)
    }
    return MarketDataset(frames)
