# signal_evolver/data/bars.py
"""
Daily bar normalization and the read-only market dataset consumed by the simulator.

``normalize_bars`` maps any reasonable OHLCV frame to columns
``open, high, low, close, volume`` with a sorted UTC DatetimeIndex. ``MarketDataset`` aligns
every symbol to one trading calendar (the union of all bar dates) and exposes numpy arrays
for fast trailing-window slicing.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Dict, Iterable, List, Mapping, NamedTuple, Optional

import numpy as np
import pandas as pd

logger = logging.getLogger("data.bars")

OHLCV = ("open", "high", "low", "close", "volume")


class InsufficientUniverseError(ValueError):
    """Raised when too few symbols have enough history to run an optimization."""


class BarWindow(NamedTuple):
    open: np.ndarray
    high: np.ndarray
    low: np.ndarray
    close: np.ndarray
    volume: np.ndarray


def _to_utc_index(idx_like) -> pd.DatetimeIndex:
    converted = pd.to_datetime(idx_like, errors="coerce")
    di = pd.DatetimeIndex(converted)
    if di.tz is None:
        return di.tz_localize("UTC")
    return di.tz_convert("UTC")


def normalize_bars(df: pd.DataFrame | None) -> pd.DataFrame:
    """
    Normalize to columns: open, high, low, close, volume
    UTC DatetimeIndex (normalized to midnight), ascending, numeric, one row per day.
    Rows without a close are dropped; missing open/high/low fall back to close and
    missing volume to 0.
    """
    if df is None or len(df) == 0:
        return pd.DataFrame(columns=list(OHLCV), index=pd.DatetimeIndex([], tz="UTC"))
    df = df.copy()

    if isinstance(df.columns, pd.MultiIndex):
        df.columns = [str(x[-1]).lower() for x in df.columns]
    else:
        df.columns = [str(c).lower().replace(" ", "_") for c in df.columns]

    alias_map = {
        "open": ("open", "o", "open_price"),
        "high": ("high", "h", "high_price"),
        "low": ("low", "l", "low_price"),
        "close": ("close", "c", "close_price", "adj_close"),
        "volume": ("volume", "v", "vol"),
    }
    ren: Dict[str, str] = {}
    for std, aliases in alias_map.items():
        for a in aliases:
            if a in df.columns and std not in ren.values():
                ren[a] = std
                break
    df = df.rename(columns=ren)

    if "close" not in df.columns:
        raise ValueError(f"Bars are missing a close column; got {list(df.columns)}")

    idx_source = df.index
    if not isinstance(df.index, pd.DatetimeIndex):
        for c in ("datetime", "timestamp", "date", "time", "t"):
            if c in df.columns:
                idx_source = df[c]
                break
    df.index = _to_utc_index(idx_source).normalize()
    df = df[df.index.notna()]

    for c in OHLCV:
        if c not in df.columns:
            df[c] = np.nan
        df[c] = pd.to_numeric(df[c], errors="coerce")
    df = df[list(OHLCV)]

    df = df[df["close"].notna()].copy()
    for c in ("open", "high", "low"):
        df[c] = df[c].fillna(df["close"])
    df["volume"] = df["volume"].fillna(0.0)

    df = df.sort_index(kind="mergesort")
    df = df[~df.index.duplicated(keep="last")]
    return df.astype(float)


def load_bars_csv(path: str | Path) -> pd.DataFrame:
    return normalize_bars(pd.read_csv(path))


def load_bars_dir(directory: str | Path, symbols: Optional[Iterable[str]] = None) -> Dict[str, pd.DataFrame]:
    """Load ``<SYMBOL>.csv`` files from a directory."""
    root = Path(directory)
    wanted = {s.upper() for s in symbols} if symbols else None
    out: Dict[str, pd.DataFrame] = {}
    for p in sorted(root.glob("*.csv")):
        sym = p.stem.upper()
        if wanted is not None and sym not in wanted:
            continue
        try:
            out[sym] = load_bars_csv(p)
        except (ValueError, pd.errors.ParserError) as exc:
            logger.warning("Skipping %s: %s", p.name, exc)
    return out


class SymbolBars:
    """One symbol's bars plus its mapping onto the dataset calendar."""

    def __init__(self, symbol: str, bars: pd.DataFrame, calendar: pd.DatetimeIndex) -> None:
        self.symbol = symbol
        self.dates = bars.index
        self.open = bars["open"].to_numpy(dtype=float)
        self.high = bars["high"].to_numpy(dtype=float)
        self.low = bars["low"].to_numpy(dtype=float)
        self.close = bars["close"].to_numpy(dtype=float)
        self.volume = bars["volume"].to_numpy(dtype=float)
        # bars available up to and including each calendar day
        self.counts = np.searchsorted(self.dates.values, calendar.values, side="right")
        self.has_bar = np.zeros(len(calendar), dtype=bool)
        self.has_bar[calendar.get_indexer(self.dates)] = True

    def __len__(self) -> int:
        return len(self.close)

    def count_through(self, day_idx: int) -> int:
        return int(self.counts[day_idx])

    def bar_index(self, day_idx: int) -> int:
        """Index of this symbol's bar on calendar day ``day_idx``, or -1 if none."""
        return int(self.counts[day_idx]) - 1 if self.has_bar[day_idx] else -1

    def last_close(self, day_idx: int) -> float:
        n = int(self.counts[day_idx])
        return float(self.close[n - 1]) if n > 0 else float("nan")

    def window(self, end: int, length: int) -> BarWindow:
        """Trailing window of at most ``length`` bars ending before index ``end``."""
        start = max(0, end - length)
        return BarWindow(
            self.open[start:end],
            self.high[start:end],
            self.low[start:end],
            self.close[start:end],
            self.volume[start:end],
        )


class MarketDataset:
    """Immutable per-symbol daily bars aligned to a shared calendar."""

    def __init__(self, bars: Mapping[str, pd.DataFrame]) -> None:
        frames: Dict[str, pd.DataFrame] = {}
        for symbol in sorted(bars):
            df = normalize_bars(bars[symbol])
            if df.empty:
                logger.warning("Dropping %s: no usable bars", symbol)
                continue
            frames[str(symbol)] = df

        if frames:
            calendar = frames[next(iter(frames))].index
            for df in frames.values():
                calendar = calendar.union(df.index)
        else:
            calendar = pd.DatetimeIndex([], tz="UTC")
        self.calendar: pd.DatetimeIndex = calendar
        self._symbols: Dict[str, SymbolBars] = {
            sym: SymbolBars(sym, df, calendar) for sym, df in frames.items()
        }

    @classmethod
    def from_directory(cls, directory: str | Path, symbols: Optional[Iterable[str]] = None) -> "MarketDataset":
        return cls(load_bars_dir(directory, symbols))

    def __len__(self) -> int:
        return len(self._symbols)

    def __getitem__(self, symbol: str) -> SymbolBars:
        return self._symbols[symbol]

    def __contains__(self, symbol: object) -> bool:
        return symbol in self._symbols

    @property
    def symbols(self) -> List[str]:
        return list(self._symbols)

    def eligible_symbols(self, min_bars: int) -> List[str]:
        return [s for s, sb in self._symbols.items() if len(sb) >= min_bars]

    def require_universe(self, min_symbols: int, min_bars: int) -> List[str]:
        eligible = self.eligible_symbols(min_bars)
        if len(eligible) < min_symbols:
            raise InsufficientUniverseError(
                f"Only {len(eligible)} symbols have >= {min_bars} bars; need at least {min_symbols}"
            )
        return eligible

    def describe(self) -> Dict[str, object]:
        return {
            "symbols": len(self._symbols),
            "days": len(self.calendar),
            "start": str(self.calendar[0].date()) if len(self.calendar) else None,
            "end": str(self.calendar[-1].date()) if len(self.calendar) else None,
        }


__all__ = [
    "BarWindow",
    "InsufficientUniverseError",
    "MarketDataset",
    "SymbolBars",
    "load_bars_csv",
    "load_bars_dir",
    "normalize_bars",
]
