"""Bar normalization, CSV loading and calendar alignment."""
from __future__ import annotations

from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from signal_evolver.data.bars import InsufficientUniverseError, MarketDataset, load_bars_dir, normalize_bars
from tests._bars_test_utils import make_bars


def test_normalize_bars_maps_aliases_and_sorts() -> None:
    raw = pd.DataFrame(
        {
            "Date": ["2024-01-03", "2024-01-02", "2024-01-02", "2024-01-04"],
            "O": [10.0, 9.0, 9.5, 11.0],
            "H": [10.5, 9.8, 9.9, None],
            "L": [9.8, 8.9, 9.1, 10.7],
            "Adj Close": [10.2, 9.4, 9.6, 11.1],
            "V": [1000, 900, 950, None],
        }
    )
    df = normalize_bars(raw)
    assert list(df.columns) == ["open", "high", "low", "close", "volume"]
    assert str(df.index.tz) == "UTC"
    assert df.index.is_monotonic_increasing
    assert len(df) == 3
    assert df["close"].iloc[0] == 9.6  # duplicate date keeps the last row
    assert df["high"].iloc[-1] == 11.1  # missing high falls back to close
    assert df["volume"].iloc[-1] == 0.0


def test_normalize_bars_requires_close() -> None:
    with pytest.raises(ValueError):
        normalize_bars(pd.DataFrame({"date": ["2024-01-02"], "open": [1.0]}))
    assert normalize_bars(None).empty


def test_load_bars_dir_skips_bad_files(tmp_path: Path, caplog: pytest.LogCaptureFixture) -> None:
    make_bars(10, seed=1).rename_axis("timestamp").reset_index().to_csv(tmp_path / "aaa.csv", index=False)
    make_bars(10, seed=2).rename_axis("timestamp").reset_index().to_csv(tmp_path / "BBB.csv", index=False)
    (tmp_path / "CCC.csv").write_text("timestamp,open\n2024-01-02,1\n", encoding="utf-8")

    with caplog.at_level("WARNING"):
        frames = load_bars_dir(tmp_path)
    assert sorted(frames) == ["AAA", "BBB"]
    assert "CCC.csv" in caplog.text
    assert sorted(load_bars_dir(tmp_path, ["bbb"])) == ["BBB"]


def test_dataset_aligns_symbols_to_union_calendar() -> None:
    a = make_bars(10, seed=1, start="2024-01-01")
    b = make_bars(10, seed=2, start="2024-01-08")
    ds = MarketDataset({"B": b, "A": a, "EMPTY": pd.DataFrame()})

    assert ds.symbols == ["A", "B"]
    assert "EMPTY" not in ds
    assert len(ds.calendar) == 15
    sb = ds["B"]
    assert sb.bar_index(0) == -1
    assert np.isnan(sb.last_close(0))
    first_b = ds.calendar.get_loc(b.index[0])
    assert sb.bar_index(first_b) == 0
    assert sb.last_close(len(ds.calendar) - 1) == pytest.approx(b["close"].iloc[-1])
    assert ds["A"].bar_index(len(ds.calendar) - 1) == -1
    assert ds["A"].count_through(len(ds.calendar) - 1) == 10

    window = ds["A"].window(10, 4)
    assert window.close.tolist() == a["close"].iloc[6:10].tolist()


def test_require_universe() -> None:
    ds = MarketDataset({f"S{i}": make_bars(30 + 20 * i, seed=i) for i in range(3)})
    assert ds.require_universe(2, 50) == ["S1", "S2"]
    with pytest.raises(InsufficientUniverseError):
        ds.require_universe(3, 50)
