#!/usr/bin/env python3
"""Run the island-model signal optimizer over a directory of per-symbol OHLCV CSV files."""

from __future__ import annotations

import argparse
import os
import sys
from pathlib import Path

from dotenv import find_dotenv, load_dotenv

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from signal_evolver.data.bars import InsufficientUniverseError, MarketDataset
from signal_evolver.optimization.islands import IslandOptimizer, load_run_config
from signal_evolver.utils.artifacts import ensure_dir, write_json
from signal_evolver.utils.logging_setup import setup_logging
from signal_evolver.utils.progress import console_progress


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Evolve trading-signal parameters with an island GA.")
    parser.add_argument("--data-dir", default=os.getenv("OPTIMIZER_DATA_DIR", "storage/data/ohlcv"))
    parser.add_argument("--symbols", default=os.getenv("OPTIMIZER_SYMBOLS", ""), help="Comma list; default all files.")
    parser.add_argument("--config", default=None, help="JSON run config (default storage/config/optimizer.json).")
    parser.add_argument("--out-dir", default=os.getenv("OPTIMIZER_OUT_DIR", "storage/runs"))
    parser.add_argument("--seed", type=int, default=None)
    parser.add_argument("--workers", type=int, default=None)
    parser.add_argument("--population", type=int, default=None)
    parser.add_argument("--islands", type=int, default=None)
    parser.add_argument("--max-generations", type=int, default=None)
    parser.add_argument("--time-budget-sec", type=float, default=None)
    parser.add_argument("--param-space", choices=["production", "wide"], default=None)
    parser.add_argument("--fitness-variant", choices=["production", "classic"], default=None)
    parser.add_argument("--start", default=None)
    parser.add_argument("--end", default=None)
    parser.add_argument("--top", type=int, default=20, help="How many ranked genomes to write.")
    parser.add_argument("--quiet", action="store_true", help="Suppress per-generation console progress.")
    return parser.parse_args()


def main() -> int:
    env_path = find_dotenv(usecwd=True)
    if env_path:
        load_dotenv(dotenv_path=env_path, override=False)
    args = _parse_args()
    setup_logging()

    config = load_run_config(
        args.config,
        seed=args.seed,
        workers=args.workers,
        population_size=args.population,
        island_count=args.islands,
        max_generations=args.max_generations,
        time_budget_sec=args.time_budget_sec,
        param_space=args.param_space,
        fitness_variant=args.fitness_variant,
        start=args.start,
        end=args.end,
    )
    symbols = [s.strip().upper() for s in args.symbols.split(",") if s.strip()] or None
    dataset = MarketDataset.from_directory(args.data_dir, symbols)
    print(f"Loaded {len(dataset)} symbols from {args.data_dir}: {dataset.describe()}")

    optimizer = IslandOptimizer(dataset, config, progress_cb=None if args.quiet else console_progress)
    try:
        result = optimizer.run()
    except InsufficientUniverseError as exc:
        print(f"Aborted: {exc}")
        return 2

    out_dir = ensure_dir(args.out_dir)
    path = write_json(Path(out_dir) / "results.json", result.to_payload(top_n=args.top))
    best = result.best
    print(
        f"Stopped ({result.stop_reason}) after {result.generations_run} generations / "
        f"{result.evaluations} evaluations in {result.elapsed_sec:.1f}s"
    )
    if best is not None:
        print(f"Best genome {best.id}: fitness={best.fitness:.3f} verdict={result.best_report.verdict.value}")
    else:
        print("No acceptable genome was found.")
    print(f"Results written to {path}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
