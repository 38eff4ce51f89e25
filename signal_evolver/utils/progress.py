# signal_evolver/utils/progress.py
from __future__ import annotations

from typing import Any, Callable, Dict

# Public type alias: a function taking (event, payload)
ProgressCallback = Callable[[str, Dict[str, Any]], None]

_KEYS = ("gen", "island", "evaluations", "best_fitness", "avg_fitness", "mutation_rate", "diversity")


def console_progress(event: str, payload: Dict[str, Any]) -> None:
    """Lightweight progress sink for non-UI contexts."""
    try:
        key_bits = {k: payload.get(k) for k in _KEYS if k in payload}
        print(f"[{event}] {key_bits}")
    except Exception:
        # Never let progress crash the caller
        pass


def noop_progress(event: str, payload: Dict[str, Any]) -> None:
    return
