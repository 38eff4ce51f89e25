# signal_evolver/optimization/param_space.py
"""
Parameter space declarations for the signal optimizer.

Every tunable is a ParameterSpec (min, max, step, integer/boolean flags). Gene values are
always stored on the quantized grid of their ParameterSpec:

    value = min + k * step,   k in [0, floor((max - min) / step)]

Factor weights form a "weight group". Weight specs live on [0, 1] with a shared step, and
after any construction or mutation the group is renormalized so it sums to 1.0 while every
weight stays on its grid (largest-remainder apportionment of 1/step units).
"""

from __future__ import annotations

import math
import random
from dataclasses import dataclass
from typing import Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple

WEIGHT_GROUP = "weights"
WEIGHT_STEP = 0.01
_DECIMALS = 10

FACTOR_NAMES: Tuple[str, ...] = (
    "technical",
    "momentum",
    "volatility",
    "volume",
    "sentiment",
    "pattern",
    "breadth",
    "mean_reversion",
)
WEIGHT_KEYS: Tuple[str, ...] = tuple(f"{name}_weight" for name in FACTOR_NAMES)


@dataclass(frozen=True)
class ParameterSpec:
    """Numeric domain of one tunable gene."""

    name: str
    min: float
    max: float
    step: float
    is_integer: bool = False
    is_boolean: bool = False
    group: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("ParameterSpec requires a name")
        for label, value in (("min", self.min), ("max", self.max), ("step", self.step)):
            if not math.isfinite(float(value)):
                raise ValueError(f"{self.name}: {label} must be finite, got {value!r}")
        if self.min > self.max:
            raise ValueError(f"{self.name}: min {self.min} > max {self.max}")
        if not self.step > 0:
            raise ValueError(f"{self.name}: step must be > 0, got {self.step}")
        if self.is_boolean and (self.min != 0 or self.max != 1 or self.step != 1):
            raise ValueError(f"{self.name}: boolean specs must be declared as (0, 1, step 1)")

    @property
    def n_steps(self) -> int:
        return int(math.floor((self.max - self.min) / self.step + 1e-9))

    def grid_value(self, k: int) -> float:
        k = min(max(int(k), 0), self.n_steps)
        value = self.min + k * self.step
        if self.is_integer or self.is_boolean:
            return float(int(round(value)))
        return round(value, _DECIMALS)

    def midpoint(self) -> float:
        return quantize(self, (self.min + self.max) / 2.0)

    def contains(self, value: float, tol: float = 1e-9) -> bool:
        """True when value is inside [min, max] and on the step grid."""
        try:
            v = float(value)
        except (TypeError, ValueError):
            return False
        if not math.isfinite(v) or v < self.min - tol or v > self.max + tol:
            return False
        return abs(quantize(self, v) - v) <= tol


def quantize(spec: ParameterSpec, value) -> float:
    """Clamp into [min, max] and snap to the nearest grid point."""
    try:
        v = float(value)
    except (TypeError, ValueError):
        v = spec.min
    if not math.isfinite(v):
        v = spec.min
    v = min(max(v, spec.min), spec.max)
    k = int(round((v - spec.min) / spec.step))
    return spec.grid_value(k)


def random_value(spec: ParameterSpec, rng: random.Random) -> float:
    return spec.grid_value(rng.randint(0, spec.n_steps))


def normalize_weights(genes: Dict[str, float], specs: Sequence[ParameterSpec]) -> Dict[str, float]:
    """Renormalize the weight group of ``genes`` in place so it sums to 1.0.

    A zero (or non-positive) group sum resets the group to an equal split.
    """
    if not specs:
        return genes
    step = specs[0].step
    units_total = int(round(1.0 / step))

    raw: List[float] = []
    for spec in specs:
        try:
            v = float(genes.get(spec.name, 0.0))
        except (TypeError, ValueError):
            v = 0.0
        raw.append(v if math.isfinite(v) and v > 0 else 0.0)

    total = sum(raw)
    n = len(specs)
    if total <= 0:
        shares = [units_total / n] * n
    else:
        shares = [r / total * units_total for r in raw]

    units = [int(math.floor(s + 1e-9)) for s in shares]
    remainder = units_total - sum(units)
    order = sorted(range(n), key=lambda i: (-(shares[i] - units[i]), i))
    for i in order[: max(0, remainder)]:
        units[i] += 1

    for spec, u in zip(specs, units):
        genes[spec.name] = round(u * step, _DECIMALS)
    return genes


class ParameterSpace:
    """Ordered, read-only collection of ParameterSpecs with a name -> index lookup."""

    def __init__(self, specs: Iterable[ParameterSpec], name: str = "custom") -> None:
        self.name = name
        self._specs: Tuple[ParameterSpec, ...] = tuple(specs)
        if not self._specs:
            raise ValueError("ParameterSpace requires at least one spec")
        self._index: Dict[str, int] = {}
        for i, spec in enumerate(self._specs):
            if spec.name in self._index:
                raise ValueError(f"Duplicate parameter name: {spec.name}")
            self._index[spec.name] = i

        self._weight_specs = tuple(s for s in self._specs if s.group == WEIGHT_GROUP)
        if self._weight_specs:
            steps = {s.step for s in self._weight_specs}
            if len(steps) != 1:
                raise ValueError("Weight-group specs must share one step")
            step = steps.pop()
            if abs(round(1.0 / step) * step - 1.0) > 1e-9:
                raise ValueError("Weight-group step must divide 1.0 evenly")
            for s in self._weight_specs:
                if s.min != 0.0 or s.max < 1.0:
                    raise ValueError(f"Weight spec {s.name} must span [0, 1]")

    def __len__(self) -> int:
        return len(self._specs)

    def __iter__(self) -> Iterator[ParameterSpec]:
        return iter(self._specs)

    def __contains__(self, name: object) -> bool:
        return name in self._index

    @property
    def names(self) -> List[str]:
        return [s.name for s in self._specs]

    @property
    def weight_specs(self) -> Tuple[ParameterSpec, ...]:
        return self._weight_specs

    def index_of(self, name: str) -> int:
        return self._index[name]

    def spec(self, name: str) -> ParameterSpec:
        return self._specs[self._index[name]]

    def normalize(self, genes: Dict[str, float]) -> Dict[str, float]:
        return normalize_weights(genes, self._weight_specs)

    def random_genes(self, rng: random.Random) -> Dict[str, float]:
        genes = {s.name: random_value(s, rng) for s in self._specs}
        return self.normalize(genes)

    def coerce(self, genes: Mapping[str, float]) -> Dict[str, float]:
        """Quantize a user-supplied gene map; missing genes take the ParameterSpec midpoint."""
        unknown = sorted(set(genes) - set(self._index))
        if unknown:
            raise KeyError(f"Unknown parameters: {unknown}")
        out: Dict[str, float] = {}
        for spec in self._specs:
            out[spec.name] = quantize(spec, genes[spec.name]) if spec.name in genes else spec.midpoint()
        return self.normalize(out)

    def to_vector(self, genes: Mapping[str, float]) -> List[float]:
        return [float(genes[s.name]) for s in self._specs]

    def from_vector(self, values: Sequence[float]) -> Dict[str, float]:
        if len(values) != len(self._specs):
            raise ValueError(f"Expected {len(self._specs)} values, got {len(values)}")
        return self.coerce({s.name: v for s, v in zip(self._specs, values)})

    def is_valid(self, genes: Mapping[str, float], tol: float = 1e-9) -> bool:
        if set(genes) != set(self._index):
            return False
        if not all(s.contains(genes[s.name], tol) for s in self._specs):
            return False
        if self._weight_specs:
            total = sum(float(genes[s.name]) for s in self._weight_specs)
            if abs(total - 1.0) > 1e-6:
                return False
        return True


def _weight(name: str) -> ParameterSpec:
    return ParameterSpec(name, 0.0, 1.0, WEIGHT_STEP, group=WEIGHT_GROUP)


def _int(name: str, lo: int, hi: int, step: int = 1) -> ParameterSpec:
    return ParameterSpec(name, float(lo), float(hi), float(step), is_integer=True)


def _flag(name: str) -> ParameterSpec:
    return ParameterSpec(name, 0.0, 1.0, 1.0, is_boolean=True)


_PRODUCTION_SPECS: Tuple[ParameterSpec, ...] = (
    ParameterSpec("max_position_pct", 0.02, 0.15, 0.01),
    _int("max_positions", 5, 30),
    ParameterSpec("atr_mult_stop", 0.5, 3.0, 0.1),
    ParameterSpec("atr_mult_target", 1.5, 6.0, 0.25),
    ParameterSpec("buy_threshold", 0.05, 0.30, 0.01),
    ParameterSpec("confidence_min", 0.15, 0.50, 0.01),
    *(_weight(k) for k in WEIGHT_KEYS),
    _int("rsi_period", 7, 21),
    _int("rsi_oversold", 20, 40),
    _int("rsi_overbought", 60, 80),
    _int("macd_fast", 8, 16),
    _int("macd_slow", 20, 32),
    _int("macd_signal", 6, 12),
    _int("bb_period", 15, 25),
    ParameterSpec("bb_std_dev", 1.5, 3.0, 0.1),
    _int("atr_period", 10, 20),
    _int("sma_short", 5, 15),
    _int("sma_medium", 20, 50, 5),
    _int("sma_long", 50, 100, 10),
    _int("momentum_lookback", 5, 30),
    _int("volatility_lookback", 10, 30),
    _flag("trend_filter"),
)

_WIDE_SPECS: Tuple[ParameterSpec, ...] = (
    ParameterSpec("max_position_pct", 0.01, 0.25, 0.01),
    _int("max_positions", 3, 40),
    ParameterSpec("atr_mult_stop", 0.5, 4.0, 0.1),
    ParameterSpec("atr_mult_target", 1.0, 8.0, 0.25),
    ParameterSpec("buy_threshold", 0.02, 0.40, 0.01),
    ParameterSpec("confidence_min", 0.05, 0.60, 0.01),
    *(_weight(k) for k in WEIGHT_KEYS),
    _int("rsi_period", 5, 28),
    _int("rsi_oversold", 15, 45),
    _int("rsi_overbought", 55, 85),
    _int("macd_fast", 5, 20),
    _int("macd_slow", 18, 40),
    _int("macd_signal", 5, 15),
    _int("bb_period", 10, 30),
    ParameterSpec("bb_std_dev", 1.0, 3.0, 0.1),
    _int("atr_period", 7, 28),
    _int("sma_short", 3, 20),
    _int("sma_medium", 15, 60, 5),
    _int("sma_long", 40, 120, 10),
    _int("momentum_lookback", 3, 40),
    _int("volatility_lookback", 5, 40),
    _flag("trend_filter"),
)

PARAM_SPACE_VARIANTS: Dict[str, Tuple[ParameterSpec, ...]] = {
    "production": _PRODUCTION_SPECS,
    "wide": _WIDE_SPECS,
}


def get_param_space(variant: str = "production") -> ParameterSpace:
    try:
        specs = PARAM_SPACE_VARIANTS[variant]
    except KeyError:
        raise ValueError(
            f"Unknown parameter-space variant {variant!r}; expected one of {sorted(PARAM_SPACE_VARIANTS)}"
        ) from None
    return ParameterSpace(specs, name=variant)


__all__ = [
    "FACTOR_NAMES",
    "WEIGHT_KEYS",
    "WEIGHT_GROUP",
    "ParameterSpec",
    "ParameterSpace",
    "PARAM_SPACE_VARIANTS",
    "get_param_space",
    "normalize_weights",
    "quantize",
    "random_value",
]
