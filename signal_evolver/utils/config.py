# signal_evolver/utils/config.py
"""
JSON + environment configuration helpers.

``read_config_json`` copies only known keys with safe coercion and returns {} for a missing
or malformed file. ``env_overrides`` reads ``NAME=value`` environment variables for a fixed
set of keys. Both are schema-driven: the schema maps key -> target type.
"""

from __future__ import annotations

import json
import logging
import math
import os
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

logger = logging.getLogger("utils.config")

_TRUE = {"1", "true", "yes", "y", "on"}
_FALSE = {"0", "false", "no", "n", "off"}


def coerce_value(raw: Any, kind: type) -> Any:
    """Coerce ``raw`` to ``kind`` (bool/int/float/str); None when it cannot be coerced."""
    if raw is None:
        return None
    try:
        if kind is bool:
            if isinstance(raw, bool):
                return raw
            text = str(raw).strip().lower()
            if text in _TRUE:
                return True
            if text in _FALSE:
                return False
            return None
        if kind is int:
            f = float(raw)
            if not math.isfinite(f) or f != int(f):
                return None
            return int(f)
        if kind is float:
            f = float(raw)
            return f if math.isfinite(f) else None
        if kind is str:
            return str(raw)
    except (TypeError, ValueError):
        return None
    return raw


def read_config_json(path: Optional[str | Path], schema: Mapping[str, type]) -> Dict[str, Any]:
    if path is None:
        return {}
    p = Path(path)
    if not p.exists():
        return {}
    try:
        data = json.loads(p.read_text(encoding="utf-8"))
    except (OSError, ValueError) as exc:
        logger.warning("Ignoring config %s: %s", p, exc)
        return {}
    if not isinstance(data, dict):
        logger.warning("Ignoring config %s: top level is not an object", p)
        return {}

    out: Dict[str, Any] = {}
    for key, kind in schema.items():
        if key not in data:
            continue
        value = data[key] if data[key] is None else coerce_value(data[key], kind)
        if value is None and data[key] is not None:
            logger.warning("Ignoring config key %s=%r (expected %s)", key, data[key], kind.__name__)
            continue
        out[key] = value
    unknown = sorted(set(data) - set(schema))
    if unknown:
        logger.warning("Unknown config keys ignored: %s", unknown)
    return out


def env_overrides(env_map: Mapping[str, str], schema: Mapping[str, type]) -> Dict[str, Any]:
    """``env_map`` maps environment variable -> config key."""
    out: Dict[str, Any] = {}
    for var, key in env_map.items():
        raw = os.getenv(var)
        if raw is None or raw.strip() == "":
            continue
        value = coerce_value(raw, schema.get(key, str))
        if value is None:
            logger.warning("Ignoring %s=%r", var, raw)
            continue
        out[key] = value
    return out


__all__ = ["coerce_value", "env_overrides", "read_config_json"]
