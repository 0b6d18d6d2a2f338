"""Simulator option defaults and the merged-configuration boundary.

The core receives exactly one mapping of named numeric options. It is
built in three layers, later layers winning:

    1. DEFAULT_PARAMS
    2. an optional JSON parameter file (a flat object)
    3. repeated "key=value" overrides

Overrides are lenient: an override whose value does not parse to a
finite number is dropped (logged at DEBUG), never raised. A parameter
file that is not a JSON object is a ConfigurationError.
"""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Mapping

logger = logging.getLogger(__name__)


class ConfigurationError(ValueError):
    """Malformed configuration input or invalid sweep settings."""


DEFAULT_PARAMS: dict[str, float] = {
    "beta": 1.0,
    "stepSize": 0.01,
    "p3On": 0,
    "p6On": 0,
    "p6SFactor": 1.0,
    "pWrite": 0.1,
    "pNWrite": 0.05,
    "pAWrite": 0.05,
    "pSWrite": 0.05,
    "muHigh": 0.6,
    "muLow": -0.6,
    "kappaRep": 500.0,
    "r0": 0.25,
    "kappaBond": 1.2,
    "rStar": 0.22,
    "lambdaW": 0.3,
    "lW": 4,
    "lambdaN": 0.5,
    "lN": 6,
    "lambdaA": 0.5,
    "lA": 6,
    "lambdaS": 0.5,
    "lS": 6,
    "gridSize": 16,
    "rPropose": 0.12,
    "metaLayers": 0,
    "eta": 0.0,
    "etaDrive": 0.0,
    "opCouplingOn": 0,
    "opStencil": 0,
    "opBudgetK": 16,
    "clockOn": 0,
    "clockK": 8,
    "clockFrac": 0.2,
    "clockUsesP6": 1,
    "repairClockGated": 0,
    "repairGateSpan": 1,
}


@dataclass(frozen=True)
class RunOptions:
    """Run-level settings that are not simulator options."""

    particle_count: int = 200
    seed: int = 1
    steps: int = 100_000
    report_every: int = 0
    bond_threshold: int = 3

    def __post_init__(self):
        if self.particle_count < 0:
            raise ConfigurationError(f"particle_count must be >= 0, got {self.particle_count}")
        if self.steps < 0:
            raise ConfigurationError(f"steps must be >= 0, got {self.steps}")
        if self.report_every < 0:
            raise ConfigurationError(f"report_every must be >= 0, got {self.report_every}")


def load_params(path: str | Path) -> dict:
    """Read a flat JSON object of options."""
    path = Path(path)
    with path.open("r", encoding="utf-8") as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ConfigurationError(f"{path}: invalid JSON ({e})") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"{path}: expected a JSON object, got {type(data).__name__}")
    return data


def parse_override(item: str) -> tuple[str, float] | None:
    """Parse "key=value"; None when the key is empty or value not finite."""
    if not item or "=" not in item:
        return None
    key, _, raw = item.partition("=")
    key = key.strip()
    if not key:
        return None
    try:
        value = float(raw)
    except ValueError:
        return None
    if not math.isfinite(value):
        return None
    return key, value


def apply_overrides(params: dict, sets: Iterable[str]) -> dict:
    """Apply key=value overrides in place and return params."""
    for item in sets:
        parsed = parse_override(item)
        if parsed is None:
            logger.debug("dropping override %r", item)
            continue
        key, value = parsed
        params[key] = value
    return params


def merge_config(
    defaults: Mapping[str, float] | None = None,
    params_path: str | Path | None = None,
    sets: Iterable[str] = (),
) -> dict:
    """Build the single merged option mapping handed to the core."""
    params = dict(DEFAULT_PARAMS if defaults is None else defaults)
    if params_path is not None:
        params.update(load_params(params_path))
    return apply_overrides(params, sets)
