"""Persisted sweep outputs: raw per-run JSONL and per-point summary CSV.

Each sweep invocation writes two files into its output directory:

    <name>_raw.jsonl      one JSON object per (point, seed) run
    <name>_summary.csv    header row, then one row per parameter point

Both are written once, at the end of the sweep (or when a per-run check
fails, with what was gathered so far). JSON has no encoding for
inf or NaN, so non-finite floats become null (a run that never recovered
has "recovery_steps": null); in the CSV they become empty cells.

Raw record shape::

    {
        "sweep": str, "point": str, "value": float, "seed": int,
        "steps": int, "ep_exact_total": float, "ep_rate": float,
        "ep_window_rate": float, "clock_q": int, "clock_drift": float,
        ... sweep-specific scalars ...,
        "samples": [{"step": int, ...}, ...]
    }

validate_record() and validate_summary_row() return lists of error
messages; an empty list means valid.
"""
from __future__ import annotations

import csv
import json
import math
from pathlib import Path
from typing import Iterable, Mapping, Sequence

import numpy as np

RAW_REQUIRED_KEYS = ("sweep", "point", "value", "seed", "steps", "ep_exact_total",
                     "ep_rate", "ep_window_rate", "clock_q", "clock_drift")


class NumpyEncoder(json.JSONEncoder):
    """JSON encoder that handles numpy types."""

    def default(self, obj):
        if isinstance(obj, np.ndarray):
            return obj.tolist()
        if isinstance(obj, (np.integer,)):
            return int(obj)
        if isinstance(obj, (np.floating,)):
            return float(obj)
        if isinstance(obj, (np.bool_,)):
            return bool(obj)
        return super().default(obj)


def to_jsonable(obj):
    """Recursively replace non-finite floats with None and unwrap numpy."""
    if isinstance(obj, Mapping):
        return {str(k): to_jsonable(v) for k, v in obj.items()}
    if isinstance(obj, np.ndarray):
        return [to_jsonable(v) for v in obj.tolist()]
    if isinstance(obj, (list, tuple)):
        return [to_jsonable(v) for v in obj]
    if isinstance(obj, (bool, np.bool_)):
        return bool(obj)
    if isinstance(obj, (np.integer,)):
        return int(obj)
    if isinstance(obj, (float, np.floating)):
        value = float(obj)
        return value if math.isfinite(value) else None
    return obj


def write_jsonl(path: str | Path, records: Iterable[Mapping]) -> Path:
    """Write one JSON object per line; returns the path written."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    lines = [json.dumps(to_jsonable(r), cls=NumpyEncoder) for r in records]
    path.write_text("\n".join(lines) + ("\n" if lines else ""), encoding="utf-8")
    return path


def _csv_cell(value):
    value = to_jsonable(value)
    return "" if value is None else value


def write_csv(path: str | Path, header: Sequence[str], rows: Iterable[Mapping]) -> Path:
    """Write rows (mappings keyed by header names) as CSV."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(header)
        for row in rows:
            writer.writerow([_csv_cell(row.get(col)) for col in header])
    return path


def read_jsonl(path: str | Path) -> list[dict]:
    with Path(path).open("r", encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


def read_csv(path: str | Path) -> list[dict]:
    with Path(path).open("r", newline="", encoding="utf-8") as f:
        return list(csv.DictReader(f))


def validate_record(d: dict) -> list[str]:
    """Validate one raw run record. Returns error messages."""
    errors = []
    for key in RAW_REQUIRED_KEYS:
        if key not in d:
            errors.append(f"Missing required key: {key}")
    if errors:
        return errors

    if not isinstance(d["seed"], int):
        errors.append(f"seed must be an int, got {type(d['seed']).__name__}")
    if d["steps"] < 0:
        errors.append(f"steps must be >= 0, got {d['steps']}")

    rec = d.get("recovery_steps")
    if rec is not None and (not isinstance(rec, (int, float)) or rec < 0):
        errors.append(f"recovery_steps must be null or >= 0, got {rec}")

    if d.get("component_sizes_sum") is not None and "particle_count" in d:
        if d["component_sizes_sum"] != d["particle_count"]:
            errors.append(
                f"component sizes sum to {d['component_sizes_sum']}, "
                f"particle_count is {d['particle_count']}"
            )

    for sample in d.get("samples", []):
        if "step" not in sample:
            errors.append("sample without step")
            break
    return errors


def validate_summary_row(row: Mapping, header: Sequence[str]) -> list[str]:
    """Validate a summary row against its header."""
    errors = []
    missing = [col for col in header if col not in row]
    extra = [col for col in row if col not in header]
    if missing:
        errors.append(f"Row missing columns: {missing}")
    if extra:
        errors.append(f"Row has columns not in header: {extra}")
    if header and header[0] not in ("point",):
        errors.append(f"First column must be 'point', got '{header[0]}'")
    return errors
