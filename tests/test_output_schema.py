"""Tests for sweep output persistence and schema checks."""
import json
import math

import numpy as np

from ratchetkit.output_schema import (
    NumpyEncoder,
    read_csv,
    read_jsonl,
    to_jsonable,
    validate_record,
    validate_summary_row,
    write_csv,
    write_jsonl,
)


def _make_record(**overrides):
    record = {
        "sweep": "clock_tur",
        "point": "muHigh=0.2",
        "value": 0.2,
        "seed": 1,
        "steps": 1000,
        "ep_exact_total": 2.0,
        "ep_rate": 0.002,
        "ep_window_rate": 0.002,
        "clock_q": 21,
        "clock_drift": 0.021,
        "samples": [{"step": 500}, {"step": 1000}],
    }
    record.update(overrides)
    return record


class TestSerialization:

    def test_numpy_encoder(self):
        s = json.dumps({"a": np.int64(3), "b": np.float32(0.5), "c": np.arange(2)}, cls=NumpyEncoder)
        assert json.loads(s) == {"a": 3, "b": 0.5, "c": [0, 1]}

    def test_non_finite_to_null(self):
        assert to_jsonable({"r": math.inf, "n": [math.nan, 1.0]}) == {"r": None, "n": [None, 1.0]}

    def test_numeric_keys_become_strings(self):
        assert to_jsonable({0.5: 0.25}) == {"0.5": 0.25}

    def test_write_and_read_jsonl(self, tmp_path):
        path = write_jsonl(tmp_path / "out" / "s_raw.jsonl",
                           [_make_record(recovery_steps=math.inf), _make_record(seed=2)])
        rows = read_jsonl(path)
        assert len(rows) == 2
        assert rows[0]["recovery_steps"] is None
        assert rows[1]["seed"] == 2

    def test_empty_jsonl(self, tmp_path):
        path = write_jsonl(tmp_path / "empty.jsonl", [])
        assert read_jsonl(path) == []

    def test_write_csv_blanks_missing(self, tmp_path):
        header = ["point", "value", "tur_ratio"]
        path = write_csv(tmp_path / "s_summary.csv", header, [
            {"point": "a", "value": 1.0, "tur_ratio": None},
            {"point": "b", "value": 2.0, "tur_ratio": math.nan},
        ])
        rows = read_csv(path)
        assert [r["point"] for r in rows] == ["a", "b"]
        assert rows[0]["tur_ratio"] == ""
        assert rows[1]["tur_ratio"] == ""
        assert path.read_text().splitlines()[0] == "point,value,tur_ratio"


class TestValidateRecord:

    def test_valid(self):
        assert validate_record(_make_record()) == []

    def test_missing_key(self):
        record = _make_record()
        del record["clock_q"]
        errors = validate_record(record)
        assert any("clock_q" in e for e in errors)

    def test_seed_must_be_int(self):
        errors = validate_record(_make_record(seed=1.5))
        assert any("seed" in e for e in errors)

    def test_negative_recovery(self):
        errors = validate_record(_make_record(recovery_steps=-10))
        assert any("recovery_steps" in e for e in errors)

    def test_null_recovery_ok(self):
        assert validate_record(_make_record(recovery_steps=None)) == []

    def test_component_sum_mismatch(self):
        errors = validate_record(_make_record(component_sizes_sum=9, particle_count=10))
        assert any("component sizes" in e for e in errors)

    def test_record_without_bond_graph(self):
        # runs without a bond threshold carry the key with a null value
        record = _make_record(component_sizes_sum=None, particle_count=10)
        assert validate_record(record) == []

    def test_sample_without_step(self):
        errors = validate_record(_make_record(samples=[{"ep_exact": 1.0}]))
        assert errors == ["sample without step"]


class TestValidateSummaryRow:

    def test_valid(self):
        header = ["point", "value"]
        assert validate_summary_row({"point": "a", "value": 1.0}, header) == []

    def test_missing_and_extra(self):
        errors = validate_summary_row({"point": "a", "other": 1}, ["point", "value"])
        assert any("missing" in e for e in errors)
        assert any("not in header" in e for e in errors)

    def test_first_column(self):
        errors = validate_summary_row({"value": 1, "point": "a"}, ["value", "point"])
        assert any("First column" in e for e in errors)
