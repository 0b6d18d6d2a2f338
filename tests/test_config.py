"""Tests for option merging and run settings."""
import json

import pytest

from ratchetkit.config import (
    DEFAULT_PARAMS,
    ConfigurationError,
    RunOptions,
    apply_overrides,
    load_params,
    merge_config,
    parse_override,
)


class TestParseOverride:

    def test_valid(self):
        assert parse_override("muHigh=0.4") == ("muHigh", 0.4)
        assert parse_override("steps=1e3") == ("steps", 1000.0)

    def test_whitespace_key(self):
        assert parse_override(" lS =6") == ("lS", 6.0)

    def test_malformed_dropped(self):
        assert parse_override("muHigh") is None
        assert parse_override("=3") is None
        assert parse_override("muHigh=abc") is None
        assert parse_override("") is None

    def test_non_finite_dropped(self):
        assert parse_override("muHigh=inf") is None
        assert parse_override("muHigh=nan") is None


class TestMergeConfig:

    def test_defaults_copied(self):
        params = merge_config()
        assert params == DEFAULT_PARAMS
        params["beta"] = 99
        assert DEFAULT_PARAMS["beta"] == 1.0

    def test_layer_order(self, tmp_path):
        path = tmp_path / "params.json"
        path.write_text(json.dumps({"beta": 2.0, "gridSize": 8}))
        params = merge_config(params_path=path, sets=["beta=3", "bogus", "lS=nan"])
        assert params["beta"] == 3.0
        assert params["gridSize"] == 8
        assert params["lS"] == DEFAULT_PARAMS["lS"]

    def test_custom_defaults(self):
        assert merge_config({"a": 1.0}, sets=["b=2"]) == {"a": 1.0, "b": 2.0}

    def test_apply_overrides_in_place(self):
        params = {"a": 1.0}
        assert apply_overrides(params, ["a=5"]) is params
        assert params["a"] == 5.0

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json")
        with pytest.raises(ConfigurationError, match="invalid JSON"):
            load_params(path)

    def test_non_object_json(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]")
        with pytest.raises(ConfigurationError, match="JSON object"):
            load_params(path)


class TestRunOptions:

    def test_defaults(self):
        opts = RunOptions()
        assert opts.particle_count == 200
        assert opts.steps == 100_000

    def test_rejects_negative(self):
        with pytest.raises(ConfigurationError):
            RunOptions(steps=-1)
        with pytest.raises(ConfigurationError):
            RunOptions(report_every=-5)

    def test_configuration_error_is_value_error(self):
        assert issubclass(ConfigurationError, ValueError)
