"""Structured config: defaults, hard validation, YAML overrides, advisories."""
from __future__ import annotations

import dataclasses

import pytest

from strategy_health.config_structured import (
    METRIC_NAMES,
    ConfigError,
    MetricThresholdConfig,
    ScoringConfig,
    SystemConfig,
    config_to_dict,
    get_config,
    load_config_overrides,
    reset_config,
)


class TestDefaults:
    def test_weights_sum_to_one(self):
        cfg = SystemConfig()
        assert set(cfg.scoring.thresholds) == set(METRIC_NAMES)
        assert sum(t.weight for t in cfg.scoring.thresholds.values()) == pytest.approx(1.0)

    def test_default_cadence(self):
        cfg = SystemConfig()
        assert cfg.evaluator.eval_cooldown_ms == 3_600_000
        assert cfg.evaluator.stale_threshold_ms == 900_000
        assert cfg.drift.allowance_sigma == 0.5
        assert cfg.drift.threshold_sigma == 4.0

    def test_bundled_yaml_matches_defaults(self):
        assert config_to_dict(load_config_overrides()) == config_to_dict(SystemConfig())

    def test_singleton(self):
        assert get_config() is get_config()
        custom = SystemConfig()
        reset_config(custom)
        assert get_config() is custom


class TestHardValidation:
    def test_weights_must_sum_to_one(self):
        bands = {
            name: dataclasses.replace(t, weight=0.3)
            for name, t in SystemConfig().scoring.thresholds.items()
        }
        with pytest.raises(ConfigError, match="sum to 1.0"):
            ScoringConfig(thresholds=bands)

    def test_missing_metric(self):
        bands = dict(SystemConfig().scoring.thresholds)
        del bands["winRate"]
        with pytest.raises(ConfigError, match="Missing metric"):
            ScoringConfig(thresholds=bands)

    def test_band_ordering(self):
        with pytest.raises(ConfigError, match="tolerance < warning < alarm"):
            MetricThresholdConfig(
                weight=0.2, tolerance=0.5, warning=0.4, alarm=0.9, higher_is_better=True,
            )

    def test_status_thresholds_ordering(self):
        with pytest.raises(ConfigError):
            ScoringConfig(healthy_threshold=0.4, warning_threshold=0.7)

    def test_hysteresis_below_warning(self):
        with pytest.raises(ConfigError, match="hysteresis_margin"):
            ScoringConfig(hysteresis_margin=0.5)


class TestYamlOverrides:
    def test_missing_file_yields_defaults(self, tmp_path):
        cfg = load_config_overrides(tmp_path / "absent.yaml")
        assert config_to_dict(cfg) == config_to_dict(SystemConfig())

    def test_partial_threshold_override(self, tmp_path):
        path = tmp_path / "health.yaml"
        path.write_text(
            "scoring:\n"
            "  reference_trades: 50\n"
            "  thresholds:\n"
            "    drawdown: {tolerance: 0.2}\n"
            "evaluator:\n"
            "  eval_cooldown_ms: 1000\n"
        )
        cfg = load_config_overrides(path)
        assert cfg.scoring.reference_trades == 50
        assert cfg.scoring.thresholds["drawdown"].tolerance == 0.2
        assert cfg.scoring.thresholds["drawdown"].alarm == 1.0
        assert cfg.scoring.thresholds["return"].weight == 0.25
        assert cfg.evaluator.eval_cooldown_ms == 1000
        assert cfg.evaluator.stale_threshold_ms == 900_000

    @pytest.mark.parametrize("body,message", [
        ("scorng:\n  reference_trades: 5\n", "Unknown sections"),
        ("scoring:\n  refrence_trades: 5\n", "Unknown keys"),
        ("scoring:\n  thresholds:\n    sharpe: {weight: 0.1}\n", "Unknown metric"),
        ("- just\n- a list\n", "mapping"),
        ("scoring: [1, 2\n", "Failed to parse"),
    ])
    def test_rejects_malformed(self, tmp_path, body, message):
        path = tmp_path / "health.yaml"
        path.write_text(body)
        with pytest.raises(ConfigError, match=message):
            load_config_overrides(path)


class TestAdvisoryValidation:
    def test_defaults_are_clean(self):
        from strategy_health.config import validate_config

        assert validate_config() == []

    def test_stale_threshold_above_cooldown(self):
        from strategy_health.config import validate_config

        cfg = SystemConfig()
        cfg.evaluator = dataclasses.replace(
            cfg.evaluator, eval_cooldown_ms=60_000, stale_threshold_ms=120_000,
        )
        reset_config(cfg)
        issues = validate_config()
        assert [i["level"] for i in issues] == ["WARNING"]
        assert "HEALTH_STALE_THRESHOLD_MS" in issues[0]["message"]

    def test_unknown_log_format_is_error(self):
        from strategy_health.config import validate_config

        cfg = SystemConfig()
        cfg.log = dataclasses.replace(cfg.log, format="xml")
        reset_config(cfg)
        assert any(i["level"] == "ERROR" for i in validate_config())
