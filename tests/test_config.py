"""Tests for pqa_engine.config."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from pqa_engine.config import (
    DEFAULT_WEIGHTS,
    FactorSettings,
    RecomputeSettings,
    ScoringConfig,
    TierThresholds,
    build_config,
    load_config,
)
from pqa_engine.errors import ConfigurationError
from pqa_engine.models import FACTOR_NAMES


class TestDefaults:
    def test_default_weights_sum_to_one(self):
        assert sum(DEFAULT_WEIGHTS.values()) == pytest.approx(1.0)

    def test_default_config_uses_all_factors_in_canonical_order(self):
        config = ScoringConfig()
        assert config.active_factors == FACTOR_NAMES

    def test_default_tiers(self):
        tiers = TierThresholds()
        assert (tiers.hot, tiers.warm, tiers.cold) == (70, 40, 20)

    def test_load_config_none_returns_defaults(self):
        assert load_config(None) == ScoringConfig()


class TestWeights:
    def test_weights_must_sum_to_one(self):
        with pytest.raises(ConfigurationError, match="sum to 1.0"):
            build_config({"weights": {"userCount": 0.5, "velocity": 0.4}})

    def test_unknown_factor_rejected(self):
        with pytest.raises(ConfigurationError, match="unknown factor"):
            build_config({"weights": {"userCount": 0.5, "karma": 0.5}})

    def test_negative_weight_rejected(self):
        with pytest.raises(ConfigurationError):
            build_config({"weights": {"userCount": 1.2, "velocity": -0.2}})

    def test_empty_weights_rejected(self):
        with pytest.raises(ConfigurationError, match="at least one"):
            build_config({"weights": {}})

    def test_subset_reordered_canonically(self):
        config = build_config({"weights": {"engagement": 0.5, "userCount": 0.5}})
        assert config.active_factors == ("userCount", "engagement")

    def test_tolerates_float_noise(self):
        config = build_config(
            {"weights": {"userCount": 0.1, "velocity": 0.2, "featureBreadth": 0.7000000001}}
        )
        assert len(config.weights) == 3


class TestThresholds:
    def test_inverted_thresholds_rejected(self):
        with pytest.raises(ConfigurationError, match="hot > warm > cold"):
            build_config({"tiers": {"hot": 40, "warm": 70, "cold": 20}})

    def test_equal_thresholds_rejected(self):
        with pytest.raises(ValidationError):
            TierThresholds(hot=50, warm=50, cold=20)

    def test_zero_cold_rejected(self):
        with pytest.raises(ValidationError):
            TierThresholds(hot=70, warm=40, cold=0)


class TestFactorSettings:
    def test_keywords_normalized(self):
        settings = FactorSettings(senior_title_keywords=[" VP ", "vp", "Chief"])
        assert settings.senior_title_keywords == ["vp", "chief"]

    def test_size_keys_uppercased(self):
        settings = FactorSettings(size_scores={"small": 90}, industry_bonus={"saas": 10})
        assert settings.size_scores == {"SMALL": 90.0}
        assert settings.industry_bonus == {"SAAS": 10.0}

    def test_recent_window_must_be_shorter_than_lookback(self):
        with pytest.raises(ValidationError, match="velocity_recent_days"):
            FactorSettings(lookback_days=7, velocity_recent_days=7)

    def test_extra_keys_forbidden(self):
        with pytest.raises(ConfigurationError):
            build_config({"factors": {"lookback": 30}})


class TestBackoff:
    def test_exponential_growth(self):
        settings = RecomputeSettings(retry_base_delay_seconds=0.5, retry_max_delay_seconds=30)
        assert [settings.backoff_delay(n) for n in (1, 2, 3, 4)] == [0.5, 1.0, 2.0, 4.0]

    def test_capped(self):
        settings = RecomputeSettings(retry_base_delay_seconds=1.0, retry_max_delay_seconds=5.0)
        assert settings.backoff_delay(10) == 5.0


class TestLoadConfig:
    def test_load_yaml(self, tmp_path):
        path = tmp_path / "scoring.yaml"
        path.write_text(
            "weights:\n"
            "  userCount: 0.6\n"
            "  velocity: 0.4\n"
            "tiers: {hot: 80, warm: 50, cold: 10}\n"
            "trend: {window: 5}\n"
        )
        config = load_config(path)
        assert config.weights == {"userCount": 0.6, "velocity": 0.4}
        assert config.tiers.hot == 80
        assert config.trend.window == 5

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")
        assert load_config(path) == ScoringConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read"):
            load_config(tmp_path / "nope.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("weights: [unclosed\n")
        with pytest.raises(ConfigurationError, match="Malformed"):
            load_config(path)

    def test_root_must_be_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- 1\n- 2\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(path)
