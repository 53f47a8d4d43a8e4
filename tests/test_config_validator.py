"""
Tests for configuration validation.

Validates that config_validator correctly identifies invalid configs
and accepts valid configs.
"""
from pathlib import Path

import pytest
import yaml

from tools.config_validator import AppSchema, validate_all_configs, validate_app

REPO_CONFIG = Path(__file__).resolve().parent.parent / "config"


def write_app(tmp_path: Path, config) -> Path:
    (tmp_path / "app.yaml").write_text(yaml.safe_dump(config))
    return tmp_path


class TestAppSchema:
    def test_shipped_config_is_valid(self):
        assert validate_all_configs(str(REPO_CONFIG)) == []

    def test_defaults_fill_missing_sections(self):
        config = AppSchema(**{})

        assert config.app.mode == "DRY_RUN"
        assert config.monitor.interval_ms == 30000
        assert config.monitor.thresholds.take_profit_pct == 50.0
        assert config.monitor.thresholds.stop_loss_pct == 20.0
        assert config.swap.slippage_bps == 1500
        assert config.swap.fees.max_priority_lamports == 5_000_000

    def test_mode_is_normalized(self):
        assert AppSchema(app={"mode": "live"}).app.mode == "LIVE"


class TestInvalidConfigs:
    def test_unknown_mode(self, tmp_path):
        errors = validate_app(write_app(tmp_path, {"app": {"mode": "YOLO"}}))

        assert len(errors) == 1
        assert errors[0].startswith("app.yaml: app -> mode:")

    def test_negative_take_profit(self, tmp_path):
        config = {"monitor": {"thresholds": {"take_profit_pct": -5}}}

        errors = validate_app(write_app(tmp_path, config))

        assert any("monitor -> thresholds -> take_profit_pct" in e for e in errors)

    def test_interval_too_small(self, tmp_path):
        errors = validate_app(write_app(tmp_path, {"monitor": {"interval_ms": 10}}))

        assert any("monitor -> interval_ms" in e for e in errors)

    def test_unknown_store_backend(self, tmp_path):
        errors = validate_app(write_app(tmp_path, {"store": {"backend": "redis"}}))

        assert any("store -> backend" in e for e in errors)

    def test_missing_file(self, tmp_path):
        errors = validate_all_configs(str(tmp_path))

        assert len(errors) == 1
        assert "Config file not found" in errors[0]

    def test_malformed_yaml(self, tmp_path):
        (tmp_path / "app.yaml").write_text("app:\n  mode: [LIVE\n")

        errors = validate_all_configs(str(tmp_path))

        assert len(errors) == 1
        assert "Invalid YAML" in errors[0]


class TestSanityChecks:
    def test_live_rest_store_requires_url(self, tmp_path):
        config = {
            "app": {"mode": "LIVE"},
            "store": {"backend": "rest"},
            "confirmation": {"functions_url": "https://db.example.co/functions/v1"},
        }

        errors = validate_all_configs(str(write_app(tmp_path, config)))

        assert errors == ["store.url is required when store.backend is 'rest'"]

    def test_live_requires_confirmation_endpoint(self, tmp_path):
        errors = validate_all_configs(str(write_app(tmp_path, {"app": {"mode": "LIVE"}})))

        assert errors == ["confirmation.functions_url is required in LIVE mode"]

    @pytest.mark.parametrize("mode", ["DRY_RUN", "PAPER"])
    def test_simulated_modes_skip_live_checks(self, tmp_path, mode):
        config = {"app": {"mode": mode}, "store": {"backend": "rest"}}

        assert validate_all_configs(str(write_app(tmp_path, config))) == []
