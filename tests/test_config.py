"""Tests for settings loading and validation."""

from decimal import Decimal

import pytest

from config import DEFAULTS, SettingsError, load_settings_conf, validate_settings


def write_settings(tmp_path, body):
    (tmp_path / "settings.conf").write_text("[DEFAULT]\n" + body)
    return str(tmp_path)


def test_missing_file_uses_defaults(tmp_path):
    settings = load_settings_conf(str(tmp_path))
    assert settings["store_backend"] == "memory"
    assert settings["platform_fee_bps"] == 250
    assert settings["collaborator_timeout"] == Decimal("10")


def test_file_overrides_defaults(tmp_path):
    settings = load_settings_conf(write_settings(tmp_path, "platform_fee_bps = 100\nmax_page_size = 50\n"))
    assert settings["platform_fee_bps"] == 100
    assert settings["max_page_size"] == 50
    assert settings["default_royalty_bps"] == 500


def test_environment_variable_points_at_settings(tmp_path, monkeypatch):
    monkeypatch.setenv("MARKET_SETTINGS", write_settings(tmp_path, "offer_duration_hours = 24\n"))
    assert load_settings_conf()["offer_duration_hours"] == 24


@pytest.mark.parametrize("body", [
    "platform_fee_bps = lots\n",
    "store_backend = redis\n",
    "platform_fee_bps = 10000\n",
    "default_royalty_bps = 9900\n",
    "max_page_size = 5\n",
    "collaborator_timeout = 0\n",
])
def test_invalid_settings_raise(tmp_path, body):
    with pytest.raises(SettingsError):
        load_settings_conf(write_settings(tmp_path, body))


def test_validate_settings_converts_types():
    settings = validate_settings(dict(DEFAULTS))
    assert isinstance(settings["reconcile_interval"], int)
    assert DEFAULTS["reconcile_interval"] == "120"
