"""Tests for config.py module."""

import json
from pathlib import Path

import pytest
from pydantic import ValidationError

from ngdp_fetch.core.config import AppConfig, CDNConfig, TACTConfig
from ngdp_fetch.core.types import LocaleFlags


class TestCDNConfig:
    """Test CDNConfig class."""

    def test_defaults(self):
        config = CDNConfig()
        assert config.timeout == 30.0
        assert config.max_retries == 3
        assert config.verify_ssl is True
        assert "https://casc.wago.tools" in config.fallback_mirrors

    def test_invalid_timeout(self):
        with pytest.raises(ValidationError, match="Timeout must be positive"):
            CDNConfig(timeout=0)

    def test_invalid_retries(self):
        with pytest.raises(ValidationError, match="non-negative"):
            CDNConfig(max_retries=-1)


class TestTACTConfig:
    """Test TACTConfig class."""

    def test_base_url(self):
        assert TACTConfig().get_base_url("eu") == "https://eu.version.battle.net"

    def test_custom_template(self):
        config = TACTConfig(base_url_template="http://{region}.patch.example.com:1119")
        assert config.get_base_url("kr") == "http://kr.patch.example.com:1119"


class TestAppConfig:
    """Test AppConfig class."""

    def test_defaults(self):
        config = AppConfig()
        assert config.program == "wow"
        assert config.region == "us"
        assert config.locale_flag == LocaleFlags.ENUS
        assert config.wow_path is None
        assert config.allow_loose_files is True

    def test_region_lowercased(self):
        assert AppConfig(region="EU").region == "eu"

    def test_invalid_region(self):
        with pytest.raises(ValidationError, match="Invalid region"):
            AppConfig(region="mars")

    def test_invalid_locale(self):
        with pytest.raises(ValidationError, match="Unknown locale"):
            AppConfig(locale="xxYY")

    def test_locale_flag(self):
        assert AppConfig(locale="deDE").locale_flag == LocaleFlags.DEDE

    def test_invalid_output_format(self):
        with pytest.raises(ValidationError):
            AppConfig(output_format="xml")

    def test_invalid_log_level(self):
        with pytest.raises(ValidationError):
            AppConfig(log_level="LOUD")

    def test_save_and_load(self, tmp_path: Path):
        config_file = tmp_path / "sub" / "config.json"
        config = AppConfig(region="eu", locale="frFR", wow_path=tmp_path / "wow", allow_loose_files=False)

        config.save(config_file)
        loaded = AppConfig.load(config_file)

        assert loaded == config
        assert json.loads(config_file.read_text())["region"] == "eu"

    def test_load_missing_file(self, tmp_path: Path):
        assert AppConfig.load(tmp_path / "missing.json") == AppConfig()

    def test_load_invalid_values(self, tmp_path: Path):
        config_file = tmp_path / "config.json"
        config_file.write_text(json.dumps({"region": "nowhere"}))
        with pytest.raises(ValidationError):
            AppConfig.load(config_file)
