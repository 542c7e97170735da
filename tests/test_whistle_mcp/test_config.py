"""Tests for YAML and environment configuration."""

from datetime import timedelta

import pytest
import yaml

from whistle_mcp.config import Config, SecretStr, load_config
from whistle_mcp.errors import ConfigurationError


class TestConfig:
    def test_defaults(self):
        config = Config(authority="authority")
        assert config.investigation_window == timedelta(days=90)
        assert config.decryption_window == timedelta(days=7)
        assert config.auto_resolve_threshold == 80
        assert config.oracle_mode == "local"

    def test_authority_required(self):
        with pytest.raises(ConfigurationError, match="authority"):
            Config(authority="  ")

    @pytest.mark.parametrize("authority", [42, None, ["chief"]])
    def test_authority_must_be_text(self, authority):
        with pytest.raises(ConfigurationError, match="authority"):
            Config(authority=authority)

    def test_oracle_mode_must_be_text(self):
        with pytest.raises(ConfigurationError, match="oracle_mode"):
            Config(authority="authority", oracle_mode=["local"])

    @pytest.mark.parametrize(
        "field, value",
        [
            ("investigation_window_days", 0),
            ("decryption_window_days", -1),
            ("auto_resolve_threshold", 0),
            ("auto_resolve_threshold", 101),
            ("note_cost_unit", 0),
            ("oracle_mode", "remote"),
        ],
    )
    def test_invalid_values(self, field, value):
        with pytest.raises(ConfigurationError):
            Config(authority="authority", **{field: value})

    def test_external_mode_needs_key(self):
        with pytest.raises(ConfigurationError, match="oracle_key"):
            Config(authority="authority", oracle_mode="external")
        Config(authority="authority", oracle_mode="external", oracle_key=SecretStr("k"))

    def test_repr_hides_key(self):
        config = Config(authority="authority", oracle_key=SecretStr("hunter2"))
        assert "hunter2" not in repr(config)
        assert str(config.oracle_key) == "***"


class TestFromEnv:
    def test_reads_variables(self, monkeypatch):
        monkeypatch.setenv("WHISTLE_AUTHORITY", "chief")
        monkeypatch.setenv("WHISTLE_DECRYPTION_WINDOW_DAYS", "3")
        monkeypatch.setenv("WHISTLE_ORACLE_KEY", "secret")
        config = Config.from_env()
        assert config.authority == "chief"
        assert config.decryption_window_days == 3
        assert config.oracle_key.get_secret_value() == "secret"

    def test_invalid_int_falls_back(self, monkeypatch):
        monkeypatch.setenv("WHISTLE_AUTHORITY", "chief")
        monkeypatch.setenv("WHISTLE_INVESTIGATION_WINDOW_DAYS", "ninety")
        assert Config.from_env().investigation_window_days == 90

    def test_missing_authority(self):
        with pytest.raises(ConfigurationError):
            Config.from_env()


class TestLoadConfig:
    def test_yaml_with_interpolation(self, tmp_path, monkeypatch):
        monkeypatch.setenv("ORACLE_SECRET", "from-env")
        path = tmp_path / "whistle.yaml"
        path.write_text(
            "authority: chief\n"
            "investigation_window_days: 30\n"
            "oracle:\n"
            "  mode: external\n"
            "  key: ${ORACLE_SECRET}\n"
        )
        config = load_config(str(path))
        assert config.authority == "chief"
        assert config.investigation_window_days == 30
        assert config.oracle_mode == "external"
        assert config.oracle_key.get_secret_value() == "from-env"

    def test_unset_variable_becomes_empty(self, tmp_path):
        path = tmp_path / "whistle.yaml"
        path.write_text("authority: chief\noracle_key: ${NOT_SET_ANYWHERE}\n")
        assert load_config(str(path)).oracle_key.get_secret_value() == ""

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_config(str(tmp_path / "nope.yaml"))

    def test_invalid_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("authority: [unclosed\n")
        with pytest.raises(yaml.YAMLError):
            load_config(str(path))

    def test_not_a_mapping(self, tmp_path):
        path = tmp_path / "list.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigurationError, match="mapping"):
            load_config(str(path))

    def test_unknown_key(self, tmp_path):
        path = tmp_path / "extra.yaml"
        path.write_text("authority: chief\ncolour: blue\n")
        with pytest.raises(ConfigurationError, match="Unknown config keys"):
            load_config(str(path))

    def test_non_integer_window(self, tmp_path):
        path = tmp_path / "win.yaml"
        path.write_text("authority: chief\ndecryption_window_days: soon\n")
        with pytest.raises(ConfigurationError, match="integer"):
            load_config(str(path))

    def test_numeric_authority(self, tmp_path):
        path = tmp_path / "num.yaml"
        path.write_text("authority: 42\n")
        with pytest.raises(ConfigurationError, match="authority principal is required"):
            load_config(str(path))
