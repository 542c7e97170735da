"""Configuration for whistle-mcp.

Config comes from a YAML file (with ${VAR} interpolation) or from WHISTLE_*
environment variables. The oracle signing key is held as a SecretStr and
never appears in repr or logs.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_INVESTIGATION_WINDOW_DAYS = 90
DEFAULT_DECRYPTION_WINDOW_DAYS = 7
DEFAULT_AUTO_RESOLVE_THRESHOLD = 80
DEFAULT_NOTE_COST_UNIT = 1

_ORACLE_MODES = {"local", "external"}


# =============================================================================
# Environment Variable Parsing Helpers
# =============================================================================


def _parse_int_env(name: str, default: int) -> int:
    """Parse integer environment variable with fallback to default.

    Logs a warning if the value is invalid instead of crashing.
    """
    value = os.getenv(name)
    if value is None:
        return default
    try:
        return int(value)
    except ValueError:
        logger.warning(
            "Invalid integer value for %s: '%s', using default %d", name, value, default
        )
        return default


_ENV_VAR_PATTERN = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


def _interpolate_env(value: str) -> str:
    """Replace ${VAR} patterns with environment variable values.

    Unset variables become empty strings so a literal '${VAR}' never leaks
    into the config.
    """

    def _replace(match: re.Match) -> str:
        return os.environ.get(match.group(1), "")

    return _ENV_VAR_PATTERN.sub(_replace, value)


def _walk_and_interpolate(obj):
    """Recursively walk a parsed YAML structure and interpolate strings."""
    if isinstance(obj, str):
        return _interpolate_env(obj)
    if isinstance(obj, dict):
        return {k: _walk_and_interpolate(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_walk_and_interpolate(item) for item in obj]
    return obj


# =============================================================================
# Secret String Type
# =============================================================================


class SecretStr:
    """String type that hides its value in logs and repr."""

    def __init__(self, value: str) -> None:
        self._value = value

    def get_secret_value(self) -> str:
        return self._value

    def __repr__(self) -> str:
        return "SecretStr('***')"

    def __str__(self) -> str:
        return "***"

    def __eq__(self, other: object) -> bool:
        if isinstance(other, SecretStr):
            return self._value == other._value
        return False

    def __hash__(self) -> int:
        return hash(self._value)

    def __bool__(self) -> bool:
        return bool(self._value)


# =============================================================================
# Configuration Class
# =============================================================================


@dataclass(frozen=True)
class Config:
    """Immutable workflow configuration.

    Windows are expressed in days; the reference deployment uses 90 days for
    an investigation and 7 days for a decryption round trip.
    """

    authority: str
    investigation_window_days: int = DEFAULT_INVESTIGATION_WINDOW_DAYS
    decryption_window_days: int = DEFAULT_DECRYPTION_WINDOW_DAYS
    auto_resolve_threshold: int = DEFAULT_AUTO_RESOLVE_THRESHOLD
    note_cost_unit: int = DEFAULT_NOTE_COST_UNIT
    audit_dir: str | None = None
    state_file: str | None = None
    oracle_mode: str = "local"
    oracle_key: SecretStr = field(default_factory=lambda: SecretStr(""))

    def __post_init__(self) -> None:
        if not isinstance(self.authority, str) or not self.authority.strip():
            raise ConfigurationError("authority principal is required")
        if self.investigation_window_days < 1:
            raise ConfigurationError("investigation_window_days must be at least 1")
        if self.decryption_window_days < 1:
            raise ConfigurationError("decryption_window_days must be at least 1")
        if not 1 <= self.auto_resolve_threshold <= 100:
            raise ConfigurationError("auto_resolve_threshold must be between 1 and 100")
        if self.note_cost_unit < 1:
            raise ConfigurationError("note_cost_unit must be positive")
        if not isinstance(self.oracle_mode, str) or self.oracle_mode not in _ORACLE_MODES:
            raise ConfigurationError(
                f"oracle_mode must be one of {sorted(_ORACLE_MODES)}, got {self.oracle_mode!r}"
            )
        if self.oracle_mode == "external" and not self.oracle_key:
            raise ConfigurationError("oracle_key is required when oracle_mode is 'external'")

    @property
    def investigation_window(self) -> timedelta:
        return timedelta(days=self.investigation_window_days)

    @property
    def decryption_window(self) -> timedelta:
        return timedelta(days=self.decryption_window_days)

    def __repr__(self) -> str:
        return (
            f"Config(authority={self.authority!r}, "
            f"investigation_window={self.investigation_window_days}d, "
            f"decryption_window={self.decryption_window_days}d, "
            f"oracle_mode={self.oracle_mode!r}, oracle_key=***)"
        )

    @classmethod
    def from_mapping(cls, raw: dict[str, Any]) -> "Config":
        """Build a Config from a parsed YAML mapping.

        Accepts the flat keys of this class plus an optional nested
        ``oracle: {mode, key}`` block.
        """
        data = dict(raw)
        oracle = data.pop("oracle", None) or {}
        if not isinstance(oracle, dict):
            raise ConfigurationError("'oracle' must be a mapping")
        if "mode" in oracle:
            data.setdefault("oracle_mode", oracle["mode"])
        if "key" in oracle:
            data.setdefault("oracle_key", oracle["key"])

        known = set(cls.__dataclass_fields__)
        unknown = sorted(set(data) - known)
        if unknown:
            raise ConfigurationError(f"Unknown config keys: {unknown}")

        if "oracle_key" in data and not isinstance(data["oracle_key"], SecretStr):
            data["oracle_key"] = SecretStr(str(data["oracle_key"] or ""))
        for key in (
            "investigation_window_days",
            "decryption_window_days",
            "auto_resolve_threshold",
            "note_cost_unit",
        ):
            if key in data:
                try:
                    data[key] = int(data[key])
                except (TypeError, ValueError):
                    raise ConfigurationError(f"{key} must be an integer") from None
        try:
            return cls(**data)
        except TypeError as e:
            raise ConfigurationError(str(e)) from e

    @classmethod
    def from_env(cls) -> "Config":
        """Build a Config from WHISTLE_* environment variables."""
        return cls(
            authority=os.getenv("WHISTLE_AUTHORITY", ""),
            investigation_window_days=_parse_int_env(
                "WHISTLE_INVESTIGATION_WINDOW_DAYS", DEFAULT_INVESTIGATION_WINDOW_DAYS
            ),
            decryption_window_days=_parse_int_env(
                "WHISTLE_DECRYPTION_WINDOW_DAYS", DEFAULT_DECRYPTION_WINDOW_DAYS
            ),
            auto_resolve_threshold=_parse_int_env(
                "WHISTLE_AUTO_RESOLVE_THRESHOLD", DEFAULT_AUTO_RESOLVE_THRESHOLD
            ),
            note_cost_unit=_parse_int_env("WHISTLE_NOTE_COST_UNIT", DEFAULT_NOTE_COST_UNIT),
            audit_dir=os.getenv("WHISTLE_AUDIT_DIR") or None,
            state_file=os.getenv("WHISTLE_STATE_FILE") or None,
            oracle_mode=os.getenv("WHISTLE_ORACLE_MODE", "local"),
            oracle_key=SecretStr(os.getenv("WHISTLE_ORACLE_KEY", "")),
        )


def load_config(path: str) -> Config:
    """Load a YAML config file with env var interpolation.

    Raises:
        FileNotFoundError: If the config file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ConfigurationError: If the content is not a valid configuration.
    """
    config_path = Path(path)
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    try:
        with open(config_path, encoding="utf-8") as f:
            raw = yaml.safe_load(f)
    except yaml.YAMLError as e:
        logger.error("Invalid YAML in config file %s: %s", path, e)
        raise
    except OSError as e:
        logger.error("Cannot read config file %s: %s", path, e)
        raise

    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigurationError(
            f"Config file must contain a YAML mapping, got {type(raw).__name__}: {path}"
        )

    return Config.from_mapping(_walk_and_interpolate(raw))
