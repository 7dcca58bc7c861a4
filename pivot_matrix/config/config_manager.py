"""ConfigManager — 3-layer TOML config with deep merge and dot-notation access."""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from typing import Any

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib


DEFAULT_CONFIG_PATH = Path(__file__).parent / "pivot_base.toml"


def _deep_merge(base: dict, override: dict) -> dict:
    """Deep merge override into base (last wins). Returns new dict."""
    result = copy.deepcopy(base)
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def _get_nested(d: dict, dotted_key: str, default: Any = None) -> Any:
    """Get a value from a nested dict using dot notation."""
    current = d
    for part in dotted_key.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        else:
            return default
    return current


def _set_nested(d: dict, dotted_key: str, value: Any) -> None:
    """Set a value in a nested dict using dot notation."""
    parts = dotted_key.split(".")
    current = d
    for part in parts[:-1]:
        current = current.setdefault(part, {})
    current[parts[-1]] = value


class ConfigManager:
    """Singleton config manager with 3-layer TOML merge.

    Merge order (last wins): base → profile → instrument
    """

    _instance: ConfigManager | None = None

    def __new__(cls) -> ConfigManager:
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self) -> None:
        if self._initialized:
            return
        self._config: dict[str, Any] = {}
        self._base_path: Path | None = None
        self._profile: str | None = None
        self._instrument: str | None = None
        self._loaded = False
        self._initialized = True

    @classmethod
    def reset(cls) -> None:
        """Reset singleton (for testing)."""
        cls._instance = None

    def load(
        self,
        base_path: str | Path = DEFAULT_CONFIG_PATH,
        profile: str | None = None,
        instrument: str | None = None,
    ) -> None:
        """Load and merge config layers.

        Args:
            base_path: Path to pivot_base.toml
            profile: Profile name (e.g. 'futures') — loads profiles/profile_{name}.toml
            instrument: Instrument symbol (e.g. 'ES') — loads instruments/constants.{symbol}.toml
        """
        self._base_path = Path(base_path)
        self._profile = profile
        self._instrument = instrument

        # Layer 1: Base
        self._config = self._load_toml(self._base_path)

        # Layer 2: Profile override
        if profile:
            profile_path = self._base_path.parent / "profiles" / f"profile_{profile}.toml"
            if profile_path.exists():
                self._config = _deep_merge(self._config, self._load_toml(profile_path))

        # Layer 3: Instrument override
        if instrument:
            instrument_path = (
                self._base_path.parent / "instruments" / f"constants.{instrument}.toml"
            )
            if instrument_path.exists():
                self._config = _deep_merge(self._config, self._load_toml(instrument_path))

        self._loaded = True

    def _load_toml(self, path: Path) -> dict[str, Any]:
        with open(path, "rb") as f:
            return tomllib.load(f)

    def get(self, dotted_key: str, default: Any = None) -> Any:
        """Get config value using dot notation. E.g. get('risk.stop_loss_points')."""
        if not self._loaded:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        return _get_nested(self._config, dotted_key, default)

    def override(self, dotted_key: str, value: Any) -> None:
        """Set a single value on top of the merged layers (tests, CLI flags)."""
        if not self._loaded:
            raise RuntimeError("ConfigManager not loaded. Call load() first.")
        _set_nested(self._config, dotted_key, value)

    def reload(self) -> None:
        """Hot-reload config. Only allowed when live_mode=false."""
        if self.get("system.live_mode", False):
            raise RuntimeError("Hot-reload is disabled in live mode.")
        if self._base_path is not None:
            self.load(self._base_path, self._profile, self._instrument)

    @property
    def raw(self) -> dict[str, Any]:
        """Access the raw merged config dict."""
        return self._config
