"""Configuration loader for voicebridge.

Values are layered: defaults, then config.py from the project root, then
environment variables. ``VOICEBRIDGE_<KEY>`` overrides any scalar key; the
vendor variable names used by existing deployments are honoured as well.
"""

import importlib.util
import os
import sys
from pathlib import Path
from types import ModuleType
from typing import Any

from . import defaults

# Deployment variable names that map onto config keys
ENV_ALIASES = {
    "ELEVEN_LABS_API_KEY": "ELEVENLABS_API_KEY",
    "ELEVEN_LABS_AGENT_ID": "ELEVENLABS_AGENT_ID",
    "ELEVEN_LABS_VOICE_ID": "ELEVENLABS_VOICE_ID",
    "IONOS_API_TOKEN": "FALLBACK_API_KEY",
    "SILENCE_DURATION": "VAD_SILENCE_DURATION_MS",
}
# Aliases given in other units, as multipliers onto the config key
ENV_ALIAS_SCALE = {
    "SILENCE_DURATION": 1000,  # seconds
}
ENV_PREFIX = "VOICEBRIDGE_"

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def _coerce(raw: str, current: Any) -> Any:
    """Convert an environment string to the type of the current value."""
    if isinstance(current, bool):
        value = raw.strip().lower()
        if value in _TRUE:
            return True
        if value in _FALSE:
            return False
        raise ValueError(f"expected a boolean, got {raw!r}")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, float):
        return float(raw)
    return raw


class Config:
    """Configuration object with attribute access."""

    def __init__(self, config_path: Path | None = None, environ: dict[str, str] | None = None) -> None:
        for key in defaults.CONFIG_KEYS:
            setattr(self, key, getattr(defaults, key))

        self._source: Path | None = None
        self._env_overrides: list[str] = []
        self._env_errors: list[str] = []
        self._load_user_config(config_path)
        self._apply_environment(os.environ if environ is None else environ)

    def _load_user_config(self, config_path: Path | None = None) -> None:
        """Load config.py from project root."""
        config_path = config_path or self._find_config_file()

        if config_path is None:
            return

        user_config = self._load_module_from_path(config_path)

        for key in defaults.CONFIG_KEYS:
            if hasattr(user_config, key):
                setattr(self, key, getattr(user_config, key))

        self._source = config_path

    def _find_config_file(self) -> Path | None:
        """Find config.py in current dir or parents."""
        current = Path.cwd()

        while True:
            config_path = current / "config.py"
            if config_path.exists():
                return config_path
            if current == current.parent:
                return None
            current = current.parent

    def _load_module_from_path(self, path: Path) -> ModuleType:
        """Load a Python module from a file path."""
        spec = importlib.util.spec_from_file_location("voicebridge_user_config", path)
        if spec is None or spec.loader is None:
            raise RuntimeError(f"Could not load config from {path}")

        module = importlib.util.module_from_spec(spec)
        sys.modules["voicebridge_user_config"] = module
        spec.loader.exec_module(module)
        return module

    def _apply_environment(self, environ: dict[str, str]) -> None:
        """Override scalar keys from environment variables.

        Prefixed names win over vendor aliases for the same key.
        """
        sources: dict[str, str] = {}
        for name, key in ENV_ALIASES.items():
            if environ.get(name):
                sources[key] = name
        for key in defaults.CONFIG_KEYS:
            if environ.get(ENV_PREFIX + key):
                sources[key] = ENV_PREFIX + key

        for key, name in sorted(sources.items()):
            current = getattr(self, key)
            if isinstance(current, (list, tuple, dict)):
                self._env_errors.append(f"{name} cannot override {key} (not a scalar)")
                continue
            try:
                if name in ENV_ALIAS_SCALE:
                    scaled = float(environ[name]) * ENV_ALIAS_SCALE[name]
                    setattr(self, key, round(scaled) if isinstance(current, int) else scaled)
                else:
                    setattr(self, key, _coerce(environ[name], current))
            except ValueError as e:
                self._env_errors.append(f"{name} is invalid: {e}")
                continue
            self._env_overrides.append(key)

    @property
    def source(self) -> Path | None:
        """Path of the user config file that was loaded, if any."""
        return self._source

    @property
    def env_overrides(self) -> list[str]:
        """Keys whose value came from the environment."""
        return list(self._env_overrides)

    def get(self, key: str, default: Any = None) -> Any:
        """Get config value with optional default."""
        return getattr(self, key, default)

    def validate(self) -> list[str]:
        """Validate configuration, return list of errors."""
        errors = list(self._env_errors)

        if not self.ELEVENLABS_API_KEY:
            errors.append("ELEVENLABS_API_KEY is not set")

        if not self.ELEVENLABS_AGENT_ID:
            errors.append("ELEVENLABS_AGENT_ID is not set")

        if not self.FALLBACK_API_KEY:
            errors.append("FALLBACK_API_KEY is not set")

        if self.PRIMARY_TIMEOUT_MS <= 0:
            errors.append("PRIMARY_TIMEOUT_MS must be positive")

        if self.MAX_TURNS < 1:
            errors.append("MAX_TURNS must be at least 1")

        if not 0 <= self.VAD_SILENCE_THRESHOLD <= 255:
            errors.append("VAD_SILENCE_THRESHOLD must be within 0-255")

        if not isinstance(self.GENERIC_RESPONSE_PHRASES, (list, tuple)):
            errors.append("GENERIC_RESPONSE_PHRASES must be a list")

        return errors

    def __repr__(self) -> str:
        return f"<Config source={self._source} agent={bool(self.ELEVENLABS_AGENT_ID)}>"


_config: Config | None = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config()
    return _config


def reload_config(config_path: Path | None = None) -> Config:
    """Reload configuration from disk and the environment."""
    global _config
    _config = Config(config_path)
    return _config
