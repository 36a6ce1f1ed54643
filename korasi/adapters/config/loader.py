"""
Layered configuration: CLI flags beat environment variables, which beat
the TOML file, which beats the built-in defaults in Settings.

The layers are flat ``key -> value`` mappings; a ``None`` in a higher
layer means "not given" and never hides a lower one.
"""
import os
import tomllib
from pathlib import Path
from typing import Any, Callable, Dict, Mapping, Optional

from ...core.constants import DEFAULT_CONFIG_PATH
from ...core.exceptions import ConfigError
from ...core.logging import get_logger

logger = get_logger(__name__)


def _scalar(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in ("true", "yes", "on"):
        return True
    if lowered in ("false", "no", "off"):
        return False
    for cast in (int, float):
        try:
            return cast(raw)
        except ValueError:
            continue
    return raw


def _pattern_list(raw: str) -> list:
    return [item.strip() for item in raw.split(",") if item.strip()]


def _root_folder(raw: str) -> str:
    # "none" turns off the wrapper folder
    return "" if raw.lower() == "none" else raw


def _flag(raw: str) -> Any:
    lowered = raw.lower()
    if lowered in ("1", "true", "yes", "on"):
        return True
    if lowered in ("0", "false", "no", "off"):
        return False
    # left as text so Settings reports the bad value
    return raw


_CONVERTERS: Dict[str, Callable[[str], Any]] = {
    "exclude": _pattern_list,
    "root_folder": _root_folder,
    "keep": _flag,
    "include_hidden": _flag,
}

ENV_PREFIX = "KORASI_"

_ENV_KEYS = {
    "PROFILE": "profile",
    "REGION": "region",
    "IMAGE": "image_id",
    "INSTANCE_TYPE": "instance_type",
    "KEY_NAME": "key_name",
    "KEY": "key_path",
    "USER": "user",
    "PORT": "port",
    "TAG": "tag",
    "SECURITY_GROUP": "security_group",
    "SETUP_SCRIPT": "setup_script",
    "BOOT_TIMEOUT": "boot_timeout",
    "CONNECT_RETRIES": "connect_retries",
    "ROOT_FOLDER": "root_folder",
    "KEEP": "keep",
    "INCLUDE_HIDDEN": "include_hidden",
    "EXCLUDE": "exclude",
}


class ConfigLoader:
    """Configuration loader merging TOML, environment and CLI layers"""

    env_prefix = ENV_PREFIX
    env_mappings = {ENV_PREFIX + suffix: key for suffix, key in _ENV_KEYS.items()}

    def load_toml(self, path: Path) -> Dict[str, Any]:
        path = Path(path).expanduser()
        try:
            with open(path, "rb") as f:
                data = tomllib.load(f)
        except FileNotFoundError:
            raise ConfigError(f"Configuration file not found: {path}") from None
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to parse TOML configuration {path}: {e}") from e
        logger.debug(f"Read {len(data)} keys from {path}")
        return data

    def load_env(self, environ: Optional[Mapping[str, str]] = None) -> Dict[str, Any]:
        """Collect the ``KORASI_*`` variables that are set and non-empty"""
        if environ is None:
            environ = os.environ
        found: Dict[str, Any] = {}
        for var, key in self.env_mappings.items():
            raw = environ.get(var)
            if raw:
                found[key] = _CONVERTERS.get(key, _scalar)(raw)
        return found

    def load(
        self,
        toml_path: Optional[Path] = None,
        cli_overrides: Optional[Dict[str, Any]] = None,
        use_env: bool = True,
    ) -> Dict[str, Any]:
        """
        Merge every configuration layer into one mapping.

        Args:
            toml_path: Explicit TOML file. It must exist. Without it the
                default file is read when present.
            cli_overrides: Values from command-line flags
            use_env: Whether ``KORASI_*`` variables take part

        Raises:
            ConfigError: An explicit file is missing or any file is invalid
        """
        layers = []
        if toml_path:
            layers.append(self.load_toml(toml_path))
        else:
            default_path = Path(DEFAULT_CONFIG_PATH).expanduser()
            if default_path.is_file():
                layers.append(self.load_toml(default_path))
        if use_env:
            layers.append(self.load_env())
        layers.append(cli_overrides or {})

        merged: Dict[str, Any] = {}
        for layer in layers:
            merged.update((k, v) for k, v in layer.items() if v is not None)
        return merged
