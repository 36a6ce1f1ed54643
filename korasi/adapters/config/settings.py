"""
Typed settings built from the merged configuration
"""
from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional

from ...core.constants import (
    DEFAULT_BOOT_TIMEOUT,
    DEFAULT_CONNECT_RETRIES,
    DEFAULT_INSTANCE_TYPE,
    DEFAULT_POLL_INTERVAL,
    DEFAULT_REGION,
    DEFAULT_RETRY_BACKOFF,
    DEFAULT_ROOT_FOLDER,
    DEFAULT_SECURITY_GROUP,
    DEFAULT_SETUP_SCRIPT,
    DEFAULT_SSH_KEY_NAME,
    DEFAULT_SSH_KEY_PATH,
    DEFAULT_SSH_PORT,
    DEFAULT_SSH_TIMEOUT,
    DEFAULT_SSH_USER,
    DEFAULT_TAG_VALUE,
)
from ...core.exceptions import ConfigError


@dataclass
class Settings:
    """All settings of one invocation"""
    # AWS
    profile: Optional[str] = None
    region: str = DEFAULT_REGION
    image_id: Optional[str] = None
    instance_type: str = DEFAULT_INSTANCE_TYPE
    key_name: str = DEFAULT_SSH_KEY_NAME
    tag: str = DEFAULT_TAG_VALUE
    security_group: str = DEFAULT_SECURITY_GROUP
    setup_script: Optional[str] = DEFAULT_SETUP_SCRIPT
    boot_timeout: float = DEFAULT_BOOT_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL

    # SSH
    user: str = DEFAULT_SSH_USER
    key_path: str = DEFAULT_SSH_KEY_PATH
    port: int = DEFAULT_SSH_PORT
    connect_timeout: float = DEFAULT_SSH_TIMEOUT
    connect_retries: int = DEFAULT_CONNECT_RETRIES
    retry_backoff: float = DEFAULT_RETRY_BACKOFF

    # Sync
    root_folder: str = DEFAULT_ROOT_FOLDER
    exclude: List[str] = field(default_factory=list)
    include_hidden: bool = False

    # Lifecycle
    keep: bool = False

    def validate(self) -> None:
        """Validate settings"""
        if not (1 <= self.port <= 65535):
            raise ConfigError(f"Invalid port: {self.port}")
        if self.boot_timeout <= 0:
            raise ConfigError(f"Invalid boot_timeout: {self.boot_timeout}")
        if self.connect_retries < 0:
            raise ConfigError(f"Invalid connect_retries: {self.connect_retries}")
        if "/" in self.root_folder.strip("/"):
            raise ConfigError(
                f"Invalid root_folder: {self.root_folder}",
                hint="root_folder is a single folder name under the remote $HOME",
            )

    def read_setup_script(self, base: Path) -> Optional[str]:
        """Read the setup script if one is configured and present"""
        if not self.setup_script:
            return None
        path = Path(self.setup_script).expanduser()
        if not path.is_absolute():
            path = base / path
        if not path.is_file():
            return None
        try:
            return path.read_text(encoding="utf-8")
        except OSError as e:
            raise ConfigError(f"Cannot read setup script {path}: {e}") from e

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Settings":
        """
        Create from a merged configuration dictionary.

        Raises:
            ConfigError: On unknown keys or values of the wrong type
        """
        known = {f.name: f for f in fields(cls)}
        unknown = sorted(set(data) - set(known))
        if unknown:
            raise ConfigError(
                f"Unknown configuration keys: {', '.join(unknown)}",
                hint=f"valid keys are: {', '.join(sorted(known))}",
            )

        defaults = cls()
        values: Dict[str, Any] = {}
        for name, value in data.items():
            default = getattr(defaults, name)
            try:
                values[name] = _coerce(value, default)
            except (TypeError, ValueError) as e:
                raise ConfigError(f"Invalid value for {name}: {value!r}") from e
        settings = cls(**values)
        settings.validate()
        return settings


def _coerce(value: Any, default: Any) -> Any:
    if value is None:
        return None
    if isinstance(default, bool):
        if isinstance(value, bool):
            return value
        raise ValueError("expected a boolean")
    if isinstance(default, int):
        return int(value)
    if isinstance(default, float):
        return float(value)
    if isinstance(default, list):
        if isinstance(value, str):
            return [value]
        return list(value)
    return str(value) if not isinstance(value, str) else value
