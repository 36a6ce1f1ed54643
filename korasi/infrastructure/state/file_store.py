"""
JSON file store for kept-instance records

One record per name at ``<state_dir>/<name>.json``. Records are written
through a temporary sibling and renamed into place, so a crash mid-write
never leaves a half-written record behind.
"""
import json
import os
from pathlib import Path
from typing import Dict, Any, Optional

from ...core.interfaces import StateStore
from ...core.constants import DEFAULT_STATE_DIR
from ...core.logging import get_logger

logger = get_logger(__name__)

RECORD_SUFFIX = ".json"


class FileStateStore(StateStore):
    """Remembers instances left running by ``--keep`` for later reuse or teardown"""

    def __init__(self, state_dir: Optional[Path] = None):
        self.state_dir = Path(state_dir or DEFAULT_STATE_DIR).expanduser()
        self.state_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, name: str) -> Path:
        return self.state_dir / (name + RECORD_SUFFIX)

    def save(self, name: str, state: Dict[str, Any]) -> None:
        target = self.path_for(name)
        staging = target.with_name(target.name + ".tmp")
        with open(staging, "w", encoding="utf-8") as f:
            json.dump(state, f, indent=2, default=str)
        os.replace(staging, target)
        logger.debug(f"Saved record '{name}' to {target}")

    def load(self, name: str) -> Optional[Dict[str, Any]]:
        """Return the record, or None when it is absent or unreadable"""
        target = self.path_for(name)
        try:
            with open(target, encoding="utf-8") as f:
                return json.load(f)
        except FileNotFoundError:
            return None
        except (OSError, ValueError) as e:
            logger.warning(f"Ignoring unreadable state file {target}: {e}")
            return None

    def delete(self, name: str) -> None:
        self.path_for(name).unlink(missing_ok=True)

    def list(self) -> list[str]:
        return sorted(p.stem for p in self.state_dir.glob("*" + RECORD_SUFFIX))

    def exists(self, name: str) -> bool:
        return self.path_for(name).is_file()
