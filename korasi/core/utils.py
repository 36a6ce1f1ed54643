"""
Utility functions
"""
import random
import re
import shlex
from pathlib import Path
from typing import Optional, Sequence

from .constants import DEFAULT_RETRY_BACKOFF, MAX_RETRY_BACKOFF


# ============================================================
# Naming
# ============================================================

_ADJECTIVES = (
    "amber", "brisk", "calm", "dusty", "eager", "fuzzy", "gentle", "hazy",
    "icy", "jolly", "keen", "lucky", "mellow", "nimble", "proud", "quiet",
    "rapid", "shy", "tidy", "vivid", "witty", "zesty",
)
_NOUNS = (
    "badger", "condor", "dingo", "egret", "ferret", "gecko", "heron", "ibis",
    "jackal", "koala", "lemur", "marmot", "newt", "otter", "panda", "quokka",
    "raven", "stoat", "tapir", "urchin", "walrus", "yak",
)


def generate_instance_name(rng: Optional[random.Random] = None) -> str:
    """Generate a readable ``adjective-noun`` instance name"""
    rng = rng or random.Random()
    return f"{rng.choice(_ADJECTIVES)}-{rng.choice(_NOUNS)}"


# ============================================================
# Retry Helpers
# ============================================================

def backoff_delay(
    attempt: int,
    base: float = DEFAULT_RETRY_BACKOFF,
    cap: float = MAX_RETRY_BACKOFF,
) -> float:
    """
    Exponential backoff delay for a zero-based retry attempt.

    Args:
        attempt: Number of attempts already failed (0 for the first retry)
        base: Delay before the first retry, in seconds
        cap: Upper bound for any single delay

    Returns:
        Seconds to wait before the next attempt
    """
    return min(cap, base * (2 ** attempt))


# ============================================================
# Path Helpers
# ============================================================

_HOME_PREFIX = re.compile(r"^(~|\$HOME|\$\{HOME\})(?=/|$)")


def expand_home(path: str, home: Path) -> str:
    """Expand a leading ``~``, ``$HOME`` or ``${HOME}`` against ``home``"""
    return _HOME_PREFIX.sub(lambda _: str(home), path, count=1)


def names_home(path: str) -> bool:
    """Check whether a path argument is spelled relative to the home directory"""
    return bool(_HOME_PREFIX.match(path))


# ============================================================
# Formatting
# ============================================================

def shell_command(args: Sequence[str]) -> str:
    """
    Build the remote command line from CLI arguments.

    A single argument is already a shell string (``run "make test"``) and is
    passed verbatim; several arguments are quoted one by one.
    """
    if len(args) == 1:
        return args[0]
    return shlex.join(args)


def format_size(size: float) -> str:
    """Format byte count as human-readable size"""
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}" if unit != "B" else f"{int(size)} B"
        size /= 1024
    return f"{size:.1f} TB"
