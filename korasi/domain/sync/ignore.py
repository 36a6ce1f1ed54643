"""
Gitignore-style ignore filter
"""
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Iterable, List, Optional, Tuple

from ...core.constants import ALWAYS_IGNORED, IGNORE_FILE_NAMES
from ...core.exceptions import SyncError
from ...core.interfaces import IgnoreFilter
from ...core.logging import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class IgnoreRule:
    """One parsed gitignore-style rule"""
    pattern: str
    segments: Tuple[str, ...]
    negated: bool
    anchored: bool
    dir_only: bool

    @property
    def has_slash(self) -> bool:
        return len(self.segments) > 1


def parse_rule(line: str) -> Optional[IgnoreRule]:
    """Parse one line, returning None for blanks and comments"""
    line = line.rstrip("\r\n")
    if not line.endswith("\\ "):
        line = line.rstrip()
    if not line or line.startswith("#"):
        return None

    negated = line.startswith("!")
    if negated:
        line = line[1:]
    elif line.startswith("\\!") or line.startswith("\\#"):
        line = line[1:]

    dir_only = line.endswith("/")
    line = line.rstrip("/")
    anchored = line.startswith("/")
    line = line.lstrip("/")
    if not line:
        return None

    segments = tuple(s for s in line.split("/") if s)
    # a slash in the middle anchors the pattern to the ignore file's directory
    anchored = anchored or len(segments) > 1
    return IgnoreRule(
        pattern="/".join(segments),
        segments=segments,
        negated=negated,
        anchored=anchored,
        dir_only=dir_only,
    )


def parse_rules(lines: Iterable[str]) -> List[IgnoreRule]:
    rules = []
    for line in lines:
        rule = parse_rule(line)
        if rule is not None:
            rules.append(rule)
    return rules


@lru_cache(maxsize=512)
def _segment_regex(pattern: str) -> "re.Pattern[str]":
    """Translate a single path segment glob to a regex"""
    out = []
    i = 0
    while i < len(pattern):
        c = pattern[i]
        if c == "*":
            out.append("[^/]*")
        elif c == "?":
            out.append("[^/]")
        elif c == "[":
            end = pattern.find("]", i + 1)
            if end == -1:
                out.append(re.escape(c))
            else:
                body = pattern[i + 1:end]
                if body.startswith("!"):
                    body = "^" + body[1:]
                out.append(f"[{body}]")
                i = end
        elif c == "\\" and i + 1 < len(pattern):
            i += 1
            out.append(re.escape(pattern[i]))
        else:
            out.append(re.escape(c))
        i += 1
    return re.compile("".join(out) + r"\Z")


def _segments_match(pattern: Tuple[str, ...], parts: List[str]) -> bool:
    if not pattern:
        return not parts
    head = pattern[0]
    if head == "**":
        return any(_segments_match(pattern[1:], parts[i:]) for i in range(len(parts) + 1))
    if not parts:
        return False
    return bool(_segment_regex(head).match(parts[0])) and _segments_match(pattern[1:], parts[1:])


def match_rule(rule: IgnoreRule, rel: str, is_dir: bool) -> bool:
    """Return True when a single rule matches a relative path"""
    parts = [p for p in rel.strip("/").split("/") if p]
    if not parts:
        return False
    if rule.dir_only and not is_dir:
        return False
    if rule.anchored:
        return _segments_match(rule.segments, parts)
    return bool(_segment_regex(rule.pattern).match(parts[-1]))


class GitIgnoreFilter(IgnoreFilter):
    """
    Ignore filter driven by ``.gitignore`` and ``.ignore`` files.

    ``.git`` is always skipped and hidden entries are skipped unless
    ``include_hidden`` is set. Ignore files are picked up in every directory
    the walk enters, and their rules only apply below that directory.
    Rules apply in order and the last match wins: root rules first, then
    those of deeper directories, then ``extra`` patterns from the command
    line. Paths are walk-root relative; a directory that matches prunes its
    subtree, so rules are only tested against the entry itself.
    """

    def __init__(
        self,
        rules: Optional[List[IgnoreRule]] = None,
        include_hidden: bool = False,
        scoped: Optional[List[Tuple[str, IgnoreRule]]] = None,
        extra: Optional[List[IgnoreRule]] = None,
    ):
        self.rules = list(rules or [])
        self.include_hidden = include_hidden
        # (walk-root relative directory, rule) from nested ignore files
        self.scoped = list(scoped or [])
        self.extra = list(extra or [])

    @classmethod
    def from_directory(
        cls,
        root: Path,
        extra_patterns: Iterable[str] = (),
        include_hidden: bool = False,
    ) -> "GitIgnoreFilter":
        """
        Load ignore files found at a walk root.

        Args:
            root: Directory being walked (a file source uses its parent)
            extra_patterns: Additional gitignore-style patterns
            include_hidden: Keep dot files and dot directories

        Raises:
            SyncError: If an ignore file exists but cannot be read
        """
        return cls(
            load_ignore_files(Path(root)),
            include_hidden=include_hidden,
            extra=parse_rules(extra_patterns),
        )

    def descend(self, directory: Path, rel_dir: str) -> "GitIgnoreFilter":
        loaded = load_ignore_files(directory)
        if not loaded:
            return self
        return GitIgnoreFilter(
            self.rules,
            include_hidden=self.include_hidden,
            scoped=self.scoped + [(rel_dir, rule) for rule in loaded],
            extra=self.extra,
        )

    def matches(self, path: str, is_dir: bool = False) -> bool:
        path = path.strip("/")
        name = path.rsplit("/", 1)[-1]
        if name in ALWAYS_IGNORED:
            return True
        if not self.include_hidden and name.startswith(".") and name not in (".", ".."):
            return True

        ignored = False
        for rule in self.rules:
            if match_rule(rule, path, is_dir):
                ignored = not rule.negated
        for base, rule in self.scoped:
            prefix = base + "/"
            if path.startswith(prefix) and match_rule(rule, path[len(prefix):], is_dir):
                ignored = not rule.negated
        for rule in self.extra:
            if match_rule(rule, path, is_dir):
                ignored = not rule.negated
        return ignored


def load_ignore_files(directory: Path) -> List[IgnoreRule]:
    """
    Parse the ignore files of one directory, in ``IGNORE_FILE_NAMES`` order.

    Raises:
        SyncError: If an ignore file exists but cannot be read
    """
    rules: List[IgnoreRule] = []
    for name in IGNORE_FILE_NAMES:
        path = directory / name
        if not path.is_file():
            continue
        try:
            lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
        except OSError as e:
            raise SyncError(
                f"Failed to read ignore file {path}: {e}",
                kind=SyncError.Kind.UNREADABLE_SOURCE,
            ) from e
        loaded = parse_rules(lines)
        logger.debug(f"Loaded {len(loaded)} rules from {path}")
        rules.extend(loaded)
    return rules


class NullIgnoreFilter(IgnoreFilter):
    """Filter that keeps everything"""

    def matches(self, path: str, is_dir: bool = False) -> bool:
        return False
