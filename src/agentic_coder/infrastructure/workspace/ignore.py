"""``.coderignore``: workspace paths the agent may not read or edit.

Rules use gitignore-like globs matched with :mod:`fnmatch`:

* ``name`` matches a file or directory with that name at any depth;
* a pattern containing ``/`` is anchored at the workspace root;
* a trailing ``/`` matches directories only (and everything under them);
* ``!pattern`` re-allows what an earlier rule blocked; the last match wins.

Paths outside the workspace are never blocked here.
"""

from __future__ import annotations

import fnmatch
import logging
import os
import shlex
from dataclasses import dataclass
from typing import Iterable, List, Optional

from agentic_coder.application.responses import LOCK_TEXT_SYMBOL

logger = logging.getLogger(__name__)

# Commands whose arguments name files they read.
FILE_READING_COMMANDS = frozenset({
    "cat", "less", "more", "head", "tail", "grep", "awk", "sed",
    "get-content", "gc", "type", "select-string", "sls",
})


@dataclass(frozen=True)
class IgnoreRule:
    pattern: str
    negated: bool
    anchored: bool
    dir_only: bool

    @classmethod
    def parse(cls, line: str) -> Optional["IgnoreRule"]:
        text = line.strip()
        if not text or text.startswith("#"):
            return None
        negated = text.startswith("!")
        if negated:
            text = text[1:]
        dir_only = text.endswith("/")
        text = text.rstrip("/")
        anchored = "/" in text
        text = text.lstrip("/")
        if not text:
            return None
        return cls(text, negated, anchored, dir_only)

    def matches(self, rel_path: str, is_dir: bool = False) -> bool:
        parts = rel_path.split("/")
        for depth in range(1, len(parts) + 1):
            candidate_is_dir = depth < len(parts) or is_dir
            if self.dir_only and not candidate_is_dir:
                continue
            if self.anchored:
                if fnmatch.fnmatchcase("/".join(parts[:depth]), self.pattern):
                    return True
            elif fnmatch.fnmatchcase(parts[depth - 1], self.pattern):
                return True
        return False


class IgnoreController:
    """``AccessPolicy`` backed by the workspace's ignore file."""

    def __init__(self, cwd: str, ignore_file: str = ".coderignore") -> None:
        self.cwd = os.path.abspath(cwd)
        self.ignore_file = ignore_file
        self.content: Optional[str] = None
        self.rules: List[IgnoreRule] = []
        self.load()

    def load(self) -> None:
        path = os.path.join(self.cwd, self.ignore_file)
        try:
            with open(path, "r", encoding="utf-8") as fh:
                self.content = fh.read()
        except FileNotFoundError:
            self.content = None
            self.rules = []
            return
        except OSError as exc:
            logger.warning("Could not read %s: %s", path, exc)
            self.content = None
            self.rules = []
            return
        rules = [IgnoreRule.parse(line) for line in self.content.splitlines()]
        self.rules = [r for r in rules if r is not None]
        # the ignore file itself is off limits once it exists
        self.rules.insert(0, IgnoreRule(self.ignore_file, False, True, False))
        logger.debug("Loaded %d ignore rules from %s", len(self.rules), path)

    def _relative(self, path: str) -> Optional[str]:
        absolute = path if os.path.isabs(path) else os.path.join(self.cwd, path)
        rel = os.path.relpath(os.path.abspath(absolute), self.cwd).replace(os.sep, "/")
        if rel == "." or rel.startswith("../") or rel == "..":
            return None
        return rel

    def validate_access(self, path: str) -> bool:
        if not self.rules:
            return True
        rel = self._relative(path.rstrip("/\\") if len(path) > 1 else path)
        if rel is None:
            return True
        is_dir = path.endswith(("/", os.sep))
        if not is_dir:
            absolute = path if os.path.isabs(path) else os.path.join(self.cwd, path)
            is_dir = os.path.isdir(absolute)
        blocked = False
        for rule in self.rules:
            if rule.matches(rel, is_dir):
                blocked = not rule.negated
        return not blocked

    def validate_command(self, command: str) -> Optional[str]:
        if not self.rules:
            return None
        try:
            tokens = shlex.split(command)
        except ValueError:
            tokens = command.split()
        if not tokens or tokens[0].lower() not in FILE_READING_COMMANDS:
            return None
        for arg in tokens[1:]:
            # options, including PowerShell's -Path:value form
            if arg.startswith("-") or arg.startswith("/") and ":" in arg:
                continue
            if not self.validate_access(arg):
                return arg
        return None

    def filter_paths(self, paths: Iterable[str]) -> List[str]:
        return [p for p in paths if self.validate_access(p)]

    def get_instructions(self) -> Optional[str]:
        if self.content is None:
            return None
        return (
            f"# {self.ignore_file}\n\n"
            f"(The following is provided by a root-level {self.ignore_file} file where the user has "
            "specified files and directories that should not be accessed. When using list_files, "
            f"you'll notice a {LOCK_TEXT_SYMBOL} next to files that are blocked. Attempting to access "
            "the file's contents e.g. through read_file will result in an error.)\n\n"
            f"{self.content}\n{self.ignore_file}"
        )
