"""Local-disk ``WorkspaceFiles``: listings, text reads, regex search and definition outlines."""

from __future__ import annotations

import fnmatch
import logging
import os
import re
from collections import deque
from typing import List, Optional, Tuple

from agentic_coder.application.ports import AccessPolicy
from agentic_coder.config.constants import (
    CODE_DEFINITION_MAX_FILES,
    DEFAULT_IGNORED_DIRS,
    SEARCH_FILES_MAX_RESULTS,
)
from agentic_coder.domain import ToolExecutionError

logger = logging.getLogger(__name__)

_BINARY_SNIFF_BYTES = 8000

# Outline patterns per extension; each captures the definition line.
_DEFINITION_PATTERNS = {
    ".py": re.compile(r"^\s*(?:async\s+)?(?:def|class)\s+\w+"),
    ".js": re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:async\s+)?(?:function\*?\s+\w+|class\s+\w+|(?:const|let)\s+\w+\s*=\s*(?:async\s*)?\([^)]*\)\s*=>)"),
    ".ts": re.compile(r"^\s*(?:export\s+)?(?:default\s+)?(?:abstract\s+)?(?:async\s+)?(?:function\*?\s+\w+|class\s+\w+|interface\s+\w+|type\s+\w+\s*=|enum\s+\w+|(?:const|let)\s+\w+\s*=\s*(?:async\s*)?\([^)]*\)\s*=>)"),
    ".go": re.compile(r"^\s*(?:func|type)\s+"),
    ".rs": re.compile(r"^\s*(?:pub(?:\([^)]*\))?\s+)?(?:async\s+)?(?:fn|struct|enum|trait|impl|mod)\b"),
    ".java": re.compile(r"^\s*(?:public|private|protected)?\s*(?:static\s+)?(?:final\s+)?(?:class|interface|enum|record)\s+\w+"),
    ".rb": re.compile(r"^\s*(?:def|class|module)\s+"),
    ".c": re.compile(r"^(?:struct|enum|typedef|[\w\*\s]+\s+\**\w+\s*\([^;]*\)\s*\{?\s*$)"),
}
_DEFINITION_PATTERNS[".jsx"] = _DEFINITION_PATTERNS[".js"]
_DEFINITION_PATTERNS[".mjs"] = _DEFINITION_PATTERNS[".js"]
_DEFINITION_PATTERNS[".tsx"] = _DEFINITION_PATTERNS[".ts"]
_DEFINITION_PATTERNS[".h"] = _DEFINITION_PATTERNS[".c"]
_DEFINITION_PATTERNS[".cpp"] = _DEFINITION_PATTERNS[".c"]
_DEFINITION_PATTERNS[".hpp"] = _DEFINITION_PATTERNS[".c"]
_DEFINITION_PATTERNS[".kt"] = re.compile(r"^\s*(?:\w+\s+)*(?:fun|class|interface|object)\s+\w+")


def _is_binary(path: str) -> bool:
    with open(path, "rb") as fh:
        return b"\0" in fh.read(_BINARY_SNIFF_BYTES)


class LocalWorkspaceFiles:
    """Workspace queries against the local filesystem.

    ``access_policy`` (when given) hides blocked files from search results and
    definition outlines; listings keep them so they can be shown locked.
    """

    def __init__(self, access_policy: Optional[AccessPolicy] = None) -> None:
        self._policy = access_policy

    def _allowed(self, path: str) -> bool:
        return self._policy is None or self._policy.validate_access(path)

    # ------------------------------------------------------------------
    # Listing
    # ------------------------------------------------------------------

    def list_files(self, dir_path: str, recursive: bool, limit: int) -> Tuple[List[str], bool]:
        absolute = os.path.abspath(dir_path)
        # never walk the filesystem root or the home directory
        if absolute in (os.path.abspath(os.sep), os.path.expanduser("~")):
            return [absolute], False
        if not os.path.isdir(absolute):
            raise ToolExecutionError(f"Directory does not exist: {absolute}")

        results: List[str] = []
        queue = deque([absolute])
        while queue:
            current = queue.popleft()
            try:
                entries = sorted(os.scandir(current), key=lambda e: e.name.lower())
            except OSError as exc:
                logger.debug("Skipping unreadable directory %s: %s", current, exc)
                continue
            for entry in entries:
                if len(results) >= limit:
                    return results, True
                is_dir = entry.is_dir(follow_symlinks=False)
                results.append(entry.path + os.sep if is_dir else entry.path)
                if recursive and is_dir and entry.name not in DEFAULT_IGNORED_DIRS and not entry.name.startswith("."):
                    queue.append(entry.path)
            if not recursive:
                break
        return results, False

    def _walk_files(self, root: str):
        if os.path.isfile(root):
            yield root
            return
        for current, dirs, files in os.walk(root):
            dirs[:] = sorted(d for d in dirs if d not in DEFAULT_IGNORED_DIRS and not d.startswith("."))
            for name in sorted(files):
                yield os.path.join(current, name)

    # ------------------------------------------------------------------
    # Reading
    # ------------------------------------------------------------------

    def read_text(self, path: str) -> str:
        if not os.path.isfile(path):
            raise ToolExecutionError(f"File not found: {path}")
        try:
            if _is_binary(path):
                raise ToolExecutionError(f"Cannot read binary file: {path}")
            with open(path, "r", encoding="utf-8", errors="replace", newline="") as fh:
                return fh.read()
        except OSError as exc:
            raise ToolExecutionError(f"Could not read {path}: {exc}") from exc

    # ------------------------------------------------------------------
    # Search
    # ------------------------------------------------------------------

    def search(self, cwd: str, dir_path: str, regex: str, file_pattern: Optional[str] = None) -> str:
        try:
            pattern = re.compile(regex)
        except re.error as exc:
            raise ToolExecutionError(f"Invalid regex {regex!r}: {exc}") from exc
        glob = file_pattern or "*"

        sections: List[str] = []
        count = 0
        truncated = False
        for path in self._walk_files(os.path.abspath(dir_path)):
            if not fnmatch.fnmatch(os.path.basename(path), glob) or not self._allowed(path):
                continue
            try:
                if _is_binary(path):
                    continue
                with open(path, "r", encoding="utf-8", errors="replace") as fh:
                    lines = fh.read().split("\n")
            except OSError:
                continue

            chunks: List[str] = []
            last_shown = -2
            for number, line in enumerate(lines):
                if not pattern.search(line):
                    continue
                if count >= SEARCH_FILES_MAX_RESULTS:
                    truncated = True
                    break
                count += 1
                lo, hi = max(0, number - 1), min(len(lines) - 1, number + 1)
                if lo > last_shown + 1 and chunks:
                    chunks.append("│----")
                for i in range(max(lo, last_shown + 1), hi + 1):
                    chunks.append(f"│{lines[i].rstrip()}")
                last_shown = hi
            if chunks:
                rel = os.path.relpath(path, cwd).replace(os.sep, "/")
                sections.append(f"{rel}\n│----\n" + "\n".join(chunks) + "\n│----")
            if truncated:
                break

        if count == 0:
            return "Found 0 results."
        header = (
            f"Showing first {SEARCH_FILES_MAX_RESULTS} of {SEARCH_FILES_MAX_RESULTS}+ results. "
            "Use a more specific search if necessary."
            if truncated else f"Found {count} result{'s' if count != 1 else ''}."
        )
        return header + "\n\n" + "\n\n".join(sections)

    # ------------------------------------------------------------------
    # Definitions
    # ------------------------------------------------------------------

    def _outline(self, path: str) -> Optional[str]:
        pattern = _DEFINITION_PATTERNS.get(os.path.splitext(path)[1].lower())
        if pattern is None or not self._allowed(path):
            return None
        try:
            with open(path, "r", encoding="utf-8", errors="replace") as fh:
                lines = fh.read().split("\n")
        except OSError:
            return None
        found = [f"{n} | {line.rstrip()}" for n, line in enumerate(lines, start=1) if pattern.match(line)]
        return "\n".join(found) if found else None

    def list_definitions(self, path: str) -> str:
        if os.path.isfile(path):
            outline = self._outline(path)
            if outline is None:
                return "No source code definitions found."
            return f"# {os.path.basename(path)}\n{outline}"
        if not os.path.isdir(path):
            raise ToolExecutionError(f"Path does not exist: {path}")

        sections = []
        files = sorted(
            os.path.join(path, name) for name in os.listdir(path)
            if os.path.isfile(os.path.join(path, name))
        )
        for file_path in files[:CODE_DEFINITION_MAX_FILES]:
            outline = self._outline(file_path)
            if outline:
                sections.append(f"# {os.path.relpath(file_path, path).replace(os.sep, '/')}\n{outline}")
        return "\n\n".join(sections) if sections else "No source code definitions found."
