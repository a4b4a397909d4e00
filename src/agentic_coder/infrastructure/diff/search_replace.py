"""Multi-block SEARCH/REPLACE diff strategy.

A diff is one or more blocks::

    <<<<<<< SEARCH
    :start_line:12
    -------
    exact lines to find
    =======
    lines to put there instead
    >>>>>>> REPLACE

``:start_line:`` is an optional hint; the search looks there first and then in
a window of ``buffer_lines`` around it (or the whole file without a hint).
Matching is exact at ``fuzzy_threshold=1.0``; lower thresholds accept the most
similar window per :class:`difflib.SequenceMatcher`.  Blocks are applied in
order and all must match: any failed block fails the whole diff, with one
``fail_parts`` entry per failed block.
"""

from __future__ import annotations

import difflib
import logging
import re
from dataclasses import dataclass
from typing import List, Optional, Tuple

from agentic_coder.application.text_edits import every_line_has_line_numbers, strip_line_numbers
from agentic_coder.domain import DiffResult

logger = logging.getLogger(__name__)

_SEARCH = re.compile(r"^<<<<<<< SEARCH\s*$")
_DIVIDER = re.compile(r"^=======\s*$")
_REPLACE = re.compile(r"^>>>>>>> REPLACE\s*$")
_SEPARATOR = re.compile(r"^-------\s*$")
_START_LINE = re.compile(r"^:start_line:\s*(\d+)\s*$")
_END_LINE = re.compile(r"^:end_line:\s*(\d+)\s*$")
_INDENT = re.compile(r"^[ \t]*")

FORMAT_HELP = (
    "Diff format:\n"
    "<<<<<<< SEARCH\n:start_line: (optional) line number where the search block starts\n-------\n"
    "[exact content to find including whitespace]\n=======\n[new content to replace with]\n>>>>>>> REPLACE"
)


@dataclass
class DiffBlock:
    search: List[str]
    replace: List[str]
    start_line: Optional[int] = None
    end_line: Optional[int] = None


def parse_blocks(diff: str) -> List[DiffBlock]:
    """Blocks in document order; raises ``ValueError`` on a malformed block."""
    blocks: List[DiffBlock] = []
    lines = diff.replace("\r\n", "\n").split("\n")
    i = 0
    while i < len(lines):
        if not _SEARCH.match(lines[i]):
            i += 1
            continue
        i += 1
        start_line = end_line = None
        while i < len(lines):
            m_start, m_end = _START_LINE.match(lines[i]), _END_LINE.match(lines[i])
            if m_start:
                start_line = int(m_start.group(1))
            elif m_end:
                end_line = int(m_end.group(1))
            elif _SEPARATOR.match(lines[i]):
                i += 1
                break
            else:
                break
            i += 1

        search: List[str] = []
        while i < len(lines) and not _DIVIDER.match(lines[i]):
            if _SEARCH.match(lines[i]) or _REPLACE.match(lines[i]):
                raise ValueError("SEARCH block is missing its '=======' divider")
            search.append(lines[i])
            i += 1
        if i >= len(lines):
            raise ValueError("SEARCH block is missing its '=======' divider")
        i += 1

        replace: List[str] = []
        while i < len(lines) and not _REPLACE.match(lines[i]):
            if _SEARCH.match(lines[i]) or _DIVIDER.match(lines[i]):
                raise ValueError("REPLACE block is missing its '>>>>>>> REPLACE' marker")
            replace.append(lines[i])
            i += 1
        if i >= len(lines):
            raise ValueError("REPLACE block is missing its '>>>>>>> REPLACE' marker")
        i += 1
        blocks.append(DiffBlock(search, replace, start_line, end_line))
    return blocks


def _similarity(a: List[str], b: List[str]) -> float:
    if a == b:
        return 1.0
    return difflib.SequenceMatcher(None, "\n".join(a), "\n".join(b)).ratio()


def _reindent(replace: List[str], search_first: str, matched_first: str) -> List[str]:
    """Shift ``replace`` so its indentation follows the matched lines rather than the search text."""
    search_indent = _INDENT.match(search_first).group(0)
    matched_indent = _INDENT.match(matched_first).group(0)
    if search_indent == matched_indent:
        return replace
    out = []
    for line in replace:
        if line.startswith(search_indent):
            out.append(matched_indent + line[len(search_indent):])
        else:
            out.append(line)
    return out


class MultiSearchReplaceDiffStrategy:
    def __init__(self, fuzzy_threshold: float = 1.0, buffer_lines: int = 40) -> None:
        self.fuzzy_threshold = fuzzy_threshold
        self.buffer_lines = buffer_lines

    def _find(self, lines: List[str], search: List[str], hint: Optional[int]) -> Tuple[int, float]:
        """Best match index (-1 when below threshold) and its similarity."""
        size = len(search)
        last = len(lines) - size
        if last < 0:
            return -1, 0.0

        if hint is not None:
            at = min(max(hint - 1, 0), last)
            score = _similarity(lines[at:at + size], search)
            if score >= self.fuzzy_threshold:
                return at, score
            lo, hi = max(0, at - self.buffer_lines), min(last, at + self.buffer_lines)
            candidates = sorted(range(lo, hi + 1), key=lambda i: abs(i - at))
        else:
            candidates = range(0, last + 1)

        for i in candidates:
            if lines[i:i + size] == search:
                return i, 1.0
        if self.fuzzy_threshold >= 1.0:
            return -1, max((_similarity(lines[i:i + size], search) for i in candidates), default=0.0)

        best, best_score = -1, 0.0
        for i in candidates:
            score = _similarity(lines[i:i + size], search)
            if score > best_score:
                best, best_score = i, score
        if best_score >= self.fuzzy_threshold:
            return best, best_score
        return -1, best_score

    def apply_diff(
        self,
        original: str,
        diff: str,
        start_line: Optional[int] = None,
        end_line: Optional[int] = None,
    ) -> DiffResult:
        try:
            blocks = parse_blocks(diff)
        except ValueError as exc:
            return DiffResult(success=False, error=f"Invalid diff format: {exc}\n\n{FORMAT_HELP}")
        if not blocks:
            return DiffResult(
                success=False,
                error=f"Invalid diff format - missing required SEARCH/REPLACE sections\n\n{FORMAT_HELP}",
            )

        eol = "\r\n" if "\r\n" in original else "\n"
        lines = original.replace("\r\n", "\n").split("\n")
        delta = 0
        failures: List[DiffResult] = []

        for number, block in enumerate(blocks, start=1):
            search, replace = block.search, block.replace
            if every_line_has_line_numbers("\n".join(search)) and (
                not replace or every_line_has_line_numbers("\n".join(replace))
            ):
                search = strip_line_numbers("\n".join(search)).split("\n")
                replace = strip_line_numbers("\n".join(replace)).split("\n") if replace else []
            if not any(line.strip() for line in search):
                failures.append(DiffResult(
                    success=False,
                    error=f"Block {number}: empty SEARCH content is not allowed",
                ))
                continue

            hint = block.start_line if block.start_line is not None else (start_line if len(blocks) == 1 else None)
            if hint is not None:
                hint += delta
            index, score = self._find(lines, search, hint)
            if index < 0:
                where = f" at line {block.start_line}" if block.start_line else ""
                failures.append(DiffResult(
                    success=False,
                    error=(
                        f"Block {number}: no sufficiently similar match found{where} "
                        f"({int(score * 100)}% similar, needs {int(self.fuzzy_threshold * 100)}%)\n\n"
                        "Search content:\n" + "\n".join(search)
                    ),
                    details={"similarity": score, "threshold": self.fuzzy_threshold, "search_content": "\n".join(search)},
                ))
                continue

            replacement = _reindent(replace, search[0], lines[index])
            lines[index:index + len(search)] = replacement
            delta += len(replacement) - len(search)
            logger.debug("Applied diff block %d at line %d (similarity %.2f)", number, index + 1, score)

        if failures:
            return DiffResult(
                success=False,
                error=f"{len(failures)} of {len(blocks)} diff block(s) could not be applied",
                fail_parts=failures,
            )
        return DiffResult(success=True, content=eol.join(lines))
