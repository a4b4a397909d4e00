"""Pure text helpers used by the file-editing and file-reading tools. No I/O."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

_LINE_NUMBER_RE = re.compile(r"^\s*\d+\s+\|\s?")

_OMISSION_KEYWORDS = frozenset({
    "remain", "remains", "unchanged", "rest", "previous", "existing", "same", "...",
})
_COMMENT_PATTERNS = [
    re.compile(r"^\s*//"),
    re.compile(r"^\s*#"),
    re.compile(r"^\s*/\*"),
    re.compile(r"^\s*\{\s*/\*"),
    re.compile(r"^\s*<%--"),
    re.compile(r"^\s*<!--"),
]


def add_line_numbers(content: str, start_line: int = 1) -> str:
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines = lines[:-1]
    if not lines:
        return ""
    width = len(str(start_line + len(lines) - 1))
    return "\n".join(f"{str(start_line + i).rjust(width)} | {line}" for i, line in enumerate(lines))


def every_line_has_line_numbers(content: str) -> bool:
    lines = [line for line in content.split("\n") if line != ""]
    return bool(lines) and all(_LINE_NUMBER_RE.match(line) for line in lines)


def strip_line_numbers(content: str) -> str:
    return "\n".join(_LINE_NUMBER_RE.sub("", line, count=1) for line in content.split("\n"))


def detect_code_omission(original: str, new: str, predicted_line_count: Optional[int] = None) -> bool:
    """True when the new content looks like it elides code with a placeholder comment.

    Only fires when the new content is also shorter than the declared line count
    or than the original file.
    """
    original_lines = original.split("\n") if original else []
    new_lines = new.split("\n")
    shorter = (
        (predicted_line_count is not None and len(new_lines) < predicted_line_count)
        or (bool(original_lines) and len(new_lines) < len(original_lines))
    )
    if not shorter:
        return False
    original_set = set(original_lines)
    for line in new_lines:
        if not any(p.match(line) for p in _COMMENT_PATTERNS):
            continue
        words = set(line.lower().split())
        if words & _OMISSION_KEYWORDS and line not in original_set:
            return True
    return False


@dataclass
class InsertGroup:
    index: int            # 0-based line before which ``elements`` go
    elements: List[str]


def insert_groups(original: List[str], groups: Iterable[InsertGroup]) -> List[str]:
    """Insert each group before its index; indexes past the end append."""
    result: List[str] = []
    last = 0
    for group in sorted(groups, key=lambda g: g.index):
        index = min(max(group.index, 0), len(original))
        result.extend(original[last:index])
        result.extend(group.elements)
        last = index
    result.extend(original[last:])
    return result


def insert_operations_to_groups(operations: List[Dict[str, Any]], line_total: int) -> List[InsertGroup]:
    """``start_line`` is 1-based; 0 (or anything past the end) appends."""
    groups = []
    for op in operations:
        start = int(op["start_line"])
        index = line_total if start <= 0 or start > line_total else start - 1
        groups.append(InsertGroup(index=index, elements=str(op["content"]).split("\n")))
    return groups


def _regex_flags(op: Dict[str, Any]) -> int:
    flags = re.MULTILINE
    letters = op.get("regex_flags")
    if letters:
        if "i" in letters:
            flags |= re.IGNORECASE
        if "s" in letters:
            flags |= re.DOTALL
    elif op.get("ignore_case"):
        flags |= re.IGNORECASE
    return flags


def _to_python_replacement(replace: str) -> str:
    # $1 / $<name> / $& are the JavaScript spellings models tend to produce
    replace = replace.replace("\\", "\\\\")
    replace = re.sub(r"\$<(\w+)>", r"\\g<\1>", replace)
    replace = re.sub(r"\$(\d+)", r"\\g<\1>", replace)
    return replace.replace("$&", r"\g<0>")


def apply_search_replace(content: str, operations: List[Dict[str, Any]]) -> str:
    """Apply search/replace operations in order, each optionally restricted to a line range."""
    for op in operations:
        search = str(op["search"])
        replace = str(op["replace"])
        use_regex = bool(op.get("use_regex"))
        pattern = re.compile(search if use_regex else re.escape(search), _regex_flags(op))

        def _substitute(text: str) -> str:
            if use_regex:
                return pattern.sub(_to_python_replacement(replace), text)
            return pattern.sub(lambda _m: replace, text)

        start, end = op.get("start_line"), op.get("end_line")
        if start or end:
            lines = content.split("\n")
            lo = max(int(start or 1) - 1, 0)
            hi = min(int(end or len(lines)), len(lines))
            section = _substitute("\n".join(lines[lo:hi]))
            content = "\n".join(lines[:lo] + section.split("\n") + lines[hi:])
        else:
            content = _substitute(content)
    return content


def extract_line_range(content: str, start_line: Optional[int], end_line: Optional[int]) -> str:
    """Lines ``start_line..end_line`` (1-based, inclusive), numbered from ``start_line``."""
    lines = content.split("\n")
    if lines and lines[-1] == "":
        lines = lines[:-1]
    lo = max((start_line or 1) - 1, 0)
    hi = len(lines) if end_line is None else min(end_line, len(lines))
    return add_line_numbers("\n".join(lines[lo:hi]), lo + 1)
