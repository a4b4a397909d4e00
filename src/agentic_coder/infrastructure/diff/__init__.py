"""Diff strategies for apply_diff."""

from .search_replace import MultiSearchReplaceDiffStrategy, parse_blocks

__all__ = ["MultiSearchReplaceDiffStrategy", "parse_blocks"]
