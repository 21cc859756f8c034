"""Snippet extraction around the first match of a query in a text body."""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import List, Optional

LINE_SPLIT = re.compile(r"\r?\n")
MARKDOWN_HEADING = re.compile(r"^#+\s+(.*)")
YAML_TOP_LEVEL_KEY = re.compile(r"^([a-zA-Z0-9_-]+):\s*$")
FALLBACK_LINES = 3
# Any of these characters makes a query eligible for regular-expression matching
REGEX_CHARS = re.compile(r"[\^$.*+?()\[\]{}\\]")


@dataclass(frozen=True)
class Snippet:
    snippet: str
    section: Optional[str] = None
    line_number: Optional[int] = None


def find_section(lines: List[str], match_index: int) -> Optional[str]:
    """Nearest Markdown heading or YAML top-level key at or above ``match_index``."""
    for i in range(match_index, -1, -1):
        md_match = MARKDOWN_HEADING.match(lines[i])
        if md_match:
            return md_match.group(1).strip()
        yaml_match = YAML_TOP_LEVEL_KEY.match(lines[i])
        if yaml_match:
            return yaml_match.group(1).strip()
    return None


def _window(lines: List[str], index: int, context_lines: int, section: Optional[str]) -> Snippet:
    start = max(0, index - context_lines)
    end = min(len(lines), index + context_lines + 1)
    return Snippet(snippet="\n".join(lines[start:end]), section=section, line_number=index + 1)


def _fallback(lines: List[str]) -> Snippet:
    return Snippet(snippet="\n".join(lines[:FALLBACK_LINES]))


def extract_snippet(content: str, query: str, context_lines: int = 2) -> Snippet:
    """Context window around the first line containing ``query``.

    The window spans ``context_lines`` lines either side of the match,
    clamped to the content. ``line_number`` is 1-based. When no line
    contains the query the first three lines are returned with neither
    section nor line number.
    """
    lines = LINE_SPLIT.split(content or "")
    needle = query.lower()
    context_lines = max(0, context_lines)

    for index, line in enumerate(lines):
        if needle in line.lower():
            return _window(lines, index, context_lines, find_section(lines, index))
    return _fallback(lines)


def query_pattern(query: str) -> Optional[re.Pattern]:
    """Case-insensitive regex for a query containing regex metacharacters.

    Returns None for plain queries and for queries that do not compile;
    those are matched as substrings.
    """
    if not REGEX_CHARS.search(query):
        return None
    try:
        return re.compile(query, re.IGNORECASE)
    except re.error:
        return None


def extract_all_snippets(content: str, query: str, context_lines: int = 2,
                         pattern: Optional[re.Pattern] = None) -> List[Snippet]:
    """One snippet per matching line, falling back like :func:`extract_snippet`.

    A line matches when ``pattern`` is found in it or, without a pattern,
    when it contains ``query`` ignoring case. Lines are also tried with
    surrounding whitespace removed.
    """
    lines = LINE_SPLIT.split(content or "")
    needle = query.lower()
    context_lines = max(0, context_lines)

    def matches(line: str) -> bool:
        if pattern is not None:
            return pattern.search(line) is not None or pattern.search(line.strip()) is not None
        return needle in line.lower() or needle in line.strip().lower()

    found = [
        _window(lines, index, context_lines, find_section(lines, index))
        for index, line in enumerate(lines)
        if matches(line)
    ]
    return found or [_fallback(lines)]
