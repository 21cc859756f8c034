"""Query engine over the exported Parquet artifacts.

Matching runs in tiers and the first tier that produces results wins:

1. exact identifier: a query shaped like a type name (``VoiceSettingsResponseModel``)
   is matched by equality or substring against schema names, file names,
   serialized schema bodies and content.
2. multi-word fuzzy: every whitespace-separated word must hit at least one
   searchable field of a row, by case-insensitive substring or by an edit
   distance within ``fuzzy_threshold``.

:meth:`QueryEngine.search_api_files` first tries a query containing regex
metacharacters as a case-insensitive regular expression.

There is no relevance score. Results are ordered by file path, then family
(api before docs), then ingestion order. The engine holds no state between
calls; artifacts are re-read on every request.
"""

import logging
import posixpath
import re
import time
from pathlib import Path
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

import pandas as pd
import pyarrow as pa
from pydantic import BaseModel
from rapidfuzz.distance import Levenshtein

from config.settings import IndexConfig
from observability.metrics import search_metrics
from .errors import DocumentNotFoundError, InvalidArgumentError, RetrievalError
from .snippets import Snippet, extract_all_snippets, extract_snippet, query_pattern

logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = re.compile(r"^[A-Z][A-Za-z0-9]*$")

API_SEARCH_FIELDS = ("content", "summary", "description", "apiPath", "method")
DOCS_SEARCH_FIELDS = ("content",)
API_EXACT_FIELDS = ("schemaName", "fileName", "schemaDefinition", "content")
DOCS_EXACT_FIELDS = ("fileName", "content")

SOURCES = ("api", "docs")
_FAMILY_RANK = {"api": 0, "docs": 1}

Row = Dict[str, Any]


class SearchResult(BaseModel):
    """One search hit as returned to callers."""
    name: str
    path: str
    snippet: str
    sourceType: str
    section: Optional[str] = None
    lineNumber: Optional[int] = None
    fullContent: Optional[str] = None
    schemaDefinition: Optional[str] = None


def is_identifier_query(query: str) -> bool:
    return IDENTIFIER_PATTERN.match(query) is not None


def word_hits(word: str, value: Any, fuzzy_threshold: int) -> bool:
    """True if ``word`` is a case-insensitive substring of ``value`` or within edit distance."""
    if value is None:
        return False
    text = str(value).lower()
    needle = word.lower()
    if needle in text:
        return True
    if fuzzy_threshold <= 0:
        return False
    # Lengths further apart than the threshold can never be within it
    if abs(len(text) - len(needle)) > fuzzy_threshold:
        return False
    return Levenshtein.distance(needle, text, score_cutoff=fuzzy_threshold) <= fuzzy_threshold


def _as_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def _tie_break(family: str, row: Row) -> Tuple[str, int, int]:
    return (row.get("filePath") or "", _FAMILY_RANK[family], _as_int(row.get("order")) or 0)


def normalize_doc_path(path: str) -> str:
    """Normalize a caller-supplied relative document path.

    Raises:
        InvalidArgumentError: If the path is empty or escapes the corpus root
    """
    if not path or not str(path).strip():
        raise InvalidArgumentError("Missing required argument: path")
    cleaned = str(path).strip().replace("\\", "/").lstrip("/")
    normalized = posixpath.normpath(cleaned)
    if normalized in (".", "") or normalized == ".." or normalized.startswith("../"):
        raise InvalidArgumentError(f"Path escapes the documentation root: {path}")
    return normalized


class QueryEngine:
    """Answers search and lookup requests against the api and docs artifacts."""

    def __init__(self, config: Optional[IndexConfig] = None):
        self.config = config or IndexConfig.from_env()
        self.fetch_strategies: List[Tuple[str, Callable[[str], Optional[str]]]] = [
            ("record_store", self._fetch_from_store),
            ("filesystem", self._fetch_from_filesystem),
        ]

    # ------------------------------------------------------------------
    # Artifact access
    # ------------------------------------------------------------------

    def _read_table(self, artifact: Path) -> List[Row]:
        """Load every row of an artifact as plain dicts with None for nulls."""
        if not artifact.exists():
            raise RetrievalError(f"Artifact not found: {artifact}. Run the indexer first.")
        try:
            frame = pd.read_parquet(artifact)
        except (OSError, ValueError, pa.ArrowException) as e:
            raise RetrievalError(f"Failed to read artifact {artifact}: {e}") from e
        frame = frame.astype(object).where(frame.notna(), None)
        return frame.to_dict("records")

    def api_rows(self) -> List[Row]:
        return self._read_table(self.config.api_artifact_path)

    def docs_rows(self) -> List[Row]:
        return self._read_table(self.config.docs_artifact_path)

    def _load_sources(self, sources: Sequence[str]) -> List[Tuple[str, Row]]:
        rows: List[Tuple[str, Row]] = []
        if "api" in sources:
            rows.extend(("api", row) for row in self.api_rows())
        if "docs" in sources:
            rows.extend(("docs", row) for row in self.docs_rows())
        return rows

    # ------------------------------------------------------------------
    # Argument handling
    # ------------------------------------------------------------------

    def _resolve_limit(self, limit: Optional[int], default: int) -> int:
        if limit is None:
            return min(default, self.config.max_limit)
        if isinstance(limit, bool) or not isinstance(limit, int) or limit < 1:
            raise InvalidArgumentError(f"limit must be a positive integer, got {limit!r}")
        return min(limit, self.config.max_limit)

    @staticmethod
    def _resolve_context(context_lines: Optional[int], default: int) -> int:
        if context_lines is None:
            return default
        if isinstance(context_lines, bool) or not isinstance(context_lines, int) or context_lines < 0:
            raise InvalidArgumentError(f"context_lines must be a non-negative integer, got {context_lines!r}")
        return context_lines

    @staticmethod
    def _validate_query(query: Any) -> str:
        if not isinstance(query, str) or not query.strip():
            raise InvalidArgumentError("Missing required argument: query")
        return query.strip()

    # ------------------------------------------------------------------
    # Matching tiers
    # ------------------------------------------------------------------

    def match_exact(self, query: str, rows: Iterable[Tuple[str, Row]]) -> List[Tuple[str, Row]]:
        """Exact-identifier tier: schemaName equality first, then substring hits."""
        needle = query.lower()
        ranked = []
        for family, row in rows:
            fields = API_EXACT_FIELDS if family == "api" else DOCS_EXACT_FIELDS
            if family == "api" and row.get("schemaName") == query:
                ranked.append(((0,) + _tie_break(family, row), family, row))
            elif any(row.get(f) is not None and needle in str(row[f]).lower() for f in fields):
                ranked.append(((1,) + _tie_break(family, row), family, row))
        ranked.sort(key=lambda item: item[0])
        return [(family, row) for _, family, row in ranked]

    def match_fuzzy(self, words: List[str], rows: Iterable[Tuple[str, Row]]) -> List[Tuple[str, Row]]:
        """Multi-word tier: each word must hit some searchable field of the row."""
        threshold = self.config.fuzzy_threshold
        matched = []
        for family, row in rows:
            fields = API_SEARCH_FIELDS if family == "api" else DOCS_SEARCH_FIELDS
            values = [row.get(f) for f in fields]
            if all(any(word_hits(word, value, threshold) for value in values) for word in words):
                matched.append((family, row))
        matched.sort(key=lambda item: _tie_break(item[0], item[1]))
        return matched

    def _run_tiers(self, query: str, rows: List[Tuple[str, Row]]) -> Tuple[str, List[Tuple[str, Row]]]:
        if is_identifier_query(query):
            exact = self.match_exact(query, rows)
            if exact:
                return "exact", exact
        return "fuzzy", self.match_fuzzy(query.split(), rows)

    def match_regex(self, pattern: re.Pattern, rows: Iterable[Tuple[str, Row]]) -> List[Tuple[str, Row]]:
        """Regex tier: the pattern is found in a searchable field or the serialized schema."""
        matched = []
        for family, row in rows:
            fields = API_SEARCH_FIELDS + ("schemaDefinition",) if family == "api" else DOCS_SEARCH_FIELDS
            if any(row.get(f) is not None and pattern.search(str(row[f])) for f in fields):
                matched.append((family, row))
        matched.sort(key=lambda item: _tie_break(item[0], item[1]))
        return matched

    # ------------------------------------------------------------------
    # Result shaping
    # ------------------------------------------------------------------

    @staticmethod
    def _needles(query: str) -> List[str]:
        needles = [query]
        for word in query.split():
            if word not in needles:
                needles.append(word)
        return needles

    @staticmethod
    def _texts(family: str, row: Row) -> List[str]:
        texts = [row.get("content") or ""]
        if family == "api" and row.get("schemaDefinition"):
            texts.append(row["schemaDefinition"])
        return texts

    def _probe_snippet(self, texts: List[str], query: str, context_lines: int) -> Snippet:
        """First snippet that actually matches, trying the whole query then each word."""
        for text in texts:
            for needle in self._needles(query):
                snippet = extract_snippet(text, needle, context_lines)
                if snippet.line_number is not None:
                    return snippet
        return extract_snippet(texts[0], query, context_lines)

    @staticmethod
    def _structural_section(family: str, row: Row) -> Optional[str]:
        if family == "docs":
            headings = [row.get(h) for h in ("heading1", "heading2", "heading3")]
            return " > ".join(h for h in headings if h) or None
        if row.get("type") == "schema":
            return row.get("schemaName") or row.get("title")
        if row.get("apiPath"):
            return f"{row['apiPath']} ({row.get('method')})"
        return row.get("summary")

    @staticmethod
    def _result_name(family: str, row: Row) -> str:
        if family == "api" and row.get("type") == "schema" and row.get("schemaName"):
            return row["schemaName"]
        return row.get("fileName") or ""

    @staticmethod
    def _source_type(family: str, row: Row) -> str:
        if family == "docs":
            return "markdown"
        return row.get("type") or "api"

    def _build_result(self, family: str, row: Row, snippet: Snippet) -> SearchResult:
        line_number = snippet.line_number
        if family == "docs":
            block_line = _as_int(row.get("lineNumber"))
            if block_line is not None:
                line_number = block_line + (snippet.line_number - 1 if snippet.line_number else 0)
        elif line_number is None:
            line_number = _as_int(row.get("lineNumber"))

        # Section found around the match takes precedence over the row context
        section = snippet.section or self._structural_section(family, row)
        return SearchResult(
            name=self._result_name(family, row),
            path=row.get("filePath") or "",
            snippet=snippet.snippet,
            sourceType=self._source_type(family, row),
            section=section,
            lineNumber=line_number,
        )

    def _attach_full_content(self, results: List[SearchResult]) -> None:
        fetched: Dict[str, Optional[str]] = {}
        for result in results:
            if result.path not in fetched:
                try:
                    fetched[result.path] = self.fetch_by_path(result.path)["raw"]
                except DocumentNotFoundError as e:
                    logger.warning(f"Full content unavailable: {e}")
                    fetched[result.path] = None
            result.fullContent = fetched[result.path]

    # ------------------------------------------------------------------
    # Public operations
    # ------------------------------------------------------------------

    def query(self, query: str, limit: Optional[int] = None,
              include_full_content: bool = False,
              include_schema_definition: bool = False,
              context_lines: Optional[int] = None,
              sources: Sequence[str] = SOURCES) -> List[SearchResult]:
        """Search both record families.

        Args:
            query: Search string, a type name or whitespace-separated keywords
            limit: Maximum number of results (default from configuration)
            include_full_content: Attach the full source document to each result
            include_schema_definition: Attach the serialized schema to schema results
            context_lines: Lines of context around the snippet match
            sources: Record families to search, any of "api" and "docs"

        Returns:
            Ordered list of SearchResult

        Raises:
            InvalidArgumentError: On an empty query or invalid limit/sources
            RetrievalError: If an artifact is missing or unreadable
        """
        query = self._validate_query(query)
        limit = self._resolve_limit(limit, self.config.default_limit)
        context_lines = self._resolve_context(context_lines, self.config.context_lines)
        unknown = [s for s in sources if s not in SOURCES]
        if unknown or not sources:
            raise InvalidArgumentError(f"sources must be a non-empty subset of {SOURCES}, got {list(sources)}")

        start_time = time.time()
        tier = "none"
        try:
            tier, matched = self._run_tiers(query, self._load_sources(sources))
            results = []
            for family, row in matched[:limit]:
                snippet = self._probe_snippet(self._texts(family, row), query, context_lines)
                result = self._build_result(family, row, snippet)
                if include_schema_definition and row.get("schemaDefinition"):
                    result.schemaDefinition = row["schemaDefinition"]
                results.append(result)
            if include_full_content:
                self._attach_full_content(results)
        except Exception as e:
            search_metrics.record_search_query(tier, time.time() - start_time, 0, error=type(e).__name__)
            raise

        duration = time.time() - start_time
        search_metrics.record_search_query(tier, duration, len(results))
        logger.info(f"Query '{query}' answered by {tier} tier: {len(results)} results in {duration * 1000:.1f}ms")
        return results

    def search_api_files(self, query: str, context_lines: Optional[int] = None,
                         limit: Optional[int] = None) -> List[SearchResult]:
        """Search operations and schemas only, returning one result per matching line.

        Each matching row contributes a snippet for every line of its content
        (or serialized schema) that contains the query. A query containing
        regex metacharacters that compiles is matched as a case-insensitive
        regular expression; when no row matches it the usual tiers apply.
        """
        query = self._validate_query(query)
        context_lines = self._resolve_context(context_lines, self.config.api_context_lines)
        max_results = self._resolve_limit(limit, self.config.max_limit)

        start_time = time.time()
        tier = "none"
        try:
            rows = [("api", row) for row in self.api_rows()]
            pattern = query_pattern(query)
            matched = self.match_regex(pattern, rows) if pattern is not None else []
            if matched:
                tier = "regex"
            else:
                pattern = None
                tier, matched = self._run_tiers(query, rows)
            results: List[SearchResult] = []
            for family, row in matched:
                for snippet in self._all_snippets(self._texts(family, row), query, context_lines, pattern):
                    results.append(self._build_result(family, row, snippet))
                if len(results) >= max_results:
                    break
            results = results[:max_results]
        except Exception as e:
            search_metrics.record_search_query(tier, time.time() - start_time, 0, error=type(e).__name__)
            raise

        search_metrics.record_search_query(tier, time.time() - start_time, len(results))
        return results

    def _all_snippets(self, texts: List[str], query: str, context_lines: int,
                      pattern: Optional[re.Pattern] = None) -> List[Snippet]:
        needles = [query] if pattern is not None else self._needles(query)
        for text in texts:
            for needle in needles:
                snippets = extract_all_snippets(text, needle, context_lines, pattern)
                if snippets[0].line_number is not None:
                    return snippets
        return extract_all_snippets(texts[0], query, context_lines)

    def fetch_by_path(self, path: str) -> Dict[str, str]:
        """Raw text of a document, from the record store or else the filesystem.

        Strategies are tried in order; a strategy that returns None has no
        copy of the document and the next one is consulted.

        Raises:
            InvalidArgumentError: If the path is empty or escapes the corpus root
            DocumentNotFoundError: If no strategy holds the document
            RetrievalError: On any other read failure
        """
        normalized = normalize_doc_path(path)
        for name, strategy in self.fetch_strategies:
            raw = strategy(normalized)
            if raw is not None:
                logger.debug(f"Fetched {normalized} via {name}")
                return {"raw": raw}
            logger.debug(f"{name} has no copy of {normalized}, falling back")
        raise DocumentNotFoundError(normalized)

    def _fetch_from_store(self, path: str) -> Optional[str]:
        artifact = self.config.docs_artifact_path
        if not artifact.exists():
            logger.debug(f"No docs artifact at {artifact}")
            return None
        for row in self._read_table(artifact):
            if row.get("filePath") == path and _as_int(row.get("order")) == 0:
                return row.get("fullContent")
        return None

    def _resolve_in_root(self, path: str) -> Path:
        root = Path(self.config.docs_root).resolve()
        target = (root / path).resolve()
        if target != root and root not in target.parents:
            raise InvalidArgumentError(f"Path escapes the documentation root: {path}")
        return target

    def _fetch_from_filesystem(self, path: str) -> Optional[str]:
        target = self._resolve_in_root(path)
        if not target.is_file():
            return None
        try:
            return target.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None
        except (OSError, UnicodeDecodeError) as e:
            raise RetrievalError(f"Could not retrieve document {path}: {e}") from e

    def get_api_file(self, filename: str, filter: Optional[str] = None,
                     context: Optional[int] = None) -> Dict[str, Any]:
        """Read an indexed API specification file.

        Only files that contributed rows to the api artifact may be read.
        JSON specifications are typically large, so they require ``filter``
        and return a window of ``context`` lines around its first match.
        Other files return their full content unless a filter is given.
        """
        if not filename or not str(filename).strip():
            raise InvalidArgumentError("Missing required argument: filename")
        filename = str(filename).strip().replace("\\", "/").lstrip("/")

        allowed = sorted({row["filePath"] for row in self.api_rows() if row.get("filePath")})
        match = next((fp for fp in allowed if fp == filename or fp.endswith("/" + filename)), None)
        if match is None:
            raise InvalidArgumentError(f"Requested file is not an indexed API spec file: {filename}")

        if match.lower().endswith(".json") and not filter:
            raise InvalidArgumentError(
                f"For {posixpath.basename(match)}, you must provide a 'filter' argument to avoid loading the entire file."
            )

        raw = self._fetch_from_filesystem(match)
        if raw is None:
            raise DocumentNotFoundError(match)

        name = posixpath.basename(match)
        if not filter:
            return {"name": name, "path": match, "content": raw}

        if isinstance(context, bool) or not isinstance(context, int) or context <= 0:
            context = self.config.api_file_context_lines
        snippet = extract_snippet(raw, filter, context)
        if snippet.line_number is None:
            return {"name": name, "path": match, "snippet": "No match found for filter."}
        return {
            "name": name,
            "path": match,
            "snippet": snippet.snippet,
            "lineNumber": snippet.line_number,
            "context": context,
        }

    def list_api_endpoints(self, category: Optional[str] = None, limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        """Operations in ingestion order, optionally restricted to paths containing ``category``."""
        limit = self._resolve_limit(limit, 20)
        operations = [row for row in self.api_rows() if row.get("type") == "api"]
        if category:
            needle = category.lower()
            operations = [row for row in operations if needle in (row.get("filePath") or "").lower()]
        operations.sort(key=lambda row: _tie_break("api", row))
        return [
            {
                "name": row.get("fileName"),
                "path": row.get("filePath"),
                "apiPath": row.get("apiPath"),
                "method": row.get("method"),
                "operationId": row.get("operationId"),
                "summary": row.get("summary"),
            }
            for row in operations[:limit]
        ]
