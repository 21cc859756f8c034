"""Indexer package for docatlas.

Provides the record store, snippet extraction and the query engine.
"""

from .errors import (
    DocIndexError,
    ParseError,
    RowEncodeError,
    ArtifactError,
    InvalidArgumentError,
    RetrievalError,
    DocumentNotFoundError
)
from .record_store import RecordStore, WriteResult, coerce_value
from .snippets import Snippet, extract_snippet, extract_all_snippets
from .query_engine import QueryEngine, SearchResult

__all__ = [
    # Errors
    'DocIndexError',
    'ParseError',
    'RowEncodeError',
    'ArtifactError',
    'InvalidArgumentError',
    'RetrievalError',
    'DocumentNotFoundError',

    # Storage
    'RecordStore',
    'WriteResult',
    'coerce_value',

    # Querying
    'Snippet',
    'extract_snippet',
    'extract_all_snippets',
    'QueryEngine',
    'SearchResult'
]
