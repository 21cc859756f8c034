"""Pipelines package for docatlas.

Provides corpus discovery, Markdown and OpenAPI parsing, and the ingestion pass.
"""

from .records import (
    ContentBlock,
    OperationRecord,
    SchemaRecord,
    SchemaUsage,
    API_SPEC_SCHEMA,
    DOCS_CONTENT_SCHEMA,
)
from .scanner import find_files, name_matches
from .markdown_parser import DocumentParser
from .openapi_parser import SchemaRegistry, SpecParser, to_cycle_safe, safe_dumps
from .ingest import run_ingestion

__all__ = [
    # Records
    'ContentBlock',
    'OperationRecord',
    'SchemaRecord',
    'SchemaUsage',
    'API_SPEC_SCHEMA',
    'DOCS_CONTENT_SCHEMA',

    # Discovery
    'find_files',
    'name_matches',

    # Parsers
    'DocumentParser',
    'SchemaRegistry',
    'SpecParser',
    'to_cycle_safe',
    'safe_dumps',

    # Ingestion
    'run_ingestion'
]
