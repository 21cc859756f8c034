"""Index configuration for docatlas.

Settings for the ingestion pass and the query engine, loaded from the
environment the same way for the CLI, the MCP server and the HTTP API.
"""

import os
import logging
from pathlib import Path
from typing import List, Optional

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDED_DIRS = ["node_modules", ".git", ".hg", ".svn", "__pycache__", ".venv"]


def _env(*names: str, default: Optional[str] = None) -> Optional[str]:
    """Return the first environment variable that is set."""
    for name in names:
        value = os.getenv(name)
        if value:
            return value
    return default


class IndexConfig(BaseModel):
    """Ingestion and query configuration."""
    docs_root: Path = Field(default=Path("docs"), description="Root of the documentation corpus")
    data_dir: Path = Field(default=Path("data"), description="Directory holding the Parquet artifacts")

    api_table: str = Field(default="api_spec", description="Table name for operations and schemas")
    docs_table: str = Field(default="docs_content", description="Table name for document content blocks")

    # Matching
    fuzzy_threshold: int = Field(default=2, ge=0, description="Maximum edit distance for a fuzzy word hit")
    context_lines: int = Field(default=2, ge=0, description="Snippet context lines for search_docs")
    api_context_lines: int = Field(default=16, ge=0, description="Snippet context lines for search_api_files")
    api_file_context_lines: int = Field(default=12, ge=0, description="Snippet context lines for get_api_file")
    default_limit: int = Field(default=10, ge=1, description="Default number of search results")
    max_limit: int = Field(default=100, ge=1, description="Upper bound on requested result counts")

    # Discovery
    excluded_dirs: List[str] = Field(default_factory=lambda: list(DEFAULT_EXCLUDED_DIRS))
    spec_file_pattern: str = Field(
        default=r"^(openapi|swagger)[\w.-]*\.(json|ya?ml)$",
        description="Regex matched against file names to find API specifications",
    )
    doc_file_pattern: str = Field(default=r"\.(md|mdx)$", description="Regex matched against document file names")

    # Logging
    log_level: str = Field(default="INFO")
    log_json: bool = Field(default=False)
    log_file: Optional[Path] = Field(default=None, description="Also write JSON logs to this file")

    @property
    def api_artifact_path(self) -> Path:
        return self.data_dir / f"{self.api_table}.parquet"

    @property
    def docs_artifact_path(self) -> Path:
        return self.data_dir / f"{self.docs_table}.parquet"

    @classmethod
    def from_env(cls) -> 'IndexConfig':
        """Create configuration from environment variables."""
        excluded = os.getenv('DOCATLAS_EXCLUDED_DIRS')
        return cls(
            docs_root=Path(_env('DOCS_ROOT', 'DOCS_SUBMODULE_PATH', default='docs')),
            data_dir=Path(_env('DATA_DIR', 'PARQUET_OUTPUT_DIR', default='data')),
            fuzzy_threshold=int(os.getenv('DOCATLAS_FUZZY_THRESHOLD', '2')),
            context_lines=int(os.getenv('DOCATLAS_CONTEXT_LINES', '2')),
            api_context_lines=int(os.getenv('DOCATLAS_API_CONTEXT_LINES', '16')),
            default_limit=int(os.getenv('DOCATLAS_DEFAULT_LIMIT', '10')),
            max_limit=int(os.getenv('DOCATLAS_MAX_LIMIT', '100')),
            excluded_dirs=[d.strip() for d in excluded.split(',') if d.strip()] if excluded else list(DEFAULT_EXCLUDED_DIRS),
            log_level=os.getenv('LOG_LEVEL', 'INFO'),
            log_json=os.getenv('LOG_JSON', 'false').lower() in ('1', 'true', 'yes'),
            log_file=Path(os.environ["LOG_FILE"]) if os.getenv("LOG_FILE") else None,
        )
