"""Configuration module for docatlas.

Provides configuration for ingestion, artifact locations and query tuning.
"""

from .settings import IndexConfig, DEFAULT_EXCLUDED_DIRS

__all__ = [
    'IndexConfig',
    'DEFAULT_EXCLUDED_DIRS'
]
