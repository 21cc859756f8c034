"""Full ingestion pass: parse the corpus and publish both artifacts.

Every run rebuilds the artifacts from scratch. Schema deduplication state
lives in a SchemaRegistry created here and discarded when the run ends.
"""

import logging
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

from config.settings import IndexConfig
from indexer.record_store import RecordStore, WriteResult
from observability.logging import log_performance
from .markdown_parser import DocumentParser
from .openapi_parser import SchemaRegistry, SpecParser
from .records import (
    API_SPEC_COLUMNS,
    API_SPEC_SCHEMA,
    DOCS_CONTENT_COLUMNS,
    DOCS_CONTENT_SCHEMA,
)

logger = logging.getLogger(__name__)


def collect_api_records(root: Path, config: IndexConfig) -> List[Any]:
    """Parse every API specification and number the records in ingestion order."""
    registry = SchemaRegistry()
    parser = SpecParser(pattern=config.spec_file_pattern, excluded_dirs=config.excluded_dirs)
    records = parser.parse_corpus(root, registry)
    registry.finalize()

    for order, record in enumerate(records):
        record.order = order

    schemas = sum(1 for r in records if r.type == "schema")
    logger.info(f"Collected {len(records) - schemas} operations and {schemas} unique schemas")
    return records


def collect_doc_blocks(root: Path, config: IndexConfig) -> List[Any]:
    parser = DocumentParser()
    return list(parser.parse_corpus(root, pattern=config.doc_file_pattern,
                                    excluded_dirs=config.excluded_dirs))


@log_performance(threshold_ms=30000.0)
def run_ingestion(config: Optional[IndexConfig] = None) -> Dict[str, Any]:
    """Parse the documentation corpus and write the api and docs artifacts.

    Args:
        config: Index configuration; read from the environment when omitted

    Returns:
        Dictionary with per-table write results and the run duration

    Raises:
        ArtifactError: If a table cannot be created, exported or published;
            the artifacts of the previous run are then left untouched
    """
    config = config or IndexConfig.from_env()
    root = Path(config.docs_root).resolve()
    if not root.is_dir():
        logger.warning(f"Documentation root {root} does not exist; artifacts will be empty")

    start_time = time.time()
    logger.info(f"Starting ingestion of {root} into {config.data_dir}")

    api_records = collect_api_records(root, config) if root.is_dir() else []
    doc_blocks = collect_doc_blocks(root, config) if root.is_dir() else []

    results: Dict[str, WriteResult] = {}
    # Both tables are staged before either is published
    with RecordStore(config.data_dir) as store:
        results["api"] = store.stage(config.api_table, API_SPEC_SCHEMA, API_SPEC_COLUMNS, api_records)
        results["docs"] = store.stage(config.docs_table, DOCS_CONTENT_SCHEMA, DOCS_CONTENT_COLUMNS, doc_blocks)
        store.publish()

    duration = time.time() - start_time
    logger.info(
        f"Ingestion finished in {duration:.2f}s: "
        f"{results['api'].inserted} api rows, {results['docs'].inserted} docs rows"
    )
    return {
        "tables": {
            key: {
                "table": result.table,
                "artifact_path": str(result.artifact_path),
                "inserted": result.inserted,
                "failed": result.failed,
            }
            for key, result in results.items()
        },
        "duration": duration,
    }
