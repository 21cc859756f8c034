# Builds the api_spec and docs_content Parquet artifacts from a docs corpus.

import sys
import logging
import argparse
from pathlib import Path
from typing import List, Optional

from config.settings import IndexConfig
from observability.logging import setup_logging
from pipelines.ingest import run_ingestion
from .errors import ArtifactError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="docatlas index builder")
    parser.add_argument("--docs-root", help="Documentation corpus root (default: $DOCS_ROOT or docs)")
    parser.add_argument("--output-dir", help="Artifact directory (default: $DATA_DIR or data)")
    parser.add_argument("--log-level", help="Log level (DEBUG, INFO, WARNING, ERROR)")
    parser.add_argument("--json-logs", action="store_true", help="Emit structured JSON logs")
    parser.add_argument("--log-file", help="Also write JSON logs to this file")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """CLI entry point. Returns the process exit code."""
    args = build_parser().parse_args(argv)

    config = IndexConfig.from_env()
    updates = {}
    if args.docs_root:
        updates["docs_root"] = Path(args.docs_root)
    if args.output_dir:
        updates["data_dir"] = Path(args.output_dir)
    if args.log_level:
        updates["log_level"] = args.log_level
    if args.json_logs:
        updates["log_json"] = True
    if args.log_file:
        updates["log_file"] = Path(args.log_file)
    if updates:
        config = config.model_copy(update=updates)

    setup_logging(level=config.log_level, log_file=config.log_file, use_json=config.log_json)

    try:
        summary = run_ingestion(config)
    except ArtifactError as e:
        logger.error(f"Indexing aborted: {e}")
        return 1

    for table in summary["tables"].values():
        print(f"Wrote {table['inserted']} rows ({table['failed']} failed) to {table['artifact_path']}",
              file=sys.stderr)
    return 0


if __name__ == "__main__":
    sys.exit(main())
