"""Recursive corpus discovery."""

import os
import re
import logging
from pathlib import Path
from typing import Callable, Iterable, List, Optional, Union

logger = logging.getLogger(__name__)

NamePredicate = Callable[[str], bool]


def name_matches(pattern: str) -> NamePredicate:
    """Build a case-insensitive file name predicate from a regex."""
    regex = re.compile(pattern, re.IGNORECASE)
    return lambda name: regex.search(name) is not None


def find_files(root: Union[str, Path],
               predicate: NamePredicate,
               excluded_dirs: Optional[Iterable[str]] = None) -> List[Path]:
    """Depth-first scan of ``root`` for files whose name satisfies ``predicate``.

    Entries are visited in sorted order so repeated scans of an unchanged
    tree yield the same sequence. Excluded directory names are never entered.
    Permission and not-found errors on a subtree are logged and the scan
    continues with its siblings.

    Args:
        root: Directory to scan
        predicate: Called with each file's base name
        excluded_dirs: Directory names to skip (e.g. node_modules, .git)

    Returns:
        Absolute paths of matching files
    """
    excluded = set(excluded_dirs or ())
    results: List[Path] = []
    stack = [Path(root).resolve()]

    while stack:
        directory = stack.pop()
        try:
            with os.scandir(directory) as it:
                entries = sorted(it, key=lambda e: e.name)
        except (PermissionError, FileNotFoundError) as e:
            logger.debug(f"Skipping unreadable directory {directory}: {e}")
            continue
        except OSError as e:
            logger.error(f"Error reading directory {directory}: {e}")
            continue

        subdirs = []
        for entry in entries:
            try:
                if entry.is_dir(follow_symlinks=False):
                    if entry.name in excluded:
                        logger.debug(f"Skipping directory: {entry.path}")
                    else:
                        subdirs.append(Path(entry.path))
                elif predicate(entry.name):
                    results.append(Path(entry.path))
            except OSError as e:
                logger.debug(f"Skipping entry {entry.path}: {e}")

        # Reversed so the first subdirectory is popped first
        stack.extend(reversed(subdirs))

    return results
