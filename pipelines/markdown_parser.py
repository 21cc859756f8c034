"""Markdown/MDX parsing into heading-contextualized content blocks."""

from __future__ import annotations
import logging
import re
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Tuple

from markdown_it import MarkdownIt
from markdown_it.tree import SyntaxTreeNode

from .records import ContentBlock
from .scanner import find_files, name_matches

logger = logging.getLogger(__name__)

# Syntax tree node type -> persisted contentType
CONTENT_NODE_TYPES = {
    "paragraph": "paragraph",
    "fence": "code",
    "code_block": "code",
    "list_item": "listItem",
    "th": "tableCell",
    "td": "tableCell",
    "blockquote": "blockquote",
}

# Containers whose children are separate blocks rather than inline runs
_BLOCK_CONTAINERS = {"root", "list_item", "blockquote", "bullet_list", "ordered_list"}

_FRONT_MATTER_FENCE = re.compile(r"^---\s*$")
_FRONT_MATTER_END = re.compile(r"^(---|\.\.\.)\s*$")


def blank_front_matter(text: str) -> str:
    """Replace a leading YAML front matter block with empty lines.

    Line count is preserved so node positions still refer to the
    original file.
    """
    lines = text.split("\n")
    if not lines or not _FRONT_MATTER_FENCE.match(lines[0]):
        return text
    for end in range(1, len(lines)):
        if _FRONT_MATTER_END.match(lines[end]):
            return "\n".join([""] * (end + 1) + lines[end + 1:])
    return text


def node_text(node: SyntaxTreeNode) -> str:
    """Concatenate the literal text beneath a node."""
    if node.type in ("text", "code_inline", "fence", "code_block"):
        return node.content
    if node.type in ("softbreak", "hardbreak"):
        return "\n"
    if node.type in ("html_inline", "html_block"):
        return ""
    separator = "\n" if node.type in _BLOCK_CONTAINERS else ""
    return separator.join(node_text(child) for child in node.children)


def _fence_language(node: SyntaxTreeNode) -> Optional[str]:
    info = (node.info or "").strip()
    if not info:
        return None
    return info.split()[0]


class DocumentParser:
    """Turns one Markdown/MDX document into an ordered sequence of ContentBlocks."""

    def __init__(self):
        self.md = MarkdownIt("commonmark").enable("table")

    def _walk(self, root: SyntaxTreeNode) -> Iterator[Tuple[SyntaxTreeNode, int]]:
        """Pre-order traversal yielding each node with its 0-based start line.

        Nodes without a source map inherit the line of their nearest mapped
        ancestor. The root itself carries no token and is not yielded.
        """
        stack: List[Tuple[SyntaxTreeNode, int]] = [(child, 0) for child in reversed(root.children)]
        while stack:
            node, inherited = stack.pop()
            line = node.map[0] if node.map else inherited
            yield node, line
            for child in reversed(node.children):
                stack.append((child, line))

    def parse(self, text: str, file_path: str, file_name: str) -> Iterator[ContentBlock]:
        """Lazily extract content blocks from a document's text.

        Args:
            text: Full document text
            file_path: Path relative to the corpus root
            file_name: Base name of the file

        Yields:
            ContentBlock per non-empty node in the allow-list, in document order
        """
        root = SyntaxTreeNode(self.md.parse(blank_front_matter(text)))
        h1: Optional[str] = None
        h2: Optional[str] = None
        h3: Optional[str] = None
        order = 0

        for node, line in self._walk(root):
            if node.type == "heading":
                heading_text = node_text(node).strip()
                if node.tag == "h1":
                    h1, h2, h3 = heading_text, None, None
                elif node.tag == "h2":
                    h2, h3 = heading_text, None
                elif node.tag == "h3":
                    h3 = heading_text
                continue

            content_type = CONTENT_NODE_TYPES.get(node.type)
            if content_type is None:
                continue

            extracted = node_text(node).strip()
            if not extracted:
                continue

            yield ContentBlock(
                filePath=file_path,
                fileName=file_name,
                heading1=h1,
                heading2=h2,
                heading3=h3,
                contentType=content_type,
                language=_fence_language(node) if node.type == "fence" else None,
                content=extracted,
                lineNumber=line + 1,
                order=order,
                fullContent=text if order == 0 else None,
            )
            order += 1

    def parse_file(self, path: Path, root: Path) -> List[ContentBlock]:
        """Read and parse one file. Errors propagate to the caller."""
        text = path.read_text(encoding="utf-8")
        relative = path.relative_to(root).as_posix()
        return list(self.parse(text, relative, path.name))

    def parse_corpus(self, root: Path, pattern: str = r"\.(md|mdx)$",
                     excluded_dirs: Optional[Iterable[str]] = None) -> Iterator[ContentBlock]:
        """Parse every document under ``root``.

        A file that fails to read or parse is logged and skipped; the
        remaining files are still processed.
        """
        root = Path(root).resolve()
        files = find_files(root, name_matches(pattern), excluded_dirs)
        logger.info(f"Parsing {len(files)} Markdown/MDX files under {root}")

        total = 0
        for path in files:
            try:
                blocks = self.parse_file(path, root)
            except Exception as e:
                logger.error(f"Failed to parse {path}: {e}")
                logger.debug("Parse failure details", exc_info=True)
                continue
            logger.debug(f"Parsed {path.relative_to(root)}: {len(blocks)} blocks")
            total += len(blocks)
            yield from blocks

        logger.info(f"Finished parsing Markdown files. Found {total} content blocks.")
