"""Record families produced by an ingestion pass.

Each family is a dataclass tagged with a ``type`` discriminator and knows
how to flatten itself into a row of its persisted table.
"""

from __future__ import annotations
import json
from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional

# Persisted column layouts. Column names and types are consumed by the
# query engine and by external analytics.
API_SPEC_SCHEMA: Dict[str, str] = {
    "filePath": "TEXT",
    "fileName": "TEXT",
    "type": "TEXT",
    "apiPath": "TEXT",
    "method": "TEXT",
    "operationId": "TEXT",
    "summary": "TEXT",
    "description": "TEXT",
    "content": "TEXT",
    "lineNumber": "INTEGER",
    "schemaName": "TEXT",
    "title": "TEXT",
    "schemaDefinition": "TEXT",
    "usedBy": "TEXT",
    "order": "INTEGER",
}

DOCS_CONTENT_SCHEMA: Dict[str, str] = {
    "filePath": "TEXT",
    "fileName": "TEXT",
    "heading1": "TEXT",
    "heading2": "TEXT",
    "heading3": "TEXT",
    "contentType": "TEXT",
    "language": "TEXT",
    "content": "TEXT",
    "lineNumber": "INTEGER",
    "order": "INTEGER",
    "fullContent": "TEXT",
}

API_SPEC_COLUMNS: List[str] = list(API_SPEC_SCHEMA)
DOCS_CONTENT_COLUMNS: List[str] = list(DOCS_CONTENT_SCHEMA)


@dataclass
class ContentBlock:
    """One heading-contextualized unit of prose or code from a document."""
    type: ClassVar[str] = "markdown"

    filePath: str
    fileName: str
    heading1: Optional[str]
    heading2: Optional[str]
    heading3: Optional[str]
    contentType: str
    content: str
    lineNumber: int
    order: int
    language: Optional[str] = None
    fullContent: Optional[str] = None

    def to_row(self) -> Dict[str, Any]:
        return {
            "filePath": self.filePath,
            "fileName": self.fileName,
            "heading1": self.heading1,
            "heading2": self.heading2,
            "heading3": self.heading3,
            "contentType": self.contentType,
            "language": self.language,
            "content": self.content,
            "lineNumber": self.lineNumber,
            "order": self.order,
            "fullContent": self.fullContent,
        }


@dataclass
class OperationRecord:
    """One path + HTTP method entry of an API specification."""
    type: ClassVar[str] = "api"

    filePath: str
    fileName: str
    apiPath: str
    method: str
    content: str
    summary: Optional[str] = None
    description: Optional[str] = None
    operationId: Optional[str] = None
    order: int = 0

    def to_row(self) -> Dict[str, Any]:
        return {
            "filePath": self.filePath,
            "fileName": self.fileName,
            "type": self.type,
            "apiPath": self.apiPath,
            "method": self.method,
            "operationId": self.operationId,
            "summary": self.summary,
            "description": self.description,
            "content": self.content,
            "lineNumber": None,
            "schemaName": None,
            "title": None,
            "schemaDefinition": None,
            "usedBy": None,
            "order": self.order,
        }


@dataclass
class SchemaUsage:
    """Reference from a schema to an operation that uses it."""
    apiPath: str
    method: str
    operationId: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"apiPath": self.apiPath, "method": self.method, "operationId": self.operationId}


@dataclass
class SchemaRecord:
    """One deduplicated data-model definition with aggregated usage references."""
    type: ClassVar[str] = "schema"

    filePath: str
    fileName: str
    content: str
    schemaDefinition: str
    schemaName: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    usedBy: List[SchemaUsage] = field(default_factory=list)
    order: int = 0

    def to_row(self) -> Dict[str, Any]:
        return {
            "filePath": self.filePath,
            "fileName": self.fileName,
            "type": self.type,
            "apiPath": None,
            "method": None,
            "operationId": None,
            "summary": self.title or self.schemaName,
            "description": self.description,
            "content": self.content,
            "lineNumber": None,
            "schemaName": self.schemaName,
            "title": self.title,
            "schemaDefinition": self.schemaDefinition,
            "usedBy": json.dumps([usage.to_dict() for usage in self.usedBy]),
            "order": self.order,
        }
