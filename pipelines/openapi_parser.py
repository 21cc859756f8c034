"""OpenAPI/Swagger parsing into operation and schema records.

Specifications are fully dereferenced before extraction. Schemas are
deduplicated across the whole corpus through a run-scoped
:class:`SchemaRegistry` that callers create per ingestion pass and thread
through every parse call.
"""

from __future__ import annotations
import hashlib
import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple, Union
from urllib.parse import urlparse
from urllib.request import url2pathname

import jsonref
import yaml

from indexer.errors import ParseError
from .records import OperationRecord, SchemaRecord, SchemaUsage
from .scanner import find_files, name_matches

logger = logging.getLogger(__name__)

CIRCULAR_MARKER = "[Circular]"
HTTP_METHODS = ("get", "put", "post", "delete", "options", "head", "patch", "trace")

ApiRecord = Union[OperationRecord, SchemaRecord]


def to_cycle_safe(value: Any) -> Any:
    """Copy a JSON-like structure, replacing repeated containers with a marker.

    Traversal is an explicit pre-order walk with a seen-set of object
    identities: the first occurrence of a dict or list is copied, every
    later occurrence (cyclic or merely shared) becomes ``"[Circular]"``.
    """
    seen = set()
    holder: List[Any] = [None]
    stack: List[Tuple[Any, Any, Any]] = [(value, holder, 0)]

    while stack:
        node, parent, key = stack.pop()
        if isinstance(node, dict):
            if id(node) in seen:
                parent[key] = CIRCULAR_MARKER
                continue
            seen.add(id(node))
            # children pop in key order, so the copy keeps document order
            copy: Dict[str, Any] = {}
            parent[key] = copy
            for k, v in reversed(list(node.items())):
                stack.append((v, copy, str(k)))
        elif isinstance(node, list):
            if id(node) in seen:
                parent[key] = CIRCULAR_MARKER
                continue
            seen.add(id(node))
            items: List[Any] = [None] * len(node)
            parent[key] = items
            for index in range(len(node) - 1, -1, -1):
                stack.append((node[index], items, index))
        else:
            parent[key] = node

    return holder[0]


def safe_dumps(value: Any, indent: Optional[int] = 2) -> str:
    """Serialize a possibly cyclic structure to JSON."""
    return json.dumps(to_cycle_safe(value), indent=indent, default=str, ensure_ascii=False)


def structural_hash(schema: Any) -> str:
    """Stable content hash of a schema body, independent of key order."""
    canonical = json.dumps(to_cycle_safe(schema), sort_keys=True, default=str, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _schema_content(schema: Dict[str, Any], schema_name: Optional[str]) -> str:
    title = schema.get("title")
    description = schema.get("description") or ""
    if title and title != schema_name:
        return f"{title} {description}".strip()
    return str(description).strip()


class SchemaRegistry:
    """Run-scoped schema deduplication state.

    Holds the dedup key -> SchemaRecord map and the key -> usage list map
    for one ingestion pass. A usage is recorded once per spec file, so the
    same route declared in two files is listed twice. Safe to share between worker threads.
    """

    def __init__(self):
        self._records: Dict[str, SchemaRecord] = {}
        self._usages: Dict[str, List[Tuple[str, SchemaUsage]]] = {}
        self._lock = threading.Lock()

    @staticmethod
    def dedup_key(schema: Dict[str, Any], schema_name: Optional[str]) -> str:
        return schema_name or structural_hash(schema)

    def add(self, schema: Dict[str, Any], schema_name: Optional[str], file_path: str,
            file_name: str, used_by: Optional[SchemaUsage] = None) -> Optional[SchemaRecord]:
        """Register one sighting of a schema.

        Returns:
            The new SchemaRecord on first sighting of its dedup key, else None
        """
        key = self.dedup_key(schema, schema_name)
        with self._lock:
            created = None
            if key not in self._records:
                title = schema.get("title")
                description = schema.get("description")
                created = SchemaRecord(
                    filePath=file_path,
                    fileName=file_name,
                    schemaName=schema_name,
                    title=str(title) if title is not None else None,
                    description=str(description) if description is not None else None,
                    content=_schema_content(schema, schema_name),
                    schemaDefinition=safe_dumps(schema),
                )
                self._records[key] = created
            if used_by is not None:
                usages = self._usages.setdefault(key, [])
                if (file_path, used_by) not in usages:
                    usages.append((file_path, used_by))
            return created

    def usages(self, key: str) -> List[SchemaUsage]:
        with self._lock:
            return [usage for _, usage in self._usages.get(key, [])]

    def finalize(self) -> List[SchemaRecord]:
        """Back-fill ``usedBy`` on every record from the accumulated usages."""
        with self._lock:
            for key, record in self._records.items():
                record.usedBy = [usage for _, usage in self._usages.get(key, [])]
            return list(self._records.values())

    def __len__(self) -> int:
        return len(self._records)


def _load_text(path: Path) -> Any:
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    return yaml.safe_load(text)


def _load_reference(uri: str) -> Any:
    """jsonref loader restricted to local files (JSON or YAML)."""
    parsed = urlparse(uri)
    if parsed.scheme not in ("", "file"):
        raise ValueError(f"Remote references are not supported: {uri}")
    return _load_text(Path(url2pathname(parsed.path)))


def operation_text(operation: Dict[str, Any]) -> str:
    """Searchable text of an operation: summary, description, tags, parameters."""
    text: List[str] = []
    if operation.get("summary"):
        text.append(str(operation["summary"]))
    if operation.get("description"):
        text.append(str(operation["description"]))
    for tag in operation.get("tags") or []:
        text.append(str(tag))
    for param in operation.get("parameters") or []:
        if not isinstance(param, dict):
            continue
        if param.get("name"):
            text.append(str(param["name"]))
        if param.get("description"):
            text.append(str(param["description"]))
    return " ".join(text)


def operation_schemas(operation: Dict[str, Any]) -> List[Dict[str, Any]]:
    """Schemas referenced by an operation's request body, responses and parameters."""
    found: List[Dict[str, Any]] = []

    request_body = operation.get("requestBody")
    if isinstance(request_body, dict):
        for media in (request_body.get("content") or {}).values():
            if isinstance(media, dict) and isinstance(media.get("schema"), dict):
                found.append(media["schema"])

    for response in (operation.get("responses") or {}).values():
        if not isinstance(response, dict):
            continue
        for media in (response.get("content") or {}).values():
            if isinstance(media, dict) and isinstance(media.get("schema"), dict):
                found.append(media["schema"])
        # Swagger 2 responses carry the schema directly
        if isinstance(response.get("schema"), dict):
            found.append(response["schema"])

    for param in operation.get("parameters") or []:
        if isinstance(param, dict) and isinstance(param.get("schema"), dict):
            found.append(param["schema"])

    return found


class SpecParser:
    """Extracts operation and schema records from API specification files."""

    def __init__(self, pattern: str = r"^(openapi|swagger)[\w.-]*\.(json|ya?ml)$",
                 excluded_dirs: Optional[Iterable[str]] = None):
        self.pattern = pattern
        self.excluded_dirs = list(excluded_dirs) if excluded_dirs is not None else ["node_modules", ".git"]

    def find_spec_files(self, root: Path) -> List[Path]:
        return find_files(root, name_matches(self.pattern), self.excluded_dirs)

    def load(self, path: Path) -> Dict[str, Any]:
        """Load and fully dereference one specification file."""
        try:
            document = _load_text(path)
        except (OSError, UnicodeDecodeError, json.JSONDecodeError, yaml.YAMLError) as e:
            raise ParseError(str(path), f"invalid JSON/YAML: {e}") from e

        if not isinstance(document, dict) or not ("openapi" in document or "swagger" in document):
            raise ParseError(str(path), "not an OpenAPI/Swagger document")

        try:
            resolved = jsonref.replace_refs(
                document,
                base_uri=path.resolve().as_uri(),
                loader=_load_reference,
                proxies=False,
            )
        except (jsonref.JsonRefError, ValueError, OSError, yaml.YAMLError) as e:
            raise ParseError(str(path), f"unresolvable reference: {e}") from e
        return resolved

    @staticmethod
    def component_schemas(spec: Dict[str, Any]) -> Dict[str, Dict[str, Any]]:
        components = spec.get("components") or {}
        schemas = components.get("schemas") if isinstance(components, dict) else None
        if schemas is None:
            # Swagger 2
            schemas = spec.get("definitions")
        if not isinstance(schemas, dict):
            return {}
        return {str(name): schema for name, schema in schemas.items() if isinstance(schema, dict)}

    def parse_spec(self, spec: Dict[str, Any], file_path: str, file_name: str,
                   registry: SchemaRegistry) -> List[ApiRecord]:
        """Extract records from a dereferenced specification.

        Extraction runs to completion before anything is committed to the
        registry, so a file that fails midway leaves no partial schemas.

        Returns:
            Operations and newly created schemas, in emission order
        """
        components = self.component_schemas(spec)
        names_by_identity = {id(schema): name for name, schema in components.items()}

        def schema_name(schema: Dict[str, Any]) -> Optional[str]:
            name = names_by_identity.get(id(schema))
            if name:
                return name
            title = schema.get("title")
            return str(title) if isinstance(title, (str, int)) and str(title) else None

        staged: List[Tuple[str, Any]] = []
        paths = spec.get("paths") or {}
        if not isinstance(paths, dict):
            raise ParseError(file_path, "'paths' is not a mapping")

        for api_path, path_item in paths.items():
            if not isinstance(path_item, dict):
                continue
            for method, operation in path_item.items():
                if str(method).lower() not in HTTP_METHODS or not isinstance(operation, dict):
                    continue
                verb = str(method).upper()
                operation_id = operation.get("operationId")
                staged.append(("operation", OperationRecord(
                    filePath=file_path,
                    fileName=file_name,
                    apiPath=str(api_path),
                    method=verb,
                    summary=operation.get("summary"),
                    description=operation.get("description"),
                    operationId=str(operation_id) if operation_id is not None else None,
                    content=operation_text(operation),
                )))
                usage = SchemaUsage(apiPath=str(api_path), method=verb,
                                    operationId=str(operation_id) if operation_id is not None else None)
                for schema in operation_schemas(operation):
                    staged.append(("schema", (schema, schema_name(schema), usage)))

        for name, schema in components.items():
            staged.append(("schema", (schema, name, None)))

        records: List[ApiRecord] = []
        for kind, payload in staged:
            if kind == "operation":
                records.append(payload)
                continue
            schema, name, usage = payload
            created = registry.add(schema, name, file_path, file_name, used_by=usage)
            if created is not None:
                records.append(created)
        return records

    def parse_file(self, path: Path, root: Path, registry: SchemaRegistry) -> List[ApiRecord]:
        spec = self.load(path)
        relative = path.relative_to(root).as_posix()
        return self.parse_spec(spec, relative, path.name, registry)

    def parse_corpus(self, root: Path, registry: SchemaRegistry) -> List[ApiRecord]:
        """Parse every specification file under ``root``.

        Malformed or unresolvable files are logged and skipped. The caller
        is responsible for calling ``registry.finalize()`` once the whole
        corpus has been processed.
        """
        root = Path(root).resolve()
        files = self.find_spec_files(root)
        if not files:
            logger.warning(f"No API specification files found under {root} matching {self.pattern}")
        else:
            logger.info(f"Parsing {len(files)} API specification file(s) under {root}")

        records: List[ApiRecord] = []
        for path in files:
            try:
                file_records = self.parse_file(path, root, registry)
            except ParseError as e:
                logger.error(str(e))
                continue
            except Exception as e:
                logger.error(f"Failed to parse or process {path}: {e}")
                logger.debug("Spec parse failure details", exc_info=True)
                continue
            logger.debug(f"Parsed {path.relative_to(root)}: {len(file_records)} records")
            records.extend(file_records)

        logger.info(f"Finished parsing API files. Found {len(records)} items (operations and schemas).")
        return records
