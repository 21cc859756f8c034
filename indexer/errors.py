"""Error taxonomy for ingestion and querying."""


class DocIndexError(Exception):
    """Base class for docatlas errors."""


class ParseError(DocIndexError):
    """A single source file could not be parsed. Logged and skipped by callers."""

    def __init__(self, path: str, reason: str):
        super().__init__(f"Failed to parse {path}: {reason}")
        self.path = path
        self.reason = reason


class RowEncodeError(DocIndexError):
    """A record field could not be coerced into a column value."""


class ArtifactError(DocIndexError):
    """Table creation or artifact export failed; the ingestion run is aborted."""


class InvalidArgumentError(DocIndexError, ValueError):
    """A request argument is missing or malformed."""


class RetrievalError(DocIndexError):
    """An artifact or source document could not be read."""


class DocumentNotFoundError(RetrievalError):
    """Neither the record store nor the filesystem holds the requested document."""

    def __init__(self, path: str):
        super().__init__(f"Document not found: {path}")
        self.path = path
