from fastapi import FastAPI, HTTPException, Depends
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel, Field
from typing import List, Optional
import datetime, logging

from config.settings import IndexConfig
from indexer.errors import DocIndexError, DocumentNotFoundError, InvalidArgumentError, RetrievalError
from indexer.query_engine import QueryEngine, SearchResult
from observability.metrics import search_metrics, indexing_metrics

logger = logging.getLogger(__name__)

app = FastAPI(title="docatlas API", version="0.1.0")

_engine: Optional[QueryEngine] = None


def get_engine() -> QueryEngine:
    """Process-wide query engine; the engine itself is stateless."""
    global _engine
    if _engine is None:
        _engine = QueryEngine(IndexConfig.from_env())
    return _engine


def _http_error(e: DocIndexError, action: str) -> HTTPException:
    if isinstance(e, InvalidArgumentError):
        return HTTPException(status_code=400, detail=str(e))
    if isinstance(e, DocumentNotFoundError):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, RetrievalError):
        logger.error(f"{action} failed: {e}")
        return HTTPException(status_code=503, detail=str(e))
    logger.error(f"{action} error: {e}")
    return HTTPException(status_code=500, detail=f"{action} failed")


class SearchRequest(BaseModel):
    query: str
    limit: Optional[int] = None
    include_full_content: bool = False
    include_schema_definition: bool = False
    context_lines: Optional[int] = None
    sources: List[str] = Field(default_factory=lambda: ["api", "docs"])


class ApiSearchRequest(BaseModel):
    query: str
    context_lines: Optional[int] = None
    limit: Optional[int] = None


class SearchResponse(BaseModel):
    results: List[SearchResult]


@app.get("/")
async def root():
    """Root endpoint with API information."""
    return {
        "message": "docatlas API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
        "metrics": "/metrics"
    }


@app.get("/health")
def health():
    return {"status": "ok", "time": datetime.datetime.now(datetime.timezone.utc).isoformat()}


@app.get("/metrics")
def get_metrics():
    """In-process query and indexing statistics."""
    return {
        "search": search_metrics.get_query_stats(),
        "tiers": search_metrics.get_tier_distribution(),
        "indexing": indexing_metrics.get_indexing_stats(),
    }


@app.post("/search", response_model=SearchResponse, response_model_exclude_none=True)
def search(req: SearchRequest, engine: QueryEngine = Depends(get_engine)):
    """Tiered search over operations, schemas and documentation blocks."""
    try:
        results = engine.query(
            req.query,
            limit=req.limit,
            include_full_content=req.include_full_content,
            include_schema_definition=req.include_schema_definition,
            context_lines=req.context_lines,
            sources=tuple(req.sources),
        )
    except DocIndexError as e:
        raise _http_error(e, "Search")
    return {"results": results}


@app.post("/search/api", response_model=SearchResponse, response_model_exclude_none=True)
def search_api(req: ApiSearchRequest, engine: QueryEngine = Depends(get_engine)):
    try:
        results = engine.search_api_files(req.query, context_lines=req.context_lines, limit=req.limit)
    except DocIndexError as e:
        raise _http_error(e, "API search")
    return {"results": results}


@app.get("/doc")
def get_doc(path: str, engine: QueryEngine = Depends(get_engine)):
    try:
        document = engine.fetch_by_path(path)
    except DocIndexError as e:
        raise _http_error(e, "Document fetch")
    return PlainTextResponse(document["raw"])


@app.get("/api-file")
def get_api_file(filename: str, filter: Optional[str] = None, context: Optional[int] = None,
                 engine: QueryEngine = Depends(get_engine)):
    try:
        return engine.get_api_file(filename, filter=filter, context=context)
    except DocIndexError as e:
        raise _http_error(e, "API file fetch")


@app.get("/endpoints")
def list_endpoints(category: Optional[str] = None, limit: int = 20, engine: QueryEngine = Depends(get_engine)):
    try:
        return {"endpoints": engine.list_api_endpoints(category=category, limit=limit)}
    except DocIndexError as e:
        raise _http_error(e, "Endpoint listing")
