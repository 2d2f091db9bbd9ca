"""
HTTP command surface for treevec: run vectorization, search, inspect and
clear the store.
"""

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Optional

from fastapi import FastAPI, Depends, Query, Request
from fastapi.responses import JSONResponse
from fastapi.middleware.cors import CORSMiddleware

from .schemas import (
    VectorizeAllRequest,
    VectorizeAllResponse,
    VectorizeFileRequest,
    VectorizeFileResponse,
    SearchRequest,
    SearchHit,
    SearchResponse,
    ItemsResponse,
    StorageStatsResponse,
    ClearStorageResponse,
    HealthResponse,
    ErrorResponse,
)
from ..core.config import VERSION, debug_enabled, create_orchestrator, get_vector_store
from ..core.errors import (
    ConfigError,
    EmbeddingError,
    StorageError,
    TreeVecError,
    VectorizationBusyError,
    VectorizationError,
)
from ..vectorize.orchestrator import VectorizationOrchestrator
from ..util.logging import logger


@lru_cache(maxsize=1)
def get_orchestrator() -> VectorizationOrchestrator:
    """Process-wide orchestrator wired from the environment."""
    orchestrator = create_orchestrator(store=get_vector_store(background_index_build=True))
    orchestrator.initialize()
    return orchestrator


@asynccontextmanager
async def lifespan(app: FastAPI):
    yield
    # Persist the index and drop it only if a request ever created the orchestrator
    if get_orchestrator.cache_info().currsize:
        get_orchestrator().dispose()
        get_orchestrator.cache_clear()
        logger.log_operation("api.shutdown", "success")


# Initialize the FastAPI application
app = FastAPI(
    lifespan=lifespan,
    title="treevec API",
    version=VERSION,
    description="Hierarchical project vectorization and similarity search",
    docs_url="/docs" if debug_enabled() else None,
    redoc_url="/redoc" if debug_enabled() else None
)

# Add CORS middleware to allow local frontends
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:3000", "http://127.0.0.1:3000"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Most specific first; the first matching class wins
ERROR_STATUS_CODES = [
    (VectorizationBusyError, 409),
    (ConfigError, 400),
    (VectorizationError, 422),
    (EmbeddingError, 502),
    (StorageError, 500),
]


@app.exception_handler(TreeVecError)
async def treevec_error_handler(request: Request, exc: TreeVecError):
    status_code = 500
    for error_cls, code in ERROR_STATUS_CODES:
        if isinstance(exc, error_cls):
            status_code = code
            break

    logger.log_operation("api.error", "failed", {
        "path": request.url.path,
        "error_type": type(exc).__name__,
        "error": str(exc),
    })
    body = ErrorResponse(error=str(exc), error_type=type(exc).__name__)
    return JSONResponse(status_code=status_code, content=body.model_dump())


@app.get("/health", response_model=HealthResponse)
def health_check_endpoint(orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Check store availability."""
    try:
        count = orchestrator.get_storage_count()
        status = "healthy"
    except StorageError as e:
        logger.error(f"Health check failed: {e}")
        count = 0
        status = "unhealthy"

    return HealthResponse(
        status=status,
        version=VERSION,
        storage_count=count,
        running=orchestrator.is_running,
    )


@app.post("/vectorize/all", response_model=VectorizeAllResponse)
async def vectorize_all_endpoint(req: VectorizeAllRequest,
                                 orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Vectorize every unprocessed file and directory under a root."""
    result = await orchestrator.vectorize_all_unprocessed(req.root)
    return VectorizeAllResponse(
        processed=result.processed,
        errors=result.errors,
        error_messages=result.error_messages,
    )


@app.post("/vectorize/file", response_model=VectorizeFileResponse)
async def vectorize_file_endpoint(req: VectorizeFileRequest,
                                  orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Re-vectorize a single file."""
    item_id = await orchestrator.vectorize_file(req.path, req.kind)
    return VectorizeFileResponse(id=item_id, path=req.path)


@app.post("/search", response_model=SearchResponse)
async def search_endpoint(req: SearchRequest,
                          orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Find the stored files and directories most similar to a query."""
    hits = await orchestrator.search_similar(req.query, req.limit)
    return SearchResponse(
        results=[SearchHit(**hit) for hit in hits],
        query=req.query,
        total=len(hits),
    )


@app.get("/items", response_model=ItemsResponse)
def list_items_endpoint(limit: Optional[int] = Query(default=None, ge=1),
                        orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Browse stored records."""
    items = orchestrator.get_all_items(limit)
    return ItemsResponse(items=[SearchHit(**item) for item in items], total=len(items))


@app.get("/storage/stats", response_model=StorageStatsResponse)
def storage_stats_endpoint(orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    return StorageStatsResponse(
        count=orchestrator.get_storage_count(),
        size_bytes=orchestrator.get_storage_size(),
        dimension=orchestrator.store.dimension,
    )


@app.delete("/storage", response_model=ClearStorageResponse)
def clear_storage_endpoint(orchestrator: VectorizationOrchestrator = Depends(get_orchestrator)):
    """Delete every stored vector."""
    orchestrator.clear_storage()
    return ClearStorageResponse(success=True, message="Storage cleared")
