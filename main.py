"""
Visual Product Match API - Main application entry point.
"""
from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from typing import Optional
import logging
import random

from config import Settings, settings
from modules.catalog import load_catalog
from modules.errors import VisualSearchError
from modules.orchestrator import SimilarityOrchestrator
from modules.pacing import BatchPacer, build_pacer
from modules.similarity import SimilarityOracle, build_oracle
from modules.storage import MemoryStorage, SearchStorage

from routes import catalog, search

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)

logger = logging.getLogger(__name__)


def register_exception_handlers(app: FastAPI) -> None:
    """Render every error as a JSON body of the form {"error": ...}."""

    @app.exception_handler(VisualSearchError)
    async def visual_search_error_handler(request: Request, exc: VisualSearchError):
        if exc.status_code >= 500:
            logger.error(f"{request.method} {request.url.path} failed: {exc}")
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(
            status_code=400,
            content={"error": "Invalid request data", "details": jsonable_encoder(exc.errors())}
        )

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        return JSONResponse(status_code=exc.status_code, content={"error": str(exc.detail)})

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception):
        logger.error(f"Unexpected error on {request.method} {request.url.path}: {exc}", exc_info=exc)
        return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app(
    app_settings: Optional[Settings] = None,
    storage: Optional[SearchStorage] = None,
    oracle: Optional[SimilarityOracle] = None,
    pacer: Optional[BatchPacer] = None,
    rng: Optional[random.Random] = None
) -> FastAPI:
    """
    Build the application. Any collaborator not passed in is created from
    settings: the catalog is loaded into a fresh MemoryStorage, the oracle and
    pacer follow SIMILARITY_PROVIDER and SIMILARITY_PACING.
    """
    app_settings = app_settings or settings

    if storage is None:
        storage = MemoryStorage(load_catalog(app_settings.CATALOG_PATH))
    if oracle is None:
        oracle = build_oracle(app_settings)
    if pacer is None:
        pacer = build_pacer(app_settings)

    orchestrator = SimilarityOrchestrator(
        storage=storage,
        oracle=oracle,
        pacer=pacer,
        batch_size=app_settings.SIMILARITY_BATCH_SIZE,
        threshold=app_settings.SIMILARITY_THRESHOLD,
        fallback_min=app_settings.FALLBACK_SCORE_MIN,
        fallback_max=app_settings.FALLBACK_SCORE_MAX,
        rng=rng
    )

    app = FastAPI(
        title=app_settings.API_TITLE,
        description=app_settings.API_DESCRIPTION,
        version=app_settings.API_VERSION,
        debug=app_settings.DEBUG
    )

    app.state.settings = app_settings
    app.state.storage = storage
    app.state.oracle = oracle
    app.state.orchestrator = orchestrator

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=app_settings.CORS_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    register_exception_handlers(app)

    # routers
    app.include_router(search.router)
    app.include_router(catalog.router)

    @app.get("/")
    def root():
        """Root endpoint with API information."""
        return {
            "message": app_settings.API_TITLE,
            "version": app_settings.API_VERSION,
            "similarity_provider": oracle.name,
            "endpoints": {
                "upload": "/api/upload",
                "search_by_url": "/api/search",
                "search_results": "/api/search/{searchId}/results",
                "analyze_image": "/api/analyze-image",
                "products": "/api/products",
                "categories": "/api/categories",
                "docs": "/docs",
                "redoc": "/redoc"
            }
        }

    @app.get("/health")
    def health_check():
        """Health check endpoint."""
        return {
            "status": "healthy",
            "version": app_settings.API_VERSION
        }

    logger.info(f"{app_settings.API_TITLE} ready: similarity provider '{oracle.name}'")
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=settings.DEBUG
    )
