"""
Visual search routes: create a search from an upload or URL, then fetch
its ranked, filterable results.
"""
from fastapi import APIRouter, Depends, File, Query, UploadFile
from typing import List, Optional
import logging

from config import Settings
from models.schemas import (
    AnalyzeImageRequest,
    AnalyzeImageResponse,
    ErrorResponse,
    SearchCreateRequest,
    SearchCreateResponse,
    SearchFilters,
    SearchResultsResponse,
)
from modules.errors import NotFoundError, ValidationError, VisualSearchError
from modules.image_data import to_data_url, verify_image_bytes
from modules.orchestrator import SimilarityOrchestrator
from modules.result_filter import paginate, sort_results
from modules.similarity import SimilarityOracle, describe_image
from modules.storage import SearchStorage
from routes.deps import get_oracle, get_orchestrator, get_settings, get_storage

logger = logging.getLogger(__name__)

UNSUPPORTED_IMAGE = "Invalid or unsupported image file: use a raster format such as JPEG, PNG, GIF or WebP"

router = APIRouter(
    prefix="/api",
    tags=["Visual Search"],
    responses={
        400: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    }
)


def parse_categories(raw: Optional[str]) -> Optional[List[str]]:
    """Split the comma separated categories query parameter."""
    if raw is None:
        return None
    categories = [c.strip() for c in raw.split(",") if c.strip()]
    return categories or None


@router.post("/upload", response_model=SearchCreateResponse)
async def upload_image(
    image: Optional[UploadFile] = File(None, description="Image file (max 10MB)"),
    storage: SearchStorage = Depends(get_storage),
    settings: Settings = Depends(get_settings)
):
    """
    Upload an image file to search with.
    The image is kept as a data URL on the new search session.

    Besides an image/* content type, the bytes must decode with Pillow
    (JPEG, PNG, GIF, WebP, BMP, TIFF and the other raster formats it reads),
    since those are what get forwarded to the similarity model. Formats Pillow
    cannot open, such as SVG or HEIC without a plugin, are rejected with 400.
    """
    if image is None:
        raise ValidationError("No image file provided")

    content_type = image.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationError("Only image files are allowed")

    contents = await image.read()
    if not contents:
        raise ValidationError("Uploaded file is empty")
    if len(contents) > settings.MAX_UPLOAD_SIZE:
        limit_mb = settings.MAX_UPLOAD_SIZE / (1024 * 1024)
        raise ValidationError(f"Image exceeds the {limit_mb:g}MB upload limit")

    try:
        verify_image_bytes(contents)
    except ValueError:
        raise ValidationError(UNSUPPORTED_IMAGE)

    try:
        search = await storage.create_search(to_data_url(contents, content_type))
    except Exception as e:
        logger.error(f"Failed to process image upload: {e}", exc_info=True)
        raise VisualSearchError("Failed to process image upload")

    logger.info(f"Created search {search.id} from upload '{image.filename}' ({len(contents)} bytes)")
    return SearchCreateResponse(search_id=search.id, image_url=search.image_url)


@router.post("/search", response_model=SearchCreateResponse)
async def create_search(
    body: SearchCreateRequest,
    storage: SearchStorage = Depends(get_storage)
):
    """Start a search from a remote image URL."""
    try:
        search = await storage.create_search(body.image_url)
    except Exception as e:
        logger.error(f"Failed to create search: {e}", exc_info=True)
        raise VisualSearchError("Failed to create search")

    logger.info(f"Created search {search.id} from URL")
    return SearchCreateResponse(search_id=search.id, image_url=search.image_url)


@router.get(
    "/search/{search_id}/results",
    response_model=SearchResultsResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_search_results(
    search_id: str,
    min_similarity: Optional[float] = Query(None, alias="minSimilarity", ge=0.0, le=1.0),
    max_similarity: Optional[float] = Query(None, alias="maxSimilarity", ge=0.0, le=1.0),
    categories: Optional[str] = Query(None, description="Comma separated full category names"),
    min_price: Optional[float] = Query(None, alias="minPrice", ge=0.0),
    max_price: Optional[float] = Query(None, alias="maxPrice", ge=0.0),
    sort_by: str = Query(
        "similarity",
        alias="sortBy",
        pattern="^(similarity|price-low|price-high|rating)$",
        description="similarity, price-low, price-high or rating"
    ),
    page: Optional[int] = Query(None, ge=1, description="1-based page; omit for all results"),
    storage: SearchStorage = Depends(get_storage),
    orchestrator: SimilarityOrchestrator = Depends(get_orchestrator),
    settings: Settings = Depends(get_settings)
):
    """
    Ranked similar products for a search.

    The first request computes similarities against the whole catalog; later
    requests are served from the stored results. totalCount is the number of
    results after filtering and before pagination.
    """
    search = await storage.get_search(search_id)
    if search is None:
        raise NotFoundError("Search not found")

    try:
        await orchestrator.ensure_results(search)

        filters = SearchFilters(
            min_similarity=min_similarity,
            max_similarity=max_similarity,
            categories=parse_categories(categories),
            min_price=min_price,
            max_price=max_price
        )
        results = await storage.get_search_results(search_id, filters)
        total_count = len(results)

        if sort_by != "similarity":
            results = sort_results(results, sort_by)
        if page is not None:
            results = paginate(results, page, settings.RESULTS_PAGE_SIZE)

        return SearchResultsResponse(search=search, results=results, total_count=total_count)

    except VisualSearchError:
        raise
    except Exception as e:
        logger.error(f"Error in search results endpoint: {e}", exc_info=True)
        raise VisualSearchError("Failed to get search results")


@router.post("/analyze-image", response_model=AnalyzeImageResponse)
async def analyze_image(
    body: AnalyzeImageRequest,
    oracle: SimilarityOracle = Depends(get_oracle)
):
    """Describe what product or object an image shows."""
    analysis = await describe_image(oracle, body.image_url)
    return AnalyzeImageResponse(analysis=analysis, image_url=body.image_url)
