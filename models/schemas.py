"""
Pydantic schemas for request/response models.

Fields are snake_case in Python and camelCase on the wire.
"""
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from typing import Optional, List


class CamelModel(BaseModel):
    """Base model serialized with camelCase keys."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ProductCreate(CamelModel):
    """Catalog entry before an id is assigned."""
    name: str = Field(..., min_length=1, description="Product name")
    category: str = Field(..., description="Hierarchical category, e.g. 'Electronics > Audio'")
    price: float = Field(..., ge=0, description="Price (non-negative)")
    image_url: str = Field(..., description="Product image URL")
    description: Optional[str] = None
    rating: Optional[float] = Field(None, ge=0, le=5, description="Average rating (0-5)")
    brand: Optional[str] = None
    features: List[str] = Field(default_factory=list, description="Ordered feature highlights")


class Product(ProductCreate):
    """Catalog product. Immutable after catalog load."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(..., description="Unique product id")


class SearchSession(CamelModel):
    """One user search: the query image and when it was submitted."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str
    image_url: str = Field(..., description="Query image as data URL or remote URL")
    uploaded_at: str = Field(..., description="ISO-8601 creation timestamp (UTC)")


class SimilarityResult(CamelModel):
    """Stored similarity of one product to one search session's image."""
    id: str
    search_id: str
    product_id: str
    similarity_score: float = Field(..., ge=0.0, le=1.0)
    is_fallback: bool = Field(False, description="Score came from the fallback, not the model")


class ProductWithSimilarity(Product):
    """Product joined with its similarity to the query image."""
    similarity_score: float = Field(..., description="Similarity score (0-1)")
    is_fallback: bool = False


class SimilarityAnalysis(CamelModel):
    """Answer from the similarity oracle for one image pair."""
    similarity_score: float = Field(..., ge=0.0, le=1.0)
    reasoning: str = ""
    visual_features: List[str] = Field(default_factory=list)
    is_fallback: bool = False


class SearchFilters(CamelModel):
    """Query-time predicates, all optional and AND-combined."""
    min_similarity: Optional[float] = None
    max_similarity: Optional[float] = None
    categories: Optional[List[str]] = None
    min_price: Optional[float] = None
    max_price: Optional[float] = None


def _check_image_reference(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("imageUrl must not be empty")
    if not value.startswith(("http://", "https://", "data:image/")):
        raise ValueError("imageUrl must be an http(s) URL or an image data URL")
    return value


class SearchCreateRequest(CamelModel):
    """Body of POST /api/search."""
    image_url: str = Field(..., description="Remote image URL to search with")

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, value: str) -> str:
        return _check_image_reference(value)


class SearchCreateResponse(CamelModel):
    search_id: str
    image_url: str


class SearchResultsResponse(CamelModel):
    """Response model for search results."""
    search: SearchSession
    results: List[ProductWithSimilarity] = Field(..., description="Products ranked by similarity")
    total_count: int = Field(..., description="Number of results after filtering, before pagination")


class CategoryCount(CamelModel):
    name: str
    count: int


class AnalyzeImageRequest(CamelModel):
    """Body of POST /api/analyze-image."""
    image_url: str

    @field_validator("image_url")
    @classmethod
    def validate_image_url(cls, value: str) -> str:
        return _check_image_reference(value)


class AnalyzeImageResponse(CamelModel):
    analysis: str
    image_url: str


class ErrorResponse(BaseModel):
    error: str
    details: Optional[list] = None
