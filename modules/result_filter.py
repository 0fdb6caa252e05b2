"""
Filtering and ranking of a search session's similarity results.
"""
from typing import Callable, Dict, List, Optional, Tuple

from models.schemas import ProductWithSimilarity, SearchFilters


SORT_MODES: Dict[str, Tuple[Callable[[ProductWithSimilarity], float], bool]] = {
    "similarity": (lambda item: item.similarity_score, True),
    "price-low": (lambda item: item.price, False),
    "price-high": (lambda item: item.price, True),
    "rating": (lambda item: item.rating or 0.0, True),
}


def matches_filters(item: ProductWithSimilarity, filters: SearchFilters) -> bool:
    """True when the item satisfies every supplied predicate."""
    if filters.min_similarity is not None and item.similarity_score < filters.min_similarity:
        return False
    if filters.max_similarity is not None and item.similarity_score > filters.max_similarity:
        return False
    if filters.categories and item.category not in filters.categories:
        return False
    if filters.min_price is not None and item.price < filters.min_price:
        return False
    if filters.max_price is not None and item.price > filters.max_price:
        return False
    return True


def apply_filters(
    items: List[ProductWithSimilarity],
    filters: Optional[SearchFilters] = None
) -> List[ProductWithSimilarity]:
    if filters is None:
        return list(items)
    return [item for item in items if matches_filters(item, filters)]


def rank_results(items: List[ProductWithSimilarity]) -> List[ProductWithSimilarity]:
    """
    Order by similarity score, highest first.

    Python's sort is stable, so equal scores keep their insertion order.
    """
    return sorted(items, key=lambda item: item.similarity_score, reverse=True)


def filter_and_rank(
    items: List[ProductWithSimilarity],
    filters: Optional[SearchFilters] = None
) -> Tuple[List[ProductWithSimilarity], int]:
    """Apply filters then rank. Returns (results, total_count)."""
    ranked = rank_results(apply_filters(items, filters))
    return ranked, len(ranked)


def sort_results(items: List[ProductWithSimilarity], sort_by: str = "similarity") -> List[ProductWithSimilarity]:
    """Secondary sort modes offered to clients (price, rating)."""
    if sort_by not in SORT_MODES:
        raise ValueError(f"Unknown sort mode '{sort_by}'. Options: {', '.join(SORT_MODES)}")
    key, reverse = SORT_MODES[sort_by]
    return sorted(items, key=key, reverse=reverse)


def paginate(items: List[ProductWithSimilarity], page: int, page_size: int) -> List[ProductWithSimilarity]:
    """1-based page slice; pages past the end are empty."""
    if page < 1:
        raise ValueError("page must be >= 1")
    if page_size < 1:
        raise ValueError("page_size must be >= 1")
    start = (page - 1) * page_size
    return items[start:start + page_size]
