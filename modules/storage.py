"""
Storage for the catalog, search sessions and similarity results.

SearchStorage is the interface the routes and the batch orchestrator depend on.
MemoryStorage keeps everything in process memory; nothing is evicted before
shutdown. Methods are async so a database-backed implementation can be swapped
in without touching callers.
"""
import logging
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from models.schemas import (
    Product,
    ProductWithSimilarity,
    SearchFilters,
    SearchSession,
    SimilarityResult,
)
from modules.result_filter import filter_and_rank

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """Lifecycle of a session's similarity results."""
    UNINITIALIZED = "uninitialized"
    COMPUTING = "computing"
    READY = "ready"


class SearchStorage(ABC):
    """Get/create/list capabilities for products, searches and results."""

    # Products
    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]: ...

    @abstractmethod
    async def get_all_products(self) -> List[Product]: ...

    # Searches
    @abstractmethod
    async def create_search(self, image_url: str) -> SearchSession: ...

    @abstractmethod
    async def get_search(self, search_id: str) -> Optional[SearchSession]: ...

    @abstractmethod
    async def list_searches(self) -> List[SearchSession]: ...

    @abstractmethod
    async def get_session_state(self, search_id: str) -> SessionState: ...

    @abstractmethod
    async def set_session_state(self, search_id: str, state: SessionState) -> None: ...

    # Search results
    @abstractmethod
    async def create_search_result(
        self,
        search_id: str,
        product_id: str,
        similarity_score: float,
        is_fallback: bool = False
    ) -> SimilarityResult: ...

    @abstractmethod
    async def count_search_results(self, search_id: str) -> int: ...

    @abstractmethod
    async def clear_search_results(self, search_id: str) -> int:
        """Drop every result of a search. Returns how many were removed."""

    @abstractmethod
    async def get_search_results(
        self,
        search_id: str,
        filters: Optional[SearchFilters] = None
    ) -> List[ProductWithSimilarity]: ...


class MemoryStorage(SearchStorage):
    """
    In-process storage backed by dicts. The catalog is fixed at construction;
    there is no way to add products afterwards.
    """

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        self._searches: Dict[str, SearchSession] = {}
        self._states: Dict[str, SessionState] = {}
        self._results: Dict[str, List[SimilarityResult]] = {}
        self._result_keys: Dict[Tuple[str, str], str] = {}

        for product in products:
            if product.id in self._products:
                raise ValueError(f"Duplicate product id: {product.id}")
            self._products[product.id] = product

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self._products.get(product_id)

    async def get_all_products(self) -> List[Product]:
        return list(self._products.values())

    async def create_search(self, image_url: str) -> SearchSession:
        search = SearchSession(
            id=str(uuid.uuid4()),
            image_url=image_url,
            uploaded_at=datetime.now(timezone.utc).isoformat()
        )
        self._searches[search.id] = search
        self._states[search.id] = SessionState.UNINITIALIZED
        self._results[search.id] = []
        logger.debug(f"[STORAGE] Created search {search.id}")
        return search

    async def get_search(self, search_id: str) -> Optional[SearchSession]:
        return self._searches.get(search_id)

    async def list_searches(self) -> List[SearchSession]:
        return list(self._searches.values())

    async def get_session_state(self, search_id: str) -> SessionState:
        return self._states.get(search_id, SessionState.UNINITIALIZED)

    async def set_session_state(self, search_id: str, state: SessionState) -> None:
        if search_id not in self._searches:
            raise KeyError(f"Unknown search: {search_id}")
        self._states[search_id] = state

    async def create_search_result(
        self,
        search_id: str,
        product_id: str,
        similarity_score: float,
        is_fallback: bool = False
    ) -> SimilarityResult:
        if search_id not in self._searches:
            raise KeyError(f"Unknown search: {search_id}")
        key = (search_id, product_id)
        if key in self._result_keys:
            raise ValueError(f"Result already exists for search {search_id} and product {product_id}")

        result = SimilarityResult(
            id=str(uuid.uuid4()),
            search_id=search_id,
            product_id=product_id,
            similarity_score=similarity_score,
            is_fallback=is_fallback
        )
        self._results[search_id].append(result)
        self._result_keys[key] = result.id
        return result

    async def count_search_results(self, search_id: str) -> int:
        return len(self._results.get(search_id, []))

    async def clear_search_results(self, search_id: str) -> int:
        removed = self._results.get(search_id, [])
        for result in removed:
            self._result_keys.pop((search_id, result.product_id), None)
        if search_id in self._results:
            self._results[search_id] = []
        if removed:
            logger.debug(f"[STORAGE] Cleared {len(removed)} results for search {search_id}")
        return len(removed)

    async def get_search_results(
        self,
        search_id: str,
        filters: Optional[SearchFilters] = None
    ) -> List[ProductWithSimilarity]:
        """Join stored results to products, filter, and rank by score."""
        joined: List[ProductWithSimilarity] = []
        for result in self._results.get(search_id, []):
            product = self._products.get(result.product_id)
            if product is None:
                continue
            joined.append(ProductWithSimilarity(
                **product.model_dump(),
                similarity_score=result.similarity_score,
                is_fallback=result.is_fallback
            ))

        results, _ = filter_and_rank(joined, filters)
        return results
