"""
Batch similarity orchestration.

For a search session with no results yet, scores every catalog product
against the query image and stores the ones above the inclusion threshold.
Products are processed in fixed-size batches: calls inside a batch run
concurrently and are joined before the next batch, and the pacer spaces
batches out to stay under the provider's rate limits.

Each session moves UNINITIALIZED -> COMPUTING -> READY. A per-session lock
makes concurrent first reads compute once; later readers wait for the pass to
finish and never see partial results. A pass that is cancelled or dies with
an unexpected error drops whatever it stored and puts the session back to
UNINITIALIZED, so the next request runs a full pass.
"""
import asyncio
import logging
import random
from typing import Dict, List, Optional

from models.schemas import Product, SearchSession
from modules.pacing import BatchPacer, FixedDelayPacer
from modules.similarity import SimilarityOracle, score_similarity
from modules.storage import SearchStorage, SessionState

logger = logging.getLogger(__name__)


def make_batches(products: List[Product], batch_size: int) -> List[List[Product]]:
    if batch_size < 1:
        raise ValueError("batch_size must be >= 1")
    return [products[i:i + batch_size] for i in range(0, len(products), batch_size)]


class SimilarityOrchestrator:
    """Drives the similarity oracle across the catalog for one session at a time."""

    def __init__(
        self,
        storage: SearchStorage,
        oracle: SimilarityOracle,
        pacer: Optional[BatchPacer] = None,
        batch_size: int = 5,
        threshold: float = 0.3,
        fallback_min: float = 0.3,
        fallback_max: float = 0.8,
        rng: Optional[random.Random] = None
    ):
        if batch_size < 1:
            raise ValueError("batch_size must be >= 1")
        self.storage = storage
        self.oracle = oracle
        self.pacer = pacer or FixedDelayPacer(delay=1.0)
        self.batch_size = batch_size
        self.threshold = threshold
        self.fallback_min = fallback_min
        self.fallback_max = fallback_max
        self.rng = rng
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, search_id: str) -> asyncio.Lock:
        lock = self._locks.get(search_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[search_id] = lock
        return lock

    async def ensure_results(self, search: SearchSession) -> int:
        """
        Compute the session's results unless they already exist.

        Returns the number of stored results for the session.
        """
        async with self._lock_for(search.id):
            state = await self.storage.get_session_state(search.id)
            existing = await self.storage.count_search_results(search.id)

            if state == SessionState.READY:
                return existing
            if existing > 0:
                await self.storage.set_session_state(search.id, SessionState.READY)
                return existing

            await self.storage.set_session_state(search.id, SessionState.COMPUTING)
            try:
                stored = await self.compute_similarities(search)
            except BaseException:
                removed = await self.storage.clear_search_results(search.id)
                await self.storage.set_session_state(search.id, SessionState.UNINITIALIZED)
                logger.warning(f"[BATCH] Pass for search {search.id} did not finish, discarded {removed} partial results")
                raise
            await self.storage.set_session_state(search.id, SessionState.READY)
            return stored

    async def compute_similarities(self, search: SearchSession) -> int:
        """One full pass over the catalog. Returns the number of results stored."""
        products = await self.storage.get_all_products()
        batches = make_batches(products, self.batch_size)
        logger.info(
            f"[BATCH] Starting AI similarity analysis for search {search.id}: "
            f"{len(products)} products in {len(batches)} batches of {self.batch_size}"
        )

        stored = 0
        for index, batch in enumerate(batches):
            await self.pacer.wait(len(batch), first=(index == 0))
            outcomes = await asyncio.gather(*(self._score_product(search, product) for product in batch))
            stored += sum(1 for included in outcomes if included)
            logger.debug(f"[BATCH] Batch {index + 1}/{len(batches)} done for search {search.id}")

        logger.info(f"[BATCH] AI similarity analysis completed for search {search.id}: {stored} results above {self.threshold}")
        return stored

    async def _score_product(self, search: SearchSession, product: Product) -> bool:
        """Score one product and store it if it clears the threshold. Never raises."""
        try:
            analysis = await score_similarity(
                self.oracle,
                search.image_url,
                product.image_url,
                product.name,
                product.category,
                rng=self.rng,
                fallback_min=self.fallback_min,
                fallback_max=self.fallback_max
            )
            if analysis.similarity_score <= self.threshold:
                return False
            await self.storage.create_search_result(
                search.id,
                product.id,
                analysis.similarity_score,
                is_fallback=analysis.is_fallback
            )
            return True
        except Exception as e:
            logger.error(f"[BATCH] Error calculating similarity for product {product.name}: {e}", exc_info=True)
            return False
