"""Shared test fixtures for the visual search pipeline."""

import asyncio
import io
import random

import pytest
from fastapi.testclient import TestClient
from PIL import Image

from config import Settings
from main import create_app
from models.schemas import Product, SimilarityAnalysis
from modules.errors import OracleError
from modules.pacing import FixedDelayPacer
from modules.similarity import SimilarityOracle
from modules.storage import MemoryStorage


# name, category, price, rating, scripted similarity score
CATALOG_ROWS = [
    ("Studio Headphones", "Electronics > Audio", 249, 4.8, 0.91),
    ("Smart Watch", "Electronics > Wearables", 799, 4.6, 0.85),
    ("Flagship Phone", "Electronics > Smartphones", 1199, 4.7, 0.78),
    ("Pro Laptop", "Electronics > Laptops", 2499, 4.9, 0.64),
    ("Compact Camera", "Electronics > Cameras", 549, 4.2, 0.52),
    ("Gaming Console", "Electronics > Gaming", 499, 4.5, 0.31),
    ("Desk Chair", "Office Supplies > Furniture", 1395, 4.7, 0.30),
    ("Water Bottle", "Sports & Outdoors > Accessories", 44.95, 4.7, 0.12),
    ("Hair Dryer", "Beauty & Personal Care > Hair Care", 429, 4.3, 0.05),
    ("Lawn Mower", "Garden & Outdoor > Lawn Care", 449, 4.3, 0.0),
]

ABOVE_THRESHOLD = ["Studio Headphones", "Smart Watch", "Flagship Phone", "Pro Laptop", "Compact Camera", "Gaming Console"]


def make_product(name, category="Electronics > Audio", price=100.0, rating=4.0):
    slug = name.lower().replace(" ", "-")
    return Product(
        id=f"p-{slug}",
        name=name,
        category=category,
        price=price,
        image_url=f"https://images.example.com/{slug}.jpg",
        rating=rating,
        brand="Acme",
        features=["feature one", "feature two"],
    )


class ScriptedOracle(SimilarityOracle):
    """Oracle returning fixed scores by product name and tracking concurrency."""

    name = "scripted"

    def __init__(self, scores, failures=(), default=0.1):
        self.scores = dict(scores)
        self.failures = set(failures)
        self.default = default
        self.calls = []
        self.active = 0
        self.max_active = 0

    async def analyze_similarity(self, query_image_url, product_image_url, product_name, product_category):
        self.calls.append(product_name)
        self.active += 1
        self.max_active = max(self.max_active, self.active)
        try:
            await asyncio.sleep(0)
            if product_name in self.failures:
                raise OracleError(f"scripted failure for {product_name}")
            return SimilarityAnalysis(
                similarity_score=self.scores.get(product_name, self.default),
                reasoning="scripted",
                visual_features=["scripted"],
            )
        finally:
            self.active -= 1

    async def describe_image(self, image_url):
        if "fail" in image_url:
            raise OracleError("scripted describe failure")
        return "A pair of over-ear headphones in matte black"


@pytest.fixture
def catalog_products():
    return [make_product(name, category, price, rating) for name, category, price, rating, _ in CATALOG_ROWS]


@pytest.fixture
def scripted_scores():
    return {name: score for name, _, _, _, score in CATALOG_ROWS}


@pytest.fixture
def oracle(scripted_scores):
    return ScriptedOracle(scripted_scores)


@pytest.fixture
def storage(catalog_products):
    return MemoryStorage(catalog_products)


@pytest.fixture
def test_settings():
    return Settings(
        _env_file=None,
        SIMILARITY_BATCH_DELAY_MS=0,
        ORACLE_REQUEST_DELAY_MS=0,
        GEMINI_API_KEY=None,
        LOG_LEVEL="WARNING",
    )


@pytest.fixture
def app(test_settings, storage, oracle):
    return create_app(
        app_settings=test_settings,
        storage=storage,
        oracle=oracle,
        pacer=FixedDelayPacer(delay=0),
        rng=random.Random(7),
    )


@pytest.fixture
def client(app):
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def png_bytes():
    """A tiny valid PNG image."""
    buf = io.BytesIO()
    Image.new("RGB", (8, 8), (200, 30, 30)).save(buf, format="PNG")
    return buf.getvalue()
