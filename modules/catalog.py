"""
Catalog loading and category aggregation.
"""
import json
import logging
import uuid
from pathlib import Path
from typing import Dict, Iterable, List, Union

from models.schemas import CategoryCount, Product, ProductCreate

logger = logging.getLogger(__name__)


def load_catalog(path: Union[str, Path]) -> List[Product]:
    """
    Load the product catalog from a JSON file.

    The file holds a list of product objects without ids (camelCase keys, as
    served by the API). Every product gets a fresh UUID, so ids are stable
    only for the lifetime of the process.
    """
    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Catalog file not found: {catalog_path}")

    with open(catalog_path, "r", encoding="utf-8") as f:
        raw_products = json.load(f)

    if not isinstance(raw_products, list):
        raise ValueError(f"Catalog file must contain a JSON list, got {type(raw_products).__name__}")

    products = [build_product(ProductCreate.model_validate(item)) for item in raw_products]
    logger.info(f"[CATALOG] Loaded {len(products)} products from {catalog_path}")
    return products


def build_product(data: ProductCreate) -> Product:
    return Product(id=str(uuid.uuid4()), **data.model_dump())


def count_categories(products: Iterable[Product]) -> List[CategoryCount]:
    """Distinct categories with their product counts, in first-seen order."""
    counts: Dict[str, int] = {}
    for product in products:
        counts[product.category] = counts.get(product.category, 0) + 1
    return [CategoryCount(name=name, count=count) for name, count in counts.items()]
