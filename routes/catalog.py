"""
Catalog routes.
"""
from fastapi import APIRouter, Depends
from typing import List
import logging

from models.schemas import CategoryCount, ErrorResponse, Product
from modules.catalog import count_categories
from modules.errors import NotFoundError, VisualSearchError
from modules.storage import SearchStorage
from routes.deps import get_storage

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["Catalog"], responses={500: {"model": ErrorResponse}})


@router.get("/products", response_model=List[Product])
async def list_products(storage: SearchStorage = Depends(get_storage)):
    """Full product catalog."""
    try:
        return await storage.get_all_products()
    except Exception as e:
        logger.error(f"Failed to fetch products: {e}", exc_info=True)
        raise VisualSearchError("Failed to fetch products")


@router.get("/products/{product_id}", response_model=Product, responses={404: {"model": ErrorResponse}})
async def get_product(product_id: str, storage: SearchStorage = Depends(get_storage)):
    product = await storage.get_product(product_id)
    if product is None:
        raise NotFoundError("Product not found")
    return product


@router.get("/categories", response_model=List[CategoryCount])
async def list_categories(storage: SearchStorage = Depends(get_storage)):
    """Distinct catalog categories with product counts."""
    try:
        products = await storage.get_all_products()
        return count_categories(products)
    except Exception as e:
        logger.error(f"Failed to fetch categories: {e}", exc_info=True)
        raise VisualSearchError("Failed to fetch categories")
