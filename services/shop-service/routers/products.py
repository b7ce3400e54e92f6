"""Products API router."""
from typing import List, Optional
from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session
from opentelemetry import trace

from database import get_db
from dependencies import get_catalog_service
from errors import NotFoundError
from monitoring import product_views_counter, product_detail_views_counter
from schemas import (
    CategoryResponse,
    ProductDetailResponse,
    ProductListResponse,
    ProductResponse,
    ReviewResponse,
)
from services.catalog_service import CatalogService

router = APIRouter(prefix="/api/products", tags=["products"])


@router.get("", response_model=ProductListResponse)
async def list_products(
    category_id: Optional[str] = Query(None, alias="categoryId"),
    min_price: Optional[float] = Query(None, alias="minPrice"),
    max_price: Optional[float] = Query(None, alias="maxPrice"),
    search: Optional[str] = None,
    page: int = 1,
    limit: int = 20,
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """
    List active products, newest first.

    Examples:
    - GET /api/products?search=plier
    - GET /api/products?categoryId=...&minPrice=50000&maxPrice=200000&page=2
    """
    result = catalog.list_products(
        db,
        category_id=category_id,
        min_price=min_price,
        max_price=max_price,
        search=search,
        page=page,
        limit=limit
    )

    span = trace.get_current_span()
    span.set_attribute("product.count", len(result["products"]))
    span.set_attribute("endpoint.type", "product_catalog")

    product_views_counter.add(1, {"filtered": str(bool(category_id or search or min_price or max_price))})

    return result


@router.get("/categories/all", response_model=List[CategoryResponse])
async def list_categories(
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """All categories with children and product counts."""
    return catalog.list_categories(db)


@router.get("/{product_id}", response_model=ProductDetailResponse)
async def get_product(
    product_id: str = Path(..., description="Product ID"),
    db: Session = Depends(get_db),
    catalog: CatalogService = Depends(get_catalog_service)
):
    """Product detail with category, latest reviews and average rating."""
    try:
        detail = catalog.get_product(db, product_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    product = detail["product"]
    span = trace.get_current_span()
    span.set_attribute("product.id", product_id)

    product_detail_views_counter.add(1, {
        "category": product.category.name if product.category else "uncategorized"
    })

    return ProductDetailResponse(
        **ProductResponse.model_validate(product).model_dump(),
        reviews=[ReviewResponse.model_validate(review) for review in detail["reviews"]],
        average_rating=detail["average_rating"],
        review_count=detail["review_count"]
    )
