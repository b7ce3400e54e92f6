"""Product catalog queries."""
import logging
from typing import Any, Dict, List, Optional
from sqlalchemy import func, or_
from sqlalchemy.orm import Session, joinedload, selectinload
from opentelemetry import trace

from errors import NotFoundError
from models import Category, Product, Review
from pagination import normalize_paging, page_info

logger = logging.getLogger(__name__)

LATEST_REVIEWS = 10


class CatalogService:
    """Read-only access to products and categories."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def list_products(
        self,
        db: Session,
        category_id: Optional[str] = None,
        min_price: Optional[float] = None,
        max_price: Optional[float] = None,
        search: Optional[str] = None,
        page: int = 1,
        limit: int = 20
    ) -> Dict[str, Any]:
        """
        Filter active products, newest first.

        Args:
            db: Database session
            category_id: Only products in this category
            min_price: Inclusive lower price bound
            max_price: Inclusive upper price bound
            search: Case-insensitive match on name or description
            page: 1-based page number
            limit: Page size

        Returns:
            Products and pagination info
        """
        page, limit = normalize_paging(page, limit)

        query = db.query(Product).filter(Product.is_active.is_(True))
        if category_id:
            query = query.filter(Product.category_id == category_id)
        if min_price is not None:
            query = query.filter(Product.price >= min_price)
        if max_price is not None:
            query = query.filter(Product.price <= max_price)
        if search:
            pattern = f"%{search}%"
            query = query.filter(or_(Product.name.ilike(pattern), Product.description.ilike(pattern)))

        with self.tracer.start_as_current_span("db.query.list_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            total = query.count()
            products = (
                query.options(joinedload(Product.category))
                .order_by(Product.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(products))

        return {"products": products, "pagination": page_info(page, limit, total)}

    def get_product(self, db: Session, product_id: str) -> Dict[str, Any]:
        """
        Get product detail with category, latest reviews and rating summary.

        Raises:
            NotFoundError: If the product does not exist
        """
        product = (
            db.query(Product)
            .options(joinedload(Product.category))
            .filter(Product.id == product_id)
            .first()
        )
        if not product:
            raise NotFoundError("Product not found")

        reviews = (
            db.query(Review)
            .options(joinedload(Review.user))
            .filter(Review.product_id == product_id)
            .order_by(Review.created_at.desc())
            .limit(LATEST_REVIEWS)
            .all()
        )
        average, count = (
            db.query(func.avg(Review.rating), func.count(Review.id))
            .filter(Review.product_id == product_id)
            .one()
        )

        return {
            "product": product,
            "reviews": reviews,
            "average_rating": round(float(average), 1) if average is not None else 0.0,
            "review_count": count
        }

    def list_categories(self, db: Session) -> List[Dict[str, Any]]:
        """All categories with their children and product counts."""
        counts = dict(
            db.query(Product.category_id, func.count(Product.id))
            .group_by(Product.category_id)
            .all()
        )
        categories = db.query(Category).options(selectinload(Category.children)).order_by(Category.name).all()
        return [
            {
                "id": category.id,
                "name": category.name,
                "description": category.description,
                "parent_id": category.parent_id,
                "children": category.children,
                "product_count": counts.get(category.id, 0)
            }
            for category in categories
        ]
