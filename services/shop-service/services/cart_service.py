"""Cart management service."""
import logging
from decimal import Decimal
from typing import Any, Dict, List
from sqlalchemy.orm import Session, joinedload
from opentelemetry import trace

from errors import BusinessRuleError, InsufficientStockError, NotFoundError
from models import CartItem, Product
from monitoring import cart_additions_counter

logger = logging.getLogger(__name__)


class CartService:
    """Service for managing per-user server carts."""

    def __init__(self):
        self.tracer = trace.get_tracer(__name__)

    def get_cart_items(self, db: Session, user_id: str) -> List[CartItem]:
        """
        Get cart items for user, oldest first.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            List of cart items with their products loaded
        """
        with self.tracer.start_as_current_span("db.query.get_cart_items") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            cart_items = (
                db.query(CartItem)
                .options(joinedload(CartItem.product))
                .filter(CartItem.user_id == user_id)
                .order_by(CartItem.created_at)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(cart_items))

            return cart_items

    def get_cart(self, db: Session, user_id: str) -> Dict[str, Any]:
        """
        Get user's cart contents.

        Args:
            db: Database session
            user_id: User identifier

        Returns:
            Cart contents with items, total and item count
        """
        items = self.get_cart_items(db, user_id)
        total = sum((Decimal(item.product.price) * item.quantity for item in items), Decimal("0"))
        return {
            "items": items,
            "total": float(total),
            "item_count": sum(item.quantity for item in items)
        }

    def _get_line(self, db: Session, user_id: str, item_id: str) -> CartItem:
        item = (
            db.query(CartItem)
            .options(joinedload(CartItem.product))
            .filter(CartItem.id == item_id, CartItem.user_id == user_id)
            .first()
        )
        if not item:
            raise NotFoundError("Cart item not found")
        return item

    def add_to_cart(self, db: Session, user_id: str, product_id: str, quantity: int) -> CartItem:
        """
        Add item to user's cart, summing with an existing line.

        Args:
            db: Database session
            user_id: User identifier
            product_id: Product identifier
            quantity: Quantity to add

        Returns:
            The created or updated cart line

        Raises:
            NotFoundError: If product not found or inactive
            InsufficientStockError: If the resulting quantity exceeds stock
        """
        span = trace.get_current_span()
        span.set_attribute("product.id", product_id)
        span.set_attribute("quantity", quantity)

        with self.tracer.start_as_current_span("db.query.get_product") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")
            db_span.set_attribute("product.id", product_id)

            product = db.query(Product).filter(Product.id == product_id, Product.is_active.is_(True)).first()
            db_span.set_attribute("db.rows_returned", 1 if product else 0)

        if not product:
            raise NotFoundError("Product not found")

        existing = (
            db.query(CartItem)
            .filter(CartItem.user_id == user_id, CartItem.product_id == product_id)
            .first()
        )
        new_quantity = quantity + (existing.quantity if existing else 0)
        if new_quantity > product.stock_quantity:
            raise InsufficientStockError(product.name)

        with self.tracer.start_as_current_span("db.query.upsert_cart_item") as db_span:
            db_span.set_attribute("db.operation", "UPDATE" if existing else "INSERT")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            if existing:
                existing.quantity = new_quantity
                cart_item = existing
            else:
                cart_item = CartItem(user_id=user_id, product_id=product_id, quantity=quantity)
                db.add(cart_item)
            db.commit()

        cart_additions_counter.add(1, {"cart": "server"})

        logger.info("Added product to cart", extra={
            "user_id": user_id,
            "product_id": product_id,
            "product_name": product.name,
            "quantity": quantity,
            "line_quantity": new_quantity
        })

        return self._get_line(db, user_id, cart_item.id)

    def update_quantity(self, db: Session, user_id: str, item_id: str, quantity: int) -> CartItem:
        """
        Set the quantity of a cart line.

        Raises:
            BusinessRuleError: If quantity is below 1
            NotFoundError: If the line does not belong to the user
            InsufficientStockError: If quantity exceeds stock
        """
        if quantity < 1:
            raise BusinessRuleError("Quantity must be at least 1")

        item = self._get_line(db, user_id, item_id)
        if quantity > item.product.stock_quantity:
            raise InsufficientStockError(item.product.name)

        item.quantity = quantity
        db.commit()
        return item

    def remove_item(self, db: Session, user_id: str, item_id: str) -> None:
        item = self._get_line(db, user_id, item_id)
        db.delete(item)
        db.commit()

    def clear_cart(self, db: Session, user_id: str) -> None:
        """
        Clear user's cart.

        Args:
            db: Database session
            user_id: User identifier
        """
        with self.tracer.start_as_current_span("db.query.delete_cart_items") as db_span:
            db_span.set_attribute("db.operation", "DELETE")
            db_span.set_attribute("db.table", "cart_items")
            db_span.set_attribute("user.id", user_id)

            deleted_count = db.query(CartItem).filter(CartItem.user_id == user_id).delete()
            db.commit()

            db_span.set_attribute("db.rows_affected", deleted_count)
