"""Order management service."""
import logging
from collections import OrderedDict
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple
from sqlalchemy import update
from sqlalchemy.orm import Session, joinedload, selectinload
from opentelemetry import trace

from errors import BusinessRuleError, InsufficientStockError, InvalidTransitionError, NotFoundError
from models import Order, OrderItem, Product
from pagination import normalize_paging, page_info
from services.email_service import ConfirmationLine, EmailService, OrderConfirmation
from monitoring import (
    orders_created_counter,
    order_amount_histogram,
    orders_cancelled_counter,
    stock_shortfall_counter,
    order_emails_failed_counter
)

logger = logging.getLogger(__name__)

# Fulfilment axis. Payment progress lives on Order.payment_status.
ORDER_STATUS_TRANSITIONS = {
    "pending": {"confirmed", "cancelled", "paid"},
    "confirmed": {"cancelled", "processing", "paid"},
    "paid": {"processing"},
    "processing": {"shipped"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

PAYMENT_STATUS_TRANSITIONS = {
    "pending": {"completed", "failed"},
    "failed": {"completed", "failed"},
    "completed": set(),
}

CANCELLABLE_STATUSES = ("pending", "confirmed")


def can_transition(current: str, target: str) -> bool:
    return target in ORDER_STATUS_TRANSITIONS.get(current, set())


def can_transition_payment(current: str, target: str) -> bool:
    return target in PAYMENT_STATUS_TRANSITIONS.get(current, set())


class OrderService:
    """Service for placing, cancelling and progressing orders."""

    def __init__(self, email_service: EmailService):
        """
        Initialize order service.

        Args:
            email_service: Sender for order confirmation emails
        """
        self.email_service = email_service
        self.tracer = trace.get_tracer(__name__)

    def create_order(
        self,
        db: Session,
        user_id: str,
        shipping_address: Optional[Dict[str, Any]],
        payment_method: str,
        notes: Optional[str],
        items: List[Tuple[str, int]]
    ) -> Order:
        """
        Place an order from a client-submitted item list.

        Prices and availability are read once (the stock snapshot) and
        reused for validation, the total and every item's unit price.
        Order, items and stock decrements are committed together or not
        at all.

        Args:
            db: Database session
            user_id: Owner of the order
            shipping_address: Address copied by value onto the order
            payment_method: cod, bank_transfer or sepay
            notes: Free-form note from the customer
            items: (product_id, quantity) pairs

        Returns:
            The persisted order with items, products and user loaded

        Raises:
            BusinessRuleError: Missing address, empty cart, unknown or
                inactive product, insufficient stock
        """
        if not shipping_address:
            raise BusinessRuleError("Shipping address required")
        if not items:
            raise BusinessRuleError("Cart is empty")

        span = trace.get_current_span()
        span.set_attribute("order.item_count", len(items))
        span.set_attribute("payment.method", payment_method)

        # Step 1: one read for every referenced product
        with self.tracer.start_as_current_span("db.query.get_products") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "products")

            product_ids = list({product_id for product_id, _ in items})
            products = db.query(Product).filter(Product.id.in_(product_ids)).all()
            product_map = {p.id: p for p in products}

            db_span.set_attribute("db.rows_returned", len(products))

        # Same product requested on several lines draws from one stock
        requested: "OrderedDict[str, int]" = OrderedDict()
        for product_id, quantity in items:
            requested[product_id] = requested.get(product_id, 0) + quantity

        # Step 2: validate against the snapshot, first failure wins
        for product_id, quantity in items:
            product = product_map.get(product_id)
            if product is None or not product.is_active:
                raise BusinessRuleError(f"Product not found: {product_id}")
            if product.stock_quantity < requested[product_id]:
                stock_shortfall_counter.add(1, {"stage": "validation"})
                logger.warning("Insufficient stock", extra={
                    "user_id": user_id,
                    "product_id": product_id,
                    "requested": requested[product_id],
                    "available": product.stock_quantity
                })
                raise InsufficientStockError(product.name)

        # Step 3: price snapshot and total
        prices = {pid: Decimal(product_map[pid].price) for pid in requested}
        total_amount = sum((prices[pid] * quantity for pid, quantity in items), Decimal("0"))

        # Step 4: order, items and conditional stock decrements in one transaction
        try:
            with self.tracer.start_as_current_span("db.transaction.create_order") as db_span:
                db_span.set_attribute("db.operation", "INSERT")
                db_span.set_attribute("db.table", "orders")
                db_span.set_attribute("user.id", user_id)

                order = Order(
                    user_id=user_id,
                    total_amount=total_amount,
                    shipping_address=shipping_address,
                    notes=notes,
                    payment_method=payment_method or "cod",
                    status="pending",
                    payment_status="pending"
                )
                db.add(order)
                db.flush()

                for product_id, quantity in items:
                    db.add(OrderItem(
                        order_id=order.id,
                        product_id=product_id,
                        quantity=quantity,
                        unit_price=prices[product_id],
                        subtotal=prices[product_id] * quantity
                    ))

                for product_id, quantity in requested.items():
                    result = db.execute(
                        update(Product)
                        .where(Product.id == product_id, Product.stock_quantity >= quantity)
                        .values(stock_quantity=Product.stock_quantity - quantity)
                    )
                    if result.rowcount != 1:
                        # Another order took the stock after our snapshot
                        raise InsufficientStockError(product_map[product_id].name)

                db.commit()
                order_id = order.id
                db_span.set_attribute("order.id", order_id)
        except InsufficientStockError:
            db.rollback()
            stock_shortfall_counter.add(1, {"stage": "decrement"})
            logger.warning("Stock taken by a concurrent order", extra={"user_id": user_id})
            raise
        except Exception as e:
            db.rollback()
            logger.error("Failed to create order", extra={
                "user_id": user_id,
                "amount": str(total_amount),
                "error": str(e)
            })
            raise

        orders_created_counter.add(1, {"payment_method": payment_method})
        order_amount_histogram.record(float(total_amount), {"payment_method": payment_method})

        logger.info("Order created", extra={
            "user_id": user_id,
            "order_id": order_id,
            "amount": str(total_amount),
            "payment_method": payment_method,
            "item_count": len(items)
        })

        # Step 5: hydrated re-read for the response and the confirmation email
        return self.get_order(db, user_id, order_id)

    def _order_query(self, db: Session):
        return db.query(Order).options(
            selectinload(Order.items).joinedload(OrderItem.product),
            joinedload(Order.user)
        )

    def get_order(self, db: Session, user_id: str, order_id: str) -> Order:
        """
        Get one of the user's orders.

        Raises:
            NotFoundError: If the order does not exist or is not owned by the user
        """
        order = (
            self._order_query(db)
            .filter(Order.id == order_id, Order.user_id == user_id)
            .execution_options(populate_existing=True)
            .first()
        )
        if not order:
            raise NotFoundError("Order not found")
        return order

    def list_orders(self, db: Session, user_id: str, page: int = 1, limit: int = 10) -> Dict[str, Any]:
        """
        Get a page of the user's orders, newest first.

        Args:
            db: Database session
            user_id: User identifier
            page: 1-based page number
            limit: Page size

        Returns:
            Orders and pagination info
        """
        page, limit = normalize_paging(page, limit, default_limit=10)

        with self.tracer.start_as_current_span("db.query.get_user_orders") as db_span:
            db_span.set_attribute("db.operation", "SELECT")
            db_span.set_attribute("db.table", "orders")
            db_span.set_attribute("user.id", user_id)

            total = db.query(Order).filter(Order.user_id == user_id).count()
            orders = (
                self._order_query(db)
                .filter(Order.user_id == user_id)
                .order_by(Order.created_at.desc())
                .offset((page - 1) * limit)
                .limit(limit)
                .all()
            )

            db_span.set_attribute("db.rows_returned", len(orders))

        return {"orders": orders, "pagination": page_info(page, limit, total)}

    def cancel_order(self, db: Session, user_id: str, order_id: str) -> Order:
        """
        Cancel a pending or confirmed order and put its stock back.

        Raises:
            NotFoundError: If the order does not exist or is not owned by the user
            InvalidTransitionError: If the order is past the cancellable states
        """
        order = self.get_order(db, user_id, order_id)
        if order.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError("Cannot cancel this order")
        return self._cancel(db, order)

    def _cancel(self, db: Session, order: Order) -> Order:
        try:
            with self.tracer.start_as_current_span("db.transaction.cancel_order") as db_span:
                db_span.set_attribute("db.operation", "UPDATE")
                db_span.set_attribute("order.id", order.id)

                # Guarded on the status so two cancels cannot both restore stock
                result = db.execute(
                    update(Order)
                    .where(Order.id == order.id, Order.status.in_(CANCELLABLE_STATUSES))
                    .values(status="cancelled")
                )
                if result.rowcount != 1:
                    raise InvalidTransitionError("Cannot cancel this order")

                for item in order.items:
                    db.execute(
                        update(Product)
                        .where(Product.id == item.product_id)
                        .values(stock_quantity=Product.stock_quantity + item.quantity)
                    )

                db.commit()
        except Exception:
            db.rollback()
            raise

        orders_cancelled_counter.add(1, {"payment_status": order.payment_status})
        logger.info("Order cancelled, stock restored", extra={
            "order_id": order.id,
            "user_id": order.user_id,
            "item_count": len(order.items)
        })
        return self.get_order(db, order.user_id, order.id)

    def upload_payment_proof(self, db: Session, user_id: str, order_id: str, payment_proof: Optional[str]) -> Order:
        """Attach a bank transfer receipt URL to an order."""
        if not payment_proof:
            raise BusinessRuleError("Payment proof URL required")

        order = self.get_order(db, user_id, order_id)
        if order.payment_method != "bank_transfer":
            raise BusinessRuleError("Payment proof only for bank transfer orders")

        order.payment_proof = payment_proof
        db.commit()
        logger.info("Payment proof uploaded", extra={"order_id": order_id, "user_id": user_id})
        return order

    def update_status(self, db: Session, order_id: str, status: str) -> Order:
        """
        Move an order along the fulfilment state machine (admin).

        Cancelling through this path restores stock like a customer cancel.
        """
        order = self._order_query(db).filter(Order.id == order_id).first()
        if not order:
            raise NotFoundError("Order not found")
        if not can_transition(order.status, status):
            raise InvalidTransitionError(f"Cannot change order status from {order.status} to {status}")

        if status == "cancelled":
            return self._cancel(db, order)

        previous = order.status
        order.status = status
        db.commit()
        logger.info("Order status updated", extra={
            "order_id": order_id,
            "from_status": previous,
            "to_status": status
        })
        return self.get_order(db, order.user_id, order.id)

    @staticmethod
    def build_confirmation(order: Order) -> OrderConfirmation:
        """Copy what the confirmation email needs out of the ORM graph."""
        address = order.shipping_address or {}
        return OrderConfirmation(
            order_id=order.id,
            customer_name=address.get("fullName") or "Customer",
            customer_email=order.user.email,
            order_date=order.created_at,
            total_amount=Decimal(order.total_amount),
            payment_method=order.payment_method,
            shipping_address=dict(address),
            items=[
                ConfirmationLine(
                    name=item.product.name,
                    quantity=item.quantity,
                    price=Decimal(item.unit_price),
                    subtotal=Decimal(item.subtotal)
                )
                for item in order.items
            ]
        )

    async def send_confirmation(self, confirmation: OrderConfirmation) -> None:
        """Send the confirmation email; failures never reach the order flow."""
        try:
            await self.email_service.send_order_confirmation(confirmation)
        except Exception as e:
            order_emails_failed_counter.add(1)
            logger.error("Failed to send order confirmation, order was created", extra={
                "order_id": confirmation.order_id,
                "error": str(e)
            })
