"""Sepay payment bridge."""
import logging
from typing import Any, Dict, Optional
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from opentelemetry import trace

from errors import AuthenticationError, BusinessRuleError, NotFoundError
from models import Order, PaymentEvent
from monitoring import payment_webhooks_counter
from services.external_service import SepayClient, verify_signature
from services.order_service import can_transition, can_transition_payment

logger = logging.getLogger(__name__)

WEBHOOK_PAYMENT_STATUS = {
    "success": "completed",
    "failed": "failed",
}


class PaymentService:
    """Creates gateway payments and applies their outcomes to orders."""

    def __init__(self, sepay_client: SepayClient):
        """
        Initialize payment service.

        Args:
            sepay_client: Gateway client
        """
        self.sepay = sepay_client
        self.tracer = trace.get_tracer(__name__)

    @staticmethod
    def _owned_order(db: Session, user_id: str, order_id: Optional[str]) -> Order:
        if not order_id:
            raise BusinessRuleError("Order ID required")
        order = db.query(Order).filter(Order.id == order_id, Order.user_id == user_id).first()
        if not order:
            raise NotFoundError("Order not found")
        return order

    async def create_payment(self, db: Session, user_id: str, order_id: Optional[str]) -> Dict[str, Any]:
        """
        Create a Sepay QR payment for one of the user's orders.

        Raises:
            BusinessRuleError: If no order id is given or the order is already paid
            NotFoundError: If the order is not the user's
            UpstreamServiceError: If the gateway call fails
        """
        order = self._owned_order(db, user_id, order_id)
        if order.payment_status == "completed":
            raise BusinessRuleError("Order already paid")

        payment = await self.sepay.create_payment(
            order_id=order.id,
            amount=float(order.total_amount),
            description=f"Payment for order #{order.id[:8]}"
        )

        order.sepay_transaction_id = payment["transaction_id"]
        order.payment_method = "sepay"
        db.commit()

        logger.info("Sepay payment created", extra={
            "order_id": order.id,
            "user_id": user_id,
            "transaction_id": payment["transaction_id"]
        })
        return payment

    @staticmethod
    def _apply_outcome(order: Order, payment_status: str) -> None:
        """Move the payment axis, and the order to paid when the order axis allows it."""
        if order.payment_status != payment_status and not can_transition_payment(order.payment_status, payment_status):
            logger.warning("Ignoring payment status change", extra={
                "order_id": order.id,
                "from_payment_status": order.payment_status,
                "to_payment_status": payment_status
            })
            return

        order.payment_status = payment_status
        if payment_status == "completed":
            if can_transition(order.status, "paid"):
                order.status = "paid"
            elif order.status != "paid":
                logger.warning("Payment completed but order status left unchanged", extra={
                    "order_id": order.id,
                    "status": order.status
                })

    def handle_webhook(self, db: Session, payload: Dict[str, Any]) -> bool:
        """
        Verify and apply a gateway notification.

        Deliveries are recorded by (transactionId, status); a repeat of an
        already applied delivery is acknowledged without touching the order.

        Args:
            db: Database session
            payload: Raw webhook body

        Returns:
            True if applied, False if it was a duplicate delivery

        Raises:
            AuthenticationError: If the signature does not match
            NotFoundError: If the order does not exist
        """
        if not verify_signature(payload, self.sepay.secret):
            payment_webhooks_counter.add(1, {"outcome": "invalid_signature"})
            logger.warning("Webhook rejected: invalid signature", extra={"order_id": payload.get("orderId")})
            raise AuthenticationError("Invalid signature")

        order_id = payload.get("orderId")
        status = str(payload.get("status"))
        transaction_id = payload.get("transactionId")

        order = db.query(Order).filter(Order.id == order_id).first() if order_id else None
        if not order:
            payment_webhooks_counter.add(1, {"outcome": "unknown_order"})
            raise NotFoundError("Order not found")

        with self.tracer.start_as_current_span("db.transaction.apply_webhook") as db_span:
            db_span.set_attribute("order.id", order.id)
            db_span.set_attribute("payment.status", status)

            try:
                if transaction_id:
                    db.add(PaymentEvent(order_id=order.id, transaction_id=str(transaction_id), status=status))
                    db.flush()
                    order.sepay_transaction_id = str(transaction_id)

                payment_status = WEBHOOK_PAYMENT_STATUS.get(status)
                if payment_status:
                    self._apply_outcome(order, payment_status)
                db.commit()
            except IntegrityError:
                db.rollback()
                payment_webhooks_counter.add(1, {"outcome": "duplicate"})
                logger.info("Duplicate webhook delivery acknowledged", extra={
                    "order_id": order_id,
                    "transaction_id": transaction_id,
                    "status": status
                })
                return False
            except Exception:
                db.rollback()
                raise

        payment_webhooks_counter.add(1, {"outcome": status})
        logger.info("Webhook processed", extra={
            "order_id": order.id,
            "transaction_id": transaction_id,
            "status": status,
            "payment_status": order.payment_status,
            "order_status": order.status
        })
        return True

    async def poll_status(self, db: Session, user_id: str, order_id: str) -> Dict[str, Any]:
        """
        Ask the gateway for the payment state and reconcile the order.

        Returns:
            Local order/payment status after reconciliation plus gateway data

        Raises:
            NotFoundError: If the order is not the user's
            BusinessRuleError: If no transaction was created for the order
            UpstreamServiceError: If the gateway call fails
        """
        order = self._owned_order(db, user_id, order_id)
        if not order.sepay_transaction_id:
            raise BusinessRuleError("No payment transaction found")

        sepay_data = await self.sepay.get_payment_status(order.sepay_transaction_id)

        if sepay_data.get("status") == "success" and order.payment_status != "completed":
            self._apply_outcome(order, "completed")
            db.commit()
            logger.info("Payment completion picked up by status poll", extra={
                "order_id": order.id,
                "transaction_id": order.sepay_transaction_id
            })

        return {
            "order_id": order.id,
            "payment_status": order.payment_status,
            "order_status": order.status,
            "sepay_data": sepay_data
        }
