"""Database models for the shop service."""
import uuid
from datetime import datetime, timezone
from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _uuid() -> str:
    return str(uuid.uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """Shop customer or administrator."""
    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=True)
    avatar_url = Column(String(512), nullable=True)
    google_id = Column(String(255), unique=True, nullable=True)
    role = Column(String(32), nullable=False, default="customer")
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class Category(Base):
    """Product category, optionally nested under a parent."""
    __tablename__ = "categories"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    parent_id = Column(String(36), ForeignKey("categories.id"), nullable=True)

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")
    products = relationship("Product", back_populates="category")


class Product(Base):
    """Product model."""
    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=_uuid)
    name = Column(String(255), nullable=False, index=True)
    description = Column(Text, nullable=True)
    price = Column(Numeric(12, 2), nullable=False)
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    images = Column(JSON, nullable=False, default=list)
    specifications = Column(JSON, nullable=True)
    category_id = Column(String(36), ForeignKey("categories.id"), nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    category = relationship("Category", back_populates="products")
    reviews = relationship("Review", back_populates="product")


class Review(Base):
    """Customer review of a product."""
    __tablename__ = "reviews"

    id = Column(String(36), primary_key=True, default=_uuid)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False)
    rating = Column(Integer, nullable=False)
    comment = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    product = relationship("Product", back_populates="reviews")
    user = relationship("User")


class CartItem(Base):
    """Cart item model."""
    __tablename__ = "cart_items"
    __table_args__ = (UniqueConstraint("user_id", "product_id", name="uq_cart_user_product"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)

    product = relationship("Product")


class Order(Base):
    """Order model.

    ``shipping_address`` is a copy of the address at checkout time, not a
    reference, so later address edits never touch placed orders.
    """
    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    total_amount = Column(Numeric(12, 2), nullable=False)
    status = Column(String(32), nullable=False, default="pending")
    payment_status = Column(String(32), nullable=False, default="pending")
    payment_method = Column(String(32), nullable=False, default="cod")
    shipping_address = Column(JSON, nullable=False)
    notes = Column(Text, nullable=True)
    payment_proof = Column(String(1024), nullable=True)
    sepay_transaction_id = Column(String(255), nullable=True, index=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)
    updated_at = Column(DateTime(timezone=True), default=_utcnow, onupdate=_utcnow)

    user = relationship("User")
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
    )


class OrderItem(Base):
    """Line of an order with the unit price frozen at checkout."""
    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, index=True)
    product_id = Column(String(36), ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    subtotal = Column(Numeric(12, 2), nullable=False)

    order = relationship("Order", back_populates="items")
    product = relationship("Product")


class Address(Base):
    """Address book entry."""
    __tablename__ = "addresses"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    label = Column(String(64), nullable=True)
    full_name = Column(String(255), nullable=False)
    phone = Column(String(32), nullable=False)
    address_line = Column(String(512), nullable=False)
    city = Column(String(128), nullable=False)
    district = Column(String(128), nullable=False)
    ward = Column(String(128), nullable=False)
    is_default = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class ChatMessage(Base):
    """Chat log entry, either from the user or the assistant."""
    __tablename__ = "chat_messages"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=False, index=True)
    message = Column(Text, nullable=False)
    is_user = Column(Boolean, nullable=False)
    # "metadata" is reserved on declarative classes
    message_metadata = Column("metadata", JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), default=_utcnow)


class PaymentEvent(Base):
    """Applied payment webhook delivery, keyed by transaction and status."""
    __tablename__ = "payment_events"
    __table_args__ = (UniqueConstraint("transaction_id", "status", name="uq_payment_event_delivery"),)

    id = Column(String(36), primary_key=True, default=_uuid)
    order_id = Column(String(36), ForeignKey("orders.id"), nullable=False, index=True)
    transaction_id = Column(String(255), nullable=False)
    status = Column(String(32), nullable=False)
    received_at = Column(DateTime(timezone=True), default=_utcnow)
