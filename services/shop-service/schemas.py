"""Pydantic schemas for request/response validation.

JSON bodies use camelCase names; Python code uses the snake_case field names.
"""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]


class CamelModel(BaseModel):
    """Base schema with camelCase aliases."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class MessageResponse(CamelModel):
    message: str


class Pagination(CamelModel):
    page: int
    limit: int
    total: int
    total_pages: int


# --- Identity ---

class RegisterRequest(CamelModel):
    """Schema for account registration."""
    email: EmailStr
    password: str = Field(..., min_length=6)
    full_name: NonEmptyStr
    phone: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class RefreshRequest(CamelModel):
    refresh_token: Optional[str] = None


class GoogleMobileRequest(CamelModel):
    id_token: NonEmptyStr


class GoogleProfile(CamelModel):
    """Profile returned by Google; validated before it becomes a user."""
    google_id: NonEmptyStr
    email: EmailStr
    name: Optional[str] = None
    picture: Optional[str] = None


class UserResponse(CamelModel):
    id: str
    email: str
    full_name: str
    avatar_url: Optional[str] = None
    role: str


class TokenPair(CamelModel):
    access_token: str
    refresh_token: str


class AuthResponse(TokenPair):
    user: UserResponse


# --- Catalog ---

class CategorySummary(CamelModel):
    id: str
    name: str


class ProductResponse(CamelModel):
    """Schema for product response."""
    id: str
    name: str
    description: Optional[str] = None
    price: float
    stock_quantity: int
    is_active: bool
    images: List[str] = []
    specifications: Optional[Dict[str, Any]] = None
    category_id: Optional[str] = None
    category: Optional[CategorySummary] = None
    created_at: Optional[datetime] = None


class ProductListResponse(CamelModel):
    products: List[ProductResponse]
    pagination: Pagination


class ReviewAuthor(CamelModel):
    id: str
    full_name: str
    avatar_url: Optional[str] = None


class ReviewResponse(CamelModel):
    id: str
    rating: int
    comment: Optional[str] = None
    created_at: Optional[datetime] = None
    user: ReviewAuthor


class ProductDetailResponse(ProductResponse):
    reviews: List[ReviewResponse]
    average_rating: float
    review_count: int


class CategoryResponse(CamelModel):
    id: str
    name: str
    description: Optional[str] = None
    parent_id: Optional[str] = None
    children: List[CategorySummary]
    product_count: int


# --- Server cart ---

class AddToCartRequest(CamelModel):
    """Schema for add to cart request."""
    product_id: NonEmptyStr
    quantity: int = Field(..., ge=1)


class UpdateCartItemRequest(CamelModel):
    quantity: int = Field(..., ge=1)


class CartProduct(CamelModel):
    id: str
    name: str
    price: float
    images: List[str] = []
    stock_quantity: int
    is_active: bool


class CartItemResponse(CamelModel):
    """Schema for cart item in response."""
    id: str
    product_id: str
    quantity: int
    product: CartProduct


class CartResponse(CamelModel):
    """Schema for cart response."""
    items: List[CartItemResponse]
    total: float
    item_count: int


# --- Device cart session ---

class CartLineRequest(CamelModel):
    product_id: NonEmptyStr
    name: NonEmptyStr
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)
    image: Optional[str] = None


class CartLineQuantityRequest(CamelModel):
    quantity: int


class CartLineResponse(CamelModel):
    id: str
    product_id: str
    name: str
    price: float
    quantity: int
    image: Optional[str] = None


class CartSessionResponse(CamelModel):
    identity: str
    items: List[CartLineResponse]
    total: float
    item_count: int


# --- Orders ---

class ShippingAddress(CamelModel):
    model_config = ConfigDict(extra="allow")

    full_name: NonEmptyStr
    phone: NonEmptyStr
    address_line: NonEmptyStr
    ward: NonEmptyStr
    district: NonEmptyStr
    city: NonEmptyStr
    label: Optional[str] = None


class OrderItemRequest(CamelModel):
    product_id: NonEmptyStr
    quantity: int = Field(..., ge=1)


class CreateOrderRequest(CamelModel):
    """Schema for order placement; address and items are checked by the service."""
    shipping_address: Optional[ShippingAddress] = None
    notes: Optional[str] = None
    payment_method: Literal["cod", "bank_transfer", "sepay"] = "cod"
    items: List[OrderItemRequest] = []


class OrderItemProduct(CamelModel):
    id: str
    name: str
    images: List[str] = []


class OrderItemResponse(CamelModel):
    id: str
    product_id: str
    quantity: int
    unit_price: float
    subtotal: float
    product: Optional[OrderItemProduct] = None


class OrderResponse(CamelModel):
    """Schema for order response."""
    id: str
    user_id: str
    total_amount: float
    status: str
    payment_status: str
    payment_method: str
    shipping_address: Dict[str, Any]
    notes: Optional[str] = None
    payment_proof: Optional[str] = None
    sepay_transaction_id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    items: List[OrderItemResponse]


class OrderListResponse(CamelModel):
    """Schema for orders list response."""
    orders: List[OrderResponse]
    pagination: Pagination


class PaymentProofRequest(CamelModel):
    payment_proof: Optional[str] = None


class UpdateOrderStatusRequest(CamelModel):
    status: Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "paid"]


# --- Addresses ---

class AddressCreate(CamelModel):
    label: Optional[str] = None
    full_name: NonEmptyStr
    phone: NonEmptyStr
    address_line: NonEmptyStr
    city: NonEmptyStr
    district: NonEmptyStr
    ward: NonEmptyStr
    is_default: bool = False


class AddressUpdate(CamelModel):
    label: Optional[str] = None
    full_name: Optional[NonEmptyStr] = None
    phone: Optional[NonEmptyStr] = None
    address_line: Optional[NonEmptyStr] = None
    city: Optional[NonEmptyStr] = None
    district: Optional[NonEmptyStr] = None
    ward: Optional[NonEmptyStr] = None
    is_default: Optional[bool] = None


class AddressResponse(CamelModel):
    id: str
    label: Optional[str] = None
    full_name: str
    phone: str
    address_line: str
    city: str
    district: str
    ward: str
    is_default: bool
    created_at: Optional[datetime] = None


# --- Payment ---

class CreatePaymentRequest(CamelModel):
    order_id: Optional[str] = None


class PaymentCreatedResponse(CamelModel):
    qr_code: Optional[str] = None
    payment_url: Optional[str] = None
    transaction_id: Optional[str] = None


class PaymentStatusResponse(CamelModel):
    order_id: str
    payment_status: str
    order_status: str
    sepay_data: Optional[Dict[str, Any]] = None


# --- Chat ---

class ChatMessageRequest(CamelModel):
    message: Optional[str] = None


class RecommendedProduct(CamelModel):
    id: str
    name: str
    price: float
    images: List[str] = []


class ChatReplyResponse(CamelModel):
    message: str
    recommendations: List[RecommendedProduct]
    message_id: str


class ChatMessageResponse(CamelModel):
    id: str
    message: str
    is_user: bool
    message_metadata: Optional[Dict[str, Any]] = Field(default=None, serialization_alias="metadata")
    created_at: Optional[datetime] = None


class ChatHistoryResponse(CamelModel):
    messages: List[ChatMessageResponse]
    pagination: Pagination
