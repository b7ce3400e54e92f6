"""Dependency injection for services."""
from typing import Any
import httpx
from fastapi import Depends, Header, HTTPException, Request

from services.address_service import AddressService
from services.cart_service import CartService
from services.cart_session import CartSessionStore
from services.catalog_service import CatalogService
from services.chat_service import ChatService
from services.email_service import EmailService
from services.external_service import ChatCompletionClient, GoogleOAuthClient, SepayClient
from services.identity_service import IdentityService
from services.order_service import OrderService
from services.payment_service import PaymentService


def get_http_client(request: Request) -> httpx.AsyncClient:
    """Get HTTP client from app state."""
    return request.app.state.http_client


def get_async_redis(request: Request) -> Any:
    """Get async Redis client from app state."""
    return request.app.state.async_redis_client


def get_cart_store(redis_client: Any = Depends(get_async_redis)) -> CartSessionStore:
    return CartSessionStore(redis_client)


def get_device_id(x_device_id: str = Header(None)) -> str:
    """Device cart key from the X-Device-Id header."""
    if not x_device_id or not x_device_id.strip():
        raise HTTPException(status_code=400, detail="X-Device-Id header required")
    return x_device_id.strip()


def get_email_service() -> EmailService:
    return EmailService()


def get_catalog_service() -> CatalogService:
    return CatalogService()


def get_cart_service() -> CartService:
    return CartService()


def get_address_service() -> AddressService:
    return AddressService()


def get_order_service(email_service: EmailService = Depends(get_email_service)) -> OrderService:
    """Get order service instance."""
    return OrderService(email_service)


def get_payment_service(http_client: httpx.AsyncClient = Depends(get_http_client)) -> PaymentService:
    return PaymentService(SepayClient(http_client))


def get_chat_service(http_client: httpx.AsyncClient = Depends(get_http_client)) -> ChatService:
    return ChatService(ChatCompletionClient(http_client))


def get_identity_service(http_client: httpx.AsyncClient = Depends(get_http_client)) -> IdentityService:
    return IdentityService(GoogleOAuthClient(http_client))
