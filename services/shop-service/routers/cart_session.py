"""Device cart session API router.

The cart lives with the device (X-Device-Id); signing in or out switches
which identity's cart is active.
"""
from dataclasses import asdict
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from auth import CurrentUser, get_optional_user
from dependencies import get_cart_store, get_device_id
from errors import NotFoundError
from schemas import CartLineQuantityRequest, CartLineRequest, CartSessionResponse
from services.cart_session import Cart, CartSessionStore

router = APIRouter(prefix="/api/cart/session", tags=["cart"])


def _response(cart: Cart) -> CartSessionResponse:
    return CartSessionResponse(
        identity=cart.identity,
        items=[asdict(line) for line in cart.items],
        total=cart.total,
        item_count=cart.item_count
    )


@router.get("", response_model=CartSessionResponse)
async def get_session_cart(
    device_id: str = Depends(get_device_id),
    store: CartSessionStore = Depends(get_cart_store)
):
    return _response(await store.get(device_id))


@router.post("/items", response_model=CartSessionResponse)
async def add_session_item(
    request: CartLineRequest,
    device_id: str = Depends(get_device_id),
    store: CartSessionStore = Depends(get_cart_store)
):
    cart = await store.add(
        device_id,
        product_id=request.product_id,
        name=request.name,
        price=request.price,
        quantity=request.quantity,
        image=request.image
    )
    return _response(cart)


@router.put("/items/{line_id}", response_model=CartSessionResponse)
async def update_session_item(
    line_id: str,
    request: CartLineQuantityRequest,
    device_id: str = Depends(get_device_id),
    store: CartSessionStore = Depends(get_cart_store)
):
    """Set a line's quantity; below 1 removes the line."""
    try:
        return _response(await store.update_quantity(device_id, line_id, request.quantity))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/items/{line_id}", response_model=CartSessionResponse)
async def remove_session_item(
    line_id: str,
    device_id: str = Depends(get_device_id),
    store: CartSessionStore = Depends(get_cart_store)
):
    return _response(await store.remove(device_id, line_id))


@router.delete("", response_model=CartSessionResponse)
async def clear_session_cart(
    device_id: str = Depends(get_device_id),
    store: CartSessionStore = Depends(get_cart_store)
):
    return _response(await store.clear(device_id))


@router.post("/switch", response_model=CartSessionResponse)
async def switch_session_cart(
    device_id: str = Depends(get_device_id),
    user: Optional[CurrentUser] = Depends(get_optional_user),
    store: CartSessionStore = Depends(get_cart_store)
):
    """
    Make the signed-in user's cart active on this device.

    With a bearer token the device switches to that user's cart; without
    one it switches back to the guest cart.
    """
    return _response(await store.switch(device_id, user.id if user else None))
