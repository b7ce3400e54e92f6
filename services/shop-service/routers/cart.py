"""Cart API router."""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user
from database import get_db
from dependencies import get_cart_service
from errors import NotFoundError
from schemas import AddToCartRequest, CartItemResponse, CartResponse, MessageResponse, UpdateCartItemRequest
from services.cart_service import CartService

router = APIRouter(prefix="/api/cart", tags=["cart"])


@router.get("", response_model=CartResponse)
async def get_cart(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Get user's cart - requires authentication."""
    return cart_service.get_cart(db, user.id)


@router.post("", response_model=CartItemResponse)
async def add_to_cart(
    request: AddToCartRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    """Add item to cart - requires authentication."""
    try:
        return cart_service.add_to_cart(db, user.id, request.product_id, request.quantity)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{item_id}", response_model=CartItemResponse)
async def update_cart_item(
    item_id: str,
    request: UpdateCartItemRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    try:
        return cart_service.update_quantity(db, user.id, item_id, request.quantity)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{item_id}", response_model=MessageResponse)
async def remove_cart_item(
    item_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    try:
        cart_service.remove_item(db, user.id, item_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Item removed from cart"}


@router.delete("", response_model=MessageResponse)
async def clear_cart(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    cart_service: CartService = Depends(get_cart_service)
):
    cart_service.clear_cart(db, user.id)
    return {"message": "Cart cleared"}
