"""Orders API router."""
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user, require_admin
from database import get_db
from dependencies import get_order_service
from errors import NotFoundError
from schemas import (
    CreateOrderRequest,
    OrderListResponse,
    OrderResponse,
    PaymentProofRequest,
    UpdateOrderStatusRequest,
)
from services.order_service import OrderService

router = APIRouter(prefix="/api/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=201)
async def create_order(
    request: CreateOrderRequest,
    background_tasks: BackgroundTasks,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Place an order - requires authentication.

    The confirmation email goes out after the response is sent.
    """
    shipping_address = (
        request.shipping_address.model_dump(by_alias=True, exclude_none=True)
        if request.shipping_address else None
    )
    try:
        order = order_service.create_order(
            db=db,
            user_id=user.id,
            shipping_address=shipping_address,
            payment_method=request.payment_method,
            notes=request.notes,
            items=[(item.product_id, item.quantity) for item in request.items]
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))

    background_tasks.add_task(order_service.send_confirmation, order_service.build_confirmation(order))
    return order


@router.get("", response_model=OrderListResponse)
async def list_orders(
    page: int = 1,
    limit: int = 10,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Get user's orders - requires authentication."""
    return order_service.list_orders(db, user.id, page=page, limit=limit)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    try:
        return order_service.get_order(db, user.id, order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{order_id}/payment-proof", response_model=OrderResponse)
async def upload_payment_proof(
    order_id: str,
    request: PaymentProofRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    try:
        return order_service.upload_payment_proof(db, user.id, order_id, request.payment_proof)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{order_id}/cancel", response_model=OrderResponse)
async def cancel_order(
    order_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    order_service: OrderService = Depends(get_order_service)
):
    """Cancel a pending or confirmed order; its stock is restored."""
    try:
        return order_service.cancel_order(db, user.id, order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{order_id}/status", response_model=OrderResponse)
async def update_order_status(
    order_id: str,
    request: UpdateOrderStatusRequest,
    db: Session = Depends(get_db),
    admin: CurrentUser = Depends(require_admin),
    order_service: OrderService = Depends(get_order_service)
):
    """Move an order along its fulfilment states - admin only."""
    try:
        return order_service.update_status(db, order_id, request.status)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
