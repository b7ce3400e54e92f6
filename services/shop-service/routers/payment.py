"""Payment API router."""
from typing import Any, Dict
from fastapi import APIRouter, Body, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user
from database import get_db
from dependencies import get_payment_service
from errors import AuthenticationError, NotFoundError, UpstreamServiceError
from schemas import CreatePaymentRequest, MessageResponse, PaymentCreatedResponse, PaymentStatusResponse
from services.payment_service import PaymentService

router = APIRouter(prefix="/api/payment", tags=["payment"])


@router.post("/sepay/create", response_model=PaymentCreatedResponse)
async def create_sepay_payment(
    request: CreatePaymentRequest,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Create a Sepay QR payment for an order - requires authentication."""
    try:
        return await payment_service.create_payment(db, user.id, request.order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))


@router.post("/sepay/webhook", response_model=MessageResponse)
async def sepay_webhook(
    payload: Dict[str, Any] = Body(...),
    db: Session = Depends(get_db),
    payment_service: PaymentService = Depends(get_payment_service)
):
    """Gateway notification; authenticated by its HMAC signature."""
    try:
        applied = payment_service.handle_webhook(db, payload)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))

    return {"message": "Webhook processed" if applied else "Webhook already processed"}


@router.get("/sepay/status/{order_id}", response_model=PaymentStatusResponse)
async def get_sepay_status(
    order_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    payment_service: PaymentService = Depends(get_payment_service)
):
    try:
        return await payment_service.poll_status(db, user.id, order_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
