"""Address book API router."""
from typing import List
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from auth import CurrentUser, get_current_user
from database import get_db
from dependencies import get_address_service
from errors import NotFoundError
from schemas import AddressCreate, AddressResponse, AddressUpdate, MessageResponse
from services.address_service import AddressService

router = APIRouter(prefix="/api/addresses", tags=["addresses"])


@router.get("", response_model=List[AddressResponse])
async def list_addresses(
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    address_service: AddressService = Depends(get_address_service)
):
    return address_service.list_addresses(db, user.id)


@router.post("", response_model=AddressResponse, status_code=201)
async def create_address(
    request: AddressCreate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    address_service: AddressService = Depends(get_address_service)
):
    try:
        return address_service.create_address(db, user.id, request.model_dump())
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.put("/{address_id}", response_model=AddressResponse)
async def update_address(
    address_id: str,
    request: AddressUpdate,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    address_service: AddressService = Depends(get_address_service)
):
    try:
        return address_service.update_address(db, user.id, address_id, request.model_dump(exclude_unset=True))
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.put("/{address_id}/default", response_model=AddressResponse)
async def set_default_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    address_service: AddressService = Depends(get_address_service)
):
    try:
        return address_service.set_default(db, user.id, address_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.delete("/{address_id}", response_model=MessageResponse)
async def delete_address(
    address_id: str,
    db: Session = Depends(get_db),
    user: CurrentUser = Depends(get_current_user),
    address_service: AddressService = Depends(get_address_service)
):
    try:
        address_service.delete_address(db, user.id, address_id)
    except NotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return {"message": "Address deleted successfully"}
