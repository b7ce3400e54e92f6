"""Authentication API router."""
import logging
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from database import get_db
from dependencies import get_identity_service
from errors import AuthenticationError, UpstreamServiceError
from schemas import (
    AuthResponse,
    GoogleMobileRequest,
    LoginRequest,
    RefreshRequest,
    RegisterRequest,
    TokenPair,
    UserResponse,
)
from services.identity_service import IdentityService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["authentication"])


def _auth_response(user, tokens) -> AuthResponse:
    return AuthResponse(
        user=UserResponse.model_validate(user),
        access_token=tokens["accessToken"],
        refresh_token=tokens["refreshToken"]
    )


@router.post("/register", response_model=AuthResponse, status_code=201)
async def register(
    request: RegisterRequest,
    db: Session = Depends(get_db),
    identity: IdentityService = Depends(get_identity_service)
):
    try:
        user, tokens = identity.register(db, request.email, request.password, request.full_name, request.phone)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return _auth_response(user, tokens)


@router.post("/login", response_model=AuthResponse)
async def login(
    request: LoginRequest,
    db: Session = Depends(get_db),
    identity: IdentityService = Depends(get_identity_service)
):
    """Authenticate with email and password and return a token pair."""
    try:
        user, tokens = identity.login(db, request.email, request.password)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return _auth_response(user, tokens)


@router.post("/refresh", response_model=TokenPair)
async def refresh(
    request: RefreshRequest,
    db: Session = Depends(get_db),
    identity: IdentityService = Depends(get_identity_service)
):
    try:
        tokens = identity.refresh(db, request.refresh_token)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    return TokenPair(access_token=tokens["accessToken"], refresh_token=tokens["refreshToken"])


@router.get("/google")
async def google_login(identity: IdentityService = Depends(get_identity_service)):
    """Redirect to the Google consent screen."""
    return RedirectResponse(identity.google_authorization_url())


@router.get("/google/callback")
async def google_callback(
    code: Optional[str] = None,
    db: Session = Depends(get_db),
    identity: IdentityService = Depends(get_identity_service)
):
    """Finish Google sign-in and hand the tokens to the app through its deep link."""
    try:
        deep_link = await identity.google_callback(db, code)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return RedirectResponse(deep_link)


@router.post("/google-mobile", response_model=AuthResponse)
async def google_mobile(
    request: GoogleMobileRequest,
    db: Session = Depends(get_db),
    identity: IdentityService = Depends(get_identity_service)
):
    """Sign in with a Google ID token obtained on the device."""
    try:
        user, tokens = await identity.google_mobile(db, request.id_token)
    except AuthenticationError as e:
        raise HTTPException(status_code=401, detail=str(e))
    except UpstreamServiceError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return _auth_response(user, tokens)
