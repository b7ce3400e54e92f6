"""Accounts, credentials and Google sign-in."""
import json
import logging
from typing import Any, Dict, Optional, Tuple
from urllib.parse import urlencode

from pydantic import ValidationError
from sqlalchemy.orm import Session

from config import APP_DEEP_LINK
from errors import AuthenticationError, BusinessRuleError, UpstreamServiceError
from models import User
from monitoring import auth_attempts_counter, auth_failures_counter
from schemas import GoogleProfile, UserResponse
from security import decode_refresh_token, generate_tokens, hash_password, verify_password
from services.external_service import GoogleOAuthClient

logger = logging.getLogger(__name__)


def issue_tokens(user: User) -> Dict[str, str]:
    return generate_tokens(user.id, user.email, user.role)


class IdentityService:
    """Registration, login, token refresh and Google account linking."""

    def __init__(self, google_client: GoogleOAuthClient):
        self.google = google_client

    def register(self, db: Session, email: str, password: str, full_name: str,
                 phone: Optional[str] = None) -> Tuple[User, Dict[str, str]]:
        """
        Create a password account.

        Raises:
            BusinessRuleError: If the email is already registered
        """
        email = email.lower()
        if db.query(User).filter(User.email == email).first():
            raise BusinessRuleError("Email already registered")

        user = User(email=email, password_hash=hash_password(password), full_name=full_name, phone=phone)
        db.add(user)
        db.commit()

        logger.info("User registered", extra={"user_id": user.id})
        return user, issue_tokens(user)

    def login(self, db: Session, email: str, password: str) -> Tuple[User, Dict[str, str]]:
        """
        Check email and password.

        Raises:
            AuthenticationError: Unknown email, Google-only account or wrong password
        """
        auth_attempts_counter.add(1, {"type": "login"})
        user = db.query(User).filter(User.email == email.lower()).first()
        if not user or not user.password_hash or not verify_password(password, user.password_hash):
            auth_failures_counter.add(1, {"reason": "invalid_credentials"})
            logger.warning("Login failed: Invalid credentials")
            raise AuthenticationError("Invalid credentials")

        logger.info("User logged in successfully", extra={"user_id": user.id})
        return user, issue_tokens(user)

    def refresh(self, db: Session, refresh_token: Optional[str]) -> Dict[str, str]:
        """
        Exchange a refresh token for a new token pair.

        Raises:
            BusinessRuleError: If no token is given
            AuthenticationError: If the token is invalid or the user is gone
        """
        if not refresh_token:
            raise BusinessRuleError("Refresh token required")

        try:
            payload = decode_refresh_token(refresh_token)
        except AuthenticationError:
            auth_failures_counter.add(1, {"reason": "invalid_refresh_token"})
            raise AuthenticationError("Invalid refresh token")

        user = db.query(User).filter(User.id == payload["id"]).first()
        if not user:
            raise AuthenticationError("User not found")
        return issue_tokens(user)

    @staticmethod
    def _profile(claims: Dict[str, Any]) -> GoogleProfile:
        try:
            return GoogleProfile(
                google_id=claims.get("sub") or claims.get("id"),
                email=claims.get("email"),
                name=claims.get("name"),
                picture=claims.get("picture"),
            )
        except ValidationError as e:
            logger.warning("Rejected Google profile", extra={"errors": e.error_count()})
            raise UpstreamServiceError("google", "Email not found in Google profile") from e

    def upsert_google_user(self, db: Session, profile: GoogleProfile) -> User:
        """
        Find the account for a Google profile, linking or creating it.

        Lookup is by Google id first, then by email; an email match without
        a Google id gets linked.
        """
        email = profile.email.lower()
        user = db.query(User).filter(User.google_id == profile.google_id).first()
        if not user:
            user = db.query(User).filter(User.email == email).first()

        if not user:
            user = User(
                email=email,
                google_id=profile.google_id,
                full_name=profile.name or "Google User",
                avatar_url=profile.picture,
            )
            db.add(user)
            logger.info("Created user from Google profile")
        elif not user.google_id:
            user.google_id = profile.google_id
            if profile.picture:
                user.avatar_url = profile.picture
            logger.info("Linked Google account", extra={"user_id": user.id})

        db.commit()
        return user

    async def google_mobile(self, db: Session, id_token: str) -> Tuple[User, Dict[str, str]]:
        auth_attempts_counter.add(1, {"type": "google_mobile"})
        claims = await self.google.verify_id_token(id_token)
        user = self.upsert_google_user(db, self._profile(claims))
        return user, issue_tokens(user)

    def google_authorization_url(self) -> str:
        return self.google.authorization_url()

    async def google_callback(self, db: Session, code: Optional[str]) -> str:
        """
        Finish the web OAuth flow.

        Returns:
            App deep link carrying the token pair and the user as JSON
        """
        if not code:
            raise BusinessRuleError("Authorization code required")

        auth_attempts_counter.add(1, {"type": "google_web"})
        access_token = await self.google.exchange_code(code)
        claims = await self.google.fetch_profile(access_token)
        user = self.upsert_google_user(db, self._profile(claims))
        tokens = issue_tokens(user)

        user_json = json.dumps(UserResponse.model_validate(user).model_dump(by_alias=True))
        query = urlencode({
            "accessToken": tokens["accessToken"],
            "refreshToken": tokens["refreshToken"],
            "user": user_json,
        })
        return f"{APP_DEEP_LINK}?{query}"
