"""External service communication layer.

Google, the AI completion providers and the Sepay gateway are all reached
through the shared ``httpx.AsyncClient``. Every failure surfaces as
``UpstreamServiceError``; nothing here retries.
"""
import hashlib
import hmac
import logging
import time
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

from config import (
    AI_PROVIDER,
    FRONTEND_URL,
    GEMINI_API_KEY,
    GEMINI_API_URL,
    GEMINI_MODEL,
    GOOGLE_AUTH_URL,
    GOOGLE_CALLBACK_URL,
    GOOGLE_CLIENT_ID,
    GOOGLE_CLIENT_SECRET,
    GOOGLE_TOKEN_URL,
    GOOGLE_TOKENINFO_URL,
    GOOGLE_USERINFO_URL,
    HTTP_TIMEOUT_SECONDS,
    OPENAI_API_KEY,
    OPENAI_API_URL,
    OPENAI_MODEL,
    SEPAY_API_KEY,
    SEPAY_API_URL,
    SEPAY_MERCHANT_ID,
    SEPAY_WEBHOOK_SECRET,
)
from errors import AuthenticationError, UpstreamServiceError
from monitoring import external_ai_duration_histogram, external_payment_duration_histogram

logger = logging.getLogger(__name__)


def _error_message(response: httpx.Response, default: str) -> str:
    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict):
            error = error.get("message")
        return body.get("message") or error or body.get("error_description") or default
    return default


# --- Sepay ---

def _signature_value(value: Any) -> str:
    # Values are stringified the way the gateway does on its side
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (list, tuple)):
        return ",".join(_signature_value(v) for v in value)
    if isinstance(value, dict):
        return "[object Object]"
    return str(value)


def sign_payload(data: Dict[str, Any], secret: str = SEPAY_WEBHOOK_SECRET) -> str:
    """
    HMAC-SHA256 over ``key=value`` pairs sorted by key and joined with ``&``.

    Args:
        data: Fields to sign, without the signature itself
        secret: Shared webhook secret

    Returns:
        Hex digest
    """
    message = "&".join(f"{key}={_signature_value(data[key])}" for key in sorted(data))
    return hmac.new(secret.encode("utf-8"), message.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_signature(payload: Dict[str, Any], secret: str = SEPAY_WEBHOOK_SECRET) -> bool:
    signature = payload.get("signature")
    if not isinstance(signature, str) or not signature:
        return False
    data = {key: value for key, value in payload.items() if key != "signature"}
    return hmac.compare_digest(signature, sign_payload(data, secret))


class SepayClient:
    """Client for the Sepay payment gateway."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        api_url: str = SEPAY_API_URL,
        merchant_id: str = SEPAY_MERCHANT_ID,
        api_key: str = SEPAY_API_KEY,
        secret: str = SEPAY_WEBHOOK_SECRET,
        frontend_url: str = FRONTEND_URL
    ):
        self.http_client = http_client
        self.api_url = api_url.rstrip("/")
        self.merchant_id = merchant_id
        self.api_key = api_key
        self.secret = secret
        self.frontend_url = frontend_url

    async def _call(self, operation: str, method: str, path: str, **kwargs) -> Dict[str, Any]:
        # HTTPXClientInstrumentor already creates spans for HTTP calls
        start_time = time.time()
        status = "success"
        status_code = None
        try:
            response = await self.http_client.request(
                method,
                f"{self.api_url}{path}",
                headers={"X-API-Key": self.api_key},
                **kwargs
            )
            status_code = response.status_code
            if response.status_code >= 400:
                status = "error"
                message = _error_message(response, f"Failed to {operation.replace('_', ' ')}")
                logger.warning("Sepay returned error status", extra={
                    "operation": operation,
                    "status_code": response.status_code,
                    "error": message
                })
                raise UpstreamServiceError("sepay", message)
            return response.json()
        except httpx.HTTPError as e:
            status = "error"
            status_code = 0  # Connection failure
            logger.error("Sepay request failed", extra={"operation": operation, "error": str(e)})
            raise UpstreamServiceError("sepay", f"Failed to {operation.replace('_', ' ')}") from e
        finally:
            external_payment_duration_histogram.record(
                time.time() - start_time,
                {
                    "operation": operation,
                    "status": status,
                    "status_code": str(status_code) if status_code else "0"
                }
            )

    async def create_payment(self, order_id: str, amount: float, description: str) -> Dict[str, Any]:
        """
        Create a QR payment for an order.

        Returns:
            qrCode, paymentUrl and transactionId from the gateway

        Raises:
            UpstreamServiceError: If the gateway rejects the request or is unreachable
        """
        payload = {
            "merchantId": self.merchant_id,
            "orderId": order_id,
            "amount": amount,
            "description": description,
            "returnUrl": f"{self.frontend_url}/payment/result",
            "cancelUrl": f"{self.frontend_url}/payment/cancel",
        }
        payload["signature"] = sign_payload(payload, self.secret)

        data = await self._call("create_payment", "POST", "/v1/payments/create", json=payload)
        return {
            "qr_code": data.get("qrCode"),
            "payment_url": data.get("paymentUrl"),
            "transaction_id": data.get("transactionId"),
        }

    async def get_payment_status(self, transaction_id: str) -> Dict[str, Any]:
        return await self._call("check_payment_status", "GET", f"/v1/payments/{transaction_id}")


# --- AI chat completion ---

SYSTEM_PROMPT = (
    "You are the assistant of a shop that sells mechanical products and tools. "
    "Advise customers on products, help them find suitable items, answer questions "
    "about their orders and explain warranty and return policies. "
    "Reply in Vietnamese, friendly and professional."
)


class ChatCompletionClient:
    """Completion call to the configured AI provider."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        provider: str = AI_PROVIDER,
        timeout: float = HTTP_TIMEOUT_SECONDS
    ):
        self.http_client = http_client
        self.provider = provider
        self.timeout = timeout

    async def complete(self, history: List[Dict[str, str]], message: str) -> str:
        """
        Ask the provider for a reply.

        Args:
            history: Earlier turns as {"role", "content"}, oldest first
            message: New user message

        Returns:
            Assistant reply text

        Raises:
            UpstreamServiceError: On provider error, timeout or unknown provider
        """
        messages = [{"role": "system", "content": SYSTEM_PROMPT}, *history, {"role": "user", "content": message}]

        start_time = time.time()
        status = "success"
        try:
            if self.provider == "openai":
                return await self._openai(messages)
            if self.provider == "gemini":
                return await self._gemini(messages)
            status = "error"
            raise UpstreamServiceError("ai", "Invalid AI provider")
        except httpx.TimeoutException as e:
            status = "timeout"
            logger.error("AI provider timed out", extra={"provider": self.provider})
            raise UpstreamServiceError("ai", "AI provider timed out") from e
        except httpx.HTTPError as e:
            status = "error"
            logger.error("AI provider request failed", extra={"provider": self.provider, "error": str(e)})
            raise UpstreamServiceError("ai", "Failed to reach AI provider") from e
        except UpstreamServiceError:
            status = "error"
            raise
        finally:
            external_ai_duration_histogram.record(
                time.time() - start_time,
                {"provider": self.provider, "status": status}
            )

    def _check(self, response: httpx.Response) -> Dict[str, Any]:
        if response.status_code >= 400:
            message = _error_message(response, "Failed to process message")
            logger.warning("AI provider returned error status", extra={
                "provider": self.provider,
                "status_code": response.status_code,
                "error": message
            })
            raise UpstreamServiceError("ai", message)
        return response.json()

    async def _openai(self, messages: List[Dict[str, str]]) -> str:
        response = await self.http_client.post(
            OPENAI_API_URL,
            json={"model": OPENAI_MODEL, "messages": messages, "temperature": 0.7, "max_tokens": 500},
            headers={"Authorization": f"Bearer {OPENAI_API_KEY}"},
            timeout=self.timeout
        )
        data = self._check(response)
        try:
            return data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamServiceError("ai", "Unexpected AI provider response") from e

    async def _gemini(self, messages: List[Dict[str, str]]) -> str:
        prompt = "\n\n".join(f"{m['role']}: {m['content']}" for m in messages)
        response = await self.http_client.post(
            f"{GEMINI_API_URL}/{GEMINI_MODEL}:generateContent",
            params={"key": GEMINI_API_KEY},
            json={"contents": [{"parts": [{"text": prompt}]}]},
            timeout=self.timeout
        )
        data = self._check(response)
        try:
            return data["candidates"][0]["content"]["parts"][0]["text"]
        except (KeyError, IndexError, TypeError) as e:
            raise UpstreamServiceError("ai", "Unexpected AI provider response") from e


# --- Google sign-in ---

GOOGLE_ISSUERS = ("accounts.google.com", "https://accounts.google.com")


class GoogleOAuthClient:
    """Google OAuth2 web flow and ID-token verification."""

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        client_id: str = GOOGLE_CLIENT_ID,
        client_secret: str = GOOGLE_CLIENT_SECRET,
        callback_url: str = GOOGLE_CALLBACK_URL
    ):
        self.http_client = http_client
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url

    def authorization_url(self, state: Optional[str] = None) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "response_type": "code",
            "scope": "profile email",
        }
        if state:
            params["state"] = state
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def _get_json(self, response_coro, failure: str) -> Dict[str, Any]:
        try:
            response = await response_coro
        except httpx.HTTPError as e:
            logger.error("Google request failed", extra={"error": str(e)})
            raise UpstreamServiceError("google", failure) from e
        if response.status_code >= 400:
            message = _error_message(response, failure)
            logger.warning("Google returned error status", extra={
                "status_code": response.status_code,
                "error": message
            })
            raise UpstreamServiceError("google", message)
        return response.json()

    async def exchange_code(self, code: str) -> str:
        """Trade an authorization code for a Google access token."""
        data = await self._get_json(
            self.http_client.post(GOOGLE_TOKEN_URL, data={
                "code": code,
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "redirect_uri": self.callback_url,
                "grant_type": "authorization_code",
            }),
            "Failed to exchange Google authorization code"
        )
        token = data.get("access_token")
        if not token:
            raise UpstreamServiceError("google", "Google did not return an access token")
        return token

    async def fetch_profile(self, access_token: str) -> Dict[str, Any]:
        return await self._get_json(
            self.http_client.get(GOOGLE_USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"}),
            "Failed to fetch Google profile"
        )

    async def verify_id_token(self, id_token: str) -> Dict[str, Any]:
        """
        Verify a mobile ID token with Google.

        Returns:
            Token claims (sub, email, name, picture, ...)

        Raises:
            AuthenticationError: If Google rejects the token or the audience
                or issuer do not match
            UpstreamServiceError: If Google cannot be reached
        """
        try:
            response = await self.http_client.get(GOOGLE_TOKENINFO_URL, params={"id_token": id_token})
        except httpx.HTTPError as e:
            logger.error("Google request failed", extra={"error": str(e)})
            raise UpstreamServiceError("google", "Failed to verify Google token") from e
        if response.status_code >= 500:
            raise UpstreamServiceError("google", "Failed to verify Google token")
        if response.status_code >= 400:
            raise AuthenticationError("Invalid Google token")

        claims = response.json()
        if claims.get("aud") != self.client_id:
            logger.warning("Google token audience mismatch", extra={"aud": claims.get("aud")})
            raise AuthenticationError("Invalid Google token")
        if claims.get("iss") not in GOOGLE_ISSUERS:
            raise AuthenticationError("Invalid Google token")
        return claims
