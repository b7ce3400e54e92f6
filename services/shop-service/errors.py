"""Service-layer exceptions.

Services raise these; routers translate them to HTTP status codes the same
way they translate ``ValueError`` (400) and missing records (404).
"""


class NotFoundError(LookupError):
    """Record does not exist or is not owned by the caller."""


class BusinessRuleError(ValueError):
    """Request is well-formed but violates a business rule."""


class InsufficientStockError(BusinessRuleError):
    """Requested quantity exceeds available stock."""

    def __init__(self, product_name: str):
        super().__init__(f"Insufficient stock for {product_name}")
        self.product_name = product_name


class InvalidTransitionError(BusinessRuleError):
    """Order status change not allowed from the current status."""


class AuthenticationError(Exception):
    """Credentials, token or signature could not be verified."""


class UpstreamServiceError(Exception):
    """Third-party dependency failed or timed out."""

    def __init__(self, service: str, message: str):
        super().__init__(message)
        self.service = service
