"""
FastAPI dependencies: service handles from app state and the auth gates.
"""

from typing import Optional

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from bookmarket.auth import BoundIdentity, Capability, FirebaseIdentityVerifier, is_allowed
from bookmarket.config import MarketplaceConfig
from bookmarket.database import MarketplaceDatabaseService
from bookmarket.errors import Forbidden, Unauthenticated, UpstreamFailure
from bookmarket.models import Role
from bookmarket.payments import StripePaymentBroker

bearer_scheme = HTTPBearer(auto_error=False)


def _state(request: Request, name: str):
    service = getattr(request.app.state, name, None)
    if service is None:
        raise UpstreamFailure("Service not available")
    return service


def get_settings(request: Request) -> MarketplaceConfig:
    return request.app.state.settings


def get_db_service(request: Request) -> MarketplaceDatabaseService:
    return _state(request, "db_service")


def get_identity_verifier(request: Request) -> FirebaseIdentityVerifier:
    return _state(request, "identity_verifier")


def get_payment_broker(request: Request) -> StripePaymentBroker:
    return _state(request, "payment_broker")


async def get_current_email(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
    verifier: FirebaseIdentityVerifier = Depends(get_identity_verifier),
) -> str:
    """Verify the bearer credential and return the bound email."""
    if credentials is None or not credentials.credentials:
        raise Unauthenticated()
    return await verifier.verify(credentials.credentials)


def require(capability: Capability):
    """
    Build a dependency that enforces `capability` and yields the caller.

    Role-gated capabilities look up the stored role of the bound email;
    a caller without a user record is rejected.
    """

    async def dependency(
        email: str = Depends(get_current_email),
        db_service: MarketplaceDatabaseService = Depends(get_db_service),
    ) -> BoundIdentity:
        role: Optional[str] = None
        if capability != Capability.AUTHENTICATED:
            role = await db_service.get_user_role(email)
            if not is_allowed(role, capability):
                raise Forbidden()
        return BoundIdentity(email=email, role=Role(role) if role else None)

    return dependency


require_user = require(Capability.AUTHENTICATED)
require_librarian = require(Capability.LIBRARIAN_OR_ADMIN)
require_admin = require(Capability.ADMIN_ONLY)
