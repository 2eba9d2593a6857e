"""
Authentication and authorization for the marketplace API.

Bearer credentials are ID tokens issued by the identity provider; the
verified email is the only trusted statement of who is calling.
"""

import base64
import binascii
import json
from enum import Enum
from typing import Dict, FrozenSet, Optional

import firebase_admin
import structlog
from firebase_admin import auth, credentials
from firebase_admin.exceptions import FirebaseError
from fastapi.concurrency import run_in_threadpool
from pydantic import BaseModel

from bookmarket.errors import Forbidden, Unauthenticated, UpstreamFailure
from bookmarket.models import Role

logger = structlog.get_logger(__name__)


class Capability(str, Enum):
    """What a route requires of its caller."""
    AUTHENTICATED = "authenticated"
    LIBRARIAN_OR_ADMIN = "librarian-or-admin"
    ADMIN_ONLY = "admin-only"


CAPABILITY_ROLES: Dict[Capability, FrozenSet[Role]] = {
    Capability.AUTHENTICATED: frozenset({Role.USER, Role.LIBRARIAN, Role.ADMIN}),
    Capability.LIBRARIAN_OR_ADMIN: frozenset({Role.LIBRARIAN, Role.ADMIN}),
    Capability.ADMIN_ONLY: frozenset({Role.ADMIN}),
}


class BoundIdentity(BaseModel):
    """The verified caller of the current request."""
    email: str
    role: Optional[Role] = None

    @property
    def is_admin(self) -> bool:
        return self.role == Role.ADMIN


def is_allowed(role: Optional[Role], capability: Capability) -> bool:
    """
    Decide whether a caller holding `role` may use a route requiring `capability`.

    A verified credential alone satisfies `authenticated`; the other
    capabilities need a stored role from the allowed set.

    Args:
        role: Stored role of the caller, None when no user record exists
        capability: Capability the route requires

    Returns:
        True if allowed, False otherwise
    """
    if capability == Capability.AUTHENTICATED:
        return True
    try:
        stored_role = Role(role)
    except ValueError:
        return False
    return stored_role in CAPABILITY_ROLES[capability]


def ensure_self(identity: BoundIdentity, email: Optional[str], allow_admin: bool = False) -> None:
    """
    Reject a request whose path or body email is not the bound email.

    Raises:
        Forbidden: If the emails differ and the admin bypass does not apply
    """
    if email == identity.email:
        return
    if allow_admin and identity.is_admin:
        return
    logger.warning("Ownership check failed", caller=identity.email, target=email)
    raise Forbidden()


def decode_service_account(service_key_b64: str) -> Dict:
    """Decode the base64-encoded service account JSON."""
    try:
        decoded = base64.b64decode(service_key_b64).decode("utf-8")
        return json.loads(decoded)
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        raise ValueError("FB_SERVICE_KEY is not base64-encoded JSON") from e


class FirebaseIdentityVerifier:
    """Verifies bearer ID tokens with firebase-admin."""

    def __init__(self, service_key_b64: str, app_name: str = "bookmarket"):
        """
        Initialize the verifier.

        Args:
            service_key_b64: Base64-encoded service account JSON
            app_name: Name of the firebase-admin app to register
        """
        service_account = decode_service_account(service_key_b64)
        try:
            self.app = firebase_admin.get_app(app_name)
        except ValueError:
            self.app = firebase_admin.initialize_app(
                credentials.Certificate(service_account), name=app_name
            )
        logger.info("Identity verifier initialized", project_id=service_account.get("project_id"))

    def _verify_sync(self, token: str) -> Dict:
        return auth.verify_id_token(token, app=self.app)

    async def verify(self, token: str) -> str:
        """
        Verify an ID token and return the verified email.

        Raises:
            Unauthenticated: If the token is invalid, expired, revoked or has no email
            UpstreamFailure: If the identity provider cannot be reached
        """
        try:
            decoded = await run_in_threadpool(self._verify_sync, token)
        except (auth.InvalidIdTokenError, auth.UserDisabledError, ValueError) as e:
            logger.warning("Token verification failed", error_type=type(e).__name__)
            raise Unauthenticated() from e
        except (auth.CertificateFetchError, FirebaseError) as e:
            logger.error("Identity provider error", error=str(e))
            raise UpstreamFailure("Identity provider unavailable") from e

        email = decoded.get("email")
        if not email:
            logger.warning("Token has no email claim", uid=decoded.get("uid"))
            raise Unauthenticated()
        return email
