"""
Per-request authentication.

Turns the request's cookies into a :class:`RequestPrincipal`. Two
credential sources are checked in order:

1. ``id_token`` cookie: a federated ID token, verified against the
   provider's signing keys and reconciled with local roles by the
   :class:`~auth.identity_resolver.IdentityResolver`.
2. ``session_token`` cookie: a server-side session created by local login.

Authentication never raises to the client. Any failure (missing cookie,
bad signature, expired session, inactive account, role sync error) yields
an anonymous principal and the guards decide whether that is acceptable.
"""

import hashlib
import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from config import Settings
from models import User

from . import session_service, user_store
from .exceptions import AuthError
from .identity_resolver import IdentityClaims, IdentityResolver
from .oidc_client import AuthClient

logger = logging.getLogger(__name__)

AUTH_METHOD_OIDC = "oidc"
AUTH_METHOD_SESSION = "session"


@dataclass(frozen=True)
class RequestPrincipal:
    """The authenticated user of a request, or nobody."""

    user: Optional[User] = None
    auth_method: Optional[str] = None

    @property
    def is_authenticated(self) -> bool:
        return self.user is not None


ANONYMOUS = RequestPrincipal()


def credential_fingerprint(raw_token: str) -> str:
    """Stable identifier of a credential; the token itself is never stored."""
    return hashlib.sha256(raw_token.encode("utf-8")).hexdigest()


class RequestAuthenticator:
    """
    Resolves the principal of an incoming request.

    Args:
        auth_client: Verifies federated ID tokens. ``None`` disables the
            federated path (no provider configured).
        resolver: Maps verified claims to a local user with synced roles.
        settings: Supplies cookie names and the roles claim path.
    """

    def __init__(
        self,
        auth_client: Optional[AuthClient],
        resolver: IdentityResolver,
        settings: Settings,
    ):
        self.auth_client = auth_client
        self.resolver = resolver
        self.settings = settings

    async def authenticate(self, request: Request, db: AsyncSession) -> RequestPrincipal:
        user = await self._from_id_token(request, db)
        if user is not None:
            logger.debug("Authenticated request", extra={"user_id": user.id, "auth_method": AUTH_METHOD_OIDC})
            return RequestPrincipal(user=user, auth_method=AUTH_METHOD_OIDC)

        user = await self._from_session(request, db)
        if user is not None:
            logger.debug("Authenticated request", extra={"user_id": user.id, "auth_method": AUTH_METHOD_SESSION})
            return RequestPrincipal(user=user, auth_method=AUTH_METHOD_SESSION)

        return ANONYMOUS

    async def _from_id_token(self, request: Request, db: AsyncSession) -> Optional[User]:
        raw_token = request.cookies.get(self.settings.ID_TOKEN_COOKIE_NAME)
        if not raw_token or self.auth_client is None:
            return None

        try:
            token_claims = await self.auth_client.verify_id_token(raw_token)
        except AuthError as exc:
            logger.debug(f"ID token rejected: {exc.detail}")
            return None

        try:
            claims = IdentityClaims.from_token_claims(
                token_claims, self.settings.OIDC_ROLES_CLAIM_PATH
            )
        except ValidationError:
            logger.warning("Verified ID token carries no subject, ignoring")
            return None

        try:
            user = await self.resolver.resolve(
                db, claims, fingerprint=credential_fingerprint(raw_token)
            )
        except AuthError as exc:
            logger.warning(f"Could not resolve user for subject {claims.sub}: {exc.detail}")
            return None
        except SQLAlchemyError as exc:
            logger.error(f"Database error resolving subject {claims.sub}: {exc}")
            await db.rollback()
            return None

        if not user.is_active:
            logger.info(f"User {user.username} is {user.status}, treating as unauthenticated")
            return None
        return user

    async def _from_session(self, request: Request, db: AsyncSession) -> Optional[User]:
        token = request.cookies.get(self.settings.SESSION_COOKIE_NAME)
        if not token:
            return None

        session = await session_service.get_user_session(db, token)
        if session is None:
            return None

        try:
            user = await user_store.get_user_by_id(db, session.user_id)
        except AuthError:
            return None

        if not user.is_active:
            return None
        return user
