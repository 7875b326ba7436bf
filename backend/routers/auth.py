"""
Login, logout and self-service profile endpoints.

Federated login (authorization code + PKCE):
    GET  /login                    - redirect to the identity provider
    GET  /callback                 - exchange code, sync roles, set id_token cookie

Local accounts:
    POST /api/users/register       - self-registration (tenant role)
    POST /api/users/login          - username/password, sets session cookie

Authenticated:
    POST /api/users/logout         - end the session, clear both cookies
    GET  /api/users/profile        - current user with roles
    PUT  /api/users/profile        - update own name / phone number
"""

import logging
import secrets
from datetime import datetime, timezone
from typing import Optional

import bcrypt as _bcrypt
import httpx

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from fastapi.responses import RedirectResponse
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import get_db
from models import User
from schemas import LocalLoginRequest, LoginResponse, ProfileUpdate, UserRegister, UserResponse
from auth import role_store, session_service, user_store
from auth.dependencies import get_auth_client, get_identity_resolver, require_authenticated
from auth.exceptions import InvalidCredentialsError
from auth.identity_resolver import IdentityClaims, IdentityResolver
from auth.authenticator import credential_fingerprint
from auth.oidc_client import (
    AuthClient,
    OAuthTokenError,
    generate_code_challenge,
    generate_code_verifier,
)
from auth.permissions import DEFAULT_ROLE
from utils.audit import audit

logger = logging.getLogger(__name__)
router = APIRouter(tags=["auth"])

CODE_VERIFIER_COOKIE = "code_verifier"
STATE_COOKIE = "oauth_state"


def _hash_password(password: str) -> str:
    """Hash a password with bcrypt."""
    return _bcrypt.hashpw(password.encode("utf-8"), _bcrypt.gensalt()).decode("utf-8")


def _verify_password(password: str, hashed: str) -> bool:
    """Verify a password against a bcrypt hash."""
    return _bcrypt.checkpw(password.encode("utf-8"), hashed.encode("utf-8"))


def _set_cookie(response: Response, name: str, value: str, max_age: int) -> None:
    response.set_cookie(
        key=name,
        value=value,
        max_age=max_age,
        path="/",
        httponly=True,
        samesite="lax",
        secure=settings.COOKIE_SECURE,
    )


def _require_provider(auth_client: Optional[AuthClient]) -> AuthClient:
    if auth_client is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Federated login is not configured",
        )
    return auth_client


# ── Federated login ────────────────────────────────────────────────────


@router.get("/login")
async def login_redirect(auth_client: Optional[AuthClient] = Depends(get_auth_client)):
    """Start the authorization-code + PKCE flow."""
    client = _require_provider(auth_client)

    verifier = generate_code_verifier()
    state = secrets.token_urlsafe(16)
    try:
        url = await client.authorization_url(state, generate_code_challenge(verifier))
    except httpx.HTTPError as exc:
        logger.error(f"OIDC discovery failed: {exc}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Identity provider unavailable",
        )

    response = RedirectResponse(url, status_code=status.HTTP_302_FOUND)
    _set_cookie(response, CODE_VERIFIER_COOKIE, verifier, settings.LOGIN_FLOW_COOKIE_MAX_AGE_SECONDS)
    _set_cookie(response, STATE_COOKIE, state, settings.LOGIN_FLOW_COOKIE_MAX_AGE_SECONDS)
    return response


@router.get("/callback")
async def oidc_callback(
    request: Request,
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    db: AsyncSession = Depends(get_db),
    auth_client: Optional[AuthClient] = Depends(get_auth_client),
    resolver: IdentityResolver = Depends(get_identity_resolver),
):
    """
    Complete federated login: verify state, exchange the code, verify the
    ID token, reconcile the user's roles and set the ``id_token`` cookie.
    """
    client = _require_provider(auth_client)

    if error:
        logger.warning(f"Identity provider returned error: {error}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Login was not completed")
    if not code:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing authorization code")

    expected_state = request.cookies.get(STATE_COOKIE)
    if not expected_state or not state or not secrets.compare_digest(expected_state, state):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid login state")

    try:
        tokens = await client.exchange_code(code, request.cookies.get(CODE_VERIFIER_COOKIE))
    except (OAuthTokenError, httpx.HTTPError) as exc:
        logger.error(f"Token exchange failed: {exc}")
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Token exchange failed")

    raw_token = tokens["id_token"]
    # TokenVerificationError propagates as 401 through the registered handler
    token_claims = await client.verify_id_token(raw_token)
    try:
        claims = IdentityClaims.from_token_claims(token_claims, settings.OIDC_ROLES_CLAIM_PATH)
    except ValidationError:
        logger.warning("Verified ID token carries no subject, rejecting login")
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="ID token has no subject")

    user = await resolver.resolve(db, claims, fingerprint=credential_fingerprint(raw_token))
    if not user.is_active:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Account is disabled")

    response = RedirectResponse("/", status_code=status.HTTP_302_FOUND)
    _set_cookie(response, settings.ID_TOKEN_COOKIE_NAME, raw_token, settings.ID_TOKEN_MAX_AGE_SECONDS)
    response.delete_cookie(CODE_VERIFIER_COOKIE, path="/")
    response.delete_cookie(STATE_COOKIE, path="/")
    return response


# ── Local accounts ─────────────────────────────────────────────────────


@router.post(
    "/api/users/register",
    response_model=UserResponse,
    status_code=status.HTTP_201_CREATED,
)
async def register(body: UserRegister, db: AsyncSession = Depends(get_db)):
    """Create a local account holding the default role."""
    user = await user_store.create_user(
        db,
        username=body.username,
        email=body.email,
        first_name=body.first_name,
        last_name=body.last_name,
        phone_number=body.phone_number,
        email_verified=False,
        status="active",
        local_password_hash=_hash_password(body.password),
    )
    user_id = user.id

    role = await role_store.get_role_by_name(db, DEFAULT_ROLE)
    await role_store.assign_role(db, user_id, role.id)

    user = await user_store.get_user_by_id(db, user_id)
    audit.log_user_change("REGISTER", user.username, user.id)
    return UserResponse.model_validate(user)


@router.post("/api/users/login", response_model=LoginResponse)
async def local_login(
    body: LocalLoginRequest,
    request: Request,
    response: Response,
    db: AsyncSession = Depends(get_db),
):
    """Authenticate with username/password and start a server-side session."""
    user = await user_store.get_user_by_username(db, body.username)
    if (
        user is None
        or not user.local_password_hash
        or not _verify_password(body.password, user.local_password_hash)
    ):
        audit.log(
            action="LOGIN",
            actor=body.username,
            resource="User",
            resource_id=str(user.id) if user else "unknown",
            status="failure",
            details={"method": "local"},
        )
        raise InvalidCredentialsError()

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Account is disabled",
        )

    session = await session_service.create_user_session(
        db,
        user.id,
        ip_address=session_service.get_client_ip(request),
        user_agent=request.headers.get("user-agent"),
    )
    user = await user_store.update_user(db, user.id, last_login_at=datetime.now(timezone.utc))

    _set_cookie(
        response,
        settings.SESSION_COOKIE_NAME,
        session.session_token,
        settings.SESSION_TTL_HOURS * 3600,
    )
    audit.log_login(user.username, user.id, method="local")
    return LoginResponse(user=UserResponse.model_validate(user), expires_at=session.expires_at)


# ── Authenticated ──────────────────────────────────────────────────────


@router.post("/api/users/logout")
async def logout(
    request: Request,
    response: Response,
    user: User = Depends(require_authenticated()),
    db: AsyncSession = Depends(get_db),
):
    """Delete the server-side session (if any) and clear both credential cookies."""
    token = request.cookies.get(settings.SESSION_COOKIE_NAME)
    if token:
        await session_service.delete_user_session(db, token)

    response.delete_cookie(settings.SESSION_COOKIE_NAME, path="/")
    response.delete_cookie(settings.ID_TOKEN_COOKIE_NAME, path="/")

    audit.log(
        action="LOGOUT",
        actor=user.username,
        resource="User",
        resource_id=str(user.id),
        status="success",
    )
    return {"status": "ok", "message": "Logged out"}


@router.get("/api/users/profile", response_model=UserResponse)
async def get_profile(user: User = Depends(require_authenticated())):
    """Get the authenticated user's profile and roles."""
    return UserResponse.model_validate(user)


@router.put("/api/users/profile", response_model=UserResponse)
async def update_profile(
    body: ProfileUpdate,
    user: User = Depends(require_authenticated()),
    db: AsyncSession = Depends(get_db),
):
    changes = body.model_dump(exclude_unset=True)
    # Names are NOT NULL; an explicit null leaves them unchanged
    for field in ("first_name", "last_name"):
        if field in changes and changes[field] is None:
            del changes[field]

    updated = await user_store.update_user(db, user.id, **changes)
    audit.log_user_change("UPDATE_PROFILE", user.username, user.id, changes)
    return UserResponse.model_validate(updated)
