"""
OpenID Connect client for the single configured identity provider.

Handles provider discovery, the authorization-code + PKCE redirect, code
exchange and ID-token verification. Uses ``httpx`` for HTTP calls and
``python-jose`` for JWT signature and claim checks.

One :class:`AuthClient` is built at startup and shared through
``app.state``; discovery documents and signing keys are cached on the
instance.
"""

import base64
import hashlib
import logging
import secrets
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import httpx
from jose import JWTError, jwt

from config import settings

from .exceptions import TokenVerificationError

logger = logging.getLogger(__name__)

# Asymmetric algorithms only; an HS* token would be checked against public key material
ID_TOKEN_ALGORITHMS = ["RS256", "RS384", "RS512", "ES256", "ES384", "ES512"]


class OAuthTokenError(Exception):
    """Raised when the token endpoint returns an error response."""


def generate_code_verifier() -> str:
    """Return a PKCE code verifier (43 URL-safe characters)."""
    return secrets.token_urlsafe(32)


def generate_code_challenge(verifier: str) -> str:
    """S256 code challenge for ``verifier``."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


class AuthClient:
    """
    Talks to the identity provider on behalf of the application.

    Args:
        issuer: Issuer URL (e.g. ``https://sso.example.com/realms/pmaas``).
        client_id: OAuth2 client id, also the expected ID-token audience.
        client_secret: OAuth2 client secret (may be empty for public clients).
        redirect_uri: Callback URL registered with the provider.
        scopes: Scopes requested on the authorize redirect.
        timeout: Timeout in seconds for every provider call.
    """

    def __init__(
        self,
        issuer: str,
        client_id: str,
        client_secret: str = "",
        redirect_uri: str = "",
        scopes: Optional[list[str]] = None,
        timeout: float = 10.0,
    ):
        self.issuer = issuer.rstrip("/")
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.scopes = scopes or ["openid", "profile", "email"]
        self.timeout = timeout
        self._discovery: Optional[Dict[str, Any]] = None
        self._jwks: Optional[Dict[str, Any]] = None

    @classmethod
    def from_settings(cls) -> Optional["AuthClient"]:
        """Build from application settings, or ``None`` when no issuer is configured."""
        if not settings.OIDC_ISSUER:
            return None
        return cls(
            issuer=settings.OIDC_ISSUER,
            client_id=settings.OIDC_CLIENT_ID,
            client_secret=settings.OIDC_CLIENT_SECRET,
            redirect_uri=settings.OIDC_REDIRECT_URI,
            scopes=settings.OIDC_SCOPES,
            timeout=settings.OIDC_HTTP_TIMEOUT_SECONDS,
        )

    async def discover(self) -> Dict[str, Any]:
        """
        Fetch ``.well-known/openid-configuration`` once per client.

        Raises:
            httpx.HTTPError: the provider is unreachable or answered with an error.
        """
        if self._discovery is None:
            url = f"{self.issuer}/.well-known/openid-configuration"
            async with httpx.AsyncClient() as client:
                resp = await client.get(url, timeout=self.timeout)
                resp.raise_for_status()
                self._discovery = resp.json()
        return self._discovery

    async def _get_jwks(self, refresh: bool = False) -> Dict[str, Any]:
        if self._jwks is None or refresh:
            config = await self.discover()
            async with httpx.AsyncClient() as client:
                resp = await client.get(config["jwks_uri"], timeout=self.timeout)
                resp.raise_for_status()
                self._jwks = resp.json()
        return self._jwks

    async def authorization_url(self, state: str, code_challenge: str) -> str:
        """Build the provider redirect for an authorization-code + PKCE login."""
        config = await self.discover()
        params = {
            "response_type": "code",
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "scope": " ".join(self.scopes),
            "state": state,
            "code_challenge": code_challenge,
            "code_challenge_method": "S256",
        }
        return f"{config['authorization_endpoint']}?{urlencode(params)}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> Dict[str, Any]:
        """
        Exchange an authorization code for tokens.

        Returns:
            Token response dict (``access_token``, ``id_token``, ...).

        Raises:
            OAuthTokenError: the provider reported an error or sent no ID token.
            httpx.HTTPError: transport failure or non-2xx response.
        """
        config = await self.discover()
        data = {
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
            "client_id": self.client_id,
        }
        if self.client_secret:
            data["client_secret"] = self.client_secret
        if code_verifier:
            data["code_verifier"] = code_verifier

        async with httpx.AsyncClient() as client:
            resp = await client.post(
                config["token_endpoint"],
                data=data,
                headers={"Accept": "application/json"},
                timeout=self.timeout,
            )
            resp.raise_for_status()
            result = resp.json()

        if "error" in result:
            desc = result.get("error_description", "")
            raise OAuthTokenError(
                f"Token endpoint returned error: {result['error']}"
                + (f" ({desc})" if desc else "")
            )
        if "id_token" not in result:
            raise OAuthTokenError("Token endpoint response missing id_token")

        return result

    async def verify_id_token(self, raw_token: str) -> Dict[str, Any]:
        """
        Verify an ID token's signature, issuer, audience and expiry.

        Returns:
            The decoded claims.

        Raises:
            TokenVerificationError: the token is malformed, expired, signed
                by an unknown key, or issued for another client.
        """
        try:
            header = jwt.get_unverified_header(raw_token)
        except JWTError as exc:
            raise TokenVerificationError(f"Malformed ID token: {exc}") from exc

        try:
            jwks = await self._get_jwks()
            kid = header.get("kid")
            if kid and not any(k.get("kid") == kid for k in jwks.get("keys", [])):
                # Provider rotated its signing keys since the last fetch
                jwks = await self._get_jwks(refresh=True)
        except (httpx.HTTPError, KeyError, ValueError) as exc:
            raise TokenVerificationError(f"Could not load signing keys: {exc}") from exc

        try:
            return jwt.decode(
                raw_token,
                jwks,
                algorithms=ID_TOKEN_ALGORITHMS,
                audience=self.client_id,
                issuer=self.issuer,
                options={"verify_at_hash": False},
            )
        except JWTError as exc:
            raise TokenVerificationError(f"Invalid ID token: {exc}") from exc

    def __repr__(self):
        return f"<AuthClient issuer={self.issuer!r} client_id={self.client_id!r}>"
