"""
Pytest configuration and fixtures for PMaaS API tests.

Provides:
- Async SQLite in-memory database with the system roles seeded
- A fake identity provider standing in for the OIDC client
- FastAPI app with dependency overrides
- AsyncClient for testing async endpoints
- Helpers to create users with roles and log them in
"""

from datetime import timedelta
from typing import Any, Dict, Optional

import bcrypt
import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from auth import role_store, session_service, user_store
from auth.dependencies import get_auth_client, get_authenticator
from auth.exceptions import TokenVerificationError
from database import Base, enable_sqlite_foreign_keys, get_db
from main import app, build_authenticator


class FakeAuthClient:
    """
    In-process replacement for :class:`auth.oidc_client.AuthClient`.

    Tokens are opaque strings registered with :meth:`issue`; verifying any
    other string fails the way an invalid signature would.
    """

    issuer = "https://idp.test/realms/pmaas"

    def __init__(self):
        self.tokens: Dict[str, Dict[str, Any]] = {}
        self.codes: Dict[str, str] = {}
        self.verify_calls = 0

    def issue(
        self,
        token: str,
        sub: str,
        roles: Optional[list] = None,
        username: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        claims: Dict[str, Any] = {
            "sub": sub,
            "email": email or f"{sub}@example.com",
            "email_verified": True,
            "given_name": "Test",
            "family_name": sub.title(),
        }
        if username:
            claims["preferred_username"] = username
        if roles is not None:
            claims["realm_access"] = {"roles": roles}
        self.tokens[token] = claims
        return token

    async def authorization_url(self, state: str, code_challenge: str) -> str:
        return f"{self.issuer}/protocol/openid-connect/auth?state={state}&code_challenge={code_challenge}"

    async def exchange_code(self, code: str, code_verifier: Optional[str] = None) -> Dict[str, Any]:
        return {"access_token": "access", "id_token": self.codes[code]}

    async def verify_id_token(self, raw_token: str) -> Dict[str, Any]:
        self.verify_calls += 1
        if raw_token not in self.tokens:
            raise TokenVerificationError("Invalid ID token: signature verification failed")
        return dict(self.tokens[raw_token])


@pytest_asyncio.fixture
async def session_factory():
    """
    Fresh in-memory database per test, tables created and roles seeded.

    Yields:
        async_sessionmaker bound to the test engine.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        future=True,
        poolclass=StaticPool,
    )
    enable_sqlite_foreign_keys(engine)

    factory = async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    async with factory() as session:
        await role_store.seed_roles(session)

    yield factory

    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def fake_auth_client():
    return FakeAuthClient()


@pytest_asyncio.fixture
async def async_client(session_factory, fake_auth_client):
    """
    Create an AsyncClient pointing to the FastAPI app with the in-memory
    test database and the fake identity provider.

    Yields:
        httpx.AsyncClient: Async HTTP client for making requests to the app.
    """
    authenticator = build_authenticator(fake_auth_client)

    async def override_get_db():
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_auth_client] = lambda: fake_auth_client
    app.dependency_overrides[get_authenticator] = lambda: authenticator

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def make_user(session_factory):
    """
    Factory creating a user holding ``roles``; returns the user id.

    Usage::

        user_id = await make_user("alice", roles=["viewer"], password="s3cret-pass")
    """

    async def _make_user(
        username: str,
        roles: Optional[list] = None,
        password: Optional[str] = None,
        status: str = "active",
        external_id: Optional[str] = None,
    ) -> int:
        async with session_factory() as db:
            fields = dict(
                username=username,
                email=f"{username}@example.com",
                status=status,
                external_id=external_id,
            )
            if password:
                fields["local_password_hash"] = bcrypt.hashpw(
                    password.encode("utf-8"), bcrypt.gensalt()
                ).decode("utf-8")
            user = await user_store.create_user(db, **fields)
            user_id = user.id
            for role_name in roles or []:
                role = await role_store.get_role_by_name(db, role_name)
                await role_store.assign_role(db, user_id, role.id)
            return user_id

    return _make_user


@pytest.fixture
def login_as(session_factory, async_client):
    """
    Give the client a live session cookie for ``user_id``.

    Clears any credential cookie set earlier in the test.
    """

    async def _login_as(user_id: int, ttl: Optional[timedelta] = None) -> str:
        async with session_factory() as db:
            session = await session_service.create_user_session(db, user_id, ttl=ttl)
            token = session.session_token
        async_client.cookies.clear()
        async_client.cookies.set("session_token", token)
        return token

    return _login_as
