"""
Reconciles a federated identity's claims with local authorization state.

The local ``users`` table is a cache of federated identities: a subject
seen for the first time gets a user row, and on every login its role
assignments are replaced by exactly the roles the provider asserts right
now (sync-on-login). A role revoked upstream is revoked locally on the next
login.

Two failure modes are available, chosen with ``strict``:

- lenient (default): each remove/assign step runs and commits on its own;
  a failing step is logged and skipped, so a store hiccup degrades to
  fewer permissions rather than a blocked login. A concurrent reader can
  observe an empty role set while the cycle runs.
- strict: the whole remove+assign cycle is one transaction; any failure
  rolls it back and raises :class:`RoleSyncError`, which rejects the login.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from models import User
from utils.audit import audit

from . import role_store, user_store
from .exceptions import AuthError, RoleAssignmentConflictError, RoleSyncError
from .permissions import APPLICATION_ROLES, DEFAULT_ROLE
from .role_mapping import RoleMapping

logger = logging.getLogger(__name__)


def get_nested_claim(claims: Dict[str, Any], path: str) -> Any:
    """
    Navigate a dotted claim path to extract a value.

    Example: ``get_nested_claim({"a": {"b": ["c"]}}, "a.b")`` returns ``["c"]``.
    """
    current: Any = claims
    for part in path.split("."):
        if isinstance(current, dict):
            current = current.get(part)
        else:
            return None
    return current


class IdentityClaims(BaseModel):
    """The subset of verified ID-token claims the authorization core consumes."""

    sub: str = Field(..., min_length=1)
    email: Optional[str] = None
    email_verified: bool = False
    preferred_username: Optional[str] = None
    given_name: str = ""
    family_name: str = ""
    name: Optional[str] = None
    realm_roles: list[str] = Field(default_factory=list)

    @classmethod
    def from_token_claims(
        cls,
        claims: Dict[str, Any],
        roles_claim_path: str = "realm_access.roles",
    ) -> "IdentityClaims":
        """
        Build from a decoded token payload.

        Raises:
            pydantic.ValidationError: the payload has no usable ``sub``.
        """
        roles = get_nested_claim(claims, roles_claim_path)
        if isinstance(roles, str):
            roles = [roles]
        elif not isinstance(roles, list):
            roles = []

        return cls(
            sub=str(claims.get("sub") or ""),
            email=claims.get("email"),
            email_verified=claims.get("email_verified") is True,
            preferred_username=claims.get("preferred_username"),
            given_name=claims.get("given_name") or "",
            family_name=claims.get("family_name") or "",
            name=claims.get("name"),
            realm_roles=[r for r in roles if isinstance(r, str)],
        )


class IdentityResolver:
    """
    Find-or-create the local user for a federated identity and sync its roles.

    Args:
        role_mapping: Provider role name -> application role name table.
        default_role: Assigned when no provider role maps to an application
            role, so an authenticated user never ends up with zero roles.
        strict: Run the sync as one transaction and fail the login on any
            store error instead of skipping the failing step.
    """

    def __init__(
        self,
        role_mapping: Optional[RoleMapping] = None,
        default_role: str = DEFAULT_ROLE,
        strict: bool = False,
    ):
        self.role_mapping = role_mapping or RoleMapping()
        self.default_role = default_role
        self.strict = strict

    async def resolve(
        self,
        db: AsyncSession,
        claims: IdentityClaims,
        fingerprint: Optional[str] = None,
    ) -> User:
        """
        Return the local user for ``claims`` with roles populated.

        When ``fingerprint`` identifies the credential whose roles were
        already reconciled for this user, the persisted assignments are
        used as-is and no sync runs.

        Raises:
            DuplicateUserError: first login of a subject whose username and
                email collide with an existing local account.
            RoleSyncError: strict mode only, the role sync failed.
        """
        user = await user_store.get_user_by_external_id(db, claims.sub)

        if user is None:
            user = await self._create_user(db, claims)
        elif fingerprint and user.identity_fingerprint == fingerprint:
            return user
        else:
            logger.debug(f"Found existing user {claims.sub} (id={user.id}), syncing roles")

        user_id = user.id
        await self.sync_roles(db, user_id, claims.realm_roles)

        user = await user_store.update_user(
            db,
            user_id,
            last_login_at=datetime.now(timezone.utc),
            identity_fingerprint=fingerprint,
        )
        audit.log_login(user.username, user.id, method="oidc")
        return user

    async def _create_user(self, db: AsyncSession, claims: IdentityClaims) -> User:
        email = claims.email or f"{claims.sub}@oidc.invalid"
        username = (
            claims.preferred_username
            or email.split("@")[0]
            or claims.sub[:50]
        )
        if await user_store.get_user_by_username(db, username):
            username = f"{username}_{claims.sub[:8]}"

        logger.info(f"User {claims.sub} not found, creating local user '{username}'")
        return await user_store.create_user(
            db,
            external_id=claims.sub,
            username=username,
            email=email,
            first_name=claims.given_name,
            last_name=claims.family_name,
            email_verified=claims.email_verified,
            status="active",
        )

    async def sync_roles(
        self,
        db: AsyncSession,
        user_id: int,
        provider_roles: list[str],
    ) -> list[str]:
        """
        Replace the user's application roles with those implied by
        ``provider_roles``.

        All application roles are removed first, then exactly the mapped
        set is assigned; if nothing maps, the default role is assigned.

        Returns:
            Names of the roles the user holds after the sync.
        """
        targets = self.role_mapping.map_roles(provider_roles)
        logger.debug(f"Syncing roles for user {user_id}: provider={provider_roles} mapped={targets}")

        if self.strict:
            assigned = await self._sync_strict(db, user_id, targets)
            failures = 0
        else:
            assigned, failures = await self._sync_lenient(db, user_id, targets)

        audit.log_role_sync(
            user_id,
            provider_roles=list(provider_roles),
            assigned_roles=assigned,
            failures=failures,
            defaulted=not targets,
        )
        return assigned

    async def _sync_lenient(
        self,
        db: AsyncSession,
        user_id: int,
        targets: list[str],
    ) -> tuple[list[str], int]:
        failures = 0

        for role_name in APPLICATION_ROLES:
            try:
                role = await role_store.get_role_by_name(db, role_name)
                await role_store.remove_role(db, user_id, role.id)
            except (AuthError, SQLAlchemyError) as exc:
                failures += 1
                logger.warning(f"Failed to remove role {role_name} from user {user_id}: {exc}")
                await db.rollback()

        assigned: list[str] = []
        for role_name in targets:
            if await self._assign_lenient(db, user_id, role_name):
                assigned.append(role_name)
            else:
                failures += 1

        if not assigned:
            logger.info(f"No mapped roles for user {user_id}, assigning default '{self.default_role}' role")
            if await self._assign_lenient(db, user_id, self.default_role):
                assigned.append(self.default_role)
            else:
                failures += 1

        if failures:
            logger.warning(
                f"Role sync for user {user_id} completed with {failures} failure(s); "
                f"roles now {assigned}"
            )
        return assigned, failures

    async def _assign_lenient(self, db: AsyncSession, user_id: int, role_name: str) -> bool:
        try:
            role = await role_store.get_role_by_name(db, role_name)
            await role_store.assign_role(db, user_id, role.id)
        except RoleAssignmentConflictError:
            logger.debug(f"User {user_id} already holds role {role_name}")
        except (AuthError, SQLAlchemyError) as exc:
            logger.warning(f"Failed to assign role {role_name} to user {user_id}: {exc}")
            await db.rollback()
            return False
        return True

    async def _sync_strict(
        self,
        db: AsyncSession,
        user_id: int,
        targets: list[str],
    ) -> list[str]:
        try:
            for role_name in APPLICATION_ROLES:
                role = await role_store.get_role_by_name(db, role_name)
                await role_store.remove_role(db, user_id, role.id, commit=False)

            assigned = list(targets) or [self.default_role]
            for role_name in assigned:
                role = await role_store.get_role_by_name(db, role_name)
                await role_store.assign_role(db, user_id, role.id, commit=False)

            await db.commit()
        except (AuthError, SQLAlchemyError) as exc:
            await db.rollback()
            logger.error(f"Role sync for user {user_id} failed, rolled back: {exc}")
            raise RoleSyncError(f"Role sync failed for user {user_id}") from exc

        return assigned
