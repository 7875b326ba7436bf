"""
Tests for sync-on-login identity resolution.

Covers:
- Claim extraction from token payloads
- First-time subjects become local users
- Role sync replaces assignments exactly
- Default role for empty or unmapped provider roles
- Custom role mappings
- Credential fingerprint short-circuit
- Lenient vs strict failure handling
"""

import pytest
from pydantic import ValidationError
from sqlalchemy import delete

from auth import role_store, user_store
from auth.exceptions import DuplicateUserError, RoleSyncError
from auth.identity_resolver import IdentityClaims, IdentityResolver, get_nested_claim
from auth.role_mapping import RoleMapping
from models import Role


def _claims(sub="sub-1", roles=None, username=None, email=None):
    payload = {"sub": sub, "email": email or f"{sub}@example.com"}
    if username:
        payload["preferred_username"] = username
    if roles is not None:
        payload["realm_access"] = {"roles": roles}
    return IdentityClaims.from_token_claims(payload)


# ──────────────────────────────────────────────────────────────────────────────
# CLAIMS
# ──────────────────────────────────────────────────────────────────────────────


class TestIdentityClaims:
    """Extraction of the consumed claims."""

    def test_nested_claim_lookup(self):
        assert get_nested_claim({"a": {"b": ["c"]}}, "a.b") == ["c"]
        assert get_nested_claim({"a": "x"}, "a.b") is None
        assert get_nested_claim({}, "realm_access.roles") is None

    def test_realm_roles_extracted(self):
        claims = _claims(roles=["admin", "offline_access"])
        assert claims.realm_roles == ["admin", "offline_access"]

    def test_missing_roles_claim_is_empty(self):
        assert _claims().realm_roles == []

    def test_non_list_roles_claim_is_empty(self):
        claims = IdentityClaims.from_token_claims({"sub": "s", "realm_access": {"roles": 42}})
        assert claims.realm_roles == []

    @pytest.mark.parametrize("value, expected", [(True, True), ("false", False), ("true", False), (1, False)])
    def test_email_verified_requires_boolean_true(self, value, expected):
        claims = IdentityClaims.from_token_claims({"sub": "s", "email_verified": value})
        assert claims.email_verified is expected

    def test_custom_claim_path(self):
        claims = IdentityClaims.from_token_claims(
            {"sub": "s", "resource_access": {"pmaas": {"roles": ["viewer"]}}},
            roles_claim_path="resource_access.pmaas.roles",
        )
        assert claims.realm_roles == ["viewer"]

    def test_subject_required(self):
        with pytest.raises(ValidationError):
            IdentityClaims.from_token_claims({"email": "nobody@example.com"})


# ──────────────────────────────────────────────────────────────────────────────
# ROLE MAPPING
# ──────────────────────────────────────────────────────────────────────────────


class TestRoleMapping:
    """Provider role → application role translation."""

    def test_default_is_identity_over_application_roles(self):
        mapping = RoleMapping()
        assert mapping.map_roles(["viewer", "uma_authorization", "admin"]) == ["viewer", "admin"]

    def test_duplicates_collapse(self):
        mapping = RoleMapping({"pm": "property_manager", "managers": "property_manager"})
        assert mapping.map_roles(["pm", "managers"]) == ["property_manager"]

    def test_unknown_target_rejected(self):
        with pytest.raises(ValueError):
            RoleMapping({"ops": "superuser"})


# ──────────────────────────────────────────────────────────────────────────────
# RESOLVE
# ──────────────────────────────────────────────────────────────────────────────


class TestResolve:
    """Find-or-create and role reconciliation."""

    @pytest.mark.asyncio
    async def test_first_time_subject_created_with_exact_roles(self, db_session):
        """A new subject asserting admin + property_manager gets exactly those, no tenant."""
        resolver = IdentityResolver()

        user = await resolver.resolve(
            db_session, _claims("kc-123", roles=["admin", "property_manager"], username="pat")
        )

        assert user.external_id == "kc-123"
        assert user.username == "pat"
        assert user.status == "active"
        assert user.role_names == ["admin", "property_manager"]
        assert not user.has_role("tenant")
        assert user.last_login_at is not None

    @pytest.mark.asyncio
    async def test_sync_replaces_roles_exactly(self, db_session):
        """Roles revoked upstream are revoked locally on the next login."""
        resolver = IdentityResolver()
        await resolver.resolve(db_session, _claims(roles=["admin", "viewer"]))

        user = await resolver.resolve(db_session, _claims(roles=["viewer"]))

        assert user.role_names == ["viewer"]

    @pytest.mark.asyncio
    async def test_locally_granted_role_removed_by_sync(self, db_session):
        """Application roles not asserted by the provider do not survive a login."""
        resolver = IdentityResolver()
        user = await resolver.resolve(db_session, _claims(roles=["viewer"]))
        admin = await role_store.get_role_by_name(db_session, "admin")
        await role_store.assign_role(db_session, user.id, admin.id)

        user = await resolver.resolve(db_session, _claims(roles=["viewer"]))

        assert user.role_names == ["viewer"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("provider_roles", [[], ["unmapped_role"], None])
    async def test_default_role_when_nothing_maps(self, db_session, provider_roles):
        resolver = IdentityResolver()
        user = await resolver.resolve(db_session, _claims(roles=provider_roles))
        assert user.role_names == ["tenant"]

    @pytest.mark.asyncio
    async def test_custom_mapping(self, db_session):
        resolver = IdentityResolver(RoleMapping({"realm-admins": "admin", "residents": "tenant"}))
        user = await resolver.resolve(db_session, _claims(roles=["realm-admins", "admin"]))
        assert user.role_names == ["admin"]

    @pytest.mark.asyncio
    async def test_username_falls_back_to_email_local_part(self, db_session):
        resolver = IdentityResolver()
        user = await resolver.resolve(db_session, _claims("s-9", email="jordan@example.org"))
        assert user.username == "jordan"

    @pytest.mark.asyncio
    async def test_username_collision_gets_subject_suffix(self, db_session):
        await user_store.create_user(db_session, username="pat", email="pat@local.test")
        resolver = IdentityResolver()

        user = await resolver.resolve(db_session, _claims("abcdef123456", username="pat"))

        assert user.username == "pat_abcdef12"

    @pytest.mark.asyncio
    async def test_email_collision_fails(self, db_session):
        """A new subject whose email belongs to another account is not merged into it."""
        await user_store.create_user(db_session, username="owner", email="shared@example.com")
        resolver = IdentityResolver()

        with pytest.raises(DuplicateUserError):
            await resolver.resolve(db_session, _claims("new-sub", email="shared@example.com"))

    @pytest.mark.asyncio
    async def test_profile_not_overwritten_on_relogin(self, db_session):
        resolver = IdentityResolver()
        user = await resolver.resolve(db_session, _claims(username="pat"))
        await user_store.update_user(db_session, user.id, first_name="Patricia")

        user = await resolver.resolve(db_session, _claims(username="pat"))

        assert user.first_name == "Patricia"


# ──────────────────────────────────────────────────────────────────────────────
# FINGERPRINT
# ──────────────────────────────────────────────────────────────────────────────


class TestFingerprint:
    """A credential already reconciled is not synced again."""

    @pytest.mark.asyncio
    async def test_same_credential_skips_sync(self, db_session):
        resolver = IdentityResolver()
        user = await resolver.resolve(db_session, _claims(roles=["viewer"]), fingerprint="fp-1")
        user_id = user.id
        assert user.identity_fingerprint == "fp-1"

        # Local change between two requests carrying the same token
        viewer = await role_store.get_role_by_name(db_session, "viewer")
        await role_store.remove_role(db_session, user_id, viewer.id)

        user = await resolver.resolve(db_session, _claims(roles=["viewer"]), fingerprint="fp-1")
        assert user.role_names == []

    @pytest.mark.asyncio
    async def test_new_credential_resyncs(self, db_session):
        resolver = IdentityResolver()
        await resolver.resolve(db_session, _claims(roles=["viewer"]), fingerprint="fp-1")

        user = await resolver.resolve(db_session, _claims(roles=["admin"]), fingerprint="fp-2")

        assert user.role_names == ["admin"]
        assert user.identity_fingerprint == "fp-2"


# ──────────────────────────────────────────────────────────────────────────────
# FAILURE MODES
# ──────────────────────────────────────────────────────────────────────────────


class TestSyncFailures:
    """Lenient and strict handling of store errors during sync."""

    async def _drop_viewer_role(self, db):
        await db.execute(delete(Role).where(Role.name == "viewer"))
        await db.commit()

    @pytest.mark.asyncio
    async def test_lenient_skips_failed_role_and_defaults(self, db_session):
        """A role that cannot be assigned is skipped; with nothing left the default applies."""
        resolver = IdentityResolver(strict=False)
        user = await resolver.resolve(db_session, _claims(roles=["property_manager"]))
        user_id = user.id
        await self._drop_viewer_role(db_session)

        assigned = await resolver.sync_roles(db_session, user_id, ["viewer"])

        assert assigned == ["tenant"]
        user = await user_store.get_user_by_id(db_session, user_id)
        assert user.role_names == ["tenant"]

    @pytest.mark.asyncio
    async def test_strict_rolls_back_and_raises(self, db_session):
        """In strict mode a failing sync leaves the previous roles intact."""
        resolver = IdentityResolver(strict=True)
        user = await resolver.resolve(db_session, _claims(roles=["property_manager"]))
        user_id = user.id
        await self._drop_viewer_role(db_session)

        with pytest.raises(RoleSyncError):
            await resolver.sync_roles(db_session, user_id, ["viewer"])

        user = await user_store.get_user_by_id(db_session, user_id)
        assert user.role_names == ["property_manager"]

    @pytest.mark.asyncio
    async def test_strict_success_matches_lenient(self, db_session):
        resolver = IdentityResolver(strict=True)
        user = await resolver.resolve(db_session, _claims(roles=["admin", "tenant"]))
        assert user.role_names == ["admin", "tenant"]

        user = await resolver.resolve(db_session, _claims(roles=[]))
        assert user.role_names == ["tenant"]

    @pytest.mark.asyncio
    async def test_lenient_treats_held_role_as_assigned(self, db_session, monkeypatch):
        """A role the user already holds counts as assigned, not as a failure."""
        resolver = IdentityResolver(strict=False)
        user = await resolver.resolve(db_session, _claims(roles=["viewer"]))
        user_id = user.id

        async def _keep_roles(db, user_id, role_id, commit=True):
            return None

        monkeypatch.setattr(role_store, "remove_role", _keep_roles)

        assigned = await resolver.sync_roles(db_session, user_id, ["viewer"])

        assert assigned == ["viewer"]
        roles = await role_store.get_user_roles(db_session, user_id)
        assert [r.name for r in roles] == ["viewer"]
