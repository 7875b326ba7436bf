"""
Static permission vocabulary and the permission matching rule.

Permissions are dot-separated ``resource.action`` strings. A grant ending in
``.*`` covers every permission that starts with the literal text before the
``*`` (``users.*`` covers ``users.delete`` but not ``admin.users.delete``).
There is no hierarchy beyond that literal prefix; the seeded role data
relies on this exact rule.
"""

from typing import Iterable

ADMIN = "admin"
PROPERTY_MANAGER = "property_manager"
TENANT = "tenant"
VIEWER = "viewer"

APPLICATION_ROLES = (ADMIN, PROPERTY_MANAGER, TENANT, VIEWER)

# Assigned when an authenticated identity would otherwise end up with no role
DEFAULT_ROLE = TENANT

WILDCARD_SUFFIX = ".*"


def permission_matches(granted: str, required: str) -> bool:
    """Return True if a single granted permission satisfies ``required``."""
    if granted == required:
        return True
    if granted.endswith(WILDCARD_SUFFIX):
        # Keep the trailing dot so "users.*" never matches "usersettings.read"
        prefix = granted[:-1]
        return required.startswith(prefix)
    return False


def has_permission(granted: Iterable[str], required: str) -> bool:
    """
    Decide whether an aggregated permission set satisfies ``required``.

    Args:
        granted: Union of permissions across all of a principal's roles.
        required: The permission a route or operation demands.

    Returns:
        ``True`` on an exact match or a matching ``resource.*`` wildcard.
    """
    return any(permission_matches(perm, required) for perm in granted)


# ── Seed data for the system roles ─────────────────────────────────────
ROLE_DEFINITIONS = [
    {
        "name": ADMIN,
        "display_name": "Administrator",
        "description": "Full system access with all permissions",
        "permissions": [
            "users.create", "users.read", "users.update", "users.delete",
            "properties.create", "properties.read", "properties.update", "properties.delete",
            "tenants.create", "tenants.read", "tenants.update", "tenants.delete",
            "leases.create", "leases.read", "leases.update", "leases.delete",
            "payments.create", "payments.read", "payments.update", "payments.delete",
            "maintenance.create", "maintenance.read", "maintenance.update", "maintenance.delete",
            "roles.manage", "system.settings",
        ],
    },
    {
        "name": PROPERTY_MANAGER,
        "display_name": "Property Manager",
        "description": "Manage properties, tenants, and maintenance",
        "permissions": [
            "properties.create", "properties.read", "properties.update", "properties.delete",
            "tenants.create", "tenants.read", "tenants.update", "tenants.delete",
            "leases.create", "leases.read", "leases.update", "leases.delete",
            "payments.read", "payments.update",
            "maintenance.create", "maintenance.read", "maintenance.update", "maintenance.delete",
        ],
    },
    {
        "name": TENANT,
        "display_name": "Tenant",
        "description": "View own information and submit maintenance requests",
        "permissions": [
            "profile.read", "profile.update",
            "lease.read.own", "payments.read.own",
            "maintenance.create.own", "maintenance.read.own",
        ],
    },
    {
        "name": VIEWER,
        "display_name": "Viewer",
        "description": "Read-only access to basic information",
        "permissions": ["properties.read", "tenants.read", "maintenance.read"],
    },
]
