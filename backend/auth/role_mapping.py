"""Maps identity-provider realm roles to application roles."""

import logging
from typing import Iterable, Mapping, Optional

from .permissions import APPLICATION_ROLES

logger = logging.getLogger(__name__)


class RoleMapping:
    """
    Translation table from provider role names to application role names.

    Example mappings:
        {"admin": "admin", "pm": "property_manager"}
        {"realm-admins": "admin", "residents": "tenant"}

    With no table the four application roles map onto themselves, so a
    provider that already uses the application vocabulary needs no config.
    Provider roles absent from the table are ignored.
    """

    def __init__(self, mapping: Optional[Mapping[str, str]] = None):
        if not mapping:
            mapping = {role: role for role in APPLICATION_ROLES}

        unknown = sorted(set(mapping.values()) - set(APPLICATION_ROLES))
        if unknown:
            raise ValueError(
                f"Role mapping targets unknown application role(s): {', '.join(unknown)}"
            )
        self._mapping = dict(mapping)

    def map_roles(self, provider_roles: Iterable[str]) -> list[str]:
        """
        Return the application roles implied by ``provider_roles``.

        Order follows the provider's list; duplicates are dropped.
        """
        mapped: list[str] = []
        for provider_role in provider_roles:
            app_role = self._mapping.get(provider_role)
            if app_role is None:
                logger.debug(f"Provider role '{provider_role}' is not mapped to any app role")
                continue
            if app_role not in mapped:
                mapped.append(app_role)
        return mapped

    def __repr__(self):
        pairs = ", ".join(f"{k}->{v}" for k, v in sorted(self._mapping.items()))
        return f"<RoleMapping {pairs}>"
