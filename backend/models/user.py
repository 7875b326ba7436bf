"""User model for authentication and authorization."""

from datetime import datetime, timezone

from sqlalchemy import Boolean, Column, DateTime, Integer, String
from sqlalchemy.orm import relationship

from auth.permissions import has_permission
from database import Base

USER_STATUSES = ("active", "suspended", "inactive")


class User(Base):
    """
    Application user, created by local registration or lazily on the first
    federated login.

    A user's effective permissions are the union of the permission sets of
    its assigned roles (see :class:`models.role.Role`). Users are soft-deleted
    through ``status``; login traffic never removes a row.
    """

    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)

    # OIDC subject, set once a federated login occurs
    external_id = Column(String(255), unique=True, nullable=True, index=True)

    username = Column(String(100), unique=True, nullable=False, index=True)
    email = Column(String(255), unique=True, nullable=False, index=True)
    first_name = Column(String(100), nullable=False, default="")
    last_name = Column(String(100), nullable=False, default="")
    phone_number = Column(String(20), nullable=True)
    email_verified = Column(Boolean, default=False, nullable=False)
    status = Column(String(20), nullable=False, default="active", index=True)

    # Local auth; NULL for users who only ever log in through the provider
    local_password_hash = Column(String(255), nullable=True)

    # SHA-256 of the last federated credential whose roles were reconciled
    identity_fingerprint = Column(String(64), nullable=True)

    last_login_at = Column(DateTime, nullable=True)
    created_at = Column(
        DateTime, default=lambda: datetime.now(timezone.utc), nullable=False
    )
    updated_at = Column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False,
    )

    # Read-only view over user_roles; writes go through auth.role_store
    roles = relationship(
        "Role",
        secondary="user_roles",
        primaryjoin="User.id == UserRole.user_id",
        secondaryjoin="Role.id == UserRole.role_id",
        order_by="Role.name",
        lazy="selectin",
        viewonly=True,
    )

    @property
    def is_active(self) -> bool:
        return self.status == "active"

    @property
    def role_names(self) -> list[str]:
        return [role.name for role in self.roles]

    @property
    def permissions(self) -> set[str]:
        """Union of permissions across all assigned roles."""
        granted: set[str] = set()
        for role in self.roles:
            granted.update(role.permissions or [])
        return granted

    def has_permission(self, permission: str) -> bool:
        return has_permission(self.permissions, permission)

    def has_role(self, role_name: str) -> bool:
        return any(role.name == role_name for role in self.roles)

    def __repr__(self):
        return f"<User {self.username} status={self.status} external_id={self.external_id}>"
