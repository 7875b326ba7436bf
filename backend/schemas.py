"""
Pydantic v2 schemas for the user and role API.

Architecture:
  - *Fields classes: pure field definitions, no validators.  Shared by both
    input and output schemas.
  - Input classes (UserRegister, UserUpdate, ProfileUpdate) add strict
    validators so bad data is rejected early with clear error messages.
  - *Response classes inherit from *Fields directly (no validators) so any
    row already in the database serializes without crashing, including
    users created from identity-provider claims that never passed through
    these validators.
"""

from datetime import datetime
from typing import Optional, List
import re

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from models.user import USER_STATUSES


USERNAME_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9._-]*$")
EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
PHONE_RE = re.compile(r"^\+?[0-9 ()-]{5,20}$")

MIN_PASSWORD_LENGTH = 8


def _validate_username(v: str) -> str:
    v = v.strip()
    if not 3 <= len(v) <= 100:
        raise ValueError("Username must be between 3 and 100 characters")
    if not USERNAME_RE.match(v):
        raise ValueError(
            f"Invalid username '{v}'. "
            "Use letters, digits, dots, hyphens and underscores"
        )
    return v


def _validate_email(v: str) -> str:
    v = v.strip()
    if len(v) > 255 or not EMAIL_RE.match(v):
        raise ValueError(f"Invalid email address '{v}'")
    return v


def _validate_phone(v: Optional[str]) -> Optional[str]:
    if v is None or v == "":
        return None
    if not PHONE_RE.match(v):
        raise ValueError(f"Invalid phone number '{v}'")
    return v


# ═══════════════════════════════════════════════════════════════════════
# ROLE SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class RoleResponse(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    permissions: List[str] = []

    model_config = ConfigDict(from_attributes=True)


class RoleAssignRequest(BaseModel):
    role_id: int = Field(..., gt=0)


# ═══════════════════════════════════════════════════════════════════════
# USER SCHEMAS
# ═══════════════════════════════════════════════════════════════════════

class UserFields(BaseModel):
    """Pure field definitions for users.  No validators."""

    username: str
    email: str
    first_name: str = ""
    last_name: str = ""
    phone_number: Optional[str] = None


class UserRegister(UserFields):
    """Local self-registration."""

    password: str = Field(..., min_length=MIN_PASSWORD_LENGTH, max_length=128)
    confirm_password: str

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        return _validate_username(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: str) -> str:
        return _validate_email(v)

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_phone(v)

    @model_validator(mode="after")
    def passwords_match(self):
        if self.password != self.confirm_password:
            raise ValueError("Passwords do not match")
        return self


class ProfileUpdate(BaseModel):
    """Fields a user may change on their own profile."""

    first_name: Optional[str] = Field(None, max_length=100)
    last_name: Optional[str] = Field(None, max_length=100)
    phone_number: Optional[str] = None

    @field_validator("phone_number")
    @classmethod
    def validate_phone(cls, v: Optional[str]) -> Optional[str]:
        return _validate_phone(v)


class UserUpdate(ProfileUpdate):
    """Administrative update; all fields optional."""

    username: Optional[str] = None
    email: Optional[str] = None
    email_verified: Optional[bool] = None
    status: Optional[str] = None

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_username(v)

    @field_validator("email")
    @classmethod
    def validate_email(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        return _validate_email(v)

    @field_validator("status")
    @classmethod
    def validate_status(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        lower = v.lower()
        if lower not in USER_STATUSES:
            raise ValueError(
                f"Invalid status '{v}'. "
                f"Allowed values: {', '.join(USER_STATUSES)}"
            )
        return lower


class UserResponse(UserFields):
    """Schema for user responses. Never carries credentials."""

    id: int
    external_id: Optional[str] = None
    email_verified: bool
    status: str
    last_login_at: Optional[datetime] = None
    created_at: datetime
    roles: List[RoleResponse] = []

    model_config = ConfigDict(from_attributes=True)


class LocalLoginRequest(BaseModel):
    username: str
    password: str


class LoginResponse(BaseModel):
    user: UserResponse
    expires_at: datetime
