from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings


def _load_version() -> str:
    version_path = Path(__file__).resolve().parent / "VERSION"
    try:
        return version_path.read_text().strip()
    except FileNotFoundError:
        return "0.1.0"


class Settings(BaseSettings):
    """Application configuration using Pydantic settings."""

    # Database
    DATABASE_URL: str = "sqlite:///./data/pmaas.db"

    # CORS
    CORS_ORIGINS: list[str] = ["http://localhost:8000", "http://127.0.0.1:8000"]
    CORS_ALLOW_CREDENTIALS: bool = True
    CORS_ALLOW_METHODS: list[str] = ["*"]
    CORS_ALLOW_HEADERS: list[str] = ["*"]

    # Application
    APP_NAME: str = "PMaaS"
    APP_VERSION: str = _load_version()
    DEBUG: bool = False

    # ── OpenID Connect provider ────────────────────────────────────────
    OIDC_ISSUER: Optional[str] = None  # e.g. https://sso.example.com/realms/pmaas
    OIDC_CLIENT_ID: str = "pmaas-app"
    OIDC_CLIENT_SECRET: str = ""
    OIDC_REDIRECT_URI: str = "http://localhost:8000/callback"
    OIDC_SCOPES: list[str] = ["openid", "profile", "email"]
    OIDC_HTTP_TIMEOUT_SECONDS: float = 10.0

    # Where the provider puts its realm roles inside the ID token
    OIDC_ROLES_CLAIM_PATH: str = "realm_access.roles"

    # Provider role name -> application role name. Empty = identity mapping
    # over the four application roles.
    OIDC_ROLE_MAPPING: dict[str, str] = {}

    # False: per-role sync failures are logged and skipped.
    # True: the sync runs in one transaction and any failure rejects the login.
    ROLE_SYNC_STRICT: bool = False

    # ── Cookies & sessions ─────────────────────────────────────────────
    ID_TOKEN_COOKIE_NAME: str = "id_token"
    ID_TOKEN_MAX_AGE_SECONDS: int = 3600
    SESSION_COOKIE_NAME: str = "session_token"
    SESSION_TTL_HOURS: int = 24
    LOGIN_FLOW_COOKIE_MAX_AGE_SECONDS: int = 600
    COOKIE_SECURE: bool = False

    # Local admin bootstrap (set via env vars for first-run setup)
    LOCAL_ADMIN_USERNAME: Optional[str] = None
    LOCAL_ADMIN_EMAIL: Optional[str] = None
    LOCAL_ADMIN_PASSWORD: Optional[str] = None

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
