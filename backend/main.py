import time
import uuid
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from config import settings
from database import AsyncSessionLocal, close_db, get_db, init_db
from auth.authenticator import RequestAuthenticator
from auth.exceptions import register_exception_handlers
from auth.identity_resolver import IdentityResolver
from auth.oidc_client import AuthClient
from auth.role_mapping import RoleMapping
from routers import auth_router, maintenance_router, roles_router, users_router
from utils.logging_utils import setup_logging, get_logger
from utils.audit import audit

# Configure logging: INFO by default, DEBUG via the DEBUG setting
setup_logging(level="DEBUG" if settings.DEBUG else "INFO")
logger = get_logger(__name__)


def build_authenticator(auth_client=None) -> RequestAuthenticator:
    """Wire the role mapping, identity resolver and authenticator from settings."""
    resolver = IdentityResolver(
        role_mapping=RoleMapping(settings.OIDC_ROLE_MAPPING),
        strict=settings.ROLE_SYNC_STRICT,
    )
    return RequestAuthenticator(auth_client, resolver, settings)


async def bootstrap_local_admin() -> None:
    """Create the env-configured local admin on first run and grant it the admin role."""
    import bcrypt

    from auth import role_store, user_store
    from auth.permissions import ADMIN

    async with AsyncSessionLocal() as db:
        if await user_store.get_user_by_username(db, settings.LOCAL_ADMIN_USERNAME):
            return

        hashed = bcrypt.hashpw(
            settings.LOCAL_ADMIN_PASSWORD.encode("utf-8"),
            bcrypt.gensalt(),
        ).decode("utf-8")
        admin = await user_store.create_user(
            db,
            username=settings.LOCAL_ADMIN_USERNAME,
            email=settings.LOCAL_ADMIN_EMAIL or f"{settings.LOCAL_ADMIN_USERNAME}@localhost",
            local_password_hash=hashed,
            email_verified=True,
            status="active",
        )
        role = await role_store.get_role_by_name(db, ADMIN)
        await role_store.assign_role(db, admin.id, role.id)
        logger.info(f"Bootstrap admin user '{settings.LOCAL_ADMIN_USERNAME}' created")


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Startup
    logger.info("=" * 60)
    logger.info("PMAAS STARTING UP")
    logger.info(f"App: {settings.APP_NAME} v{settings.APP_VERSION}")

    start = time.perf_counter()
    await init_db()
    logger.info(
        f"Database initialized in {(time.perf_counter() - start) * 1000:.1f}ms"
    )

    # Run startup health checks
    from services.health import run_health_checks
    async with AsyncSessionLocal() as db:
        health = await run_health_checks(db)
    for check in health.checks:
        status_icon = "+" if check.status == "ok" else "!"
        detail = ""
        if check.message:
            detail += f" ({check.message})"
        if check.response_time_ms is not None:
            detail += f" [{check.response_time_ms:.1f}ms]"
        logger.info(f"  {status_icon} {check.name}: {check.status}{detail}")
    if health.status != "healthy":
        logger.warning(f"STARTUP HEALTH: {health.status.upper()} - some checks failed")

    # Bootstrap local admin from env vars (first-run only)
    if settings.LOCAL_ADMIN_USERNAME and settings.LOCAL_ADMIN_PASSWORD:
        await bootstrap_local_admin()

    auth_client = AuthClient.from_settings()
    if auth_client is None:
        logger.warning("OIDC_ISSUER not set; federated login disabled, session login only")
    else:
        logger.info(f"Identity provider: {auth_client.issuer}")
    app.state.auth_client = auth_client
    app.state.authenticator = build_authenticator(auth_client)
    logger.info(
        f"Role mapping: {app.state.authenticator.resolver.role_mapping!r} "
        f"(strict sync={settings.ROLE_SYNC_STRICT})"
    )

    logger.info("STARTUP COMPLETE - Ready to accept requests")
    logger.info("=" * 60)

    yield

    # Shutdown
    logger.info("PMAAS SHUTTING DOWN")
    await close_db()
    logger.info("Shutdown complete")


# Create FastAPI app
app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    lifespan=lifespan,
)

register_exception_handlers(app)


# ── Custom validation error handler ───────────────────────────────────

@app.exception_handler(RequestValidationError)
async def validation_exception_handler(
    request: Request, exc: RequestValidationError
):
    """
    Return user-friendly error messages when request validation fails.

    Instead of Pydantic's raw error output, this returns a structured
    response with per-field error messages.
    """
    errors = []
    for error in exc.errors():
        # Build a dotted field path (skip the top-level "body"/"query" prefix)
        loc_parts = [str(x) for x in error.get("loc", [])]
        if loc_parts and loc_parts[0] in ("body", "query", "path"):
            loc_parts = loc_parts[1:]
        field = ".".join(loc_parts) if loc_parts else "unknown"

        msg = error.get("msg", "Validation error")
        # Pydantic wraps custom ValueError messages in "Value error, ..."
        if msg.startswith("Value error, "):
            msg = msg[len("Value error, "):]

        errors.append({
            "field": field,
            "message": msg,
            "type": error.get("type", "unknown"),
        })

    return JSONResponse(
        status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
        content={
            "detail": "Validation failed",
            "errors": errors,
        },
    )


# ── Request ID + request logging middleware ───────────────────────────

@app.middleware("http")
async def request_lifecycle(request: Request, call_next):
    """Assign a request ID, log timing, and add the ID to response headers."""
    request_id = str(uuid.uuid4())
    audit.set_request_id(request_id)

    start_time = time.perf_counter()
    logger.debug(f"→ {request.method} {request.url.path}")

    response = await call_next(request)

    duration_ms = (time.perf_counter() - start_time) * 1000
    status_indicator = "+" if response.status_code < 400 else "!"
    logger.info(
        f"{status_indicator} {request.method} {request.url.path} "
        f"[{response.status_code}] {duration_ms:.1f}ms rid={request_id[:8]}"
    )

    response.headers["X-Request-ID"] = request_id
    return response


# Add CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=settings.CORS_ALLOW_CREDENTIALS,
    allow_methods=settings.CORS_ALLOW_METHODS,
    allow_headers=settings.CORS_ALLOW_HEADERS,
)

# Include routers. auth_router first: /api/users/profile must win over /api/users/{user_id}
app.include_router(auth_router)
app.include_router(users_router)
app.include_router(roles_router)
app.include_router(maintenance_router)


@app.get("/health", tags=["health"])
async def health_check(db: AsyncSession = Depends(get_db)):
    """Health check endpoint with component status breakdown."""
    from services.health import run_health_checks
    health = await run_health_checks(db)
    status_code = 200 if health.status in ("healthy", "degraded") else 503
    return JSONResponse(content=health.model_dump(), status_code=status_code)


@app.get("/api", tags=["root"])
async def api_root():
    """API root endpoint."""
    return {
        "name": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "docs": "/docs",
        "openapi": "/openapi.json",
        "endpoints": {
            "login": "/login",
            "users": "/api/users",
            "roles": "/api/roles",
            "maintenance": "/api/maintenance",
        }
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=8000,
        reload=settings.DEBUG,
    )
