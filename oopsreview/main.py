"""OopsReview Center — incident tracking and postmortem review.

FastAPI entry point with lifespan management, seeding and middleware stack.
"""

import asyncio
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select, text

from .api.router import api_router
from .auth.policies import DEFAULT_ROLES, RoleName
from .config import DEFAULT_SECRET_KEY
from .database import close_engine, create_tables, get_engine, get_session_factory
from .dependencies import get_app_config, get_password_hasher
from .middleware.csrf import CSRF_HEADER, CSRFMiddleware
from .middleware.error_handler import register_error_handlers
from .middleware.request_id import RequestIDMiddleware
from .middleware.security_headers import SecurityHeadersMiddleware
from .middleware.session_refresh import SessionRefreshMiddleware
from .models.role import Role
from .models.user import User
from .utils.logging import get_logger, setup_logging

VERSION = "1.0.0"
SEED_ADMIN_USERNAME = "admin"

config = get_app_config()
setup_logging(
    debug=config.debug,
    log_dir=config.log_dir,
    log_max_bytes=config.log_max_bytes,
    log_backup_count=config.log_backup_count,
)
logger = get_logger("oopsreview.main")


async def _seed_default_roles(factory) -> None:
    """Seed the four built-in roles (idempotent)."""
    async with factory() as session:
        async with session.begin():
            existing = set((await session.execute(select(Role.name))).scalars())
            for role_name, description in DEFAULT_ROLES.items():
                if role_name.value not in existing:
                    session.add(Role(name=role_name.value, description=description))
    logger.info("default_roles_seeded")


async def _seed_admin_user(factory, password: str) -> None:
    """Create the initial administrator when none exists (idempotent)."""
    hasher = get_password_hasher()
    async with factory() as session:
        async with session.begin():
            result = await session.execute(
                select(User).where(User.username == SEED_ADMIN_USERNAME)
            )
            if result.scalar_one_or_none() is not None:
                return
            role = (await session.execute(
                select(Role).where(Role.name == RoleName.ADMINISTRATOR.value)
            )).scalar_one()
            salt = hasher.generate_salt()
            password_hash = await asyncio.get_running_loop().run_in_executor(
                None, hasher.hash_password, password, salt,
            )
            session.add(User(
                role_id=role.id,
                username=SEED_ADMIN_USERNAME,
                email="admin@localhost",
                full_name="Administrator",
                password_hash=password_hash,
                salt=salt,
                is_active=True,
            ))
    logger.info("admin_user_seeded", username=SEED_ADMIN_USERNAME)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan: startup and shutdown."""
    logger.info("oopsreview_starting", host=config.host, port=config.port)

    # Sessions are signed with the secret; the default one must not leave a dev box
    if config.secret_key == DEFAULT_SECRET_KEY:
        if not config.debug:
            raise RuntimeError(
                "INSECURE_SECRET_KEY — default secret_key detected in production mode. "
                "Set a strong, unique SECRET_KEY in .env before deploying."
            )
        logger.warning("insecure_secret_key", detail="default secret_key in use")

    await create_tables(config)
    factory = get_session_factory(config)
    await _seed_default_roles(factory)
    if config.seed_admin_password:
        await _seed_admin_user(factory, config.seed_admin_password)

    logger.info("oopsreview_started")
    yield

    await close_engine()
    logger.info("oopsreview_stopped")


app = FastAPI(
    title="OopsReview Center",
    description="Incident tracking with an audited timeline",
    version=VERSION,
    lifespan=lifespan,
)

register_error_handlers(app)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in config.cors_origins.split(",") if o.strip()],
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["Authorization", "Content-Type", CSRF_HEADER],
    expose_headers=[CSRF_HEADER, "X-Request-ID"],
)

# Sliding expiry runs inside CSRF so a rejected write never refreshes the session
app.add_middleware(SessionRefreshMiddleware)
app.add_middleware(CSRFMiddleware)
app.add_middleware(SecurityHeadersMiddleware)

# Added LAST so it runs FIRST
app.add_middleware(RequestIDMiddleware)

app.include_router(api_router)


@app.get("/")
async def root():
    return {"name": config.app_name, "version": VERSION, "status": "operational"}


@app.get("/health")
async def health():
    """Liveness plus a database round trip."""
    try:
        async with get_engine(config).connect() as conn:
            await conn.execute(text("SELECT 1"))
        database = "ok"
    except Exception as e:
        logger.warning("health_database_unreachable", error=str(e))
        database = "unavailable"
    return {
        "status": "healthy" if database == "ok" else "degraded",
        "version": VERSION,
        "database": database,
    }


def main():
    """Run the OopsReview server."""
    uvicorn.run(
        "oopsreview.main:app",
        host=config.host,
        port=config.port,
        reload=config.debug,
        log_level="debug" if config.debug else "info",
    )


if __name__ == "__main__":
    main()
