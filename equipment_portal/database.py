import logging
from typing import AsyncGenerator, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import StaticPool

from equipment_portal.config import settings

logger = logging.getLogger(__name__)


def build_engine(url: str, echo: bool = False) -> AsyncEngine:
    """
    Create the async engine for a database URL

    In-memory SQLite needs a single shared connection, otherwise every
    checkout would see an empty database.
    """
    if url.startswith("sqlite") and ":memory:" in url:
        return create_async_engine(
            url,
            echo=echo,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(url, echo=echo)


def build_sessionmaker(bind: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(
        bind, class_=AsyncSession, expire_on_commit=False, autoflush=False
    )


# Async engine
engine = build_engine(str(settings.DATABASE_URL), echo=settings.DEBUG and settings.APP_ENV == "development")

# Async session factory
async_session = build_sessionmaker(engine)

# Declarative base for all models
Base = declarative_base()


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    FastAPI dependency yielding an async database session
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


async def create_tables(bind: AsyncEngine) -> None:
    # Models register themselves on Base.metadata when imported
    import equipment_portal.models  # noqa: F401

    async with bind.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def init_db() -> None:
    """
    Initialise the database at application startup
    """
    await create_tables(engine)

    async with async_session() as session:
        await ensure_admin_user(session)


async def ensure_admin_user(session: AsyncSession) -> Optional[str]:
    """
    Ensure that the seed admin account exists
    Returns the admin user ID, or None when no admin could be created
    """
    from equipment_portal.core.auth import get_password_hash
    from equipment_portal.models.users import Role, User

    result = await session.execute(select(User.id).where(User.role == Role.ADMIN.value).limit(1))
    admin_id = result.scalars().first()
    if admin_id:
        return admin_id

    if not settings.DEFAULT_ADMIN_EMAIL or not settings.DEFAULT_ADMIN_PASSWORD:
        logger.warning("No admin account exists and DEFAULT_ADMIN_EMAIL/DEFAULT_ADMIN_PASSWORD are not set")
        return None

    admin = User(
        name=settings.DEFAULT_ADMIN_NAME,
        email=settings.DEFAULT_ADMIN_EMAIL.lower(),
        password_hash=get_password_hash(settings.DEFAULT_ADMIN_PASSWORD),
        role=Role.ADMIN.value,
    )
    session.add(admin)
    await session.commit()
    logger.info("Created seed admin account %s", admin.email)
    return admin.id
