# infra_dashboard/infrastructure/database/session.py

from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

_ASYNC_DRIVER = "postgresql+asyncpg://"


def to_async_url(url: str) -> str:
    """Accept plain postgres:// or postgresql:// URLs and route them through asyncpg."""
    for scheme in ("postgresql+asyncpg://", "postgresql://", "postgres://"):
        if url.startswith(scheme):
            return _ASYNC_DRIVER + url[len(scheme):]
    return url


def build_engine(url: str, pool_size: int = 5, connect_timeout: float = 5.0) -> AsyncEngine:
    # Read-only access to the deployment platform's database; a small pool is enough.
    return create_async_engine(
        to_async_url(url),
        echo=False,
        pool_pre_ping=True,
        pool_size=pool_size,
        max_overflow=0,
        pool_recycle=1800,
        connect_args={"timeout": connect_timeout},
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
        class_=AsyncSession,
    )
