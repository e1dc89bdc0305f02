"""
Configuración de la base de datos y sesión async.
"""

from contextlib import asynccontextmanager
from typing import AsyncGenerator
from urllib.parse import parse_qs, urlencode, urlparse, urlunparse

import structlog
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import NullPool, StaticPool

from pasarela.db.models import Base


logger = structlog.get_logger(__name__)

# Parámetros de URL no soportados por asyncpg
UNSUPPORTED_PG_PARAMS = ("pgbouncer", "sslmode")


def normalize_database_url(database_url: str) -> str:
    """
    Adapta la URL al driver async.
    
    Convierte postgresql:// a postgresql+asyncpg:// y remueve parámetros
    que asyncpg no acepta (como pgbouncer).
    """
    if database_url.startswith("postgresql://"):
        database_url = database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    
    if not database_url.startswith("postgresql+asyncpg://"):
        return database_url
    
    parsed = urlparse(database_url)
    query_params = parse_qs(parsed.query)
    for param in UNSUPPORTED_PG_PARAMS:
        query_params.pop(param, None)
    # Deshabilitar cache de prepared statements (necesario detrás de pgbouncer)
    query_params["prepared_statement_cache_size"] = ["0"]
    
    return urlunparse((
        parsed.scheme,
        parsed.netloc,
        parsed.path,
        parsed.params,
        urlencode(query_params, doseq=True),
        parsed.fragment,
    ))


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """
    Crea el engine async.
    
    SQLite en memoria usa StaticPool: cada conexión nueva abriría una base
    vacía distinta.
    """
    url = normalize_database_url(database_url)
    
    if url.startswith("sqlite"):
        kwargs = {"connect_args": {"check_same_thread": False}}
        if ":memory:" in url or url.rstrip("/").endswith("sqlite+aiosqlite:"):
            kwargs["poolclass"] = StaticPool
        return create_async_engine(url, echo=echo, **kwargs)
    
    return create_async_engine(
        url,
        echo=echo,
        poolclass=NullPool,  # Recomendado para pgbouncer - no mantiene conexiones
        connect_args={"command_timeout": 60},
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Crea el session factory."""
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@asynccontextmanager
async def session_scope(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession, None]:
    """
    Context manager transaccional.
    
    Uso:
        async with session_scope(factory) as db:
            ...
    """
    async with session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


async def init_db(engine: AsyncEngine) -> None:
    """
    Inicializa la base de datos.
    Crea todas las tablas si no existen.
    """
    logger.info("Initializing database...")
    
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    logger.info("Database initialized successfully")


async def close_db(engine: AsyncEngine) -> None:
    """Cierra las conexiones de la base de datos."""
    await engine.dispose()
    logger.info("Database connections closed")
