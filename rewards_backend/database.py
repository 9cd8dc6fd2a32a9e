"""Database engine, session factory and the FastAPI session dependency."""
import logging

from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base

from rewards_backend.config import Settings, get_settings

logger = logging.getLogger(__name__)

# Hosts that only accept TLS connections
_SSL_HOST_MARKERS = ("heroku", "amazonaws", "render.com")


def _is_sqlite(database_url: str) -> bool:
    return make_url(database_url).get_backend_name() == "sqlite"


def build_connect_args(settings: Settings) -> dict:
    """Driver connect arguments; SQLite never gets SSL."""
    if _is_sqlite(settings.database_url):
        return {}
    if settings.environment == "production" or any(marker in settings.database_url for marker in _SSL_HOST_MARKERS):
        logger.debug("SSL connection enabled (ssl=require)")
        return {"ssl": "require"}
    return {}


def build_pool_options(settings: Settings) -> dict:
    """Pool sizing for server databases; SQLite uses SQLAlchemy's defaults."""
    if _is_sqlite(settings.database_url):
        return {}

    pool_size = max(1, settings.db_pool_size)
    max_overflow = max(0, settings.db_max_overflow)
    if settings.environment == "production":
        # Hobby-tier Postgres plans cap total connections
        pool_size = min(pool_size, 2)
        max_overflow = min(max_overflow, 2)
    return {"pool_size": pool_size, "max_overflow": max_overflow, "pool_recycle": 3600}


def create_engine_for(settings: Settings):
    return create_async_engine(
        settings.database_url,
        echo=False,
        connect_args=build_connect_args(settings),
        pool_pre_ping=True,
        **build_pool_options(settings),
    )


settings = get_settings()

try:
    engine = create_engine_for(settings)
    logger.debug(f"Database engine created for {make_url(settings.database_url).get_backend_name()}")
except Exception as e:
    logger.error(f"Failed to create database engine: {e}")
    raise

AsyncSessionLocal = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
    autoflush=False,
)

Base = declarative_base()


async def get_db():
    """Yield one session per request."""
    async with AsyncSessionLocal() as session:
        yield session
