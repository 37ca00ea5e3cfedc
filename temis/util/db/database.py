import logging
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from temis.util.db.setting import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    """Options du moteur selon le backend : pool réseau pour PostgreSQL, rien pour SQLite."""
    if make_url(url).get_backend_name() == "sqlite":
        return {}
    return {"pool_pre_ping": True, "pool_size": 10, "max_overflow": 20, "pool_recycle": 1800}


async_engine = create_async_engine(settings.DATABASE_URL, echo=False, **_engine_options(settings.DATABASE_URL))

# Les services relisent explicitement après chaque commit
AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()


async def get_async_db():
    """Session par requête. Chaque service valide lui-même ses écritures."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def init_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Base de données initialisée ({len(Base.metadata.tables)} tables)")


async def close_db():
    await async_engine.dispose()
    logger.info("Connexion à la base de données fermée")
