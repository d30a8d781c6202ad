import logging
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import AsyncAdaptedQueuePool
from astba.util.db.setting import settings

logger = logging.getLogger(__name__)

# SQLite choisit lui-même son pool (StaticPool pour :memory:)
engine_options = {} if settings.DATABASE_URL.startswith("sqlite") else {"poolclass": AsyncAdaptedQueuePool}

async_engine = create_async_engine(
    settings.DATABASE_URL,
    echo=False,
    future=True,
    **engine_options
)

AsyncSessionLocal = async_sessionmaker(
    bind=async_engine,
    class_=AsyncSession,
    expire_on_commit=False,
)

Base = declarative_base()

async def get_async_db():
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await session.commit()
        except Exception as e:
            await session.rollback()
            logger.error(f"Erreur DB : {str(e)}", exc_info=True)
            raise

async def init_db():
    async with async_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Base de données initialisée")

async def close_db():
    await async_engine.dispose()
    logger.info("Connexion à la base de données fermée")
