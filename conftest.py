"""
Fixtures communes : base SQLite en mémoire et client HTTP in-process
"""
import os

# Avant tout import de astba : le moteur global est créé à l'import
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
import pytest_asyncio
import httpx
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from astba.api import model  # noqa: F401  (enregistre les tables)
from astba.api.accessor import InMemoryAccessor
from astba.main import app
from astba.util.db.database import Base, get_async_db

FORMATION_ID = 100
ETUDIANT_ID = 1


@pytest.fixture
def accessor():
    """Formation de 2 niveaux x 2 séances, un étudiant inscrit"""
    store = InMemoryAccessor()
    store.add_training(FORMATION_ID, nombre_niveaux=2, seances_par_niveau=2)
    store.add_enrollment(ETUDIANT_ID, FORMATION_ID)
    return store


@pytest_asyncio.fixture
async def session_factory():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def client(session_factory):
    async def override_get_async_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_async_db] = override_get_async_db
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http_client:
        yield http_client
    app.dependency_overrides.clear()
