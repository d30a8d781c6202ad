import asyncio
import logging
import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from sqlalchemy import pool
from sqlalchemy.ext.asyncio import create_async_engine

from dotenv import load_dotenv

# === Chargement env & config ===
BASE_DIR = Path(__file__).resolve().parent.parent  # racine du projet
sys.path.insert(0, str(BASE_DIR))
load_dotenv(BASE_DIR / ".env")

config = context.config
if config.config_file_name is not None:
    fileConfig(config.config_file_name)
logger = logging.getLogger("alembic.env")

# === Import Base & modèles (assure la découverte de toutes les tables) ===
from astba.util.db.database import Base
from astba.api.model import (  # noqa: F401
    Etudiant, Formation, Niveau, Seance, Inscription, Presence, Certificat,
)
from astba.util.db.setting import settings

target_metadata = Base.metadata

database_url = settings.DATABASE_URL
if not database_url:
    raise ValueError("DATABASE_URL n'est pas défini dans la configuration")
logger.info(f"Migrations sur {database_url.split('@')[-1]}")

# Propager l'URL à Alembic (utile en offline)
config.set_main_option("sqlalchemy.url", database_url)

# SQLite ne sait pas modifier une table en place : mode batch
RENDER_AS_BATCH = database_url.startswith("sqlite")


def run_migrations_offline() -> None:
    """Exécuter les migrations en mode hors-ligne."""
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        compare_type=True,
        render_as_batch=RENDER_AS_BATCH,
    )
    with context.begin_transaction():
        context.run_migrations()


def do_run_migrations(connection) -> None:
    context.configure(
        connection=connection,
        target_metadata=target_metadata,
        compare_type=True,
        compare_server_default=True,
        render_as_batch=RENDER_AS_BATCH,
    )
    with context.begin_transaction():
        context.run_migrations()


async def run_migrations_online() -> None:
    """Exécuter les migrations en mode en-ligne (async)."""
    connectable = create_async_engine(database_url, poolclass=pool.NullPool, future=True)
    try:
        async with connectable.connect() as connection:
            await connection.run_sync(do_run_migrations)
    except Exception as e:
        logger.error(f"Échec des migrations en ligne : {str(e)}")
        raise
    finally:
        await connectable.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    asyncio.run(run_migrations_online())
