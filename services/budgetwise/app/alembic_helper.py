import asyncio
import os

from alembic import command
from alembic.config import Config
from loguru import logger


def _upgrade_head(alembic_ini_path: str, database_dsn: str) -> None:
    alembic_cfg = Config(alembic_ini_path)
    # ConfigParser interpolation treats "%" specially (URL-encoded passwords)
    alembic_cfg.set_main_option("sqlalchemy.url", database_dsn.replace("%", "%%"))
    command.upgrade(alembic_cfg, "head")


async def run_alembic_migrations(database_dsn: str) -> None:
    """Apply the ledger migrations up to head using the sync driver."""
    base_dir = os.path.dirname(os.path.abspath(__file__))
    # Points to: services/budgetwise/app/db/migrations/alembic.ini
    alembic_ini_path = os.path.join(base_dir, "db", "migrations", "alembic.ini")

    if not os.path.exists(alembic_ini_path):
        logger.warning(f"Alembic config not found at {alembic_ini_path}, skipping migrations.")
        return

    logger.info("🚀 Running Alembic migrations...")
    try:
        # Alembic is synchronous; keep the event loop free while it runs
        await asyncio.to_thread(_upgrade_head, alembic_ini_path, database_dsn)
    except Exception as e:
        logger.error(f"❌ Alembic migration failed: {e}")
        raise
    logger.info("✅ Alembic migrations applied successfully.")
