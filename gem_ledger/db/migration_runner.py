"""
Migration Runner - Runs Alembic migrations at application startup.

Pending migrations are applied before the API starts serving requests.
"""

from dataclasses import dataclass
from pathlib import Path

from sqlalchemy import Engine, create_engine

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from alembic.script import ScriptDirectory
from gem_ledger.config import settings
from gem_ledger.observability.logging import get_logger

logger = get_logger(__name__)

# Path to alembic.ini relative to project root
ALEMBIC_INI_PATH = Path(__file__).parent.parent.parent / "alembic.ini"

# Async drivers and the sync drivers Alembic's command API uses instead
_SYNC_DRIVERS = {
    "+asyncpg": "+psycopg2",
    "+aiosqlite": "",
}


@dataclass(frozen=True)
class MigrationStatus:
    """Current vs head revision of the database schema."""

    current_revision: str | None
    head_revision: str | None

    @property
    def pending(self) -> bool:
        return self.current_revision != self.head_revision


def get_sync_database_url(url: str | None = None) -> str:
    """Convert an async database URL into its synchronous equivalent."""
    url = url or settings.database_url
    for async_driver, sync_driver in _SYNC_DRIVERS.items():
        url = url.replace(async_driver, sync_driver)
    return url


def _alembic_config(sync_url: str) -> Config:
    alembic_cfg = Config(str(ALEMBIC_INI_PATH))
    alembic_cfg.set_main_option("script_location", str(ALEMBIC_INI_PATH.parent / "alembic"))
    alembic_cfg.set_main_option("sqlalchemy.url", sync_url.replace("%", "%%"))
    return alembic_cfg


def _get_current_revision(engine: Engine) -> str | None:
    """Get the current database revision."""
    with engine.connect() as conn:
        context = MigrationContext.configure(conn)
        return context.get_current_revision()


def _get_head_revision(alembic_cfg: Config) -> str | None:
    """Get the head revision from migration scripts."""
    script = ScriptDirectory.from_config(alembic_cfg)
    return script.get_current_head()


def run_migrations() -> None:
    """
    Run pending Alembic migrations.

    Called at application startup to ensure the database schema is up to date.
    """
    if not ALEMBIC_INI_PATH.exists():
        logger.warning("alembic_config_missing", path=str(ALEMBIC_INI_PATH))
        return

    sync_url = get_sync_database_url()
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)

    try:
        current = _get_current_revision(engine)
        head = _get_head_revision(alembic_cfg)

        if current == head:
            logger.info("database_schema_up_to_date", revision=current)
            return

        logger.info("migrations_running", from_revision=current, to_revision=head)
        command.upgrade(alembic_cfg, "head")

        logger.info("migrations_complete", revision=_get_current_revision(engine))
    except Exception as e:
        logger.error("migration_failed", error=str(e), exc_info=True)
        raise RuntimeError(f"Database migration failed: {e}") from e
    finally:
        engine.dispose()


def check_migrations_status() -> MigrationStatus:
    """Check migration status without applying them."""
    sync_url = get_sync_database_url()
    alembic_cfg = _alembic_config(sync_url)
    engine = create_engine(sync_url)
    try:
        return MigrationStatus(
            current_revision=_get_current_revision(engine),
            head_revision=_get_head_revision(alembic_cfg),
        )
    finally:
        engine.dispose()
