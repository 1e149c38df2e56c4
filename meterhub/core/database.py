"""
Database configuration and session management
"""
import logging
from pathlib import Path
from typing import Optional
from sqlalchemy import create_engine
from sqlalchemy import text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from meterhub.core.config import settings

logger = logging.getLogger(__name__)

PROJECT_ROOT = Path(__file__).resolve().parents[2]


def build_engine(database_url: str) -> Engine:
    """Create an engine, preparing the data directory for file-backed SQLite."""
    if "sqlite" in database_url:
        database = make_url(database_url).database
        if database and database != ":memory:":
            Path(database).parent.mkdir(parents=True, exist_ok=True)
        return create_engine(
            database_url,
            poolclass=StaticPool,
            connect_args={"check_same_thread": False},
            echo=False
        )
    return create_engine(database_url, echo=False)


# Create database engine
engine = build_engine(settings.DATABASE_URL)

# Create session factory
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

# Create base class for models
Base = declarative_base()


def _alembic_config() -> Config:
    alembic_ini = PROJECT_ROOT / "alembic.ini"
    alembic_dir = PROJECT_ROOT / "alembic"

    if not alembic_ini.exists() or not alembic_dir.exists():
        raise RuntimeError("Alembic configuration is missing. Cannot initialize database safely.")

    alembic_cfg = Config(str(alembic_ini))
    alembic_cfg.set_main_option("script_location", str(alembic_dir))
    return alembic_cfg


def _current_revision(bind: Engine) -> Optional[str]:
    try:
        with bind.connect() as conn:
            row = conn.execute(text("SELECT version_num FROM alembic_version LIMIT 1")).fetchone()
            return row[0] if row else None
    except SQLAlchemyError:
        return None


def init_db(bind: Optional[Engine] = None, auto_migrate: Optional[bool] = None) -> str:
    """Bring the schema to the Alembic head revision and return that revision.

    With auto-migration disabled the current revision is only checked, and a
    mismatch aborts startup.
    """
    bind = bind if bind is not None else engine
    if auto_migrate is None:
        auto_migrate = settings.DB_AUTO_MIGRATE

    alembic_cfg = _alembic_config()
    script = ScriptDirectory.from_config(alembic_cfg)
    heads = script.get_heads()
    if len(heads) != 1:
        raise RuntimeError("Expected a single Alembic head revision.")
    expected_head = heads[0]

    current_revision = _current_revision(bind)
    if current_revision != expected_head:
        if not auto_migrate:
            raise RuntimeError(
                f"Database revision mismatch. Current={current_revision}, Expected={expected_head}. "
                "Run `python -m alembic upgrade head` before starting the app."
            )
        logger.info("Upgrading database from %s to %s", current_revision, expected_head)
        with bind.begin() as connection:
            alembic_cfg.attributes["connection"] = connection
            alembic_cfg.attributes["configure_logger"] = False
            command.upgrade(alembic_cfg, "head")

    logger.info("Database revision verified at head: %s", expected_head)
    return expected_head
