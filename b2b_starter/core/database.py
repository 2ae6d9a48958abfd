"""Database configuration and session management"""

from sqlalchemy import create_engine, event, text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base, sessionmaker
from b2b_starter.config import Settings, settings
import logging

logger = logging.getLogger(__name__)


def enable_sqlite_foreign_keys(bind: Engine) -> None:
    @event.listens_for(bind, "connect")
    def _set_sqlite_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(config: Settings) -> Engine:
    """
    Create the SQLAlchemy engine for the configured database.

    PostgreSQL connections get a server-side statement timeout so no
    persistence call can hold a request worker indefinitely.
    """
    url = config.get_database_url()
    if url.startswith("sqlite"):
        sqlite_engine = create_engine(
            url,
            connect_args={"check_same_thread": False},
            echo=config.DEBUG,
        )
        enable_sqlite_foreign_keys(sqlite_engine)
        return sqlite_engine

    connect_args = {}
    if url.startswith("postgresql"):
        connect_args["options"] = f"-c statement_timeout={config.DATABASE_STATEMENT_TIMEOUT_MS}"

    return create_engine(
        url,
        pool_size=config.DATABASE_POOL_SIZE,
        max_overflow=config.DATABASE_MAX_OVERFLOW,
        pool_timeout=config.DATABASE_POOL_TIMEOUT_SECONDS,
        pool_recycle=3600,
        pool_pre_ping=True,
        connect_args=connect_args,
        echo=config.DEBUG,
    )


def make_session_factory(bind: Engine) -> sessionmaker:
    # Stores hand loaded rows back after commit, so attributes must survive
    # the session closing.
    return sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=bind)


# PostgreSQL engine
engine = build_engine(settings)
SessionLocal = make_session_factory(engine)

# Create base class for models
Base = declarative_base()

# Import models after Base is defined so metadata is populated.
from b2b_starter import models  # noqa: E402,F401


def init_db(bind: Engine = engine, config: Settings = settings) -> None:
    """
    Initialize database according to configured strategy.

    DB_INIT_MODE:
      - migrate: require alembic_version table (migration-first discipline)
      - create_all: legacy behavior for local/dev bootstrap
      - off: skip initialization check
    """
    mode = config.DB_INIT_MODE.lower().strip()
    if mode == "off":
        logger.info("DB initialization check skipped (DB_INIT_MODE=off)")
        return

    if mode == "create_all":
        Base.metadata.create_all(bind=bind)
        logger.warning("Using create_all database initialization (recommended only for local development).")
        return

    if mode == "migrate":
        with bind.connect() as conn:
            if bind.dialect.name == "postgresql":
                version_table_exists = conn.execute(
                    text("SELECT to_regclass('public.alembic_version')")
                ).scalar()
                exists = bool(version_table_exists)
            elif bind.dialect.name == "sqlite":
                version_table_exists = conn.execute(
                    text(
                        "SELECT name FROM sqlite_master WHERE type='table' AND name='alembic_version'"
                    )
                ).fetchone()
                exists = bool(version_table_exists)
            else:
                exists = "alembic_version" in inspect(conn).get_table_names()
            if config.DB_REQUIRE_HEAD and not exists:
                raise RuntimeError(
                    "Migration table missing. Run Alembic migrations before starting the API."
                )
        logger.info("Migration metadata detected.")
        return

    raise RuntimeError(f"Unknown DB_INIT_MODE: {config.DB_INIT_MODE}")
