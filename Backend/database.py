from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker, declarative_base
import logging

logger = logging.getLogger(__name__)

Base = declarative_base()


def create_db_engine(settings):
    """
    Build the engine from explicit settings. The caller owns it and
    disposes it (TicketStore.close()).
    """
    url = settings.database_url

    if url.startswith("sqlite"):
        engine = create_engine(
            url,
            connect_args={
                "check_same_thread": False,
                "timeout": settings.pool_timeout,   # busy wait on the file lock
            },
            echo=False
        )
        _begin_immediate(engine)
    else:
        # PostgreSQL connection settings
        engine = create_engine(
            url,
            pool_pre_ping=True,  # Verify connections before using
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
            pool_timeout=settings.pool_timeout,
            connect_args={
                "connect_timeout": int(settings.pool_timeout),
                "options": f"-c statement_timeout={settings.statement_timeout_ms}",
            },
            echo=False
        )

    logger.info(f"Database engine created for {engine.url.render_as_string(hide_password=True)}")
    return engine


def _begin_immediate(engine):
    # pysqlite's own transaction handling is disabled so every SQLAlchemy
    # transaction opens with BEGIN IMMEDIATE and holds the write lock.
    # Connections marked read_only open a deferred BEGIN and never queue
    # behind writers.
    @event.listens_for(engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _on_begin(conn):
        if conn.get_execution_options().get("read_only"):
            conn.exec_driver_sql("BEGIN")
        else:
            conn.exec_driver_sql("BEGIN IMMEDIATE")


def make_session_factory(engine):
    return sessionmaker(bind=engine, expire_on_commit=False)


def create_tables(engine):
    # Import models so they register on Base.metadata
    import app_models  # noqa: F401
    Base.metadata.create_all(bind=engine)
    logger.info("Database tables created successfully")
