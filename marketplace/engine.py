__all__ = [
    'SQLDB_ENGINE',
    'create_db_engine',
    'init_db',
    'SessionLocal',
    'transaction',
]

import contextlib
import logging
import os
import typing
import sqlalchemy
import sqlalchemy.exc
import sqlalchemy.pool
import sqlmodel
from .errors import MarketplaceError, Conflict, StoreFailure


logger = logging.getLogger(__name__)

# configs
USERNAME = os.getenv('DB_USERNAME', 'root')
PASSWORD = os.getenv('DB_PASSWORD', '')
HOST = os.getenv('DB_HOST', 'localhost')
PORT = int(os.getenv('DB_PORT', '5432'))
DATABASE = os.getenv('DB_DATABASE', 'marketplace')
DB_URL = os.getenv(
    'DB_URL',
    f'postgresql+psycopg2://{USERNAME}:{PASSWORD}@{HOST}:{PORT}/{DATABASE}'
)


def create_db_engine(url: str) -> sqlalchemy.Engine:
    """Create an engine for `url`.

    SQLite gets foreign keys switched on, and in-memory databases share
    one connection so every session sees the same tables.
    """
    if not url.startswith('sqlite'):
        return sqlmodel.create_engine(url, pool_pre_ping=True)

    kwargs: dict[str, typing.Any] = {"connect_args": {"check_same_thread": False}}
    if url in ('sqlite://', 'sqlite:///:memory:'):
        kwargs["poolclass"] = sqlalchemy.pool.StaticPool
    engine = sqlmodel.create_engine(url, **kwargs)

    @sqlalchemy.event.listens_for(engine, "connect")
    def _enable_foreign_keys(dbapi_connection, _):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    return engine


SQLDB_ENGINE = create_db_engine(DB_URL)


def SessionLocal() -> sqlmodel.Session:
    # Rows handed back to routes outlive their session.
    return sqlmodel.Session(SQLDB_ENGINE, expire_on_commit=False)

@contextlib.contextmanager
def transaction() -> typing.Iterator[sqlmodel.Session]:
    """Run the block in one transaction.

    Commits when the block finishes, rolls back everything on any error.
    Unique-key violations surface as :class:`Conflict`, any other store
    error as :class:`StoreFailure`; domain errors pass through untouched.
    """
    with SessionLocal() as db_session:
        try:
            yield db_session
            db_session.commit()
        except MarketplaceError:
            db_session.rollback()
            raise
        except sqlalchemy.exc.IntegrityError as e:
            db_session.rollback()
            raise Conflict(f"Constraint violated: {e.orig}") from e
        except sqlalchemy.exc.SQLAlchemyError as e:
            db_session.rollback()
            logger.exception("Store failure, transaction rolled back")
            raise StoreFailure(str(e)) from e


def init_db() -> None:
    """Create missing tables."""
    from . import schemas  # noqa: F401  registers every table
    sqlmodel.SQLModel.metadata.create_all(SQLDB_ENGINE)
    logger.info("Database tables checked/created.")
