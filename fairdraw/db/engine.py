"""Engine and session factories for the raffle database."""

import os
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from sqlalchemy import create_engine, event
from sqlalchemy.engine import Engine
from sqlalchemy.orm import sessionmaker

from .utils import resolve_sqlite_url

load_dotenv()

ROOT_DIR = Path(__file__).resolve().parents[2]
DEFAULT_SQLITE_URL = resolve_sqlite_url(
    os.getenv("DB_URL", "sqlite:///./dev.db"), ROOT_DIR
)


def _enable_sqlite_foreign_keys(dbapi_connection, connection_record) -> None:
    # SQLite ships with foreign keys off; entries and winners rely on them.
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def make_engine(database_url: Optional[str] = None, echo: bool = False, **kwargs: Any) -> Engine:
    """Create the engine for ``database_url`` or the ``DB_URL`` setting.

    Parameters
    ----------
    database_url : Optional[str], default: None
        SQLAlchemy URL. Defaults to ``DB_URL`` from the environment, falling
        back to ``sqlite:///./dev.db`` under the project root.
    echo : bool, default: False
        Log emitted SQL.
    **kwargs
        Forwarded to :func:`sqlalchemy.create_engine`, e.g. ``connect_args``.

    Returns
    -------
    Engine
        Engine with foreign keys enforced when the backend is SQLite.
    """

    url = database_url or DEFAULT_SQLITE_URL
    engine = create_engine(url, echo=echo, future=True, **kwargs)
    if engine.dialect.name == "sqlite":
        event.listen(engine, "connect", _enable_sqlite_foreign_keys)
    return engine


def get_sessionmaker(engine: Optional[Engine] = None) -> sessionmaker:
    """Return a session factory whose objects stay readable after commit.

    Draw outcomes and public views are built from instances after their
    transaction ended, hence ``expire_on_commit=False``.
    """

    return sessionmaker(
        bind=engine if engine is not None else make_engine(),
        expire_on_commit=False,
        future=True,
    )
