from __future__ import annotations

import sys
from logging.config import fileConfig
from pathlib import Path

from alembic import context
from dotenv import load_dotenv

# Make the fairdraw package importable and pick up DB_URL from .env
ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))
load_dotenv(ROOT_DIR / ".env")

from fairdraw.db.engine import DEFAULT_SQLITE_URL, make_engine  # noqa: E402
from fairdraw.models import Base  # noqa: E402 - import registers every table

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata

# An explicit ``-x db_url=...`` wins over the environment.
DATABASE_URL = context.get_x_argument(as_dictionary=True).get("db_url", DEFAULT_SQLITE_URL)
config.set_main_option("sqlalchemy.url", DATABASE_URL.replace("%", "%%"))


def _configure_kwargs() -> dict:
    return {
        "target_metadata": target_metadata,
        "compare_type": True,
        "compare_server_default": True,
    }


def run_migrations_offline() -> None:
    """Emit SQL for the raffle schema without connecting."""

    context.configure(
        url=DATABASE_URL,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )
    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Apply migrations against the configured database."""

    engine = make_engine(database_url=DATABASE_URL)
    with engine.connect() as connection:
        context.configure(
            connection=connection,
            # SQLite cannot ALTER constraints in place.
            render_as_batch=connection.dialect.name == "sqlite",
            **_configure_kwargs(),
        )
        with context.begin_transaction():
            context.run_migrations()
    engine.dispose()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
