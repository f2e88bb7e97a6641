from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from fairdraw.db.engine import make_engine

PROJECT_ROOT = Path(__file__).resolve().parents[1]


def upgrade_db(target_revision: str = "head") -> None:
    """Apply the raffle schema migrations up to ``target_revision``."""
    alembic_cfg = Config(str(PROJECT_ROOT / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(PROJECT_ROOT / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def describe_tables() -> list[str]:
    """Return ``table(row_count)`` labels for the configured database."""
    engine = make_engine()
    insp = inspect(engine)
    labels = []
    with engine.connect() as conn:
        for name in sorted(insp.get_table_names()):
            if name == "alembic_version":
                continue
            count = conn.exec_driver_sql(f'SELECT COUNT(*) FROM "{name}"').scalar()
            labels.append(f"{name}({count})")
    engine.dispose()
    return labels


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate the raffle database.")
    parser.add_argument("--revision", default="head", help="Alembic target revision")
    args = parser.parse_args()

    upgrade_db(args.revision)
    print("Raffle tables:", ", ".join(describe_tables()) or "(none)")


if __name__ == "__main__":
    main()
