from __future__ import annotations

import sys

from alembic.autogenerate import compare_metadata
from alembic.runtime.migration import MigrationContext

from fairdraw.db.engine import make_engine
from fairdraw.models import Base


def main() -> int:
    """Compare the ORM models with the live database; exit 1 on drift, 2 on error."""
    engine = make_engine()
    url_display = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={"compare_type": True, "compare_server_default": True},
            )
            diffs = compare_metadata(context, Base.metadata)
    except Exception as exc:
        print(f"Schema drift check: ERROR for {url_display}: {exc}", file=sys.stderr)
        return 2
    finally:
        engine.dispose()

    if not diffs:
        print(f"Schema drift check: OK for {url_display}.")
        return 0
    print(f"Schema drift check: {len(diffs)} difference(s) for {url_display}:")
    for diff in diffs:
        print(f"  - {diff}")
    return 1


if __name__ == "__main__":
    raise SystemExit(main())
