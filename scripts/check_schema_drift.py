"""Fail when the migrated database and the kujibox models disagree.

Exit codes: 0 in sync, 1 drift found, 2 the check itself failed.
"""

from __future__ import annotations

import argparse
import sys

from alembic.autogenerate import api as ag_api
from alembic.runtime.migration import MigrationContext

from kujibox.db.engine import make_engine
from kujibox.models import Base


def _print_ops(ops, indent: int = 0) -> None:
    for op in ops:
        print(f"{'  ' * indent}- {op}")
        nested = getattr(op, "ops", None)
        if nested:
            _print_ops(nested, indent + 1)


def check(database_url: str | None = None) -> int:
    engine = make_engine(database_url)
    shown = engine.url.render_as_string(hide_password=True)
    try:
        with engine.connect() as connection:
            context = MigrationContext.configure(
                connection=connection,
                opts={
                    "compare_type": True,
                    "compare_server_default": True,
                    "render_as_batch": connection.dialect.name == "sqlite",
                },
            )
            upgrade_ops = ag_api.produce_migrations(context, Base.metadata).upgrade_ops
    except Exception as exc:
        print(f"Schema drift check: ERROR for {shown}: {exc}", file=sys.stderr)
        return 2

    if upgrade_ops is None:
        print(f"Schema drift check: ERROR for {shown}: no upgrade ops produced.")
        return 2
    if upgrade_ops.is_empty():
        print(f"Schema drift check: OK for {shown}.")
        return 0
    print(f"Schema drift check: FAILED for {shown}. Pending differences:")
    _print_ops(upgrade_ops.ops or [])
    return 1


def main() -> int:
    parser = argparse.ArgumentParser(description="Compare the database schema with the models.")
    parser.add_argument("--url", default=None, help="database URL (defaults to DB_URL)")
    return check(parser.parse_args().url)


if __name__ == "__main__":
    raise SystemExit(main())
