from __future__ import annotations

import argparse
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect

from kujibox.config import configure_logging
from kujibox.db.engine import make_engine


def upgrade_db(target_revision: str = "head") -> None:
    """Apply Alembic migrations up to the requested revision."""
    project_root = Path(__file__).resolve().parents[1]
    alembic_cfg = Config(str(project_root / "alembic.ini"))
    alembic_cfg.set_main_option("script_location", str(project_root / "alembic"))
    command.upgrade(alembic_cfg, target_revision)


def print_tables() -> None:
    """List the draw core tables present in the configured database."""
    engine = make_engine()
    names = sorted(inspect(engine).get_table_names())
    print("Current tables:", ", ".join(names) if names else "(none)")


def main() -> None:
    parser = argparse.ArgumentParser(description="Migrate the kujibox database.")
    parser.add_argument("--revision", default="head", help="target Alembic revision")
    args = parser.parse_args()

    configure_logging()
    upgrade_db(args.revision)
    print_tables()


if __name__ == "__main__":
    main()
