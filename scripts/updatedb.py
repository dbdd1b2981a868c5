"""Bring the webmail database schema up to date during a deployment."""

from __future__ import annotations

import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from mailadmin.config import Settings  # noqa: E402
from mailadmin.db import connect  # noqa: E402
from mailadmin.mail_db.migrations import get_version, update_schema  # noqa: E402


def main() -> int:
    settings = Settings()
    settings.ensure_sqlite_parent()
    with connect(settings) as db:
        ok = update_schema(
            db,
            settings.schema_dir,
            settings.package,
            errors=settings.upgrade_errors_fatal,
        )
        version = get_version(db, settings.package)
    if not ok:
        print(f"Schema update for {settings.package} failed.", file=sys.stderr)
        return 1
    print(f"{settings.package} schema at version {version} ({settings.schema_dir})")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
