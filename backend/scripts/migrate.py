#!/usr/bin/env python3
"""
Migration CLI - apply pending schema migrations or show their status.

Usage:
    python scripts/migrate.py upgrade
    python scripts/migrate.py status

Connection settings come from the environment (DATABASE_TYPE, SQLITE_FILENAME,
MYSQL_*), the same as the API process.
"""

import argparse
import asyncio
import sys
from pathlib import Path

# Add parent to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from infradb.core.config import get_settings
from infradb.core.exceptions import InfraDBError
from infradb.core.logging_config import configure_logging
from infradb.db.adapter import create_adapter
from infradb.db.migrations import MIGRATIONS, MigrationRunner


async def run(command: str) -> int:
    settings = get_settings()
    configure_logging(settings)
    adapter = create_adapter(settings.database_config())
    await adapter.connect()
    try:
        runner = MigrationRunner(adapter, MIGRATIONS)
        if command == "upgrade":
            applied = await runner.run()
            print(f"Applied {len(applied)} migration(s)" + (f": {', '.join(applied)}" if applied else ""))
        else:
            for status in await runner.status():
                state = f"applied {status.applied_at}" if status.applied else "pending"
                print(f"{status.id}  {status.name:<32} {state}")
    finally:
        await adapter.disconnect()
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="Manage the InfraDB database schema")
    parser.add_argument("command", choices=["upgrade", "status"], help="Action to perform")
    args = parser.parse_args()

    try:
        return asyncio.run(run(args.command))
    except InfraDBError as e:
        cause = f" ({e.__cause__})" if e.__cause__ else ""
        print(f"ERROR: {e}{cause}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
