#!/usr/bin/env python3
"""
Apply pending SQL migrations from the migrations/ directory.
Run this from the project root: python scripts/run_migrations.py [migrations_dir]
"""
import sys
import os

# Add parent directory to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables first
from dotenv import load_dotenv
load_dotenv()

from pbms.logging import setup_logging
from pbms.migrations import MigrationError, apply_migrations


def main() -> int:
    setup_logging()
    directory = sys.argv[1] if len(sys.argv) > 1 else None
    try:
        applied = apply_migrations(directory=directory)
    except MigrationError as e:
        print(f"❌ Migration {e.version} failed: {e.cause}")
        return 1
    if applied:
        print(f"✅ Applied {len(applied)} migration(s): {', '.join(applied)}")
    else:
        print("✅ Database is up to date")
    return 0


if __name__ == "__main__":
    sys.exit(main())
