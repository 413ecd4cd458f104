#!/usr/bin/env python3
"""
Create the rate catalogue and payment ledger tables, then seed the rate
catalogue from config/rate_tables.yml.

Uses DATABASE_URL environment variable. Does NOT drop existing tables;
catalogue rows are replaced, payment rows are left alone. When REDIS_URL is
set the shared rate-table version is bumped so running gateways reload.
"""

from __future__ import annotations

import asyncio
import logging
import os
import sys
from pathlib import Path

from dotenv import load_dotenv
load_dotenv()

# Make sure policy_gateway is importable when run from a checkout
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import inspect, text
from sqlalchemy.exc import OperationalError

from policy_gateway.database.postgres_real import Database
from policy_gateway.database.seed import seed_rate_catalog
from policy_gateway.utils.config_loader import load_rate_catalog


def main() -> int:
    logging.basicConfig(level=logging.INFO)

    url = os.environ.get("DATABASE_URL")
    if not url:
        print("DATABASE_URL is not set", file=sys.stderr)
        return 1

    try:
        db = Database(url)

        with db.engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        print("✅ Database connection OK")

        # Create all tables (only missing ones will be added)
        db.create_tables()
        tables = inspect(db.engine).get_table_names()
        print("✅ Gateway tables now exist:", sorted(tables))

        counts = seed_rate_catalog(db, load_rate_catalog())
        print("✅ Rate catalogue seeded:", counts)

        if os.environ.get("REDIS_URL"):
            from policy_gateway.database.redis_real import RedisRateVersion

            version = asyncio.run(RedisRateVersion(os.environ["REDIS_URL"]).bump_version())
            print(f"✅ Rate table version bumped to {version}")
        return 0

    except OperationalError as e:
        print(f"❌ Failed to connect to database: {e}", file=sys.stderr)
        return 2
    except Exception as e:
        print(f"❌ Unexpected error: {e}", file=sys.stderr)
        return 3


if __name__ == "__main__":
    sys.exit(main())
