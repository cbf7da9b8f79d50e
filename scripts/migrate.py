#!/usr/bin/env python3
"""
Create database tables.

Idempotent: existing tables are left untouched.

Usage:
    python scripts/migrate.py
"""

import asyncio
import logging
import sys
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from dotenv import load_dotenv
load_dotenv()

from app.infra.database import Database  # noqa: E402

logger = logging.getLogger("migrate")


async def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    database = Database()
    try:
        await database.create_all()
        logger.info(f"Tables created on {database.dialect_name}")
        return 0
    except Exception as e:
        logger.error(f"Migration failed: {e}")
        return 1
    finally:
        await database.close()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
