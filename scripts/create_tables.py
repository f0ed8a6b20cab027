#!/usr/bin/env python3
"""
Continuity Engine - Database Table Creation Script
Creates the record store tables using SQLAlchemy ORM
"""

import sys
import logging
from pathlib import Path

# Add parent directory to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from continuity_engine.config import settings
from continuity_engine.exceptions import StorageError
from continuity_engine.logging_setup import setup_logging
from continuity_engine.models import Base
from continuity_engine.services.database import create_tables, get_engine

logger = logging.getLogger(__name__)


def create_all_tables() -> int:
    """Create all record store tables"""
    setup_logging()

    db_url = settings.get_database_url()
    logger.info(f"Connecting to database: {db_url.split('@')[1] if '@' in db_url else 'local'}")

    try:
        engine = get_engine(db_url)
        create_tables(engine)

        logger.info("Tables:")
        for table in Base.metadata.sorted_tables:
            logger.info(f"  - {table.name}")
        return 0

    except StorageError as e:
        logger.error(f"Error creating tables: {e}", exc_info=True)
        return 1


if __name__ == "__main__":
    sys.exit(create_all_tables())
