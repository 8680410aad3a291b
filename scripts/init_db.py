import logging
import os
import sys

sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from sqlalchemy import text  # noqa: E402

from localhy.config import settings  # noqa: E402
from localhy.database.connection import engine  # noqa: E402
from localhy.logging_config import setup_logging  # noqa: E402
from localhy.models.base import Base  # noqa: E402
from localhy.models import credits, notification, referral_job  # noqa: E402,F401

logger = logging.getLogger("localhy.scripts.init_db")


def init_db():
    """Create the schema (PostgreSQL) and every table"""
    try:
        if engine.dialect.name == "postgresql":
            with engine.connect() as conn:
                conn.execute(
                    text(f"CREATE SCHEMA IF NOT EXISTS {settings.POSTGRES_SCHEMA}")
                )
                conn.commit()

        Base.metadata.create_all(bind=engine)
        logger.info(
            f"Database initialized: {', '.join(sorted(Base.metadata.tables))}"
        )
    except Exception as e:
        logger.error(f"Database initialization failed: {str(e)}")
        raise


if __name__ == "__main__":
    setup_logging(settings.LOG_LEVEL, settings.LOG_FORMAT)
    init_db()
