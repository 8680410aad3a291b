import logging
from typing import Iterator

from sqlalchemy.orm import Session

from localhy.database.connection import SessionLocal

logger = logging.getLogger(__name__)


def get_db() -> Iterator[Session]:
    """Session for the container; anything left uncommitted is rolled back on close."""
    db = SessionLocal()
    try:
        yield db
    except Exception as e:
        logger.warning(f"Rolling back session after error: {type(e).__name__}")
        db.rollback()
        raise
    finally:
        if db.in_transaction():
            db.rollback()
        db.close()
