from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from localhy.config import Settings, settings


def build_engine(config: Settings):
    url = config.database_url
    if url.startswith("sqlite"):
        # SQLite has no pool sizing or search_path; used for local runs and tests
        return create_engine(
            url,
            echo=config.DEBUG,
            connect_args={"check_same_thread": False},
        )

    return create_engine(
        url,
        pool_size=config.DB_POOL_SIZE,
        max_overflow=config.DB_MAX_OVERFLOW,
        pool_pre_ping=True,  # connection health check
        pool_recycle=3600,
        echo=config.DEBUG,  # SQL logging in debug mode
        connect_args={"options": f"-csearch_path={config.POSTGRES_SCHEMA}"},
    )


engine = build_engine(settings)

# Use expire_on_commit=False to avoid DetachedInstanceError when accessing
# attributes after commit within the same request scope (common FastAPI pattern).
SessionLocal = sessionmaker(
    autocommit=False,
    autoflush=False,
    bind=engine,
    expire_on_commit=False,
)
