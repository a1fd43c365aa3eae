from sqlalchemy.ext.asyncio import create_async_engine

from keyword_engine.core.config import settings

# Shared by the API process; Celery tasks build their own engine per event loop
engine = create_async_engine(
    settings.postgres_url,
    echo=False,
    pool_size=10,
    max_overflow=10,
    pool_pre_ping=True,
)
