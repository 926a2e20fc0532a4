from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import declarative_base
from sqlalchemy.pool import NullPool

from .settings import get_settings

settings = get_settings()

engine_options = {"echo": settings.database_echo}
if settings.database_null_pool:
    # One connection per checkout; required when the event loop changes between uses
    engine_options["poolclass"] = NullPool

engine = create_async_engine(settings.database_url, **engine_options)

AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

Base = declarative_base()


async def get_db():
    async with AsyncSessionLocal() as session:
        yield session
