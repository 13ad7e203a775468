"""Database connection configuration."""
from contextlib import asynccontextmanager
from sqlalchemy.ext.asyncio import create_async_engine, AsyncSession
from sqlalchemy.orm import sessionmaker
from config import settings

DATABASE_URL = settings.database_url

# SQL statements are echoed only at DEBUG log level
engine = create_async_engine(DATABASE_URL, echo=settings.sql_echo, pool_pre_ping=True)
AsyncSessionLocal = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)

@asynccontextmanager
async def get_db():
    """Get a database session."""
    async with AsyncSessionLocal() as session:
        yield session

async def init_db():
    """Create all tables."""
    from .models import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

async def close_db():
    """Close database connection."""
    await engine.dispose()
