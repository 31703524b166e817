from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from .settings import DATABASE_URL, DATABASE_ECHO

engine = create_async_engine(DATABASE_URL, pool_pre_ping=True, echo=DATABASE_ECHO)
# one session per request; containers are locked row-wise during a pass
SessionLocal = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
