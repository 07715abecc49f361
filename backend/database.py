# backend/database.py
import os
from sqlmodel import SQLModel
from sqlalchemy.engine import make_url
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.pool import NullPool

from config import DATABASE_URL


def _engine_options(url: str) -> dict:
    parsed = make_url(url)
    if not parsed.drivername.startswith("sqlite"):
        return {}
    # File-backed sqlite: make sure the folder exists, open a connection per use
    if parsed.database and parsed.database != ":memory:":
        folder = os.path.dirname(os.path.abspath(parsed.database))
        os.makedirs(folder, exist_ok=True)
    return {"poolclass": NullPool}


engine = create_async_engine(DATABASE_URL, echo=False, **_engine_options(DATABASE_URL))
AsyncSessionLocal = async_sessionmaker(engine, expire_on_commit=False)

async def create_db_and_tables():
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)

async def get_session():
    async with AsyncSessionLocal() as session:
        yield session
