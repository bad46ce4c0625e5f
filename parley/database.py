import logging
from contextlib import asynccontextmanager

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from parley.config import settings
from parley.errors import DependencyError

logger = logging.getLogger(__name__)

engine = create_async_engine(settings.database_url, echo=False)
async_session = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def get_db():
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


@asynccontextmanager
async def transaction(db: AsyncSession):
    """Run a unit of work on *db* and commit it, or roll everything back.

    Store failures are logged and surfaced as a single ``DependencyError``;
    any other exception is re-raised unchanged after the rollback.
    """
    try:
        yield db
        await db.commit()
    except SQLAlchemyError as exc:
        await db.rollback()
        logger.exception("Unit of work rolled back")
        raise DependencyError("The data store could not complete the request") from exc
    except Exception:
        await db.rollback()
        raise
