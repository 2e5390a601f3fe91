from __future__ import annotations
from typing import (
    TYPE_CHECKING,
    Any,
    AsyncIterator,
    Generic,
    Sequence,
    Type,
    TypeVar,
)
from contextlib import asynccontextmanager
from sqlalchemy import select, asc, desc
from sqlalchemy.pool import NullPool
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from xat_api.models.base import Base

if TYPE_CHECKING:
    from sqlalchemy import ColumnExpressionArgument

V = TypeVar("V", bound=Type)


class Database:
    """Owns the async engine and hands out sessions bound to it."""

    def __init__(self, url: str) -> None:
        self.url = url
        self.engine: AsyncEngine = create_async_engine(url, poolclass=NullPool)
        self.session_factory = async_sessionmaker(
            self.engine, expire_on_commit=False
        )

    async def create_all(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def dispose(self) -> None:
        await self.engine.dispose()

    @asynccontextmanager
    async def get_session(self) -> AsyncIterator[AsyncSession]:
        session = self.session_factory()
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


class CRUDCapability(Generic[V]):
    resource_db: Type[V]

    def __init__(self, resource_db: Type[V], database: Database) -> None:
        self.resource_db = resource_db
        self.database = database

    def db_row_to_model(self, row: V) -> dict[str, Any]:
        return {field.name: getattr(row, field.name) for field in row.__table__.c}

    def db_rows_to_model_list(self, rows: Sequence[V]) -> list[dict[str, Any]]:
        return [self.db_row_to_model(r) for r in rows]

    async def list_resource(
        self,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
        limit: int | None = None,
        offset: int | None = None,
        order_by: list[str] | None = None,
    ) -> list[dict[str, Any]]:
        stmt = select(self.resource_db)
        if where is not None:
            stmt = stmt.where(*where)
        if order_by is not None:
            order_by_clauses = []
            for item in order_by:
                if item.startswith("-"):
                    column = getattr(self.resource_db, item[1:])
                    order_by_clauses.append(desc(column))
                else:
                    column = getattr(self.resource_db, item)
                    order_by_clauses.append(asc(column))
            stmt = stmt.order_by(*order_by_clauses)
        if limit is not None:
            stmt = stmt.limit(limit)
        if offset is not None:
            stmt = stmt.offset(offset)

        async with self.database.get_session() as session:
            resources = (await session.scalars(stmt)).all()
            return self.db_rows_to_model_list(resources)

    async def get_resource(
        self,
        resource_id: str | None,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(self.resource_db)
        if resource_id is not None:
            stmt = stmt.where(self.resource_db.id == resource_id)  # type: ignore
        if where is not None:
            stmt = stmt.where(*where)

        async with self.database.get_session() as session:
            resource = (await session.scalars(stmt)).first()
            if resource is None:
                return None
            return self.db_row_to_model(resource)

    async def create_resource(
        self,
        data: dict[str, Any],
    ) -> dict[str, Any]:
        """Insert a row and return it as a dict.

        A primary-key or unique-constraint clash surfaces as
        ``sqlalchemy.exc.IntegrityError``; callers decide how to recover.
        """
        resource = self.resource_db(**data)  # type: ignore
        async with self.database.get_session() as session:
            session.add(resource)
            await session.commit()
            await session.refresh(resource)
            return self.db_row_to_model(resource)

    async def update_resource(
        self,
        data: dict[str, Any] | None,
        resource_id: str | None = None,
        where: list["ColumnExpressionArgument[bool]"] | None = None,
    ) -> dict[str, Any] | None:
        stmt = select(self.resource_db)
        if resource_id is not None:
            stmt = stmt.where(self.resource_db.id == resource_id)  # type: ignore
        if where is not None:
            stmt = stmt.where(*where)

        async with self.database.get_session() as session:
            resource = (await session.scalars(stmt)).first()
            if resource is None:
                return None
            if data is not None:
                for k in data:
                    setattr(resource, k, data[k])
            session.add(resource)
            await session.commit()
            await session.refresh(resource)
            return self.db_row_to_model(resource)
