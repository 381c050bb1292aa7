"""Store A adapter: generic CRUD over a SQLAlchemy ORM model."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping, Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from hearth_migration.database.async_session import async_db_session
from hearth_migration.logging_utils import get_logger
from hearth_migration.migration.diffing import to_jsonable
from hearth_migration.repositories.base import BaseRepository

logger = get_logger(__name__)


class SqlAlchemyRepository(BaseRepository):
    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        model: Any,
        *,
        id_field: str = "id",
        soft_delete_field: Optional[str] = None,
    ):
        self._session_factory = session_factory
        self.model = model
        self.id_field = id_field
        self.soft_delete_field = soft_delete_field
        self._id_column = getattr(model, id_field)
        self._column_keys = {c.key for c in model.__table__.columns}

    def _coerce_id(self, record_id: Any) -> Any:
        if isinstance(self._id_column.type, PG_UUID) and not isinstance(record_id, UUID):
            return UUID(str(record_id))
        return record_id

    def _columns_only(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        unknown = set(data) - self._column_keys
        if unknown:
            logger.debug("[REPO][%s] Ignoring unknown fields: %s", self.model.__name__, sorted(unknown))
        return {k: v for k, v in data.items() if k in self._column_keys}

    def _live(self, stmt):
        if self.soft_delete_field:
            stmt = stmt.where(getattr(self.model, self.soft_delete_field).is_(None))
        return stmt

    async def _load(self, session: AsyncSession, record_id: Any) -> Any:
        stmt = self._live(select(self.model).where(self._id_column == self._coerce_id(record_id)))
        return (await session.execute(stmt)).scalar_one_or_none()

    async def create(self, data: Mapping[str, Any]) -> Dict[str, Any]:
        async with async_db_session(self._session_factory) as session:
            obj = self.model(**self._columns_only(data))
            session.add(obj)
            await session.flush()
            await session.refresh(obj)
            return to_jsonable(obj)

    async def get(self, record_id: Any) -> Optional[Dict[str, Any]]:
        async with async_db_session(self._session_factory) as session:
            obj = await self._load(session, record_id)
            return to_jsonable(obj) if obj is not None else None

    async def list(
        self,
        filters: Optional[Mapping[str, Any]] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        async with async_db_session(self._session_factory) as session:
            stmt = self._live(select(self.model))
            if filters:
                stmt = stmt.filter_by(**self._columns_only(filters))
            stmt = stmt.order_by(self._id_column)
            if limit is not None:
                stmt = stmt.limit(limit)
            rows = (await session.execute(stmt)).scalars().all()
            return [to_jsonable(r) for r in rows]

    async def update(self, record_id: Any, data: Mapping[str, Any]) -> Dict[str, Any]:
        async with async_db_session(self._session_factory) as session:
            obj = await self._load(session, record_id)
            if obj is None:
                raise LookupError(f"{self.model.__name__} {record_id} not found")
            for key, value in self._columns_only(data).items():
                setattr(obj, key, value)
            await session.flush()
            await session.refresh(obj)
            return to_jsonable(obj)

    async def delete(self, record_id: Any) -> None:
        async with async_db_session(self._session_factory) as session:
            obj = await self._load(session, record_id)
            if obj is None:
                logger.debug("[REPO][%s] delete: %s already gone", self.model.__name__, record_id)
                return
            if self.soft_delete_field:
                setattr(obj, self.soft_delete_field, datetime.now(timezone.utc))
            else:
                await session.delete(obj)
