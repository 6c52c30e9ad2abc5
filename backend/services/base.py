"""Base service shared by the directory and workflow services.

Wraps the common row operations on one model. Soft-deleted rows are hidden
unless a caller asks for them; every write is flushed, never committed.
"""

from typing import Any, Generic, Optional, Sequence, Type, TypeVar
from uuid import uuid4

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from db.base import BaseModel

ModelType = TypeVar("ModelType", bound=BaseModel)


class BaseService(Generic[ModelType]):
    """Row operations for a single model.

    Usage:
        class DepartmentService(BaseService[Department]):
            def __init__(self, db: AsyncSession):
                super().__init__(Department, db)
    """

    def __init__(self, model: Type[ModelType], db: AsyncSession):
        self.model = model
        self.db = db

    def _visible(self, query, include_deleted: bool = False):
        if include_deleted:
            return query
        return query.where(self.model.is_deleted == False)

    # ─── Read ──────────────────────────────────────────────

    async def get_by_id(self, id: str, include_deleted: bool = False) -> Optional[ModelType]:
        result = await self.db.execute(
            self._visible(select(self.model).where(self.model.id == id), include_deleted)
        )
        return result.scalar_one_or_none()

    async def exists(self, id: str) -> bool:
        result = await self.db.execute(
            self._visible(select(func.count()).select_from(self.model).where(self.model.id == id))
        )
        return (result.scalar() or 0) > 0

    async def list(
        self,
        offset: int = 0,
        limit: int = 50,
        order_by: str = "created_at",
        order_desc: bool = True,
        filters: Optional[dict[str, Any]] = None,
    ) -> tuple[Sequence[ModelType], int]:
        """Page through rows matching ``filters``.

        ``None`` filter values are ignored and list values become IN
        clauses.

        Returns:
            Tuple of (rows, total matching rows)
        """
        conditions = []
        for field, value in (filters or {}).items():
            if value is None or not hasattr(self.model, field):
                continue
            column = getattr(self.model, field)
            conditions.append(column.in_(value) if isinstance(value, list) else column == value)

        query = self._visible(select(self.model).where(*conditions))
        if hasattr(self.model, order_by):
            column = getattr(self.model, order_by)
            query = query.order_by(column.desc() if order_desc else column.asc())

        result = await self.db.execute(query.offset(offset).limit(limit))
        count = await self.db.execute(
            self._visible(select(func.count()).select_from(self.model).where(*conditions))
        )
        return result.scalars().all(), count.scalar() or 0

    # ─── Write ─────────────────────────────────────────────

    async def create(self, data: dict[str, Any]) -> ModelType:
        """Insert a row built from ``data`` and return it refreshed."""
        data.setdefault("id", str(uuid4()))
        row = self.model(**data)
        self.db.add(row)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def update(self, id: str, data: dict[str, Any]) -> Optional[ModelType]:
        """Set the non-None values of ``data`` on a row.

        Returns:
            The updated row, or None if it does not exist
        """
        row = await self.get_by_id(id)
        changes = {k: v for k, v in data.items() if v is not None and hasattr(self.model, k)}
        if not row or not changes:
            return row

        for key, value in changes.items():
            setattr(row, key, value)
        await self.db.flush()
        await self.db.refresh(row)
        return row

    async def hard_delete(self, id: str) -> bool:
        """Remove a row for good.

        Returns:
            True if deleted, False if not found
        """
        row = await self.get_by_id(id, include_deleted=True)
        if not row:
            return False
        await self.db.delete(row)
        await self.db.flush()
        return True
