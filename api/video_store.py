"""
Video record storage.

The processing pipeline and the HTTP layer only talk to storage through
``VideoStore``: records are looked up by opaque id and mutated with partial
field updates. Every query goes through the retry helpers so transient
lock/deadlock errors do not surface as failed jobs.
"""

import logging
import uuid
from typing import Any, Dict, List, Mapping, Optional

import sqlalchemy as sa
from databases import Database

from api.common import ensure_utc
from api.database import utcnow, videos
from api.db_retry import db_execute_with_retry, fetch_all_with_retry, fetch_one_with_retry
from api.enums import SensitivityStatus, VideoStatus

logger = logging.getLogger(__name__)

# Columns callers may never overwrite
_IMMUTABLE_FIELDS = frozenset({"id", "created_at"})
_COUNTER_FIELDS = frozenset({"view_count"})
_FILTER_FIELDS = frozenset({"status", "sensitivity_status", "owner_id"})
_SORT_FIELDS = frozenset({"created_at", "updated_at", "title", "size_bytes", "duration", "view_count"})
DEFAULT_SORT = "-created_at"


def _row_to_dict(row) -> Optional[Dict[str, Any]]:
    if row is None:
        return None
    record = dict(row._mapping)
    for key in ("created_at", "updated_at"):
        record[key] = ensure_utc(record.get(key))
    return record


def _plain(value: Any) -> Any:
    """Store enum members by value."""
    if isinstance(value, (VideoStatus, SensitivityStatus)):
        return value.value
    return value


class VideoStore:
    """Async record store for videos, keyed by opaque string id."""

    def __init__(self, db: Database):
        self.db = db

    async def find_by_id(self, video_id: str) -> Optional[Dict[str, Any]]:
        row = await fetch_one_with_retry(self.db, videos.select().where(videos.c.id == video_id))
        return _row_to_dict(row)

    async def create(self, fields: Mapping[str, Any]) -> Dict[str, Any]:
        """Insert a new record and return it as stored."""
        now = utcnow()
        values = {
            "description": "",
            "status": VideoStatus.PENDING.value,
            "sensitivity_status": SensitivityStatus.UNKNOWN.value,
            "processing_progress": 0,
            "view_count": 0,
            "duration": None,
            "thumbnail": None,
        }
        values.update({key: _plain(value) for key, value in fields.items()})
        values.setdefault("id", uuid.uuid4().hex)
        values["created_at"] = now
        values["updated_at"] = now

        await db_execute_with_retry(self.db, videos.insert().values(**values))
        logger.debug(f"Created video record {values['id']} for tenant {values.get('tenant_id')}")
        return await self.find_by_id(values["id"])

    async def update_fields(self, video_id: str, fields: Mapping[str, Any]) -> None:
        """Apply a partial update in a single statement."""
        bad = (set(fields) & _IMMUTABLE_FIELDS) | (set(fields) - set(videos.c.keys()))
        if bad:
            raise ValueError(f"Cannot update fields: {', '.join(sorted(bad))}")

        values = {key: _plain(value) for key, value in fields.items()}
        values["updated_at"] = utcnow()
        await db_execute_with_retry(self.db, videos.update().where(videos.c.id == video_id).values(**values))

    async def increment_field(self, video_id: str, field: str, delta: int = 1) -> None:
        """Atomically add ``delta`` to an integer counter column."""
        if field not in _COUNTER_FIELDS:
            raise ValueError(f"Field '{field}' is not a counter")
        column = videos.c[field]
        await db_execute_with_retry(
            self.db,
            videos.update().where(videos.c.id == video_id).values({column: column + delta}),
        )

    async def delete(self, video_id: str) -> None:
        await db_execute_with_retry(self.db, videos.delete().where(videos.c.id == video_id))

    async def list_by_tenant(
        self,
        tenant_id: str,
        filters: Optional[Mapping[str, Any]] = None,
        sort: str = DEFAULT_SORT,
    ) -> List[Dict[str, Any]]:
        """
        List a tenant's videos.

        Args:
            tenant_id: Tenant partition key
            filters: Equality filters on status, sensitivity_status, owner_id
                (None values are ignored)
            sort: Column name, prefixed with "-" for descending order

        Raises:
            ValueError: On unknown filter or sort fields
        """
        query = videos.select().where(videos.c.tenant_id == tenant_id)

        for key, value in (filters or {}).items():
            if value is None:
                continue
            if key not in _FILTER_FIELDS:
                raise ValueError(f"Cannot filter on '{key}'")
            query = query.where(videos.c[key] == _plain(value))

        descending = sort.startswith("-")
        sort_field = sort.lstrip("-+")
        if sort_field not in _SORT_FIELDS:
            raise ValueError(f"Cannot sort on '{sort_field}'")
        column = videos.c[sort_field]
        query = query.order_by(sa.desc(column) if descending else sa.asc(column), videos.c.id)

        rows = await fetch_all_with_retry(self.db, query)
        return [_row_to_dict(row) for row in rows]
