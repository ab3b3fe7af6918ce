"""
Daily sync ledger: durable record of which days have been fully synced.

One row per (resource_type, organization, repository, sync_date). Writes
are upserts on that natural key: re-saving a day only refreshes synced_at
and items_synced. save_batch() runs in a single transaction so a failure
part-way leaves no partial completion state behind.

Purges (delete_range / delete_by_repository) are only ever called by the
force-resync path or an explicit repository reset.
"""
from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import delete, func
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlmodel import Session, select

from devmetrics.errors import StorageError
from devmetrics.models.sync import DailySyncMetadata
from devmetrics.sync.calendar import parse_day_key

_NATURAL_KEY = ["resource_type", "organization", "repository", "sync_date"]


class DailySyncLedger:
    def __init__(self, engine):
        self.engine = engine

    # ─── Writes ───────────────────────────────────────────────────────────────

    def save(self, record: DailySyncMetadata) -> None:
        """Upsert a single day."""
        self.save_batch([record])

    def save_batch(self, records: List[DailySyncMetadata]) -> None:
        """Upsert many days atomically: all persist or none do."""
        if not records:
            return
        rows = [self._row(r) for r in records]  # validates every key before writing

        try:
            with self.engine.begin() as conn:
                for row in rows:
                    stmt = sqlite_insert(DailySyncMetadata).values(**row)
                    stmt = stmt.on_conflict_do_update(
                        index_elements=_NATURAL_KEY,
                        set_={
                            "synced_at": stmt.excluded.synced_at,
                            "items_synced": stmt.excluded.items_synced,
                        },
                    )
                    conn.execute(stmt)
        except SQLAlchemyError as exc:
            raise StorageError("save_batch", str(exc)) from exc

    def delete_range(
        self,
        resource_type: str,
        organization: str,
        repository: str,
        start_key: str,
        end_key: str,
    ) -> int:
        """Delete day records in [start_key, end_key]. Returns rows removed."""
        parse_day_key(start_key)
        parse_day_key(end_key)
        stmt = delete(DailySyncMetadata).where(
            DailySyncMetadata.resource_type == resource_type,
            DailySyncMetadata.organization == organization,
            DailySyncMetadata.repository == repository,
            DailySyncMetadata.sync_date >= start_key,
            DailySyncMetadata.sync_date <= end_key,
        )
        return self._delete(stmt, "delete_range")

    def delete_by_repository(
        self, resource_type: str, organization: str, repository: str
    ) -> int:
        stmt = delete(DailySyncMetadata).where(
            DailySyncMetadata.resource_type == resource_type,
            DailySyncMetadata.organization == organization,
            DailySyncMetadata.repository == repository,
        )
        return self._delete(stmt, "delete_by_repository")

    # ─── Reads ────────────────────────────────────────────────────────────────

    def get_synced_days(
        self,
        resource_type: str,
        organization: str,
        repository: str,
        start_key: str,
        end_key: str,
    ) -> List[str]:
        """Completed day-keys in [start_key, end_key], ascending."""
        query = (
            select(DailySyncMetadata.sync_date)
            .where(
                DailySyncMetadata.resource_type == resource_type,
                DailySyncMetadata.organization == organization,
                DailySyncMetadata.repository == repository,
                DailySyncMetadata.sync_date >= start_key,
                DailySyncMetadata.sync_date <= end_key,
            )
            .order_by(DailySyncMetadata.sync_date)
        )
        return self._read(lambda s: list(s.exec(query).all()), "get_synced_days")

    def get_all_synced_days(
        self, resource_type: str, organization: str, repository: str
    ) -> List[str]:
        query = (
            select(DailySyncMetadata.sync_date)
            .where(
                DailySyncMetadata.resource_type == resource_type,
                DailySyncMetadata.organization == organization,
                DailySyncMetadata.repository == repository,
            )
            .order_by(DailySyncMetadata.sync_date)
        )
        return self._read(lambda s: list(s.exec(query).all()), "get_all_synced_days")

    def get_day(
        self, resource_type: str, organization: str, repository: str, sync_date: str
    ) -> Optional[DailySyncMetadata]:
        query = select(DailySyncMetadata).where(
            DailySyncMetadata.resource_type == resource_type,
            DailySyncMetadata.organization == organization,
            DailySyncMetadata.repository == repository,
            DailySyncMetadata.sync_date == sync_date,
        )
        return self._read(lambda s: s.exec(query).first(), "get_day")

    def is_day_synced(
        self, resource_type: str, organization: str, repository: str, sync_date: str
    ) -> bool:
        return self.get_day(resource_type, organization, repository, sync_date) is not None

    def get_sync_summary(self, organization: str) -> List[Dict]:
        """Day count and item total per (repository, resource_type)."""
        query = (
            select(
                DailySyncMetadata.repository,
                DailySyncMetadata.resource_type,
                func.count(DailySyncMetadata.id),
                func.coalesce(func.sum(DailySyncMetadata.items_synced), 0),
            )
            .where(DailySyncMetadata.organization == organization)
            .group_by(DailySyncMetadata.repository, DailySyncMetadata.resource_type)
            .order_by(DailySyncMetadata.repository, DailySyncMetadata.resource_type)
        )
        rows = self._read(lambda s: s.exec(query).all(), "get_sync_summary")
        return [
            {
                "repository": repository,
                "resource_type": resource_type,
                "day_count": day_count,
                "total_items": total_items,
            }
            for repository, resource_type, day_count, total_items in rows
        ]

    def get_date_range_coverage(
        self, resource_type: str, organization: str, repository: str
    ) -> Optional[Dict]:
        """Earliest and latest synced day plus day count, or None if nothing synced."""
        query = select(
            func.min(DailySyncMetadata.sync_date),
            func.max(DailySyncMetadata.sync_date),
            func.count(DailySyncMetadata.id),
        ).where(
            DailySyncMetadata.resource_type == resource_type,
            DailySyncMetadata.organization == organization,
            DailySyncMetadata.repository == repository,
        )
        row = self._read(lambda s: s.exec(query).first(), "get_date_range_coverage")
        if not row or row[0] is None:
            return None
        return {"min_date": row[0], "max_date": row[1], "day_count": row[2]}

    def get_last_sync_at(
        self, resource_type: str, organization: str, repository: str
    ) -> Optional[datetime]:
        query = select(func.max(DailySyncMetadata.synced_at)).where(
            DailySyncMetadata.resource_type == resource_type,
            DailySyncMetadata.organization == organization,
            DailySyncMetadata.repository == repository,
        )
        return self._read(lambda s: s.exec(query).first(), "get_last_sync_at")

    # ─── Internal helpers ─────────────────────────────────────────────────────

    @staticmethod
    def _row(record: DailySyncMetadata) -> Dict:
        parse_day_key(record.sync_date)
        return {
            "resource_type": record.resource_type,
            "organization": record.organization,
            "repository": record.repository,
            "sync_date": record.sync_date,
            "synced_at": record.synced_at or datetime.utcnow(),
            "items_synced": record.items_synced or 0,
        }

    def _delete(self, stmt, operation: str) -> int:
        try:
            with self.engine.begin() as conn:
                return conn.execute(stmt).rowcount
        except SQLAlchemyError as exc:
            raise StorageError(operation, str(exc)) from exc

    def _read(self, fn, operation: str):
        try:
            with Session(self.engine) as s:
                return fn(s)
        except SQLAlchemyError as exc:
            raise StorageError(operation, str(exc)) from exc
