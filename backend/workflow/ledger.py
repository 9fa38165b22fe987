"""Sync ledger: append-only log of every external-system call attempt.

Each integration dispatch writes one row keyed by submission and
integration. The ledger answers three questions:

- what happened to a submission, attempt by attempt (``history``)
- did a given integration already succeed for it (``latest_status``)
- how an integration is doing overall (``stats``)
"""

import threading
import uuid
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Optional

from sqlalchemy import case, func, select

from core.constants import SyncStatus
from core.exceptions import ValidationError
from db.models.sync_record import SyncRecord as SyncRecordRow
from workflow.state import as_utc, utcnow

STAT_PERIODS = ("today", "week", "month", "all")


@dataclass(frozen=True)
class SyncRecord:
    submission_id: str
    integration_id: str
    status: SyncStatus
    external_id: Optional[str] = None
    error_message: Optional[str] = None
    attempt_number: int = 1
    synced_at: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: str(uuid.uuid4()))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "submission_id": self.submission_id,
            "integration_id": self.integration_id,
            "status": self.status.value,
            "external_id": self.external_id,
            "error_message": self.error_message,
            "attempt_number": self.attempt_number,
            "synced_at": self.synced_at.isoformat(),
        }


def period_start(period: str, now: Optional[datetime] = None) -> Optional[datetime]:
    """Lower bound of a stats period; ``None`` means no bound."""
    now = now or utcnow()
    if period == "today":
        return now.replace(hour=0, minute=0, second=0, microsecond=0)
    if period == "week":
        return now - timedelta(days=7)
    if period == "month":
        return now - timedelta(days=30)
    if period == "all":
        return None
    raise ValidationError(f"Unknown stats period: {period!r}")


def summarize(total: int, success: int, failed: int, skipped: int) -> dict:
    return {
        "total": total,
        "success": success,
        "failed": failed,
        "skipped": skipped,
        "success_rate": round(success / total * 100, 2) if total else 0.0,
    }


class SyncLedger(ABC):
    """Storage port for sync records. Implementations must accept concurrent appends."""

    @abstractmethod
    async def record(
        self,
        submission_id: str,
        integration_id: str,
        status: SyncStatus,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
        attempt_number: int = 1,
    ) -> SyncRecord:
        ...

    @abstractmethod
    async def history(self, submission_id: str) -> list[SyncRecord]:
        """All attempts for a submission, oldest first."""
        ...

    @abstractmethod
    async def latest_status(self, submission_id: str, integration_id: str) -> Optional[SyncRecord]:
        ...

    @abstractmethod
    async def stats(self, integration_id: Optional[str] = None, period: str = "all") -> dict:
        ...


# ─── In-memory ─────────────────────────────────────────────────


class InMemorySyncLedger(SyncLedger):
    """Process-local ledger used by tests and single-process runs."""

    def __init__(self):
        self._records: list[SyncRecord] = []
        self._lock = threading.Lock()

    async def record(
        self,
        submission_id: str,
        integration_id: str,
        status: SyncStatus,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
        attempt_number: int = 1,
    ) -> SyncRecord:
        entry = SyncRecord(
            submission_id=str(submission_id),
            integration_id=integration_id,
            status=SyncStatus(status),
            external_id=external_id,
            error_message=error,
            attempt_number=attempt_number,
        )
        with self._lock:
            self._records.append(entry)
        return entry

    async def history(self, submission_id: str) -> list[SyncRecord]:
        with self._lock:
            matching = [r for r in self._records if r.submission_id == str(submission_id)]
        return sorted(matching, key=lambda r: r.synced_at)

    async def latest_status(self, submission_id: str, integration_id: str) -> Optional[SyncRecord]:
        matching = [
            r for r in await self.history(submission_id) if r.integration_id == integration_id
        ]
        return matching[-1] if matching else None

    async def stats(self, integration_id: Optional[str] = None, period: str = "all") -> dict:
        since = period_start(period)
        with self._lock:
            rows = [
                r for r in self._records
                if (integration_id is None or r.integration_id == integration_id)
                and (since is None or r.synced_at >= since)
            ]
        counts = {status: sum(1 for r in rows if r.status == status) for status in SyncStatus}
        return summarize(
            len(rows),
            counts[SyncStatus.SUCCESS],
            counts[SyncStatus.FAILED],
            counts[SyncStatus.SKIPPED],
        )


# ─── SQLAlchemy ────────────────────────────────────────────────


def _to_record(row: SyncRecordRow) -> SyncRecord:
    return SyncRecord(
        id=row.id,
        submission_id=row.submission_id,
        integration_id=row.integration_id,
        status=SyncStatus(row.status),
        external_id=row.external_id,
        error_message=row.error_message,
        attempt_number=row.attempt_number,
        synced_at=as_utc(row.synced_at),
    )


class SqlSyncLedger(SyncLedger):
    """Ledger backed by the ``sync_records`` table.

    Every call opens its own short session; rows are only ever inserted.
    """

    def __init__(self, session_factory):
        self._session_factory = session_factory

    async def record(
        self,
        submission_id: str,
        integration_id: str,
        status: SyncStatus,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
        attempt_number: int = 1,
    ) -> SyncRecord:
        entry = SyncRecord(
            submission_id=str(submission_id),
            integration_id=integration_id,
            status=SyncStatus(status),
            external_id=external_id,
            error_message=error,
            attempt_number=attempt_number,
        )
        async with self._session_factory() as session:
            session.add(SyncRecordRow(
                id=entry.id,
                submission_id=entry.submission_id,
                integration_id=entry.integration_id,
                status=entry.status.value,
                external_id=entry.external_id,
                error_message=entry.error_message,
                attempt_number=entry.attempt_number,
                synced_at=entry.synced_at,
            ))
            await session.commit()
        return entry

    async def history(self, submission_id: str) -> list[SyncRecord]:
        query = (
            select(SyncRecordRow)
            .where(SyncRecordRow.submission_id == str(submission_id))
            .order_by(SyncRecordRow.synced_at.asc(), SyncRecordRow.attempt_number.asc())
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            return [_to_record(row) for row in result.scalars().all()]

    async def latest_status(self, submission_id: str, integration_id: str) -> Optional[SyncRecord]:
        query = (
            select(SyncRecordRow)
            .where(
                SyncRecordRow.submission_id == str(submission_id),
                SyncRecordRow.integration_id == integration_id,
            )
            .order_by(SyncRecordRow.synced_at.desc(), SyncRecordRow.attempt_number.desc())
            .limit(1)
        )
        async with self._session_factory() as session:
            result = await session.execute(query)
            row = result.scalar_one_or_none()
        return _to_record(row) if row else None

    async def stats(self, integration_id: Optional[str] = None, period: str = "all") -> dict:
        since = period_start(period)

        def _count(status: SyncStatus):
            return func.coalesce(
                func.sum(case((SyncRecordRow.status == status.value, 1), else_=0)), 0
            )

        query = select(
            func.count(SyncRecordRow.id),
            _count(SyncStatus.SUCCESS),
            _count(SyncStatus.FAILED),
            _count(SyncStatus.SKIPPED),
        )
        if integration_id:
            query = query.where(SyncRecordRow.integration_id == integration_id)
        if since is not None:
            query = query.where(SyncRecordRow.synced_at >= since)

        async with self._session_factory() as session:
            total, success, failed, skipped = (await session.execute(query)).one()
        return summarize(int(total or 0), int(success), int(failed), int(skipped))
