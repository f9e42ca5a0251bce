# SPDX-License-Identifier: AGPL-3.0-only

"""
SQLAlchemy-backed job store.

Claiming selects the next candidate with ``FOR UPDATE SKIP LOCKED`` where the
database supports it and then moves it to processing with a conditional
UPDATE; the row count tells the caller whether it won the job. Databases
without row locks (SQLite) rely on the conditional UPDATE alone.
"""

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from sqlalchemy import (
    JSON, Column, DateTime, ForeignKey, Integer, String, Text, create_engine, delete, func, select, update,
)
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool

from docextract.models import DocumentType, ExtractionResult, utcnow

from .models import ExtractionJob, JobStatus, QueueStats
from .store import JobStore, StatusFilter, _statuses, new_claim_token

logger = logging.getLogger(__name__)

Base = declarative_base()


class JobRecord(Base):
    """Extraction job row"""
    __tablename__ = "extraction_jobs"

    id = Column(String(36), primary_key=True)
    document_ref = Column(String(255), nullable=True, index=True)
    document_type = Column(String(50), nullable=False)
    file_path = Column(String(500), nullable=False)
    file_size = Column(Integer, default=0)
    mime_type_claimed = Column(String(100), nullable=True)
    status = Column(String(20), nullable=False, default="queued", index=True)
    priority = Column(Integer, nullable=False, default=0)
    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=3)
    scheduled_at = Column(DateTime, nullable=False, default=utcnow, index=True)
    started_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)
    error_message = Column(Text, nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow)
    claim_token = Column(String(64), nullable=True)
    phase = Column(String(50), nullable=True)
    template_version = Column(String(20), nullable=True)
    job_metadata = Column("metadata", JSON, nullable=True)

    def __repr__(self):
        return f"<JobRecord(id={self.id}, type='{self.document_type}', status='{self.status}')>"


class ResultRecord(Base):
    """Extraction result row, one per job"""
    __tablename__ = "extraction_results"

    job_id = Column(String(36), ForeignKey("extraction_jobs.id", ondelete="CASCADE"), primary_key=True)
    payload = Column(JSON, nullable=False)
    created_at = Column(DateTime, nullable=False, default=utcnow)


_STATUS_VALUES = {s.value for s in JobStatus}

_JOB_COLUMNS = {
    "document_ref", "document_type", "file_path", "file_size", "mime_type_claimed", "status",
    "priority", "retry_count", "max_retries", "scheduled_at", "started_at", "completed_at",
    "error_message", "created_at", "updated_at", "claim_token", "phase", "template_version",
}


def _column_values(changes: Dict[str, Any]) -> Dict[str, Any]:
    values = {}
    for key, value in changes.items():
        if key == "metadata":
            values["job_metadata"] = value
        elif key in _JOB_COLUMNS:
            values[key] = value.value if hasattr(value, "value") else value
        else:
            raise KeyError(f"Unknown job attribute: {key}")
    return values


def _to_model(record: JobRecord) -> ExtractionJob:
    return ExtractionJob(
        id=record.id,
        document_ref=record.document_ref,
        document_type=DocumentType(record.document_type),
        file_path=record.file_path,
        file_size=record.file_size or 0,
        mime_type_claimed=record.mime_type_claimed,
        status=JobStatus(record.status),
        priority=record.priority,
        retry_count=record.retry_count,
        max_retries=record.max_retries,
        scheduled_at=record.scheduled_at,
        started_at=record.started_at,
        completed_at=record.completed_at,
        error_message=record.error_message,
        created_at=record.created_at,
        updated_at=record.updated_at,
        claim_token=record.claim_token,
        phase=record.phase,
        template_version=record.template_version,
        metadata=record.job_metadata or {},
    )


class SQLJobStore(JobStore):
    """Durable store; safe for many worker processes sharing one database."""

    def __init__(self, database_url: str, echo: bool = False):
        engine_kwargs: Dict[str, Any] = {"echo": echo, "future": True}
        if database_url.startswith("sqlite"):
            engine_kwargs["connect_args"] = {"check_same_thread": False}
            if database_url in ("sqlite://", "sqlite:///:memory:"):
                engine_kwargs["poolclass"] = StaticPool
        self.engine = create_engine(database_url, **engine_kwargs)
        self._session_factory = sessionmaker(bind=self.engine, expire_on_commit=False)
        Base.metadata.create_all(self.engine)

    def _session(self) -> Session:
        return self._session_factory()

    def add(self, job: ExtractionJob) -> ExtractionJob:
        values = _column_values(job.model_dump(exclude={"id"}))
        with self._session() as session:
            session.add(JobRecord(id=job.id, **values))
            session.commit()
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[ExtractionJob]:
        with self._session() as session:
            record = session.get(JobRecord, job_id)
            return _to_model(record) if record else None

    def claim_next(self, now: Optional[datetime] = None) -> Optional[ExtractionJob]:
        now = now or utcnow()
        with self._session() as session:
            # None only when no eligible row is left; lost races look again
            while True:
                candidate = (
                    select(JobRecord.id)
                    .where(JobRecord.status == JobStatus.QUEUED.value, JobRecord.scheduled_at <= now)
                    .order_by(JobRecord.priority.desc(), JobRecord.scheduled_at.asc(), JobRecord.created_at.asc())
                    .limit(1)
                    .with_for_update(skip_locked=True)
                )
                job_id = session.execute(candidate).scalar_one_or_none()
                if job_id is None:
                    session.rollback()
                    return None

                token = new_claim_token()
                claimed = session.execute(
                    update(JobRecord)
                    .where(JobRecord.id == job_id, JobRecord.status == JobStatus.QUEUED.value)
                    .values(status=JobStatus.PROCESSING.value, claim_token=token,
                            started_at=now, updated_at=now, phase=None)
                )
                if claimed.rowcount == 1:
                    session.commit()
                    record = session.get(JobRecord, job_id)
                    return _to_model(record)
                logger.debug("Lost claim race for job %s", job_id)
                session.rollback()

    def transition(self, job_id: str, changes: Dict[str, Any],
                   expected_status: StatusFilter = None,
                   expected_token: Optional[str] = None) -> Optional[ExtractionJob]:
        with self._session() as session:
            if not self._apply(session, job_id, changes, expected_status, expected_token):
                session.rollback()
                return None
            session.commit()
            return _to_model(session.get(JobRecord, job_id))

    def finish(self, job_id: str, claim_token: str, changes: Dict[str, Any],
               result: Optional[ExtractionResult] = None) -> Optional[ExtractionJob]:
        with self._session() as session:
            if not self._apply(session, job_id, changes, JobStatus.PROCESSING, claim_token):
                session.rollback()
                return None
            if result is not None:
                payload = result.to_dict()
                existing = session.get(ResultRecord, job_id)
                if existing is None:
                    session.add(ResultRecord(job_id=job_id, payload=payload))
                else:
                    existing.payload = payload
                    existing.created_at = utcnow()
            session.commit()
            return _to_model(session.get(JobRecord, job_id))

    def _apply(self, session: Session, job_id: str, changes: Dict[str, Any],
               expected_status: StatusFilter, expected_token: Optional[str]) -> bool:
        values = _column_values(changes)
        values.setdefault("updated_at", utcnow())
        stmt = update(JobRecord).where(JobRecord.id == job_id)
        allowed = _statuses(expected_status)
        if allowed is not None:
            stmt = stmt.where(JobRecord.status.in_([s.value for s in allowed]))
        if expected_token is not None:
            stmt = stmt.where(JobRecord.claim_token == expected_token)
        return session.execute(stmt.values(**values)).rowcount == 1

    def get_result(self, job_id: str) -> Optional[ExtractionResult]:
        with self._session() as session:
            record = session.get(ResultRecord, job_id)
            return ExtractionResult.from_dict(record.payload) if record else None

    def find(self, status: StatusFilter = None, started_before: Optional[datetime] = None,
             updated_before: Optional[datetime] = None, limit: Optional[int] = None) -> List[ExtractionJob]:
        stmt = select(JobRecord)
        allowed = _statuses(status)
        if allowed is not None:
            stmt = stmt.where(JobRecord.status.in_([s.value for s in allowed]))
        if started_before is not None:
            stmt = stmt.where(JobRecord.started_at.is_not(None), JobRecord.started_at < started_before)
        if updated_before is not None:
            stmt = stmt.where(JobRecord.updated_at < updated_before)
        stmt = stmt.order_by(JobRecord.created_at.asc())
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            return [_to_model(r) for r in session.execute(stmt).scalars()]

    def delete(self, job_ids: Iterable[str]) -> int:
        ids = list(job_ids)
        if not ids:
            return 0
        with self._session() as session:
            session.execute(delete(ResultRecord).where(ResultRecord.job_id.in_(ids)))
            removed = session.execute(delete(JobRecord).where(JobRecord.id.in_(ids))).rowcount
            session.commit()
            return removed

    def stats(self, now: Optional[datetime] = None) -> QueueStats:
        now = now or utcnow()
        midnight = now.replace(hour=0, minute=0, second=0, microsecond=0)
        stats = QueueStats()
        with self._session() as session:
            rows = session.execute(
                select(JobRecord.status, func.count()).group_by(JobRecord.status)
            ).all()
            for status, count in rows:
                if status in _STATUS_VALUES:
                    setattr(stats, status, count)
            stats.retryable_failed = session.execute(
                select(func.count()).select_from(JobRecord).where(
                    JobRecord.status == JobStatus.FAILED.value,
                    JobRecord.retry_count < JobRecord.max_retries,
                )
            ).scalar_one()
            stats.created_today = session.execute(
                select(func.count()).select_from(JobRecord).where(JobRecord.created_at >= midnight)
            ).scalar_one()
        return stats
