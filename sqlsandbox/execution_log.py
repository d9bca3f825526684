"""
Execution Attempt Logging (PostgreSQL-based)
============================================
Records every query execution attempt for analytics and cleanup.

Writing a log entry never raises: a broken or missing log table degrades to a
console warning and the execution outcome is returned untouched.
"""
import abc
import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import case, func
from sqlalchemy.orm import sessionmaker

from .config import Config
from .models import ExecutionLog, ExecutionStatus

logger = logging.getLogger(__name__)


@dataclass
class ExecutionLogEntry:
    identity_id: str
    problem_id: str
    query: str
    execution_time_ms: int
    row_count: int
    status: ExecutionStatus
    schema_name: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class AttemptLogger(abc.ABC):
    """Fire-and-forget sink for execution attempts"""

    @abc.abstractmethod
    async def log_execution(self, entry: ExecutionLogEntry) -> None:
        """Record `entry`; implementations must not raise"""


class ExecutionLogService(AttemptLogger):
    """Attempt log stored in the execution_logs table"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def log_execution(self, entry: ExecutionLogEntry) -> None:
        try:
            await asyncio.to_thread(self._write, entry)
        except Exception as e:
            # Don't let logging affect the main execution flow
            logger.warning(f"Failed to write execution log for {entry.identity_id}/{entry.problem_id}: {e}")

    def _write(self, entry: ExecutionLogEntry) -> None:
        with self.session_factory() as db:
            db.add(ExecutionLog(
                identity_id=entry.identity_id,
                problem_id=entry.problem_id,
                query=entry.query,
                execution_time_ms=entry.execution_time_ms,
                row_count=entry.row_count,
                status=entry.status.value,
                error_message=entry.error_message,
                schema_name=entry.schema_name,
                created_at=entry.created_at
            ))
            db.commit()

    async def get_execution_stats(self, identity_id: str, problem_id: Optional[str] = None) -> Dict[str, Any]:
        """Aggregate attempt counts and timings for an identity"""
        return await asyncio.to_thread(self._execution_stats, identity_id, problem_id)

    async def get_recent_executions(self,
                                    identity_id: str,
                                    problem_id: Optional[str] = None,
                                    limit: int = 50) -> List[Dict[str, Any]]:
        """Most recent attempts first"""
        return await asyncio.to_thread(self._recent_executions, identity_id, problem_id, limit)

    async def cleanup_old_logs(self, days_to_keep: Optional[int] = None) -> int:
        """Delete entries older than `days_to_keep` days, EXECUTION_LOG_RETENTION_DAYS by default"""
        if days_to_keep is None:
            days_to_keep = Config.EXECUTION_LOG_RETENTION_DAYS
        return await asyncio.to_thread(self._cleanup_old_logs, days_to_keep)

    def _filtered(self, db, identity_id: str, problem_id: Optional[str]):
        query = db.query(ExecutionLog).filter(ExecutionLog.identity_id == identity_id)
        if problem_id:
            query = query.filter(ExecutionLog.problem_id == problem_id)
        return query

    def _execution_stats(self, identity_id: str, problem_id: Optional[str]) -> Dict[str, Any]:
        with self.session_factory() as db:
            query = self._filtered(db, identity_id, problem_id)
            total, successful, failed, average_time, total_rows = query.with_entities(
                func.count(ExecutionLog.id),
                func.sum(case((ExecutionLog.status == ExecutionStatus.SUCCESS.value, 1), else_=0)),
                func.sum(case((ExecutionLog.status == ExecutionStatus.ERROR.value, 1), else_=0)),
                func.avg(ExecutionLog.execution_time_ms),
                func.sum(ExecutionLog.row_count)
            ).one()

        return {
            "total_executions": total or 0,
            "successful_executions": int(successful or 0),
            "failed_executions": int(failed or 0),
            "average_execution_time_ms": float(average_time or 0),
            "total_rows_processed": int(total_rows or 0),
        }

    def _recent_executions(self, identity_id: str, problem_id: Optional[str], limit: int) -> List[Dict[str, Any]]:
        with self.session_factory() as db:
            logs = self._filtered(db, identity_id, problem_id).order_by(
                ExecutionLog.created_at.desc()
            ).limit(limit).all()

            return [
                {
                    "query": log.query,
                    "execution_time_ms": log.execution_time_ms,
                    "row_count": log.row_count,
                    "status": log.status,
                    "error_message": log.error_message,
                    "created_at": log.created_at,
                }
                for log in logs
            ]

    def _cleanup_old_logs(self, days_to_keep: int) -> int:
        cutoff = datetime.now(timezone.utc) - timedelta(days=days_to_keep)
        with self.session_factory() as db:
            deleted = db.query(ExecutionLog).filter(ExecutionLog.created_at < cutoff).delete()
            db.commit()
        logger.info(f"Cleaned up {deleted} old execution logs")
        return deleted
