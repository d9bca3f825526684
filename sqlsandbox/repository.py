"""
Record-store access for problems and sandbox namespaces.

Sessions are synchronous SQLAlchemy sessions; the async methods hand the work
to a worker thread so a slow record store never blocks the event loop.
"""
import asyncio
import logging
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from .exceptions import ProblemNotFound
from .models import ProblemRecord, SandboxNamespace
from .schemas import Problem

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class ProblemRepository:
    """Problem lookup by identifier"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def get(self, problem_id: str) -> Problem:
        return await asyncio.to_thread(self._get, problem_id)

    async def save(self, problem: Problem) -> Problem:
        return await asyncio.to_thread(self._save, problem)

    def _get(self, problem_id: str) -> Problem:
        with self.session_factory() as db:
            record = db.get(ProblemRecord, problem_id)
            if record is None:
                raise ProblemNotFound(f"Problem '{problem_id}' not found")
            return Problem(
                id=record.id,
                title=record.title,
                prompt=record.prompt,
                sample_tables=record.sample_tables or [],
                expected_output=record.expected_output,
            )

    def _save(self, problem: Problem) -> Problem:
        payload = problem.model_dump(by_alias=True)
        with self.session_factory() as db:
            record = db.get(ProblemRecord, problem.id)
            if record is None:
                record = ProblemRecord(id=problem.id)
                db.add(record)
            record.title = problem.title
            record.prompt = problem.prompt
            record.sample_tables = payload["sampleTables"]
            record.expected_output = payload["expectedOutput"]
            db.commit()
        logger.info(f"Saved problem {problem.id}")
        return problem


class SandboxRepository:
    """Namespace records, unique per (identity, problem) and per schema name"""

    def __init__(self, session_factory: sessionmaker):
        self.session_factory = session_factory

    async def find(self, identity_id: str, problem_id: str, touch: bool = True) -> Optional[SandboxNamespace]:
        return await asyncio.to_thread(self._find, identity_id, problem_id, touch)

    async def find_by_schema_name(self, schema_name: str) -> Optional[SandboxNamespace]:
        return await asyncio.to_thread(self._find_by_schema_name, schema_name)

    async def create(self, identity_id: str, problem_id: str, schema_name: str) -> Tuple[SandboxNamespace, bool]:
        return await asyncio.to_thread(self._create, identity_id, problem_id, schema_name)

    async def delete(self, identity_id: str, problem_id: str) -> bool:
        return await asyncio.to_thread(self._delete, identity_id, problem_id)

    async def delete_by_schema_name(self, schema_name: str) -> bool:
        return await asyncio.to_thread(self._delete_by_schema_name, schema_name)

    def _find(self, identity_id: str, problem_id: str, touch: bool) -> Optional[SandboxNamespace]:
        with self.session_factory() as db:
            record = db.query(SandboxNamespace).filter(
                SandboxNamespace.identity_id == identity_id,
                SandboxNamespace.problem_id == problem_id
            ).first()

            if record is not None and touch:
                record.last_used_at = _utcnow()
                db.commit()
            return record

    def _find_by_schema_name(self, schema_name: str) -> Optional[SandboxNamespace]:
        with self.session_factory() as db:
            return db.query(SandboxNamespace).filter(
                SandboxNamespace.schema_name == schema_name
            ).first()

    def _create(self, identity_id: str, problem_id: str, schema_name: str) -> Tuple[SandboxNamespace, bool]:
        """Insert a record; a concurrent winner's record is returned with created=False"""
        now = _utcnow()
        with self.session_factory() as db:
            record = SandboxNamespace(
                identity_id=identity_id,
                problem_id=problem_id,
                schema_name=schema_name,
                created_at=now,
                last_used_at=now
            )
            db.add(record)
            try:
                db.commit()
                return record, True
            except IntegrityError as e:
                db.rollback()
                conflict = e

        existing = self._find(identity_id, problem_id, touch=True)
        if existing is None:
            # Unique schema_name hit by a different pair
            raise conflict
        logger.warning(f"Sandbox record for {identity_id}/{problem_id} was created concurrently")
        return existing, False

    def _delete(self, identity_id: str, problem_id: str) -> bool:
        with self.session_factory() as db:
            deleted = db.query(SandboxNamespace).filter(
                SandboxNamespace.identity_id == identity_id,
                SandboxNamespace.problem_id == problem_id
            ).delete()
            db.commit()
            return deleted > 0

    def _delete_by_schema_name(self, schema_name: str) -> bool:
        with self.session_factory() as db:
            deleted = db.query(SandboxNamespace).filter(
                SandboxNamespace.schema_name == schema_name
            ).delete()
            db.commit()
            return deleted > 0
