"""
Entry point for callers: provision sandboxes, run queries, grade submissions.

`create_service()` wires the engine from Config; tests build
`SandboxGradingService` directly around fakes.
"""
import asyncio
import logging
from typing import Optional

from sqlalchemy.engine import Engine

from .config import Config, configure_logging
from .connection_pool import AsyncpgConnectionPool, ConnectionPool
from .database import build_engine, build_session_factory, create_tables
from .execution_log import AttemptLogger, ExecutionLogService
from .grading import GradingService
from .repository import ProblemRepository, SandboxRepository
from .sandbox_manager import SandboxManager
from .schemas import GradingOutcome, SandboxInfo
from .secure_execution import QueryExecutor, QueryResult

logger = logging.getLogger(__name__)


class SandboxGradingService:
    """Facade over provisioning, execution and grading"""

    def __init__(self,
                 pool: ConnectionPool,
                 problems: ProblemRepository,
                 sandboxes: SandboxRepository,
                 attempt_logger: AttemptLogger,
                 engine: Optional[Engine] = None):
        self.pool = pool
        self.problems = problems
        self.attempt_logger = attempt_logger
        self.engine = engine

        self.sandbox_manager = SandboxManager(pool, problems, sandboxes)
        self.executor = QueryExecutor(pool, self.sandbox_manager, attempt_logger)
        self.grading = GradingService(self.executor, problems)

    async def ensure_sandbox(self, identity_id: str, problem_id: str) -> SandboxInfo:
        return await self.sandbox_manager.ensure_sandbox(identity_id, problem_id)

    async def run_query(self, identity_id: str, problem_id: str, query: str) -> QueryResult:
        return await self.executor.execute(identity_id, problem_id, query)

    async def grade_submission(self, identity_id: str, problem_id: str, query: str) -> GradingOutcome:
        return await self.grading.grade_submission(identity_id, problem_id, query)

    async def close(self) -> None:
        await self.pool.close()
        if self.engine is not None:
            self.engine.dispose()


async def create_service(database_url: Optional[str] = None) -> SandboxGradingService:
    """Validate configuration, create record-store tables and open the sandbox pool"""
    configure_logging()
    if database_url is None:
        Config.validate_config()

    engine = build_engine(database_url)
    await asyncio.to_thread(create_tables, engine)
    session_factory = build_session_factory(engine)

    try:
        pool = await AsyncpgConnectionPool.create(database_url)
    except Exception:
        engine.dispose()
        raise

    logger.info(f"Sandbox grading service ready ({Config.ENVIRONMENT.value})")
    return SandboxGradingService(
        pool=pool,
        problems=ProblemRepository(session_factory),
        sandboxes=SandboxRepository(session_factory),
        attempt_logger=ExecutionLogService(session_factory),
        engine=engine
    )
