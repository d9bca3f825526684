"""
Secure Query Execution
======================
Runs one validated read-only statement inside the caller's sandbox schema:
- Resolves the (identity, problem) sandbox
- Admits the query through the validator
- Scopes a pooled connection to that schema only, in a read-only transaction
- Enforces a wall-clock deadline, abandoning the connection on expiry
- Translates store errors into the engine's error taxonomy
- Records every attempt through the attempt logger
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time, timedelta
from typing import Any, Dict, List, Optional, Tuple

import asyncpg

from .config import Config
from .connection_pool import ConnectionPool
from .exceptions import (SandboxEngineError, QueryTimeout, QuerySyntaxError,
                         QueryRuntimeError, QueryPermissionError)
from .execution_log import AttemptLogger, ExecutionLogEntry
from .models import ExecutionStatus
from .query_validator import QueryValidator, query_validator
from .sandbox_manager import SandboxManager, quote_ident

logger = logging.getLogger(__name__)

# SQLSTATE codes the executor distinguishes
SQLSTATE_SYNTAX_ERROR = "42601"
SQLSTATE_UNDEFINED_COLUMN = "42703"
SQLSTATE_UNDEFINED_TABLE = "42P01"
SQLSTATE_INSUFFICIENT_PRIVILEGE = "42501"
SQLSTATE_READ_ONLY_TRANSACTION = "25006"
SQLSTATE_QUERY_CANCELED = "57014"

_MAX_DETAIL_LENGTH = 300


@dataclass
class QueryResult:
    """Uniform tabular result of one execution"""
    columns: List[str]
    rows: List[Dict[str, Any]] = field(default_factory=list)
    row_count: int = 0
    execution_time_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "columns": self.columns,
            "rows": self.rows,
            "row_count": self.row_count,
            "execution_time_ms": self.execution_time_ms,
        }


def _sanitize_store_message(message: str) -> str:
    """First line of a store message, bounded in length"""
    lines = (message or "").strip().splitlines()
    first_line = lines[0] if lines else ""
    if len(first_line) > _MAX_DETAIL_LENGTH:
        first_line = first_line[:_MAX_DETAIL_LENGTH - 3] + "..."
    return first_line


def translate_store_error(error: asyncpg.PostgresError) -> SandboxEngineError:
    """Map a store-reported error onto the fixed taxonomy"""
    code = getattr(error, "sqlstate", None)
    raw_message = getattr(error, "message", None) or str(error)
    message = raw_message.lower()
    details = _sanitize_store_message(raw_message)

    if code == SQLSTATE_QUERY_CANCELED:
        return QueryTimeout("Query execution exceeded the time limit")

    if code == SQLSTATE_SYNTAX_ERROR or "syntax error" in message:
        return QuerySyntaxError("SQL syntax error", details or "Please check your SQL syntax and try again")

    if code == SQLSTATE_UNDEFINED_COLUMN or ("column" in message and "does not exist" in message):
        return QueryRuntimeError("Column not found", details or "One or more columns in your query do not exist")

    if code == SQLSTATE_UNDEFINED_TABLE or ("relation" in message and "does not exist" in message):
        return QueryRuntimeError("Table not found", details or "One or more tables in your query do not exist")

    if code in (SQLSTATE_INSUFFICIENT_PRIVILEGE, SQLSTATE_READ_ONLY_TRANSACTION) or "permission" in message:
        return QueryPermissionError("Access denied", "You do not have permission to perform this operation")

    return QueryRuntimeError("Query execution failed", details or None)


def _to_result_value(value: Any) -> Any:
    """Make store-native values JSON friendly; numbers stay numbers"""
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    if isinstance(value, timedelta):
        return str(value)
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


class QueryExecutor:
    """Executes validated queries inside sandbox schemas"""

    def __init__(self,
                 pool: ConnectionPool,
                 sandbox_manager: SandboxManager,
                 attempt_logger: AttemptLogger,
                 validator: Optional[QueryValidator] = None,
                 timeout_ms: Optional[int] = None,
                 statement_timeout_grace_ms: Optional[int] = None):
        self.pool = pool
        self.sandbox_manager = sandbox_manager
        self.attempt_logger = attempt_logger
        self.validator = validator or query_validator
        self.timeout_ms = timeout_ms or Config.QUERY_TIMEOUT_MS
        grace = Config.STATEMENT_TIMEOUT_GRACE_MS if statement_timeout_grace_ms is None else statement_timeout_grace_ms
        # Server-side backstop in case the client-side cancel never lands
        self.statement_timeout_ms = self.timeout_ms + grace

    async def execute(self, identity_id: str, problem_id: str, query: str) -> QueryResult:
        """Run `query` in the caller's sandbox; raises a SandboxEngineError subclass on failure"""
        start_time = time.perf_counter()
        schema_name = None

        try:
            schema_name = await self.sandbox_manager.get_sandbox_namespace(identity_id, problem_id)
            self.validator.check(query)
            columns, rows = await self._run_with_deadline(schema_name, query)
        except SandboxEngineError as e:
            await self._log_attempt(
                identity_id, problem_id, query, start_time,
                row_count=0,
                status=ExecutionStatus.ERROR,
                schema_name=schema_name,
                error_message=str(e)
            )
            raise

        execution_time_ms = self._elapsed_ms(start_time)
        result = QueryResult(
            columns=columns,
            rows=rows,
            row_count=len(rows),
            execution_time_ms=execution_time_ms
        )

        await self._log_attempt(
            identity_id, problem_id, query, start_time,
            row_count=result.row_count,
            status=ExecutionStatus.SUCCESS,
            schema_name=schema_name
        )
        return result

    async def _run_with_deadline(self, schema_name: str, query: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        conn = None
        discard = False
        try:
            conn = await self.pool.acquire()
            return await asyncio.wait_for(
                self._fetch(conn, schema_name, query),
                timeout=self.timeout_ms / 1000
            )
        except asyncio.TimeoutError:
            # The in-flight statement may still be running; never reuse this connection
            discard = True
            logger.warning(f"Query in {schema_name} exceeded {self.timeout_ms}ms deadline")
            raise QueryTimeout(
                f"Query execution exceeded the time limit ({self.timeout_ms / 1000:g} seconds)"
            ) from None
        except asyncpg.PostgresError as e:
            translated = translate_store_error(e)
            logger.info(f"Query in {schema_name} failed: {translated.category} ({getattr(e, 'sqlstate', None)})")
            raise translated from e
        except (asyncpg.InterfaceError, OSError) as e:
            discard = True
            # Connection errors can carry the DSN; only the type is logged
            logger.error(f"Lost sandbox connection while querying {schema_name}: {type(e).__name__}")
            raise QueryRuntimeError("Query execution failed", "The database connection was interrupted") from None
        except asyncio.CancelledError:
            discard = True
            raise
        finally:
            if conn is not None:
                await self.pool.release(conn, discard=discard)

    async def _fetch(self, conn, schema_name: str, query: str) -> Tuple[List[str], List[Dict[str, Any]]]:
        async with conn.transaction(readonly=True):
            await conn.execute(f"SET LOCAL search_path TO {quote_ident(schema_name)}")
            await conn.execute(f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}")

            statement = await conn.prepare(query)
            records = await statement.fetch()
            columns = [attribute.name for attribute in statement.get_attributes()]

        rows = [
            {column: _to_result_value(record[index]) for index, column in enumerate(columns)}
            for record in records
        ]
        return columns, rows

    async def _log_attempt(self,
                           identity_id: str,
                           problem_id: str,
                           query: str,
                           start_time: float,
                           row_count: int,
                           status: ExecutionStatus,
                           schema_name: Optional[str] = None,
                           error_message: Optional[str] = None):
        entry = ExecutionLogEntry(
            identity_id=identity_id,
            problem_id=problem_id,
            query=query if query is not None else "",
            execution_time_ms=self._elapsed_ms(start_time),
            row_count=row_count,
            status=status,
            schema_name=schema_name,
            error_message=error_message
        )
        try:
            await self.attempt_logger.log_execution(entry)
        except Exception as e:
            logger.warning(f"Attempt logger failed: {e}")

    @staticmethod
    def _elapsed_ms(start_time: float) -> int:
        return int((time.perf_counter() - start_time) * 1000)
