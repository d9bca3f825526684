"""
Sandbox Schema Provisioning for the SQL Learning Platform
=========================================================
Each (identity, problem) pair gets one PostgreSQL schema holding the problem's
sample tables and seed rows. Provisioning is idempotent: an existing sandbox
is touched and returned unchanged.
"""

import json
import math
import re
import hashlib
import logging
from decimal import Decimal
from typing import Any, List, Optional

import asyncpg

from .config import Config
from .connection_pool import ConnectionPool
from .exceptions import ProvisioningError, SandboxNotFound
from .repository import ProblemRepository, SandboxRepository
from .schemas import SampleTable, SandboxInfo

logger = logging.getLogger(__name__)

_ILLEGAL_IDENTIFIER_CHARS = re.compile(r'[^a-z0-9_]')
_DIGEST_LENGTH = 10

_CONNECTION_ERRORS = (asyncpg.InterfaceError, OSError)
_STORE_ERRORS = (asyncpg.PostgresError,) + _CONNECTION_ERRORS


def quote_ident(name: str) -> str:
    """Quote a store identifier, doubling embedded quotes"""
    return '"' + name.replace('"', '""') + '"'


def quote_literal(text: str) -> str:
    """Quote a string literal so it cannot break out of its quotes"""
    escaped = text.replace("'", "''")
    if '\\' in escaped:
        # E'' form keeps backslashes literal whatever standard_conforming_strings says
        return "E'" + escaped.replace('\\', '\\\\') + "'"
    return "'" + escaped + "'"


def sql_literal(value: Any) -> str:
    """Serialize a seed value per its runtime type"""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float, Decimal)):
        if isinstance(value, Decimal):
            finite = value.is_finite()
        else:
            finite = math.isfinite(value)
        if finite:
            return str(value)
        if value != value:
            return "'NaN'"
        return "'Infinity'" if value > 0 else "'-Infinity'"
    if isinstance(value, str):
        return quote_literal(value)
    if isinstance(value, (dict, list, tuple)):
        return quote_literal(json.dumps(value, default=str))
    return quote_literal(str(value))


def _sanitize_identifier_part(part: str) -> str:
    return _ILLEGAL_IDENTIFIER_CHARS.sub('_', part.lower())


def generate_schema_name(identity_id: str,
                         problem_id: str,
                         prefix: Optional[str] = None,
                         max_length: Optional[int] = None) -> str:
    """
    Derive the schema name for a sandbox.

    Readable part `<prefix>_<identity>_<problem>` restricted to [a-z0-9_],
    truncated so that `_<digest>` still fits in `max_length` bytes. The digest
    covers the raw pair, so pairs whose readable parts coincide (after
    sanitizing or truncation) still get distinct names.
    """
    prefix = _sanitize_identifier_part(prefix if prefix is not None else Config.SCHEMA_PREFIX)
    max_length = max_length if max_length is not None else Config.MAX_IDENTIFIER_LENGTH

    digest = hashlib.sha256(f"{identity_id}\x00{problem_id}".encode('utf-8')).hexdigest()[:_DIGEST_LENGTH]
    readable = f"{prefix}_{_sanitize_identifier_part(identity_id)}_{_sanitize_identifier_part(problem_id)}"
    readable = readable[:max_length - _DIGEST_LENGTH - 1]
    return f"{readable}_{digest}"


class SandboxManager:
    """Manages sandbox schema lifecycle"""

    def __init__(self,
                 pool: ConnectionPool,
                 problems: ProblemRepository,
                 sandboxes: SandboxRepository,
                 schema_prefix: Optional[str] = None,
                 max_identifier_length: Optional[int] = None):
        self.pool = pool
        self.problems = problems
        self.sandboxes = sandboxes
        self.schema_prefix = schema_prefix if schema_prefix is not None else Config.SCHEMA_PREFIX
        self.max_identifier_length = max_identifier_length or Config.MAX_IDENTIFIER_LENGTH

    def generate_schema_name(self, identity_id: str, problem_id: str) -> str:
        return generate_schema_name(identity_id, problem_id, self.schema_prefix, self.max_identifier_length)

    async def get_sandbox_namespace(self, identity_id: str, problem_id: str) -> str:
        """Resolve and touch the caller's schema"""
        sandbox = await self.sandboxes.find(identity_id, problem_id)
        if sandbox is None:
            raise SandboxNotFound(
                "Sandbox not found for this problem",
                "Please initialize the sandbox first"
            )
        return sandbox.schema_name

    async def ensure_sandbox(self, identity_id: str, problem_id: str) -> SandboxInfo:
        """Return the pair's sandbox, creating schema, tables and rows on first use"""
        existing = await self.sandboxes.find(identity_id, problem_id)
        if existing is not None:
            return SandboxInfo(schema_name=existing.schema_name, created=False)

        problem = await self.problems.get(problem_id)
        schema_name = self.generate_schema_name(identity_id, problem_id)

        conn = await self._acquire(schema_name)
        discard = False
        try:
            # Serializes concurrent first-time provisioning of the same pair
            try:
                await conn.execute("SELECT pg_advisory_lock(hashtext($1))", schema_name)
            except _STORE_ERRORS as e:
                logger.error(f"Failed to lock {schema_name} for provisioning: {type(e).__name__}")
                raise ProvisioningError("Failed to lock sandbox for provisioning", type(e).__name__) from e

            try:
                existing = await self.sandboxes.find(identity_id, problem_id)
                if existing is not None:
                    return SandboxInfo(schema_name=existing.schema_name, created=False)

                await self._create_schema(conn, schema_name)
                await self._create_tables(conn, schema_name, problem.sample_tables)
                await self._insert_rows(conn, schema_name, problem.sample_tables)

                record, created = await self.sandboxes.create(identity_id, problem_id, schema_name)
            finally:
                try:
                    await conn.execute("SELECT pg_advisory_unlock(hashtext($1))", schema_name)
                except _STORE_ERRORS as e:
                    # Session locks end with the session
                    logger.warning(f"Failed to release provisioning lock for {schema_name}: {type(e).__name__}")
                    discard = True
        except ProvisioningError as e:
            if isinstance(e.__cause__, _CONNECTION_ERRORS):
                discard = True
            raise
        finally:
            await self.pool.release(conn, discard=discard)

        if created:
            logger.info(f"Created sandbox {schema_name} for identity {identity_id}, problem {problem_id}")
        return SandboxInfo(schema_name=record.schema_name, created=created)

    async def drop_sandbox(self, identity_id: str, problem_id: str) -> bool:
        """Drop the pair's schema and its record"""
        sandbox = await self.sandboxes.find(identity_id, problem_id, touch=False)
        if sandbox is None:
            return False

        conn = await self._acquire(sandbox.schema_name)
        discard = False
        try:
            await conn.execute(f"DROP SCHEMA IF EXISTS {quote_ident(sandbox.schema_name)} CASCADE")
        except _STORE_ERRORS as e:
            discard = isinstance(e, _CONNECTION_ERRORS)
            logger.error(f"Failed to drop sandbox {sandbox.schema_name}: {type(e).__name__}")
            raise ProvisioningError("Failed to drop sandbox schema", type(e).__name__) from e
        finally:
            await self.pool.release(conn, discard=discard)

        await self.sandboxes.delete(identity_id, problem_id)
        logger.info(f"Dropped sandbox {sandbox.schema_name}")
        return True

    async def _acquire(self, schema_name: str):
        try:
            return await self.pool.acquire()
        except _STORE_ERRORS as e:
            # Connection errors can carry the DSN; only the type is logged
            logger.error(f"Failed to acquire a connection for sandbox {schema_name}: {type(e).__name__}")
            raise ProvisioningError("Sandbox store is unavailable", type(e).__name__) from None

    async def _create_schema(self, conn, schema_name: str):
        """Create the empty schema, clearing any orphan left by a failed attempt"""
        try:
            await conn.execute(f"DROP SCHEMA IF EXISTS {quote_ident(schema_name)} CASCADE")
            await conn.execute(f"CREATE SCHEMA {quote_ident(schema_name)}")
        except _STORE_ERRORS as e:
            logger.error(f"Failed to create schema {schema_name}: {e}")
            raise ProvisioningError("Failed to create sandbox schema", type(e).__name__) from e
        logger.info(f"Created schema: {schema_name}")

    def _generate_create_table_statement(self, schema_name: str, table: SampleTable) -> str:
        column_definitions = ", ".join(
            f"{quote_ident(column.column_name)} {column.data_type}"
            for column in table.columns
        )
        return f"CREATE TABLE {quote_ident(schema_name)}.{quote_ident(table.table_name)} ({column_definitions})"

    def _generate_insert_statement(self, schema_name: str, table: SampleTable, row: dict) -> str:
        column_names = ", ".join(quote_ident(column.column_name) for column in table.columns)
        values = ", ".join(sql_literal(row.get(column.column_name)) for column in table.columns)
        return (
            f"INSERT INTO {quote_ident(schema_name)}.{quote_ident(table.table_name)} "
            f"({column_names}) VALUES ({values})"
        )

    async def _create_tables(self, conn, schema_name: str, tables: List[SampleTable]):
        """Create every sample table in one all-or-nothing transaction"""
        try:
            async with conn.transaction():
                for table in tables:
                    await conn.execute(self._generate_create_table_statement(schema_name, table))
        except _STORE_ERRORS as e:
            logger.error(f"Failed to create tables in {schema_name}: {e}")
            raise ProvisioningError("Failed to create sandbox tables", type(e).__name__) from e
        logger.info(f"Created {len(tables)} tables in {schema_name}")

    async def _insert_rows(self, conn, schema_name: str, tables: List[SampleTable]):
        """Insert every seed row of every table in one all-or-nothing transaction"""
        inserted = 0
        try:
            async with conn.transaction():
                for table in tables:
                    for row in table.rows:
                        await conn.execute(self._generate_insert_statement(schema_name, table, row))
                        inserted += 1
        except _STORE_ERRORS as e:
            logger.error(f"Failed to insert sample data into {schema_name}: {e}")
            raise ProvisioningError("Failed to insert sandbox sample data", type(e).__name__) from e
        logger.info(f"Inserted {inserted} rows into {schema_name}")
