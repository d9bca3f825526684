"""
Unit tests for sandbox provisioning
"""

import re
import unittest
from unittest.mock import patch

import asyncpg

from sqlsandbox.exceptions import ProblemNotFound, ProvisioningError, SandboxNotFound
from sqlsandbox.repository import ProblemRepository, SandboxRepository
from sqlsandbox.sandbox_manager import (SandboxManager, generate_schema_name, quote_ident,
                                        quote_literal, sql_literal)
from tests.fakes import FakePool, make_session_factory, users_problem

SCHEMA_NAME_PATTERN = re.compile(r'^[a-z0-9_]+$')


class TestSchemaNaming(unittest.TestCase):

    def test_deterministic(self):
        self.assertEqual(generate_schema_name("user-1", "p1"), generate_schema_name("user-1", "p1"))

    def test_legal_characters_and_length(self):
        pairs = [
            ("user-1", "p1"),
            ("Ünïcödé@example.com", "problem/with spaces"),
            ("x" * 200, "y" * 200),
            ("", ""),
        ]
        for identity_id, problem_id in pairs:
            name = generate_schema_name(identity_id, problem_id, prefix="sb", max_length=63)
            self.assertRegex(name, SCHEMA_NAME_PATTERN)
            self.assertLessEqual(len(name.encode("utf-8")), 63)
            self.assertTrue(name.startswith("sb_"))

    def test_readable_part_kept_when_it_fits(self):
        name = generate_schema_name("alice", "two-sum", prefix="sb", max_length=63)
        self.assertTrue(name.startswith("sb_alice_two_sum_"))

    def test_truncation_does_not_collide(self):
        base = "u" * 80
        first = generate_schema_name(base + "1", "p", prefix="sb", max_length=63)
        second = generate_schema_name(base + "2", "p", prefix="sb", max_length=63)
        self.assertNotEqual(first, second)

    def test_sanitizing_does_not_collide(self):
        self.assertNotEqual(generate_schema_name("a-b", "p"), generate_schema_name("a_b", "p"))
        self.assertNotEqual(generate_schema_name("a_b", "c"), generate_schema_name("a", "b_c"))


class TestLiterals(unittest.TestCase):

    def test_quote_ident_doubles_quotes(self):
        self.assertEqual(quote_ident('we"ird'), '"we""ird"')

    def test_quote_literal_cannot_break_out(self):
        self.assertEqual(quote_literal("O'Brien"), "'O''Brien'")
        self.assertEqual(quote_literal("x'); DROP TABLE users; --"), "'x''); DROP TABLE users; --'")
        self.assertEqual(quote_literal("back\\slash'"), "E'back\\\\slash'''")

    def test_sql_literal_by_type(self):
        self.assertEqual(sql_literal(None), "NULL")
        self.assertEqual(sql_literal(True), "TRUE")
        self.assertEqual(sql_literal(False), "FALSE")
        self.assertEqual(sql_literal(42), "42")
        self.assertEqual(sql_literal(19.99), "19.99")
        self.assertEqual(sql_literal(float("nan")), "'NaN'")
        self.assertEqual(sql_literal(float("-inf")), "'-Infinity'")
        self.assertEqual(sql_literal("Ann"), "'Ann'")
        self.assertEqual(sql_literal({"k": "v"}), "'{\"k\": \"v\"}'")


class TestSandboxManager(unittest.IsolatedAsyncioTestCase):

    async def asyncSetUp(self):
        session_factory = make_session_factory()
        self.problems = ProblemRepository(session_factory)
        self.sandboxes = SandboxRepository(session_factory)
        await self.problems.save(users_problem())

        self.pool = FakePool()
        self.conn = self.pool.connection
        self.manager = SandboxManager(self.pool, self.problems, self.sandboxes, schema_prefix="sb")

    async def test_first_call_creates_schema_tables_and_rows(self):
        info = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertTrue(info.created)
        schema = quote_ident(info.schema_name)
        self.assertIn(f"CREATE SCHEMA {schema}", self.conn.executed)
        self.assertIn(f'CREATE TABLE {schema}."users" ("id" int, "name" text)', self.conn.executed)
        self.assertIn(f'INSERT INTO {schema}."users" ("id", "name") VALUES (1, \'Ann\')', self.conn.executed)

        # Tables and rows each get their own committed transaction
        self.assertEqual([t.outcome for t in self.conn.transactions], ["commit", "commit"])
        self.assertEqual(self.pool.outstanding, 0)

        record = await self.sandboxes.find("alice", "users-name-by-id")
        self.assertEqual(record.schema_name, info.schema_name)

    async def test_second_call_returns_existing(self):
        first = await self.manager.ensure_sandbox("alice", "users-name-by-id")
        executed = len(self.conn.executed)

        second = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertFalse(second.created)
        self.assertEqual(second.schema_name, first.schema_name)
        self.assertEqual(len(self.conn.executed), executed)

    async def test_lookup_touches_last_used(self):
        await self.manager.ensure_sandbox("alice", "users-name-by-id")
        before = (await self.sandboxes.find("alice", "users-name-by-id", touch=False)).last_used_at

        await self.manager.get_sandbox_namespace("alice", "users-name-by-id")
        after = (await self.sandboxes.find("alice", "users-name-by-id", touch=False)).last_used_at

        self.assertGreaterEqual(after, before)

    async def test_distinct_pairs_get_distinct_schemas(self):
        a = await self.manager.ensure_sandbox("alice", "users-name-by-id")
        b = await self.manager.ensure_sandbox("bob", "users-name-by-id")
        self.assertNotEqual(a.schema_name, b.schema_name)

    async def test_provisioning_is_serialized_with_advisory_lock(self):
        await self.manager.ensure_sandbox("alice", "users-name-by-id")
        self.assertEqual(len(self.conn.statements_containing("pg_advisory_lock")), 1)
        self.assertEqual(len(self.conn.statements_containing("pg_advisory_unlock")), 1)
        self.assertLess(
            self.conn.executed.index("SELECT pg_advisory_lock(hashtext($1))"),
            self.conn.executed.index("SELECT pg_advisory_unlock(hashtext($1))")
        )

    async def test_orphan_schema_is_dropped_before_create(self):
        info = await self.manager.ensure_sandbox("alice", "users-name-by-id")
        schema = quote_ident(info.schema_name)
        self.assertLess(
            self.conn.executed.index(f"DROP SCHEMA IF EXISTS {schema} CASCADE"),
            self.conn.executed.index(f"CREATE SCHEMA {schema}")
        )

    async def test_missing_problem_raises_not_found(self):
        with self.assertRaises(ProblemNotFound):
            await self.manager.ensure_sandbox("alice", "no-such-problem")
        self.assertEqual(self.pool.acquired, 0)

    async def test_failed_insert_rolls_back_and_leaves_no_record(self):
        self.conn.execute_errors["INSERT INTO"] = asyncpg.PostgresError("invalid input syntax for type integer")

        with self.assertRaises(ProvisioningError):
            await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertEqual([t.outcome for t in self.conn.transactions], ["commit", "rollback"])
        self.assertIsNone(await self.sandboxes.find("alice", "users-name-by-id"))
        self.assertEqual(self.pool.outstanding, 0)
        self.assertEqual(len(self.conn.statements_containing("pg_advisory_unlock")), 1)

    async def test_retry_after_failure_recreates_cleanly(self):
        self.conn.execute_errors["CREATE TABLE"] = asyncpg.PostgresError("type \"nope\" does not exist")
        with self.assertRaises(ProvisioningError):
            await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.conn.execute_errors.clear()
        info = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertTrue(info.created)
        drops = self.conn.statements_containing("DROP SCHEMA IF EXISTS")
        self.assertEqual(len(drops), 2)

    async def test_lock_release_failure_discards_connection(self):
        self.conn.execute_errors["pg_advisory_unlock"] = OSError("connection reset")

        info = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertTrue(info.created)
        self.assertEqual(self.pool.released, [True])

    async def test_unreachable_store_is_a_provisioning_error(self):
        self.pool.acquire_error = OSError("could not connect to postgresql://app:s3cret@db:5432/sandbox")

        with self.assertLogs("sqlsandbox.sandbox_manager", level="ERROR") as logs:
            with self.assertRaises(ProvisioningError) as ctx:
                await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertNotIn("s3cret", str(ctx.exception))
        self.assertNotIn("s3cret", "\n".join(logs.output))
        self.assertEqual(self.pool.released, [])
        self.assertIsNone(await self.sandboxes.find("alice", "users-name-by-id"))

    async def test_failed_lock_is_a_provisioning_error(self):
        self.conn.execute_errors["pg_advisory_lock"] = asyncpg.exceptions.TooManyConnectionsError("too many clients")

        with self.assertRaises(ProvisioningError):
            await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertEqual(self.conn.statements_containing("CREATE SCHEMA"), [])
        self.assertEqual(self.pool.released, [False])

    async def test_connection_lost_during_create_discards_connection(self):
        for error in (asyncpg.InterfaceError("connection is closed"), ConnectionResetError("reset by peer")):
            self.pool.released.clear()
            self.conn.execute_errors["CREATE SCHEMA"] = error

            with self.assertRaises(ProvisioningError) as ctx:
                await self.manager.ensure_sandbox("alice", "users-name-by-id")

            self.assertEqual(ctx.exception.details, type(error).__name__)
            self.assertEqual(self.pool.released, [True])
            self.assertIsNone(await self.sandboxes.find("alice", "users-name-by-id"))

    async def test_failed_drop_keeps_record(self):
        await self.manager.ensure_sandbox("alice", "users-name-by-id")
        self.conn.execute_errors["DROP SCHEMA"] = ConnectionResetError("reset by peer")

        with self.assertRaises(ProvisioningError):
            await self.manager.drop_sandbox("alice", "users-name-by-id")

        self.assertEqual(self.pool.released[-1], True)
        self.assertIsNotNone(await self.sandboxes.find("alice", "users-name-by-id"))

    async def test_concurrent_record_is_reused(self):
        schema_name = self.manager.generate_schema_name("alice", "users-name-by-id")
        original_find = self.sandboxes.find
        calls = []

        async def find_racing(identity_id, problem_id, touch=True):
            calls.append(identity_id)
            if len(calls) == 2:
                # Another worker finished provisioning while we waited for the lock
                await self.sandboxes.create(identity_id, problem_id, schema_name)
            return await original_find(identity_id, problem_id, touch)

        with patch.object(self.sandboxes, "find", side_effect=find_racing):
            info = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertFalse(info.created)
        self.assertEqual(self.conn.statements_containing("CREATE SCHEMA"), [])
        self.assertEqual(self.pool.outstanding, 0)

    async def test_get_namespace_without_sandbox_raises(self):
        with self.assertRaises(SandboxNotFound):
            await self.manager.get_sandbox_namespace("alice", "users-name-by-id")

    async def test_drop_sandbox(self):
        info = await self.manager.ensure_sandbox("alice", "users-name-by-id")

        self.assertTrue(await self.manager.drop_sandbox("alice", "users-name-by-id"))
        self.assertIn(f"DROP SCHEMA IF EXISTS {quote_ident(info.schema_name)} CASCADE", self.conn.executed[-1:])
        self.assertIsNone(await self.sandboxes.find("alice", "users-name-by-id"))
        self.assertFalse(await self.manager.drop_sandbox("alice", "users-name-by-id"))


if __name__ == '__main__':
    unittest.main()
