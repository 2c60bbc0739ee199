"""Tests for the bookkeeping store"""

import os
import shutil
import tempfile
import unittest
from unittest.mock import MagicMock

from semigrate.database.config import DatabaseConfig
from semigrate.database.migrations.version_manager import BookkeepingStore
from semigrate.database.session import TransactionalSession
from semigrate.error_handling import ConflictError, StatementError, StorageError


class BookkeepingTestBase(unittest.TestCase):

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.engine = DatabaseConfig(f"sqlite:///{os.path.join(self.tmpdir, 'test.db')}").create_engine()
        self.store = BookkeepingStore()
        self.session = TransactionalSession.connect(self.engine)

    def tearDown(self):
        self.session.release()
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)


class TestBookkeepingStore(BookkeepingTestBase):

    def test_ensure_schema_is_idempotent(self):
        self.store.ensure_schema(self.session)
        self.store.ensure_schema(self.session)

        rows = self.session.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name = 'semigrate_migrations'"
        )
        self.assertEqual(len(rows), 1)

    def test_current_version_empty(self):
        self.store.ensure_schema(self.session)
        self.assertIsNone(self.store.current_version(self.session))

    def test_current_version_uses_semver_order(self):
        self.store.ensure_schema(self.session)
        for version in ("0.9.0", "0.10.0", "0.2.0"):
            self.store.record_applied(self.session, version)

        self.assertEqual(self.store.current_version(self.session), "0.10.0")
        self.assertEqual([r["version"] for r in self.store.applied(self.session)], ["0.2.0", "0.9.0", "0.10.0"])

    def test_applied_at_is_defaulted(self):
        self.store.ensure_schema(self.session)
        self.store.record_applied(self.session, "1.0.0")

        record = self.store.applied(self.session)[0]
        self.assertIsNotNone(record["applied_at"])

    def test_duplicate_record_is_a_conflict(self):
        self.store.ensure_schema(self.session)
        self.store.record_applied(self.session, "1.0.0")

        with self.assertRaises(ConflictError) as ctx:
            self.store.record_applied(self.session, "1.0.0")
        self.assertEqual(ctx.exception.version, "1.0.0")

    def test_clear(self):
        self.store.ensure_schema(self.session)
        self.store.record_applied(self.session, "1.0.0")
        self.store.clear(self.session)

        self.assertIsNone(self.store.current_version(self.session))

    def test_missing_table_fails_detection(self):
        with self.assertRaises(StatementError):
            self.store.current_version(self.session)

    def test_custom_table_name(self):
        store = BookkeepingStore(schema="app", table="versions")
        store.ensure_schema(self.session)
        store.record_applied(self.session, "0.0.1")

        rows = self.session.execute("SELECT version FROM app_versions")
        self.assertEqual([row[0] for row in rows], ["0.0.1"])

    def test_schema_dialects_keep_schema(self):
        table = BookkeepingStore().table_for("postgresql")
        self.assertEqual(table.schema, "semigrate")
        self.assertEqual(table.fullname, "semigrate.migrations")


class TestStorageErrors(unittest.TestCase):

    def test_ensure_schema_failure_is_storage_error(self):
        session = MagicMock()
        session.dialect_name = "postgresql"
        session.execute.side_effect = StatementError("permission denied", statement="CREATE SCHEMA")

        with self.assertRaises(StorageError):
            BookkeepingStore().ensure_schema(session)


if __name__ == "__main__":
    unittest.main()
