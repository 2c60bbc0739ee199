"""Tests for the transactional session"""

import os
import shutil
import sqlite3
import tempfile
import unittest
from unittest.mock import PropertyMock, patch

from sqlalchemy import create_engine

from semigrate.database.config import DatabaseConfig
from semigrate.database.session import TransactionalSession, split_sqlite_script
from semigrate.error_handling import DatabaseConnectionError, SessionStateError, StatementError


class SessionTestBase(unittest.TestCase):
    """Isolated SQLite file database per test"""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()
        self.url = f"sqlite:///{os.path.join(self.tmpdir, 'test.db')}"
        self.engine = DatabaseConfig(self.url).create_engine()

    def tearDown(self):
        self.engine.dispose()
        shutil.rmtree(self.tmpdir, ignore_errors=True)

    def table_names(self):
        with TransactionalSession.connect(self.engine) as session:
            rows = session.execute("SELECT name FROM sqlite_master WHERE type = 'table'")
            session.rollback()
        return {row[0] for row in rows}


class TestTransactionalSession(SessionTestBase):

    def test_commit_persists(self):
        session = TransactionalSession.connect(self.engine)
        session.execute("CREATE TABLE people (name TEXT)")
        session.execute("INSERT INTO people (name) VALUES (:name)", {"name": "ada"})
        session.commit()
        session.release()

        with TransactionalSession.connect(self.engine) as check:
            rows = check.execute("SELECT name FROM people")
            check.rollback()
        self.assertEqual([row[0] for row in rows], ["ada"])

    def test_rollback_discards_ddl(self):
        session = TransactionalSession.connect(self.engine)
        session.execute("CREATE TABLE people (name TEXT)")
        session.rollback()
        session.release()

        self.assertNotIn("people", self.table_names())

    def test_terminal_operations_only_once(self):
        session = TransactionalSession.connect(self.engine)
        session.commit()

        with self.assertRaises(SessionStateError):
            session.commit()
        with self.assertRaises(SessionStateError):
            session.rollback()
        with self.assertRaises(SessionStateError):
            session.execute("SELECT 1")
        session.release()

    def test_release_is_idempotent_and_rolls_back(self):
        session = TransactionalSession.connect(self.engine)
        session.execute("CREATE TABLE people (name TEXT)")
        session.release()
        session.release()

        self.assertTrue(session.released)
        self.assertFalse(session.active)
        self.assertNotIn("people", self.table_names())
        with self.assertRaises(SessionStateError):
            session.execute("SELECT 1")

    def test_statement_error_carries_identity_and_cause(self):
        with TransactionalSession.connect(self.engine) as session:
            with self.assertRaises(StatementError) as ctx:
                session.execute("SELECT * FROM missing_table", name="probe")
            session.rollback()

        self.assertEqual(ctx.exception.statement, "probe")
        self.assertIsNotNone(ctx.exception.cause)

    def test_restart_opens_new_transaction(self):
        with TransactionalSession.connect(self.engine) as session:
            session.execute("CREATE TABLE people (name TEXT)")
            session.restart()
            self.assertTrue(session.active)
            session.execute("CREATE TABLE pets (name TEXT)")
            session.commit()

        tables = self.table_names()
        self.assertIn("pets", tables)
        self.assertNotIn("people", tables)

    def test_multi_statement_script(self):
        script = """
            CREATE TABLE people (name TEXT, note TEXT);
            CREATE TABLE audit (name TEXT);
            CREATE TRIGGER people_audit AFTER INSERT ON people
            BEGIN
                INSERT INTO audit (name) VALUES (new.name);
            END;
            -- a comment; with a semicolon
            INSERT INTO people (name, note) VALUES ('ada', 'a;b');
        """
        with TransactionalSession.connect(self.engine) as session:
            session.execute_script(script, name="script.sql")
            people = session.execute("SELECT name, note FROM people")
            audit = session.execute("SELECT name FROM audit")
            session.commit()

        self.assertEqual([tuple(row) for row in people], [("ada", "a;b")])
        self.assertEqual([row[0] for row in audit], ["ada"])

    def test_script_error_names_script(self):
        with TransactionalSession.connect(self.engine) as session:
            with self.assertRaises(StatementError) as ctx:
                session.execute_script("CREATE TABLE t (a TEXT); INSERT INTO nowhere VALUES (1);", name="bad.sql")
            session.rollback()
        self.assertEqual(ctx.exception.statement, "bad.sql")

    def test_connect_failure(self):
        url = f"sqlite:///{os.path.join(self.tmpdir, 'missing', 'dir', 'test.db')}"
        with self.assertRaises(DatabaseConnectionError):
            TransactionalSession.connect(url)

    def test_connect_from_url_owns_engine(self):
        session = TransactionalSession.connect(self.url)
        self.assertEqual(session.dialect_name, "sqlite")
        session.rollback()
        session.release()


class FormatStyleCursor:
    """Cursor that interpolates ``%`` markers whenever it is handed parameters"""

    def __init__(self, cursor):
        self._cursor = cursor

    def execute(self, query, args=None):
        if args is not None:
            query = query % args
        return self._cursor.execute(query)

    def __getattr__(self, name):
        return getattr(self._cursor, name)


class FormatStyleConnection:

    def __init__(self, connection):
        self._connection = connection

    def cursor(self, *args, **kwargs):
        return FormatStyleCursor(self._connection.cursor(*args, **kwargs))

    def __getattr__(self, name):
        return getattr(self._connection, name)


class TestScriptsOnFormatStyleDrivers(unittest.TestCase):
    """Scripts reach drivers like psycopg2 and mysqlclient without a parameter collection"""

    def setUp(self):
        self.engine = create_engine(
            "sqlite://", creator=lambda: FormatStyleConnection(sqlite3.connect(":memory:"))
        )

    def tearDown(self):
        self.engine.dispose()

    def run_script(self, script):
        with TransactionalSession.connect(self.engine) as session:
            rows = session.execute_script(script, name="percent.sql")
            session.rollback()
        return [tuple(row) for row in rows]

    def test_percent_signs_are_left_alone(self):
        self.assertEqual(self.run_script("SELECT 'progress 100%' AS note"), [("progress 100%",)])

    def test_percent_signs_in_unsplit_scripts(self):
        with patch.object(TransactionalSession, "dialect_name", new_callable=PropertyMock,
                          return_value="postgresql"):
            rows = self.run_script("SELECT 'a%' LIKE 'a%%' AS matched")
        self.assertEqual(len(rows), 1)


class TestSplitSqliteScript(unittest.TestCase):

    def test_split(self):
        statements = split_sqlite_script("CREATE TABLE a (x TEXT); INSERT INTO a VALUES ('1;2');\n")
        self.assertEqual(statements, ["CREATE TABLE a (x TEXT);", "INSERT INTO a VALUES ('1;2');"])

    def test_trailing_statement_without_semicolon(self):
        self.assertEqual(split_sqlite_script("SELECT 1; SELECT 2"), ["SELECT 1;", "SELECT 2"])

    def test_empty(self):
        self.assertEqual(split_sqlite_script("  ;\n"), [])


if __name__ == "__main__":
    unittest.main()
