"""Tests for the psycopg2 connection layer."""

import os
from unittest.mock import MagicMock, patch

import pytest

from carrental.infra.db import _dsn_has_password, fetchall, fetchone, get_conn, txn


class TestDsnHasPassword:
    @pytest.mark.parametrize(
        "dsn, expected",
        [
            ("dbname=db user=u password=pw host=h", True),
            ("dbname=db user=u host=h", False),
            ("postgres://u:pw@h/db", True),
            ("postgres://u@h/db", False),
            ("postgresql://h/db", False),
        ],
    )
    def test_detection(self, dsn, expected):
        assert _dsn_has_password(dsn) is expected


class TestGetConn:
    """Connection options and DB_PASSWORD fallback - no real DB needed."""

    def test_missing_database_url(self):
        with patch.dict(os.environ, {}, clear=True):
            with pytest.raises(RuntimeError, match="DATABASE_URL"):
                get_conn()

    def test_password_injected_when_dsn_lacks_one(self):
        env = {"DATABASE_URL": "dbname=carrental user=svc host=db", "DB_PASSWORD": "mounted"}
        with patch.dict(os.environ, env, clear=True), patch(
            "carrental.infra.db.psycopg2.connect", return_value=MagicMock()
        ) as connect:
            get_conn()
            args, kwargs = connect.call_args
            assert args == ("dbname=carrental user=svc host=db",)
            assert kwargs["password"] == "mounted"

    def test_dsn_password_wins(self):
        env = {"DATABASE_URL": "postgres://svc:inline@db/carrental", "DB_PASSWORD": "mounted"}
        with patch.dict(os.environ, env, clear=True), patch(
            "carrental.infra.db.psycopg2.connect", return_value=MagicMock()
        ) as connect:
            get_conn()
            assert "password" not in connect.call_args.kwargs

    def test_session_options(self):
        env = {"DATABASE_URL": "dbname=carrental", "DB_STATEMENT_TIMEOUT_MS": "2500"}
        with patch.dict(os.environ, env, clear=True), patch(
            "carrental.infra.db.psycopg2.connect", return_value=MagicMock()
        ) as connect:
            get_conn()
            kwargs = connect.call_args.kwargs
            assert kwargs["application_name"] == "carrental"
            assert kwargs["connect_timeout"] == 5
            assert kwargs["options"] == "-c statement_timeout=2500"


class TestTxnWithMockConnection:
    def _conn(self):
        conn = MagicMock()
        cur = MagicMock()
        conn.cursor.return_value.__enter__.return_value = cur
        return conn, cur

    def test_commit_on_success(self):
        conn, cur = self._conn()
        with txn(conn) as got:
            assert got is cur
        conn.commit.assert_called_once()
        conn.rollback.assert_not_called()
        conn.close.assert_not_called()

    def test_rollback_on_error(self):
        conn, _ = self._conn()
        with pytest.raises(ValueError):
            with txn(conn):
                raise ValueError("boom")
        conn.rollback.assert_called_once()
        conn.commit.assert_not_called()

    def test_owned_connection_closed(self):
        conn, _ = self._conn()
        with patch("carrental.infra.db.get_conn", return_value=conn):
            with txn():
                pass
        conn.close.assert_called_once()


def test_query_helpers_execute_with_params():
    cur = MagicMock()
    cur.fetchone.return_value = (1,)
    cur.fetchall.return_value = [(1,), (2,)]

    assert fetchone(cur, "SELECT %s", (1,)) == (1,)
    assert fetchall(cur, "SELECT generate_series(1, %s)", (2,)) == [(1,), (2,)]
    assert cur.execute.call_count == 2


# Skip integration tests if DATABASE_URL is not set
@pytest.mark.skipif(
    not os.environ.get("DATABASE_URL"),
    reason="DATABASE_URL not set - skipping DB integration tests",
)
class TestTxnIntegration:
    def test_rollback_discards_writes(self):
        conn = get_conn()
        try:
            with conn.cursor() as cur:
                cur.execute("CREATE TEMP TABLE txn_scratch (val text)")
            conn.commit()

            with pytest.raises(ValueError):
                with txn(conn) as cur:
                    cur.execute("INSERT INTO txn_scratch (val) VALUES (%s)", ("x",))
                    raise ValueError("rollback")

            with txn(conn) as cur:
                assert fetchone(cur, "SELECT count(*) FROM txn_scratch") == (0,)
        finally:
            conn.close()
