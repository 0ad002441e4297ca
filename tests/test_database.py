import asyncio
import time

import pytest
from pydantic import SecretStr

from sql_gateway.core import database
from sql_gateway.core.database import SqlAlchemyDriver, open_session
from sql_gateway.core.errors import ConnectError, QueryError
from sql_gateway.core.schemas import ConnectionParameters


@pytest.fixture
def params() -> ConnectionParameters:
    return ConnectionParameters(
        host="hana.local", port=30015, user="SYSTEM", password=SecretStr("secret")
    )


@pytest.mark.asyncio
async def test_execute_returns_rows_and_closes_once(stub_driver, params):
    rows = await database.execute(stub_driver, params, "SELECT 1 FROM DUMMY")

    assert rows == [{"ANSWER": 1}]
    assert len(stub_driver.connect_calls) == 1
    assert stub_driver.execute_calls == ["SELECT 1 FROM DUMMY"]
    assert stub_driver.disconnect_calls == ["session-1"]


@pytest.mark.asyncio
async def test_query_failure_closes_session(stub_driver, params):
    stub_driver.execute_error = RuntimeError("invalid table name: NOPE")

    with pytest.raises(QueryError) as exc_info:
        await database.execute(stub_driver, params, "SELECT * FROM NOPE")

    assert exc_info.value.message == "invalid table name: NOPE"
    assert exc_info.value.details["name"] == "RuntimeError"
    assert len(stub_driver.disconnect_calls) == 1


@pytest.mark.asyncio
async def test_connect_failure_never_executes(stub_driver, params):
    stub_driver.connect_error = OSError("Connection refused")

    with pytest.raises(ConnectError) as exc_info:
        await database.execute(stub_driver, params, "SELECT 1 FROM DUMMY")

    assert "Connection refused" in exc_info.value.message
    assert stub_driver.execute_calls == []
    assert stub_driver.disconnect_calls == []


@pytest.mark.asyncio
async def test_query_timeout_is_a_query_error(stub_driver, params):
    stub_driver.execute_delay = 1

    with pytest.raises(QueryError) as exc_info:
        await database.execute(
            stub_driver, params, "SELECT 1 FROM DUMMY", query_timeout=0.05
        )

    assert exc_info.value.details == {"name": "TimeoutError"}
    assert len(stub_driver.disconnect_calls) == 1


@pytest.mark.asyncio
async def test_connect_timeout_is_a_connect_error(stub_driver, params):
    async def slow_connect(_params):
        await asyncio.sleep(1)

    stub_driver.connect = slow_connect

    with pytest.raises(ConnectError):
        await database.execute(
            stub_driver, params, "SELECT 1 FROM DUMMY", connect_timeout=0.05
        )
    assert stub_driver.disconnect_calls == []


@pytest.mark.asyncio
async def test_session_closed_on_unexpected_fault(stub_driver, params):
    with pytest.raises(KeyError):
        async with open_session(stub_driver, params) as session:
            assert session == "session-1"
            raise KeyError("boom")

    assert stub_driver.disconnect_calls == ["session-1"]


@pytest.mark.asyncio
async def test_failed_close_keeps_the_result(stub_driver, params):
    async def broken_disconnect(_session):
        raise RuntimeError("socket already closed")

    stub_driver.disconnect = broken_disconnect

    rows = await database.execute(stub_driver, params, "SELECT 1 FROM DUMMY")
    assert rows == [{"ANSWER": 1}]


def test_build_url_uses_host_and_port(params):
    url, options = SqlAlchemyDriver("hana+hdbcli").build_url(params)

    assert url.drivername == "hana+hdbcli"
    assert url.host == "hana.local"
    assert url.port == 30015
    assert url.username == "SYSTEM"
    assert url.password == "secret"
    assert options == {}


def test_build_url_accepts_server_node():
    params = ConnectionParameters(
        user="SYSTEM",
        options={"serverNode": "db.example.com:39015", "currentSchema": "SALES"},
    )
    url, options = SqlAlchemyDriver("hana+hdbcli").build_url(params)

    assert url.host == "db.example.com"
    assert url.port == 39015
    assert url.password is None
    assert options == {"currentSchema": "SALES"}


def test_password_not_in_repr(params):
    assert "secret" not in repr(params)


# Real round trips through SQLAlchemy against in-memory SQLite
# Connect and execute run in different worker threads
SQLITE_OPTIONS = {"check_same_thread": False}


@pytest.mark.asyncio
async def test_sqlalchemy_driver_runs_select():
    driver = SqlAlchemyDriver("sqlite")
    rows = await database.execute(
        driver,
        ConnectionParameters(options=SQLITE_OPTIONS),
        "SELECT 1 AS answer, x'00ff' AS raw",
    )

    assert rows == [{"answer": 1, "raw": "00ff"}]


@pytest.mark.asyncio
async def test_sqlalchemy_driver_statement_without_rows():
    driver = SqlAlchemyDriver("sqlite")
    rows = await database.execute(
        driver, ConnectionParameters(options=SQLITE_OPTIONS), "CREATE TABLE t (id INT)"
    )

    assert rows == []


@pytest.mark.asyncio
async def test_sqlalchemy_driver_reports_query_error():
    driver = SqlAlchemyDriver("sqlite")

    with pytest.raises(QueryError) as exc_info:
        await database.execute(
            driver,
            ConnectionParameters(options=SQLITE_OPTIONS),
            "SELECT * FROM missing_table",
        )

    assert "missing_table" in exc_info.value.message
    assert exc_info.value.details["name"] == "OperationalError"


@pytest.mark.asyncio
async def test_late_connection_is_closed_after_connect_timeout(params):
    """A connection that shows up after the timeout is closed exactly once"""
    driver = SqlAlchemyDriver("hana+hdbcli")
    closed = []

    def slow_connect(_params):
        time.sleep(0.3)
        return "late-handle"

    driver._connect_sync = slow_connect
    driver._disconnect_sync = closed.append

    with pytest.raises(ConnectError):
        await database.execute(
            driver, params, "SELECT 1 FROM DUMMY", connect_timeout=0.05
        )
    assert closed == []

    # Wait for the worker to finish and the close to be scheduled
    for _ in range(50):
        if closed:
            break
        await asyncio.sleep(0.05)
    await asyncio.sleep(0.1)

    assert closed == ["late-handle"]
