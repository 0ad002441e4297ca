import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict, List, Optional, Protocol, Tuple

from fastapi import Request
from sqlalchemy import URL, create_engine
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.pool import NullPool

from sql_gateway.core.errors import (
    ConnectError,
    QueryError,
    describe_exception,
    driver_message,
)
from sql_gateway.core.schemas import ConnectionParameters

logger = logging.getLogger(__name__)

Row = Dict[str, Any]


class DatabaseDriver(Protocol):
    """
    The three operations the gateway needs from a database client.
    Each call returns one outcome or raises, no callbacks.
    """

    async def connect(self, params: ConnectionParameters) -> Any: ...

    async def execute(self, session: Any, query: str) -> List[Row]: ...

    async def disconnect(self, session: Any) -> None: ...


# -----------------------------------------------------------------------------
# SQLALCHEMY DRIVER
# One engine per session with NullPool, so nothing is pooled between requests.
# Blocking DBAPI calls run in worker threads.
# -----------------------------------------------------------------------------


@dataclass
class SessionHandle:
    engine: Engine
    connection: Connection


def _plain_value(value: Any) -> Any:
    # Binary columns are returned hex encoded so the row stays JSON safe
    if isinstance(value, (bytes, bytearray, memoryview)):
        return bytes(value).hex()
    return value


class SqlAlchemyDriver:
    def __init__(self, dialect: str):
        self.dialect = dialect

    def build_url(self, params: ConnectionParameters) -> Tuple[URL, Dict[str, Any]]:
        """
        Build the engine URL and the remaining DBAPI connect arguments.

        HANA clients commonly send serverNode="host:port" instead of separate
        host/port fields, both forms are accepted.
        """
        options = dict(params.options)
        host, port = params.host, params.port

        server_node = options.pop("serverNode", None)
        if not host and server_node:
            host, _, node_port = str(server_node).partition(":")
            if port is None and node_port:
                port = int(node_port)

        url = URL.create(
            self.dialect,
            username=params.user or None,
            password=params.password.get_secret_value() or None,
            host=host or None,
            port=port,
        )
        return url, options

    def _connect_sync(self, params: ConnectionParameters) -> SessionHandle:
        url, connect_args = self.build_url(params)
        engine = create_engine(url, poolclass=NullPool, connect_args=connect_args)
        try:
            connection = engine.connect()
        except Exception:
            engine.dispose()
            raise
        return SessionHandle(engine=engine, connection=connection)

    def _execute_sync(self, session: SessionHandle, query: str) -> List[Row]:
        # exec_driver_sql hands the statement to the DBAPI untouched (no bind parsing)
        result = session.connection.exec_driver_sql(query)
        rows: List[Row] = []
        if result.returns_rows:
            rows = [
                {key: _plain_value(value) for key, value in row.items()}
                for row in result.mappings()
            ]
        session.connection.commit()
        return rows

    def _disconnect_sync(self, session: SessionHandle) -> None:
        try:
            session.connection.close()
        finally:
            session.engine.dispose()

    def _discard_late_session(self, task: "asyncio.Future[SessionHandle]") -> None:
        if task.cancelled() or task.exception() is not None:
            return
        logger.warning("Closing a database session that was opened after its timeout")
        asyncio.get_running_loop().run_in_executor(
            None, self._disconnect_sync, task.result()
        )

    async def connect(self, params: ConnectionParameters) -> SessionHandle:
        task = asyncio.ensure_future(asyncio.to_thread(self._connect_sync, params))
        try:
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            # The worker thread keeps running, close whatever it ends up opening
            task.add_done_callback(self._discard_late_session)
            raise

    async def execute(self, session: SessionHandle, query: str) -> List[Row]:
        return await asyncio.to_thread(self._execute_sync, session, query)

    async def disconnect(self, session: SessionHandle) -> None:
        await asyncio.to_thread(self._disconnect_sync, session)


# Built once in create_app, it holds no connections itself
def get_driver(request: Request) -> DatabaseDriver:
    return request.app.state.driver


# -----------------------------------------------------------------------------
# SESSION EXECUTOR
# connect -> execute once -> disconnect, with the close guaranteed by the
# context manager on every exit path.
# -----------------------------------------------------------------------------


async def _close_session(db_driver: DatabaseDriver, session: Any) -> None:
    try:
        await db_driver.disconnect(session)
        logger.info("Database session closed")
    except Exception as error:
        # The request outcome is already decided, a failed close must not replace it
        logger.warning(f"Failed to close database session: {error}")


@asynccontextmanager
async def open_session(
    db_driver: DatabaseDriver,
    params: ConnectionParameters,
    timeout: Optional[float] = None,
) -> AsyncIterator[Any]:
    """
    Open one database session and close it exactly once on exit.

    Raises ConnectError when the session cannot be opened; in that case there
    is nothing to close.
    """
    try:
        session = await asyncio.wait_for(db_driver.connect(params), timeout or None)
    except asyncio.TimeoutError:
        logger.error(f"Connection error: timed out after {timeout}s")
        raise ConnectError(
            f"Timed out after {timeout} seconds while connecting to the database",
            {"name": "TimeoutError"},
        )
    except ConnectError:
        raise
    except Exception as error:
        logger.error(f"Connection error: {driver_message(error)}")
        raise ConnectError(driver_message(error), describe_exception(error))

    logger.info(f"Connected to database at {params.host or 'default host'}")
    try:
        yield session
    finally:
        await _close_session(db_driver, session)


async def execute(
    db_driver: DatabaseDriver,
    params: ConnectionParameters,
    query: str,
    connect_timeout: Optional[float] = None,
    query_timeout: Optional[float] = None,
) -> List[Row]:
    """
    Run a single statement in its own short-lived session.

    Args:
        db_driver: Driver used to open, use and close the session.
        params: Host, port, credentials and driver options.
        query: SQL statement, passed to the database as is.
        connect_timeout: Seconds allowed for connecting, None or 0 for no limit.
        query_timeout: Seconds allowed for the statement, None or 0 for no limit.

    Returns:
        Result rows, empty for statements that return none.

    Raises:
        ConnectError: the session could not be opened.
        QueryError: the statement failed; the session is closed before this propagates.
    """
    async with open_session(db_driver, params, connect_timeout) as session:
        try:
            return await asyncio.wait_for(
                db_driver.execute(session, query), query_timeout or None
            )
        except asyncio.TimeoutError:
            logger.error(f"Query error: timed out after {query_timeout}s")
            raise QueryError(
                f"Timed out after {query_timeout} seconds while executing the query",
                {"name": "TimeoutError"},
            )
        except QueryError:
            raise
        except Exception as error:
            logger.error(f"Query error: {driver_message(error)}")
            raise QueryError(driver_message(error), describe_exception(error))
