import asyncio
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from sql_gateway.core.config import Settings
from sql_gateway.core.database import get_driver
from sql_gateway.core.schemas import ConnectionParameters
from sql_gateway.core.security import CredentialCipher
from sql_gateway.main import create_app

# Fixed key/IV for tests, never used outside this suite
TEST_KEY_HEX = "00112233445566778899aabbccddeeff00112233445566778899aabbccddeeff"
TEST_IV_HEX = "0f0e0d0c0b0a09080706050403020100"


class StubDriver:
    """Records every driver call so tests can count sessions."""

    def __init__(
        self,
        rows: Optional[List[Dict[str, Any]]] = None,
        connect_error: Optional[Exception] = None,
        execute_error: Optional[Exception] = None,
        execute_delay: float = 0,
    ):
        self.rows = rows if rows is not None else [{"ANSWER": 1}]
        self.connect_error = connect_error
        self.execute_error = execute_error
        self.execute_delay = execute_delay
        self.connect_calls: List[ConnectionParameters] = []
        self.execute_calls: List[str] = []
        self.disconnect_calls: List[Any] = []

    async def connect(self, params: ConnectionParameters):
        self.connect_calls.append(params)
        if self.connect_error:
            raise self.connect_error
        return f"session-{len(self.connect_calls)}"

    async def execute(self, session, query: str):
        self.execute_calls.append(query)
        if self.execute_delay:
            await asyncio.sleep(self.execute_delay)
        if self.execute_error:
            raise self.execute_error
        return self.rows

    async def disconnect(self, session) -> None:
        self.disconnect_calls.append(session)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        _env_file=None,
        ENCRYPTION_KEY=TEST_KEY_HEX,
        ENCRYPTION_IV=TEST_IV_HEX,
        CORS_ORIGINS=["http://localhost:3000"],
        CORS_ORIGIN_REGEX=r"^https://[a-z0-9-]+\.vercel\.app$",
        DB_CONNECT_TIMEOUT=5,
        DB_QUERY_TIMEOUT=5,
    )


@pytest.fixture
def cipher() -> CredentialCipher:
    return CredentialCipher.from_hex(TEST_KEY_HEX, TEST_IV_HEX)


@pytest.fixture
def stub_driver() -> StubDriver:
    return StubDriver()


@pytest.fixture
def app(test_settings: Settings, stub_driver: StubDriver):
    application = create_app(test_settings)
    application.dependency_overrides[get_driver] = lambda: stub_driver
    yield application
    application.dependency_overrides.clear()


# Client
@pytest_asyncio.fixture(scope="function")
async def client(app):
    async with AsyncClient(
        transport=ASGITransport(app=app), base_url="http://test"
    ) as ac:
        yield ac
