import asyncio
import inspect
import pathlib
import sys
from contextlib import asynccontextmanager

import pytest
from httpx import ASGITransport, AsyncClient

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from folio.config import AppSettings  # noqa: E402
from folio.db.database import Database  # noqa: E402
from folio.main import create_app  # noqa: E402
from folio.providers.memory import InMemoryMarketDataProvider  # noqa: E402
from folio.providers.service import MarketDataService  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers used in the suite."""

    config.addinivalue_line("markers", "asyncio: mark test as running in an asyncio event loop")


@pytest.hookimpl(tryfirst=True)
def pytest_pyfunc_call(pyfuncitem: pytest.Function) -> bool | None:
    """Execute async test functions without requiring pytest-asyncio."""

    test_function = pyfuncitem.obj
    if inspect.iscoroutinefunction(test_function):
        loop = asyncio.new_event_loop()
        try:
            asyncio.set_event_loop(loop)
            arguments = {name: pyfuncitem.funcargs[name] for name in pyfuncitem._fixtureinfo.argnames}
            loop.run_until_complete(test_function(**arguments))
        finally:
            loop.run_until_complete(loop.shutdown_asyncgens())
            asyncio.set_event_loop(None)
            loop.close()
        return True
    return None


@pytest.fixture
def settings(tmp_path: pathlib.Path) -> AppSettings:
    return AppSettings(
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'folio.db'}",
        scheduler_enabled=False,
        telemetry_enabled=False,
    )


@pytest.fixture
def database(settings: AppSettings) -> Database:
    return Database(url=settings.database_url, settings=settings)


@pytest.fixture
def provider() -> InMemoryMarketDataProvider:
    return InMemoryMarketDataProvider()


@pytest.fixture
def market_data(provider: InMemoryMarketDataProvider) -> MarketDataService:
    return MarketDataService(provider, ttl_seconds=60.0)


@pytest.fixture
def api(database: Database, market_data: MarketDataService, settings: AppSettings):
    """Factory for an ``AsyncClient`` bound to a fresh app over the test database."""

    app = create_app(database, market_data, settings)

    @asynccontextmanager
    async def _manager():
        async with app.router.lifespan_context(app):
            transport = ASGITransport(app=app)
            async with AsyncClient(transport=transport, base_url="http://test") as client:
                yield client

    return _manager
