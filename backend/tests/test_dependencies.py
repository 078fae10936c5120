from contextlib import asynccontextmanager
from types import SimpleNamespace

from folio.api.dependencies import get_db_session


class TrackingDatabase:
    def __init__(self) -> None:
        self.events: list[str] = []

    @asynccontextmanager
    async def session(self):
        self.events.append("open")
        try:
            yield "session"
        finally:
            self.events.append("closed")


async def test_session_dependency_closes_the_session_when_finalized():
    database = TrackingDatabase()
    request = SimpleNamespace(app=SimpleNamespace(state=SimpleNamespace(database=database)))

    dependency = get_db_session(request)
    assert await dependency.__anext__() == "session"
    await dependency.aclose()

    assert database.events == ["open", "closed"]
