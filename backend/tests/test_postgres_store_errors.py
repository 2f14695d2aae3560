"""Error mapping in the PostgreSQL store, exercised without a database."""

import pytest
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, ProgrammingError

from app.adapters.errors import SlugConflictError, StoreError, StoreUnavailableError
from app.adapters.store.base import EventDraft
from app.adapters.store.postgres import PostgresFusionStore


class _FailingSession:
    def __init__(self, exc: Exception) -> None:
        self._exc = exc

    async def __aenter__(self):  # type: ignore[no-untyped-def]
        raise self._exc

    async def __aexit__(self, *exc_info) -> bool:  # type: ignore[no-untyped-def]
        return False


class _CommitFailingSession:
    def __init__(self, exc: Exception) -> None:
        self._exc = exc
        self.added: list = []
        self.rolled_back = False

    async def __aenter__(self):  # type: ignore[no-untyped-def]
        return self

    async def __aexit__(self, *exc_info) -> bool:  # type: ignore[no-untyped-def]
        return False

    def add(self, row) -> None:  # type: ignore[no-untyped-def]
        self.added.append(row)

    async def commit(self) -> None:
        raise self._exc

    async def rollback(self) -> None:
        self.rolled_back = True


def _draft() -> EventDraft:
    return EventDraft(id="evt_fed_june", title="Fed cut in June?", slug="fed-june", category="monetary_policy")


async def test_lost_connection_maps_to_store_unavailable() -> None:
    exc = OperationalError("SELECT 1", {}, Exception("connection refused"))
    store = PostgresFusionStore(lambda: _FailingSession(exc))  # type: ignore[arg-type]

    with pytest.raises(StoreUnavailableError) as excinfo:
        await store.list_eligible_events()

    assert excinfo.value.operation == "list_eligible_events"


async def test_invalidated_connection_maps_to_store_unavailable() -> None:
    exc = DBAPIError("SELECT 1", {}, Exception("server closed"), connection_invalidated=True)
    store = PostgresFusionStore(lambda: _FailingSession(exc))  # type: ignore[arg-type]

    with pytest.raises(StoreUnavailableError):
        await store.list_open_events(10)


async def test_other_database_errors_map_to_store_error() -> None:
    exc = ProgrammingError("SELECT", {}, Exception("syntax error"))
    store = PostgresFusionStore(lambda: _FailingSession(exc))  # type: ignore[arg-type]

    with pytest.raises(StoreError) as excinfo:
        await store.list_unmatched_contracts(5)

    assert not isinstance(excinfo.value, StoreUnavailableError)


async def test_slug_collision_on_insert_is_typed() -> None:
    session = _CommitFailingSession(
        IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "events_slug_key"'))
    )
    store = PostgresFusionStore(lambda: session)  # type: ignore[arg-type]

    with pytest.raises(SlugConflictError):
        await store.insert_event(_draft())

    assert session.rolled_back is True
    assert session.added[0].slug == "fed-june"


async def test_other_integrity_errors_on_insert_are_store_errors() -> None:
    session = _CommitFailingSession(
        IntegrityError("INSERT", {}, Exception('duplicate key value violates unique constraint "events_pkey"'))
    )
    store = PostgresFusionStore(lambda: session)  # type: ignore[arg-type]

    with pytest.raises(StoreError) as excinfo:
        await store.insert_event(_draft())

    assert not isinstance(excinfo.value, SlugConflictError)


async def test_empty_batches_skip_the_database() -> None:
    store = PostgresFusionStore(lambda: _FailingSession(RuntimeError("should not open")))  # type: ignore[arg-type]

    assert await store.batch_deactivate_events([]) == 0
    assert await store.existing_event_ids([]) == set()
