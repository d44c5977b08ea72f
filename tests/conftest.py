from typing import AsyncGenerator

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncEngine

from rollcall.auth.providers import LocalAuthProvider, RemoteAuthProvider
from rollcall.auth.services import AuthSessionManager
from rollcall.connection.manager import ConnectionManager
from rollcall.core.config import Settings
from rollcall.db.session import create_local_engine, create_session_factory, init_local_schema
from rollcall.stores.facade import DataStore
from rollcall.stores.local import LocalStore
from rollcall.stores.remote import RemoteStore

from tests.fakes import ANON_KEY, REMOTE_URL, FakeRemote, make_settings


@pytest.fixture()
async def engine(tmp_path) -> AsyncGenerator[AsyncEngine, None]:
    """File-backed SQLite local area, fresh for every test."""
    engine = create_local_engine(f"sqlite+aiosqlite:///{tmp_path / 'local.db'}")
    await init_local_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture()
def local_store(engine: AsyncEngine) -> LocalStore:
    return LocalStore(create_session_factory(engine))


@pytest.fixture()
def fake_remote() -> FakeRemote:
    return FakeRemote()


@pytest.fixture()
def settings() -> Settings:
    return make_settings()


@pytest.fixture()
async def http_client(fake_remote: FakeRemote) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(
        transport=httpx.MockTransport(fake_remote.handler), base_url=REMOTE_URL
    ) as client:
        yield client


@pytest.fixture()
def connection(settings: Settings, http_client: httpx.AsyncClient) -> ConnectionManager:
    return ConnectionManager(settings, http_client)


@pytest.fixture()
def remote_store(http_client: httpx.AsyncClient) -> RemoteStore:
    return RemoteStore(http_client, ANON_KEY)


@pytest.fixture()
def data_store(connection: ConnectionManager, local_store: LocalStore, remote_store: RemoteStore) -> DataStore:
    return DataStore(connection, local_store, remote_store)


@pytest.fixture()
def local_data_store(http_client: httpx.AsyncClient, local_store: LocalStore) -> DataStore:
    """DataStore of an installation without a remote service."""
    local_settings = make_settings(remote_url=None, remote_anon_key=None)
    return DataStore(ConnectionManager(local_settings, http_client), local_store)


@pytest.fixture()
async def auth_manager(
    settings: Settings,
    connection: ConnectionManager,
    data_store: DataStore,
    local_store: LocalStore,
    http_client: httpx.AsyncClient,
    remote_store: RemoteStore,
) -> AsyncGenerator[AuthSessionManager, None]:
    manager = AuthSessionManager(
        settings,
        connection,
        data_store,
        LocalAuthProvider(local_store, settings),
        remote_provider=RemoteAuthProvider(http_client, ANON_KEY),
        remote_store=remote_store,
    )
    yield manager
    await manager.close()
