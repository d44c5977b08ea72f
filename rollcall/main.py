import logging
from dataclasses import dataclass
from typing import Optional

import httpx
from sqlalchemy.ext.asyncio import AsyncEngine

from rollcall.auth.providers import LocalAuthProvider, RemoteAuthProvider
from rollcall.auth.services import AuthSessionManager
from rollcall.connection.manager import ConnectionManager
from rollcall.core.config import Settings
from rollcall.core.enums import AuthState
from rollcall.core.logging_config import configure_logging
from rollcall.db.session import create_local_engine, create_session_factory, init_local_schema
from rollcall.stores.facade import DataStore
from rollcall.stores.local import LocalStore
from rollcall.stores.remote import RemoteStore

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Everything a UI layer needs, wired once per process."""

    settings: Settings
    engine: AsyncEngine
    client: httpx.AsyncClient
    connection: ConnectionManager
    local: LocalStore
    remote: Optional[RemoteStore]
    store: DataStore
    auth: AuthSessionManager

    async def startup(self) -> AuthState:
        await init_local_schema(self.engine)
        return await self.auth.initialize()

    async def aclose(self) -> None:
        await self.auth.close()
        await self.client.aclose()
        await self.engine.dispose()


def create_services(
    settings: Optional[Settings] = None,
    client: Optional[httpx.AsyncClient] = None,
) -> Services:
    settings = settings or Settings()
    configure_logging(settings.log_level)

    engine = create_local_engine(settings.local_database_url)
    if client is None:
        client = httpx.AsyncClient(
            base_url=settings.remote_url or "http://localhost",
            timeout=settings.reachability_timeout_seconds,
        )

    connection = ConnectionManager(settings, client)
    local = LocalStore(create_session_factory(engine))

    remote: Optional[RemoteStore] = None
    remote_provider: Optional[RemoteAuthProvider] = None
    if settings.remote_configured:
        remote = RemoteStore(client, settings.remote_anon_key)
        remote_provider = RemoteAuthProvider(client, settings.remote_anon_key)
    else:
        logger.warning("Remote service not configured; running on the local store only")

    store = DataStore(connection, local, remote)
    auth = AuthSessionManager(
        settings,
        connection,
        store,
        LocalAuthProvider(local, settings),
        remote_provider=remote_provider,
        remote_store=remote,
    )
    return Services(
        settings=settings,
        engine=engine,
        client=client,
        connection=connection,
        local=local,
        remote=remote,
        store=store,
        auth=auth,
    )
