"""Client application wiring.

Builds the client-side objects once, at application start, from AppConfig:

    - TokenStore under ``client.state_dir``
    - one ConnectionManager for ``realtime.ws_url``, reading its token from
      the store at every connect
    - one JustJioApi for ``realtime.api_url`` using the same token

Views get their ChatHistory from ``open_chat`` so every room view shares the
single streaming connection.
"""
import logging
from typing import Any, Callable, Optional

import httpx

from justjio.auth.token_store import NO_USER, TokenStore
from justjio.chat.api import JustJioApi
from justjio.chat.history import ChatHistory
from justjio.config import AppConfig, get_config
from justjio.realtime.connection import ConnectionManager, Connector

logger = logging.getLogger(__name__)


class JustJioClient:
    """Session-wide client objects and the login/logout transitions."""

    def __init__(self, token_store: TokenStore, connection: ConnectionManager, api: JustJioApi):
        self.token_store = token_store
        self.connection = connection
        self.api = api

    async def start(self) -> None:
        """Start supervising the connection and resume any stored session."""
        self.connection.start()
        identity = self.token_store.current_identity()
        if identity.is_authenticated:
            logger.info(f"[Client] Resuming session of user {identity.user_id}")
        await self.connection.set_user(identity)

    async def login(self, access_token: str) -> None:
        self.token_store.set_access_token(access_token)
        await self.connection.set_user(self.token_store.current_identity())

    async def logout(self) -> None:
        self.token_store.clear_access_token()
        await self.connection.set_user(NO_USER)

    def open_chat(self, room_id: str, on_notice: Optional[Callable[[str], Any]] = None) -> ChatHistory:
        """Create a room's history and subscribe it to live messages."""
        history = ChatHistory(room_id, self.api, on_notice=on_notice)
        history.attach(self.connection)
        return history

    async def aclose(self) -> None:
        await self.connection.close()
        await self.api.aclose()

    async def __aenter__(self) -> "JustJioClient":
        await self.start()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()


def build_client(
    config: Optional[AppConfig] = None,
    *,
    connector: Optional[Connector] = None,
    api_transport: Optional[httpx.AsyncBaseTransport] = None,
) -> JustJioClient:
    """Assemble the client from configuration.

    Args:
        config: Defaults to the process-wide ``get_config()``.
        connector: Replaces the websockets connector (tests).
        api_transport: Replaces the httpx transport (tests).
    """
    if config is None:
        config = get_config()

    token_store = TokenStore(config.client.state_dir)
    connection = ConnectionManager.from_settings(
        config.realtime,
        token_store.get_access_token,
        connector=connector,
    )
    api = JustJioApi(
        config.realtime.api_url,
        token_store.get_access_token,
        timeout=config.realtime.connect_timeout_seconds,
        transport=api_transport,
    )
    logger.info(
        f"[Client] Built client (ws={config.realtime.ws_url}, api={config.realtime.api_url}, "
        f"state={token_store.path})"
    )
    return JustJioClient(token_store, connection, api)
