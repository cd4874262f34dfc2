"""REST calls used by the chat client.

Thin async wrapper over the JustJio REST API. Every response is the
envelope ``{"status", "message", "data"}``; the wrapper returns ``data``
parsed into models and raises ApiError for anything that is not a 2xx
response (or never reached the server).
"""
import logging
from typing import Any, Optional

import httpx
from pydantic import ValidationError

from justjio.rooms.schemas import MessagesPage

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 10.0


class ApiError(Exception):
    """A REST call failed.

    Attributes:
        status_code: HTTP status, or None if the request never got a response.
        message: Server-provided message, or a description of the failure.
    """

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code

    def __repr__(self) -> str:
        return f"ApiError(status_code={self.status_code}, message={self.message!r})"


class JustJioApi:
    """Async client for the room message endpoints."""

    def __init__(
        self,
        base_url: str,
        token_provider,
        *,
        timeout: float = DEFAULT_TIMEOUT,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.token_provider = token_provider
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            auth=self._bearer_auth,
        )

    def _bearer_auth(self, request: httpx.Request) -> httpx.Request:
        token = self.token_provider()
        if token:
            request.headers["Authorization"] = f"Bearer {token}"
        return request

    async def _request(self, method: str, path: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            logger.warning(f"[API] {method} {path} failed: {e!r}")
            raise ApiError(f"Request failed: {e}") from e

        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if response.is_error:
            message = body.get("message") or response.reason_phrase
            logger.info(f"[API] {method} {path} -> {response.status_code}: {message}")
            raise ApiError(message, status_code=response.status_code)

        return body.get("data")

    async def fetch_room_messages(self, room_id: str, page: int) -> MessagesPage:
        """Fetch one page of room history, newest first."""
        data = await self._request(
            "GET",
            f"rooms/{room_id}/messages",
            params={"page": page, "asc": "false"},
        )
        try:
            return MessagesPage.model_validate(data or {})
        except ValidationError as e:
            raise ApiError(f"Unexpected messages payload: {e.error_count()} error(s)") from e

    async def send_message(self, room_id: str, content: str) -> None:
        await self._request("POST", f"rooms/{room_id}/messages", json={"content": content})

    async def aclose(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> "JustJioApi":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
