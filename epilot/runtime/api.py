from __future__ import annotations

import logging
from typing import Any

import httpx
from pydantic import ValidationError

from ..config import ClientConfig
from .conversation import TranscriptEntry
from .errors import ErrorCode, TransportError, wrap_httpx_exception
from .history import normalize_history
from .models import ChatListItem, HistoryEntry, HistoryPage, LoginResult

logger = logging.getLogger(__name__)


def build_http_client(
    config: ClientConfig,
    *,
    transport: httpx.AsyncBaseTransport | None = None,
) -> httpx.AsyncClient:
    timeout = httpx.Timeout(
        config.read_timeout_s,
        connect=config.connect_timeout_s,
    )
    return httpx.AsyncClient(
        base_url=config.base_url,
        timeout=timeout,
        headers={"accept": "application/json"},
        transport=transport,
    )


class ChatApiClient:
    """Thin client for the account, chat list and history endpoints."""

    def __init__(self, client: httpx.AsyncClient) -> None:
        self._client = client

    async def _request(self, method: str, path: str, *, operation: str, **kwargs: Any) -> Any:
        try:
            response = await self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPError as e:
            logger.warning("%s failed: %s", operation, e)
            raise wrap_httpx_exception(e, operation=operation) from e
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransportError(
                f"{operation} returned a non-JSON body",
                code=ErrorCode.UNKNOWN,
                operation=operation,
                status_code=response.status_code,
                retryable=False,
                cause=e,
            ) from e

    def _invalid(self, operation: str, exc: ValidationError) -> TransportError:
        return TransportError(
            f"{operation} returned an unexpected payload: {exc.error_count()} validation errors",
            code=ErrorCode.UNKNOWN,
            operation=operation,
            retryable=False,
            cause=exc,
        )

    async def login_with_email(self, email: str) -> LoginResult:
        data = await self._request("POST", "/auth/login", operation="login", json={"email": email})
        return LoginResult.model_validate(data or {})

    async def verify_otp(self, email: str, otp: str) -> LoginResult:
        data = await self._request(
            "POST",
            "/auth/verify-otp-login",
            operation="verify_otp",
            json={"email": email, "otp": otp},
        )
        return LoginResult.model_validate(data or {})

    async def fetch_chat_list(self, employee_id: str) -> list[ChatListItem]:
        data = await self._request("GET", f"/chats/lists/{employee_id}", operation="fetch_chat_list")
        try:
            return [ChatListItem.model_validate(item) for item in (data or [])]
        except ValidationError as e:
            raise self._invalid("fetch_chat_list", e) from e

    async def create_chat(self, employee_id: str) -> ChatListItem:
        data = await self._request("POST", f"/chats/lists/{employee_id}", operation="create_chat")
        try:
            return ChatListItem.model_validate(data or {})
        except ValidationError as e:
            raise self._invalid("create_chat", e) from e

    async def fetch_chat_history(self, employee_id: str, chat_id: str) -> list[HistoryEntry]:
        data = await self._request("GET", f"/chats/history/{employee_id}/{chat_id}", operation="fetch_chat_history")
        try:
            if isinstance(data, list):
                return [HistoryEntry.model_validate(item) for item in data]
            return HistoryPage.model_validate(data or {}).messages
        except ValidationError as e:
            raise self._invalid("fetch_chat_history", e) from e

    async def delete_chat(self, employee_id: str, chat_id: str) -> None:
        await self._request("DELETE", f"/chats/delete/{employee_id}/{chat_id}", operation="delete_chat")

    async def google_auth_url(self, employee_id: str) -> str | None:
        data = await self._request(
            "GET",
            "/oauth/google/connect",
            operation="google_auth_url",
            params={"user_id": employee_id},
        )
        url = data.get("authorization_url") if isinstance(data, dict) else None
        return url if isinstance(url, str) and url else None


class RemoteChatDirectory:
    """Chat directory for one employee backed by `ChatApiClient`."""

    def __init__(self, api: ChatApiClient, *, employee_id: str) -> None:
        self._api = api
        self._employee_id = employee_id

    async def create_conversation(self) -> str:
        created = await self._api.create_chat(self._employee_id)
        return created.chat_id

    async def load_transcript(self, conversation_id: str) -> list[TranscriptEntry]:
        entries = await self._api.fetch_chat_history(self._employee_id, conversation_id)
        return normalize_history(entries)
