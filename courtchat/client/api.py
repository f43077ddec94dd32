"""REST client for the chat endpoints."""

import logging
from typing import Any, TypeVar
from uuid import UUID

import httpx
from pydantic import BaseModel
from pydantic import ValidationError as PydanticValidationError

from courtchat.core.exceptions import (
    AppException,
    AuthenticationError,
    ConflictError,
    ErrorCode,
    NotFoundError,
    TransportError,
    ValidationError,
)
from courtchat.schemas.conversation import ConversationListEntry, ConversationResponse
from courtchat.schemas.message import MessagePage, MessageResponse, MessageType

logger = logging.getLogger(__name__)

ModelT = TypeVar("ModelT", bound=BaseModel)


def _raise_for_response(response: httpx.Response) -> None:
    """Turn an error response into the matching AppException."""
    if response.is_success:
        return

    try:
        body = response.json()
    except ValueError:
        body = {}
    detail = body.get("detail") if isinstance(body, dict) else None
    if not isinstance(detail, str):
        detail = response.reason_phrase or "Request failed"
    field = body.get("field") if isinstance(body, dict) else None

    status_code = response.status_code
    if status_code == 401:
        try:
            code = ErrorCode(body.get("code"))
        except (AttributeError, ValueError):
            code = ErrorCode.AUTH_NOT_AUTHENTICATED
        raise AuthenticationError(detail, code=code)
    if status_code == 404:
        raise NotFoundError(detail)
    if status_code == 409:
        raise ConflictError(detail, field=field)
    if status_code in (400, 422):
        raise ValidationError(detail, field=field)
    raise TransportError(
        f"{response.request.method} {response.request.url.path} failed with {status_code}",
        metadata={"status_code": status_code},
    )


def _parse(model: type[ModelT], data: Any) -> ModelT:
    """Validate a success body, treating a body of the wrong shape as a transport failure."""
    try:
        return model.model_validate(data)
    except PydanticValidationError as exc:
        raise TransportError(f"Unexpected {model.__name__} body from the server") from exc


def _count(data: Any, key: str) -> int:
    value = data.get(key) if isinstance(data, dict) else None
    if not isinstance(value, int) or isinstance(value, bool):
        raise TransportError(f"Unexpected {key} in the server response")
    return value


class ChatApiClient:
    """
    Thin async wrapper over the ``/chat`` REST surface.

    Every call carries the bearer token and the request timeout. Network
    failures and 5xx answers raise TransportError; 4xx answers raise the
    AppException the server reported.
    """

    def __init__(
        self,
        base_url: str,
        token: str,
        *,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self._client = httpx.AsyncClient(
            base_url=base_url.rstrip("/"),
            headers={"Authorization": f"Bearer {token}"},
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _request(self, method: str, url: str, **kwargs) -> Any:
        try:
            response = await self._client.request(method, url, **kwargs)
        except httpx.TimeoutException as exc:
            logger.warning("%s %s timed out", method, url)
            raise TransportError(
                f"{method} {url} timed out",
                code=ErrorCode.TRANSPORT_TIMEOUT,
            ) from exc
        except httpx.HTTPError as exc:
            logger.warning("%s %s failed: %s", method, url, exc)
            raise TransportError(f"{method} {url} failed: {exc}") from exc

        try:
            _raise_for_response(response)
        except AppException:
            logger.info("%s %s answered %d", method, url, response.status_code)
            raise
        try:
            return response.json()
        except ValueError as exc:
            logger.warning("%s %s answered %d with a non-JSON body", method, url, response.status_code)
            raise TransportError(f"{method} {url} returned an unreadable body") from exc

    async def get_conversations(self) -> list[ConversationListEntry]:
        data = await self._request("GET", "/chat/conversations")
        try:
            items = data["conversations"]
        except (KeyError, TypeError) as exc:
            raise TransportError("Unexpected conversation list from the server") from exc
        if not isinstance(items, list):
            raise TransportError("Unexpected conversation list from the server")
        return [_parse(ConversationListEntry, item) for item in items]

    async def start_conversation(self, user_id: UUID) -> ConversationResponse:
        data = await self._request("POST", "/chat/conversations", json={"user_id": str(user_id)})
        return _parse(ConversationResponse, data)

    async def get_messages(
        self,
        conversation_id: UUID,
        limit: int = 50,
        before: UUID | None = None,
    ) -> MessagePage:
        params: dict[str, Any] = {"limit": limit}
        if before is not None:
            params["before"] = str(before)
        data = await self._request(
            "GET", f"/chat/conversations/{conversation_id}/messages", params=params
        )
        return _parse(MessagePage, data)

    async def send_message(
        self,
        conversation_id: UUID,
        content: str,
        message_type: MessageType | str = MessageType.TEXT,
        client_message_id: str | None = None,
    ) -> MessageResponse:
        body: dict[str, Any] = {
            "content": content,
            "message_type": MessageType(message_type).value,
        }
        if client_message_id:
            body["client_message_id"] = client_message_id
        data = await self._request(
            "POST", f"/chat/conversations/{conversation_id}/messages", json=body
        )
        return _parse(MessageResponse, data)

    async def mark_read(self, conversation_id: UUID) -> int:
        data = await self._request("POST", f"/chat/conversations/{conversation_id}/read")
        return _count(data, "marked_read")

    async def get_unread_count(self) -> int:
        data = await self._request("GET", "/chat/unread-count")
        return _count(data, "count")
