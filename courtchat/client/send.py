"""
Dual-transport send: realtime with acknowledgement first, REST as fallback.

Both attempts of one send carry the same client message id, so a socket
send that was stored but whose ack got lost is answered with the stored
message by the REST retry instead of writing it twice.
"""

import logging
import uuid
from uuid import UUID

from courtchat.client.api import ChatApiClient
from courtchat.client.connection import RealtimeConnection
from courtchat.core.exceptions import AckError, ErrorCode, TransportError
from courtchat.realtime.events import ClientEvent
from courtchat.schemas.events import MessageSendPayload
from courtchat.schemas.message import MessageResponse, MessageType

logger = logging.getLogger(__name__)


def new_client_message_id() -> str:
    return uuid.uuid4().hex


class ComposeBox:
    """The text being typed for one conversation."""

    def __init__(self, text: str = ""):
        self.text = text

    def take(self) -> str:
        """Clear the box and return what was in it."""
        text, self.text = self.text, ""
        return text

    def restore(self, text: str) -> None:
        # Keep anything typed while the send was in flight
        self.text = text + self.text if self.text else text


class DualTransportSender:
    def __init__(self, connection: RealtimeConnection, api: ChatApiClient):
        self._connection = connection
        self._api = api

    async def send(
        self,
        conversation_id: UUID,
        content: str,
        message_type: MessageType = MessageType.TEXT,
        client_message_id: str | None = None,
    ) -> MessageResponse:
        client_message_id = client_message_id or new_client_message_id()

        if self._connection.connected:
            payload = MessageSendPayload(
                conversation_id=conversation_id,
                content=content,
                message_type=MessageType(message_type).value,
                client_message_id=client_message_id,
            )
            try:
                ack = await self._connection.emit_with_ack(
                    ClientEvent.MESSAGE_SEND, payload.to_wire()
                )
                return MessageResponse.model_validate(ack["message"])
            except AckError as exc:
                logger.info("Socket send rejected (%s), retrying over REST", exc.message)
            except TransportError as exc:
                logger.info("Socket send failed (%s), retrying over REST", exc.message)
            except (KeyError, TypeError, ValueError):
                logger.warning("Malformed send ack, retrying over REST")
        else:
            logger.debug("Realtime connection is down, sending over REST")

        try:
            return await self._api.send_message(
                conversation_id,
                content,
                message_type=message_type,
                client_message_id=client_message_id,
            )
        except TransportError as exc:
            logger.warning("REST send failed: %s", exc.message)
            raise TransportError(
                "Message could not be sent",
                code=ErrorCode.TRANSPORT_FAILED,
                metadata={"client_message_id": client_message_id},
            ) from exc
