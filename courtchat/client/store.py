"""Ordered, id-indexed store of the messages of one conversation."""

import bisect
from datetime import datetime, timezone
from uuid import UUID

from courtchat.schemas.message import MessageResponse


def _sort_key(message: MessageResponse) -> tuple[datetime, UUID]:
    created_at = message.created_at
    # SQLite hands back naive timestamps; they are UTC
    if created_at.tzinfo is None:
        created_at = created_at.replace(tzinfo=timezone.utc)
    return created_at, message.id


class MessageStore:
    """
    Messages kept in (created_at, id) order with at most one entry per id.

    The same message may arrive through the send response, the room
    broadcast and a history page; inserting it again only refreshes its
    read state.
    """

    def __init__(self):
        self._by_id: dict[UUID, MessageResponse] = {}
        self._keys: list[tuple[datetime, UUID]] = []

    def __len__(self) -> int:
        return len(self._keys)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def get(self, message_id: UUID) -> MessageResponse | None:
        return self._by_id.get(message_id)

    def insert(self, message: MessageResponse) -> bool:
        """Add a message. Returns False when it was already present."""
        existing = self._by_id.get(message.id)
        if existing is not None:
            if message.is_read and not existing.is_read:
                self._by_id[message.id] = existing.model_copy(
                    update={"is_read": True, "read_at": message.read_at}
                )
            return False

        self._by_id[message.id] = message
        bisect.insort(self._keys, _sort_key(message))
        return True

    def insert_many(self, messages: list[MessageResponse]) -> int:
        return sum(1 for message in messages if self.insert(message))

    def mark_read_by(self, reader_id: UUID, read_at: datetime | None = None) -> int:
        """Flip every message the reader did not send to read, like the server does."""
        read_at = read_at or datetime.now(timezone.utc)
        changed = 0
        for message_id, message in self._by_id.items():
            if message.sender_id != reader_id and not message.is_read:
                self._by_id[message_id] = message.model_copy(
                    update={"is_read": True, "read_at": read_at}
                )
                changed += 1
        return changed

    def unread_count(self, user_id: UUID) -> int:
        return sum(
            1
            for message in self._by_id.values()
            if message.sender_id != user_id and not message.is_read
        )

    @property
    def messages(self) -> list[MessageResponse]:
        return [self._by_id[message_id] for _, message_id in self._keys]

    @property
    def oldest_id(self) -> UUID | None:
        return self._keys[0][1] if self._keys else None

    @property
    def newest(self) -> MessageResponse | None:
        return self._by_id[self._keys[-1][1]] if self._keys else None
