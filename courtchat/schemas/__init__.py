from courtchat.schemas.conversation import (
    ConversationCreate,
    ConversationListEntry,
    ConversationListResponse,
    ConversationResponse,
)
from courtchat.schemas.events import (
    ConversationUpdatedPayload,
    MessageSendPayload,
    PresencePayload,
    ReadReceiptPayload,
    TypingPayload,
)
from courtchat.schemas.message import (
    MarkReadResponse,
    MessageCreate,
    MessagePage,
    MessageResponse,
    UnreadCountResponse,
)
from courtchat.schemas.user import ChatUser, TokenPayload

__all__ = [
    "ChatUser",
    "TokenPayload",
    "MessageCreate",
    "MessageResponse",
    "MessagePage",
    "MarkReadResponse",
    "UnreadCountResponse",
    "ConversationCreate",
    "ConversationResponse",
    "ConversationListEntry",
    "ConversationListResponse",
    "MessageSendPayload",
    "TypingPayload",
    "ReadReceiptPayload",
    "ConversationUpdatedPayload",
    "PresencePayload",
]
