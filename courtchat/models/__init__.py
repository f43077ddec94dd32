from courtchat.models.conversation import Conversation
from courtchat.models.message import Message
from courtchat.models.user import User

__all__ = [
    "User",
    "Conversation",
    "Message",
]
