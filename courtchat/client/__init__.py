from courtchat.client.api import ChatApiClient
from courtchat.client.config import ClientSettings
from courtchat.client.connection import ConnectionState, RealtimeConnection
from courtchat.client.send import ComposeBox, DualTransportSender
from courtchat.client.session import ChatSession
from courtchat.client.store import MessageStore
from courtchat.client.sync import ConversationListView, ConversationView
from courtchat.client.transport import Transport, WebSocketTransport
from courtchat.client.typing_signals import TypingIndicator, TypingNotifier

__all__ = [
    "ChatApiClient",
    "ChatSession",
    "ClientSettings",
    "ComposeBox",
    "ConnectionState",
    "ConversationListView",
    "ConversationView",
    "DualTransportSender",
    "MessageStore",
    "RealtimeConnection",
    "Transport",
    "TypingIndicator",
    "TypingNotifier",
    "WebSocketTransport",
]
