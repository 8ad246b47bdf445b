from december.chat.orchestrator import (
    FALLBACK_RESPONSE,
    ChatOrchestrator,
    ContextFetchError,
)
from december.chat.sessions import (
    ChatSessionStore,
    get_chat_session,
    get_or_create_chat_session,
)
from december.chat.types import Attachment, ChatEvent, ChatExchange, ChatSession, Message

__all__ = [
    "FALLBACK_RESPONSE",
    "Attachment",
    "ChatEvent",
    "ChatExchange",
    "ChatOrchestrator",
    "ChatSession",
    "ChatSessionStore",
    "ContextFetchError",
    "Message",
    "get_chat_session",
    "get_or_create_chat_session",
]
