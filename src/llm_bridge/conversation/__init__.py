from .history import Conversation, ConversationHistoryManager, ConversationMeta

__all__ = [
    "Conversation",
    "ConversationHistoryManager",
    "ConversationMeta",
]
