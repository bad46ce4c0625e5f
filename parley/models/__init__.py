from parley.models.user import PasswordReset, User, UserVerification
from parley.models.conversation import Conversation, ConversationMember
from parley.models.message import Message, message_mentions

__all__ = [
    "User",
    "UserVerification",
    "PasswordReset",
    "Conversation",
    "ConversationMember",
    "Message",
    "message_mentions",
]
