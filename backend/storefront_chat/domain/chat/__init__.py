"""Chat domain exports."""

from .cache import MessageCache
from .errors import (
	AuthenticationUnavailable,
	ChatError,
	NetworkOrServerFailure,
	StaleReference,
	ValidationFailure,
)
from .models import Actor, Conversation, Message, UserProfile
from .store import ActiveConversation, ConversationStore

__all__ = [
	"ActiveConversation",
	"Actor",
	"AuthenticationUnavailable",
	"ChatError",
	"Conversation",
	"ConversationStore",
	"Message",
	"MessageCache",
	"NetworkOrServerFailure",
	"StaleReference",
	"UserProfile",
	"ValidationFailure",
]
