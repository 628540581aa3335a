"""Domain models for the support chat client state."""

from __future__ import annotations

import dataclasses
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, List, Optional, Tuple

import ulid

STATUSES: Tuple[str, ...] = ("open", "pending", "closed")
PRIORITIES: Tuple[str, ...] = ("low", "medium", "high", "urgent")
DELETE_TYPES: Tuple[str, ...] = ("permanent", "admin_archive", "user_hide")

NO_SUBJECT = "No Subject"
NO_MESSAGES = "No messages yet"
UNKNOWN_USER_NAME = "Unknown User"
UNKNOWN_USER_EMAIL = "unknown@example.com"

_PENDING_PREFIX = "pending:"


def now_utc() -> datetime:
	return datetime.now(timezone.utc)


def new_pending_handle() -> str:
	"""Temporary identity for speculative entities; disjoint from server ids."""
	return f"{_PENDING_PREFIX}{ulid.new()}"


def is_pending_handle(value: object) -> bool:
	return isinstance(value, str) and value.startswith(_PENDING_PREFIX)


@dataclass(slots=True)
class UserProfile:
	id: str
	name: str
	email: str
	is_admin: bool = False

	@classmethod
	def unknown(cls, user_id: str) -> "UserProfile":
		return cls(id=str(user_id), name=UNKNOWN_USER_NAME, email=UNKNOWN_USER_EMAIL)

	@property
	def is_placeholder(self) -> bool:
		return self.name == UNKNOWN_USER_NAME and self.email == UNKNOWN_USER_EMAIL


@dataclass(slots=True, frozen=True)
class Actor:
	"""The signed-in party driving a chat session."""

	user_id: str
	is_admin: bool = False

	@property
	def role(self) -> str:
		return "admin" if self.is_admin else "customer"


@dataclass(slots=True)
class Message:
	id: Optional[int]
	conversation_id: Optional[int]
	sender_id: str
	message: str
	is_admin: bool
	read: bool
	created_at: datetime
	client_id: Optional[str] = None
	sender: Optional[UserProfile] = None

	@property
	def is_pending(self) -> bool:
		return self.id is None

	def same_entity(self, other: "Message") -> bool:
		if self.id is not None and other.id is not None:
			return self.id == other.id
		return self.client_id is not None and self.client_id == other.client_id


@dataclass(slots=True)
class Conversation:
	id: Optional[int]
	user_id: str
	subject: str
	status: str
	priority: str
	created_at: datetime
	updated_at: datetime
	messages: List[Message] = field(default_factory=list)
	unread_count: int = 0
	latest_message: Optional[str] = None
	latest_message_at: Optional[datetime] = None
	deleted_by_admin: bool = False
	deleted_by_user: bool = False
	deleted_at: Optional[datetime] = None
	user_profile: Optional[UserProfile] = None
	client_id: Optional[str] = None

	@property
	def is_pending(self) -> bool:
		return self.id is None

	@property
	def preview(self) -> str:
		return self.latest_message or NO_MESSAGES

	def matches(self, conversation_id: object) -> bool:
		if self.id is not None and self.id == conversation_id:
			return True
		return self.client_id is not None and self.client_id == conversation_id

	def copy(self) -> "Conversation":
		"""Shallow copy with its own message list."""
		return dataclasses.replace(self, messages=list(self.messages))

	def message_ids(self) -> List[Optional[int]]:
		return [message.id for message in self.messages]


def sort_messages(messages: Iterable[Message]) -> List[Message]:
	return sorted(messages, key=lambda m: m.created_at)


def dedupe_messages(messages: Iterable[Message]) -> List[Message]:
	"""Collapse messages sharing a server id to their first occurrence."""
	seen: set[int] = set()
	result: List[Message] = []
	for message in messages:
		if message.id is not None:
			if message.id in seen:
				continue
			seen.add(message.id)
		result.append(message)
	return result
