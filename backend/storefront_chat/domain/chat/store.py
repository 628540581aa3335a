"""In-memory conversation store owned by one actor's chat session."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

from storefront_chat.obs import metrics as obs_metrics

from .cache import MessageCache
from .errors import StaleReference
from .models import Conversation, Message, dedupe_messages, sort_messages

logger = logging.getLogger(__name__)


class ActiveConversation:
	"""Mutable cell holding the conversation the actor currently has open.

	The session is the only writer; the live update listener reads it at event
	time, so rapid conversation switches are always seen.
	"""

	def __init__(self) -> None:
		self._conversation_id: Optional[int] = None

	def get(self) -> Optional[int]:
		return self._conversation_id

	def set(self, conversation_id: Optional[int]) -> None:
		self._conversation_id = conversation_id

	def clear(self) -> None:
		self._conversation_id = None

	def is_active(self, conversation_id: Optional[int]) -> bool:
		return conversation_id is not None and conversation_id == self._conversation_id


class ConversationStore:
	def __init__(self, cache: MessageCache, *, name: str = "active") -> None:
		self._cache = cache
		self._name = name
		self._conversations: List[Conversation] = []

	@property
	def name(self) -> str:
		return self._name

	@property
	def conversations(self) -> List[Conversation]:
		return list(self._conversations)

	def __len__(self) -> int:
		return len(self._conversations)

	def __iter__(self) -> Iterator[Conversation]:
		return iter(list(self._conversations))

	def __contains__(self, conversation_id: object) -> bool:
		return self.index_of(conversation_id) is not None

	def ids(self) -> List[Optional[int]]:
		return [conversation.id for conversation in self._conversations]

	def index_of(self, conversation_id: object) -> Optional[int]:
		if conversation_id is None:
			return None
		for idx, conversation in enumerate(self._conversations):
			if conversation.matches(conversation_id):
				return idx
		return None

	def get(self, conversation_id: object) -> Optional[Conversation]:
		idx = self.index_of(conversation_id)
		return self._conversations[idx] if idx is not None else None

	def require(self, conversation_id: object) -> Conversation:
		conversation = self.get(conversation_id)
		if conversation is None:
			raise StaleReference(conversation_id)
		return conversation

	# --- list level ---------------------------------------------------------

	def replace_all(self, conversations: Iterable[Conversation], *, preserve_messages: bool = False) -> None:
		"""Install a freshly fetched list, keeping server order."""
		held = {c.id: c for c in self._conversations if c.id is not None}
		result: List[Conversation] = []
		for incoming in conversations:
			if incoming.id is None:
				logger.warning("dropping conversation without id from %s refresh", self._name)
				continue
			if preserve_messages:
				previous = held.get(incoming.id)
				if previous is not None and previous.messages:
					incoming.messages = list(previous.messages)
				elif not incoming.messages:
					cached = self._cache.get(incoming.id)
					if cached:
						incoming.messages = cached
			result.append(incoming)
		self._conversations = result
		self._dedupe()

	def insert_conversation(
		self,
		conversation: Conversation,
		*,
		at_front: bool = True,
		index: Optional[int] = None,
	) -> None:
		if index is not None:
			self._conversations.insert(max(0, min(index, len(self._conversations))), conversation)
		elif at_front:
			self._conversations.insert(0, conversation)
		else:
			self._conversations.append(conversation)
		self._dedupe()

	def remove_conversation(self, conversation_id: object) -> Optional[Tuple[Conversation, int]]:
		idx = self.index_of(conversation_id)
		if idx is None:
			self._stale(conversation_id, "remove_conversation")
			return None
		conversation = self._conversations.pop(idx)
		return conversation, idx

	def replace_conversation(self, handle: str, confirmed: Conversation) -> Conversation:
		"""Swap a speculative conversation for the server-confirmed one.

		When the confirmed id is already held (a push event won the race), the
		speculative entry is dropped and the confirmed messages merge into the
		existing conversation.
		"""
		idx = next((i for i, c in enumerate(self._conversations) if c.client_id == handle), None)
		existing = self.get(confirmed.id)
		if existing is not None:
			if idx is not None:
				self._conversations.pop(idx)
			for message in confirmed.messages:
				self._append_message(existing, message)
			obs_metrics.inc_duplicate_absorbed("conversation")
			return existing
		if idx is None:
			self._conversations.insert(0, confirmed)
		else:
			self._conversations[idx] = confirmed
		self._dedupe()
		return confirmed

	# --- conversation level -------------------------------------------------

	def merge_metadata(self, conversation_id: object, fields: Dict[str, Any]) -> Optional[Conversation]:
		"""Apply metadata fields; the held message history is never replaced."""
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "merge_metadata")
			return None
		for key, value in fields.items():
			if key in ("id", "messages", "client_id"):
				continue
			if hasattr(conversation, key):
				setattr(conversation, key, value)
		return conversation

	def update_fields(self, conversation_id: object, **fields: Any) -> Optional[Dict[str, Any]]:
		"""Set fields and return their previous values."""
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "update_fields")
			return None
		prior: Dict[str, Any] = {}
		for key, value in fields.items():
			prior[key] = getattr(conversation, key)
			setattr(conversation, key, value)
		return prior

	def set_unread(self, conversation_id: object, count: int) -> bool:
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "set_unread")
			return False
		conversation.unread_count = max(0, int(count))
		return True

	def increment_unread(self, conversation_id: object) -> bool:
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "increment_unread")
			return False
		conversation.unread_count += 1
		return True

	# --- message level ------------------------------------------------------

	def upsert_message(self, conversation_id: object, message: Message) -> bool:
		"""Append unless a message with the same identity is already held."""
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "upsert_message")
			return False
		return self._append_message(conversation, message)

	def replace_message(self, conversation_id: object, handle: str, confirmed: Message) -> bool:
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "replace_message")
			return False
		remaining = [m for m in conversation.messages if m.client_id != handle]
		removed = len(remaining) != len(conversation.messages)
		if any(m.id is not None and m.id == confirmed.id for m in remaining):
			obs_metrics.inc_duplicate_absorbed("message")
		else:
			remaining.append(confirmed)
		conversation.messages = sort_messages(remaining)
		self._refresh_latest(conversation)
		return removed

	def remove_message(self, conversation_id: object, handle: str) -> bool:
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "remove_message")
			return False
		remaining = [m for m in conversation.messages if m.client_id != handle]
		if len(remaining) == len(conversation.messages):
			return False
		conversation.messages = remaining
		return True

	def refresh_latest(self, conversation_id: object, *, since: Optional[datetime] = None) -> None:
		"""Recompute the preview fields when a held message is newer than `since`."""
		conversation = self.get(conversation_id)
		if conversation is None or not conversation.messages:
			return
		if since is not None and conversation.messages[-1].created_at <= since:
			return
		self._refresh_latest(conversation)

	def set_messages(self, conversation_id: object, messages: Iterable[Message]) -> bool:
		conversation = self.get(conversation_id)
		if conversation is None:
			self._stale(conversation_id, "set_messages")
			return False
		conversation.messages = sort_messages(dedupe_messages(messages))
		self._refresh_latest(conversation)
		return True

	# --- views --------------------------------------------------------------

	def stats(self) -> Dict[str, int]:
		return {
			"total": len(self._conversations),
			"open": sum(1 for c in self._conversations if c.status == "open"),
			"pending": sum(1 for c in self._conversations if c.status == "pending"),
			"closed": sum(1 for c in self._conversations if c.status == "closed"),
			"unread": self.total_unread(),
		}

	def total_unread(self) -> int:
		return sum(c.unread_count for c in self._conversations)

	def unread_badge(self) -> str:
		total = self.total_unread()
		if total <= 0:
			return ""
		return "9+" if total > 9 else str(total)

	def filter(
		self,
		*,
		search: Optional[str] = None,
		status: Optional[str] = None,
		priority: Optional[str] = None,
	) -> List[Conversation]:
		term = (search or "").strip().lower()
		result: List[Conversation] = []
		for conversation in self._conversations:
			if status and status != "all" and conversation.status != status:
				continue
			if priority and priority != "all" and conversation.priority != priority:
				continue
			if term:
				profile = conversation.user_profile
				haystack = [conversation.subject.lower()]
				if profile is not None:
					haystack.extend([profile.name.lower(), profile.email.lower()])
				if not any(term in value for value in haystack):
					continue
			result.append(conversation)
		return result

	# --- internals ----------------------------------------------------------

	def _append_message(self, conversation: Conversation, message: Message) -> bool:
		for existing in conversation.messages:
			if existing.same_entity(message):
				obs_metrics.inc_duplicate_absorbed("message")
				return False
		conversation.messages = sort_messages([*conversation.messages, message])
		if conversation.latest_message_at is None or message.created_at >= conversation.latest_message_at:
			conversation.latest_message = message.message
			conversation.latest_message_at = message.created_at
		if message.created_at > conversation.updated_at:
			conversation.updated_at = message.created_at
		return True

	def _refresh_latest(self, conversation: Conversation) -> None:
		if not conversation.messages:
			return
		last = conversation.messages[-1]
		conversation.latest_message = last.message
		conversation.latest_message_at = last.created_at
		if last.created_at > conversation.updated_at:
			conversation.updated_at = last.created_at

	def _dedupe(self) -> None:
		seen: set[int] = set()
		result: List[Conversation] = []
		for conversation in self._conversations:
			if conversation.id is not None:
				if conversation.id in seen:
					obs_metrics.inc_duplicate_absorbed("conversation")
					continue
				seen.add(conversation.id)
			result.append(conversation)
		if len(result) != len(self._conversations):
			logger.debug("collapsed %s duplicate conversations in %s list", len(self._conversations) - len(result), self._name)
		self._conversations = result

	def _stale(self, conversation_id: object, operation: str) -> None:
		obs_metrics.inc_stale_reference()
		logger.warning(
			"%s targeted conversation %s not held in %s list",
			operation,
			conversation_id,
			self._name,
		)
