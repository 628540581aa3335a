"""Per-session cache of the last known message list for each conversation."""

from __future__ import annotations

from typing import Dict, Iterable, List, Optional

from .models import Message


class MessageCache:
	"""Keyed by conversation id; entries never expire, only a fresher `set` supersedes them."""

	def __init__(self) -> None:
		self._entries: Dict[int, List[Message]] = {}

	def get(self, conversation_id: int) -> Optional[List[Message]]:
		messages = self._entries.get(conversation_id)
		if messages is None:
			return None
		return list(messages)

	def set(self, conversation_id: int, messages: Iterable[Message]) -> None:
		self._entries[conversation_id] = list(messages)

	def invalidate(self, conversation_id: int) -> None:
		self._entries.pop(conversation_id, None)

	def clear(self) -> None:
		self._entries.clear()

	def __contains__(self, conversation_id: object) -> bool:
		return conversation_id in self._entries

	def __len__(self) -> int:
		return len(self._entries)
