"""Confirmation window for permanent deletes.

A permanent delete is only executed after an explicit confirmation that lands
inside the window. Requests that expire leave the conversation untouched.
"""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, Dict, Optional

from storefront_chat.obs import metrics as obs_metrics
from storefront_chat.settings import settings

from .models import now_utc

logger = logging.getLogger(__name__)

Executor = Callable[[int], Awaitable[object]]


@dataclass(slots=True)
class PendingDelete:
	conversation_id: int
	kind: str = "permanent"
	requested_at: datetime = field(default_factory=now_utc)


class PendingDeleteRegistry:
	def __init__(self, executor: Executor, *, timeout: float | None = None) -> None:
		self._executor = executor
		self._timeout = settings.pending_delete_timeout_seconds if timeout is None else timeout
		self._entries: Dict[int, PendingDelete] = {}
		self._timers: Dict[int, asyncio.Task] = {}

	@property
	def timeout(self) -> float:
		return self._timeout

	def request(self, conversation_id: int, *, kind: str = "permanent") -> PendingDelete:
		"""Open (or restart) the confirmation window for a conversation."""
		self._cancel_timer(conversation_id)
		entry = PendingDelete(conversation_id=conversation_id, kind=kind)
		self._entries[conversation_id] = entry
		timer = asyncio.ensure_future(self._expire_after(conversation_id, entry))
		timer.set_name(f"pending-delete:{conversation_id}")
		self._timers[conversation_id] = timer
		obs_metrics.pending_delete("requested")
		logger.info("permanent delete requested", extra={"conversation_id": conversation_id})
		return entry

	async def confirm(self, conversation_id: int) -> bool:
		entry = self._entries.pop(conversation_id, None)
		if entry is None:
			return False
		self._cancel_timer(conversation_id)
		obs_metrics.pending_delete("confirmed")
		await self._executor(conversation_id)
		return True

	def cancel(self, conversation_id: int) -> bool:
		entry = self._entries.pop(conversation_id, None)
		if entry is None:
			return False
		self._cancel_timer(conversation_id)
		obs_metrics.pending_delete("cancelled")
		return True

	def get(self, conversation_id: int) -> Optional[PendingDelete]:
		return self._entries.get(conversation_id)

	def is_pending(self, conversation_id: int) -> bool:
		return conversation_id in self._entries

	async def shutdown(self) -> None:
		timers = list(self._timers.values())
		self._timers.clear()
		self._entries.clear()
		for timer in timers:
			timer.cancel()
		if timers:
			with suppress(asyncio.CancelledError):
				await asyncio.gather(*timers, return_exceptions=True)

	async def _expire_after(self, conversation_id: int, entry: PendingDelete) -> None:
		await asyncio.sleep(self._timeout)
		if self._entries.get(conversation_id) is entry:
			del self._entries[conversation_id]
			self._timers.pop(conversation_id, None)
			obs_metrics.pending_delete("expired")
			logger.info("permanent delete window expired", extra={"conversation_id": conversation_id})

	def _cancel_timer(self, conversation_id: int) -> None:
		timer = self._timers.pop(conversation_id, None)
		if timer is not None and not timer.done():
			timer.cancel()
