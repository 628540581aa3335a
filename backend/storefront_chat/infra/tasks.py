"""Session-scoped bus for fire-and-forget background work."""

from __future__ import annotations

import asyncio
import logging
from contextlib import suppress
from typing import Awaitable, Optional, Set

from storefront_chat.obs import metrics as obs_metrics

logger = logging.getLogger(__name__)


class TaskBus:
	"""Runs side effects (mark-read, profile lookups) without blocking the caller.

	Failures are logged and counted, never raised back into the event that
	dispatched them.
	"""

	def __init__(self, name: str = "chat") -> None:
		self._name = name
		self._tasks: Set[asyncio.Task] = set()
		self._closed = False

	def dispatch(self, coro: Awaitable[object], *, name: str) -> Optional[asyncio.Task]:
		if self._closed:
			logger.debug("task bus %s closed; dropping %s", self._name, name)
			if asyncio.iscoroutine(coro):
				coro.close()
			return None
		task = asyncio.ensure_future(coro)
		task.set_name(f"{self._name}:{name}")
		self._tasks.add(task)
		task.add_done_callback(lambda t, label=name: self._finished(t, label))
		return task

	@property
	def pending(self) -> int:
		return len(self._tasks)

	async def drain(self) -> None:
		"""Wait for every dispatched task, including ones dispatched meanwhile."""
		while self._tasks:
			await asyncio.gather(*list(self._tasks), return_exceptions=True)

	async def shutdown(self) -> None:
		self._closed = True
		tasks = list(self._tasks)
		for task in tasks:
			task.cancel()
		if tasks:
			with suppress(asyncio.CancelledError):
				await asyncio.gather(*tasks, return_exceptions=True)

	def _finished(self, task: asyncio.Task, label: str) -> None:
		self._tasks.discard(task)
		if task.cancelled():
			return
		exc = task.exception()
		if exc is not None:
			obs_metrics.inc_background_failure(label)
			logger.warning("background task %s failed: %s", label, exc, exc_info=exc)
