"""Per-actor chat session wiring the store, cache, mutations and listener."""

from __future__ import annotations

import logging
from typing import Any, List, Optional

from storefront_chat import obs
from storefront_chat.infra import auth as infra_auth
from storefront_chat.infra.tasks import TaskBus
from storefront_chat.obs import logging as obs_logging

from .cache import MessageCache
from .errors import ChatError
from .live_updates import LiveUpdateListener
from .models import Actor, Conversation
from .mutations import ChatMutations
from .notifications import NotificationCenter
from .profiles import ProfileResolver
from .store import ActiveConversation, ConversationStore

logger = logging.getLogger(__name__)


class ChatSession:
	"""Owns every piece of chat state for one signed-in actor.

	Everything is created here and torn down in `close()`; nothing is shared
	across sessions.
	"""

	def __init__(
		self,
		transport: Any,
		channel: Any,
		session: infra_auth.SessionProvider,
		*,
		delete_timeout: float | None = None,
	) -> None:
		self._transport = transport
		self._channel = channel
		self._session = session
		self._delete_timeout = delete_timeout
		self.actor: Optional[Actor] = None
		self.cache = MessageCache()
		self.store = ConversationStore(self.cache, name="active")
		self.archived = ConversationStore(self.cache, name="archived")
		self.active = ActiveConversation()
		self.notifications = NotificationCenter()
		self.bus = TaskBus("chat-session")
		self.profiles = ProfileResolver(transport)
		self.mutations: Optional[ChatMutations] = None
		self.listener: Optional[LiveUpdateListener] = None
		self.load_error: Optional[str] = None

	async def __aenter__(self) -> "ChatSession":
		await self.start()
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.close()

	async def start(self) -> None:
		obs.init()
		self.actor = await infra_auth.require_actor(self._session)
		obs_logging.bind_context(actor_role=self.actor.role, user_id=self.actor.user_id)
		self.mutations = ChatMutations(
			self._transport,
			self.actor,
			store=self.store,
			archived=self.archived,
			cache=self.cache,
			active=self.active,
			notifications=self.notifications,
			delete_timeout=self._delete_timeout,
		)
		self.listener = LiveUpdateListener(
			self._channel,
			self.actor,
			store=self.store,
			archived=self.archived,
			cache=self.cache,
			active=self.active,
			bus=self.bus,
			transport=self._transport,
			profiles=self.profiles,
		)
		await self.refresh()
		if self.actor.is_admin:
			await self.load_archived()
		await self.listener.start()
		logger.info("chat session started", extra={"conversations": len(self.store)})

	async def close(self) -> None:
		if self.listener is not None:
			await self.listener.stop()
		if self.mutations is not None:
			await self.mutations.pending_deletes.shutdown()
		await self.bus.shutdown()
		self.active.clear()
		self.cache.clear()
		self.profiles.clear()
		obs_logging.clear_context()
		logger.info("chat session closed")

	# --- reads --------------------------------------------------------------

	async def refresh(self, *, status: Optional[str] = None, priority: Optional[str] = None) -> List[Conversation]:
		"""Reload the active list; held message histories survive the reload."""
		try:
			conversations = await self._transport.list_conversations(status=status, priority=priority)
		except ChatError as exc:
			self._load_failed(exc, "Failed to load conversations")
			raise
		self.store.replace_all(conversations, preserve_messages=True)
		self._keep_active_read()
		for conversation in self.store:
			if conversation.user_profile is not None:
				self.profiles.remember(conversation.user_profile)
		self.load_error = None
		return self.store.conversations

	async def load_archived(self) -> List[Conversation]:
		try:
			conversations = await self._transport.list_conversations(archived=True)
		except ChatError as exc:
			self._load_failed(exc, "Failed to load archived conversations")
			raise
		self.archived.replace_all(conversations, preserve_messages=True)
		self._keep_active_read()
		self.load_error = None
		return self.archived.conversations

	async def open_conversation(self, conversation_id: int) -> Optional[Conversation]:
		conversation = self.store.get(conversation_id) or self.archived.get(conversation_id)
		if conversation is None:
			logger.warning("open ignored; conversation %s is no longer held", conversation_id)
			return None
		self.active.set(conversation_id)
		owner = self.store if conversation_id in self.store else self.archived
		owner.set_unread(conversation_id, 0)
		if conversation_id not in self.cache:
			try:
				loaded = await self._transport.get_conversation(conversation_id)
			except ChatError as exc:
				self._load_failed(exc, "Failed to load conversation")
				raise
			owner.set_messages(conversation_id, [*conversation.messages, *loaded.messages])
			self.cache.set(conversation_id, [m for m in conversation.messages if not m.is_pending])
		self.bus.dispatch(self._transport.mark_read(conversation_id), name="mark_read")
		return owner.get(conversation_id)

	def close_conversation(self) -> None:
		self.active.clear()

	@property
	def active_conversation(self) -> Optional[Conversation]:
		conversation_id = self.active.get()
		if conversation_id is None:
			return None
		return self.store.get(conversation_id) or self.archived.get(conversation_id)

	def _keep_active_read(self) -> None:
		conversation_id = self.active.get()
		if conversation_id is None:
			return
		for owner in (self.store, self.archived):
			if conversation_id in owner:
				owner.set_unread(conversation_id, 0)

	def _load_failed(self, exc: ChatError, description: str) -> None:
		self.load_error = exc.reason
		self.notifications.error("Error", description)
		logger.warning("%s: %s", description, exc.reason)
