"""Applies push channel row changes to the local conversation store."""

from __future__ import annotations

import enum
import logging
from typing import Any, Optional

from pydantic import ValidationError

from storefront_chat.obs import logging as obs_logging
from storefront_chat.obs import metrics as obs_metrics

from .cache import MessageCache
from .models import Actor
from .profiles import ProfileResolver
from .schemas import ConversationChange, MessageChange, parse_live_event
from .store import ActiveConversation, ConversationStore

logger = logging.getLogger(__name__)

_CLIENT_OWNED_FIELDS = ("unread_count",)


class ListenerState(str, enum.Enum):
	UNSUBSCRIBED = "unsubscribed"
	SUBSCRIBING = "subscribing"
	SUBSCRIBED = "subscribed"
	ERROR = "error"


class LiveUpdateListener:
	"""One push subscription per actor session.

	The active conversation is read from the shared cell at event time, so a
	switch made after subscribing is always honoured.
	"""

	def __init__(
		self,
		channel: Any,
		actor: Actor,
		*,
		store: ConversationStore,
		archived: Optional[ConversationStore] = None,
		cache: MessageCache,
		active: ActiveConversation,
		bus: Any,
		transport: Any,
		profiles: ProfileResolver,
	) -> None:
		self._channel = channel
		self._actor = actor
		self._store = store
		self._archived = archived
		self._cache = cache
		self._active = active
		self._bus = bus
		self._transport = transport
		self._profiles = profiles
		self._state = ListenerState.UNSUBSCRIBED
		self.last_error: Optional[str] = None

	@property
	def state(self) -> ListenerState:
		return self._state

	@property
	def scope(self) -> str:
		return "admin" if self._actor.is_admin else f"user:{self._actor.user_id}"

	async def start(self) -> None:
		if self._state in (ListenerState.SUBSCRIBING, ListenerState.SUBSCRIBED):
			await self.stop()
		self._set_state(ListenerState.SUBSCRIBING)
		try:
			await self._channel.subscribe(
				scope=self.scope,
				user_id=self._actor.user_id,
				on_event=self.handle_payload,
				on_status=self._on_status,
			)
		except Exception as exc:
			self._fail(str(exc))
			return
		if self._state is ListenerState.SUBSCRIBING:
			self._set_state(ListenerState.SUBSCRIBED)

	async def stop(self) -> None:
		if self._state is ListenerState.UNSUBSCRIBED:
			return
		try:
			await self._channel.unsubscribe()
		finally:
			self._set_state(ListenerState.UNSUBSCRIBED)

	async def handle_payload(self, payload: dict) -> None:
		table = str(payload.get("table") or "unknown")
		try:
			event = parse_live_event(payload)
		except ValidationError as exc:
			obs_metrics.push_event(table, "unknown", "invalid")
			logger.warning("dropping malformed push payload for %s: %s", table, exc.error_count())
			return
		tokens = obs_logging.bind_context(conversation_id=str(self._conversation_id_of(event)))
		try:
			if isinstance(event, MessageChange):
				outcome = self._on_message(event)
			else:
				outcome = await self._on_conversation(event)
		except Exception:
			obs_metrics.push_event(event.table, event.operation, "failed")
			obs_metrics.inc_listener_error(self._actor.role)
			logger.exception("failed to apply push event")
			return
		finally:
			obs_logging.reset_context(tokens)
		obs_metrics.push_event(event.table, event.operation, outcome)

	# --- messages -----------------------------------------------------------

	def _on_message(self, event: MessageChange) -> str:
		if event.operation != "INSERT":
			return "ignored"
		message = event.row.to_model()
		conversation_id = message.conversation_id
		if message.sender_id == self._actor.user_id:
			return "own"
		if not self._actor.is_admin and not message.is_admin:
			return "ignored"
		if conversation_id not in self._store:
			return "not_held"
		appended = self._store.upsert_message(conversation_id, message)
		if self._active.is_active(conversation_id):
			self._store.set_unread(conversation_id, 0)
			if appended:
				self._bus.dispatch(self._transport.mark_read(conversation_id), name="mark_read")
		elif appended:
			self._store.increment_unread(conversation_id)
		if not appended:
			logger.debug("message %s already held", message.id)
			return "duplicate"
		if conversation_id in self._cache:
			held = self._store.get(conversation_id)
			self._cache.set(conversation_id, [m for m in held.messages if not m.is_pending])
		return "applied"

	# --- conversations ------------------------------------------------------

	async def _on_conversation(self, event: ConversationChange) -> str:
		row = event.row
		if not self._actor.is_admin and row.user_id != self._actor.user_id:
			return "ignored"
		if event.operation == "UPDATE":
			return self._on_conversation_update(event)
		return await self._on_conversation_insert(event)

	def _on_conversation_update(self, event: ConversationChange) -> str:
		row = event.row
		fields = row.metadata_fields()
		for name in _CLIENT_OWNED_FIELDS:
			fields.pop(name, None)
		if fields.get("user_profile") is None:
			fields.pop("user_profile", None)
		if row.id in self._store:
			if self._hidden_for_actor(fields):
				conversation = self._store.merge_metadata(row.id, fields)
				self._store.remove_conversation(row.id)
				if self._actor.is_admin and self._archived is not None and row.id not in self._archived:
					self._archived.insert_conversation(conversation, at_front=True)
				if self._active.is_active(row.id):
					self._active.clear()
				return "removed"
			self._store.merge_metadata(row.id, fields)
			return "applied"
		if self._archived is not None and row.id in self._archived:
			self._archived.merge_metadata(row.id, fields)
			return "applied"
		return "not_held"

	async def _on_conversation_insert(self, event: ConversationChange) -> str:
		row = event.row
		if row.id in self._store:
			obs_metrics.inc_duplicate_absorbed("conversation")
			return "duplicate"
		conversation = row.to_model()
		if self._hidden_for_actor({"deleted_by_admin": conversation.deleted_by_admin, "deleted_by_user": conversation.deleted_by_user}):
			return "ignored"
		if self._actor.is_admin and conversation.user_profile is None:
			conversation.user_profile = await self._profiles.resolve(conversation.user_id)
			# the lookup awaited; another path may have inserted it meanwhile
			if conversation.id in self._store:
				obs_metrics.inc_duplicate_absorbed("conversation")
				return "duplicate"
		self._store.insert_conversation(conversation, at_front=True)
		return "applied"

	# --- internals ----------------------------------------------------------

	def _hidden_for_actor(self, fields: dict) -> bool:
		flag = "deleted_by_admin" if self._actor.is_admin else "deleted_by_user"
		return bool(fields.get(flag))

	@staticmethod
	def _conversation_id_of(event: Any) -> Any:
		if isinstance(event, MessageChange):
			return event.row.conversation_id
		return event.row.id

	def _on_status(self, status: str, detail: Optional[str] = None) -> None:
		if status == "subscribed":
			self._set_state(ListenerState.SUBSCRIBED)
		elif status == "closed":
			if self._state is not ListenerState.ERROR:
				logger.info("push channel closed")
			self._set_state(ListenerState.UNSUBSCRIBED)
		elif status == "error":
			self._fail(detail or "channel_error")

	def _fail(self, detail: str) -> None:
		self.last_error = detail
		self._set_state(ListenerState.ERROR)
		obs_metrics.inc_listener_error(self._actor.role)
		logger.warning("push subscription failed: %s", detail)

	def _set_state(self, state: ListenerState) -> None:
		previous, self._state = self._state, state
		if previous is state:
			return
		if state is ListenerState.SUBSCRIBED:
			self.last_error = None
			obs_metrics.listener_subscribed(self._actor.role)
		elif previous is ListenerState.SUBSCRIBED:
			obs_metrics.listener_unsubscribed(self._actor.role)
