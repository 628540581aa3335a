"""Optimistic chat mutations.

Each mutation validates its input, applies a speculative change to the local
store before the first network await, issues the request, and then reconciles
with the server entity or restores the exact pre-action state. A failed call
emits one error notification and re-raises to the caller.
"""

from __future__ import annotations

import logging
from typing import Any, Callable, Hashable, Optional, Set

from storefront_chat.obs import metrics as obs_metrics

from .cache import MessageCache
from .errors import StaleReference, ValidationFailure
from .models import (
	DELETE_TYPES,
	PRIORITIES,
	STATUSES,
	Actor,
	Conversation,
	Message,
	new_pending_handle,
	now_utc,
)
from .notifications import NotificationCenter
from .pending_delete import PendingDelete, PendingDeleteRegistry
from .store import ActiveConversation, ConversationStore

logger = logging.getLogger(__name__)

_ADMIN_DELETE_TYPES = frozenset({"permanent", "admin_archive"})
_CUSTOMER_DELETE_TYPES = frozenset({"user_hide"})


class ChatMutations:
	def __init__(
		self,
		transport: Any,
		actor: Actor,
		*,
		store: ConversationStore,
		archived: ConversationStore,
		cache: MessageCache,
		active: ActiveConversation,
		notifications: NotificationCenter,
		delete_timeout: float | None = None,
	) -> None:
		self._transport = transport
		self._actor = actor
		self._store = store
		self._archived = archived
		self._cache = cache
		self._active = active
		self._notifications = notifications
		self._in_flight: Set[Hashable] = set()
		self.pending_deletes = PendingDeleteRegistry(self.execute_delete, timeout=delete_timeout)

	@property
	def in_flight(self) -> int:
		return len(self._in_flight)

	# --- messages -----------------------------------------------------------

	async def send_message(self, conversation_id: int, text: str) -> Optional[Message]:
		text = (text or "").strip()
		if not text:
			raise ValidationFailure("empty_message")
		conversation = self._held(self._store, conversation_id, "send_message")
		if conversation is None:
			return None
		key = ("send", conversation_id, text)
		if not self._claim(key, "send_message"):
			return None
		handle = new_pending_handle()
		optimistic = Message(
			id=None,
			conversation_id=conversation_id,
			sender_id=self._actor.user_id,
			message=text,
			is_admin=self._actor.is_admin,
			read=False,
			created_at=now_utc(),
			client_id=handle,
		)
		prior = {
			"latest_message": conversation.latest_message,
			"latest_message_at": conversation.latest_message_at,
			"updated_at": conversation.updated_at,
		}
		self._store.upsert_message(conversation_id, optimistic)
		obs_metrics.inc_optimistic_applied("send_message")
		try:
			confirmed = await self._transport.send_message(conversation_id, text)
		except Exception as exc:
			def _undo() -> None:
				if self._store.remove_message(conversation_id, handle):
					self._store.update_fields(conversation_id, **prior)
					self._store.refresh_latest(conversation_id, since=prior["latest_message_at"])

			self._rollback("send_message", exc, "Failed to send message", _undo)
			raise
		finally:
			self._release(key)
		self._store.replace_message(conversation_id, handle, confirmed)
		self._remember_messages(conversation_id)
		obs_metrics.inc_optimistic_confirmed("send_message")
		return confirmed

	# --- conversations ------------------------------------------------------

	async def create_conversation(self, subject: str, message: str, priority: str = "medium") -> Optional[Conversation]:
		subject = (subject or "").strip()
		message = (message or "").strip()
		if not subject:
			raise ValidationFailure("empty_subject")
		if not message:
			raise ValidationFailure("empty_message")
		if priority not in PRIORITIES:
			raise ValidationFailure("invalid_priority")
		key = ("create", subject, message)
		if not self._claim(key, "create_conversation"):
			return None
		handle = new_pending_handle()
		now = now_utc()
		speculative = Conversation(
			id=None,
			user_id=self._actor.user_id,
			subject=subject,
			status="open",
			priority=priority,
			created_at=now,
			updated_at=now,
			messages=[
				Message(
					id=None,
					conversation_id=None,
					sender_id=self._actor.user_id,
					message=message,
					is_admin=self._actor.is_admin,
					read=False,
					created_at=now,
					client_id=new_pending_handle(),
				)
			],
			latest_message=message,
			latest_message_at=now,
			client_id=handle,
		)
		self._store.insert_conversation(speculative, at_front=True)
		obs_metrics.inc_optimistic_applied("create_conversation")
		try:
			confirmed = await self._transport.create_conversation(subject, message, priority)
		except Exception as exc:
			self._rollback(
				"create_conversation",
				exc,
				"Failed to create conversation",
				lambda: self._store.remove_conversation(handle),
			)
			raise
		finally:
			self._release(key)
		result = self._store.replace_conversation(handle, confirmed)
		self._remember_messages(result.id)
		obs_metrics.inc_optimistic_confirmed("create_conversation")
		self._notifications.success("Conversation started", "Our support team will reply shortly.")
		return result

	async def change_status(self, conversation_id: int, status: str) -> Optional[Conversation]:
		if status not in STATUSES:
			raise ValidationFailure("invalid_status")
		return await self._update_field("status", conversation_id, status)

	async def change_priority(self, conversation_id: int, priority: str) -> Optional[Conversation]:
		if priority not in PRIORITIES:
			raise ValidationFailure("invalid_priority")
		return await self._update_field("priority", conversation_id, priority)

	# --- deletes ------------------------------------------------------------

	async def request_delete(self, conversation_id: int, delete_type: str) -> Optional[object]:
		"""Route a delete by type; `permanent` only opens the confirmation window."""
		if delete_type not in DELETE_TYPES:
			raise ValidationFailure("invalid_delete_type")
		allowed = _ADMIN_DELETE_TYPES if self._actor.is_admin else _CUSTOMER_DELETE_TYPES
		if delete_type not in allowed:
			raise ValidationFailure("delete_type_not_allowed")
		if delete_type == "admin_archive":
			return await self.archive_conversation(conversation_id)
		if delete_type == "user_hide":
			return await self.hide_conversation(conversation_id)
		if conversation_id not in self._store and conversation_id not in self._archived:
			self._stale(conversation_id, "request_delete")
			return None
		return self.pending_deletes.request(conversation_id)

	async def confirm_delete(self, conversation_id: int) -> bool:
		return await self.pending_deletes.confirm(conversation_id)

	def cancel_delete(self, conversation_id: int) -> bool:
		return self.pending_deletes.cancel(conversation_id)

	def pending_delete(self, conversation_id: int) -> Optional[PendingDelete]:
		return self.pending_deletes.get(conversation_id)

	async def execute_delete(self, conversation_id: int) -> Optional[Conversation]:
		if not self._actor.is_admin:
			raise ValidationFailure("delete_type_not_allowed")
		owner = self._store if conversation_id in self._store else self._archived
		if conversation_id not in owner:
			self._stale(conversation_id, "execute_delete")
			return None
		key = ("delete", conversation_id)
		if not self._claim(key, "delete_conversation"):
			return None
		conversation, index = owner.remove_conversation(conversation_id)
		was_active = self._active.is_active(conversation_id)
		if was_active:
			self._active.clear()
		obs_metrics.inc_optimistic_applied("delete_conversation")
		self._notifications.success("Conversation deleted", "The conversation has been permanently deleted.")
		try:
			await self._transport.delete_conversation(conversation_id, "permanent")
		except Exception as exc:
			def _undo() -> None:
				owner.insert_conversation(conversation, index=index)
				if was_active:
					self._active.set(conversation_id)

			self._rollback("delete_conversation", exc, "Failed to delete conversation", _undo)
			raise
		finally:
			self._release(key)
		self._cache.invalidate(conversation_id)
		obs_metrics.inc_optimistic_confirmed("delete_conversation")
		return conversation

	async def archive_conversation(self, conversation_id: int) -> Optional[Conversation]:
		if not self._actor.is_admin:
			raise ValidationFailure("delete_type_not_allowed")
		return await self._soft_hide(
			"admin_archive",
			conversation_id,
			flag="deleted_by_admin",
			target=self._archived,
			success=("Conversation archived", "The conversation has been moved to the archive."),
			failure="Failed to archive conversation",
		)

	async def hide_conversation(self, conversation_id: int) -> Optional[Conversation]:
		if self._actor.is_admin:
			raise ValidationFailure("delete_type_not_allowed")
		return await self._soft_hide(
			"user_hide",
			conversation_id,
			flag="deleted_by_user",
			target=None,
			success=("Conversation deleted", "The conversation has been removed from your list."),
			failure="Failed to delete conversation",
		)

	async def unarchive_conversation(self, conversation_id: int) -> Optional[Conversation]:
		if not self._actor.is_admin:
			raise ValidationFailure("unarchive_not_allowed")
		if self._held(self._archived, conversation_id, "unarchive_conversation") is None:
			return None
		key = ("unarchive", conversation_id)
		if not self._claim(key, "unarchive_conversation"):
			return None
		conversation, index = self._archived.remove_conversation(conversation_id)
		prior = (conversation.deleted_by_admin, conversation.deleted_at)
		conversation.deleted_by_admin = False
		conversation.deleted_at = None
		self._store.insert_conversation(conversation, at_front=True)
		obs_metrics.inc_optimistic_applied("unarchive_conversation")
		self._notifications.success("Conversation restored", "The conversation is back in the active list.")
		try:
			await self._transport.update_conversation(conversation_id, deleted_by_admin=False, deleted_at=None)
		except Exception as exc:
			def _undo() -> None:
				self._store.remove_conversation(conversation_id)
				conversation.deleted_by_admin, conversation.deleted_at = prior
				self._archived.insert_conversation(conversation, index=index)

			self._rollback("unarchive_conversation", exc, "Failed to restore conversation", _undo)
			raise
		finally:
			self._release(key)
		obs_metrics.inc_optimistic_confirmed("unarchive_conversation")
		return conversation

	# --- internals ----------------------------------------------------------

	async def _update_field(self, field_name: str, conversation_id: int, value: str) -> Optional[Conversation]:
		operation = f"change_{field_name}"
		if self._held(self._store, conversation_id, operation) is None:
			return None
		key = (field_name, conversation_id)
		if not self._claim(key, operation):
			return None
		prior = self._store.update_fields(conversation_id, **{field_name: value})
		obs_metrics.inc_optimistic_applied(operation)
		self._notifications.success(
			f"{field_name.capitalize()} updated",
			f"Conversation {field_name} changed to {value}.",
		)
		try:
			server = await self._transport.update_conversation(conversation_id, **{field_name: value})
		except Exception as exc:
			self._rollback(
				operation,
				exc,
				f"Failed to update {field_name}",
				lambda: self._store.update_fields(conversation_id, **prior),
			)
			raise
		finally:
			self._release(key)
		server_value = getattr(server, field_name)
		if server_value != value:
			logger.info(
				"server reconciled %s",
				field_name,
				extra={"conversation_id": conversation_id, "requested": value, "applied": server_value},
			)
			self._store.merge_metadata(conversation_id, {field_name: server_value})
		obs_metrics.inc_optimistic_confirmed(operation)
		return self._store.get(conversation_id)

	async def _soft_hide(
		self,
		delete_type: str,
		conversation_id: int,
		*,
		flag: str,
		target: Optional[ConversationStore],
		success: tuple[str, str],
		failure: str,
	) -> Optional[Conversation]:
		if self._held(self._store, conversation_id, delete_type) is None:
			return None
		key = ("delete", conversation_id)
		if not self._claim(key, delete_type):
			return None
		conversation, index = self._store.remove_conversation(conversation_id)
		prior = (getattr(conversation, flag), conversation.deleted_at)
		setattr(conversation, flag, True)
		conversation.deleted_at = now_utc()
		if target is not None:
			target.insert_conversation(conversation, at_front=True)
		was_active = self._active.is_active(conversation_id)
		if was_active:
			self._active.clear()
		obs_metrics.inc_optimistic_applied(delete_type)
		self._notifications.success(*success)
		try:
			await self._transport.delete_conversation(conversation_id, delete_type)
		except Exception as exc:
			def _undo() -> None:
				if target is not None:
					target.remove_conversation(conversation_id)
				setattr(conversation, flag, prior[0])
				conversation.deleted_at = prior[1]
				self._store.insert_conversation(conversation, index=index)
				if was_active:
					self._active.set(conversation_id)

			self._rollback(delete_type, exc, failure, _undo)
			raise
		finally:
			self._release(key)
		obs_metrics.inc_optimistic_confirmed(delete_type)
		return conversation

	def _rollback(self, operation: str, exc: Exception, description: str, undo: Callable[[], object]) -> None:
		undo()
		obs_metrics.inc_rollback(operation)
		logger.warning("%s failed; local change rolled back: %s", operation, exc)
		self._notifications.error("Error", description)

	def _claim(self, key: Hashable, operation: str) -> bool:
		if key in self._in_flight:
			obs_metrics.inc_duplicate_submission(operation)
			logger.debug("duplicate %s ignored while one is in flight", operation)
			return False
		self._in_flight.add(key)
		return True

	def _release(self, key: Hashable) -> None:
		self._in_flight.discard(key)

	def _held(self, store: ConversationStore, conversation_id: int, operation: str) -> Optional[Conversation]:
		try:
			return store.require(conversation_id)
		except StaleReference:
			self._stale(conversation_id, operation)
			return None

	def _stale(self, conversation_id: object, operation: str) -> None:
		obs_metrics.inc_stale_reference()
		logger.warning("%s ignored; conversation %s is no longer held", operation, conversation_id)

	def _remember_messages(self, conversation_id: Optional[int]) -> None:
		conversation = self._store.get(conversation_id)
		if conversation is not None and conversation.id is not None:
			self._cache.set(conversation.id, [m for m in conversation.messages if not m.is_pending])
