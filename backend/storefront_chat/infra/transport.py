"""REST client for the chat backend.

Every call carries a bearer token from the session collaborator. A missing
token fails with `AuthenticationUnavailable` before anything is sent; non-2xx
responses and transport exceptions become `NetworkOrServerFailure`.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Dict, List, Optional

import httpx
from pydantic import ValidationError

from storefront_chat.domain.chat.errors import NetworkOrServerFailure
from storefront_chat.domain.chat.models import Conversation, Message, UserProfile
from storefront_chat.domain.chat.schemas import (
	ConversationListResponse,
	ConversationResponse,
	CreateConversationRequest,
	DeleteConversationRequest,
	DeleteConversationResponse,
	MarkReadResponse,
	MessageResponse,
	SendMessageRequest,
	UpdateConversationRequest,
	UserProfileResponse,
	UserProfileRow,
)
from storefront_chat.infra.auth import SessionProvider, bearer_headers, require_token
from storefront_chat.obs import metrics as obs_metrics
from storefront_chat.settings import settings

logger = logging.getLogger(__name__)

_CONVERSATIONS = "/api/chat/conversations"


class ChatTransport:
	"""Thin async wrapper over the chat REST surface."""

	def __init__(
		self,
		session: SessionProvider,
		*,
		base_url: str | None = None,
		http: httpx.AsyncClient | None = None,
		timeout: float | None = None,
	) -> None:
		self._session = session
		self._owns_http = http is None
		self._http = http or httpx.AsyncClient(
			base_url=base_url or settings.api_base_url,
			timeout=timeout or settings.request_timeout_seconds,
		)

	async def aclose(self) -> None:
		if self._owns_http:
			await self._http.aclose()

	async def __aenter__(self) -> "ChatTransport":
		return self

	async def __aexit__(self, *exc_info) -> None:
		await self.aclose()

	# --- conversations ------------------------------------------------------

	async def list_conversations(
		self,
		*,
		status: str | None = None,
		priority: str | None = None,
		archived: bool = False,
	) -> List[Conversation]:
		params: Dict[str, str] = {}
		if archived:
			params["archived"] = "true"
		if status and status != "all":
			params["status"] = status
		if priority and priority != "all":
			params["priority"] = priority
		body = await self._request("list_conversations", "GET", _CONVERSATIONS, params=params)
		parsed = self._parse(ConversationListResponse, body, "list_conversations")
		conversations = [row.to_model() for row in parsed.conversations]
		# The backend does not filter on status/priority; narrow here.
		if status and status != "all":
			conversations = [c for c in conversations if c.status == status]
		if priority and priority != "all":
			conversations = [c for c in conversations if c.priority == priority]
		return conversations

	async def get_conversation(self, conversation_id: int) -> Conversation:
		body = await self._request("get_conversation", "GET", f"{_CONVERSATIONS}/{conversation_id}")
		return self._parse(ConversationResponse, body, "get_conversation").conversation.to_model()

	async def create_conversation(self, subject: str, message: str, priority: str = "medium") -> Conversation:
		payload = CreateConversationRequest(subject=subject, message=message, priority=priority)
		body = await self._request(
			"create_conversation",
			"POST",
			_CONVERSATIONS,
			json=payload.model_dump(mode="json"),
		)
		return self._parse(ConversationResponse, body, "create_conversation").conversation.to_model()

	async def send_message(self, conversation_id: int, text: str) -> Message:
		payload = SendMessageRequest(message=text)
		body = await self._request(
			"send_message",
			"POST",
			f"{_CONVERSATIONS}/{conversation_id}/messages",
			json=payload.model_dump(mode="json"),
		)
		return self._parse(MessageResponse, body, "send_message").message.to_model()

	async def update_conversation(self, conversation_id: int, **fields: Any) -> Conversation:
		payload = UpdateConversationRequest(**fields)
		body = await self._request(
			"update_conversation",
			"PATCH",
			f"{_CONVERSATIONS}/{conversation_id}",
			json=payload.model_dump(mode="json", exclude_unset=True),
		)
		return self._parse(ConversationResponse, body, "update_conversation").conversation.to_model()

	async def delete_conversation(self, conversation_id: int, delete_type: str) -> DeleteConversationResponse:
		payload = DeleteConversationRequest(delete_type=delete_type)
		body = await self._request(
			"delete_conversation",
			"DELETE",
			f"{_CONVERSATIONS}/{conversation_id}/delete",
			json=payload.model_dump(mode="json", by_alias=True),
		)
		return self._parse(DeleteConversationResponse, body, "delete_conversation")

	async def mark_read(self, conversation_id: int) -> bool:
		body = await self._request("mark_read", "POST", f"{_CONVERSATIONS}/{conversation_id}/read")
		return self._parse(MarkReadResponse, body, "mark_read").success

	# --- profiles -----------------------------------------------------------

	async def get_user_profile(self, user_id: str) -> UserProfile:
		"""Primary lookup through the admin users endpoint."""
		body = await self._request("get_user_profile", "GET", f"/api/admin/users/{user_id}")
		return self._parse(UserProfileResponse, body, "get_user_profile").user.to_model()

	async def query_user_profile(self, user_id: str) -> Optional[UserProfile]:
		"""Secondary lookup straight against the data store's query API."""
		body = await self._request(
			"query_user_profile",
			"GET",
			"/rest/v1/user_profiles",
			params={"id": f"eq.{user_id}", "select": "id,name,email,is_admin"},
		)
		if not isinstance(body, list) or not body:
			return None
		try:
			return UserProfileRow.model_validate(body[0]).to_model()
		except ValidationError as exc:
			raise NetworkOrServerFailure("invalid_response:query_user_profile") from exc

	# --- internals ----------------------------------------------------------

	async def _request(self, operation: str, method: str, path: str, **kwargs: Any) -> Any:
		token = await require_token(self._session)
		headers = {**bearer_headers(token), "Accept": "application/json"}
		started = time.perf_counter()
		try:
			response = await self._http.request(method, path, headers=headers, **kwargs)
		except httpx.HTTPError as exc:
			obs_metrics.observe_api(operation, "transport_error", time.perf_counter() - started)
			logger.warning("%s %s failed: %s", method, path, exc)
			raise NetworkOrServerFailure(f"transport_error:{operation}") from exc
		obs_metrics.observe_api(operation, str(response.status_code), time.perf_counter() - started)
		body = self._json_or_none(response)
		if response.is_error:
			detail = body.get("error") if isinstance(body, dict) else None
			logger.warning(
				"%s %s returned %s",
				method,
				path,
				response.status_code,
				extra={"operation": operation, "detail": detail},
			)
			raise NetworkOrServerFailure(detail or f"http_{response.status_code}", status_code=response.status_code)
		return body

	@staticmethod
	def _json_or_none(response: httpx.Response) -> Any:
		if not response.content:
			return None
		try:
			return response.json()
		except ValueError:
			return None

	@staticmethod
	def _parse(model, body: Any, operation: str):
		try:
			return model.model_validate(body if body is not None else {})
		except ValidationError as exc:
			logger.warning("unexpected %s response shape", operation)
			raise NetworkOrServerFailure(f"invalid_response:{operation}") from exc
