import asyncio
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import pytest
import pytest_asyncio

# Ensure backend package is importable when tests run from repo root
BACKEND_ROOT = Path(__file__).resolve().parents[1]
if str(BACKEND_ROOT) not in sys.path:
	sys.path.insert(0, str(BACKEND_ROOT))

from storefront_chat.domain.chat.errors import NetworkOrServerFailure
from storefront_chat.domain.chat.models import Conversation, Message, UserProfile
from storefront_chat.domain.chat.schemas import DeleteConversationResponse
from storefront_chat.domain.chat.session import ChatSession
from storefront_chat.infra.auth import AuthenticatedUser, StaticSession

BASE_TIME = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)
CUSTOMER_ID = "cust-1"
ADMIN_ID = "admin-1"


def at(seconds: int) -> datetime:
	return BASE_TIME + timedelta(seconds=seconds)


def make_message(
	message_id: Optional[int],
	conversation_id: int,
	*,
	sender_id: str = CUSTOMER_ID,
	text: str = "hi",
	is_admin: bool = False,
	offset: int = 0,
) -> Message:
	return Message(
		id=message_id,
		conversation_id=conversation_id,
		sender_id=sender_id,
		message=text,
		is_admin=is_admin,
		read=False,
		created_at=at(offset),
	)


def make_conversation(
	conversation_id: int,
	*,
	user_id: str = CUSTOMER_ID,
	subject: str = "Billing question",
	status: str = "open",
	priority: str = "medium",
	messages: Optional[List[Message]] = None,
	unread_count: int = 0,
) -> Conversation:
	messages = list(messages or [])
	latest = messages[-1] if messages else None
	return Conversation(
		id=conversation_id,
		user_id=user_id,
		subject=subject,
		status=status,
		priority=priority,
		created_at=at(0),
		updated_at=latest.created_at if latest else at(0),
		messages=messages,
		unread_count=unread_count,
		latest_message=latest.message if latest else None,
		latest_message_at=latest.created_at if latest else None,
	)


def message_row(message_id: int, conversation_id: int, **overrides: Any) -> Dict[str, Any]:
	row = {
		"id": message_id,
		"conversation_id": conversation_id,
		"sender_id": ADMIN_ID,
		"message": "We'll look into it",
		"is_admin": True,
		"read": False,
		"created_at": at(600).isoformat(),
	}
	row.update(overrides)
	return row


def conversation_row(conversation_id: int, **overrides: Any) -> Dict[str, Any]:
	row = {
		"id": conversation_id,
		"user_id": CUSTOMER_ID,
		"subject": "Billing question",
		"status": "open",
		"priority": "medium",
		"created_at": at(0).isoformat(),
		"updated_at": at(0).isoformat(),
	}
	row.update(overrides)
	return row


class FakeTransport:
	"""In-memory stand-in for `ChatTransport`.

	`failures` maps an operation name to the exception it raises; `gates` maps
	an operation name to an `asyncio.Event` the call waits on before answering.
	"""

	def __init__(self, *, user_id: str = CUSTOMER_ID, is_admin: bool = False) -> None:
		self.user_id = user_id
		self.is_admin = is_admin
		self.conversations: List[Conversation] = []
		self.archived: List[Conversation] = []
		self.histories: Dict[int, List[Message]] = {}
		self.profiles: Dict[str, UserProfile] = {}
		self.direct_profiles: Dict[str, UserProfile] = {}
		self.failures: Dict[str, Exception] = {}
		self.gates: Dict[str, asyncio.Event] = {}
		self.server_overrides: Dict[str, Any] = {}
		self.calls: List[tuple] = []
		self.next_message_id = 900
		self.next_conversation_id = 42

	async def _enter(self, operation: str, *args: Any) -> None:
		self.calls.append((operation, *args))
		gate = self.gates.get(operation)
		if gate is not None:
			await gate.wait()
		failure = self.failures.get(operation)
		if failure is not None:
			raise failure

	def called(self, operation: str) -> List[tuple]:
		return [call for call in self.calls if call[0] == operation]

	async def list_conversations(self, *, status=None, priority=None, archived=False):
		await self._enter("list_conversations", status, priority, archived)
		source = self.archived if archived else self.conversations
		return [conversation.copy() for conversation in source]

	async def get_conversation(self, conversation_id):
		await self._enter("get_conversation", conversation_id)
		held = next(c for c in [*self.conversations, *self.archived] if c.id == conversation_id)
		result = held.copy()
		result.messages = list(self.histories.get(conversation_id, []))
		return result

	async def create_conversation(self, subject, message, priority="medium"):
		await self._enter("create_conversation", subject, message, priority)
		conversation_id = self.next_conversation_id
		first = Message(
			id=501,
			conversation_id=conversation_id,
			sender_id=self.user_id,
			message=message,
			is_admin=self.is_admin,
			read=False,
			created_at=at(60),
		)
		return Conversation(
			id=conversation_id,
			user_id=self.user_id,
			subject=subject,
			status="open",
			priority=priority,
			created_at=at(60),
			updated_at=at(60),
			messages=[first],
			latest_message=message,
			latest_message_at=at(60),
		)

	async def send_message(self, conversation_id, text):
		await self._enter("send_message", conversation_id, text)
		message_id = self.next_message_id
		self.next_message_id += 1
		return Message(
			id=message_id,
			conversation_id=conversation_id,
			sender_id=self.user_id,
			message=text,
			is_admin=self.is_admin,
			read=False,
			created_at=at(3600),
		)

	async def update_conversation(self, conversation_id, **fields):
		await self._enter("update_conversation", conversation_id, fields)
		held = next((c for c in [*self.conversations, *self.archived] if c.id == conversation_id), None)
		result = held.copy() if held is not None else make_conversation(conversation_id)
		for key, value in {**fields, **self.server_overrides}.items():
			setattr(result, key, value)
		return result

	async def delete_conversation(self, conversation_id, delete_type):
		await self._enter("delete_conversation", conversation_id, delete_type)
		return DeleteConversationResponse(success=True, message="ok", delete_type=delete_type)

	async def mark_read(self, conversation_id):
		await self._enter("mark_read", conversation_id)
		return True

	async def get_user_profile(self, user_id):
		await self._enter("get_user_profile", user_id)
		if user_id not in self.profiles:
			raise NetworkOrServerFailure("User not found", status_code=404)
		return self.profiles[user_id]

	async def query_user_profile(self, user_id):
		await self._enter("query_user_profile", user_id)
		return self.direct_profiles.get(user_id)


class FakePushChannel:
	def __init__(self) -> None:
		self.subscriptions: List[dict] = []
		self.unsubscribed = 0
		self.fail_with: Optional[Exception] = None
		self._on_event = None
		self._on_status = None

	@property
	def active(self) -> bool:
		return self._on_event is not None

	async def subscribe(self, *, scope, user_id, on_event, on_status) -> None:
		if self.fail_with is not None:
			raise self.fail_with
		self.subscriptions.append({"scope": scope, "user_id": user_id})
		self._on_event = on_event
		self._on_status = on_status
		on_status("subscribed", None)

	async def unsubscribe(self) -> None:
		self.unsubscribed += 1
		on_status, self._on_status, self._on_event = self._on_status, None, None
		if on_status is not None:
			on_status("closed", None)

	async def emit(self, payload: dict) -> None:
		assert self._on_event is not None, "no active subscription"
		await self._on_event(payload)

	def drop(self, detail: str = "transport closed") -> None:
		self._on_status("error", detail)


@pytest.fixture(autouse=True)
def force_test_settings(monkeypatch):
	"""Keep root logging untouched so caplog keeps working."""
	from storefront_chat.settings import settings

	monkeypatch.setattr(settings, "obs_enabled", False)
	monkeypatch.setattr(settings, "environment", "test")


@pytest.fixture
def customer_transport() -> FakeTransport:
	transport = FakeTransport(user_id=CUSTOMER_ID, is_admin=False)
	transport.conversations = [
		make_conversation(
			42,
			messages=[make_message(501, 42, text="Hello", offset=60)],
		)
	]
	return transport


@pytest.fixture
def admin_transport() -> FakeTransport:
	transport = FakeTransport(user_id=ADMIN_ID, is_admin=True)
	transport.conversations = [
		make_conversation(
			42,
			messages=[make_message(501, 42, text="Hello", offset=60)],
		),
		make_conversation(43, user_id="cust-2", subject="Shipping"),
	]
	transport.profiles[CUSTOMER_ID] = UserProfile(id=CUSTOMER_ID, name="Casey", email="casey@example.com")
	return transport


@pytest.fixture
def push_channel() -> FakePushChannel:
	return FakePushChannel()


@pytest_asyncio.fixture
async def customer_session(customer_transport, push_channel):
	session = ChatSession(
		customer_transport,
		push_channel,
		StaticSession(AuthenticatedUser(id=CUSTOMER_ID), token="customer-token"),
		delete_timeout=0.05,
	)
	await session.start()
	try:
		yield session
	finally:
		await session.close()


@pytest_asyncio.fixture
async def admin_session(admin_transport, push_channel):
	session = ChatSession(
		admin_transport,
		push_channel,
		StaticSession(AuthenticatedUser(id=ADMIN_ID, is_admin=True), token="admin-token"),
		delete_timeout=0.05,
	)
	await session.start()
	try:
		yield session
	finally:
		await session.close()
