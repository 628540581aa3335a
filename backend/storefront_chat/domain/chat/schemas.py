"""Pydantic schemas for the chat REST API and push channel payloads."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Any, List, Literal, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, field_validator

from .models import (
	NO_SUBJECT,
	Conversation,
	Message,
	UserProfile,
	dedupe_messages,
	now_utc,
	sort_messages,
	UNKNOWN_USER_EMAIL,
	UNKNOWN_USER_NAME,
)

StatusLiteral = Literal["open", "pending", "closed"]
PriorityLiteral = Literal["low", "medium", "high", "urgent"]
DeleteTypeLiteral = Literal["permanent", "admin_archive", "user_hide"]


def _as_str(value: Any) -> Any:
	if value is None or isinstance(value, str):
		return value
	return str(value)


class UserProfileRow(BaseModel):
	id: str
	name: Optional[str] = None
	email: Optional[str] = None
	is_admin: bool = False

	@field_validator("id", mode="before")
	def _coerce_id(cls, value):
		return _as_str(value)

	def to_model(self) -> UserProfile:
		return UserProfile(
			id=self.id,
			name=self.name or UNKNOWN_USER_NAME,
			email=self.email or UNKNOWN_USER_EMAIL,
			is_admin=self.is_admin,
		)


class MessageRow(BaseModel):
	id: int
	conversation_id: int
	sender_id: str
	message: str
	is_admin: bool = False
	read: bool = False
	created_at: datetime
	sender: Optional[UserProfileRow] = None

	@field_validator("sender_id", mode="before")
	def _coerce_sender(cls, value):
		return _as_str(value)

	def to_model(self) -> Message:
		return Message(
			id=self.id,
			conversation_id=self.conversation_id,
			sender_id=self.sender_id,
			message=self.message,
			is_admin=self.is_admin,
			read=self.read,
			created_at=self.created_at,
			sender=self.sender.to_model() if self.sender else None,
		)


class ConversationRow(BaseModel):
	id: int
	user_id: str
	subject: Optional[str] = None
	status: StatusLiteral = "open"
	priority: PriorityLiteral = "medium"
	created_at: Optional[datetime] = None
	updated_at: Optional[datetime] = None
	messages: List[MessageRow] = Field(default_factory=list)
	unread_count: int = Field(default=0, ge=0)
	latest_message: Optional[str] = None
	latest_message_at: Optional[datetime] = None
	deleted_by_admin: bool = False
	deleted_by_user: bool = False
	deleted_at: Optional[datetime] = None
	user_profile: Optional[UserProfileRow] = None

	@field_validator("user_id", mode="before")
	def _coerce_user(cls, value):
		return _as_str(value)

	def to_model(self) -> Conversation:
		created_at = self.created_at or self.updated_at or now_utc()
		updated_at = self.updated_at or created_at
		messages = sort_messages(dedupe_messages(row.to_model() for row in self.messages))
		latest_message = self.latest_message
		latest_message_at = self.latest_message_at
		if messages and latest_message is None:
			latest_message = messages[-1].message
			latest_message_at = messages[-1].created_at
		return Conversation(
			id=self.id,
			user_id=self.user_id,
			subject=(self.subject or "").strip() or NO_SUBJECT,
			status=self.status,
			priority=self.priority,
			created_at=created_at,
			updated_at=updated_at,
			messages=messages,
			unread_count=self.unread_count,
			latest_message=latest_message,
			latest_message_at=latest_message_at or updated_at,
			deleted_by_admin=self.deleted_by_admin,
			deleted_by_user=self.deleted_by_user,
			deleted_at=self.deleted_at,
			user_profile=self.user_profile.to_model() if self.user_profile else None,
		)

	def metadata_fields(self) -> dict[str, Any]:
		"""Fields explicitly carried by the payload, minus message history."""
		fields: dict[str, Any] = {}
		for name in self.model_fields_set:
			if name in ("id", "messages"):
				continue
			value = getattr(self, name)
			if name == "user_profile":
				value = value.to_model() if value else None
			elif name == "subject":
				value = (value or "").strip() or NO_SUBJECT
			if name in ("created_at", "updated_at") and value is None:
				continue
			fields[name] = value
		return fields


# --- Requests -------------------------------------------------------------


class CreateConversationRequest(BaseModel):
	subject: str = Field(..., min_length=1, max_length=200)
	message: str = Field(..., min_length=1, max_length=4000)
	priority: PriorityLiteral = "medium"


class SendMessageRequest(BaseModel):
	message: str = Field(..., min_length=1, max_length=4000)


class UpdateConversationRequest(BaseModel):
	status: Optional[StatusLiteral] = None
	priority: Optional[PriorityLiteral] = None
	deleted_by_admin: Optional[bool] = None
	deleted_at: Optional[datetime] = None


class DeleteConversationRequest(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	delete_type: DeleteTypeLiteral = Field(..., alias="deleteType")


# --- Responses ------------------------------------------------------------


class ConversationListResponse(BaseModel):
	success: bool = True
	conversations: List[ConversationRow] = Field(default_factory=list)


class ConversationResponse(BaseModel):
	success: bool = True
	conversation: ConversationRow


class MessageResponse(BaseModel):
	success: bool = True
	message: MessageRow


class DeleteConversationResponse(BaseModel):
	model_config = ConfigDict(populate_by_name=True)

	success: bool = True
	message: Optional[str] = None
	delete_type: Optional[DeleteTypeLiteral] = Field(default=None, alias="deleteType")


class MarkReadResponse(BaseModel):
	success: bool = True
	message: Optional[str] = None


class UserProfileResponse(BaseModel):
	success: bool = True
	user: UserProfileRow


# --- Push channel ---------------------------------------------------------


class MessageChange(BaseModel):
	table: Literal["chat_messages"]
	operation: Literal["INSERT", "UPDATE"]
	row: MessageRow


class ConversationChange(BaseModel):
	table: Literal["chat_conversations"]
	operation: Literal["INSERT", "UPDATE"]
	row: ConversationRow


LiveEvent = Annotated[Union[MessageChange, ConversationChange], Field(discriminator="table")]

_LIVE_EVENT = TypeAdapter(LiveEvent)


def parse_live_event(payload: Mapping[str, Any]) -> Union[MessageChange, ConversationChange]:
	"""Validate a raw push payload into a tagged change event.

	Accepts both the `{table, operation, row}` shape and the realtime
	`{table, eventType, new}` shape. Raises `pydantic.ValidationError` when the
	payload does not describe a supported change.
	"""
	operation = payload.get("operation") or payload.get("eventType") or payload.get("type") or ""
	row = payload.get("row")
	if row is None:
		row = payload.get("new") if payload.get("new") is not None else payload.get("record")
	return _LIVE_EVENT.validate_python(
		{
			"table": payload.get("table"),
			"operation": str(operation).upper(),
			"row": row,
		}
	)
