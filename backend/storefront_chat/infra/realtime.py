"""Socket.IO client for the chat push channel."""

from __future__ import annotations

import logging
from typing import Any, Awaitable, Callable, Optional, Protocol

import socketio
from socketio.exceptions import ConnectionError as SocketConnectionError

from storefront_chat.domain.chat.errors import NetworkOrServerFailure
from storefront_chat.infra.auth import SessionProvider, require_token
from storefront_chat.settings import settings

logger = logging.getLogger(__name__)

EventHandler = Callable[[dict], Awaitable[None]]
StatusHandler = Callable[[str, Optional[str]], None]

STATUS_SUBSCRIBED = "subscribed"
STATUS_CLOSED = "closed"
STATUS_ERROR = "error"


class PushChannel(Protocol):
	async def subscribe(
		self,
		*,
		scope: str,
		user_id: str,
		on_event: EventHandler,
		on_status: StatusHandler,
	) -> None:
		...

	async def unsubscribe(self) -> None:
		...


class SocketIOPushChannel:
	"""One Socket.IO connection scoped to a single actor.

	The server places the client in a room matching `scope` (all conversations
	for admins, the customer's own conversations otherwise) and emits
	`settings.realtime_event` with row-level change payloads.
	"""

	def __init__(
		self,
		session: SessionProvider,
		*,
		url: str | None = None,
		namespace: str | None = None,
		event: str | None = None,
		client_factory: Callable[[], Any] | None = None,
	) -> None:
		self._session = session
		self._url = url or settings.realtime_url
		self._namespace = namespace or settings.realtime_namespace
		self._event = event or settings.realtime_event
		self._client_factory = client_factory or (lambda: socketio.AsyncClient(reconnection=False))
		self._client: Any = None

	@property
	def connected(self) -> bool:
		return self._client is not None and bool(getattr(self._client, "connected", False))

	async def subscribe(
		self,
		*,
		scope: str,
		user_id: str,
		on_event: EventHandler,
		on_status: StatusHandler,
	) -> None:
		if self._client is not None:
			await self.unsubscribe()
		token = await require_token(self._session)
		client = self._client_factory()
		namespace = self._namespace

		async def _on_change(payload: Any) -> None:
			if not isinstance(payload, dict):
				logger.debug("ignoring non-object push payload on %s", namespace)
				return
			await on_event(payload)

		async def _on_connect() -> None:
			on_status(STATUS_SUBSCRIBED, None)

		async def _on_disconnect(*_args: Any) -> None:
			on_status(STATUS_CLOSED, None)

		async def _on_connect_error(data: Any = None) -> None:
			on_status(STATUS_ERROR, str(data) if data is not None else None)

		client.on(self._event, _on_change, namespace=namespace)
		client.on("connect", _on_connect, namespace=namespace)
		client.on("disconnect", _on_disconnect, namespace=namespace)
		client.on("connect_error", _on_connect_error, namespace=namespace)
		self._client = client
		try:
			await client.connect(
				self._url,
				namespaces=[namespace],
				auth={"token": token, "scope": scope, "user_id": user_id},
				transports=["websocket"],
			)
		except SocketConnectionError as exc:
			self._client = None
			raise NetworkOrServerFailure(f"push_connect_failed:{exc}") from exc
		logger.info("push channel connected", extra={"namespace": namespace, "scope": scope})

	async def unsubscribe(self) -> None:
		client, self._client = self._client, None
		if client is None:
			return
		await client.disconnect()
		logger.info("push channel released", extra={"namespace": self._namespace})
