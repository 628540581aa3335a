"""Session collaborator: who is signed in and which bearer token to send.

Identity itself is owned by an external provider; the chat core only asks for
the current user and an access token, and never re-authenticates silently.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Optional, Protocol

from storefront_chat.domain.chat.errors import AuthenticationUnavailable
from storefront_chat.domain.chat.models import Actor


@dataclass(slots=True)
class AuthenticatedUser:
	id: str
	is_admin: bool = False
	email: Optional[str] = None
	display_name: Optional[str] = None

	def to_actor(self) -> Actor:
		return Actor(user_id=str(self.id), is_admin=self.is_admin)


class SessionProvider(Protocol):
	async def current_user(self) -> Optional[AuthenticatedUser]:
		...

	async def access_token(self) -> Optional[str]:
		...


class StaticSession:
	"""Session backed by a user and token handed over by the identity provider."""

	def __init__(self, user: Optional[AuthenticatedUser] = None, token: Optional[str] = None) -> None:
		self._user = user
		self._token = token

	async def current_user(self) -> Optional[AuthenticatedUser]:
		return self._user

	async def access_token(self) -> Optional[str]:
		return self._token

	def update_token(self, token: Optional[str]) -> None:
		self._token = token

	def sign_out(self) -> None:
		self._user = None
		self._token = None


async def require_token(provider: SessionProvider) -> str:
	token = await provider.access_token()
	if not token or not token.strip():
		raise AuthenticationUnavailable("missing_access_token")
	return token.strip()


async def require_actor(provider: SessionProvider) -> Actor:
	user = await provider.current_user()
	if user is None:
		raise AuthenticationUnavailable("no_current_user")
	return user.to_actor()


def bearer_headers(token: str) -> Dict[str, str]:
	return {"Authorization": f"Bearer {token}"}
