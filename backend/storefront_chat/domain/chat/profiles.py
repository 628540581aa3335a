"""Owner profile lookups for conversations surfaced to admins."""

from __future__ import annotations

import logging
from typing import Dict, Optional, Protocol

from .errors import ChatError
from .models import UserProfile

logger = logging.getLogger(__name__)


class ProfileSource(Protocol):
	async def get_user_profile(self, user_id: str) -> UserProfile:
		...

	async def query_user_profile(self, user_id: str) -> Optional[UserProfile]:
		...


class ProfileResolver:
	"""Primary lookup, then the direct query, then an "Unknown User" placeholder.

	Resolved profiles are cached for the lifetime of the session; placeholders
	are not, so a later lookup can still succeed.
	"""

	def __init__(self, source: ProfileSource) -> None:
		self._source = source
		self._cache: Dict[str, UserProfile] = {}

	async def resolve(self, user_id: str) -> UserProfile:
		user_id = str(user_id)
		cached = self._cache.get(user_id)
		if cached is not None:
			return cached
		profile = await self._lookup(user_id)
		if profile is None:
			logger.warning("no profile found for conversation owner", extra={"user_id": user_id})
			return UserProfile.unknown(user_id)
		self._cache[user_id] = profile
		return profile

	def remember(self, profile: UserProfile) -> None:
		if not profile.is_placeholder:
			self._cache[str(profile.id)] = profile

	def clear(self) -> None:
		self._cache.clear()

	async def _lookup(self, user_id: str) -> Optional[UserProfile]:
		try:
			return await self._source.get_user_profile(user_id)
		except ChatError as exc:
			logger.info("primary profile lookup failed: %s", exc.reason)
		try:
			return await self._source.query_user_profile(user_id)
		except ChatError as exc:
			logger.info("direct profile lookup failed: %s", exc.reason)
		return None
