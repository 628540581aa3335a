"""Transient user-facing notifications (toasts) raised by chat actions."""

from __future__ import annotations

import logging
import uuid
from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Deque, List, Optional

from .models import now_utc

logger = logging.getLogger(__name__)

Listener = Callable[["Notification"], None]


@dataclass
class Notification:
    id: str
    title: str
    description: str
    variant: str  # "default" or "destructive"
    created_at: datetime

    @property
    def is_error(self) -> bool:
        return self.variant == "destructive"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "variant": self.variant,
            "created_at": self.created_at.isoformat(),
        }


class NotificationCenter:
    """Keeps the most recent notifications and fans them out to subscribers."""

    def __init__(self, *, capacity: int = 50) -> None:
        self._items: Deque[Notification] = deque(maxlen=capacity)
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    def success(self, title: str, description: str) -> Notification:
        return self._push(title, description, "default")

    def error(self, title: str, description: str) -> Notification:
        return self._push(title, description, "destructive")

    @property
    def items(self) -> List[Notification]:
        return list(self._items)

    def errors(self) -> List[Notification]:
        return [item for item in self._items if item.is_error]

    def latest(self) -> Optional[Notification]:
        return self._items[-1] if self._items else None

    def clear(self) -> None:
        self._items.clear()

    def _push(self, title: str, description: str, variant: str) -> Notification:
        notification = Notification(
            id=str(uuid.uuid4()),
            title=title,
            description=description,
            variant=variant,
            created_at=now_utc(),
        )
        self._items.append(notification)
        for listener in list(self._listeners):
            try:
                listener(notification)
            except Exception:
                logger.exception("notification listener failed")
        return notification
