from collections import deque
from dataclasses import dataclass, field
from time import time
from typing import Literal

from personal_cfo.logger import get_logger

logger = get_logger(__name__)

NotificationKind = Literal["success", "error", "warning", "info"]

DEFAULT_MAX_PENDING = 50


@dataclass(frozen=True)
class Notification:
    kind: NotificationKind
    message: str
    created_at: float = field(default_factory=time)


class Notifier:
    """Toast queue for one session. Oldest entries drop once the queue is full."""

    def __init__(self, max_pending: int = DEFAULT_MAX_PENDING) -> None:
        self._pending: deque[Notification] = deque(maxlen=max_pending)

    def __len__(self) -> int:
        return len(self._pending)

    def _push(self, kind: NotificationKind, message: str) -> Notification:
        notification = Notification(kind=kind, message=message)
        self._pending.append(notification)
        return notification

    def success(self, message: str) -> Notification:
        logger.info("[NOTIFY] %s", message)
        return self._push("success", message)

    def error(self, message: str) -> Notification:
        logger.error("[NOTIFY] %s", message)
        return self._push("error", message)

    def warning(self, message: str) -> Notification:
        logger.warning("[NOTIFY] %s", message)
        return self._push("warning", message)

    def info(self, message: str) -> Notification:
        logger.info("[NOTIFY] %s", message)
        return self._push("info", message)

    def pending(self) -> list[Notification]:
        return list(self._pending)

    def drain(self) -> list[Notification]:
        drained = list(self._pending)
        self._pending.clear()
        return drained
