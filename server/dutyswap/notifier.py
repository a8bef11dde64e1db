from __future__ import annotations

import logging
from typing import Optional, Protocol

from .logging_utils import log_event
from .models import NotificationType
from .storage import Storage

logger = logging.getLogger("dutyswap.notifier")


class Notifier(Protocol):
    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        ref_id: Optional[str] = None,
    ) -> None: ...


class StorageNotifier:
    """Fire-and-forget: writes a notification row; delivery failures are logged, never raised."""

    def __init__(self, storage: Storage) -> None:
        self._storage = storage

    async def notify(
        self,
        user_id: str,
        type: NotificationType,
        title: str,
        message: str,
        ref_id: Optional[str] = None,
    ) -> None:
        try:
            await self._storage.insert_notification(user_id, type, title, message, ref_id)
        except Exception as e:
            log_event(
                logger,
                "notification_failed",
                level=logging.WARNING,
                user_id=user_id,
                type=type.value,
                ref_id=ref_id,
                error=str(e),
            )
            return
        log_event(logger, "notification_sent", user_id=user_id, type=type.value, ref_id=ref_id)
