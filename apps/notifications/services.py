from __future__ import annotations

import logging
from typing import Any, Iterable

from asgiref.sync import async_to_sync
from channels.layers import get_channel_layer

from .models import Notification

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Central helper for creating notifications and pushing them in real time
    through the Channels layer.

    Persisting the row is the delivery contract; the push is best effort and
    its failures are only logged, so a notification never breaks the state
    change that triggered it.
    """

    @staticmethod
    def _group_name(user_id: int) -> str:
        return f"user_{int(user_id)}"

    @staticmethod
    def _serialize(notification: Notification) -> dict[str, Any]:
        return {
            "id": str(notification.id),
            "subject": notification.subject,
            "body": notification.body,
            "is_read": notification.is_read,
            "read_at": notification.read_at.isoformat() if notification.read_at else None,
            "metadata": notification.metadata or {},
            "created_at": notification.created_at.isoformat() if notification.created_at else None,
        }

    @staticmethod
    def _safe_group_send(user_id: int, payload: dict[str, Any]) -> None:
        try:
            channel_layer = get_channel_layer()
            if not channel_layer:
                return
            async_to_sync(channel_layer.group_send)(
                NotificationService._group_name(user_id),
                {"type": "notification.message", "payload": payload},
            )
        except Exception as exc:
            logger.debug("Notification WS send failed", extra={"user_id": user_id, "error": str(exc)})

    @staticmethod
    def _push(notification: Notification) -> None:
        unread = Notification.objects.filter(user_id=notification.user_id, is_read=False).count()
        NotificationService._safe_group_send(
            notification.user_id,
            {
                "type": "notification",
                "notification": NotificationService._serialize(notification),
                "unread_count": unread,
            },
        )

    @staticmethod
    def send_notification(
        *,
        user_id: int,
        subject: str,
        body: str,
        metadata: dict[str, Any] | None = None,
        ws_push: bool = True,
    ) -> Notification:
        n = Notification.objects.create(
            user_id=user_id,
            subject=subject,
            body=body,
            metadata=metadata or {},
        )
        if ws_push:
            NotificationService._push(n)
        return n

    @staticmethod
    def send_bulk_notification(
        *,
        user_ids: Iterable[int],
        subject: str,
        body: str,
        metadata: dict[str, Any] | None = None,
        ws_push: bool = True,
    ) -> list[Notification]:
        unique_ids = sorted({int(uid) for uid in user_ids if uid})
        if not unique_ids:
            return []

        created = Notification.objects.bulk_create(
            [
                Notification(user_id=uid, subject=subject, body=body, metadata=metadata or {})
                for uid in unique_ids
            ]
        )

        if ws_push:
            for n in created:
                NotificationService._push(n)
        return created
