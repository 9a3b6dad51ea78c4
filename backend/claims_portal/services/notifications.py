"""
Push notifications to claim owners through the platform's edge function.

Delivery is best effort: failures are logged and returned, never raised and
never retried, so a broken notification path cannot fail a review action.
"""

import asyncio
import json
import logging
from typing import Any, Dict, Optional, Set

import httpx

from claims_portal.core.config import settings

logger = logging.getLogger(__name__)


class NotificationClient:
    """Client for the notification dispatch function."""

    def __init__(
        self,
        url: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: int = settings.notification_timeout,
        http_client: Optional[httpx.AsyncClient] = None,
    ):
        self.url = url or settings.notification_url
        anon_key = anon_key if anon_key is not None else settings.backend_anon_key

        self.client = http_client or httpx.AsyncClient(
            headers={
                "Content-Type": "application/json",
                "Authorization": f"Bearer {anon_key}",
            },
            timeout=httpx.Timeout(timeout=timeout),
        )
        self._pending: Set[asyncio.Task] = set()

    async def close(self):
        """Wait for in-flight notifications, then close the HTTP client."""
        if self._pending:
            await asyncio.gather(*self._pending, return_exceptions=True)
        await self.client.aclose()

    async def send(
        self,
        user_id: Optional[str],
        title: Optional[str],
        body: Optional[str],
        status: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Send one notification.

        Args:
            user_id: Claim owner to notify
            title: Notification title
            body: Notification text
            status: Status tag (approved, rejected, review)

        Returns:
            ``{"ok": True, "data": ...}`` on success, ``{"ok": False, ...}`` on
            failure, or ``{"error": "missing_userId"}`` when there is no owner
        """
        if not user_id:
            logger.warning("Notification skipped: claim has no owner")
            return {"error": "missing_userId"}

        payload = {
            "targetUserId": user_id,
            "title": title or "Notification",
            "body": body or "",
            "status": status,
        }

        try:
            response = await self.client.post(self.url, json=payload)
        except httpx.RequestError as e:
            logger.warning(f"Notification to {user_id} failed: {str(e)}")
            return {"ok": False, "error": str(e)}

        try:
            data = response.json() if response.content else None
        except json.JSONDecodeError:
            data = response.text

        if response.status_code >= 400:
            logger.warning(f"Notification to {user_id} failed: {response.status_code} {data}")
            return {"ok": False, "status": response.status_code, "data": data}

        logger.info(f"Notification '{payload['title']}' sent to {user_id}")
        return {"ok": True, "data": data}

    def dispatch(
        self,
        user_id: Optional[str],
        title: Optional[str],
        body: Optional[str],
        status: Optional[str] = None,
    ) -> asyncio.Task:
        """Schedule ``send`` without waiting for it."""
        task = asyncio.create_task(self.send(user_id, title, body, status))
        self._pending.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.warning(f"Notification task failed: {task.exception()}")


# Global client instance
_notification_client: Optional[NotificationClient] = None


def get_notification_client() -> NotificationClient:
    global _notification_client

    if _notification_client is None:
        _notification_client = NotificationClient()

    return _notification_client


async def close_notification_client() -> None:
    global _notification_client

    if _notification_client is not None:
        await _notification_client.close()
        _notification_client = None
