# workflow/notifications.py
"""Notification intents and the dispatchers that deliver them."""
from __future__ import annotations

import html
import queue
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Tuple

import httpx
from loguru import logger


class NotificationReason(str, Enum):
    CREATED_AVAILABLE = "created_available"
    SEQUENTIAL_DEPENDENCY_COMPLETED = "sequential_dependency_completed"
    UNBLOCKED = "unblocked"
    RETURNED = "returned"


_REASON_TEXT = {
    NotificationReason.CREATED_AVAILABLE: ("✨", "A new item is ready for you to work on"),
    NotificationReason.SEQUENTIAL_DEPENDENCY_COMPLETED: (
        "⏭️", "The previous steps are approved and you can start on this item now"),
    NotificationReason.UNBLOCKED: ("🔓", "The item has been unblocked and is ready to work on"),
    NotificationReason.RETURNED: ("🔄", "The item was returned and is waiting for your corrections"),
}


@dataclass(frozen=True)
class NotificationIntent:
    user_ids: Tuple[int, ...]
    item_title: str
    project_name: str
    reason: NotificationReason
    is_subtask: bool = False
    parent_title: Optional[str] = None

    def to_payload(self) -> dict:
        return {
            "userIds": list(self.user_ids),
            "itemTitle": self.item_title,
            "projectName": self.project_name,
            "reason": self.reason.value,
            "isSubtask": self.is_subtask,
            "parentTitle": self.parent_title,
            "message": render_message(self),
        }


def render_message(intent: NotificationIntent) -> str:
    """HTML text for chat channels (Telegram-style markup)."""
    kind = "subtask" if intent.is_subtask else "task"
    icon, reason_text = _REASON_TEXT.get(intent.reason, ("🔔", ""))
    title = html.escape(intent.item_title or "Untitled item")
    project = html.escape(intent.project_name or "Unnamed project")
    parent = ""
    if intent.is_subtask and intent.parent_title:
        parent = f"\n📋 <b>Parent task:</b> {html.escape(intent.parent_title)}"
    return (
        f"{icon} <b>ITEM AVAILABLE</b>\n\n"
        f"{'🔸' if intent.is_subtask else '📋'} <b>{kind.capitalize()}:</b> {title}{parent}\n"
        f"🏢 <b>Project:</b> {project}\n\n"
        f"💡 <b>Reason:</b> {reason_text}"
    )


class LogDispatcher:
    """Used when no delivery channel is configured."""

    def notify(self, intent: NotificationIntent) -> None:
        logger.info("Notify users {} about '{}' ({})", list(intent.user_ids), intent.item_title, intent.reason.value)


class WebhookDispatcher:
    """
    POSTs each intent as JSON to a webhook from a background thread.

    notify() only enqueues. Delivery is at-most-once: failures are logged
    and dropped, and a full queue drops the new intent.
    """

    def __init__(self, url: str, *, timeout: float = 5.0, queue_size: int = 256,
                 client: Optional[httpx.Client] = None):
        self.url = url
        self._client = client or httpx.Client(timeout=timeout)
        self._queue: "queue.Queue[Optional[NotificationIntent]]" = queue.Queue(maxsize=queue_size)
        self._worker = threading.Thread(target=self._run, name="notify-webhook", daemon=True)
        self._closed = False
        self._worker.start()

    def notify(self, intent: NotificationIntent) -> None:
        if self._closed:
            logger.warning("Dispatcher closed, dropping intent for '{}'", intent.item_title)
            return
        try:
            self._queue.put_nowait(intent)
        except queue.Full:
            logger.warning("Notification queue full, dropping intent for '{}'", intent.item_title)

    def _run(self) -> None:
        while True:
            intent = self._queue.get()
            try:
                if intent is None:
                    return
                self._deliver(intent)
            except Exception:
                logger.exception("Webhook worker failed on '{}'; continuing", intent.item_title)
            finally:
                self._queue.task_done()

    def _deliver(self, intent: NotificationIntent) -> bool:
        try:
            response = self._client.post(self.url, json=intent.to_payload())
        except httpx.HTTPError as e:
            logger.warning("Webhook delivery for '{}' failed: {}", intent.item_title, e)
            return False
        if response.is_success:
            logger.info("Notified users {} about '{}'", list(intent.user_ids), intent.item_title)
            return True
        logger.warning("Webhook answered HTTP {} for '{}'", response.status_code, intent.item_title)
        return False

    def close(self, timeout: float = 5.0) -> None:
        """Deliver what is queued, then stop the worker. Waits at most about ``2 * timeout``."""
        if self._closed:
            return
        self._closed = True
        try:
            self._queue.put(None, timeout=timeout)
        except queue.Full:
            logger.warning("Notification queue still full at close, {} intents undelivered", self._queue.qsize())
        self._worker.join(timeout)
        self._client.close()


def build_dispatcher(settings):
    if settings.notify_webhook_url:
        return WebhookDispatcher(
            settings.notify_webhook_url,
            timeout=settings.notify_timeout_seconds,
            queue_size=settings.notify_queue_size,
        )
    return LogDispatcher()
