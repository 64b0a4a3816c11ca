# tests/test_notifications.py
import json
import threading
import time

import httpx

from config import Settings
from workflow.notifications import (
    LogDispatcher, NotificationIntent, NotificationReason, WebhookDispatcher, build_dispatcher,
    render_message,
)


def _intent(**kw):
    base = dict(user_ids=(3,), item_title="Write <copy>", project_name="Website & Co",
                reason=NotificationReason.SEQUENTIAL_DEPENDENCY_COMPLETED, is_subtask=True,
                parent_title="Launch")
    base.update(kw)
    return NotificationIntent(**base)


def test_payload_shape():
    payload = _intent().to_payload()
    assert payload["userIds"] == [3]
    assert payload["reason"] == "sequential_dependency_completed"
    assert payload["isSubtask"] is True
    assert payload["parentTitle"] == "Launch"
    assert set(payload) == {"userIds", "itemTitle", "projectName", "reason", "isSubtask", "parentTitle", "message"}


def test_render_message_escapes_html():
    text = render_message(_intent())
    assert "Write &lt;copy&gt;" in text
    assert "Website &amp; Co" in text
    assert "Parent task:" in text
    leaf = render_message(_intent(is_subtask=False, parent_title=None, reason=NotificationReason.RETURNED))
    assert "Parent task:" not in leaf
    assert "returned" in leaf


def test_webhook_posts_json():
    seen = []

    def handler(request):
        seen.append(json.loads(request.content))
        return httpx.Response(200)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher("https://hooks.example.com/notify", client=client)
    dispatcher.notify(_intent())
    dispatcher.notify(_intent(item_title="Second"))
    dispatcher.close(timeout=5)
    assert [p["itemTitle"] for p in seen] == ["Write <copy>", "Second"]


def test_webhook_failures_are_swallowed():
    calls = []

    def handler(request):
        calls.append(request.url.path)
        if len(calls) == 1:
            raise httpx.ConnectError("refused", request=request)
        return httpx.Response(503)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher("https://hooks.example.com/notify", client=client)
    assert dispatcher._deliver(_intent()) is False
    assert dispatcher._deliver(_intent()) is False
    dispatcher.close(timeout=5)
    dispatcher.notify(_intent())
    assert len(calls) == 2


def test_build_dispatcher_picks_channel():
    assert isinstance(build_dispatcher(Settings()), LogDispatcher)
    hooked = build_dispatcher(Settings(notify_webhook_url="https://hooks.example.com/x", notify_queue_size=4))
    try:
        assert isinstance(hooked, WebhookDispatcher)
        assert hooked.url == "https://hooks.example.com/x"
    finally:
        hooked.close(timeout=1)


def test_worker_survives_unexpected_errors():
    delivered = []

    def handler(request):
        if not delivered:
            delivered.append(None)
            raise ValueError("broken serializer")
        delivered.append(json.loads(request.content)["itemTitle"])
        return httpx.Response(200)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher("https://hooks.example.com/notify", client=client)
    dispatcher.notify(_intent(item_title="first"))
    dispatcher.notify(_intent(item_title="second"))
    dispatcher.close(timeout=5)
    assert delivered == [None, "second"]
    assert not dispatcher._worker.is_alive()


def test_close_does_not_hang_on_a_full_queue():
    release = threading.Event()

    def handler(request):
        release.wait(5)
        return httpx.Response(200)

    client = httpx.Client(transport=httpx.MockTransport(handler))
    dispatcher = WebhookDispatcher("https://hooks.example.com/notify", client=client, queue_size=1)
    dispatcher.notify(_intent(item_title="in flight"))
    # wait until the worker has taken the first intent, then fill the queue
    deadline = time.monotonic() + 5
    while dispatcher._queue.qsize() and time.monotonic() < deadline:
        time.sleep(0.01)
    dispatcher.notify(_intent(item_title="queued"))
    started = time.monotonic()
    dispatcher.close(timeout=0.2)
    assert time.monotonic() - started < 2
    release.set()
