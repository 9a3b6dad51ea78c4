"""Tests for the owner notification client."""

import json

import httpx

from claims_portal.services.notifications import NotificationClient

FUNCTION_URL = "https://proj.example.co/functions/v1/send-notification"


def notification_client(handler) -> NotificationClient:
    http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return NotificationClient(url=FUNCTION_URL, anon_key="anon", http_client=http_client)


class TestNotificationClient:
    async def test_send_posts_payload(self):
        received = {}

        def handler(request: httpx.Request) -> httpx.Response:
            received["url"] = str(request.url)
            received["payload"] = json.loads(request.content)
            return httpx.Response(200, json={"sent": 1})

        client = notification_client(handler)

        result = await client.send("owner-1", "Claim Approved", "Your claim CLM-1 has been approved.", "approved")

        assert result == {"ok": True, "data": {"sent": 1}}
        assert received["url"] == FUNCTION_URL
        assert received["payload"] == {
            "targetUserId": "owner-1",
            "title": "Claim Approved",
            "body": "Your claim CLM-1 has been approved.",
            "status": "approved",
        }

    async def test_defaults_for_missing_title_and_body(self):
        payloads = []

        def handler(request: httpx.Request) -> httpx.Response:
            payloads.append(json.loads(request.content))
            return httpx.Response(204)

        result = await notification_client(handler).send("owner-1", None, None)

        assert result == {"ok": True, "data": None}
        assert payloads[0]["title"] == "Notification"
        assert payloads[0]["body"] == ""

    async def test_missing_owner_is_not_sent(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        assert await notification_client(handler).send(None, "t", "b") == {"error": "missing_userId"}

    async def test_error_status_is_returned(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, text="boom")

        result = await notification_client(handler).send("owner-1", "t", "b")

        assert result == {"ok": False, "status": 500, "data": "boom"}

    async def test_transport_error_is_returned(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("connection refused", request=request)

        result = await notification_client(handler).send("owner-1", "t", "b")

        assert result["ok"] is False
        assert "connection refused" in result["error"]

    async def test_dispatch_completes_on_close(self):
        sent = []

        def handler(request: httpx.Request) -> httpx.Response:
            sent.append(json.loads(request.content)["targetUserId"])
            return httpx.Response(200, json={})

        client = notification_client(handler)
        client.dispatch("owner-1", "Claim Under Review", "body", "review")
        client.dispatch("owner-2", "Claim Under Review", "body", "review")

        await client.close()

        assert sorted(sent) == ["owner-1", "owner-2"]
