"""
NOTIFICATION TESTS

Outbox bounds and webhook delivery; a failing webhook never raises.
"""
import json

import httpx
import pytest

from notifications import CompositeNotifier, InMemoryNotifier, WebhookNotifier

pytestmark = pytest.mark.asyncio(loop_scope="function")


def _raising(error):
    def handler(request):
        raise error
    return httpx.MockTransport(handler)


class TestInMemoryNotifier:

    async def test_outbox_is_bounded_newest_last(self):
        notifier = InMemoryNotifier(size=2)
        for message in ["one", "two", "three"]:
            await notifier.notify("u1", message)

        assert [n.message for n in notifier.outbox("u1")] == ["two", "three"]
        assert notifier.outbox("u2") == []

    async def test_unknown_severity_becomes_info(self):
        notifier = InMemoryNotifier()
        await notifier.notify("u1", "Hi", "shouting")
        assert notifier.outbox("u1")[0].severity == "info"


class TestWebhookNotifier:

    async def test_posts_payload(self):
        seen = []

        def handler(request):
            seen.append(json.loads(request.content))
            return httpx.Response(204)

        notifier = WebhookNotifier(url="https://hooks.test/notify", transport=httpx.MockTransport(handler))

        assert await notifier.notify("u1", "Goal is live", "success") is True
        assert seen == [{"owner": "u1", "message": "Goal is live", "severity": "success"}]

    async def test_disabled_without_url(self):
        assert await WebhookNotifier(url="").notify("u1", "Hi") is False

    @pytest.mark.parametrize("error", [
        httpx.InvalidURL("Invalid URL"),
        httpx.ConnectError("refused"),
        ValueError("unexpected"),
    ])
    async def test_failures_stay_inside(self, error):
        """
        SCENARIO: delivery fails, including errors outside httpx.HTTPError
        EXPECTED: notify returns False instead of raising
        """
        notifier = WebhookNotifier(url="https://hooks.test/notify", transport=_raising(error))

        assert await notifier.notify("u1", "Hi", "warning") is False

    async def test_composite_keeps_outbox_when_webhook_breaks(self):
        outbox = InMemoryNotifier()
        broken = WebhookNotifier(url="https://hooks.test/notify", transport=_raising(httpx.InvalidURL("Invalid URL")))
        notifier = CompositeNotifier(broken, outbox)

        assert await notifier.notify("u1", "Certificate could not be generated", "warning") is True
        assert [n.message for n in outbox.outbox("u1")] == ["Certificate could not be generated"]
