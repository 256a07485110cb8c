import json
from datetime import timedelta

import httpx
import pytest
import pytest_asyncio
from sqlalchemy import select, update

from ticketshare.core.db import as_utc, utcnow
from ticketshare.models.delivery import Delivery, DeliveryAttempt
from ticketshare.models.outbox import OutboxEvent
from ticketshare.services.http_client import WebhookHttpClient
from ticketshare.services.outbox_dispatcher import dispatch_outbox, requeue_expired_leases
from ticketshare.services.retry import next_retry_at
from worker.dispatcher import claim_due_deliveries
from worker.publish import publish_delivery
from worker.tasks import handle_outbox_event

from tests.fixtures_seed import reload

WEBHOOK_URL = "https://discord.com/api/webhooks/42/token"


class FakeSender:
    def __init__(self, fail: bool = False):
        self.calls: list[tuple[str, list, str]] = []
        self.fail = fail

    def __call__(self, name: str, args: list, queue: str):
        if self.fail:
            raise RuntimeError("broker down")
        self.calls.append((name, args, queue))


def _client(handler) -> WebhookHttpClient:
    return WebhookHttpClient(transport=httpx.MockTransport(handler))


@pytest_asyncio.fixture
async def inquiry(client, host, guest_a, open_listing):
    r = await client.put("/v1/webhooks", json={"webhookUrl": WEBHOOK_URL}, headers=host["headers"])
    assert r.status_code == 200, r.text
    r = await client.post("/v1/inquiries", json={"listingId": open_listing}, headers=guest_a["headers"])
    assert r.status_code == 200, r.text
    return r.json()["conversationId"]


async def _delivery_for_inquiry(db_session) -> Delivery:
    sender = FakeSender()
    assert await dispatch_outbox(db_session, send_task=sender) == 1
    (_, (outbox_id, lease_id), _) = sender.calls[0]
    assert await handle_outbox_event(db_session, outbox_id, lease_id) is True
    return (await db_session.execute(select(Delivery))).scalar_one()


@pytest.mark.asyncio
async def test_dispatch_leases_and_enqueues(db_session, inquiry):
    sender = FakeSender()
    assert await dispatch_outbox(db_session, send_task=sender) == 1

    (name, (outbox_id, lease_id), queue) = sender.calls[0]
    assert name == "worker.tasks.process_outbox_event"
    assert queue == "outbox"

    ev = await reload(db_session, OutboxEvent, outbox_id)
    assert ev.status == "processing"
    assert ev.lease_id == lease_id
    assert ev.attempts == 1

    # nothing left to claim
    assert await dispatch_outbox(db_session, send_task=sender) == 0


@pytest.mark.asyncio
async def test_enqueue_failure_returns_event_to_pending(db_session, inquiry):
    assert await dispatch_outbox(db_session, send_task=FakeSender(fail=True)) == 0

    ev = (await db_session.execute(select(OutboxEvent))).scalar_one()
    await db_session.refresh(ev)
    assert ev.status == "pending"
    assert ev.lease_id is None
    assert ev.last_error.startswith("enqueue failed")


@pytest.mark.asyncio
async def test_expired_lease_is_requeued(db_session, inquiry):
    await db_session.execute(
        update(OutboxEvent).values(
            status="processing", lease_id="stale", lease_expires_at=utcnow() - timedelta(minutes=1)
        )
    )
    await db_session.commit()

    # hold the row with the timestamps the driver hands back
    ev = (
        await db_session.execute(select(OutboxEvent).execution_options(populate_existing=True))
    ).scalar_one()
    assert ev.lease_expires_at is not None

    assert await requeue_expired_leases(db_session) == 1
    await db_session.commit()

    await db_session.refresh(ev)
    assert ev.status == "pending"
    assert ev.lease_id is None
    assert ev.last_error == "requeued: lease expired"


@pytest.mark.asyncio
async def test_outbox_event_fans_out_once(db_session, host, inquiry):
    sender = FakeSender()
    await dispatch_outbox(db_session, send_task=sender)
    (_, (outbox_id, lease_id), _) = sender.calls[0]

    assert await handle_outbox_event(db_session, outbox_id, "someone-else") is False
    assert await handle_outbox_event(db_session, outbox_id, lease_id) is True
    assert await handle_outbox_event(db_session, outbox_id, lease_id) is False

    deliveries = (await db_session.execute(select(Delivery))).scalars().all()
    assert len(deliveries) == 1
    assert deliveries[0].user_id == host["id"]
    assert deliveries[0].status == "pending"

    ev = await reload(db_session, OutboxEvent, outbox_id)
    assert ev.status == "done"
    assert ev.processed_at is not None


@pytest.mark.asyncio
async def test_no_webhook_means_no_delivery(client, db_session, guest_a, open_listing):
    r = await client.post("/v1/inquiries", json={"listingId": open_listing}, headers=guest_a["headers"])
    assert r.status_code == 200

    sender = FakeSender()
    await dispatch_outbox(db_session, send_task=sender)
    (_, (outbox_id, lease_id), _) = sender.calls[0]
    assert await handle_outbox_event(db_session, outbox_id, lease_id) is True

    assert (await db_session.execute(select(Delivery))).first() is None


@pytest.mark.asyncio
async def test_publish_success_posts_discord_embed(db_session, inquiry):
    d = await _delivery_for_inquiry(db_session)
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    client = _client(handler)
    try:
        await publish_delivery(db_session, d.id, client=client)
    finally:
        await client.aclose()
    await db_session.commit()

    (request,) = seen
    assert str(request.url) == WEBHOOK_URL
    assert request.headers["X-Request-Id"] == d.id
    embed = json.loads(request.content)["embeds"][0]
    assert embed["title"] == "New inquiry"
    assert embed["url"].endswith(f"/chat/{inquiry}")

    d = await reload(db_session, Delivery, d.id)
    assert d.status == "success"
    assert d.attempts == 1
    assert d.last_success_at is not None

    attempts = (await db_session.execute(select(DeliveryAttempt))).scalars().all()
    assert [a.status for a in attempts] == ["success"]
    assert "token" not in str(attempts[0].request)


@pytest.mark.asyncio
async def test_rate_limited_delivery_waits_for_retry_after(db_session, inquiry):
    d = await _delivery_for_inquiry(db_session)
    before = utcnow()

    client = _client(lambda request: httpx.Response(429, headers={"Retry-After": "600"}, json={"retry_after": 600}))
    try:
        await publish_delivery(db_session, d.id, client=client)
    finally:
        await client.aclose()
    await db_session.commit()

    d = await reload(db_session, Delivery, d.id)
    assert d.status == "failed"
    assert d.retryable is True
    assert d.dead_lettered_at is None
    assert as_utc(d.next_retry_at) >= before + timedelta(seconds=600)

    # not due yet
    assert await claim_due_deliveries(db_session) == []


@pytest.mark.asyncio
async def test_permanent_failure_dead_letters(db_session, inquiry):
    d = await _delivery_for_inquiry(db_session)

    client = _client(lambda request: httpx.Response(404, json={"message": "Unknown Webhook"}))
    try:
        await publish_delivery(db_session, d.id, client=client)
    finally:
        await client.aclose()
    await db_session.commit()

    d = await reload(db_session, Delivery, d.id)
    assert d.status == "dead_lettered"
    assert d.status_detail == "HTTP_404"
    assert d.dead_lettered_at is not None


@pytest.mark.asyncio
async def test_retries_stop_at_max_attempts(db_session, inquiry):
    d = await _delivery_for_inquiry(db_session)
    d.attempts = 4
    await db_session.commit()

    client = _client(lambda request: httpx.Response(503))
    try:
        await publish_delivery(db_session, d.id, client=client)
    finally:
        await client.aclose()
    await db_session.commit()

    d = await reload(db_session, Delivery, d.id)
    assert d.attempts == 5
    assert d.status == "dead_lettered"


@pytest.mark.asyncio
async def test_deactivated_webhook_dead_letters(client, db_session, host, inquiry):
    d = await _delivery_for_inquiry(db_session)
    r = await client.delete("/v1/webhooks", headers=host["headers"])
    assert r.status_code == 200

    await publish_delivery(db_session, d.id)
    await db_session.commit()

    d = await reload(db_session, Delivery, d.id)
    assert d.status == "dead_lettered"
    assert d.status_detail == "NO_WEBHOOK"


@pytest.mark.asyncio
async def test_due_deliveries_are_claimed(db_session, inquiry):
    d = await _delivery_for_inquiry(db_session)

    assert await claim_due_deliveries(db_session) == [d.id]
    await db_session.commit()
    assert await claim_due_deliveries(db_session) == []


def test_next_retry_at_prefers_longer_retry_after():
    now = utcnow()
    assert next_retry_at(now, 1, "3600") >= now + timedelta(seconds=3600)
    assert next_retry_at(now, 1, "Wed, 21 Oct 2015 07:28:00 GMT") <= now + timedelta(seconds=10 + 30)
    assert next_retry_at(now, 1) >= now + timedelta(seconds=10)


@pytest.mark.asyncio
async def test_internal_dispatch_requires_admin_key(client):
    r = await client.post("/v1/internal/outbox/dispatch")
    assert r.status_code == 403

    r = await client.post("/v1/internal/outbox/dispatch", headers={"X-Internal-Admin-Key": "wrong"})
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_http_client_reports_timing_and_retry_after():
    responses = iter([httpx.Response(204), httpx.Response(429, headers={"Retry-After": "30"})])
    client = _client(lambda request: next(responses))
    try:
        ok = await client.post_json(url=WEBHOOK_URL, json_body={"content": "hi"}, request_id="dlv_1")
        limited = await client.post_json(url=WEBHOOK_URL, json_body={"content": "hi"})
    finally:
        await client.aclose()

    assert ok.ok is True
    assert ok.detail == {}
    assert ok.elapsed_ms is not None and ok.elapsed_ms >= 0

    assert limited.ok is False
    assert limited.retryable is True
    assert limited.error_code == "HTTP_429"
    assert limited.retry_after == "30"
    assert limited.elapsed_ms is not None
