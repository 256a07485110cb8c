from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from sqlalchemy import func, select

from ticketshare.core.db import as_utc
from ticketshare.models.audit_log import AuditLog
from ticketshare.models.conversation import Conversation
from ticketshare.models.listing import Listing
from ticketshare.models.notification import Notification
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.services.confirmations import deadline_info

from tests.fixtures_seed import reload


@pytest_asyncio.fixture
async def matched(client, host, guest_a, open_listing):
    r = await client.post(f"/v1/listings/{open_listing}/applications", json={}, headers=guest_a["headers"])
    assert r.status_code == 201, r.text
    r = await client.post(
        f"/v1/listings/{open_listing}/select", json={"applicationId": r.json()["id"]}, headers=host["headers"]
    )
    assert r.status_code == 200, r.text
    return r.json()["conversationId"]


async def _confirm(client, user, convo_id, action="confirm"):
    return await client.post(f"/v1/conversations/{convo_id}/confirm", json={"action": action}, headers=user["headers"])


@pytest.mark.asyncio
async def test_both_confirm_completes_once(client, db_session, host, guest_a, matched):
    r = await _confirm(client, host, matched)
    assert r.status_code == 200, r.text
    state = r.json()["conversation"]
    assert state["hostConfirmedAt"] is not None
    assert state["guestConfirmedAt"] is None
    assert state["bothConfirmed"] is False
    assert state["completedAt"] is None

    r = await _confirm(client, guest_a, matched)
    assert r.status_code == 200, r.text
    state = r.json()["conversation"]
    assert state["bothConfirmed"] is True
    assert state["completedAt"] is not None

    r = await _confirm(client, host, matched)
    assert r.status_code == 400
    assert r.json()["detail"] == "Transaction already completed"

    r = await _confirm(client, guest_a, matched, action="cancel")
    assert r.status_code == 400

    done = (
        await db_session.execute(
            select(Notification.user_id).where(Notification.type == "transaction_completed")
        )
    ).scalars().all()
    assert sorted(done) == sorted([host["id"], guest_a["id"]])

    audited = (
        await db_session.execute(
            select(func.count()).select_from(AuditLog).where(AuditLog.action == "transaction.completed")
        )
    ).scalar_one()
    assert audited == 1

    # conversation mirrors the confirmation timestamps
    convo = await reload(db_session, Conversation, matched)
    assert convo.host_confirmed_at is not None
    assert convo.guest_confirmed_at is not None


@pytest.mark.asyncio
async def test_inquiry_to_handoff_scenario(client, db_session, host, guest_a, open_listing):
    r = await client.post("/v1/inquiries", json={"listingId": open_listing, "message": "hi"}, headers=guest_a["headers"])
    convo_id = r.json()["conversationId"]
    assert r.json()["type"] == "inquiry"

    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest_a["headers"])
    assert r.json()["conversation_type"] == "pending"

    r = await client.post(f"/v1/listings/{open_listing}/applications", json={}, headers=guest_a["headers"])
    app_id = r.json()["id"]
    r = await client.post(f"/v1/listings/{open_listing}/select", json={"applicationId": app_id}, headers=host["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["conversationId"] == convo_id

    listing = await reload(db_session, Listing, open_listing)
    assert listing.status == "matched"

    txc = (
        await db_session.execute(select(TransactionConfirmation).where(TransactionConfirmation.conversation_id == convo_id))
    ).scalar_one()
    window = as_utc(txc.deadline_at) - as_utc(txc.created_at)
    assert timedelta(days=7) - timedelta(minutes=1) < window < timedelta(days=7) + timedelta(minutes=1)

    r = await _confirm(client, host, convo_id)
    assert r.json()["conversation"]["bothConfirmed"] is False
    r = await _confirm(client, guest_a, convo_id)
    assert r.json()["conversation"]["bothConfirmed"] is True

    txc = await reload(db_session, TransactionConfirmation, txc.id)
    assert txc.completed_at is not None


@pytest.mark.asyncio
async def test_cancel_clears_own_confirmation(client, db_session, host, guest_a, matched):
    r = await _confirm(client, guest_a, matched)
    assert r.json()["conversation"]["guestConfirmedAt"] is not None

    r = await _confirm(client, guest_a, matched, action="cancel")
    assert r.status_code == 200, r.text
    assert r.json()["conversation"]["guestConfirmedAt"] is None

    r = await _confirm(client, host, matched)
    assert r.json()["conversation"]["bothConfirmed"] is False

    txc = (
        await db_session.execute(select(TransactionConfirmation).where(TransactionConfirmation.conversation_id == matched))
    ).scalar_one()
    assert txc.completed_at is None

    convo = await reload(db_session, Conversation, matched)
    assert convo.guest_confirmed_at is None


@pytest.mark.asyncio
async def test_confirm_guards(client, guest_a, guest_b, host, open_listing, matched):
    r = await _confirm(client, host, matched, action="maybe")
    assert r.status_code == 400

    r = await _confirm(client, guest_b, matched)
    assert r.status_code == 403

    r = await _confirm(client, host, "cnv_missing")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_confirm_requires_matched_conversation(client, host, guest_b, open_listing, matched):
    r = await client.post("/v1/inquiries", json={"listingId": open_listing}, headers=guest_b["headers"])
    inquiry_id = r.json()["conversationId"]

    r = await _confirm(client, host, inquiry_id)
    assert r.status_code == 400
    assert r.json()["detail"]["currentType"] == "inquiry"


@pytest.mark.asyncio
async def test_conversation_detail_reports_deadline(client, host, matched):
    r = await client.get(f"/v1/conversations/{matched}", headers=host["headers"])
    assert r.status_code == 200, r.text
    info = r.json()["deadlineInfo"]
    assert info["daysRemaining"] == 7
    assert info["isExpired"] is False
    assert info["autoCompleted"] is False


def test_deadline_info_rounds_up_and_expires():
    now = datetime(2025, 8, 1, 12, 0, tzinfo=timezone.utc)
    txc = TransactionConfirmation(deadline_at=now + timedelta(days=2, hours=1), auto_completed=False)
    info = deadline_info(txc, now=now)
    assert info.daysRemaining == 3
    assert info.isExpired is False

    txc = TransactionConfirmation(deadline_at=now, auto_completed=False)
    info = deadline_info(txc, now=now)
    assert info.daysRemaining == 0
    assert info.isExpired is True

    # naive timestamps (sqlite) are read as UTC
    txc = TransactionConfirmation(deadline_at=(now - timedelta(hours=1)).replace(tzinfo=None), auto_completed=False)
    assert deadline_info(txc, now=now).isExpired is True
