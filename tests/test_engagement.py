import pytest
from sqlalchemy import func, select, update

from ticketshare.models.conversation import Conversation, Message
from ticketshare.models.listing import Listing
from ticketshare.models.notification import Notification
from ticketshare.models.transaction_confirmation import TransactionConfirmation
from ticketshare.services import engagement

from tests.fixtures_seed import reload


async def _inquire(client, guest, listing_id, message="is this still available?"):
    r = await client.post("/v1/inquiries", json={"listingId": listing_id, "message": message}, headers=guest["headers"])
    assert r.status_code == 200, r.text
    return r.json()["conversationId"]


@pytest.mark.asyncio
async def test_inquire_is_idempotent_per_guest(client, db_session, host, guest_a, open_listing):
    r1 = await client.post("/v1/inquiries", json={"listingId": open_listing, "message": "hi"}, headers=guest_a["headers"])
    assert r1.status_code == 200, r1.text
    assert r1.json()["exists"] is False
    assert r1.json()["type"] == "inquiry"

    r2 = await client.post("/v1/inquiries", json={"listingId": open_listing}, headers=guest_a["headers"])
    assert r2.status_code == 200
    assert r2.json() == {"conversationId": r1.json()["conversationId"], "exists": True, "type": "inquiry"}

    listing = await reload(db_session, Listing, open_listing)
    assert listing.inquiry_count == 1

    r = await client.get("/v1/inquiries", params={"listingId": open_listing})
    assert r.json() == {"count": 1}

    told = (
        await db_session.execute(
            select(func.count()).select_from(Notification).where(
                Notification.user_id == host["id"], Notification.type == "new_inquiry"
            )
        )
    ).scalar_one()
    assert told == 1


@pytest.mark.asyncio
async def test_inquire_rejects_own_listing_and_missing_id(client, host, guest_a, open_listing):
    r = await client.post("/v1/inquiries", json={"listingId": open_listing}, headers=host["headers"])
    assert r.status_code == 400

    r = await client.post("/v1/inquiries", json={}, headers=guest_a["headers"])
    assert r.status_code == 400

    r = await client.post("/v1/inquiries", json={"listingId": "lst_missing"}, headers=guest_a["headers"])
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_apply_moves_inquiry_to_pending_once(client, db_session, host, guest_a, open_listing):
    convo_id = await _inquire(client, guest_a, open_listing)

    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=host["headers"])
    assert r.status_code == 403

    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest_a["headers"])
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "conversation_type": "pending"}

    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest_a["headers"])
    assert r.status_code == 400
    assert r.json()["detail"]["currentType"] == "pending"

    convo = await reload(db_session, Conversation, convo_id)
    assert convo.applied_at is not None


@pytest.mark.asyncio
async def test_apply_requires_email_verification(client, unverified_user, open_listing):
    convo_id = await _inquire(client, unverified_user, open_listing)

    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=unverified_user["headers"])
    assert r.status_code == 403
    detail = r.json()["detail"]
    assert detail["error"] == "EMAIL_VERIFICATION_REQUIRED"
    assert detail["currentLevel"] == "unverified"


@pytest.mark.asyncio
async def test_accept_closes_listing_and_purges_other_threads(
    client, db_session, host, guest_a, guest_b, open_listing
):
    a_convo = await _inquire(client, guest_a, open_listing)
    b_convo = await _inquire(client, guest_b, open_listing)
    for convo_id, guest in ((a_convo, guest_a), (b_convo, guest_b)):
        r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest["headers"])
        assert r.status_code == 200, r.text

    r = await client.post(f"/v1/conversations/{a_convo}/accept", headers=guest_a["headers"])
    assert r.status_code == 403

    r = await client.post(f"/v1/conversations/{a_convo}/accept", headers=host["headers"])
    assert r.status_code == 200, r.text
    assert r.json()["conversation_type"] == "matched"

    listing = await reload(db_session, Listing, open_listing)
    assert listing.status == "closed"
    assert listing.available_slots == 0

    assert await reload(db_session, Conversation, b_convo) is None
    b_messages = (
        await db_session.execute(select(func.count()).select_from(Message).where(Message.conversation_id == b_convo))
    ).scalar_one()
    assert b_messages == 0

    matched = await reload(db_session, Conversation, a_convo)
    assert matched.conversation_type == "matched"
    assert matched.matched_at is not None

    txc = (
        await db_session.execute(select(TransactionConfirmation).where(TransactionConfirmation.conversation_id == a_convo))
    ).scalar_one()
    assert txc.completed_at is None

    accepted = (
        await db_session.execute(select(Notification.user_id).where(Notification.type == "application_accepted"))
    ).scalars().all()
    assert accepted == [guest_a["id"]]


@pytest.mark.asyncio
async def test_accept_requires_pending(client, host, guest_a, open_listing):
    convo_id = await _inquire(client, guest_a, open_listing)

    r = await client.post(f"/v1/conversations/{convo_id}/accept", headers=host["headers"])
    assert r.status_code == 400
    assert r.json()["detail"]["currentType"] == "inquiry"


@pytest.mark.asyncio
async def test_accept_replays_with_idempotency_key(client, host, guest_a, open_listing):
    convo_id = await _inquire(client, guest_a, open_listing)
    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest_a["headers"])
    assert r.status_code == 200

    headers = {**host["headers"], "Idempotency-Key": "accept-1"}
    r1 = await client.post(f"/v1/conversations/{convo_id}/accept", headers=headers)
    assert r1.status_code == 200, r1.text

    r2 = await client.post(f"/v1/conversations/{convo_id}/accept", headers=headers)
    assert r2.status_code == 200
    assert r2.json() == r1.json()

    r3 = await client.post(f"/v1/conversations/{convo_id}/accept", headers=host["headers"])
    assert r3.status_code == 400


@pytest.mark.asyncio
async def test_messages_and_read_receipts(client, host, guest_a, open_listing):
    convo_id = await _inquire(client, guest_a, open_listing, message="first")

    r = await client.post(f"/v1/conversations/{convo_id}/messages", json={"content": "  "}, headers=host["headers"])
    assert r.status_code == 400

    r = await client.post(f"/v1/conversations/{convo_id}/messages", json={"content": "yes!"}, headers=host["headers"])
    assert r.status_code == 201, r.text

    r = await client.get("/v1/conversations", headers=host["headers"])
    assert r.status_code == 200
    (row,) = r.json()
    assert row["isHost"] is True
    assert row["otherUserId"] == guest_a["id"]
    assert row["unreadCount"] == 1

    r = await client.get(f"/v1/conversations/{convo_id}", headers=host["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert [m["content"] for m in body["messages"]] == ["first", "yes!"]
    assert body["deadlineInfo"] is None

    r = await client.get("/v1/conversations", headers=host["headers"])
    assert r.json()[0]["unreadCount"] == 0


@pytest.mark.asyncio
async def test_conversation_is_private_to_participants(client, guest_a, guest_b, open_listing):
    convo_id = await _inquire(client, guest_a, open_listing)

    r = await client.get(f"/v1/conversations/{convo_id}", headers=guest_b["headers"])
    assert r.status_code == 403

    r = await client.post(f"/v1/conversations/{convo_id}/messages", json={"content": "hey"}, headers=guest_b["headers"])
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_accept_backs_off_when_the_listing_was_claimed_meanwhile(
    client, db_session, host, guest_a, open_listing, monkeypatch
):
    convo_id = await _inquire(client, guest_a, open_listing)
    r = await client.post(f"/v1/conversations/{convo_id}/apply", headers=guest_a["headers"])
    assert r.status_code == 200
    load_listing = engagement.get_listing_or_404

    async def selected_elsewhere(db, listing_id, **kwargs):
        listing = await load_listing(db, listing_id, **kwargs)
        await db.execute(
            update(Listing)
            .where(Listing.id == listing_id)
            .values(status="matched", available_slots=0)
            .execution_options(synchronize_session=False)
        )
        await db.commit()
        return listing

    monkeypatch.setattr(engagement, "get_listing_or_404", selected_elsewhere)

    r = await client.post(f"/v1/conversations/{convo_id}/accept", headers=host["headers"])
    assert r.status_code == 409
    assert r.json()["detail"] == "Listing was matched by another request"

    convo = await reload(db_session, Conversation, convo_id)
    assert convo.conversation_type == "pending"
    assert (await reload(db_session, Listing, open_listing)).status == "matched"
    assert (await db_session.execute(select(TransactionConfirmation))).first() is None
