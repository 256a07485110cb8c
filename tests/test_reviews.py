from datetime import timedelta

import pytest
import pytest_asyncio
from sqlalchemy import func, select, update

from ticketshare.core.db import utcnow
from ticketshare.models.conversation import Conversation
from ticketshare.models.notification import Notification
from ticketshare.models.review import Review
from ticketshare.models.user import User
from ticketshare.services.reviews import round_rating, run_auto_review_sweep

from tests.fixtures_seed import reload

CRON = {"Authorization": "Bearer test-cron"}


async def _match(client, host, guest, listing_id) -> str:
    r = await client.post(f"/v1/listings/{listing_id}/applications", json={}, headers=guest["headers"])
    assert r.status_code == 201, r.text
    r = await client.post(
        f"/v1/listings/{listing_id}/select", json={"applicationId": r.json()["id"]}, headers=host["headers"]
    )
    assert r.status_code == 200, r.text
    return r.json()["conversationId"]


@pytest_asyncio.fixture
async def completed(client, host, guest_a, open_listing):
    convo_id = await _match(client, host, guest_a, open_listing)
    for user in (host, guest_a):
        r = await client.post(f"/v1/conversations/{convo_id}/confirm", json={"action": "confirm"}, headers=user["headers"])
        assert r.status_code == 200, r.text
    return convo_id


async def _backdate(db_session, convo_id: str, days: int) -> None:
    past = utcnow() - timedelta(days=days)
    await db_session.execute(
        update(Conversation)
        .where(Conversation.id == convo_id)
        .values(host_confirmed_at=past, guest_confirmed_at=past)
    )
    await db_session.commit()


def _review(listing_id, reviewee_id, rating=4, comment="smooth handoff"):
    return {"listing_id": listing_id, "reviewee_id": reviewee_id, "rating": rating, "comment": comment}


@pytest.mark.asyncio
async def test_review_requires_completed_transaction(client, host, guest_a, open_listing):
    await _match(client, host, guest_a, open_listing)

    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"]), headers=host["headers"])
    assert r.status_code == 403


@pytest.mark.asyncio
async def test_explicit_review_updates_rating_and_notifies(
    client, db_session, host, guest_a, open_listing, completed
):
    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=4), headers=host["headers"])
    assert r.status_code == 201, r.text
    assert r.json()["is_auto"] is False

    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=5), headers=host["headers"])
    assert r.status_code == 409

    r = await client.post("/v1/reviews", json=_review(open_listing, host["id"]), headers=host["headers"])
    assert r.status_code == 400

    guest = await reload(db_session, User, guest_a["id"])
    assert guest.rating == 4.0
    assert guest.review_count == 1

    n = (
        await db_session.execute(select(Notification).where(Notification.type == "new_review"))
    ).scalar_one()
    assert n.user_id == guest_a["id"]
    assert "4-star" in n.message


@pytest.mark.asyncio
async def test_review_rating_is_bounded(client, host, guest_a, open_listing, completed):
    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=6), headers=host["headers"])
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_sweep_fills_missing_directions_once(client, db_session, host, guest_a, open_listing, completed):
    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=4), headers=host["headers"])
    assert r.status_code == 201

    # too recent: nothing to do yet
    r = await client.post("/v1/reviews/auto-complete", headers=CRON)
    assert r.status_code == 200, r.text
    assert r.json() == {"success": True, "processedConversations": 0, "createdReviews": 0}

    await _backdate(db_session, completed, days=4)

    r = await client.post("/v1/reviews/auto-complete", headers=CRON)
    assert r.json() == {"success": True, "processedConversations": 1, "createdReviews": 1}

    r = await client.post("/v1/reviews/auto-complete", headers=CRON)
    assert r.json() == {"success": True, "processedConversations": 1, "createdReviews": 0}

    reviews = (await db_session.execute(select(Review))).scalars().all()
    assert len(reviews) == 2
    auto = [rv for rv in reviews if rv.is_auto]
    assert [(rv.reviewer_id, rv.reviewee_id, rv.rating) for rv in auto] == [(guest_a["id"], host["id"], 5)]

    host_row = await reload(db_session, User, host["id"])
    guest_row = await reload(db_session, User, guest_a["id"])
    assert (host_row.rating, host_row.review_count) == (5.0, 1)
    assert (guest_row.rating, guest_row.review_count) == (4.0, 1)

    # the sweep itself is silent
    silent = (
        await db_session.execute(
            select(func.count()).select_from(Notification).where(Notification.type == "new_review")
        )
    ).scalar_one()
    assert silent == 1


@pytest.mark.asyncio
async def test_sweep_requires_cron_secret(client):
    r = await client.post("/v1/reviews/auto-complete")
    assert r.status_code == 401

    r = await client.post("/v1/reviews/auto-complete", headers={"Authorization": "Bearer nope"})
    assert r.status_code == 401


@pytest.mark.asyncio
async def test_sweep_reviews_both_directions(db_session, host, guest_a, completed):
    later = utcnow() + timedelta(days=3, minutes=1)
    result = await run_auto_review_sweep(db_session, now=later)
    await db_session.commit()
    assert result.createdReviews == 2

    pairs = (await db_session.execute(select(Review.reviewer_id, Review.reviewee_id, Review.is_auto))).all()
    assert sorted(pairs) == sorted([(host["id"], guest_a["id"], True), (guest_a["id"], host["id"], True)])

    for user_id in (host["id"], guest_a["id"]):
        user = await reload(db_session, User, user_id)
        assert (user.rating, user.review_count) == (5.0, 1)

    again = await run_auto_review_sweep(db_session, now=later)
    assert again.createdReviews == 0


@pytest.mark.asyncio
async def test_pending_and_completed_views(client, db_session, host, guest_a, open_listing, completed):
    r = await client.get("/v1/reviews/pending", headers=host["headers"])
    assert r.status_code == 200, r.text
    (item,) = r.json()
    assert item["conversationId"] == completed
    assert item["isHost"] is True
    assert item["otherUser"]["id"] == guest_a["id"]
    assert item["daysRemaining"] == 3

    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=5), headers=host["headers"])
    assert r.status_code == 201

    r = await client.get("/v1/reviews/pending", headers=host["headers"])
    assert r.json() == []
    r = await client.get("/v1/reviews/pending", headers=guest_a["headers"])
    assert len(r.json()) == 1

    r = await client.get("/v1/profile/completed", headers=host["headers"])
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["pagination"] == {"page": 1, "limit": 10, "total": 1, "totalPages": 1}
    assert body["items"][0]["myReview"]["rating"] == 5
    assert body["items"][0]["otherUser"]["rating"] == 5.0

    r = await client.get("/v1/profile/completed", headers=guest_a["headers"])
    assert r.json()["items"][0]["myReview"] is None


@pytest.mark.asyncio
async def test_user_reviews_page(client, host, guest_a, open_listing, completed):
    r = await client.post("/v1/reviews", json=_review(open_listing, guest_a["id"], rating=3), headers=host["headers"])
    assert r.status_code == 201

    r = await client.get(f"/v1/users/{guest_a['id']}/reviews")
    assert r.status_code == 200, r.text
    body = r.json()
    assert body["reviewCount"] == 1
    assert body["ratingDistribution"] == {"1": 0, "2": 0, "3": 1, "4": 0, "5": 0}
    assert body["reviews"][0]["comment"] == "smooth handoff"

    r = await client.get("/v1/users/usr_missing/reviews")
    assert r.status_code == 404


def test_round_rating_is_half_up():
    assert round_rating(4.25) == 4.3
    assert round_rating(4.24) == 4.2
    assert round_rating(13 / 3) == 4.3
