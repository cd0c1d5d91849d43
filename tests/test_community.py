from types import SimpleNamespace

import pymongo.errors
import stripe
from bson import ObjectId

import main


def comment(client, post_id, text="Nice question", title=None):
    return client.post("/add-comment", json={
        "postId": post_id,
        "postTitle": title,
        "commenterName": "Reader",
        "commenterEmail": "reader@example.com",
        "comment": text,
    })


def test_root_is_plaintext(client):
    response = client.get("/")
    assert response.text == "ama is running"
    assert response.headers["content-type"].startswith("text/plain")


class TestComments:

    def test_comment_bumps_comment_count(self, client, add_post, login):
        post_id = add_post(title="Why pytest")
        comment(client, post_id, title="Why pytest")
        comment(client, post_id, text="Fixtures", title="Why pytest")

        login()
        assert client.get(f"/post-details/{post_id}").json()["commentCount"] == 2
        assert len(client.get(f"/comments/{post_id}").json()) == 2
        by_title = client.get("/specific-comments/Why pytest").json()
        assert [c["comment"] for c in by_title] == ["Fixtures", "Nice question"]
        assert by_title[0]["postId"] == post_id

    def test_comment_with_malformed_post_id(self, client):
        assert comment(client, "nope").status_code == 400


class TestAnnouncements:

    def test_append_and_list(self, client):
        for title in ("Welcome", "Rules"):
            response = client.post("/add-announcement", json={
                "authorName": "Admin", "title": title, "description": "Read me",
            })
            assert response.json()["acknowledged"] is True

        assert [a["title"] for a in client.get("/all-announcement").json()] == ["Rules", "Welcome"]


class TestFeedback:

    def test_add_list_delete(self, client):
        feedback_id = client.post("/add-feedback", json={"feedback": "Great site", "rating": 5}).json()["insertedId"]
        assert [f["feedback"] for f in client.get("/stored-feedback").json()] == ["Great site"]

        assert client.delete(f"/delete-feedback/{feedback_id}").json()["deletedCount"] == 1
        assert client.get("/stored-feedback").json() == []

    def test_rating_out_of_range(self, client):
        assert client.post("/add-feedback", json={"feedback": "meh", "rating": 9}).status_code == 422

    def test_report_on_comment(self, client):
        target = str(ObjectId())
        client.post("/add-feedback", json={"feedback": "spam", "commentId": target})
        assert client.get("/stored-feedback").json()[0]["commentId"] == target


def test_statistics(client, add_post):
    client.post("/users", json={"email": "ada@example.com", "name": "Ada"})
    post_id = add_post()
    add_post(title="second")
    comment(client, post_id)

    assert client.get("/statistics").json() == {"users": 1, "posts": 2, "comments": 1}


class TestPayments:

    def test_payment_intent_in_cents(self, client, monkeypatch):
        calls = []

        def fake_create(**kwargs):
            calls.append(kwargs)
            return SimpleNamespace(client_secret="pi_123_secret_456")

        monkeypatch.setattr(stripe.PaymentIntent, "create", fake_create)
        response = client.post("/create-payment-intent", json={"price": 9.99})

        assert response.json() == {"clientSecret": "pi_123_secret_456"}
        assert calls[0]["amount"] == 999
        assert calls[0]["currency"] == "usd"
        assert calls[0]["api_key"] == "sk_test_123"

    def test_stripe_error_is_bad_gateway(self, client, monkeypatch):
        def failing_create(**kwargs):
            raise stripe.StripeError("card network down")

        monkeypatch.setattr(stripe.PaymentIntent, "create", failing_create)
        assert client.post("/create-payment-intent", json={"price": 10}).status_code == 502

    def test_price_must_be_positive(self, client):
        assert client.post("/create-payment-intent", json={"price": 0}).status_code == 422


def test_database_failure_is_service_unavailable(client, monkeypatch):
    async def unreachable(db):
        raise pymongo.errors.ServerSelectionTimeoutError("no servers available")

    monkeypatch.setattr(main, "collect_statistics", unreachable)
    response = client.get("/statistics")
    assert response.status_code == 503
    assert response.json() == {"detail": "database unavailable"}
