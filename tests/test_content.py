"""Magazine catalog endpoints and premium-content gating."""

import pytest

from magsub.services.content.service import public_image_url

STORAGE = "https://identity.test"
BUCKET = "vibe-coding-storage"


def auth(token):
    return {"Authorization": f"Bearer {token}"}


def article(title="Rust in 2026", **overrides):
    body = {
        "category": "dev",
        "title": title,
        "description": "What changed this year",
        "content": "Full premium body",
        "tags": ["rust", "systems"],
        "imageUrl": "covers/rust.png",
    }
    body.update(overrides)
    return body


@pytest.fixture
def published(content_client):
    resp = content_client.post("/magazines", json=article(), headers=auth("token-bob"))
    assert resp.status_code == 201
    return resp.json()


@pytest.mark.parametrize(
    ("image_url", "expected"),
    [
        ("covers/a.png", f"{STORAGE}/storage/v1/object/public/{BUCKET}/covers/a.png"),
        ("/covers/a.png", f"{STORAGE}/storage/v1/object/public/{BUCKET}/covers/a.png"),
        (
            f"https://old.example.co/storage/v1/object/public/{BUCKET}/covers/a.png",
            f"{STORAGE}/storage/v1/object/public/{BUCKET}/covers/a.png",
        ),
        ("https://images.example.com/a.png", "https://images.example.com/a.png"),
        ("", ""),
        (None, None),
    ],
)
def test_public_image_url(image_url, expected):
    assert public_image_url(image_url, STORAGE, BUCKET) == expected


def test_create_magazine_records_author(published):
    assert published["title"] == "Rust in 2026"
    assert published["content"] == "Full premium body"
    assert published["image_url"].endswith(f"/public/{BUCKET}/covers/rust.png")
    assert published["id"]


def test_create_magazine_requires_bearer(content_client):
    assert content_client.post("/magazines", json=article()).status_code == 401


def test_create_magazine_missing_field_is_400(content_client):
    body = article()
    del body["title"]

    resp = content_client.post("/magazines", json=body, headers=auth("token-bob"))

    assert resp.status_code == 400
    assert "title" in resp.json()["error"]


def test_list_newest_first_without_bodies(content_client, clock):
    for title in ("first", "second", "third"):
        content_client.post("/magazines", json=article(title), headers=auth("token-bob"))
        clock.advance(minutes=1)

    resp = content_client.get("/magazines", params={"limit": 2})

    assert resp.status_code == 200
    items = resp.json()
    assert [item["title"] for item in items] == ["third", "second"]
    assert all("content" not in item for item in items)


def test_detail_locked_for_anonymous_reader(content_client, published):
    body = content_client.get(f"/magazines/{published['id']}").json()

    assert body["locked"] is True
    assert body["content"] is None
    assert body["title"] == "Rust in 2026"


def test_detail_locked_for_free_reader(content_client, published):
    body = content_client.get(f"/magazines/{published['id']}", headers=auth("token-alice")).json()

    assert body["locked"] is True
    assert body["content"] is None


def test_detail_unlocked_for_subscriber(content_client, published, seed_paid, clock):
    seed_paid("pay-1", "user-alice", start_at=clock.now)

    body = content_client.get(f"/magazines/{published['id']}", headers=auth("token-alice")).json()

    assert body["locked"] is False
    assert body["content"] == "Full premium body"


def test_detail_missing_is_404(content_client):
    resp = content_client.get("/magazines/does-not-exist")

    assert resp.status_code == 404
    assert resp.json() == {"success": False, "error": "magazine not found"}


def test_me_returns_profile_and_subscription(content_client, seed_paid, clock):
    seed_paid("pay-1", "user-alice", start_at=clock.now)

    body = content_client.get("/me", headers=auth("token-alice")).json()

    assert body == {
        "userId": "user-alice",
        "profileImage": "https://cdn.example.com/alice.png",
        "name": "Alice Kim",
        "email": "alice@example.com",
        "joinDate": "2025.07",
        "isSubscribed": True,
        "status": "subscribed",
        "transactionKey": "pay-1",
    }


def test_me_falls_back_to_email_name(content_client):
    body = content_client.get("/me", headers=auth("token-bob")).json()

    assert body["name"] == "bob"
    assert body["profileImage"] is None
    assert body["isSubscribed"] is False


def test_me_requires_bearer(content_client):
    assert content_client.get("/me").status_code == 401
