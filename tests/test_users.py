import asyncio

from bson import ObjectId


def create(client, email="ada@example.com", name="Ada Lovelace"):
    return client.post("/users", json={"email": email, "name": name})


def test_create_user_is_idempotent(client, db):
    first = create(client)
    second = create(client, name="Someone Else")

    assert first.json()["insertedId"] is not None
    assert second.json() == {"message": "user already exists", "insertedId": None}
    assert asyncio.run(db.users.count_documents({"email": "ada@example.com"})) == 1


def test_new_user_defaults(client):
    create(client)
    user = client.get("/user/ada@example.com").json()
    assert user["name"] == "Ada Lovelace"
    assert user["role"] == "user"
    assert user["membership"] == "Free"
    assert user["postLimit"] == 5


def test_unknown_user_is_null(client):
    assert client.get("/user/nobody@example.com").json() is None


def test_upgrade_removes_post_limit(client):
    create(client)
    response = client.post("/upgrade/ada@example.com")
    assert response.json()["modifiedCount"] == 1

    user = client.get("/user/ada@example.com").json()
    assert user["membership"] == "Member"
    assert user["postLimit"] is None


def test_make_admin(client):
    user_id = create(client).json()["insertedId"]
    assert client.post(f"/make-admin/{user_id}").json()["matchedCount"] == 1
    assert client.get("/user/ada@example.com").json()["role"] == "admin"

    assert client.post(f"/make-admin/{ObjectId()}").json()["matchedCount"] == 0


def test_manage_and_search_users(client):
    create(client, "ada@example.com", "Ada Lovelace")
    create(client, "grace@example.com", "Grace Hopper")
    create(client, "alan@example.com", "Alan Turing")

    assert len(client.get("/manage-users").json()) == 3
    assert len(client.get("/manage-users?pages=2&size=2").json()) == 1

    found = client.get("/search-users?keyword=HOP").json()
    assert [u["email"] for u in found] == ["grace@example.com"]
    assert len(client.get("/search-users").json()) == 3


def test_manage_users_without_paging_returns_everyone(client):
    for n in range(12):
        create(client, f"user{n}@example.com", f"User {n}")

    assert len(client.get("/manage-users").json()) == 12
    assert len(client.get("/manage-users?size=5").json()) == 5
    assert len(client.get("/manage-users?pages=2").json()) == 2
