from conftest import PASSWORD, PNG, auth, data


def register(client, username="alice", email=None, avatar=True):
    files = {"avatar": ("me.png", PNG, "image/png")} if avatar else {}
    form = {
        "username": username,
        "email": email or f"{username}@example.com",
        "full_name": username.capitalize(),
        "password": PASSWORD,
    }
    return client.post("/api/v1/auth/register", data=form, files=files or None)


def test_register_returns_envelope_and_tokens(client, db):
    r = register(client, username="Alice")
    assert r.status_code == 201
    body = r.json()
    assert body["success"] is True
    assert body["statusCode"] == 201
    user = body["data"]["user"]
    assert user["username"] == "alice"
    assert user["avatar"].startswith("/static/avatars/")
    assert "password_hash" not in user and "refresh_token" not in user
    assert body["data"]["access_token"] and body["data"]["refresh_token"]
    assert db["user"].find_one({"username": "alice"})["refresh_token"] == body["data"]["refresh_token"]


def test_register_duplicate_is_conflict(client):
    register(client)
    r = register(client, email="other@example.com")
    assert r.status_code == 409
    assert r.json()["success"] is False


def test_register_requires_avatar(client):
    r = register(client, avatar=False)
    assert r.status_code == 400
    assert r.json()["message"] == "Avatar file is required"


def test_register_rejects_bad_username(client, db):
    r = register(client, username="not valid!")
    assert r.status_code == 400
    assert r.json()["errors"]
    assert db["user"].count_documents({}) == 0


def test_login(client, make_user):
    make_user("alice")
    r = client.post("/api/v1/auth/login", json={"email": "alice@example.com", "password": PASSWORD})
    assert r.status_code == 200
    assert data(r)["user"]["username"] == "alice"
    assert "access_token" in r.cookies


def test_login_failures(client, make_user):
    make_user("alice")
    assert client.post("/api/v1/auth/login", json={"username": "bob", "password": "x"}).status_code == 404
    assert client.post("/api/v1/auth/login", json={"username": "alice", "password": "wrong"}).status_code == 401
    r = client.post("/api/v1/auth/login", json={"password": "x"})
    assert r.status_code == 400
    assert r.json()["message"] == "Username or email is required"


def test_refresh_token_rotation(client, make_user):
    make_user("alice")
    first = data(client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD}))
    client.cookies.clear()

    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": first["refresh_token"]})
    assert r.status_code == 200
    second = data(r)
    assert second["refresh_token"] != first["refresh_token"]
    client.cookies.clear()

    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": first["refresh_token"]})
    assert r.status_code == 401


def test_refresh_rejects_access_token(client, make_user):
    user = make_user("alice")
    token = auth(user)["Authorization"].split()[1]
    r = client.post("/api/v1/auth/refresh-token", json={"refresh_token": token})
    assert r.status_code == 401


def test_logout_clears_refresh_token(client, db, make_user):
    user = make_user("alice")
    r = client.post("/api/v1/auth/logout", headers=auth(user))
    assert r.status_code == 200
    assert "refresh_token" not in db["user"].find_one({"_id": user["_id"]})


def test_private_routes_need_a_token(client):
    r = client.get("/api/v1/users/me")
    assert r.status_code == 401
    assert r.json() == {
        "statusCode": 401,
        "data": None,
        "message": "Authentication required",
        "success": False,
    }
    r = client.get("/api/v1/users/me", headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


def test_cookie_authentication(client, make_user):
    make_user("alice")
    client.post("/api/v1/auth/login", json={"username": "alice", "password": PASSWORD})
    r = client.get("/api/v1/users/me")
    assert r.status_code == 200
    assert data(r)["user"]["username"] == "alice"


def test_change_password(client, make_user):
    user = make_user("alice")
    r = client.post("/api/v1/users/change-password", headers=auth(user),
                    json={"old_password": "nope", "new_password": "newpassword1"})
    assert r.status_code == 401
    r = client.post("/api/v1/users/change-password", headers=auth(user),
                    json={"old_password": PASSWORD, "new_password": "newpassword1"})
    assert r.status_code == 200
    r = client.post("/api/v1/auth/login", json={"username": "alice", "password": "newpassword1"})
    assert r.status_code == 200
