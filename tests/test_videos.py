from counters import SUBSCRIPTIONS, activate
from conftest import PNG, auth, data


def test_upload_video(client, db, make_user):
    user = make_user()
    tag_id = db["tag"].insert_one({"name": "music", "usage_count": 0}).inserted_id
    r = client.post(
        "/api/v1/videos",
        headers=auth(user),
        data={"title": " First ", "category": "Music", "tags": f"{tag_id},not-an-id", "is_published": "true",
              "duration": "12.5"},
        files={"video_file": ("clip.mp4", b"\x00\x00\x00\x18ftypmp42", "video/mp4"),
               "thumbnail": ("thumb.png", PNG, "image/png")},
    )
    assert r.status_code == 201
    video = data(r)["video"]
    assert video["title"] == "First"
    assert video["tags"] == [str(tag_id)]
    assert video["duration"] == 12.5
    assert video["owner"]["username"] == "alice"
    assert video["published_at"]
    assert db["tag"].find_one({"_id": tag_id})["usage_count"] == 1


def test_upload_rejects_wrong_file_type(client, make_user):
    r = client.post("/api/v1/videos", headers=auth(make_user()), data={"title": "x"},
                    files={"video_file": ("a.png", PNG, "image/png")})
    assert r.status_code == 400


def test_list_only_published(client, make_user, make_video):
    user = make_user()
    make_video(user, title="Cats playing")
    make_video(user, title="Cats draft", is_published=False)
    make_video(user, title="Dogs")
    r = client.get("/api/v1/videos", params={"search": "cats"})
    body = r.json()
    assert [v["title"] for v in body["data"]["videos"]] == ["Cats playing"]
    assert body["meta"]["pagination"] == {"current": 1, "pageSize": 10, "total": 1, "totalPages": 1}


def test_list_pagination(client, make_user, make_video):
    user = make_user()
    for i in range(5):
        make_video(user, title=f"v{i}")
    body = client.get("/api/v1/videos", params={"page": 2, "limit": 2}).json()
    assert len(body["data"]["videos"]) == 2
    assert body["meta"]["pagination"]["totalPages"] == 3
    assert client.get("/api/v1/videos", params={"page": 0}).status_code == 400
    assert client.get("/api/v1/videos", params={"sort_by": "title"}).status_code == 400


def test_get_video_logs_view_once(client, db, make_user, make_video):
    owner, viewer = make_user("alice"), make_user("bob")
    video = make_video(owner)
    url = f"/api/v1/videos/{video['_id']}"
    assert data(client.get(url, headers=auth(viewer)))["video"]["views"] == 1
    assert data(client.get(url, headers=auth(viewer)))["video"]["views"] == 1
    assert data(client.get(url))["video"]["views"] == 2
    assert db["video"].find_one({"_id": video["_id"]})["views"] == 2


def test_unpublished_video_visible_to_owner_only(client, make_user, make_video):
    owner, other = make_user("alice"), make_user("bob")
    video = make_video(owner, is_published=False)
    url = f"/api/v1/videos/{video['_id']}"
    assert client.get(url, headers=auth(other)).status_code == 404
    assert client.get(url, headers=auth(owner)).status_code == 200


def test_subscribers_only_video(client, db, make_user, make_video):
    owner, fan, stranger = make_user("alice"), make_user("bob"), make_user("carol")
    video = make_video(owner, subscribers_only=True)
    url = f"/api/v1/videos/{video['_id']}"
    assert client.get(url).status_code == 401
    assert client.get(url, headers=auth(stranger)).status_code == 403
    activate(db, SUBSCRIPTIONS, fan["_id"], owner["_id"])
    assert client.get(url, headers=auth(fan)).status_code == 200
    assert client.get(url, headers=auth(owner)).status_code == 200


def test_invalid_video_id(client):
    r = client.get("/api/v1/videos/not-an-id")
    assert r.status_code == 400
    assert r.json()["message"] == "Invalid video id"


def test_update_requires_ownership(client, db, make_user, make_video):
    owner, other = make_user("alice"), make_user("bob")
    video = make_video(owner)
    url = f"/api/v1/videos/{video['_id']}"
    r = client.patch(url, headers=auth(other), json={"title": "hijacked"})
    assert r.status_code == 403
    r = client.patch(url, headers=auth(owner), json={"title": "Renamed", "category": "Gaming"})
    assert r.status_code == 200
    stored = db["video"].find_one({"_id": video["_id"]})
    assert (stored["title"], stored["category"]) == ("Renamed", "Gaming")


def test_update_tags_adjusts_usage(client, db, make_user, make_video):
    owner = make_user()
    t1 = db["tag"].insert_one({"name": "one", "usage_count": 1}).inserted_id
    t2 = db["tag"].insert_one({"name": "two", "usage_count": 0}).inserted_id
    video = make_video(owner, tags=[t1])
    r = client.patch(f"/api/v1/videos/{video['_id']}", headers=auth(owner), json={"tags": [str(t2)]})
    assert r.status_code == 200
    assert db["tag"].find_one({"_id": t1})["usage_count"] == 0
    assert db["tag"].find_one({"_id": t2})["usage_count"] == 1


def test_toggle_publish(client, make_user, make_video):
    owner = make_user()
    video = make_video(owner, is_published=False)
    url = f"/api/v1/videos/{video['_id']}/publish"
    assert data(client.post(url, headers=auth(owner)))["is_published"] is True
    assert data(client.post(url, headers=auth(owner)))["is_published"] is False
    assert client.post(url, headers=auth(make_user("bob"))).status_code == 403


def test_delete_video_cascades(client, db, make_user, make_video):
    owner, fan = make_user("alice"), make_user("bob")
    video = make_video(owner)
    vid = video["_id"]
    like_url = f"/api/v1/likes/video/{vid}"
    for _ in range(3):
        client.post(like_url, headers=auth(fan))
    comment = data(client.post(f"/api/v1/comments/video/{vid}", headers=auth(fan), json={"content": "nice"}))["comment"]
    client.post(f"/api/v1/likes/comment/{comment['id']}", headers=auth(owner))
    client.get(f"/api/v1/videos/{vid}", headers=auth(fan))
    client.post(f"/api/v1/watch-history/{vid}", headers=auth(fan))
    playlist_id = db["playlist"].insert_one({"owner": owner["_id"], "name": "p", "videos": [vid],
                                             "is_public": True, "is_deleted": False}).inserted_id
    unliked_at = db["like"].find_one({"target.id": vid, "is_deleted": True})["deleted_at"]

    assert client.delete(f"/api/v1/videos/{vid}", headers=auth(fan)).status_code == 403
    assert client.delete(f"/api/v1/videos/{vid}", headers=auth(owner)).status_code == 200

    assert db["video"].count_documents({"_id": vid}) == 0
    # like and comment rows are soft deleted, earlier history included
    assert db["like"].count_documents({"target.id": vid}) == 2
    assert db["like"].count_documents({"target.id": vid, "is_deleted": False}) == 0
    assert db["like"].find_one({"target.id": vid, "deleted_at": unliked_at}) is not None
    assert db["like"].find_one({"target.kind": "comment"})["is_deleted"] is True
    assert db["comment"].count_documents({"target.id": vid}) == 1
    assert db["comment"].count_documents({"target.id": vid, "is_deleted": False}) == 0
    assert db["view"].count_documents({"video": vid}) == 0
    assert db["analytics"].count_documents({"video": vid}) == 0
    assert db["playlist"].find_one({"_id": playlist_id})["videos"] == []
    assert db["user"].find_one({"_id": fan["_id"]})["watch_history"] == []
    assert client.get(f"/api/v1/videos/{vid}").status_code == 404


def test_channel_profile(client, db, make_user, make_video):
    owner, fan = make_user("alice"), make_user("bob")
    make_video(owner)
    make_video(owner, is_published=False)
    activate(db, SUBSCRIPTIONS, fan["_id"], owner["_id"])
    channel = data(client.get(f"/api/v1/users/{owner['_id']}", headers=auth(fan)))["channel"]
    assert channel["subscribers_count"] == 1
    assert channel["videos_count"] == 1
    assert channel["is_subscribed"] is True
    assert "email" not in channel
    assert len(data(client.get(f"/api/v1/users/{owner['_id']}/videos"))["videos"]) == 1
    assert len(data(client.get("/api/v1/users/my-videos", headers=auth(owner)))["videos"]) == 2


def test_search_users(client, make_user):
    make_user("alice")
    make_user("alfred")
    make_user("bob")
    r = client.get("/api/v1/users/search", params={"q": "al"})
    assert sorted(u["username"] for u in data(r)["users"]) == ["alfred", "alice"]


def test_update_profile(client, make_user):
    user = make_user("alice")
    make_user("bob")
    r = client.patch("/api/v1/users/me", headers=auth(user), json={"email": "bob@example.com"})
    assert r.status_code == 409
    r = client.patch("/api/v1/users/me", headers=auth(user), json={"bio": "hello", "full_name": " Alice A "})
    assert r.status_code == 200
    assert data(r)["user"]["full_name"] == "Alice A"
    assert data(r)["user"]["bio"] == "hello"
