import os
from datetime import timedelta

import storage
from config import get_settings
from counters import today
from conftest import PNG, auth, data


# -------------------- Playlists --------------------
def make_playlist(client, user, name="Mix", is_public=True):
    r = client.post("/api/v1/playlists", headers=auth(user),
                    data={"name": name, "is_public": str(is_public).lower()},
                    files={"thumbnail": ("cover.png", PNG, "image/png")})
    assert r.status_code == 201
    return data(r)["playlist"]


def test_playlist_videos(client, db, make_user, make_video):
    owner, other = make_user("alice"), make_user("bob")
    video = make_video(owner)
    playlist = make_playlist(client, owner)
    assert playlist["thumbnail"].startswith("/static/thumbnails/")
    url = f"/api/v1/playlists/{playlist['id']}/videos/{video['_id']}"

    assert client.post(url, headers=auth(other)).status_code == 403
    assert data(client.post(url, headers=auth(owner)))["playlist"]["videos_count"] == 1
    assert data(client.post(url, headers=auth(owner)))["playlist"]["videos_count"] == 1
    fetched = data(client.get(f"/api/v1/playlists/{playlist['id']}"))["playlist"]
    assert [v["title"] for v in fetched["videos"]] == [video["title"]]

    assert data(client.delete(url, headers=auth(owner)))["playlist"]["videos_count"] == 0


def test_playlist_cap(client, monkeypatch, make_user, make_video):
    monkeypatch.setattr(get_settings(), "playlist_max_videos", 2)
    owner = make_user()
    playlist = make_playlist(client, owner)
    videos = [make_video(owner, title=f"v{i}") for i in range(3)]
    base = f"/api/v1/playlists/{playlist['id']}/videos"
    assert client.post(f"{base}/{videos[0]['_id']}", headers=auth(owner)).status_code == 200
    assert client.post(f"{base}/{videos[1]['_id']}", headers=auth(owner)).status_code == 200
    # re-adding an existing video is still fine when full
    assert client.post(f"{base}/{videos[1]['_id']}", headers=auth(owner)).status_code == 200
    r = client.post(f"{base}/{videos[2]['_id']}", headers=auth(owner))
    assert r.status_code == 400


def test_private_playlist(client, make_user):
    owner, other = make_user("alice"), make_user("bob")
    playlist = make_playlist(client, owner, is_public=False)
    url = f"/api/v1/playlists/{playlist['id']}"
    assert client.get(url, headers=auth(other)).status_code == 403
    assert client.get(url, headers=auth(owner)).status_code == 200
    assert data(client.get("/api/v1/playlists"))["playlists"] == []
    assert len(data(client.get("/api/v1/playlists/user", headers=auth(owner)))["playlists"]) == 1


def stored_path(url):
    prefix = get_settings().static_url.rstrip("/") + "/"
    return os.path.join(storage.upload_root(), *url[len(prefix):].split("/"))


def test_playlist_update_and_delete(client, db, make_user):
    owner, other = make_user("alice"), make_user("bob")
    playlist = make_playlist(client, owner)
    url = f"/api/v1/playlists/{playlist['id']}"
    assert client.patch(url, headers=auth(other), data={"name": "x"}).status_code == 403
    r = client.patch(url, headers=auth(owner), data={"name": " Renamed ", "is_public": "false"})
    updated = data(r)["playlist"]
    assert updated["name"] == "Renamed" and updated["is_public"] is False
    assert updated["thumbnail"] == playlist["thumbnail"]
    assert client.patch(url, headers=auth(owner), data={"name": "   "}).status_code == 400
    assert client.delete(url, headers=auth(owner)).status_code == 200
    assert client.get(url, headers=auth(owner)).status_code == 404
    assert db["playlist"].count_documents({"is_deleted": True}) == 1


def test_playlist_thumbnail_replaced(client, make_user):
    owner = make_user()
    playlist = make_playlist(client, owner)
    old_path = stored_path(playlist["thumbnail"])
    assert os.path.isfile(old_path)

    r = client.patch(f"/api/v1/playlists/{playlist['id']}", headers=auth(owner),
                     files={"thumbnail": ("new.png", PNG, "image/png")})
    assert r.status_code == 200
    updated = data(r)["playlist"]
    assert updated["thumbnail"] != playlist["thumbnail"]
    assert updated["name"] == "Mix"
    assert os.path.isfile(stored_path(updated["thumbnail"]))
    assert not os.path.exists(old_path)

    r = client.patch(f"/api/v1/playlists/{playlist['id']}", headers=auth(owner),
                     files={"thumbnail": ("notes.txt", b"hello", "text/plain")})
    assert r.status_code == 400


def test_playlist_hides_other_users_drafts(client, db, make_user, make_video):
    owner, other = make_user("alice"), make_user("bob")
    draft = make_video(other, title="secret draft", is_published=False)
    own_draft = make_video(owner, title="my draft", is_published=False)
    public = make_video(other, title="public")
    playlist = make_playlist(client, owner)
    base = f"/api/v1/playlists/{playlist['id']}"

    assert client.post(f"{base}/videos/{draft['_id']}", headers=auth(owner)).status_code == 404
    assert client.post(f"{base}/videos/{own_draft['_id']}", headers=auth(owner)).status_code == 200
    assert client.post(f"{base}/videos/{public['_id']}", headers=auth(owner)).status_code == 200
    assert db["playlist"].find_one()["videos"] == [own_draft["_id"], public["_id"]]

    assert [v["title"] for v in data(client.get(base, headers=auth(owner)))["playlist"]["videos"]] == [
        "my draft", "public"]
    assert [v["title"] for v in data(client.get(base))["playlist"]["videos"]] == ["public"]

    # a video unpublished after it was added stays visible to its owner only
    db["video"].update_one({"_id": public["_id"]}, {"$set": {"is_published": False}})
    assert data(client.get(base))["playlist"]["videos"] == []
    assert [v["title"] for v in data(client.get(base, headers=auth(other)))["playlist"]["videos"]] == ["public"]


# -------------------- Tags --------------------
def test_tags(client, db, make_user, make_video):
    user = make_user()
    r = client.post("/api/v1/tags", headers=auth(user), json={"name": " Music "})
    assert r.status_code == 201
    tag = data(r)["tag"]
    assert tag["name"] == "music"
    assert client.post("/api/v1/tags", headers=auth(user), json={"name": "MUSIC"}).status_code == 409

    video = make_video(user, tags=[db["tag"].find_one()["_id"]])
    assert len(data(client.get(f"/api/v1/tags/{tag['id']}/videos"))["videos"]) == 1

    client.post("/api/v1/tags", headers=auth(user), json={"name": "jazz"})
    r = client.patch(f"/api/v1/tags/{tag['id']}", headers=auth(user), json={"name": "jazz"})
    assert r.status_code == 409

    assert client.delete(f"/api/v1/tags/{tag['id']}", headers=auth(user)).status_code == 200
    assert db["video"].find_one({"_id": video["_id"]})["tags"] == []
    assert client.get(f"/api/v1/tags/{tag['id']}").status_code == 404


# -------------------- Notifications --------------------
def test_notifications(client, db, make_user, make_video):
    owner, fan = make_user("alice"), make_user("bob")
    video = make_video(owner)
    client.post(f"/api/v1/subscriptions/toggle/{owner['_id']}", headers=auth(fan))
    client.post(f"/api/v1/likes/video/{video['_id']}", headers=auth(fan))

    listed = data(client.get("/api/v1/notifications", headers=auth(owner)))
    assert listed["unread_count"] == 2
    assert {n["type"] for n in listed["notifications"]} == {"subscription", "like"}
    assert listed["notifications"][0]["from_user"]["username"] == "bob"

    first = listed["notifications"][0]["id"]
    assert client.post(f"/api/v1/notifications/{first}/read", headers=auth(fan)).status_code == 404
    assert data(client.post(f"/api/v1/notifications/{first}/read", headers=auth(owner)))["notification"]["is_read"]
    unread = data(client.get("/api/v1/notifications", headers=auth(owner), params={"is_read": "false"}))
    assert len(unread["notifications"]) == 1

    assert data(client.patch("/api/v1/notifications/all/read", headers=auth(owner)))["modified_count"] == 1
    assert client.delete(f"/api/v1/notifications/{first}", headers=auth(owner)).status_code == 200
    assert db["notification"].count_documents({}) == 1


# -------------------- Watch history --------------------
def test_watch_history_endpoints(client, make_user, make_video):
    owner, viewer = make_user("alice"), make_user("bob")
    first, second = make_video(owner, title="first"), make_video(owner, title="second")
    hidden = make_video(owner, title="hidden", is_published=False)

    for video in (first, second, first):
        assert client.post(f"/api/v1/watch-history/{video['_id']}", headers=auth(viewer)).status_code == 200
    assert client.post(f"/api/v1/watch-history/{hidden['_id']}", headers=auth(viewer)).status_code == 404

    r = client.get("/api/v1/watch-history", headers=auth(viewer))
    assert [v["title"] for v in data(r)["videos"]] == ["first", "second"]
    assert r.json()["meta"]["pagination"]["total"] == 2

    client.delete(f"/api/v1/watch-history/{first['_id']}", headers=auth(viewer))
    assert [v["title"] for v in data(client.get("/api/v1/watch-history", headers=auth(viewer)))["videos"]] == ["second"]
    client.delete("/api/v1/watch-history", headers=auth(viewer))
    assert data(client.get("/api/v1/watch-history", headers=auth(viewer)))["videos"] == []


# -------------------- Analytics --------------------
def test_video_analytics(client, make_user, make_video):
    owner, fan = make_user("alice"), make_user("bob")
    video = make_video(owner)
    vid = video["_id"]
    client.post(f"/api/v1/views/{vid}", headers=auth(fan))
    client.post(f"/api/v1/likes/video/{vid}", headers=auth(fan))
    client.post(f"/api/v1/comments/video/{vid}", headers=auth(fan), json={"content": "great"})

    assert client.get(f"/api/v1/analytics/video/{vid}", headers=auth(fan)).status_code == 403
    body = data(client.get(f"/api/v1/analytics/video/{vid}", headers=auth(owner)))
    assert body["totals"] == {"views": 1, "likes": 1, "comments": 1}
    assert len(body["analytics"]) == 1

    tomorrow = (today() + timedelta(days=1)).date().isoformat()
    body = data(client.get(f"/api/v1/analytics/video/{vid}", headers=auth(owner), params={"start_date": tomorrow}))
    assert body["analytics"] == []
    assert body["totals"] == {"views": 0, "likes": 0, "comments": 0}
    r = client.get(f"/api/v1/analytics/video/{vid}", headers=auth(owner), params={"start_date": "not-a-date"})
    assert r.status_code == 400


def test_user_analytics(client, make_user, make_video):
    owner, fan = make_user("alice"), make_user("bob")
    for title in ("a", "b"):
        video = make_video(owner, title=title)
        client.post(f"/api/v1/views/{video['_id']}", headers=auth(fan))
    body = data(client.get("/api/v1/analytics/user", headers=auth(owner)))
    assert body["totals"]["views"] == 2
    assert {b["video"]["title"] for b in body["analytics"]} == {"a", "b"}
    assert data(client.get("/api/v1/analytics/user", headers=auth(fan)))["totals"]["views"] == 0


# -------------------- Service --------------------
def test_health_and_root(client):
    r = client.get("/api/v1/health")
    assert r.status_code == 200
    assert data(r)["status"] == "ok"
    assert client.get("/").json()["success"] is True


def test_unknown_route_uses_envelope(client):
    r = client.get("/api/v1/nope")
    assert r.status_code == 404
    assert r.json()["success"] is False
    assert r.json()["data"] is None
