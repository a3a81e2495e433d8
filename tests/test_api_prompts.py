"""Tests for prompt and image API endpoints."""

from conftest import make_image

PNG = ("photo.png", make_image(), "image/png")


def _create(client, content="A cyberpunk alley", **kwargs):
    return client.post("/api/v1/prompts", data={"content": content, **kwargs})


class TestPromptAPI:
    def test_create_prompt(self, client):
        resp = _create(client)
        assert resp.status_code == 201
        data = resp.json()
        assert data["content"] == "A cyberpunk alley"
        assert data["user_id"] == "user-1"
        assert data["tags"] == []

    def test_create_with_tags_and_image(self, client, seed):
        scifi = seed.tag("sci-fi")
        city = seed.tag("city")
        resp = client.post(
            "/api/v1/prompts",
            data={"content": "A cyberpunk alley", "tag_ids": [scifi, city]},
            files=[("images", PNG)],
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["tags"] == ["city", "sci-fi"]
        assert data["image_url"].endswith("-photo.jpg")

    def test_create_empty_content(self, client):
        assert _create(client, content="  ").status_code == 422

    def test_create_rejects_gif(self, client, mock_db):
        resp = client.post(
            "/api/v1/prompts",
            data={"content": "x"},
            files=[("images", ("a.gif", b"GIF89a", "image/gif"))],
        )
        assert resp.status_code == 422
        assert "image/gif" in resp.json()["detail"]
        assert mock_db.rows("prompts") == []

    def test_create_partial_failure(self, client, mock_db, seed):
        scifi = seed.tag("sci-fi")
        mock_db.fail_on.add("insert prompt_tags")
        resp = _create(client, tag_ids=[scifi])
        assert resp.status_code == 502
        detail = resp.json()["detail"]
        assert detail["step"] == "insert_tag_links"
        assert detail["completed"] == ["insert_prompt"]

    def test_get_prompt(self, client, seed):
        scifi = seed.tag("sci-fi")
        pid = seed.prompt("Moon base", tag_ids=[scifi])
        resp = client.get(f"/api/v1/prompts/{pid}")
        assert resp.status_code == 200
        data = resp.json()
        assert data["content"] == "Moon base"
        assert [t["name"] for t in data["tags"]] == ["sci-fi"]
        assert data["images"] == []

    def test_get_not_found(self, client):
        assert client.get("/api/v1/prompts/nonexistent").status_code == 404

    def test_get_other_users_prompt(self, client, seed):
        pid = seed.prompt("theirs", user_id="user-2")
        assert client.get(f"/api/v1/prompts/{pid}").status_code == 404

    def test_update_prompt(self, client, seed):
        a, b = seed.tag("a"), seed.tag("b")
        pid = seed.prompt("old", tag_ids=[a])
        resp = client.put(f"/api/v1/prompts/{pid}", json={"content": "new", "tag_ids": [b]})
        assert resp.status_code == 200
        data = resp.json()
        assert data["content"] == "new"
        assert [t["id"] for t in data["tags"]] == [b]

    def test_update_rejects_empty_content(self, client, seed):
        pid = seed.prompt("old")
        assert client.put(f"/api/v1/prompts/{pid}", json={"content": ""}).status_code == 422

    def test_update_unknown_tag(self, client, seed):
        pid = seed.prompt("old")
        resp = client.put(f"/api/v1/prompts/{pid}", json={"tag_ids": ["nope"]})
        assert resp.status_code == 422

    def test_delete_prompt(self, client, seed, mock_db):
        pid = seed.prompt("x")
        resp = client.delete(f"/api/v1/prompts/{pid}")
        assert resp.status_code == 204
        assert mock_db.rows("prompts") == []

    def test_double_delete_throttled(self, client, seed, mock_db):
        pid = seed.prompt("x")
        client.delete(f"/api/v1/prompts/{pid}")
        resp = client.delete(f"/api/v1/prompts/{pid}")
        assert resp.status_code == 429
        assert resp.json()["detail"] == "Please wait…"
        assert resp.headers["Retry-After"] == "2"
        assert mock_db.count("delete", "prompts") == 1

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "healthy"


class TestImageAPI:
    def test_add_and_list_images(self, client, seed):
        pid = seed.prompt("x")
        resp = client.post(f"/api/v1/prompts/{pid}/images", files={"image": PNG})
        assert resp.status_code == 201
        path = resp.json()["path"]

        images = client.get(f"/api/v1/prompts/{pid}/images").json()
        assert [i["path"] for i in images] == [path]
        assert client.get(f"/api/v1/prompts/{pid}").json()["image_url"] == path

    def test_list_images_missing_prompt(self, client):
        assert client.get("/api/v1/prompts/missing/images").status_code == 404

    def test_remove_image(self, client, seed):
        pid = seed.prompt("x", image_url="user-1/a.jpg")
        image_id = seed.image(pid, "user-1/a.jpg")
        assert client.delete(f"/api/v1/images/{image_id}").status_code == 204
        assert client.get(f"/api/v1/prompts/{pid}").json()["image_url"] is None

    def test_signed_url(self, client):
        resp = client.get("/api/v1/images/signed", params={"ref": "user-1/a.jpg"})
        assert resp.status_code == 200
        assert resp.json()["url"].startswith("https://storage.test/prompt-images/user-1/a.jpg")

    def test_signed_url_pass_through(self, client, mock_db):
        ref = "https://cdn.example.com/a.jpg"
        resp = client.get("/api/v1/images/signed", params={"ref": ref})
        assert resp.json()["url"] == ref
        assert mock_db.calls == []

    def test_signed_url_other_owner(self, client):
        resp = client.get("/api/v1/images/signed", params={"ref": "user-2/a.jpg"})
        assert resp.status_code == 404

    def test_signed_url_rejects_traversal(self, client, mock_db):
        for ref in ("user-1/../user-2/secret.jpg", "user-1/./a.jpg", "user-1//a.jpg"):
            resp = client.get("/api/v1/images/signed", params={"ref": ref})
            assert resp.status_code == 404, ref
        assert mock_db.calls == []

    def test_signed_url_failure_is_null(self, client, mock_db):
        mock_db.fail_on.add("sign")
        resp = client.get("/api/v1/images/signed", params={"ref": "user-1/a.jpg"})
        assert resp.status_code == 200
        assert resp.json()["url"] is None


class TestAuth:
    def test_missing_token(self, app, client):
        from prompt_vault.api.deps import get_session

        app.dependency_overrides.pop(get_session)
        assert client.get("/api/v1/tags").status_code == 401

    def test_invalid_token(self, app, client):
        from prompt_vault.api.deps import get_session

        app.dependency_overrides.pop(get_session)
        resp = client.get("/api/v1/tags", headers={"Authorization": "Bearer bogus"})
        assert resp.status_code == 401

    def test_valid_token(self, app, client, mock_db, seed):
        from prompt_vault.api.deps import get_session

        app.dependency_overrides.pop(get_session)
        mock_db.tokens["good"] = "user-1"
        seed.tag("city")
        resp = client.get("/api/v1/tags", headers={"Authorization": "Bearer good"})
        assert resp.status_code == 200
        assert [t["name"] for t in resp.json()] == ["city"]


class TestLogContext:
    def test_session_binds_user_for_async_handlers(self, mock_db):
        import structlog
        from fastapi import Depends, FastAPI
        from fastapi.testclient import TestClient

        from prompt_vault.api.deps import get_session
        from prompt_vault.db.client import get_supabase_client

        app = FastAPI()

        @app.get("/context")
        async def context(session=Depends(get_session)):
            return structlog.contextvars.get_contextvars()

        app.dependency_overrides[get_supabase_client] = lambda: mock_db
        mock_db.tokens["good"] = "user-1"

        resp = TestClient(app).get("/context", headers={"Authorization": "Bearer good"})
        assert resp.status_code == 200
        assert resp.json() == {"user_id": "user-1"}
