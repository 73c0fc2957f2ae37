"""
API tests for the generation endpoints and health checks, with a mocked OpenAI client.
"""
import json

from backend.core.exceptions import GenerationError
from backend.models.user import User

CAPTIONS = "\n".join(
    f"Caption {n}:\n[Title] Title {n}\n[Caption] Body {n}\n[Call to Action] Act {n}\n[#Tags] #tag{n}"
    for n in (1, 2, 3)
)


class TestCaptionsEndpoint:
    """POST /api/generation/captions"""

    def test_generates_captions(self, client, db, make_user, generation_client, auth_headers):
        user = make_user(requests_used=0, requests_limit=5)
        generation_client.complete.return_value = CAPTIONS

        response = client.post(
            "/api/generation/captions",
            json={"tone": "friendly", "platform": "Instagram", "niche": "coffee", "goal": "sales"},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        body = response.json()
        assert [c["title"] for c in body["captions"]] == ["Title 1", "Title 2", "Title 3"]
        assert body["captions"][0]["hashtags"] == ["tag1"]
        assert body["requests_remaining"] == 4

        db.expire_all()
        assert db.query(User).filter(User.id == user.id).one().requests_used == 1

    def test_fatal_failure_carries_localized_message(self, client, make_user, generation_client, auth_headers):
        user = make_user()
        generation_client.complete.side_effect = GenerationError("content_filter", "blocked")

        response = client.post(
            "/api/generation/captions",
            json={
                "tone": "friendly", "platform": "Instagram", "niche": "coffee",
                "goal": "sales", "lang": "fr",
            },
            headers=auth_headers(user),
        )

        assert response.status_code == 502
        body = response.json()
        assert body["code"] == "generation_failed"
        assert body["details"]["kind"] == "content_filter"
        assert body["message"]["title"] == "Contenu Non Autorisé"

    def test_quota_exceeded(self, client, make_user, generation_client, auth_headers):
        user = make_user(requests_used=5, requests_limit=5)

        response = client.post(
            "/api/generation/captions",
            json={"tone": "friendly", "platform": "Instagram", "niche": "coffee", "goal": "sales"},
            headers=auth_headers(user),
        )

        assert response.status_code == 429
        assert response.json()["code"] == "quota_exceeded"
        generation_client.complete.assert_not_called()

    def test_missing_field(self, client, make_user, auth_headers):
        user = make_user()

        response = client.post(
            "/api/generation/captions",
            json={"tone": "friendly", "platform": "Instagram"},
            headers=auth_headers(user),
        )

        assert response.status_code == 422
        assert response.json()["code"] == "validation_error"


class TestContentIdeasEndpoint:
    """POST /api/generation/content-ideas"""

    def test_generates_ideas(self, client, make_user, generation_client, auth_headers):
        user = make_user()
        generation_client.complete.return_value = json.dumps({
            "social_posts": [{"title": "Reel idea", "description": "Short video"}],
            "blog_articles": [{"title": "Long read", "description": "Deep dive"}],
        })

        response = client.post(
            "/api/generation/content-ideas",
            json={"niche": "coffee", "keywords": ["latte"]},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["used_fallback"] is False
        assert body["social_posts"][0]["title"] == "Reel idea"
        assert body["blog_articles"][0]["content_type"] == "blog_article"

    def test_overloaded_returns_templates(self, client, make_user, generation_client, auth_headers):
        user = make_user()
        generation_client.complete.side_effect = GenerationError("overloaded")

        response = client.post(
            "/api/generation/content-ideas",
            json={"niche": "coffee", "keywords": ["latte"]},
            headers=auth_headers(user),
        )

        assert response.status_code == 200
        body = response.json()
        assert body["used_fallback"] is True
        assert len(body["social_posts"]) == 3
        assert body["requests_remaining"] == 5


class TestHealthEndpoints:
    """Health and status endpoints"""

    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json() == {"status": "healthy", "service": "engageperfect"}

    def test_healthcheck(self, client):
        response = client.get("/healthcheck")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_status_checks_database(self, client):
        response = client.get("/status")

        assert response.status_code == 200
        assert response.json()["database"] == "ok"
        assert response.json()["openai_configured"] is False

    def test_request_id_is_echoed(self, client):
        response = client.get("/status", headers={"X-Request-ID": "req-42"})

        assert response.headers["X-Request-ID"] == "req-42"

    def test_request_id_is_generated(self, client):
        response = client.get("/status")

        assert len(response.headers["X-Request-ID"]) == 32
