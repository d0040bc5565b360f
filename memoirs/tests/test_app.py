import unittest
from unittest.mock import patch

from botocore.exceptions import EndpointConnectionError
from fastapi.testclient import TestClient
from sqlalchemy.exc import OperationalError

from memoirs.app import BACKEND_ERROR_MESSAGE, create_app
from memoirs.db import InMemoryDbClient
from memoirs.dependencies import get_db_client, get_storage_client
from memoirs.storage import InMemoryStorageClient
from memoirs.tests.testing_utils import add_story, make_member


def as_user(user_id):
    return {"X-User-Id": user_id}


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.storage = InMemoryStorageClient()
        app = create_app()
        app.dependency_overrides[get_db_client] = lambda: self.db
        app.dependency_overrides[get_storage_client] = lambda: self.storage
        self.client = TestClient(app)
        make_member(self.db, "alice", "spouse_or_child")
        make_member(self.db, "bob", "relative")

    def create_story(self, user="alice", **form):
        data = {
            "title": "Lake trip",
            "description": "Fishing with grandpa",
            "tags": ["Travel", "Family"],
            "visibility": ["relative"],
        }
        data.update(form)
        return self.client.post(
            "/api/stories",
            data=data,
            files=[("files", ("lake.jpg", b"jpeg-bytes", "image/jpeg"))],
            headers=as_user(user),
        )

    def test_requests_without_identity_are_rejected(self):
        response = self.client.get("/api/stories")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["code"], "authentication_required")

    def test_profile_setup_and_verification_gate(self):
        response = self.client.get("/api/stories", headers=as_user("carol"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "profile_setup_required")

        response = self.client.get("/api/profile", headers=as_user("carol"))
        self.assertEqual(response.status_code, 404)
        self.assertEqual(response.json()["code"], "profile_setup_required")

        response = self.client.put(
            "/api/profile",
            json={"display_name": "Carol", "email": "carol@example.test", "relationship": "friend"},
            headers=as_user("carol"),
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_verified"])

        response = self.client.get("/api/stories", headers=as_user("carol"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "verification_required")

        response = self.client.post("/api/profiles/carol/verify", headers=as_user("alice"))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["is_verified"])
        response = self.client.get("/api/stories", headers=as_user("carol"))
        self.assertEqual(response.status_code, 200)

    def test_profile_rejects_unknown_relationship(self):
        response = self.client.put(
            "/api/profile",
            json={"display_name": "Dan", "email": "dan@example.test", "relationship": "cousin"},
            headers=as_user("dan"),
        )
        self.assertEqual(response.status_code, 422)

    def test_create_story_and_read_feed(self):
        response = self.create_story()
        self.assertEqual(response.status_code, 201)
        card = response.json()
        self.assertEqual(card["title"], "Lake trip")
        self.assertEqual(sorted(t["name"] for t in card["tags"]), ["Family", "Travel"])
        self.assertTrue(card["thumbnail_url"].startswith(self.storage.base_url))
        self.assertEqual(len(self.storage.stored_objects), 1)

        response = self.client.get(
            "/api/stories",
            params={"search": "GRANDPA", "tags": ["Travel"], "sort": "az"},
            headers=as_user("bob"),
        )
        self.assertEqual(response.status_code, 200)
        feed = response.json()
        self.assertEqual(feed["total"], 1)
        self.assertEqual(feed["total_pages"], 1)
        self.assertEqual(feed["page_size"], 6)
        self.assertEqual(feed["stories"][0]["id"], card["id"])
        self.assertIsNone(feed["error"])

    def test_create_story_validation_errors(self):
        response = self.create_story(tags=["a", "b", "c", "d"])
        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"], "Select between 1 and 3 tags")

        response = self.create_story(visibility=[])
        self.assertEqual(response.status_code, 422)
        self.assertEqual(self.db.stories, {})

    def test_visibility_scopes_feed_and_detail(self):
        private = add_story(self.db, "Private", visibility=["spouse_or_child"], created_at=1)
        shared = add_story(self.db, "Shared", visibility=["relative"], created_at=2)

        feed = self.client.get("/api/stories", headers=as_user("bob")).json()
        self.assertEqual([s["title"] for s in feed["stories"]], ["Shared"])

        response = self.client.get(f"/api/stories/{private.id}", headers=as_user("bob"))
        self.assertEqual(response.status_code, 404)
        response = self.client.get(f"/api/stories/{shared.id}", headers=as_user("bob"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["visibility"], ["relative"])

    def test_comments_likes_and_bookmarks(self):
        story = add_story(self.db, "Shared", user_id="alice")
        url = f"/api/stories/{story.id}"

        top = self.client.post(
            f"{url}/comments", json={"content": "Great memory"}, headers=as_user("bob")
        )
        self.assertEqual(top.status_code, 201)
        top_id = top.json()["id"]
        reply = self.client.post(
            f"{url}/comments",
            json={"content": "Thank you", "parent_id": top_id},
            headers=as_user("alice"),
        )
        nested = self.client.post(
            f"{url}/comments",
            json={"content": "Again", "parent_id": reply.json()["id"]},
            headers=as_user("bob"),
        )
        self.assertEqual(nested.json()["parent_id"], top_id)

        tree = self.client.get(f"{url}/comments", headers=as_user("bob")).json()
        self.assertEqual(tree["comment_count"], 3)
        self.assertEqual(len(tree["comments"]), 1)
        self.assertEqual(len(tree["comments"][0]["replies"]), 2)
        self.assertEqual(tree["comments"][0]["author"]["display_name"], "Bob")

        response = self.client.delete(f"/api/comments/{top_id}", headers=as_user("alice"))
        self.assertEqual(response.status_code, 403)
        response = self.client.delete(f"/api/comments/{top_id}", headers=as_user("bob"))
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(response.json()["promoted_reply_ids"]), 2)

        liked = self.client.post(f"{url}/like", headers=as_user("bob")).json()
        self.assertEqual(liked, {"liked": True, "like_count": 1})
        marked = self.client.post(f"{url}/bookmark", headers=as_user("bob")).json()
        self.assertEqual(marked, {"bookmarked": True})
        bookmarks = self.client.get("/api/bookmarks", headers=as_user("bob")).json()
        self.assertEqual([s["id"] for s in bookmarks["stories"]], [story.id])

        detail = self.client.get(url, headers=as_user("bob")).json()
        self.assertTrue(detail["liked"])
        self.assertTrue(detail["bookmarked"])
        self.assertEqual(detail["comment_count"], 2)
        self.assertEqual(detail["story"]["view_count"], 1)

    def test_owner_can_edit_and_delete(self):
        story = self.create_story().json()
        url = f"/api/stories/{story['id']}"

        response = self.client.patch(url, json={"title": "Bob's edit"}, headers=as_user("bob"))
        self.assertEqual(response.status_code, 403)
        response = self.client.patch(url, json={"title": "Lake trip 1998"}, headers=as_user("alice"))
        self.assertEqual(response.json()["title"], "Lake trip 1998")

        response = self.client.delete(url, headers=as_user("alice"))
        self.assertEqual(response.json(), {"status": "ok", "media_left_behind": []})
        self.assertEqual(self.storage.stored_objects, {})

    def test_tags_catalogue(self):
        response = self.client.get("/api/tags")
        self.assertEqual(response.status_code, 200)
        names = [tag["name"] for tag in response.json()["tags"]]
        self.assertIn("Childhood", names)
        self.assertIn("Liberation war", names)

    def test_dashboard(self):
        for index in range(3):
            add_story(self.db, f"Story {index}", created_at=float(index + 1))
        board = self.client.get("/api/dashboard", headers=as_user("bob")).json()
        self.assertEqual(board["featured"]["title"], "Story 2")
        self.assertEqual(board["featured"]["episode_number"], 3)
        self.assertEqual(len(board["latest"]), 3)
        self.assertEqual(board["page_size"], 9)

    def test_sign_url_checks_story_access(self):
        story = self.create_story().json()
        path = story["media"][0]["path"]

        response = self.client.get(
            "/api/media/sign-url", params={"path": path}, headers=as_user("bob")
        )
        self.assertEqual(response.status_code, 200)
        self.assertIn("expires=3600", response.json()["url"])

        response = self.client.get(
            "/api/media/sign-url", params={"path": "secrets/x.txt"}, headers=as_user("bob")
        )
        self.assertEqual(response.status_code, 422)


    def test_database_failure_maps_to_backend_error(self):
        story = add_story(self.db, "Shared")
        down = OperationalError("SELECT 1", {}, Exception("connection refused"))

        with patch.object(self.db, "count_likes", side_effect=down):
            response = self.client.get(f"/api/stories/{story.id}", headers=as_user("bob"))
        self.assertEqual(response.status_code, 502)
        self.assertEqual(
            response.json(), {"detail": BACKEND_ERROR_MESSAGE, "code": "backend_error"}
        )

        with patch.object(self.db, "has_like", side_effect=down):
            response = self.client.post(f"/api/stories/{story.id}/like", headers=as_user("bob"))
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["code"], "backend_error")

    def test_storage_failure_maps_to_backend_error(self):
        down = EndpointConnectionError(endpoint_url="https://s3.example.test")
        with patch.object(self.storage, "upload_bytes", side_effect=down):
            response = self.client.post(
                "/api/profile/avatar",
                files={"file": ("me.png", b"png", "image/png")},
                headers=as_user("bob"),
            )
        self.assertEqual(response.status_code, 502)
        self.assertEqual(response.json()["detail"], BACKEND_ERROR_MESSAGE)

    def test_relationship_change_does_not_widen_access(self):
        make_member(self.db, "frank", "friend")
        secret = add_story(self.db, "Secret", visibility=["spouse_or_child"])
        url = f"/api/stories/{secret.id}"
        self.assertEqual(self.client.get(url, headers=as_user("frank")).status_code, 404)

        response = self.client.put(
            "/api/profile",
            json={
                "display_name": "Frank",
                "email": "frank@example.test",
                "relationship": "spouse_or_child",
            },
            headers=as_user("frank"),
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["is_verified"])

        response = self.client.get(url, headers=as_user("frank"))
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["code"], "verification_required")

    def test_owner_routes_hide_stories_the_viewer_cannot_see(self):
        hidden = add_story(self.db, "Private", user_id="alice", visibility=["spouse_or_child"])
        url = f"/api/stories/{hidden.id}"

        for response in (
            self.client.get(url, headers=as_user("bob")),
            self.client.patch(url, json={"title": "x"}, headers=as_user("bob")),
            self.client.delete(url, headers=as_user("bob")),
            self.client.delete("/api/stories/missing", headers=as_user("bob")),
        ):
            self.assertEqual(response.status_code, 404)
            self.assertEqual(response.json()["code"], "not_found")
        self.assertIsNotNone(self.db.get_story(hidden.id))


if __name__ == "__main__":
    unittest.main()
