import unittest

from memoirs.db import PostgresDbClient, ProfileRecord, SortOrder, StoryQuery
from memoirs.errors import BackendError


class PostgresDbClientTests(unittest.TestCase):
    """
    Uses SQLite via SQLAlchemy URL for fast/local testing of the Postgres client logic.
    """

    def setUp(self):
        self.db = PostgresDbClient("sqlite+pysqlite:///:memory:")

    def add(self, title, visibility=("relative",), **fields):
        story = self.db.create_story("author", title, **fields)
        if visibility:
            self.db.add_story_visibility(story.id, visibility)
        return story

    def test_profile_upsert_keeps_created_at(self):
        created = self.db.upsert_profile(
            ProfileRecord(id="u1", display_name="Ann", email="a@x.io", created_at=10.0)
        )
        self.assertEqual(created.created_at, 10.0)
        self.assertFalse(created.is_verified)

        self.db.set_profile_verified("u1")
        profile = self.db.get_profile("u1")
        self.assertTrue(profile.is_verified)
        self.assertEqual(set(self.db.get_profiles(["u1", "missing"])), {"u1"})
        self.assertFalse(self.db.set_profile_verified("missing"))

    def test_query_visibility_search_sort_and_window(self):
        self.add("Zebra crossing", created_at=1.0, updated_at=1.0)
        self.add("apple orchard", description="Autumn", created_at=2.0, updated_at=2.0)
        self.add("Mango", description="An autumn trip", created_at=3.0, updated_at=3.0)
        self.add("Private", visibility=("spouse_or_child",), created_at=4.0, updated_at=4.0)
        self.add("No rows", visibility=(), created_at=5.0, updated_at=5.0)

        rows, total = self.db.query_stories(
            StoryQuery(visibility=("parent_or_sibling", "relative"), sort=SortOrder.RECENT)
        )
        self.assertEqual([s.title for s in rows], ["Mango", "apple orchard", "Zebra crossing"])
        self.assertEqual(total, 3)

        rows, total = self.db.query_stories(
            StoryQuery(search="AUTUMN", visibility=("relative",), sort=SortOrder.AZ)
        )
        self.assertEqual([s.title for s in rows], ["apple orchard", "Mango"])

        rows, total = self.db.query_stories(
            StoryQuery(visibility=("relative",), sort=SortOrder.OLDEST, offset=1, limit=1)
        )
        self.assertEqual([s.title for s in rows], ["apple orchard"])
        self.assertEqual(total, 3)

    def test_created_after_window(self):
        self.add("One", created_at=1.0, updated_at=1.0)
        self.add("Two", created_at=2.0, updated_at=2.0)
        self.add("Three", created_at=3.0, updated_at=3.0)

        rows, total = self.db.query_stories(
            StoryQuery(created_after=1.0, sort=SortOrder.OLDEST, limit=1)
        )
        self.assertEqual([s.title for s in rows], ["Two"])
        self.assertEqual(total, 2)

    def test_search_escapes_wildcards(self):
        self.add("100% fun", created_at=1.0, updated_at=1.0)
        self.add("1000 fun", created_at=2.0, updated_at=2.0)
        rows, total = self.db.query_stories(StoryQuery(search="100%"))
        self.assertEqual([s.title for s in rows], ["100% fun"])

    def test_story_id_filter_and_published_flag(self):
        a = self.add("A", created_at=1.0, updated_at=1.0)
        b = self.add("B", created_at=2.0, updated_at=2.0)
        self.db.update_story(b.id, is_published=False)

        rows, _ = self.db.query_stories(StoryQuery(story_ids=frozenset({a.id, b.id})))
        self.assertEqual([s.id for s in rows], [a.id])
        rows, total = self.db.query_stories(StoryQuery(story_ids=frozenset()))
        self.assertEqual((rows, total), ([], 0))
        rows, _ = self.db.query_stories(StoryQuery(published_only=False, user_id="author"))
        self.assertEqual(len(rows), 2)

    def test_tags_and_cleanup(self):
        story = self.add("Trip")
        travel = self.db.create_tag("Travel", icon="plane.svg")
        spare = self.db.create_tag("Spare")
        self.db.add_story_tags(story.id, [travel.id, travel.id])

        self.assertEqual([t.name for t in self.db.find_tags_by_names(["Travel", "x"])], ["Travel"])
        self.assertEqual(self.db.story_ids_for_tags([travel.id]), {story.id})
        self.assertEqual(
            [t.name for t in self.db.tags_for_stories([story.id])[story.id]], ["Travel"]
        )
        self.assertEqual(self.db.delete_tags_if_unused([travel.id, spare.id]), [spare.id])
        self.assertEqual([t.name for t in self.db.list_tags()], ["Travel"])
        with self.assertRaises(BackendError):
            self.db.add_story_tags(story.id, ["unknown"])

    def test_delete_comment_promotes_replies(self):
        story = self.add("Trip")
        top = self.db.create_comment(story.id, "u1", "Top")
        reply = self.db.create_comment(story.id, "u2", "Reply", parent_id=top.id)

        self.assertEqual(self.db.delete_comment(top.id), [reply.id])
        self.assertIsNone(self.db.get_comment(reply.id).parent_id)
        self.assertEqual(self.db.delete_comment("missing"), [])

    def test_likes_bookmarks_and_story_delete(self):
        story = self.add("Trip", media=[{"path": "images/x.jpg"}])
        self.db.add_like("u1", story.id)
        self.db.add_like("u1", story.id)
        self.db.add_like("u2", story.id)
        self.db.add_bookmark("u1", story.id)
        self.db.create_comment(story.id, "u1", "Nice")

        self.assertEqual(self.db.count_likes(story.id), 2)
        self.assertTrue(self.db.has_bookmark("u1", story.id))
        self.assertEqual(self.db.list_bookmarked_story_ids("u1"), [story.id])
        self.db.remove_like("u2", story.id)
        self.assertFalse(self.db.has_like("u2", story.id))
        self.assertEqual(self.db.increment_view_count(story.id), 1)

        deleted = self.db.delete_story(story.id)
        self.assertEqual(deleted.media, [{"path": "images/x.jpg"}])
        self.assertIsNone(self.db.get_story(story.id))
        self.assertEqual(self.db.count_likes(story.id), 0)
        self.assertEqual(self.db.list_comments(story.id), [])
        self.assertEqual(self.db.list_bookmarked_story_ids("u1"), [])
        self.assertEqual(self.db.get_story_visibility([story.id]), {story.id: []})


if __name__ == "__main__":
    unittest.main()
