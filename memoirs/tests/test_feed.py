import unittest
from unittest.mock import patch

from memoirs.context import ViewerContext
from memoirs.db import InMemoryDbClient, SortOrder
from memoirs.errors import BackendError, ProfileSetupRequired, ValidationFailed
from memoirs.feed import FEED_ERROR_MESSAGE, FeedRequest, compose_feed, total_pages
from memoirs.tests.testing_utils import add_story, make_member


def titles(page):
    return [item.story.title for item in page.stories]


class VisibilityFeedTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()

    def test_parent_or_sibling_sees_relative_story_only(self):
        add_story(self.db, "A", visibility=["spouse_or_child"], created_at=1)
        add_story(self.db, "B", visibility=["relative"], created_at=2)
        viewer = make_member(self.db, "viewer", "parent_or_sibling")

        page = compose_feed(self.db, viewer, FeedRequest())

        self.assertEqual(titles(page), ["B"])
        self.assertEqual(page.total, 1)

    def test_story_without_visibility_rows_is_hidden_from_everyone(self):
        add_story(self.db, "Draft", visibility=[], created_at=1)
        for relationship in ("spouse_or_child", "parent_or_sibling", "relative", "friend"):
            viewer = make_member(self.db, relationship, relationship)
            self.assertEqual(compose_feed(self.db, viewer, FeedRequest()).total, 0)

    def test_unpublished_story_is_hidden(self):
        story = add_story(self.db, "Hidden", visibility=["relative"])
        self.db.update_story(story.id, is_published=False)
        viewer = make_member(self.db, "viewer", "relative")
        self.assertEqual(compose_feed(self.db, viewer, FeedRequest()).total, 0)

    def test_viewer_without_profile_must_set_up(self):
        with self.assertRaises(ProfileSetupRequired):
            compose_feed(self.db, ViewerContext(user_id="nobody"), FeedRequest())

    def test_viewer_without_relationship_must_set_up(self):
        viewer = make_member(self.db, "viewer", None)
        with self.assertRaises(ProfileSetupRequired):
            compose_feed(self.db, viewer, FeedRequest())


class FilterFeedTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.viewer = make_member(self.db, "viewer", "relative")

    def test_tags_match_any(self):
        add_story(self.db, "Beach", tags=["Travel"], created_at=1)
        add_story(self.db, "Dinner", tags=["Family"], created_at=2)
        add_story(self.db, "Match", tags=["Sports"], created_at=3)
        add_story(self.db, "Secret", tags=["Travel"], visibility=["friend"], created_at=4)

        page = compose_feed(
            self.db, self.viewer, FeedRequest(tags=("Travel", "Family"), sort=SortOrder.OLDEST)
        )

        self.assertEqual(titles(page), ["Beach", "Dinner"])
        self.assertEqual([t.name for t in page.stories[0].tags], ["Travel"])

    def test_unknown_tag_yields_empty_page_without_error(self):
        add_story(self.db, "Beach", tags=["Travel"])
        page = compose_feed(self.db, self.viewer, FeedRequest(tags=("Nope",)))
        self.assertEqual(page.stories, [])
        self.assertEqual(page.total, 0)
        self.assertIsNone(page.error)

    def test_search_matches_title_or_description_case_insensitively(self):
        add_story(self.db, "Lake House", created_at=1)
        add_story(self.db, "Winter", description="A trip to the LAKE", created_at=2)
        add_story(self.db, "Garden", created_at=3)

        page = compose_feed(self.db, self.viewer, FeedRequest(search="lake"))

        self.assertEqual(titles(page), ["Winter", "Lake House"])

    def test_sort_orders(self):
        add_story(self.db, "banana", created_at=2)
        add_story(self.db, "Apple", created_at=3)
        add_story(self.db, "cherry", created_at=1)

        def run(sort):
            return titles(compose_feed(self.db, self.viewer, FeedRequest(sort=sort)))

        self.assertEqual(run(SortOrder.RECENT), ["Apple", "banana", "cherry"])
        self.assertEqual(run(SortOrder.OLDEST), ["cherry", "banana", "Apple"])
        self.assertEqual(run(SortOrder.AZ), ["Apple", "banana", "cherry"])

    def test_combined_filters_and_pagination(self):
        names = ["Hotel", "Bay", "Fjord", "Alps", "Gorge", "Canyon", "Dunes", "Estuary"]
        for index, name in enumerate(names):
            add_story(self.db, f"{name} trip", tags=["Travel"], created_at=index)
        add_story(self.db, "Island trip", tags=["Family"], created_at=20)
        add_story(self.db, "Jungle", tags=["Travel"], created_at=21)

        def page(number):
            return compose_feed(
                self.db,
                self.viewer,
                FeedRequest(search="trip", tags=("Travel",), sort=SortOrder.AZ, page=number),
            )

        first, second, third = page(1), page(2), page(3)

        self.assertEqual(first.total, 8)
        self.assertEqual(first.total_pages, 2)
        self.assertEqual(
            titles(first),
            ["Alps trip", "Bay trip", "Canyon trip", "Dunes trip", "Estuary trip", "Fjord trip"],
        )
        self.assertEqual(titles(second), ["Gorge trip", "Hotel trip"])
        self.assertEqual(titles(third), [])
        self.assertEqual(third.total, 8)
        self.assertIsNone(third.error)

    def test_invalid_page_is_rejected(self):
        with self.assertRaises(ValidationFailed):
            compose_feed(self.db, self.viewer, FeedRequest(page=0))
        with self.assertRaises(ValidationFailed):
            compose_feed(self.db, self.viewer, FeedRequest(page_size=0))


class FeedFailureTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.viewer = make_member(self.db, "viewer", "relative")
        add_story(self.db, "Beach", tags=["Travel"])

    def test_query_failure_returns_empty_page_with_message(self):
        with patch.object(self.db, "query_stories", side_effect=BackendError("down")):
            page = compose_feed(self.db, self.viewer, FeedRequest())
        self.assertEqual(page.stories, [])
        self.assertEqual(page.total, 0)
        self.assertEqual(page.error, FEED_ERROR_MESSAGE)

    def test_tag_lookup_failure_returns_empty_page_with_message(self):
        with patch.object(self.db, "find_tags_by_names", side_effect=BackendError("down")):
            page = compose_feed(self.db, self.viewer, FeedRequest(tags=("Travel",)))
        self.assertEqual(page.error, FEED_ERROR_MESSAGE)


class TotalPagesTests(unittest.TestCase):
    def test_ceiling(self):
        self.assertEqual(total_pages(0, 6), 0)
        self.assertEqual(total_pages(6, 6), 1)
        self.assertEqual(total_pages(7, 6), 2)
        with self.assertRaises(ValueError):
            total_pages(1, 0)


if __name__ == "__main__":
    unittest.main()
