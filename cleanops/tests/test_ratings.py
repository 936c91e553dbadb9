import unittest
from datetime import datetime, timezone

from cleanops import ratings
from cleanops.db import InMemoryDbClient
from cleanops.errors import ValidationError
from cleanops.notifications import Notifier
from cleanops.types import CLEANING_ISSUES, CLEANINGS, PROPERTY_RATINGS, CurrentUser, UserRole

OPERATOR = CurrentUser(id="op1", role=UserRole.OPERATOR, name="Giulia")
SCORES = {
    "guest_cleanliness": 5,
    "checkout_punctuality": 4,
    "property_condition": 4,
    "damages": 5,
    "access_ease": 3,
}


def ts(year, month, day=15):
    return datetime(year, month, day, tzinfo=timezone.utc).timestamp()


class ScoringTests(unittest.TestCase):
    def test_average_and_band(self):
        self.assertEqual(ratings.average(SCORES), 4.2)
        self.assertEqual(ratings.score_band(4.2), "good")
        self.assertEqual(ratings.score_band(4.8), "excellence")
        self.assertEqual(ratings.score_band(2.0), "critical")

    def test_validate_scores(self):
        self.assertEqual(ratings.validate_scores({**SCORES, "extra": 1}), SCORES)
        for bad in (0, 6, "5", True, None):
            with self.assertRaises(ValidationError) as ctx:
                ratings.validate_scores({**SCORES, "damages": bad})
            self.assertEqual(ctx.exception.details, {"invalid": ["damages"]})

    def test_insights_need_enough_ratings(self):
        averages = {"damages": 1.5, "access_ease": 2.5, "guest_cleanliness": 4.5}
        self.assertEqual(ratings.category_insights(averages, 2), [])
        insights = ratings.category_insights(averages, 3)
        self.assertEqual([i["category"] for i in insights], ["damages", "access_ease", "guest_cleanliness"])
        self.assertEqual([i["level"] for i in insights], ["critical", "warning", "ok"])
        self.assertEqual(insights[0]["label"], "Danni")

    def test_monthly_trend(self):
        trend = ratings.monthly_trend(
            [
                {"created_at": ts(2030, 1), "average": 3.0},
                {"created_at": ts(2030, 2, 3), "average": 3.5},
                {"created_at": ts(2030, 2, 20), "average": 4.5},
            ]
        )
        self.assertEqual(trend["direction"], "improving")
        self.assertEqual(trend["months"][1], {"month": "2030-02", "average": 4.0, "count": 2})

        trend = ratings.monthly_trend(
            [{"created_at": ts(2030, 1), "average": 4.0}, {"created_at": ts(2030, 2), "average": 3.9}]
        )
        self.assertEqual(trend["direction"], "stable")
        self.assertEqual(ratings.monthly_trend([])["direction"], "stable")


class RatingStoreTests(unittest.TestCase):
    def setUp(self):
        self.db = InMemoryDbClient()
        self.notifier = Notifier(self.db)
        self.db.set("properties", "p1", {"name": "Casa Blu", "owner_id": "owner1"})
        self.db.set(CLEANINGS, "c1", {"property_id": "p1", "status": "IN_PROGRESS"})

    def test_create_rating_links_cleaning_and_issues(self):
        record = ratings.create_rating(
            self.db,
            self.notifier,
            OPERATOR,
            {
                "cleaning_id": "c1",
                "property_id": "p1",
                **SCORES,
                "supplies_complete": False,
                "issues": [{"type": "missing_item", "title": "No soap", "description": "Soap missing", "severity": "low"}],
            },
        )
        self.assertEqual(record.data["average"], 4.2)
        self.assertFalse(record.data["supplies_complete"])
        self.assertEqual(len(record.data["issue_ids"]), 1)

        issue = self.db.get(CLEANING_ISSUES, record.data["issue_ids"][0]).data
        self.assertEqual(issue["rating_id"], record.id)
        cleaning = self.db.get(CLEANINGS, "c1").data
        self.assertEqual(cleaning["rating_id"], record.id)
        self.assertEqual(cleaning["rating_score"], 4.2)
        self.assertEqual(ratings.get_rating_for_cleaning(self.db, "c1").id, record.id)

    def test_invalid_issue_stores_nothing(self):
        for issue in ({"title": "No soap"}, {"type": "flood", "title": "Water", "description": "Leak"}):
            with self.assertRaises(ValidationError):
                ratings.create_rating(
                    self.db,
                    self.notifier,
                    OPERATOR,
                    {"cleaning_id": "c1", "property_id": "p1", "scores": SCORES, "issues": [issue]},
                )
        self.assertEqual(self.db.query(PROPERTY_RATINGS), [])
        self.assertEqual(self.db.query(CLEANING_ISSUES), [])
        self.assertNotIn("rating_id", self.db.get(CLEANINGS, "c1").data)

    def test_rating_for_missing_cleaning_is_still_stored(self):
        with self.assertLogs("cleanops.ratings", level="WARNING"):
            record = ratings.create_rating(
                self.db, self.notifier, OPERATOR, {"cleaning_id": "gone", "property_id": "p1", "scores": SCORES}
            )
        self.assertIsNotNone(self.db.get(PROPERTY_RATINGS, record.id))

    def test_property_summary(self):
        for index, score in enumerate((2, 2, 3)):
            ratings.create_rating(
                self.db,
                self.notifier,
                OPERATOR,
                {"cleaning_id": f"c{index}", "property_id": "p1", "scores": {**SCORES, "damages": score}},
            )
        self.db.add(PROPERTY_RATINGS, {"property_id": "p1", "scores": SCORES, "average": 4.2, "created_at": 0})

        summary = ratings.property_summary(self.db, "p1", months=3)
        self.assertEqual(summary["count"], 3)
        self.assertEqual(summary["averages"]["damages"], 2.33)
        self.assertEqual(summary["insights"][0]["category"], "damages")
        self.assertEqual(summary["insights"][0]["level"], "warning")
        self.assertEqual(len(summary["ratings"]), 3)

    def test_empty_summary(self):
        summary = ratings.property_summary(self.db, "p1")
        self.assertEqual(summary["overall"], 0.0)
        self.assertIsNone(summary["band"])
        self.assertEqual(summary["insights"], [])


if __name__ == "__main__":
    unittest.main()
