import unittest
from types import SimpleNamespace
from unittest.mock import patch

from cleanops.db import ChangeEvent, InMemoryDbClient
from cleanops.reconcile import (
    LiveView,
    cleanings_view,
    dashboard_counts,
    dedupe_operators,
    normalize_cleaning,
    orders_view,
)
from cleanops.types import CLEANINGS, ORDERS


class FakeClock:
    def __init__(self, now=1000.0):
        self.now = now

    def __call__(self):
        return self.now


def event(kind, doc_id, data=None, timestamp=900.0):
    return ChangeEvent(kind=kind, collection="cleanings", doc_id=doc_id, data=data, timestamp=timestamp)


class LiveViewTests(unittest.TestCase):
    def setUp(self):
        self.clock = FakeClock()
        self.view = LiveView("cleanings", edit_ttl=30, clock=self.clock)
        self.view.apply_event(event("added", "c1", {"status": "SCHEDULED", "notes": "", "updated_at": 900.0}))

    def test_local_edit_wins_over_stale_snapshot(self):
        self.view.apply_local("c1", {"status": "IN_PROGRESS"})
        self.view.apply_event(event("modified", "c1", {"status": "SCHEDULED", "notes": "x", "updated_at": 950.0}))
        doc = self.view.document("c1")
        self.assertEqual(doc["status"], "IN_PROGRESS")
        self.assertEqual(doc["notes"], "x")
        self.assertEqual(self.view.pending_fields("c1"), {"status"})

    def test_confirmed_edit_is_dropped(self):
        self.view.apply_local("c1", {"status": "IN_PROGRESS"})
        self.view.apply_event(event("modified", "c1", {"status": "IN_PROGRESS", "updated_at": 990.0}))
        self.assertEqual(self.view.pending_fields("c1"), set())

    def test_newer_server_write_overrides_local_edit(self):
        self.view.apply_local("c1", {"status": "IN_PROGRESS"})
        self.view.apply_event(event("modified", "c1", {"status": "CANCELLED", "updated_at": 1001.0}))
        self.assertEqual(self.view.document("c1")["status"], "CANCELLED")

    def test_edit_expires_after_ttl(self):
        self.view.apply_local("c1", {"notes": "local"})
        self.clock.now += 10
        self.assertEqual(self.view.document("c1")["notes"], "local")
        self.clock.now += 25
        self.assertEqual(self.view.document("c1")["notes"], "")

    def test_removed_document_drops_pending_edits(self):
        self.view.apply_local("c1", {"notes": "local"})
        self.view.apply_event(event("removed", "c1"))
        self.assertIsNone(self.view.document("c1"))
        self.assertIsNone(self.view.discard_local("c1"))

    def test_discard_local(self):
        self.view.apply_local("c1", {"notes": "local"})
        self.assertEqual(self.view.discard_local("c1")["notes"], "")

    def test_snapshot_transforms_filters_and_sorts(self):
        view = LiveView(
            "orders",
            keep=lambda doc: doc.get("status") != "CANCELLED",
            sort_key=lambda doc: doc.get("scheduled_date"),
            descending=True,
            clock=self.clock,
        )
        view.apply_event(event("added", "o1", {"scheduled_date": "2030-03-01", "status": "PENDING"}))
        view.apply_event(event("added", "o2", {"scheduled_date": "2030-03-03", "status": "PENDING"}))
        view.apply_event(event("added", "o3", {"status": "PENDING"}))
        view.apply_event(event("added", "o4", {"scheduled_date": "2030-03-09", "status": "CANCELLED"}))
        self.assertEqual([doc["id"] for doc in view.snapshot()], ["o2", "o1", "o3"])


class ViewFactoryTests(unittest.TestCase):
    def test_cleanings_view_follows_store(self):
        db = InMemoryDbClient()
        db.add(CLEANINGS, {"status": "pending", "scheduled_date": "2030-03-01", "created_at": 0})
        view = cleanings_view(db)
        record = db.add(CLEANINGS, {"status": "ASSIGNED", "scheduled_date": "2030-03-02"})

        snapshot = view.snapshot()
        self.assertEqual([doc["status"] for doc in snapshot], ["ASSIGNED", "SCHEDULED"])
        self.assertEqual(snapshot[1]["created_at"], "1970-01-01T00:00:00+00:00")

        view.close()
        db.delete(CLEANINGS, record.id)
        self.assertEqual(len(view.snapshot()), 2)

    def test_orders_view_hides_cancelled(self):
        db = InMemoryDbClient()
        view = orders_view(db)
        order = db.add(ORDERS, {"status": "PENDING"})
        db.update(ORDERS, order.id, {"status": "CANCELLED"})
        self.assertEqual(view.snapshot(), [])

    @patch("cleanops.reconcile.get_settings")
    def test_edit_ttl_comes_from_settings(self, mock_settings):
        mock_settings.return_value = SimpleNamespace(local_edit_ttl_seconds=5.0)
        db = InMemoryDbClient()
        self.assertEqual(cleanings_view(db).edit_ttl, 5.0)
        self.assertEqual(orders_view(db, edit_ttl=12.0).edit_ttl, 12.0)


class TransformTests(unittest.TestCase):
    def test_dedupe_operators(self):
        doc = dedupe_operators({"operators": [{"id": "a"}, {"id": "a"}, {"name": "no id"}, {"id": "b"}]})
        self.assertEqual([op["id"] for op in doc["operators"]], ["a", "b"])

    def test_normalize_cleaning_keeps_flags(self):
        doc = normalize_cleaning({"status": "completed", "requires_laundry": True, "completed_at": 0})
        self.assertEqual(doc["status"], "COMPLETED")
        self.assertEqual(doc["completed_at"], "1970-01-01T00:00:00+00:00")
        self.assertTrue(doc["requires_laundry"])

    def test_dashboard_counts(self):
        counts = dashboard_counts(
            [{"status": "SCHEDULED"}, {"status": "ASSIGNED"}, {"status": "IN_PROGRESS"}, {"status": "COMPLETED"}, {"status": "CANCELLED"}]
        )
        self.assertEqual(counts, {"pending": 2, "in_progress": 1, "completed": 1, "total": 5})


if __name__ == "__main__":
    unittest.main()
