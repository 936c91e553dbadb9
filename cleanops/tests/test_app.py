import json
import unittest
from types import SimpleNamespace
from unittest.mock import patch
from urllib.parse import quote

from fastapi.testclient import TestClient

from cleanops.app import create_app
from cleanops.db import InMemoryDbClient
from cleanops.dependencies import get_db_client, get_storage_client
from cleanops.types import (
    CLEANING_ISSUES,
    CLEANINGS,
    CLIENT_BALANCES,
    NOTIFICATIONS,
    ORDERS,
    PRODUCT_REQUESTS,
    PROPERTY_RATINGS,
)

ADMIN = {"id": "admin1", "name": "Admin", "email": "admin@example.com", "role": "ADMIN"}
OWNER = {"id": "owner1", "name": "Owner", "email": "owner@example.com", "role": "PROPRIETARIO"}
OPERATOR = {"id": "op1", "name": "Giulia", "email": "op@example.com", "role": "OPERATORE_PULIZIE"}
OTHER_OPERATOR = {"id": "op2", "name": "Marco", "role": "OPERATORE_PULIZIE"}
RIDER = {"id": "rider1", "name": "Rider", "role": "RIDER"}

# A Tuesday with no holiday.
WEEKDAY = "2030-03-05"


def as_user(user):
    return {"X-User": json.dumps(user)}


class CleanOpsApiTests(unittest.TestCase):
    def setUp(self):
        self.client = TestClient(create_app())
        self.db = get_db_client()
        if isinstance(self.db, InMemoryDbClient):
            self.db.reset()
        for user in (OPERATOR, OTHER_OPERATOR, RIDER):
            response = self.client.post("/api/users", json=user, headers=as_user(ADMIN))
            self.assertEqual(response.status_code, 201)
        self.property_id = self._create_property()

    def _create_property(self, **overrides):
        payload = {
            "name": "Casa Blu",
            "owner_id": OWNER["id"],
            "owner_email": OWNER["email"],
            "bedrooms": 1,
            "bathrooms": 1,
            "max_guests": 2,
            "cleaning_price": 60.0,
        }
        payload.update(overrides)
        response = self.client.post("/api/properties", json=payload, headers=as_user(ADMIN))
        self.assertEqual(response.status_code, 201)
        return response.json()["property"]["id"]

    def _create_cleaning(self, user=ADMIN, **overrides):
        payload = {"property_id": self.property_id, "scheduled_date": WEEKDAY}
        payload.update(overrides)
        return self.client.post("/api/cleanings", json=payload, headers=as_user(user))

    def _assigned_cleaning(self):
        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/assign",
            json={"operator_id": OPERATOR["id"]},
            headers=as_user(ADMIN),
        )
        self.assertEqual(response.status_code, 200)
        return cleaning_id

    def test_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok"})

    def test_requests_without_user_are_rejected(self):
        response = self.client.get("/api/cleanings")
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "UNAUTHENTICATED")

    def test_user_cookie_is_accepted(self):
        self.client.cookies.set("firebase-user", quote(json.dumps(OWNER)))
        try:
            response = self.client.get("/api/cleanings")
        finally:
            self.client.cookies.clear()
        self.assertEqual(response.status_code, 200)

    def test_create_cleaning_prices_from_property(self):
        response = self._create_cleaning(user=OWNER)
        self.assertEqual(response.status_code, 201)
        cleaning = response.json()["cleaning"]
        self.assertEqual(cleaning["status"], "SCHEDULED")
        self.assertEqual(cleaning["service_type"], "STANDARD")
        self.assertEqual(cleaning["price"], 60.0)
        self.assertEqual(cleaning["holiday_fee"], 0.0)
        self.assertEqual(cleaning["estimated_duration"], 90)

        listing = self.client.get("/api/cleanings", headers=as_user(ADMIN)).json()
        self.assertEqual(len(listing["cleanings"]), 1)
        self.assertEqual(listing["counts"]["pending"], 1)

    def test_owner_cannot_request_admin_only_service(self):
        response = self._create_cleaning(user=OWNER, service_type="APPROFONDITA")
        self.assertEqual(response.status_code, 403)

    def test_sgrosso_requires_reason_and_notes_for_other(self):
        response = self._create_cleaning(service_type="SGROSSO", price=200)
        self.assertEqual(response.status_code, 400)
        response = self._create_cleaning(service_type="SGROSSO", price=200, sgrosso_reason="ALTRO")
        self.assertEqual(response.status_code, 400)
        response = self._create_cleaning(
            service_type="SGROSSO", price=200, sgrosso_reason="ALTRO", sgrosso_notes="Party"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["cleaning"]["price"], 200.0)

    def test_owner_sgrosso_request_needs_approval(self):
        response = self._create_cleaning(
            user=OWNER, service_type="SGROSSO", sgrosso_reason="ANIMALI"
        )
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["cleaning"]["approval_status"], "PENDING")

    def test_every_fifth_standard_cleaning_is_promoted(self):
        for day in range(1, 5):
            cleaning = self._create_cleaning(scheduled_date=f"2030-03-{day + 10:02d}").json()["cleaning"]
            self.assertEqual(cleaning["service_type"], "STANDARD")
        fifth = self._create_cleaning(scheduled_date="2030-03-20").json()["cleaning"]
        self.assertEqual(fifth["service_type"], "APPROFONDITA")
        self.assertTrue(fifth["auto_promoted"])

    def test_assign_operator_rules(self):
        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/assign",
            json={"operator_id": OPERATOR["id"]},
            headers=as_user(OWNER),
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/assign",
            json={"operator_id": RIDER["id"]},
            headers=as_user(ADMIN),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "INVALID_OPERATOR")

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/assign",
            json={"operator_id": OPERATOR["id"]},
            headers=as_user(ADMIN),
        )
        self.assertEqual(response.status_code, 200)
        cleaning = response.json()["cleaning"]
        self.assertEqual(cleaning["status"], "ASSIGNED")
        self.assertEqual(cleaning["operator_id"], OPERATOR["id"])

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/assign",
            json={"operator_id": OPERATOR["id"]},
            headers=as_user(ADMIN),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "ALREADY_ASSIGNED")

        inbox = self.client.get("/api/notifications", headers=as_user(OPERATOR)).json()
        self.assertEqual(inbox["notifications"][0]["type"], "CLEANING_ASSIGNED")

        response = self.client.delete(
            f"/api/cleanings/{cleaning_id}/assign/{OPERATOR['id']}", headers=as_user(ADMIN)
        )
        self.assertEqual(response.json()["cleaning"]["status"], "SCHEDULED")

    def test_start_requires_assigned_operator_and_valid_status(self):
        cleaning_id = self._assigned_cleaning()
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/start", headers=as_user(OTHER_OPERATOR)
        )
        self.assertEqual(response.status_code, 403)

        response = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["success"])
        self.assertIsNone(response.json()["laundry_order_id"])

        response = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "INVALID_STATUS")

    def test_start_accepts_legacy_status(self):
        cleaning_id = self._assigned_cleaning()
        self.db.update(CLEANINGS, cleaning_id, {"status": "pending"})
        response = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(ADMIN))
        self.assertEqual(response.status_code, 200)

    def test_start_generates_laundry_order_with_pending_products(self):
        self.db.update(
            "properties",
            self.property_id,
            {
                "auto_generate_laundry": True,
                "linen_config": [{"item_id": "sheet", "item_name": "Lenzuolo", "quantity": 3}],
            },
        )
        request = self.db.add(
            PRODUCT_REQUESTS,
            {
                "property_id": self.property_id,
                "status": "pending",
                "items": [{"item_id": "soap", "name": "Sapone", "quantity": 2}],
                "created_at": 1.0,
            },
        )
        cleaning_id = self._assigned_cleaning()
        response = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        self.assertEqual(response.status_code, 200)
        order_id = response.json()["laundry_order_id"]
        self.assertIsNotNone(order_id)

        order = self.db.get(ORDERS, order_id).data
        self.assertEqual(order["type"], "MIXED")
        self.assertEqual(order["status"], "PENDING")
        self.assertEqual(order["urgency"], "normal")
        self.assertEqual(self.db.get(PRODUCT_REQUESTS, request.id).data["status"], "fulfilled")
        cleaning = self.db.get(CLEANINGS, cleaning_id).data
        self.assertEqual(cleaning["laundry_order_id"], order_id)
        self.assertEqual(cleaning["status"], "IN_PROGRESS")

    def test_complete_cleaning_end_to_end(self):
        self.db.update(
            "properties",
            self.property_id,
            {
                "auto_generate_laundry": True,
                "linen_config": [{"item_id": "sheet", "item_name": "Lenzuolo", "quantity": 3}],
            },
        )
        cleaning_id = self._assigned_cleaning()
        start = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        order_id = start.json()["laundry_order_id"]

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/complete",
            json={"photos_count": 3},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "NOT_ENOUGH_PHOTOS")

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/complete",
            json={
                "photos_count": 10,
                "rating": {
                    "guest_cleanliness": 5,
                    "checkout_punctuality": 4,
                    "property_condition": 4,
                    "damages": 5,
                    "access_ease": 3,
                },
                "issues": [
                    {"type": "damage", "title": "Broken lamp", "description": "Lamp in bedroom", "severity": "high"}
                ],
                "extra_charges": [{"description": "Extra towels", "amount": 7.5}],
            },
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 200)
        result = response.json()
        self.assertEqual(result["rating_score"], 4.2)
        self.assertEqual(len(result["issue_ids"]), 1)
        self.assertEqual(result["final_price"], 67.5)
        self.assertEqual(result["order_id"], order_id)

        cleaning = self.db.get(CLEANINGS, cleaning_id).data
        self.assertEqual(cleaning["status"], "COMPLETED")
        self.assertEqual(cleaning["rating_score"], 4.2)
        self.assertEqual(self.db.get(ORDERS, order_id).data["status"], "DELIVERED")
        self.assertEqual(self.db.get(CLIENT_BALANCES, OWNER["id"]).data["total_due"], 67.5)

        rating = self.client.get(
            "/api/property-ratings", params={"cleaning_id": cleaning_id}, headers=as_user(ADMIN)
        ).json()["rating"]
        self.assertEqual(rating["average"], 4.2)

    def test_complete_with_invalid_issue_writes_nothing(self):
        cleaning_id = self._assigned_cleaning()
        self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/complete",
            json={
                "photos_count": 10,
                "rating": {
                    "guest_cleanliness": 5,
                    "checkout_punctuality": 5,
                    "property_condition": 5,
                    "damages": 5,
                    "access_ease": 5,
                },
                "issues": [{"title": "Broken lamp"}],
            },
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.query(PROPERTY_RATINGS), [])
        self.assertEqual(self.db.query(CLEANING_ISSUES), [])
        cleaning = self.db.get(CLEANINGS, cleaning_id).data
        self.assertEqual(cleaning["status"], "IN_PROGRESS")
        self.assertNotIn("rating_id", cleaning)

    def test_orders_linked_by_cleaning_id_reach_riders_and_are_confirmed(self):
        cleaning_id = self._assigned_cleaning()
        request = self.client.post(
            "/api/product-requests",
            json={
                "property_id": self.property_id,
                "cleaning_id": cleaning_id,
                "items": [{"item_id": "soap", "name": "Sapone"}],
            },
            headers=as_user(OPERATOR),
        ).json()
        order_id = request["linked_order_id"]
        self.assertEqual(self.db.get(ORDERS, order_id).data["cleaning_id"], cleaning_id)

        start = self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR)).json()
        self.assertIsNone(start["laundry_order_id"])
        self.assertEqual(start["order_ids"], [order_id])
        laundry_notes = self.db.query(NOTIFICATIONS, [("type", "==", "LAUNDRY_NEW")])
        self.assertEqual([n.data["related_entity_id"] for n in laundry_notes], [order_id])
        self.assertEqual(laundry_notes[0].data["recipient_role"], "RIDER")

        second = self.db.add(ORDERS, {"cleaning_id": cleaning_id, "status": "ASSIGNED", "type": "LINEN"})
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/complete", json={"photos_count": 10}, headers=as_user(OPERATOR)
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(sorted(response.json()["order_ids"]), sorted([order_id, second.id]))
        for linked in (order_id, second.id):
            self.assertEqual(self.db.get(ORDERS, linked).data["status"], "DELIVERED")

    def test_cancel_rules(self):
        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/cancel", json={"reason": " no "}, headers=as_user(OWNER)
        )
        self.assertEqual(response.status_code, 400)

        self.db.update(CLEANINGS, cleaning_id, {"external_uid": "airbnb-123"})
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/cancel",
            json={"reason": "Guest cancelled"},
            headers=as_user(OWNER),
        )
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["deleted"])
        self.assertEqual(self.db.get(CLEANINGS, cleaning_id).data["status"], "CANCELLED")
        exclusions = self.db.query("syncExclusions", [("cleaning_id", "==", cleaning_id)])
        self.assertEqual(exclusions[0].data["reason"], "CANCELLED")

        admin_inbox = self.client.get("/api/notifications", headers=as_user(ADMIN)).json()
        self.assertIn("CLEANING_CANCELLED", [n["type"] for n in admin_inbox["notifications"]])

    def test_non_admin_cannot_cancel_in_progress(self):
        cleaning_id = self._assigned_cleaning()
        self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/cancel",
            json={"reason": "Changed plans"},
            headers=as_user(OWNER),
        )
        self.assertEqual(response.status_code, 409)
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/cancel",
            json={"reason": "Emergency", "delete_completely": True},
            headers=as_user(ADMIN),
        )
        self.assertTrue(response.json()["deleted"])
        self.assertIsNone(self.db.get(CLEANINGS, cleaning_id))

    def test_move_cleaning(self):
        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/move", json={"new_date": WEEKDAY}, headers=as_user(OWNER)
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/move",
            json={"new_date": WEEKDAY, "new_time": "15:30"},
            headers=as_user(OWNER),
        )
        self.assertEqual(response.json()["cleaning"]["scheduled_time"], "15:30")

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/move",
            json={"new_date": "2030-03-07", "reason": "Late checkout"},
            headers=as_user(OWNER),
        )
        moved = response.json()["cleaning"]
        self.assertEqual(moved["scheduled_date"], "2030-03-07")
        self.assertEqual(moved["original_date"], WEEKDAY)
        self.assertTrue(moved["manually_modified"])

    def test_wizard_cannot_leave_briefing_before_start(self):
        cleaning_id = self._assigned_cleaning()
        state = self.client.get(f"/api/cleanings/{cleaning_id}/wizard", headers=as_user(OPERATOR)).json()
        self.assertEqual(state["wizard"]["step"], "briefing")
        self.assertFalse(state["can_complete"])

        response = self.client.post(
            f"/api/cleanings/{cleaning_id}/wizard", json={"action": "advance"}, headers=as_user(OPERATOR)
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "WIZARD_PRECONDITION")

        self.client.post(f"/api/cleanings/{cleaning_id}/start", headers=as_user(OPERATOR))
        state = self.client.get(f"/api/cleanings/{cleaning_id}/wizard", headers=as_user(OPERATOR)).json()
        self.assertEqual(state["wizard"]["step"], "checklist")

    def test_order_urgency(self):
        order = self.db.add(ORDERS, {"property_id": self.property_id, "status": "PENDING", "urgency": "normal"})
        url = f"/api/orders/{order.id}/urgency"

        self.assertEqual(self.client.patch(url, json={"urgency": "urgent"}, headers=as_user(OWNER)).status_code, 403)
        self.assertEqual(self.client.patch(url, json={"urgency": "asap"}, headers=as_user(ADMIN)).status_code, 400)
        self.assertEqual(
            self.client.patch("/api/orders/missing/urgency", json={"urgency": "urgent"}, headers=as_user(ADMIN)).status_code,
            404,
        )
        unchanged = self.client.patch(url, json={"urgency": "normal"}, headers=as_user(ADMIN))
        self.assertEqual(unchanged.status_code, 200)
        self.assertIn("already", unchanged.json()["message"])

        response = self.client.patch(url, json={"urgency": "urgent"}, headers=as_user(ADMIN))
        self.assertEqual(response.json()["riders_notified"], 1)
        inbox = self.client.get("/api/notifications", headers=as_user(RIDER)).json()["notifications"]
        self.assertEqual(inbox[0]["type"], "urgent_order")

    def test_order_status_flow(self):
        order = self.db.add(ORDERS, {"property_id": self.property_id, "status": "PENDING"})
        response = self.client.post(
            f"/api/orders/{order.id}/assign", json={"rider_id": RIDER["id"]}, headers=as_user(ADMIN)
        )
        self.assertEqual(response.json()["order"]["status"], "ASSIGNED")

        response = self.client.post(
            f"/api/orders/{order.id}/status", json={"status": "COMPLETED"}, headers=as_user(RIDER)
        )
        self.assertEqual(response.status_code, 409)
        for status in ("IN_TRANSIT", "DELIVERED"):
            response = self.client.post(
                f"/api/orders/{order.id}/status", json={"status": status}, headers=as_user(RIDER)
            )
            self.assertEqual(response.json()["order"]["status"], status)

    def test_product_request_creates_order_for_next_cleaning(self):
        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        response = self.client.post(
            "/api/product-requests",
            json={
                "property_id": self.property_id,
                "cleaning_id": cleaning_id,
                "items": [{"item_id": "soap", "name": "Sapone"}],
            },
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 201)
        body = response.json()
        self.assertEqual(body["request"]["status"], "linked_to_order")
        self.assertEqual(body["request"]["items"][0]["quantity"], 1)
        order = self.db.get(ORDERS, body["linked_order_id"]).data
        self.assertEqual(order["type"], "PRODUCTS")
        self.assertEqual(order["cleaning_id"], cleaning_id)

        second = self.client.post(
            "/api/product-requests",
            json={
                "property_id": self.property_id,
                "cleaning_id": cleaning_id,
                "items": [{"item_id": "soap", "name": "Sapone", "quantity": 2}],
            },
            headers=as_user(OPERATOR),
        ).json()
        self.assertEqual(second["linked_order_id"], body["linked_order_id"])
        items = self.db.get(ORDERS, body["linked_order_id"]).data["items"]
        self.assertEqual(items, [dict(body["request"]["items"][0], quantity=3)])

        listing = self.client.get(
            "/api/product-requests", params={"property_id": self.property_id}, headers=as_user(ADMIN)
        ).json()["requests"]
        self.assertEqual(len(listing), 2)

    def test_product_request_without_cleaning_stays_pending(self):
        response = self.client.post(
            "/api/product-requests",
            json={"property_id": self.property_id, "cleaning_id": "c1", "items": [{"name": "Sapone"}]},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.json()["request"]["status"], "pending")
        self.assertIsNone(response.json()["linked_order_id"])

        response = self.client.post(
            "/api/product-requests",
            json={"property_id": self.property_id, "cleaning_id": "c1", "items": []},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)

    def test_upload_photo(self):
        response = self.client.post(
            "/api/upload-photo",
            files={"file": ("photo.jpg", b"\xff\xd8\xff", "image/jpeg")},
            data={"cleaning_id": "c1", "index": "2"},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["path"].startswith("cleanings/c1/photos/"))
        self.assertIn("_2_", body["path"])
        self.assertIn(body["path"], body["url"])
        self.assertEqual(get_storage_client().get_bytes(body["path"]), b"\xff\xd8\xff")

        response = self.client.post(
            "/api/upload-photo",
            files={"file": ("notes.txt", b"hello", "text/plain")},
            data={"cleaning_id": "c1"},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)

        response = self.client.post(
            "/api/upload-photo",
            files={"file": ("photo.jpg", b"\xff\xd8\xff", "image/jpeg")},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)

    @patch("cleanops.routes.get_settings")
    def test_upload_photo_too_large(self, mock_settings):
        mock_settings.return_value = SimpleNamespace(max_upload_bytes=4)
        response = self.client.post(
            "/api/upload-photo",
            files={"file": ("photo.jpg", b"0123456789", "image/jpeg")},
            data={"cleaning_id": "c1"},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 413)
        self.assertEqual(response.json()["error"], "UPLOAD_TOO_LARGE")

    def test_issue_lifecycle(self):
        response = self.client.post(
            "/api/issues",
            json={
                "property_id": self.property_id,
                "cleaning_id": "c1",
                "type": "damage",
                "title": "Broken chair",
                "description": "Leg snapped",
                "severity": "critical",
            },
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 201)
        issue_id = response.json()["id"]

        admin_inbox = self.client.get("/api/notifications", headers=as_user(ADMIN)).json()["notifications"]
        self.assertEqual(admin_inbox[0]["type"], "WARNING")
        self.assertTrue(admin_inbox[0]["action_required"])
        owner_inbox = self.client.get("/api/notifications", headers=as_user(OWNER)).json()["notifications"]
        self.assertEqual(len(owner_inbox), 1)

        open_issues = self.client.get(
            "/api/issues", params={"only_open": "true"}, headers=as_user(ADMIN)
        ).json()["issues"]
        self.assertEqual(len(open_issues), 1)

        response = self.client.put(
            f"/api/issues/{issue_id}",
            json={"action": "resolve", "resolution_notes": "Replaced"},
            headers=as_user(ADMIN),
        )
        self.assertTrue(response.json()["issue"]["resolved"])
        response = self.client.put(
            f"/api/issues/{issue_id}", json={"action": "reopen"}, headers=as_user(ADMIN)
        )
        self.assertIsNone(response.json()["issue"]["resolution_notes"])

        self.assertEqual(self.client.delete(f"/api/issues/{issue_id}", headers=as_user(OPERATOR)).status_code, 403)
        self.assertEqual(self.client.delete(f"/api/issues/{issue_id}", headers=as_user(ADMIN)).status_code, 200)

    def test_list_endpoints_are_scoped_by_role(self):
        other_property = self._create_property(
            name="Casa Rossa", owner_id="owner2", owner_email="other@example.com"
        )
        self._assigned_cleaning()
        mine = self.db.add(ORDERS, {"property_id": self.property_id, "status": "PENDING"})
        theirs = self.db.add(ORDERS, {"property_id": other_property, "status": "PENDING"})
        taken = self.db.add(
            ORDERS, {"property_id": other_property, "status": "ASSIGNED", "rider_id": "rider9"}
        )
        for collection in (CLEANING_ISSUES, PRODUCT_REQUESTS):
            for property_id in (self.property_id, other_property):
                self.db.add(
                    collection,
                    {"property_id": property_id, "resolved": False, "status": "pending", "created_at": 1},
                )

        def listed(path, key, user):
            response = self.client.get(path, headers=as_user(user))
            self.assertEqual(response.status_code, 200, msg=(path, user["id"]))
            return [item["id"] if key == "orders" else item["property_id"] for item in response.json()[key]]

        self.assertEqual(sorted(listed("/api/orders", "orders", ADMIN)), sorted([mine.id, theirs.id, taken.id]))
        self.assertEqual(listed("/api/orders", "orders", OWNER), [mine.id])
        self.assertEqual(listed("/api/orders", "orders", OPERATOR), [mine.id])
        self.assertEqual(listed("/api/orders", "orders", OTHER_OPERATOR), [])
        self.assertEqual(sorted(listed("/api/orders", "orders", RIDER)), sorted([mine.id, theirs.id]))

        for path, key in (("/api/issues", "issues"), ("/api/product-requests", "requests")):
            self.assertEqual(len(listed(path, key, ADMIN)), 2)
            self.assertEqual(listed(path, key, OWNER), [self.property_id])
            self.assertEqual(listed(path, key, OPERATOR), [self.property_id])
            self.assertEqual(self.client.get(path, headers=as_user(RIDER)).status_code, 403)

    def test_rating_requires_all_scores(self):
        response = self.client.post(
            "/api/property-ratings",
            json={"cleaning_id": "c1", "property_id": self.property_id, "guest_cleanliness": 5},
            headers=as_user(OPERATOR),
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "RATING_INVALID")

        summary = self.client.get(
            "/api/property-ratings", params={"property_id": self.property_id}, headers=as_user(ADMIN)
        ).json()
        self.assertEqual(summary["count"], 0)
        self.assertEqual(summary["months"], 3)

    def test_notification_actions(self):
        self.client.post(
            "/api/issues",
            json={
                "property_id": self.property_id,
                "cleaning_id": "c1",
                "type": "safety",
                "title": "Gas smell",
                "description": "Kitchen",
                "severity": "high",
            },
            headers=as_user(OPERATOR),
        )
        count = self.client.get("/api/notifications", params={"count_only": "true"}, headers=as_user(ADMIN))
        self.assertEqual(count.json()["count"], 1)
        notification_id = self.client.get("/api/notifications", headers=as_user(ADMIN)).json()["notifications"][0]["id"]

        response = self.client.patch(
            f"/api/notifications/{notification_id}", json={"action": "approve"}, headers=as_user(ADMIN)
        )
        self.assertEqual(response.json()["notification"]["action_status"], "APPROVED")
        self.assertEqual(response.json()["notification"]["action_by"], ADMIN["id"])

        response = self.client.patch(
            f"/api/notifications/{notification_id}", json={"action": "approve"}, headers=as_user(OPERATOR)
        )
        self.assertEqual(response.status_code, 403)

        marked = self.client.post("/api/notifications/mark-all-read", headers=as_user(OWNER)).json()
        self.assertEqual(marked["updated"], 1)
        stored = self.db.query(NOTIFICATIONS, [("recipient_id", "==", OWNER["id"])])
        self.assertEqual(stored[0].data["status"], "READ")

    def test_service_types_and_holidays(self):
        response = self.client.post("/api/service-types/seed", headers=as_user(ADMIN))
        self.assertEqual(response.json()["created"], 3)
        response = self.client.post("/api/service-types/seed", headers=as_user(ADMIN))
        self.assertEqual(response.json()["created"], 0)
        codes = [t["code"] for t in self.client.get("/api/service-types").json()["service_types"]]
        self.assertEqual(codes, ["STANDARD", "APPROFONDITA", "SGROSSO"])

        response = self.client.post(
            "/api/service-types", json={"code": "STANDARD", "name": "Dup"}, headers=as_user(ADMIN)
        )
        self.assertEqual(response.status_code, 409)

        self.client.post("/api/holidays/seed", headers=as_user(ADMIN))
        active = self.client.get("/api/holidays", params={"active_only": "true"}).json()["holidays"]
        self.assertEqual(active[0]["name"], "Capodanno")
        self.assertNotIn("Pasqua", [h["name"] for h in active])

        response = self.client.post(
            "/api/holidays", json={"name": "Patrono", "is_recurring": True}, headers=as_user(ADMIN)
        )
        self.assertEqual(response.status_code, 400)

    def test_holiday_fee_is_stored_separately(self):
        self.client.post("/api/holidays/seed", headers=as_user(ADMIN))
        cleaning = self._create_cleaning(scheduled_date="2030-12-25").json()["cleaning"]
        self.assertEqual(cleaning["holiday_fee"], 30.0)
        self.assertEqual(cleaning["price"], 60.0)

        quote = self.client.post(
            "/api/pricing/quote",
            json={"property_id": self.property_id, "scheduled_date": "2030-12-25"},
            headers=as_user(ADMIN),
        ).json()
        self.assertEqual(quote["price"]["holiday_name"], "Natale")
        self.assertEqual(quote["price"]["total"], 90.0)

    def test_linen_config_generation(self):
        self.client.post(
            "/api/inventory",
            json={"name": "Lenzuolo matrimoniale", "key": "double_sheets", "category": "biancheria_letto", "sell_price": 4},
            headers=as_user(ADMIN),
        )
        response = self.client.put(
            f"/api/properties/{self.property_id}/linen-config",
            json={"regenerate": True},
            headers=as_user(OWNER),
        )
        self.assertEqual(response.status_code, 200)
        body = response.json()
        self.assertTrue(body["valid"])
        self.assertEqual(set(body["service_configs"]), {"1", "2"})

        stored = self.client.get(
            f"/api/properties/{self.property_id}/linen-config", headers=as_user(OWNER)
        ).json()
        self.assertEqual(stored["linen_config"][0]["quantity"], 3)

        cleaning_id = self._create_cleaning().json()["cleaning"]["id"]
        dotation = self.client.get(f"/api/cleanings/{cleaning_id}/dotation", headers=as_user(ADMIN)).json()
        self.assertEqual(dotation["source"], "saved")
        self.assertEqual(dotation["dotation_price"], 12.0)
        self.assertEqual(dotation["total_price"], 72.0)


if __name__ == "__main__":
    unittest.main()
