import unittest

from sqlalchemy import select

from equipment_portal.core.permissions import Role
from equipment_portal.models.logs import SystemLog
from tests.base import FROM_DATE, TO_DATE, PortalTestCase


class RequestAPITestCase(PortalTestCase):
    async def asyncSetUp(self):
        await super().asyncSetUp()
        self.admin = await self.create_user("Ada Admin", "ada@school.edu", Role.ADMIN)
        self.alice = await self.create_user("Alice Student", "alice@school.edu")
        self.bob = await self.create_user("Bob Staff", "bob@school.edu", Role.STAFF)
        self.admin_headers = await self.auth_headers(self.admin)
        self.alice_headers = await self.auth_headers(self.alice)
        self.bob_headers = await self.auth_headers(self.bob)

    async def submit(self, headers, equipment_id, purpose="Practice match", **overrides):
        payload = {
            "equipmentId": equipment_id,
            "borrowFromDate": FROM_DATE.isoformat(),
            "borrowToDate": TO_DATE.isoformat(),
            "purpose": purpose,
        }
        payload.update(overrides)
        return await self.client.post("/api/requests/create", headers=headers, json=payload)

    async def decide(self, request_id, action, json=None):
        return await self.client.post(
            f"/api/requests/{request_id}/{action}", headers=self.admin_headers, json=json or {}
        )


class TestSubmitRequest(RequestAPITestCase):
    async def test_submit(self):
        ball = await self.create_equipment("Basketball", quantity=2)
        resp = await self.submit(self.alice_headers, ball.id, notes="Friday afternoon")
        self.assertEqual(resp.status_code, 201)
        data = resp.json()["data"]
        self.assertEqual(data["status"], "pending")
        self.assertEqual(data["studentId"], self.alice.id)
        self.assertEqual(data["studentName"], "Alice Student")
        self.assertEqual(data["equipmentName"], "Basketball")
        self.assertEqual(data["borrowFromDate"], FROM_DATE.isoformat())
        self.assertEqual(data["notes"], "Friday afternoon")
        self.assertIsNone(data["approvedBy"])

    async def test_dates_must_be_ordered(self):
        ball = await self.create_equipment("Basketball", quantity=2)
        for to_date in (FROM_DATE, FROM_DATE.replace(day=1)):
            resp = await self.submit(self.alice_headers, ball.id, borrowToDate=to_date.isoformat())
            self.assertEqual(resp.status_code, 422)
            error = resp.json()["error"]
            self.assertEqual(error["code"], "VALIDATION_ERROR")
            self.assertEqual(error["details"]["field"], "borrowToDate")

    async def test_purpose_required(self):
        ball = await self.create_equipment("Basketball", quantity=2)
        resp = await self.submit(self.alice_headers, ball.id, purpose="   ")
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["error"]["details"]["field"], "purpose")

    async def test_unknown_equipment(self):
        resp = await self.submit(self.alice_headers, "no-such-equipment")
        self.assertEqual(resp.status_code, 404)
        self.assertEqual(resp.json()["error"]["code"], "NOT_FOUND")

    async def test_admin_cannot_submit(self):
        ball = await self.create_equipment("Basketball", quantity=2)
        resp = await self.submit(self.admin_headers, ball.id)
        self.assertEqual(resp.status_code, 403)

    async def test_requires_a_token(self):
        ball = await self.create_equipment("Basketball", quantity=2)
        resp = await self.submit({}, ball.id)
        self.assertEqual(resp.status_code, 401)


class TestDecisions(RequestAPITestCase):
    async def test_single_unit_scenario(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        first = (await self.submit(self.alice_headers, ball.id)).json()["data"]
        second = (await self.submit(self.bob_headers, ball.id)).json()["data"]

        resp = await self.decide(first["id"], "approve", {"approvalNotes": "Enjoy"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["status"], "approved")
        self.assertEqual(resp.json()["data"]["approvedByName"], "Ada Admin")
        self.assertEqual(resp.json()["data"]["decisionNotes"], "Enjoy")
        self.assertEqual((await self.get_equipment(ball.id)).available, 0)

        resp = await self.decide(second["id"], "approve")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "CAPACITY_EXCEEDED")
        self.assertEqual((await self.get_request(second["id"])).status, "pending")

        resp = await self.decide(first["id"], "return", {"condition": "Fair", "returnNotes": "Scuffed"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["status"], "returned")
        self.assertEqual(resp.json()["data"]["returnCondition"], "Fair")
        self.assertEqual((await self.get_equipment(ball.id)).available, 1)

        resp = await self.client.get(f"/api/requests/{first['id']}", headers=self.alice_headers)
        self.assertEqual(resp.status_code, 200)
        history = resp.json()["data"]["statusHistory"]
        self.assertEqual([h["status"] for h in history], ["pending", "approved", "returned"])

    async def test_double_approve(self):
        ball = await self.create_equipment("Basketball", quantity=5)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]

        self.assertEqual((await self.decide(created["id"], "approve")).status_code, 200)
        resp = await self.decide(created["id"], "approve")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "INVALID_STATE")
        self.assertEqual(resp.json()["error"]["details"]["currentStatus"], "approved")
        self.assertEqual((await self.get_equipment(ball.id)).available, 4)

    async def test_reject(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]

        resp = await self.decide(created["id"], "reject", {"reason": "Tournament week"})
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["status"], "rejected")
        self.assertEqual(resp.json()["data"]["decisionNotes"], "Tournament week")
        self.assertEqual((await self.get_equipment(ball.id)).available, 1)

        resp = await self.decide(created["id"], "return")
        self.assertEqual(resp.status_code, 409)
        self.assertEqual(resp.json()["error"]["code"], "INVALID_STATE")

    async def test_reject_needs_a_reason(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]
        resp = await self.decide(created["id"], "reject", {"reason": ""})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual((await self.get_request(created["id"])).status, "pending")

    async def test_unknown_request(self):
        resp = await self.decide("missing", "approve")
        self.assertEqual(resp.status_code, 404)

    async def test_approve_and_return_without_a_body(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]

        resp = await self.client.post(f"/api/requests/{created['id']}/approve", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["status"], "approved")
        self.assertIsNone(resp.json()["data"]["decisionNotes"])

        resp = await self.client.post(f"/api/requests/{created['id']}/return", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(resp.json()["data"]["status"], "returned")
        self.assertIsNone(resp.json()["data"]["returnCondition"])
        self.assertEqual((await self.get_equipment(ball.id)).available, 1)

    async def test_borrowers_cannot_decide(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]

        for action in ("approve", "reject", "return"):
            resp = await self.client.post(
                f"/api/requests/{created['id']}/{action}",
                headers=self.bob_headers,
                json={"reason": "because"},
            )
            self.assertEqual(resp.status_code, 403, action)
        self.assertEqual((await self.get_request(created["id"])).status, "pending")
        self.assertEqual((await self.get_equipment(ball.id)).available, 1)

    async def test_decisions_are_audited(self):
        ball = await self.create_equipment("Basketball", quantity=1)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]
        await self.decide(created["id"], "approve")
        await self.decide(created["id"], "approve")

        async with self.sessionmaker() as db:
            logs = (
                await db.execute(select(SystemLog).where(SystemLog.request_id == created["id"]))
            ).scalars().all()
        levels = sorted((log.level, log.message.split()[0]) for log in logs)
        self.assertEqual(levels, [("info", "APPROVE"), ("info", "CREATE"), ("warning", "Approve")])


class TestQueries(RequestAPITestCase):
    async def test_user_requests_are_isolated(self):
        ball = await self.create_equipment("Basketball", quantity=5)
        await self.submit(self.alice_headers, ball.id)
        await self.submit(self.alice_headers, ball.id)
        await self.submit(self.bob_headers, ball.id)

        resp = await self.client.get(f"/api/requests/user/{self.alice.id}", headers=self.alice_headers)
        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(len(data["requests"]), 2)
        self.assertTrue(all(r["studentId"] == self.alice.id for r in data["requests"]))
        self.assertEqual(data["pagination"], {"total": 2, "page": 1, "limit": 10, "pages": 1})
        self.assertEqual(data["statusCounts"]["pending"], 2)

        resp = await self.client.get(f"/api/requests/user/{self.bob.id}", headers=self.alice_headers)
        self.assertEqual(resp.status_code, 403)

        resp = await self.client.get(f"/api/requests/user/{self.alice.id}", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        self.assertEqual(len(resp.json()["data"]["requests"]), 2)

    async def test_request_detail_is_owner_or_admin(self):
        ball = await self.create_equipment("Basketball", quantity=5)
        created = (await self.submit(self.alice_headers, ball.id)).json()["data"]

        self.assertEqual(
            (await self.client.get(f"/api/requests/{created['id']}", headers=self.bob_headers)).status_code, 403
        )
        self.assertEqual(
            (await self.client.get(f"/api/requests/{created['id']}", headers=self.admin_headers)).status_code, 200
        )
        self.assertEqual(
            (await self.client.get("/api/requests/missing", headers=self.admin_headers)).status_code, 404
        )

    async def test_admin_listing_and_filters(self):
        ball = await self.create_equipment("Basketball", quantity=5)
        scope = await self.create_equipment("Microscope", quantity=5, category="Lab")
        first = (await self.submit(self.alice_headers, ball.id)).json()["data"]
        await self.submit(self.alice_headers, scope.id)
        await self.submit(self.bob_headers, scope.id)
        await self.decide(first["id"], "approve")

        resp = await self.client.get("/api/requests", headers=self.admin_headers)
        data = resp.json()["data"]
        self.assertEqual(data["pagination"]["total"], 3)
        self.assertEqual(data["statusCounts"], {
            "pending": 2, "approved": 1, "rejected": 0, "returned": 0, "all": 3,
        })

        resp = await self.client.get(
            "/api/requests", headers=self.admin_headers, params={"status": "pending", "studentName": "alice"}
        )
        data = resp.json()["data"]
        self.assertEqual([r["equipmentName"] for r in data["requests"]], ["Microscope"])
        self.assertEqual(data["statusCounts"]["all"], 2)

        resp = await self.client.get(
            "/api/requests", headers=self.admin_headers, params={"equipmentName": "SCOPE", "limit": 1}
        )
        data = resp.json()["data"]
        self.assertEqual(len(data["requests"]), 1)
        self.assertEqual(data["pagination"], {"total": 2, "page": 1, "limit": 1, "pages": 2})

    async def test_page_out_of_range(self):
        for page in ("0", "10000000000000000000"):
            resp = await self.client.get("/api/requests", headers=self.admin_headers, params={"page": page})
            self.assertEqual(resp.status_code, 422, page)
            self.assertEqual(resp.json()["error"]["code"], "VALIDATION_ERROR")
            self.assertEqual(resp.json()["error"]["details"]["field"], "page")

    async def test_invalid_status_filter(self):
        resp = await self.client.get("/api/requests", headers=self.admin_headers, params={"status": "lost"})
        self.assertEqual(resp.status_code, 422)
        self.assertEqual(resp.json()["error"]["details"]["field"], "status")

    async def test_admin_listing_is_admin_only(self):
        resp = await self.client.get("/api/requests", headers=self.alice_headers)
        self.assertEqual(resp.status_code, 403)
        resp = await self.client.get("/api/requests/admin/stats", headers=self.bob_headers)
        self.assertEqual(resp.status_code, 403)

    async def test_stats(self):
        ball = await self.create_equipment("Basketball", quantity=3)
        await self.create_equipment("Microscope", quantity=2, category="Lab")
        first = (await self.submit(self.alice_headers, ball.id)).json()["data"]
        second = (await self.submit(self.bob_headers, ball.id)).json()["data"]
        await self.submit(self.alice_headers, ball.id)
        await self.decide(first["id"], "approve")
        await self.decide(second["id"], "reject", {"reason": "Duplicate"})

        resp = await self.client.get("/api/requests/admin/stats", headers=self.admin_headers)
        self.assertEqual(resp.status_code, 200)
        data = resp.json()["data"]
        self.assertEqual(data["stats"], {
            "totalEquipment": 5,
            "availableEquipment": 4,
            "borrowedEquipment": 1,
            "pendingRequests": 1,
            "activeLoans": 1,
            "totalUsers": 3,
        })
        self.assertEqual(data["userBreakdown"], {"student": 1, "staff": 1, "admin": 1})
        self.assertEqual(data["requestBreakdown"], {"pending": 1, "approved": 1, "rejected": 1, "returned": 0})


if __name__ == "__main__":
    unittest.main()
