import json
import unittest

from sqlalchemy import select

from equipment_portal.models.logs import SystemLog
from equipment_portal.services.logging import logging_service
from tests.base import PortalTestCase


class TestLoggingService(PortalTestCase):
    async def test_audit_entries_link_borrow_requests(self):
        alice = await self.create_user("Alice", "alice@school.edu")
        ball = await self.create_equipment("Basketball", quantity=1)
        created = await self.create_request(alice, ball)

        async with self.sessionmaker() as db:
            entry = await logging_service.audit(
                db, "request", "create", alice.id, "request", created.id, details={"equipmentId": ball.id}
            )
            other = await logging_service.audit(db, "equipment", "update", alice.id, "equipment", ball.id)

        self.assertEqual(entry.message, f"CREATE request {created.id}")
        self.assertEqual(entry.request_id, created.id)
        self.assertEqual(entry.level, "info")
        self.assertEqual(json.loads(entry.details)["equipmentId"], ball.id)
        self.assertIsNone(other.request_id)

    async def test_free_text_details(self):
        async with self.sessionmaker() as db:
            await logging_service.error(db, "system", "Seed admin missing", details="check DEFAULT_ADMIN_EMAIL")
            await logging_service.warning(db, "auth", "Token rejected")

        async with self.sessionmaker() as db:
            entries = (await db.execute(select(SystemLog).order_by(SystemLog.level))).scalars().all()
        self.assertEqual([(e.level, e.details) for e in entries], [
            ("error", "check DEFAULT_ADMIN_EMAIL"),
            ("warning", None),
        ])


if __name__ == "__main__":
    unittest.main()
