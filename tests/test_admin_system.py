#!/usr/bin/env python3
"""
Back-office system tests: settings, users and roles, audit log,
dashboard, health, payment and webhook analytics, security alerts.
"""

import unittest

from emporium.app import session
from emporium.data.models import AuditLog, Payment, User, WebhookDelivery
from emporium.schemas.io_models import Actor
from emporium.services import security_events
from emporium.services.admin.settings_service import get_setting
from emporium.services.admin.user_service import UserAdminService
from emporium.utils.timeutils import utcnow

from support import StoreTestCase, make_order, make_product, make_user, sign_in


class AdminSystemTestCase(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = make_user(self.db)
        sign_in(self.client, self.admin)


class TestSettings(AdminSystemTestCase):

    def test_typed_round_trip(self):
        response = self.client.put("/api/admin/settings/store", json={
            "name": "Loomcraft", "free_shipping_threshold": 99900, "gift_wrap": True,
            "languages": ["en", "hi"], "tagline": None,
        })
        self.assertEqual(response.status_code, 200)
        expected = {"name": "Loomcraft", "free_shipping_threshold": 99900, "gift_wrap": True,
                    "languages": ["en", "hi"]}
        self.assertEqual(response.json()["settings"], expected)
        self.assertEqual(self.client.get("/api/admin/settings/store").json()["settings"], expected)
        self.assertEqual(get_setting(self.db, "store_name"), "Loomcraft")
        self.assertEqual(get_setting(self.db, "store_missing", "fallback"), "fallback")

        audit = self.db.query(AuditLog).filter_by(action="UPDATE_STORE_SETTINGS").one()
        self.assertEqual(audit.resource_id, "store")

    def test_groups_are_isolated(self):
        self.client.put("/api/admin/settings/store", json={"name": "Loomcraft"})
        self.client.put("/api/admin/settings/shipping", json={"flat_rate": 4900})
        self.assertEqual(self.client.get("/api/admin/settings/shipping").json()["settings"], {"flat_rate": 4900})

    def test_unknown_group(self):
        self.assertEqual(self.client.get("/api/admin/settings/billing").status_code, 404)
        self.assertEqual(self.client.put("/api/admin/settings/billing", json={"x": 1}).status_code, 404)

    def test_manager_is_forbidden(self):
        sign_in(self.client, make_user(self.db, "manager@example.com", role="manager"))
        self.assertEqual(self.client.put("/api/admin/settings/store", json={"name": "x"}).status_code, 403)


class TestUsers(AdminSystemTestCase):

    def test_create_user(self):
        response = self.client.post("/api/admin/users", json={
            "email": "Staff@Example.com", "name": "Meera", "password": "longenough", "role": "staff"})
        self.assertEqual(response.status_code, 201)
        self.assertEqual(response.json()["user"]["email"], "staff@example.com")

        duplicate = self.client.post("/api/admin/users", json={
            "email": "staff@example.com", "name": "Meera", "password": "longenough"})
        self.assertEqual(duplicate.status_code, 409)

        short = self.client.post("/api/admin/users", json={
            "email": "other@example.com", "name": "Other", "password": "short"})
        self.assertEqual(short.status_code, 422)

    def test_list_and_roles(self):
        make_user(self.db, "staff@example.com", role="staff")
        data = self.client.get("/api/admin/users", params={"role": "staff"}).json()
        self.assertEqual([u["email"] for u in data["users"]], ["staff@example.com"])

        roles = self.client.get("/api/admin/roles").json()
        manager = next(r for r in roles["roles"] if r["role"] == "manager")
        self.assertNotIn("manage_users", manager["permissions"])
        self.assertIn("manage_settings", roles["permissions"])

    def test_cannot_delete_self(self):
        response = self.client.delete(f"/api/admin/users/{self.admin.id}")
        self.assertEqual(response.status_code, 403)

    def test_cannot_delete_last_admin(self):
        result = UserAdminService(self.db, Actor(id="0", email="system")).delete_user(self.admin.id)
        self.assertFalse(result.success)
        self.assertEqual(result.code, "conflict")

    def test_delete_user(self):
        staff = make_user(self.db, "staff@example.com", role="staff")
        response = self.client.delete(f"/api/admin/users/{staff.id}")
        self.assertEqual(response.status_code, 200)
        self.assertIsNone(self.db.get(User, staff.id))

    def test_cannot_change_own_role(self):
        response = self.client.put(f"/api/admin/users/{self.admin.id}", json={"role": "staff"})
        self.assertEqual(response.status_code, 403)

    def test_bulk_demotion_keeps_an_admin(self):
        other = make_user(self.db, "second@example.com")
        response = self.client.post("/api/admin/users/bulk/role",
                                    json={"ids": [self.admin.id, other.id], "role": "staff"})
        self.assertEqual(response.status_code, 409)

        response = self.client.post("/api/admin/users/bulk/role", json={"ids": [other.id, 999], "role": "manager"})
        self.assertEqual(response.json()["updated_count"], 1)
        self.assertEqual(self.refresh(other).role, "manager")

    def test_suspend_revokes_sessions(self):
        staff = make_user(self.db, "staff@example.com", role="staff")
        manager = session.get_session_manager()
        staff_session = manager.create_session(staff.id, staff.email, staff.role, staff.name)

        response = self.client.post(f"/api/admin/users/{staff.id}/suspend", json={"reason": "left"})
        self.assertEqual(response.json()["user"]["status"], "suspended")
        self.assertIsNone(manager.get_session(staff_session))
        audit = self.db.query(AuditLog).filter_by(action="SUSPEND").one()
        self.assertEqual(audit.changes["sessions_revoked"], 1)

        response = self.client.post(f"/api/admin/users/{staff.id}/reactivate")
        self.assertEqual(response.json()["user"]["status"], "active")

        self.assertEqual(self.client.post(f"/api/admin/users/{self.admin.id}/suspend", json={}).status_code, 403)

    def test_password_change_revokes_sessions(self):
        staff = make_user(self.db, "staff@example.com", role="staff")
        manager = session.get_session_manager()
        staff_session = manager.create_session(staff.id, staff.email, staff.role, staff.name)
        self.client.put(f"/api/admin/users/{staff.id}", json={"password": "brand-new-secret"})
        self.assertIsNone(manager.get_session(staff_session))
        audit = self.db.query(AuditLog).filter_by(action="UPDATE").one()
        self.assertTrue(audit.changes["password_changed"])


class TestAuditLog(AdminSystemTestCase):

    def setUp(self):
        super().setUp()
        self.client.put("/api/admin/settings/store", json={"name": "Loomcraft"})
        self.client.post("/api/admin/users", json={
            "email": "staff@example.com", "name": "Meera", "password": "longenough"})

    def test_list_and_filter(self):
        data = self.client.get("/api/admin/audit-logs").json()
        self.assertEqual(data["total"], 2)
        self.assertEqual(data["logs"][0]["action"], "CREATE")
        self.assertEqual(data["logs"][0]["user_email"], "admin@example.com")

        data = self.client.get("/api/admin/audit-logs", params={"resource_type": "settings"}).json()
        self.assertEqual(data["logs"][0]["metadata"]["setting_keys"], ["name"])

    def test_detail_and_stats(self):
        log_id = self.client.get("/api/admin/audit-logs").json()["logs"][0]["id"]
        self.assertEqual(self.client.get(f"/api/admin/audit-logs/{log_id}").json()["log"]["resource_type"], "user")
        self.assertEqual(self.client.get("/api/admin/audit-logs/999").status_code, 404)

        stats = self.client.get("/api/admin/audit-logs/stats").json()
        self.assertEqual(stats["by_resource"], {"settings": 1, "user": 1})
        self.assertEqual(stats["by_user"], {"admin@example.com": 2})


class TestDashboardAndHealth(AdminSystemTestCase):

    def test_dashboard(self):
        product = make_product(self.db, quantity=3)
        make_order(self.db, product, gateway_order_id="order_A", status="processing",
                   payment_status="paid", payment="captured")
        make_order(self.db, product, gateway_order_id="order_B")
        summary = self.client.get("/api/admin/dashboard").json()
        self.assertEqual(summary["orders_today"], 2)
        self.assertEqual(summary["revenue_today"], 59000)
        self.assertEqual(summary["pending_orders"], 1)
        self.assertEqual(summary["low_stock_variants"], 1)
        self.assertEqual(summary["total_products"], 1)
        self.assertEqual(len(summary["recent_orders"]), 2)

    def test_system_health(self):
        health = self.client.get("/api/admin/system-health").json()
        self.assertEqual(health["status"], "healthy")
        self.assertEqual(health["environment"], "test")
        self.assertEqual(health["checks"]["redis"]["status"], "disabled")
        self.assertEqual(health["checks"]["payment_gateway"]["status"], "configured")
        self.assertTrue(health["checks"]["payment_gateway"]["webhook_secret"])


class TestPaymentAnalytics(AdminSystemTestCase):

    def setUp(self):
        super().setUp()
        self.product = make_product(self.db)

    def test_payment_stats(self):
        make_order(self.db, self.product, gateway_order_id="order_A", payment="captured")
        make_order(self.db, self.product, gateway_order_id="order_B", payment="failed")
        stats = self.client.get("/api/admin/payments/stats").json()
        self.assertEqual(stats["total_transactions"], 2)
        self.assertEqual(stats["success_rate"], 50.0)
        self.assertEqual(stats["total_volume"], 59000)
        self.assertEqual(stats["recent_failures"][0]["status"], "failed")

    def test_payment_list_and_detail(self):
        make_order(self.db, self.product, payment="captured")
        payments = self.client.get("/api/admin/payments").json()
        self.assertEqual(payments["total"], 1)
        payment_id = self.db.query(Payment).one().id
        self.assertEqual(self.client.get(f"/api/admin/payments/{payment_id}").status_code, 200)
        self.assertEqual(self.client.get("/api/admin/payments/999").status_code, 404)

    def test_fraud_analytics(self):
        make_order(self.db, self.product, payment="failed")
        payment = self.db.query(Payment).one()
        payment.fraud_risk_level = "critical"
        payment.fraud_risk_score = 90
        payment.failure_reason = "fraud_detected"
        self.db.commit()
        data = self.client.get("/api/admin/payments/fraud").json()
        self.assertEqual(data["by_level"], {"critical": 1})
        self.assertEqual(data["blocked"], 1)
        self.assertEqual(len(data["flagged_payments"]), 1)

    def test_webhook_stats(self):
        now = utcnow()
        self.db.add_all([
            WebhookDelivery(id="evt_1", event_type="payment.captured", status="success",
                            processing_time_ms=10, payload={"event": "payment.captured"}, created_at=now),
            WebhookDelivery(id="evt_2", event_type="payment.failed", status="failed",
                            processing_time_ms=30, payload={"event": "payment.failed"}, created_at=now),
        ])
        self.db.commit()
        stats = self.client.get("/api/admin/webhooks/stats").json()
        self.assertEqual(stats["total"], 2)
        self.assertEqual(stats["success_rate"], 50)
        self.assertEqual(stats["average_processing_time"], 20)
        self.assertEqual(len(stats["recent_deliveries"]), 2)

        failed = self.client.get("/api/admin/webhooks/deliveries", params={"status": "failed"}).json()
        self.assertEqual([d["id"] for d in failed["deliveries"]], ["evt_2"])
        detail = self.client.get("/api/admin/webhooks/deliveries/evt_1").json()["delivery"]
        self.assertEqual(detail["payload"], {"event": "payment.captured"})
        self.assertEqual(self.client.get("/api/admin/webhooks/deliveries/evt_9").status_code, 404)


class TestSecurityAdmin(AdminSystemTestCase):

    def test_logs_and_alert_acknowledgement(self):
        security_events.payment_fraud_blocked("pay_1", "203.0.113.9", 95, ["CARD_TESTING"])
        security_events.webhook_ip_blocked("203.0.113.10")

        logs = self.client.get("/api/admin/security/logs", params={"category": "fraud"}).json()["logs"]
        self.assertEqual([e["event"] for e in logs], ["payment_fraud_blocked"])

        overview = self.client.get("/api/admin/security/overview").json()
        self.assertEqual(overview["metrics"]["total_events"], 2)
        self.assertEqual(overview["metrics"]["high_risk_events"], 1)
        alert_id = overview["alerts"][0]["id"]

        self.assertEqual(self.client.post(f"/api/admin/security/alerts/{alert_id}/acknowledge").status_code, 200)
        self.assertEqual(self.client.get("/api/admin/security/overview").json()["alerts"], [])
        self.assertEqual(self.client.post("/api/admin/security/alerts/alert_x/acknowledge").status_code, 404)

    def test_rate_limit_analytics(self):
        response = self.client.get("/api/admin/security/rate-limits")
        self.assertEqual(response.status_code, 200)


if __name__ == "__main__":
    unittest.main()
