#!/usr/bin/env python3
"""
Back-office order and customer tests: status changes, cancellation,
refunds through the gateway and the customer directory.
"""

import unittest
from unittest.mock import patch

from emporium.app.gateway import GatewayError
from emporium.data.models import AuditLog, Customer, InventoryLevel, Refund

from support import StoreTestCase, make_order, make_product, make_user, sign_in


class AdminOrderTestCase(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = make_user(self.db)
        sign_in(self.client, self.admin)
        self.product = make_product(self.db, quantity=10)

    def level(self):
        self.db.expire_all()
        return self.db.query(InventoryLevel).one()


class TestOrderAdmin(AdminOrderTestCase):

    def test_list_and_search(self):
        make_order(self.db, self.product, email="asha@example.com", gateway_order_id="order_A")
        make_order(self.db, self.product, email="ravi@example.com", gateway_order_id="order_B",
                   status="processing")
        data = self.client.get("/api/admin/orders").json()
        self.assertEqual(data["total"], 2)
        data = self.client.get("/api/admin/orders", params={"search": "asha"}).json()
        self.assertEqual([o["email"] for o in data["orders"]], ["asha@example.com"])
        data = self.client.get("/api/admin/orders", params={"status": "processing"}).json()
        self.assertEqual([o["order_number"] for o in data["orders"]], ["ORD-TEST-order_B"])

    def test_detail(self):
        customer = Customer(email="buyer@example.com", first_name="Asha", last_name="Rao", total_orders=1)
        self.db.add(customer)
        self.db.commit()
        order = make_order(self.db, self.product, quantity=2, customer=customer)
        detail = self.client.get(f"/api/admin/orders/{order.id}").json()["order"]
        self.assertEqual(detail["items"][0]["quantity"], 2)
        self.assertEqual(detail["payments"][0]["status"], "pending")
        self.assertEqual(detail["customer"]["name"], "Asha Rao")
        self.assertEqual(self.client.get("/api/admin/orders/999").status_code, 404)

    def test_status_update_records_history(self):
        order = make_order(self.db, self.product)
        response = self.client.patch(f"/api/admin/orders/{order.id}/status",
                                     json={"status": "processing", "fulfillment_status": "partial",
                                           "notes": "Packed"})
        self.assertEqual(response.status_code, 200)
        history = response.json()["order"]["history"]
        self.assertEqual([(h["status_type"], h["to_status"]) for h in history],
                         [("order", "processing"), ("fulfillment", "partial")])
        self.assertEqual(history[0]["changed_by"], "admin@example.com")
        self.assertIsNotNone(self.refresh(order).processed_at)
        audit = self.db.query(AuditLog).filter_by(action="STATUS_CHANGE").one()
        self.assertEqual(audit.changes["before"]["status"], "pending")

    def test_status_update_validation(self):
        order = make_order(self.db, self.product)
        url = f"/api/admin/orders/{order.id}/status"
        self.assertEqual(self.client.patch(url, json={"status": "teleported"}).status_code, 400)
        self.assertEqual(self.client.patch(url, json={"status": "pending"}).status_code, 400)
        self.assertEqual(self.client.patch("/api/admin/orders/999/status",
                                           json={"status": "processing"}).status_code, 404)

    def test_cancel_releases_reserved_stock(self):
        order = make_order(self.db, self.product, quantity=3, status="processing", gateway="cod", reserve=True)
        self.assertEqual(self.level().reserved, 3)

        response = self.client.post(f"/api/admin/orders/{order.id}/cancel", json={"reason": "Customer asked"})
        self.assertEqual(response.status_code, 200)
        body = response.json()["order"]
        self.assertEqual(body["status"], "cancelled")
        self.assertEqual(body["payment_status"], "cancelled")
        self.assertEqual(body["cancel_reason"], "Customer asked")
        level = self.level()
        self.assertEqual((level.available, level.reserved), (10, 0))

        again = self.client.post(f"/api/admin/orders/{order.id}/cancel", json={"reason": "twice"})
        self.assertEqual(again.status_code, 409)

    def test_status_cancel_goes_through_cancellation(self):
        order = make_order(self.db, self.product, quantity=2, status="processing", gateway="cod", reserve=True)
        self.client.patch(f"/api/admin/orders/{order.id}/status", json={"status": "cancelled"})
        self.assertEqual(self.refresh(order).cancel_reason, "Order cancelled by admin")
        self.assertEqual(self.level().reserved, 0)

    def test_shipped_order_cannot_be_cancelled(self):
        order = make_order(self.db, self.product, status="shipped", payment_status="paid", payment="captured")
        response = self.client.post(f"/api/admin/orders/{order.id}/cancel", json={"reason": "late"})
        self.assertEqual(response.status_code, 400)

    def test_notes(self):
        order = make_order(self.db, self.product)
        self.assertEqual(self.client.post(f"/api/admin/orders/{order.id}/notes",
                                          json={"note": "Gift wrap"}).status_code, 200)
        history = self.client.get(f"/api/admin/orders/{order.id}").json()["order"]["history"]
        self.assertEqual(history[-1]["status_type"], "note")
        self.assertEqual(history[-1]["notes"], "Gift wrap")
        self.assertEqual(self.client.post(f"/api/admin/orders/{order.id}/notes",
                                          json={"note": ""}).status_code, 422)

    def test_stats(self):
        make_order(self.db, self.product, gateway_order_id="order_A", status="processing",
                   payment_status="paid", payment="captured")
        make_order(self.db, self.product, gateway_order_id="order_B")
        stats = self.client.get("/api/admin/orders/stats").json()
        self.assertEqual(stats["total_orders"], 2)
        self.assertEqual(stats["paid_orders"], 1)
        self.assertEqual(stats["total_revenue"], 59000)
        self.assertEqual(stats["pending_orders"], 1)

    def test_staff_manages_orders_but_not_customers(self):
        sign_in(self.client, make_user(self.db, "staff@example.com", role="staff"))
        order = make_order(self.db, self.product)
        self.assertEqual(self.client.post(f"/api/admin/orders/{order.id}/notes",
                                          json={"note": "Called buyer"}).status_code, 200)
        self.assertEqual(self.client.put("/api/admin/customers/1", json={"notes": "x"}).status_code, 403)


class TestRefunds(AdminOrderTestCase):

    def setUp(self):
        super().setUp()
        self.order = make_order(self.db, self.product, status="processing", payment_status="paid",
                                payment="captured", gateway_payment_id="pay_1")

    @patch("emporium.app.gateway.RazorpayClient.create_refund")
    def test_partial_then_full_refund(self, create_refund):
        create_refund.return_value = {"id": "rfnd_1", "status": "processed"}
        response = self.client.post(f"/api/admin/orders/{self.order.id}/refund",
                                    json={"amount": 20000, "reason": "Damaged"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["refund_amount"], 20000)
        self.assertEqual(response.json()["order"]["payment_status"], "partially_refunded")
        create_refund.assert_called_once()
        self.assertEqual(create_refund.call_args[0][:2], ("pay_1", 20000))

        create_refund.return_value = {"id": "rfnd_2", "status": "pending"}
        response = self.client.post(f"/api/admin/orders/{self.order.id}/refund", json={})
        self.assertEqual(response.json()["refund_amount"], 39000)
        self.assertEqual(response.json()["order"]["payment_status"], "refunded")

        refunds = self.db.query(Refund).order_by(Refund.id).all()
        self.assertEqual([r.status for r in refunds], ["success", "pending"])
        self.assertEqual(refunds[1].gateway_refund_id, "rfnd_2")

    @patch("emporium.app.gateway.RazorpayClient.create_refund")
    def test_over_refund_is_rejected(self, create_refund):
        response = self.client.post(f"/api/admin/orders/{self.order.id}/refund", json={"amount": 60000})
        self.assertEqual(response.status_code, 400)
        self.assertIn("59000", response.json()["detail"])
        create_refund.assert_not_called()

    @patch("emporium.app.gateway.RazorpayClient.create_refund")
    def test_gateway_failure(self, create_refund):
        create_refund.side_effect = GatewayError("Razorpay unavailable", status_code=503)
        response = self.client.post(f"/api/admin/orders/{self.order.id}/refund", json={"amount": 1000})
        self.assertEqual(response.status_code, 502)
        self.assertEqual(self.db.query(Refund).count(), 0)
        self.assertEqual(self.refresh(self.order).payment_status, "paid")
        audit = self.db.query(AuditLog).filter_by(action="REFUND").one()
        self.assertIn("Razorpay unavailable", audit.changes["error"])

    def test_offline_refund_settles_immediately(self):
        cod = make_order(self.db, self.product, gateway_order_id="order_COD", status="delivered",
                         payment_status="paid", payment="captured", gateway="cod")
        with patch("emporium.app.gateway.RazorpayClient.create_refund") as create_refund:
            response = self.client.post(f"/api/admin/orders/{cod.id}/refund", json={"reason": "Returned"})
        create_refund.assert_not_called()
        self.assertEqual(response.json()["order"]["payment_status"], "refunded")
        self.assertEqual(self.db.query(Refund).one().status, "success")

    def test_order_without_capture(self):
        pending = make_order(self.db, self.product, gateway_order_id="order_P")
        response = self.client.post(f"/api/admin/orders/{pending.id}/refund", json={})
        self.assertEqual(response.status_code, 400)


class TestCustomerAdmin(AdminOrderTestCase):

    def setUp(self):
        super().setUp()
        self.asha = Customer(email="asha@example.com", first_name="Asha", last_name="Rao", phone="9800000001")
        self.ravi = Customer(email="ravi@example.com", first_name="Ravi", status="disabled")
        self.db.add_all([self.asha, self.ravi])
        self.db.commit()

    def test_list(self):
        data = self.client.get("/api/admin/customers").json()
        self.assertEqual(data["total"], 2)
        data = self.client.get("/api/admin/customers", params={"search": "9800"}).json()
        self.assertEqual([c["email"] for c in data["customers"]], ["asha@example.com"])
        data = self.client.get("/api/admin/customers", params={"status": "disabled"}).json()
        self.assertEqual([c["name"] for c in data["customers"]], ["Ravi"])

    def test_detail_includes_orders(self):
        make_order(self.db, self.product, email="asha@example.com", customer=self.asha)
        customer = self.client.get(f"/api/admin/customers/{self.asha.id}").json()["customer"]
        self.assertEqual(len(customer["orders"]), 1)
        self.assertFalse(customer["has_account"])
        self.assertEqual(self.client.get("/api/admin/customers/999").status_code, 404)

    def test_update(self):
        response = self.client.put(f"/api/admin/customers/{self.asha.id}",
                                   json={"tags": ["vip"], "notes": "Prefers courier"})
        self.assertEqual(response.json()["customer"]["tags"], ["vip"])
        self.assertEqual(self.refresh(self.asha).notes, "Prefers courier")
        audit = self.db.query(AuditLog).filter_by(resource_type="customer").one()
        self.assertEqual(audit.changes["after"], {"tags": ["vip"], "notes": "Prefers courier"})

        self.assertEqual(self.client.put(f"/api/admin/customers/{self.asha.id}",
                                         json={"status": "banned"}).status_code, 422)

    def test_stats(self):
        stats = self.client.get("/api/admin/customers/stats").json()
        self.assertEqual(stats["total_customers"], 2)
        self.assertEqual(stats["active_customers"], 1)
        self.assertEqual(stats["customers_with_orders"], 0)


if __name__ == "__main__":
    unittest.main()
