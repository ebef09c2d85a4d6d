#!/usr/bin/env python3
"""
Razorpay webhook endpoint tests.

Covers the guard order (allow-list, signature, payload), duplicate delivery
handling and the state changes each event applies to payments, orders and
inventory.
"""

import unittest
from unittest.mock import patch

from emporium.app.gateway import RazorpayClient
from emporium.data.models import IdempotencyKey, InventoryLevel, Refund, WebhookDelivery
from emporium.services import security_events
from emporium.services.idempotency import check_idempotency

from support import StoreTestCase, WEBHOOK_IP, make_order, make_product, sign_webhook, webhook_body

URL = "/api/webhooks/razorpay"


def captured_details(amount, order_id="order_TEST1", payment_id="pay_TEST1"):
    return {"id": payment_id, "order_id": order_id, "amount": amount, "currency": "INR", "status": "captured",
            "method": "card", "card": {"last4": "4242", "network": "Visa"}}


class TestWebhookGuards(StoreTestCase):

    def post(self, body, signature=None, ip=WEBHOOK_IP):
        headers = {"Content-Type": "application/json"}
        if ip:
            headers["X-Forwarded-For"] = ip
        if signature is not None:
            headers["X-Razorpay-Signature"] = signature
        return self.client.post(URL, content=body, headers=headers)

    def test_rejects_unlisted_ip(self):
        body = webhook_body("payment.captured", id="pay_1", order_id="order_1")
        response = self.post(body, sign_webhook(body), ip="203.0.113.9")
        self.assertEqual(response.status_code, 403)
        events = [e["event"] for e in security_events.get_security_logs()]
        self.assertIn("webhook_ip_blocked", events)

    def test_loopback_is_rejected_outside_development(self):
        body = webhook_body("payment.captured", id="pay_1", order_id="order_1")
        response = self.post(body, sign_webhook(body), ip=None)
        self.assertEqual(response.status_code, 403)

    def test_missing_signature_releases_claim(self):
        body = webhook_body("payment.captured", id="pay_1", order_id="order_1")
        response = self.post(body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.db.query(IdempotencyKey).count(), 0)

    def test_invalid_signature(self):
        body = webhook_body("payment.captured", id="pay_1", order_id="order_1")
        response = self.post(body, "0" * 64)
        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["error"], "Invalid signature")
        self.assertEqual(self.db.query(IdempotencyKey).count(), 0)
        events = [e["event"] for e in security_events.get_security_logs()]
        self.assertIn("webhook_signature_invalid", events)

    def test_forged_delivery_does_not_block_the_real_one(self):
        product = make_product(self.db)
        order = make_order(self.db, product)
        body = webhook_body("payment.authorized", id="pay_TEST1", order_id="order_TEST1", amount=order.total_price)
        self.assertEqual(self.post(body, "f" * 64).status_code, 401)
        response = self.post(body, sign_webhook(body))
        self.assertEqual(response.status_code, 200)
        self.assertTrue(response.json()["processed"])

    def test_non_ascii_signature_does_not_block_the_real_delivery(self):
        product = make_product(self.db)
        order = make_order(self.db, product)
        body = webhook_body("payment.failed", id="pay_TEST1", order_id="order_TEST1", amount=order.total_price)
        forged = self.post(body, "ébad".encode("utf-8"))
        self.assertEqual(forged.status_code, 401)
        self.assertEqual(self.db.query(IdempotencyKey).count(), 0)
        response = self.post(body, sign_webhook(body))
        self.assertEqual(response.status_code, 200)

    def test_invalid_json(self):
        body = b"{not json"
        response = self.post(body, sign_webhook(body))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid JSON payload")

    def test_payload_without_event(self):
        body = b'{"payload": {}}'
        response = self.post(body, sign_webhook(body))
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "Invalid payload structure")

    def test_processor_crash_returns_500_and_releases_claim(self):
        body = webhook_body("payment.failed", id="pay_1", order_id="order_1")
        with patch("emporium.app.routes.webhooks.process_razorpay_webhook", side_effect=RuntimeError("boom")):
            response = self.post(body, sign_webhook(body))
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["details"], "boom")
        self.assertEqual(self.db.query(IdempotencyKey).count(), 0)

    def test_health_and_method_guard(self):
        health = self.client.get(URL)
        self.assertEqual(health.status_code, 200)
        self.assertEqual(health.json()["service"], "razorpay-webhook")
        self.assertEqual(self.client.put(URL).status_code, 405)
        self.assertEqual(self.client.delete(URL).status_code, 405)


class TestWebhookEvents(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.product = make_product(self.db, quantity=10)
        self.order = make_order(self.db, self.product, quantity=2, reserve=True)

    def deliver(self, body):
        return self.client.post(URL, content=body, headers={
            "Content-Type": "application/json",
            "X-Forwarded-For": WEBHOOK_IP,
            "X-Razorpay-Signature": sign_webhook(body),
        })

    def level(self):
        self.db.expire_all()
        return self.db.query(InventoryLevel).filter(
            InventoryLevel.variant_id == self.product.variants[0].id).one()

    def test_payment_captured(self):
        body = webhook_body("payment.captured", id="pay_TEST1", order_id="order_TEST1",
                            amount=self.order.total_price)
        with patch.object(RazorpayClient, "fetch_payment",
                          return_value=captured_details(self.order.total_price)) as fetch:
            response = self.deliver(body)
        fetch.assert_called_once_with("pay_TEST1")

        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertTrue(data["success"])
        self.assertTrue(data["processed"])
        self.assertIn("delivery_id", data)

        order = self.refresh(self.order)
        self.assertEqual(order.status, "processing")
        self.assertEqual(order.payment_status, "paid")
        payment = order.payments[0]
        self.assertEqual(payment.status, "captured")
        self.assertEqual(payment.card_last4, "4242")

        level = self.level()
        self.assertEqual(level.available, 8)
        self.assertEqual(level.reserved, 0)
        self.assertEqual(level.committed, 2)

        delivery = self.db.query(WebhookDelivery).one()
        self.assertEqual(delivery.status, "success")
        self.assertEqual(delivery.event_type, "payment.captured")

    def test_duplicate_delivery_replays_first_response(self):
        body = webhook_body("payment.captured", id="pay_TEST1", order_id="order_TEST1",
                            amount=self.order.total_price)
        with patch.object(RazorpayClient, "fetch_payment",
                          return_value=captured_details(self.order.total_price)) as fetch:
            first = self.deliver(body)
            second = self.deliver(body)
        self.assertEqual(fetch.call_count, 1)
        self.assertEqual(second.status_code, 200)
        self.assertEqual(second.json(), first.json())
        self.assertEqual(self.db.query(WebhookDelivery).count(), 1)
        self.assertEqual(self.level().committed, 2)

    def test_pending_claim_is_reported_as_conflict(self):
        check_idempotency(self.db, "webhook:payment.failed:pay_TEST1")
        body = webhook_body("payment.failed", id="pay_TEST1", order_id="order_TEST1")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 409)

    def test_payment_failed_releases_stock(self):
        body = webhook_body("payment.failed", id="pay_TEST1", order_id="order_TEST1",
                            error_code="BAD_REQUEST_ERROR", error_description="Card declined")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 200)

        order = self.refresh(self.order)
        self.assertEqual(order.status, "payment_failed")
        self.assertEqual(order.payment_status, "failed")
        self.assertEqual(order.payments[0].failure_reason, "Card declined")
        level = self.level()
        self.assertEqual(level.available, 10)
        self.assertEqual(level.reserved, 0)

    def test_payment_authorized(self):
        body = webhook_body("payment.authorized", id="pay_TEST1", order_id="order_TEST1", method="upi")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 200)
        order = self.refresh(self.order)
        self.assertEqual(order.payment_status, "authorized")
        self.assertEqual(order.payments[0].payment_method, "upi")

    def test_order_paid(self):
        body = webhook_body("order.paid", entity_kind="order", id="order_TEST1")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.refresh(self.order).payment_status, "paid")

    def test_refund_processed(self):
        self.db.add(Refund(order_id=self.order.id, payment_id=self.order.payments[0].id, amount=1000,
                           status="pending", gateway_refund_id="rfnd_1"))
        self.db.commit()
        body = webhook_body("refund.processed", entity_kind="refund", id="rfnd_1", amount=1000)
        response = self.deliver(body)
        self.assertEqual(response.status_code, 200)
        self.db.expire_all()
        self.assertEqual(self.db.query(Refund).one().status, "success")

    def test_unknown_payment_is_an_error(self):
        body = webhook_body("payment.failed", id="pay_X", order_id="order_UNKNOWN")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 500)
        self.assertEqual(response.json()["details"], "Payment record not found")
        delivery = self.db.query(WebhookDelivery).one()
        self.assertEqual(delivery.status, "failed")

        # the failed outcome is remembered for a short while
        replay = self.deliver(body)
        self.assertEqual(replay.status_code, 200)
        self.assertEqual(replay.json()["details"], "Payment record not found")

    def test_unhandled_event_is_acknowledged(self):
        body = webhook_body("subscription.charged", entity_kind="subscription", id="sub_1")
        response = self.deliver(body)
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["processed"])


if __name__ == "__main__":
    unittest.main()
