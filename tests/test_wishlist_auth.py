#!/usr/bin/env python3
"""Storefront sign-in, sign-up and wishlist tests."""

import unittest

from emporium.data.models import Customer, User, Wishlist
from emporium.services import security_events

from support import StoreTestCase, make_product, make_user


class TestAuth(StoreTestCase):

    def register(self, email="new@example.com", password="password123"):
        return self.client.post("/api/auth/register", json={"email": email, "password": password,
                                                            "first_name": "Meera", "last_name": "Iyer"})

    def test_register_signs_in(self):
        response = self.register()
        self.assertEqual(response.status_code, 200)
        self.assertIn("session_id", response.cookies)
        user = response.json()["user"]
        self.assertEqual(user["role"], "customer")
        self.assertIsNotNone(user["customer_id"])

        me = self.client.get("/api/auth/me")
        self.assertEqual(me.status_code, 200)
        self.assertEqual(me.json()["user"]["email"], "new@example.com")

    def test_register_adopts_guest_customer(self):
        self.db.add(Customer(email="new@example.com", tags=[]))
        self.db.commit()
        self.register()
        self.db.expire_all()
        customer = self.db.query(Customer).one()
        self.assertEqual(customer.first_name, "Meera")
        self.assertIsNotNone(customer.user_id)

    def test_register_duplicate_and_short_password(self):
        self.register()
        self.assertEqual(self.register().status_code, 409)
        self.assertEqual(self.register("other@example.com", "short").status_code, 422)

    def test_login(self):
        make_user(self.db, "shopper@example.com", role="customer")
        response = self.client.post("/api/auth/login",
                                    json={"email": "Shopper@example.com", "password": "password123"})
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["user"]["permissions"], [])
        self.assertIsNotNone(self.db.query(User).one().last_login_at)

    def test_bad_password_is_logged(self):
        make_user(self.db, "shopper@example.com", role="customer")
        response = self.client.post("/api/auth/login",
                                    json={"email": "shopper@example.com", "password": "nope-nope"})
        self.assertEqual(response.status_code, 401)
        events = security_events.get_security_logs(category="authentication")
        self.assertEqual(events[0]["event"], "authentication_failure")

    def test_suspended_user(self):
        make_user(self.db, "gone@example.com", role="customer", status="suspended")
        response = self.client.post("/api/auth/login",
                                    json={"email": "gone@example.com", "password": "password123"})
        self.assertEqual(response.status_code, 403)

    def test_login_is_rate_limited(self):
        codes = [self.client.post("/api/auth/login", json={"email": "x@example.com", "password": "wrong"}).status_code
                 for _ in range(11)]
        self.assertEqual(codes[:10], [401] * 10)
        self.assertEqual(codes[10], 429)

    def test_logout(self):
        self.register()
        self.assertEqual(self.client.post("/api/auth/logout").status_code, 200)
        self.assertEqual(self.client.get("/api/auth/me").status_code, 401)


class TestWishlist(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.product = make_product(self.db, "Canvas Tote", price=30000)

    def add(self):
        return self.client.post("/api/wishlist/items", json={"product_id": self.product.id})

    def test_guest_wishlist(self):
        response = self.add()
        self.assertEqual(response.status_code, 200)
        self.assertIn("wishlist_session", response.cookies)
        self.assertEqual(response.json()["wishlist"]["item_count"], 1)
        self.assertEqual(self.add().status_code, 409)

        contains = self.client.get(f"/api/wishlist/contains/{self.product.id}").json()
        self.assertTrue(contains["in_wishlist"])

        item_id = response.json()["wishlist"]["items"][0]["id"]
        removed = self.client.delete(f"/api/wishlist/items/{item_id}")
        self.assertEqual(removed.json()["wishlist"]["items"], [])
        self.assertEqual(self.client.delete(f"/api/wishlist/items/{item_id}").status_code, 404)

    def test_unknown_product(self):
        response = self.client.post("/api/wishlist/items", json={"product_id": 999})
        self.assertEqual(response.status_code, 404)

    def test_move_to_cart(self):
        item_id = self.add().json()["wishlist"]["items"][0]["id"]
        response = self.client.post(f"/api/wishlist/items/{item_id}/move-to-cart")
        self.assertEqual(response.status_code, 200)
        self.assertIn("cart_token", response.cookies)
        data = response.json()
        self.assertEqual(data["cart"]["item_count"], 1)
        self.assertEqual(data["wishlist"]["items"], [])

    def test_guest_items_merge_on_sign_in(self):
        self.add()
        make_user(self.db, "shopper@example.com", role="customer")
        self.db.add(Customer(email="shopper@example.com", user_id=self.db.query(User).one().id, tags=[]))
        self.db.commit()

        response = self.client.post("/api/auth/login",
                                    json={"email": "shopper@example.com", "password": "password123"})
        self.assertEqual(response.status_code, 200)

        wishlist = self.client.get("/api/wishlist").json()["wishlist"]
        self.assertEqual(wishlist["item_count"], 1)
        self.db.expire_all()
        self.assertEqual(self.db.query(Wishlist).count(), 1)


if __name__ == "__main__":
    unittest.main()
