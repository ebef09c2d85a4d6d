#!/usr/bin/env python3
"""
Back-office catalog tests: role checks, product CRUD, bulk actions,
categories and CSV import/export.
"""

import csv
import io
import json
import unittest

from emporium.data.models import AuditLog, Product
from emporium.services.admin.import_export_service import format_major_units, to_minor_units
from emporium.services import security_events

from support import StoreTestCase, make_order, make_product, make_user, sign_in

IMPORT_CSV = """title,handle,description,price,compare_at_price,vendor,product_type,tags,track_inventory,sku,quantity,status
Block Print Dupatta,,Hand block printed,899.50,1200,Loomcraft,Accessories,"cotton, print",true,DUP-1,12,active
,missing-title,,10,,,,,,,,
Bad Price,,,abc,,,,,,,,draft
Second Dupatta,block-print-dupatta,,500,,,,,,,,
"""


def new_product(**overrides):
    body = {"title": "Khadi Shirt", "price": 149900, "status": "active", "vendor": "Loomcraft",
            "product_type": "Shirts", "inventory_quantity": 7, "tags": ["khadi"]}
    body.update(overrides)
    return body


class AdminTestCase(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.admin = make_user(self.db)
        sign_in(self.client, self.admin)


class TestAccessControl(StoreTestCase):

    def test_requires_sign_in(self):
        self.assertEqual(self.client.get("/api/admin/products").status_code, 401)

    def test_customer_is_forbidden(self):
        sign_in(self.client, make_user(self.db, "shopper@example.com", role="customer"))
        self.assertEqual(self.client.get("/api/admin/products").status_code, 403)
        events = [e["event"] for e in security_events.get_security_logs()]
        self.assertIn("unauthorized_access", events)

    def test_staff_can_view_but_not_edit(self):
        sign_in(self.client, make_user(self.db, "staff@example.com", role="staff"))
        self.assertEqual(self.client.get("/api/admin/products").status_code, 200)
        self.assertEqual(self.client.post("/api/admin/products", json=new_product()).status_code, 403)

    def test_manager_cannot_touch_settings(self):
        sign_in(self.client, make_user(self.db, "manager@example.com", role="manager"))
        self.assertEqual(self.client.post("/api/admin/products", json=new_product()).status_code, 201)
        self.assertEqual(self.client.get("/api/admin/settings/store").status_code, 403)
        self.assertEqual(self.client.get("/api/admin/users").status_code, 403)

    def test_suspended_session_is_ignored(self):
        user = make_user(self.db, "staff@example.com", role="staff")
        sign_in(self.client, user)
        user.status = "suspended"
        self.db.commit()
        self.assertEqual(self.client.get("/api/admin/products").status_code, 401)


class TestProducts(AdminTestCase):

    def test_create_product(self):
        response = self.client.post("/api/admin/products", json=new_product())
        self.assertEqual(response.status_code, 201)
        product = response.json()["product"]
        self.assertEqual(product["handle"], "khadi-shirt")
        self.assertEqual(product["variants"][0]["sku"], "KHADI-SHIRT")
        self.assertEqual(product["variants"][0]["available"], 7)
        self.assertIsNotNone(product["published_at"])

        audit = self.db.query(AuditLog).filter_by(action="CREATE").one()
        self.assertEqual(audit.user_email, "admin@example.com")
        self.assertEqual(audit.resource_type, "product")

    def test_duplicate_handle(self):
        self.client.post("/api/admin/products", json=new_product())
        response = self.client.post("/api/admin/products", json=new_product(sku="OTHER"))
        self.assertEqual(response.status_code, 409)

    def test_invalid_payload(self):
        self.assertEqual(self.client.post("/api/admin/products", json=new_product(price=-1)).status_code, 422)
        self.assertEqual(self.client.post("/api/admin/products", json=new_product(status="live")).status_code, 422)

    def test_update_product(self):
        product_id = self.client.post("/api/admin/products", json=new_product()).json()["product"]["id"]
        response = self.client.put(f"/api/admin/products/{product_id}", json={"price": 129900, "title": "Khadi Kurta"})
        self.assertEqual(response.status_code, 200)
        product = response.json()["product"]
        self.assertEqual(product["price"], 129900)
        self.assertEqual(product["variants"][0]["price"], 129900)

        audit = self.db.query(AuditLog).filter_by(action="UPDATE").one()
        self.assertEqual(audit.changes["before"]["price"], 149900)
        self.assertEqual(audit.changes["after"]["title"], "Khadi Kurta")

    def test_status_change(self):
        product = make_product(self.db, status="draft")
        response = self.client.patch(f"/api/admin/products/{product.id}/status", json={"status": "active"})
        self.assertEqual(response.json()["product"]["status"], "active")
        self.assertIsNotNone(self.refresh(product).published_at)

    def test_delete(self):
        product = make_product(self.db)
        self.assertEqual(self.client.delete(f"/api/admin/products/{product.id}").status_code, 200)
        self.assertEqual(self.db.query(Product).count(), 0)
        self.assertEqual(self.client.delete(f"/api/admin/products/{product.id}").status_code, 404)

    def test_product_with_orders_cannot_be_deleted(self):
        product = make_product(self.db)
        make_order(self.db, product)
        response = self.client.delete(f"/api/admin/products/{product.id}")
        self.assertEqual(response.status_code, 409)

    def test_bulk_status(self):
        a = make_product(self.db, "Shirt A", status="draft")
        b = make_product(self.db, "Shirt B", status="draft")
        response = self.client.post("/api/admin/products/bulk/status",
                                    json={"ids": [a.id, b.id, 999], "status": "archived"})
        data = response.json()
        self.assertEqual(data["updated_count"], 2)
        self.assertEqual(data["items"][2]["status"], "error")
        self.assertEqual(self.refresh(a).status, "archived")

    def test_bulk_delete_skips_products_with_orders(self):
        keep = make_product(self.db, "Sold Shirt")
        make_order(self.db, keep)
        drop = make_product(self.db, "Unsold Shirt")
        data = self.client.post("/api/admin/products/bulk/delete", json={"ids": [keep.id, drop.id]}).json()
        self.assertEqual(data["deleted_count"], 1)
        self.assertEqual([p.title for p in self.db.query(Product).all()], ["Sold Shirt"])

    def test_list_and_search(self):
        make_product(self.db, "Linen Shirt")
        make_product(self.db, "Wool Coat", status="draft")
        data = self.client.get("/api/admin/products", params={"status": "draft"}).json()
        self.assertEqual([p["title"] for p in data["products"]], ["Wool Coat"])
        data = self.client.get("/api/admin/products", params={"search": "linen"}).json()
        self.assertEqual(data["total"], 1)

    def test_low_stock(self):
        make_product(self.db, "Plenty", quantity=50)
        make_product(self.db, "Nearly Gone", quantity=2)
        make_product(self.db, "Untracked", quantity=0, track_inventory=False)
        variants = self.client.get("/api/admin/products/low-stock", params={"threshold": 5}).json()["variants"]
        self.assertEqual([v["product_title"] for v in variants], ["Nearly Gone"])


class TestCategoryAdmin(AdminTestCase):

    def test_create_move_delete(self):
        root = self.client.post("/api/admin/categories", json={"name": "Apparel"})
        self.assertEqual(root.status_code, 201)
        root_id = root.json()["id"]
        child = self.client.post("/api/admin/categories", json={"name": "Men", "parent_id": root_id}).json()
        self.assertEqual(child["path"], "apparel/men")

        self.assertEqual(self.client.delete(f"/api/admin/categories/{root_id}").status_code, 409)

        moved = self.client.post(f"/api/admin/categories/{child['id']}/move", json={"parent_id": None}).json()
        self.assertEqual(moved["path"], "men")
        self.assertEqual(moved["level"], 0)
        self.assertEqual(self.client.delete(f"/api/admin/categories/{root_id}").status_code, 200)

    def test_product_category_links(self):
        category_id = self.client.post("/api/admin/categories", json={"name": "Shirts"}).json()["id"]
        product = self.client.post("/api/admin/products", json=new_product(category_ids=[category_id])).json()
        self.assertEqual(product["product"]["categories"], ["shirts"])


class TestImportExport(AdminTestCase):

    def upload(self, text, filename="products.csv"):
        return self.client.post("/api/admin/products/import",
                                files={"file": (filename, text.encode("utf-8"), "text/csv")})

    def test_import_reports_row_errors(self):
        response = self.upload(IMPORT_CSV)
        self.assertEqual(response.status_code, 200)
        results = response.json()["results"]
        self.assertEqual(results["success"], 1)
        self.assertEqual(results["errors"], [
            {"row": 3, "error": "Title is required"},
            {"row": 4, "error": "Valid price is required"},
            {"row": 5, "error": 'Product with handle "block-print-dupatta" already exists'},
        ])

        product = self.db.query(Product).one()
        self.assertEqual(product.price, 89950)
        self.assertEqual(product.compare_at_price, 120000)
        self.assertEqual(product.tags, ["cotton", "print"])
        self.assertEqual(product.variants[0].inventory_level.available, 12)
        self.assertEqual(self.db.query(AuditLog).filter_by(action="IMPORT").one().status, "partial")

    def test_import_rejects_non_csv(self):
        self.assertEqual(self.upload(IMPORT_CSV, "products.xlsx").status_code, 400)

    def test_import_needs_data_rows(self):
        response = self.upload("title,price\n")
        self.assertEqual(response.status_code, 400)

    def test_export_csv(self):
        make_product(self.db, "Linen Shirt", price=149950)
        make_product(self.db, "Draft Coat", status="draft")
        response = self.client.get("/api/admin/products/export", params={"format": "csv", "status": "active"})
        self.assertEqual(response.status_code, 200)
        self.assertIn("attachment; filename=\"products-export-", response.headers["content-disposition"])
        rows = list(csv.DictReader(io.StringIO(response.text)))
        self.assertEqual(len(rows), 1)
        self.assertEqual(rows[0]["price"], "1499.50")
        self.assertEqual(rows[0]["sku"], "LINEN-SHIRT")

    def test_export_json(self):
        make_product(self.db, "Linen Shirt")
        response = self.client.get("/api/admin/products/export", params={"format": "json"})
        payload = json.loads(response.text)
        self.assertEqual(payload["total_records"], 1)
        self.assertEqual(payload["products"][0]["variants"][0]["inventory_quantity"], 10)

    def test_export_unknown_format(self):
        self.assertEqual(self.client.get("/api/admin/products/export", params={"format": "xml"}).status_code, 400)

    def test_money_conversion(self):
        self.assertEqual(to_minor_units("12.345"), 1235)
        self.assertIsNone(to_minor_units("NaN"))
        self.assertIsNone(to_minor_units(" "))
        self.assertEqual(format_major_units(1250), "12.50")


if __name__ == "__main__":
    unittest.main()
