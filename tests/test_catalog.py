#!/usr/bin/env python3
"""Storefront browsing: product listing, search suggestions, collections and categories."""

import unittest

from emporium.data.models import Collection, ProductCategory, ProductCollection
from emporium.services.category_service import CategoryService

from support import StoreTestCase, make_product


class TestProductListing(StoreTestCase):

    def setUp(self):
        super().setUp()
        self.kurta = make_product(self.db, "Linen Kurta", price=180000, vendor="Loomcraft", product_type="Kurtas",
                                  tags=["linen", "summer"])
        self.shoes = make_product(self.db, "Running Shoes", price=420000, vendor="Stride", product_type="Footwear")
        self.scarf = make_product(self.db, "Wool Scarf", price=90000, vendor="Loomcraft", status="draft")

    def test_only_active_products_listed(self):
        data = self.client.get("/api/products").json()
        self.assertEqual(data["total"], 2)
        self.assertEqual({p["handle"] for p in data["products"]}, {"linen-kurta", "running-shoes"})

    def test_filters_and_sort(self):
        by_vendor = self.client.get("/api/products", params={"vendor": "Loomcraft"}).json()
        self.assertEqual([p["title"] for p in by_vendor["products"]], ["Linen Kurta"])

        by_tag = self.client.get("/api/products", params={"tag": "summer"}).json()
        self.assertEqual(by_tag["total"], 1)

        cheap_first = self.client.get("/api/products", params={"sort": "price-asc"}).json()
        self.assertEqual([p["price"] for p in cheap_first["products"]], [180000, 420000])

        capped = self.client.get("/api/products", params={"max_price": 200000}).json()
        self.assertEqual(capped["total"], 1)

    def test_pagination(self):
        data = self.client.get("/api/products", params={"limit": 1, "page": 2}).json()
        self.assertEqual(len(data["products"]), 1)
        self.assertEqual(data["total_pages"], 2)

    def test_product_detail(self):
        detail = self.client.get("/api/products/linen-kurta").json()
        self.assertEqual(detail["variants"][0]["price"], 180000)
        self.assertEqual(self.client.get("/api/products/wool-scarf").status_code, 404)

    def test_facets(self):
        facets = self.client.get("/api/products/facets").json()
        self.assertEqual(facets, {"vendors": ["Loomcraft", "Stride"], "product_types": ["Footwear", "Kurtas"]})

    def test_search(self):
        data = self.client.get("/api/search", params={"q": "linen"}).json()
        self.assertEqual(data["query"], "linen")
        self.assertEqual([p["handle"] for p in data["products"]], ["linen-kurta"])

    def test_shipping_methods(self):
        methods = self.client.get("/api/shipping-methods").json()["shipping_methods"]
        self.assertEqual([m["id"] for m in methods], ["standard", "express", "overnight"])


class TestSuggestions(StoreTestCase):

    def setUp(self):
        super().setUp()
        make_product(self.db, "Linen Kurta", vendor="Loomcraft", product_type="Kurtas")
        make_product(self.db, "Relaxed Linen Shirt", vendor="Loomcraft", product_type="Shirts")
        make_product(self.db, "Cotton Tee", vendor="Linea", product_type="Tees")

    def suggest(self, q):
        return self.client.get("/api/search/suggestions", params={"q": q}).json()["suggestions"]

    def test_short_query(self):
        self.assertEqual(self.suggest("l"), [])

    def test_prefix_match_ranks_first(self):
        suggestions = self.suggest("lin")
        self.assertEqual(suggestions[0]["title"], "Linen Kurta")
        self.assertEqual(suggestions[0]["relevance_score"], 100)
        products = [s["title"] for s in suggestions if s["type"] == "product"]
        self.assertEqual(products, ["Linen Kurta", "Relaxed Linen Shirt", "Cotton Tee"])
        brands = [s for s in suggestions if s["type"] == "brand"]
        self.assertEqual(brands[0]["title"], "Linea")
        self.assertEqual(brands[0]["url"], "/search?brand=Linea")

    def test_category_groups(self):
        suggestions = self.suggest("kurt")
        category = next(s for s in suggestions if s["type"] == "category")
        self.assertEqual(category["subtitle"], "1 products")

    def test_like_wildcards_are_literal(self):
        self.assertEqual(self.suggest("%%"), [])


class TestCollections(StoreTestCase):

    def test_collection_products(self):
        a = make_product(self.db, "Beach Shirt", price=90000)
        b = make_product(self.db, "Beach Shorts", price=60000)
        collection = Collection(title="Summer", handle="summer", sort_order="price-asc", status="active")
        self.db.add(collection)
        self.db.flush()
        self.db.add_all([ProductCollection(product_id=a.id, collection_id=collection.id, position=0),
                         ProductCollection(product_id=b.id, collection_id=collection.id, position=1)])
        self.db.commit()

        listing = self.client.get("/api/collections").json()["collections"]
        self.assertEqual(listing[0]["product_count"], 2)
        data = self.client.get("/api/collections/summer").json()
        self.assertEqual([p["title"] for p in data["products"]], ["Beach Shorts", "Beach Shirt"])
        self.assertEqual(self.client.get("/api/collections/winter").status_code, 404)


class TestCategories(StoreTestCase):

    def setUp(self):
        super().setUp()
        service = CategoryService(self.db)
        self.apparel = service.create_category("Apparel").data["id"]
        self.men = service.create_category("Men", parent_id=self.apparel).data["id"]
        self.shirts = service.create_category("Shirts", parent_id=self.men).data["id"]
        self.service = service

    def test_tree_and_breadcrumbs(self):
        tree = self.client.get("/api/categories").json()["categories"]
        self.assertEqual(tree[0]["handle"], "apparel")
        self.assertEqual(tree[0]["children"][0]["children"][0]["path"], "apparel/men/shirts")

        crumbs = self.client.get("/api/categories/shirts/breadcrumbs").json()["breadcrumbs"]
        self.assertEqual([c["name"] for c in crumbs], ["Apparel", "Men", "Shirts"])
        self.assertEqual(self.client.get("/api/categories/nope/breadcrumbs").status_code, 404)

    def test_move_rebases_subtree(self):
        women = self.service.create_category("Women").data["id"]
        result = self.service.move_category(self.men, women)
        self.assertTrue(result.success)
        self.db.expire_all()
        crumbs = self.service.get_breadcrumbs("shirts")
        self.assertEqual([c["handle"] for c in crumbs], ["women", "men", "shirts"])

    def test_cannot_move_under_descendant(self):
        result = self.service.move_category(self.apparel, self.shirts)
        self.assertFalse(result.success)
        self.assertFalse(self.service.move_category(self.apparel, self.apparel).success)

    def test_duplicate_handle(self):
        result = self.service.create_category("Men")
        self.assertEqual(result.code, "conflict")

    def test_filter_products_by_category(self):
        product = make_product(self.db, "Oxford Shirt")
        self.db.add(ProductCategory(product_id=product.id, category_id=self.shirts))
        make_product(self.db, "Trail Shoes")
        self.db.commit()
        data = self.client.get("/api/products", params={"category": "shirts"}).json()
        self.assertEqual([p["title"] for p in data["products"]], ["Oxford Shirt"])

    def test_inactive_categories_hidden(self):
        self.service.update_category(self.apparel, is_active=False)
        tree = self.client.get("/api/categories").json()["categories"]
        self.assertEqual(tree[0]["handle"], "men")


if __name__ == "__main__":
    unittest.main()
