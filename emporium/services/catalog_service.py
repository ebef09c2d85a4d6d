"""Storefront catalog browsing: products and collections."""
import math
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import String, cast, or_
from sqlalchemy.orm import selectinload

from ..data.models import Category, Collection, Product, ProductCategory, ProductCollection
from .base_service import BaseService
from .serializers import serialize_product


class ProductFilters(BaseModel):
    q: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tag: Optional[str] = None
    min_price: Optional[int] = None
    max_price: Optional[int] = None
    category: Optional[str] = None
    collection: Optional[str] = None
    sort: str = "created-desc"
    page: int = 1
    limit: int = 24


SORTS = {
    "price-asc": Product.price.asc(),
    "price-desc": Product.price.desc(),
    "title-asc": Product.title.asc(),
    "title-desc": Product.title.desc(),
    "created-asc": Product.created_at.asc(),
    "created-desc": Product.created_at.desc(),
}


class CatalogService(BaseService):
    name = "catalog"

    def _active_products(self):
        return self.db.query(Product).filter(Product.status == "active")

    def list_products(self, filters: ProductFilters) -> Dict[str, Any]:
        query = self._active_products()
        if filters.q:
            term = f"%{filters.q.strip()}%"
            query = query.filter(or_(
                Product.title.ilike(term),
                Product.description.ilike(term),
                Product.vendor.ilike(term),
                cast(Product.tags, String).ilike(term),
            ))
        if filters.vendor:
            query = query.filter(Product.vendor == filters.vendor)
        if filters.product_type:
            query = query.filter(Product.product_type == filters.product_type)
        if filters.min_price is not None:
            query = query.filter(Product.price >= filters.min_price)
        if filters.max_price is not None:
            query = query.filter(Product.price <= filters.max_price)
        if filters.category:
            query = query.join(ProductCategory, ProductCategory.product_id == Product.id).join(
                Category, Category.id == ProductCategory.category_id).filter(Category.handle == filters.category)
        if filters.collection:
            query = query.join(ProductCollection, ProductCollection.product_id == Product.id).join(
                Collection, Collection.id == ProductCollection.collection_id).filter(
                Collection.handle == filters.collection)

        products = query.options(selectinload(Product.images)).order_by(
            SORTS.get(filters.sort, SORTS["created-desc"]), Product.id.desc()).all()
        if filters.tag:
            # tags are a JSON list, matched in Python
            products = [p for p in products if filters.tag in (p.tags or [])]

        total = len(products)
        limit = max(1, min(filters.limit, 100))
        page = max(1, filters.page)
        window = products[(page - 1) * limit: page * limit]
        return {
            "products": [serialize_product(p) for p in window],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": math.ceil(total / limit) if total else 0,
        }

    def get_product_by_handle(self, handle: str) -> Optional[Dict[str, Any]]:
        product = self._active_products().filter(Product.handle == handle).first()
        return serialize_product(product, detail=True) if product else None

    def get_facets(self) -> Dict[str, List[str]]:
        vendors = [v for (v,) in self._active_products().with_entities(Product.vendor).distinct() if v]
        types = [t for (t,) in self._active_products().with_entities(Product.product_type).distinct() if t]
        return {"vendors": sorted(vendors), "product_types": sorted(types)}

    def list_collections(self) -> List[Dict[str, Any]]:
        collections = self.db.query(Collection).filter(Collection.status == "active").order_by(Collection.title).all()
        return [
            {"id": c.id, "title": c.title, "handle": c.handle, "description": c.description,
             "product_count": len(c.products)}
            for c in collections
        ]

    def get_collection_products(self, handle: str) -> Optional[Dict[str, Any]]:
        collection = self.db.query(Collection).filter(Collection.handle == handle,
                                                      Collection.status == "active").first()
        if collection is None:
            return None
        links = [link for link in collection.products if link.product.status == "active"]
        if collection.sort_order == "price-asc":
            links.sort(key=lambda link: link.product.price)
        elif collection.sort_order == "price-desc":
            links.sort(key=lambda link: link.product.price, reverse=True)
        elif collection.sort_order == "title-asc":
            links.sort(key=lambda link: link.product.title.lower())
        elif collection.sort_order == "created-desc":
            links.sort(key=lambda link: link.product.created_at, reverse=True)
        else:
            links.sort(key=lambda link: link.position or 0)
        return {
            "collection": {"id": collection.id, "title": collection.title, "handle": collection.handle,
                           "description": collection.description},
            "products": [serialize_product(link.product) for link in links],
        }
