"""Back-office product management."""
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy import or_

from ...app.config import Config
from ...data.models import (
    CartItem, InventoryLevel, OrderItem, Product, ProductCategory, ProductCollection, ProductImage,
    ProductVariant, WishlistItem,
)
from ...schemas.admin_models import ProductIn, ProductUpdate
from ...schemas.io_models import Actor, RequestContext, ServiceResult
from ...utils.handles import generate_handle
from ...utils.timeutils import utcnow
from ..base_service import BaseService
from ..pagination import paginate
from ..serializers import serialize_product
from .audit_service import BulkOperationItem, log_audit_action, log_bulk_audit_action

_TRACKED_FIELDS = ("title", "handle", "description", "status", "price", "compare_at_price", "vendor",
                   "product_type", "tags", "taxable", "track_inventory", "continue_selling_when_out_of_stock")


class AdminProductFilters(BaseModel):
    status: Optional[str] = None
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    search: Optional[str] = None
    sort_by: str = "created_at"
    sort_order: str = "desc"
    page: int = 1
    limit: int = 20


_SORTABLE = {
    "created_at": Product.created_at,
    "updated_at": Product.updated_at,
    "title": Product.title,
    "price": Product.price,
    "status": Product.status,
}


def apply_status(product: Product, status: str) -> None:
    product.status = status
    if status == "active" and product.published_at is None:
        product.published_at = utcnow()


class AdminProductService(BaseService):
    name = "admin_products"

    def __init__(self, db, actor: Optional[Actor] = None, context: Optional[RequestContext] = None):
        super().__init__(db)
        self.actor = actor
        self.context = context

    def _audit(self, action: str, product: Product, changes: Optional[Dict[str, Any]] = None,
               commit: bool = True) -> None:
        log_audit_action(self.db, action, "product", actor=self.actor, context=self.context,
                         resource_id=product.id, resource_title=product.title, changes=changes, commit=commit)

    def _handle_taken(self, handle: str, exclude_id: Optional[int] = None) -> bool:
        query = self.db.query(Product.id).filter(Product.handle == handle)
        if exclude_id is not None:
            query = query.filter(Product.id != exclude_id)
        return query.first() is not None

    def list_products(self, filters: AdminProductFilters) -> Dict[str, Any]:
        query = self.db.query(Product)
        if filters.status:
            query = query.filter(Product.status == filters.status)
        if filters.vendor:
            query = query.filter(Product.vendor == filters.vendor)
        if filters.product_type:
            query = query.filter(Product.product_type == filters.product_type)
        if filters.search:
            term = f"%{filters.search.strip()}%"
            query = query.filter(or_(Product.title.ilike(term), Product.handle.ilike(term),
                                     Product.vendor.ilike(term)))
        column = _SORTABLE.get(filters.sort_by, Product.created_at)
        query = query.order_by(column.asc() if filters.sort_order == "asc" else column.desc(), Product.id.desc())
        return paginate(query, filters.page, filters.limit, serialize_product, key="products")

    def get_product(self, product_id: int) -> Optional[Dict[str, Any]]:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        return serialize_product(product, detail=True) if product else None

    def _set_links(self, product: Product, category_ids: Optional[List[int]],
                   collection_ids: Optional[List[int]]) -> None:
        if category_ids is not None:
            product.categories = [ProductCategory(category_id=cid) for cid in dict.fromkeys(category_ids)]
        if collection_ids is not None:
            product.collections = [ProductCollection(collection_id=cid, position=i)
                                   for i, cid in enumerate(dict.fromkeys(collection_ids))]

    def create_product(self, data: ProductIn) -> ServiceResult:
        handle = generate_handle(data.handle or data.title)
        if not handle:
            return self._fail("A product handle could not be generated from the title")
        if self._handle_taken(handle):
            return self._fail("A product with this handle already exists", code="conflict")
        sku = data.sku or handle.upper()
        if self.db.query(ProductVariant.id).filter(ProductVariant.sku == sku).first():
            return self._fail(f"SKU {sku} is already in use", code="conflict")

        product = Product(
            title=data.title, handle=handle, description=data.description, price=data.price,
            compare_at_price=data.compare_at_price, vendor=data.vendor, product_type=data.product_type,
            tags=data.tags, taxable=data.taxable, track_inventory=data.track_inventory,
            continue_selling_when_out_of_stock=data.continue_selling_when_out_of_stock,
        )
        apply_status(product, data.status)
        variant = ProductVariant(title="Default", sku=sku, price=data.price, compare_at_price=data.compare_at_price,
                                 inventory_quantity=data.inventory_quantity, position=0,
                                 inventory_policy="continue" if data.continue_selling_when_out_of_stock else "deny")
        variant.inventory_level = InventoryLevel(available=data.inventory_quantity, reserved=0, committed=0)
        product.variants = [variant]
        product.images = [ProductImage(url=url, alt_text=data.title, position=i) for i, url in enumerate(data.images)]
        self._set_links(product, data.category_ids, data.collection_ids)
        self.db.add(product)
        self.db.flush()
        self._audit("CREATE", product, {"after": data.model_dump(exclude={"images"})}, commit=False)
        self._commit()
        self.logger.info("[ADMIN] product %s created (%s)", product.id, product.handle)
        return self._ok("Product created successfully", product=serialize_product(product, detail=True))

    def update_product(self, product_id: int, data: ProductUpdate) -> ServiceResult:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return self._fail("Product not found", code="not_found")

        fields = data.model_dump(exclude_unset=True)
        if "handle" in fields:
            fields["handle"] = generate_handle(fields["handle"] or product.title)
            if self._handle_taken(fields["handle"], exclude_id=product.id):
                return self._fail("A product with this handle already exists", code="conflict")

        before = {f: getattr(product, f) for f in _TRACKED_FIELDS if f in fields}
        for field in _TRACKED_FIELDS:
            if field not in fields or field == "status":
                continue
            setattr(product, field, fields[field])
        if fields.get("status"):
            apply_status(product, fields["status"])
        if "price" in fields and len(product.variants) == 1:
            product.variants[0].price = fields["price"]
        self._set_links(product, fields.get("category_ids"), fields.get("collection_ids"))

        after = {f: getattr(product, f) for f in before}
        self._audit("UPDATE", product, {"before": before, "after": after}, commit=False)
        self._commit()
        return self._ok("Product updated successfully", product=serialize_product(product, detail=True))

    def update_status(self, product_id: int, status: str) -> ServiceResult:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return self._fail("Product not found", code="not_found")
        previous = product.status
        apply_status(product, status)
        self._audit("STATUS_CHANGE", product, {"before": {"status": previous}, "after": {"status": status}},
                    commit=False)
        self._commit()
        return self._ok(f"Product status set to {status}", product=serialize_product(product))

    def _delete_blocker(self, product: Product) -> Optional[str]:
        if self.db.query(OrderItem.id).filter(OrderItem.product_id == product.id).first():
            return "Product has orders; archive it instead"
        return None

    def _remove(self, product: Product) -> None:
        self.db.query(CartItem).filter(CartItem.product_id == product.id).delete(synchronize_session=False)
        self.db.query(WishlistItem).filter(WishlistItem.product_id == product.id).delete(synchronize_session=False)
        self.db.delete(product)

    def delete_product(self, product_id: int) -> ServiceResult:
        product = self.db.query(Product).filter(Product.id == product_id).first()
        if product is None:
            return self._fail("Product not found", code="not_found")
        blocker = self._delete_blocker(product)
        if blocker:
            return self._fail(blocker, code="conflict")
        self._audit("DELETE", product, {"before": {"title": product.title, "handle": product.handle}}, commit=False)
        self._remove(product)
        self._commit()
        return self._ok("Product deleted successfully")

    def bulk_update_status(self, ids: List[int], status: str) -> ServiceResult:
        if not ids:
            return self._fail("No products selected")
        products = {p.id: p for p in self.db.query(Product).filter(Product.id.in_(ids)).all()}
        items: List[BulkOperationItem] = []
        for pid in ids:
            product = products.get(pid)
            if product is None:
                items.append(BulkOperationItem(resource_id=str(pid), status="error", error_message="Product not found"))
                continue
            apply_status(product, status)
            items.append(BulkOperationItem(resource_id=str(pid), resource_title=product.title))
        self._commit()
        log_bulk_audit_action(self.db, "BULK_UPDATE", "product", items, actor=self.actor, context=self.context,
                              metadata={"operation": "status_update", "new_status": status})
        updated = sum(1 for i in items if i.status == "success")
        return self._ok(f"{updated} products updated successfully", updated_count=updated,
                        items=[i.model_dump() for i in items])

    def bulk_delete(self, ids: List[int]) -> ServiceResult:
        if not ids:
            return self._fail("No products selected")
        items: List[BulkOperationItem] = []
        for pid in ids:
            product = self.db.query(Product).filter(Product.id == pid).first()
            if product is None:
                items.append(BulkOperationItem(resource_id=str(pid), status="error", error_message="Product not found"))
                continue
            blocker = self._delete_blocker(product)
            if blocker:
                items.append(BulkOperationItem(resource_id=str(pid), resource_title=product.title,
                                               status="error", error_message=blocker))
                continue
            title = product.title
            self._remove(product)
            items.append(BulkOperationItem(resource_id=str(pid), resource_title=title))
        self._commit()
        log_bulk_audit_action(self.db, "BULK_DELETE", "product", items, actor=self.actor, context=self.context,
                              metadata={"operation": "delete"})
        deleted = sum(1 for i in items if i.status == "success")
        return self._ok(f"{deleted} products deleted successfully", deleted_count=deleted,
                        items=[i.model_dump() for i in items])

    def low_stock(self, threshold: Optional[int] = None) -> List[Dict[str, Any]]:
        """Tracked variants at or below the threshold, lowest stock first."""
        threshold = Config.LOW_STOCK_THRESHOLD if threshold is None else threshold
        rows = self.db.query(ProductVariant, Product).join(Product, Product.id == ProductVariant.product_id).filter(
            Product.track_inventory.is_(True),
            Product.status != "archived",
            ProductVariant.inventory_quantity <= threshold,
        ).order_by(ProductVariant.inventory_quantity.asc(), Product.title.asc()).all()
        return [
            {"product_id": product.id, "product_title": product.title, "variant_id": variant.id,
             "variant_title": variant.title, "sku": variant.sku, "inventory_quantity": variant.inventory_quantity}
            for variant, product in rows
        ]
