"""CSV product import and CSV/JSON product export."""
import csv
import io
import json
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from pydantic import BaseModel
from sqlalchemy.orm import Session

from ...data.models import InventoryLevel, Product, ProductVariant
from ...schemas.io_models import Actor, RequestContext
from ...utils.handles import generate_handle
from ...utils.logger import get_logger
from ...utils.timeutils import utcnow
from .audit_service import log_audit_action

logger = get_logger()

CSV_COLUMNS = ["title", "handle", "description", "price", "compare_at_price", "vendor", "product_type",
               "tags", "track_inventory", "sku", "quantity", "status"]
STATUSES = ("draft", "active", "archived")


class RowError(ValueError):
    """A CSV row that cannot be imported; the message is reported back per row."""


class ExportFilters(BaseModel):
    status: Optional[List[str]] = None
    vendor: Optional[List[str]] = None
    product_type: Optional[List[str]] = None


def to_minor_units(raw: Optional[str]) -> Optional[int]:
    """'12.50' -> 1250. Returns None for blank or unparseable input."""
    if raw is None or not raw.strip():
        return None
    try:
        value = Decimal(raw.strip())
    except InvalidOperation:
        return None
    if not value.is_finite():
        return None
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def format_major_units(amount: Optional[int]) -> str:
    if amount is None:
        return ""
    return f"{Decimal(amount) / 100:.2f}"


def _clean(row: Dict[Optional[str], Any]) -> Dict[str, str]:
    """Strip keys and values, dropping empty cells and overflow columns."""
    cleaned = {}
    for key, value in row.items():
        if key is None or not isinstance(value, str):
            continue
        value = value.strip()
        if value:
            cleaned[key.strip().lower()] = value
    return cleaned


def _build_product(db: Session, row: Dict[str, str]) -> Product:
    title = row.get("title")
    if not title:
        raise RowError("Title is required")

    price = to_minor_units(row.get("price"))
    if price is None or price < 0:
        raise RowError("Valid price is required")
    compare_at_price = to_minor_units(row.get("compare_at_price"))

    handle = generate_handle(row.get("handle") or title)
    if not handle:
        raise RowError("Could not generate a handle from the title")
    if db.query(Product.id).filter(Product.handle == handle).first():
        raise RowError(f'Product with handle "{handle}" already exists')

    status = row.get("status", "draft").lower()
    if status not in STATUSES:
        raise RowError("Status must be draft, active, or archived")

    sku = row.get("sku") or handle.upper()
    if db.query(ProductVariant.id).filter(ProductVariant.sku == sku).first():
        raise RowError(f'SKU "{sku}" already exists')

    try:
        quantity = int(row.get("quantity", "0"))
    except ValueError:
        raise RowError("Quantity must be a whole number")

    product = Product(
        title=title,
        handle=handle,
        description=row.get("description"),
        price=price,
        compare_at_price=compare_at_price,
        vendor=row.get("vendor"),
        product_type=row.get("product_type"),
        tags=[t.strip() for t in row.get("tags", "").split(",") if t.strip()],
        track_inventory=row.get("track_inventory", "").lower() in ("true", "1"),
        status=status,
        published_at=utcnow() if status == "active" else None,
    )
    variant = ProductVariant(title="Default", sku=sku, price=price, inventory_quantity=quantity, position=0)
    variant.inventory_level = InventoryLevel(available=quantity, reserved=0, committed=0)
    product.variants = [variant]
    return product


def import_products_csv(db: Session, text: str, actor: Optional[Actor] = None,
                        context: Optional[RequestContext] = None) -> Dict[str, Any]:
    """
    Create products from CSV text.

    Each row is committed on its own so one bad row does not sink the batch.
    Row numbers are 1-based and count the header line.

    Returns:
        ``{"success": <rows imported>, "errors": [{"row": n, "error": msg}]}``

    Raises:
        ValueError: if the file has no header or no data rows
    """
    lines = [line for line in text.splitlines() if line.strip()]
    if len(lines) < 2:
        raise ValueError("CSV file must contain at least a header row and one data row")

    reader = csv.DictReader(io.StringIO("\n".join(lines)))
    results: Dict[str, Any] = {"success": 0, "errors": []}
    for row_number, raw in enumerate(reader, start=2):
        try:
            product = _build_product(db, _clean(raw))
            db.add(product)
            db.commit()
            results["success"] += 1
        except RowError as e:
            db.rollback()
            results["errors"].append({"row": row_number, "error": str(e)})
        except Exception as e:
            db.rollback()
            logger.error("[IMPORT] row %s failed: %s", row_number, e)
            results["errors"].append({"row": row_number, "error": str(e) or "Unknown error occurred"})

    logger.info("[IMPORT] %s products imported, %s rows rejected", results["success"], len(results["errors"]))
    log_audit_action(db, "IMPORT", "product", actor=actor, context=context,
                     metadata={"imported": results["success"], "errors": len(results["errors"])},
                     status="success" if not results["errors"] else ("partial" if results["success"] else "error"))
    return results


def _export_rows(db: Session, filters: Optional[ExportFilters]) -> List[Product]:
    query = db.query(Product)
    if filters:
        if filters.status:
            query = query.filter(Product.status.in_(filters.status))
        if filters.vendor:
            query = query.filter(Product.vendor.in_(filters.vendor))
        if filters.product_type:
            query = query.filter(Product.product_type.in_(filters.product_type))
    return query.order_by(Product.id.asc()).all()


def products_to_csv(products: List[Product]) -> str:
    buffer = io.StringIO()
    writer = csv.DictWriter(buffer, fieldnames=CSV_COLUMNS, lineterminator="\n")
    writer.writeheader()
    for p in products:
        first = p.variants[0] if p.variants else None
        writer.writerow({
            "title": p.title,
            "handle": p.handle,
            "description": p.description or "",
            "price": format_major_units(p.price),
            "compare_at_price": format_major_units(p.compare_at_price),
            "vendor": p.vendor or "",
            "product_type": p.product_type or "",
            "tags": ", ".join(p.tags or []),
            "track_inventory": "true" if p.track_inventory else "false",
            "sku": first.sku if first else "",
            "quantity": first.inventory_quantity if first else 0,
            "status": p.status,
        })
    return buffer.getvalue()


def products_to_json(products: List[Product]) -> str:
    payload = {
        "products": [
            {
                "id": p.id,
                "title": p.title,
                "handle": p.handle,
                "description": p.description,
                "status": p.status,
                "price": p.price,
                "compare_at_price": p.compare_at_price,
                "vendor": p.vendor,
                "product_type": p.product_type,
                "tags": p.tags or [],
                "track_inventory": p.track_inventory,
                "created_at": p.created_at.isoformat() if p.created_at else None,
                "published_at": p.published_at.isoformat() if p.published_at else None,
                "variants": [
                    {"id": v.id, "title": v.title, "sku": v.sku, "price": v.price,
                     "inventory_quantity": v.inventory_quantity}
                    for v in p.variants
                ],
                "categories": [pc.category.handle for pc in p.categories if pc.category],
            }
            for p in products
        ],
        "exported_at": utcnow().isoformat(),
        "total_records": len(products),
    }
    return json.dumps(payload, indent=2)


def export_products(db: Session, format: str = "csv", filters: Optional[ExportFilters] = None,
                    actor: Optional[Actor] = None, context: Optional[RequestContext] = None) -> Dict[str, Any]:
    if format not in ("csv", "json"):
        raise ValueError(f"Unsupported export format: {format}")
    products = _export_rows(db, filters)
    log_audit_action(db, "EXPORT", "product", actor=actor, context=context,
                     resource_title=f"Export of {len(products)} products",
                     metadata={"format": format, "count": len(products),
                               "filters": filters.model_dump(exclude_none=True) if filters else {}})
    stamp = utcnow().strftime("%Y-%m-%d")
    if format == "csv":
        return {"data": products_to_csv(products), "filename": f"products-export-{stamp}.csv",
                "content_type": "text/csv"}
    return {"data": products_to_json(products), "filename": f"products-export-{stamp}.json",
            "content_type": "application/json"}
