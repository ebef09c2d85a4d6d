"""Inventory movements for an order's line items.

Stock for a variant lives in three buckets: ``available`` (sellable),
``reserved`` (held for an order awaiting payment) and ``committed`` (paid).
None of these helpers commit; they run inside the caller's transaction.
"""
from typing import Optional

from sqlalchemy.orm import Session

from ..data.models import InventoryLevel, Order, ProductVariant


def get_inventory_level(db: Session, variant_id: int) -> Optional[InventoryLevel]:
    level = db.query(InventoryLevel).filter(InventoryLevel.variant_id == variant_id).first()
    if level is None:
        variant = db.query(ProductVariant).filter(ProductVariant.id == variant_id).first()
        if variant is None:
            return None
        level = InventoryLevel(variant_id=variant_id, available=variant.inventory_quantity or 0,
                               reserved=0, committed=0)
        db.add(level)
        db.flush()
    return level


def _sync_variant(db: Session, level: InventoryLevel) -> None:
    variant = db.query(ProductVariant).filter(ProductVariant.id == level.variant_id).first()
    if variant is not None:
        variant.inventory_quantity = level.available


def reserve_order_inventory(db: Session, order: Order) -> None:
    """available -> reserved for each line."""
    for item in order.items:
        if item.variant_id is None:
            continue
        level = get_inventory_level(db, item.variant_id)
        if level is None:
            continue
        level.available = level.available - item.quantity
        level.reserved = level.reserved + item.quantity
        _sync_variant(db, level)


def commit_order_inventory(db: Session, order: Order) -> None:
    """reserved -> committed once payment is captured."""
    for item in order.items:
        if item.variant_id is None:
            continue
        level = get_inventory_level(db, item.variant_id)
        if level is None:
            continue
        level.reserved = max(0, level.reserved - item.quantity)
        level.committed = level.committed + item.quantity


def release_order_inventory(db: Session, order: Order) -> None:
    """reserved -> available when payment fails or the order is cancelled."""
    for item in order.items:
        if item.variant_id is None:
            continue
        level = get_inventory_level(db, item.variant_id)
        if level is None:
            continue
        # only hand back what this order actually held
        released = min(item.quantity, level.reserved)
        level.available = level.available + released
        level.reserved = level.reserved - released
        _sync_variant(db, level)
