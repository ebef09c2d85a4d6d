"""Dict views of ORM rows for JSON responses."""
from typing import Any, Dict, Optional


def _iso(value) -> Optional[str]:
    return value.isoformat() if value else None


def serialize_variant(variant) -> Dict[str, Any]:
    level = variant.inventory_level
    return {
        "id": variant.id,
        "title": variant.title,
        "sku": variant.sku,
        "price": variant.price,
        "compare_at_price": variant.compare_at_price,
        "inventory_quantity": variant.inventory_quantity,
        "inventory_policy": variant.inventory_policy,
        "available": level.available if level else variant.inventory_quantity,
        "reserved": level.reserved if level else 0,
    }


def serialize_product(product, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": product.id,
        "title": product.title,
        "handle": product.handle,
        "status": product.status,
        "vendor": product.vendor,
        "product_type": product.product_type,
        "tags": product.tags or [],
        "price": product.price,
        "compare_at_price": product.compare_at_price,
        "image": product.images[0].url if product.images else None,
        "created_at": _iso(product.created_at),
    }
    if detail:
        data.update({
            "description": product.description,
            "taxable": product.taxable,
            "track_inventory": product.track_inventory,
            "published_at": _iso(product.published_at),
            "variants": [serialize_variant(v) for v in product.variants],
            "images": [{"id": i.id, "url": i.url, "alt_text": i.alt_text} for i in product.images],
            "categories": [pc.category.handle for pc in product.categories if pc.category],
            "collections": [pc.collection.handle for pc in product.collections if pc.collection],
        })
    return data


def serialize_cart(cart) -> Dict[str, Any]:
    return {
        "id": cart.id,
        "token": cart.token,
        "status": cart.status,
        "currency": cart.currency,
        "items": [
            {
                "id": item.id,
                "product_id": item.product_id,
                "variant_id": item.variant_id,
                "title": item.product_title,
                "variant_title": item.variant_title,
                "image": item.product_image,
                "sku": item.sku,
                "quantity": item.quantity,
                "price": item.price,
                "total_price": item.total_price,
            }
            for item in cart.items
        ],
        "item_count": sum(i.quantity for i in cart.items),
        "discount_codes": cart.discount_codes or [],
        "subtotal_price": cart.subtotal_price,
        "total_discount": cart.total_discount,
        "total_tax": cart.total_tax,
        "total_price": cart.total_price,
    }


def serialize_payment(payment) -> Dict[str, Any]:
    return {
        "id": payment.id,
        "order_id": payment.order_id,
        "amount": payment.amount,
        "currency": payment.currency,
        "status": payment.status,
        "gateway": payment.gateway,
        "gateway_transaction_id": payment.gateway_transaction_id,
        "gateway_payment_id": payment.gateway_payment_id,
        "payment_method": payment.payment_method,
        "card_last4": payment.card_last4,
        "card_brand": payment.card_brand,
        "failure_reason": payment.failure_reason,
        "fraud_risk_score": payment.fraud_risk_score,
        "fraud_risk_level": payment.fraud_risk_level,
        "created_at": _iso(payment.created_at),
        "captured_at": _iso(payment.captured_at),
    }


def serialize_order(order, detail: bool = False) -> Dict[str, Any]:
    data = {
        "id": order.id,
        "order_number": order.order_number,
        "email": order.email,
        "currency": order.currency,
        "subtotal_price": order.subtotal_price,
        "total_discounts": order.total_discounts,
        "total_tax": order.total_tax,
        "shipping_price": order.shipping_price,
        "total_price": order.total_price,
        "status": order.status,
        "payment_status": order.payment_status,
        "fulfillment_status": order.fulfillment_status,
        "item_count": sum(i.quantity for i in order.items),
        "created_at": _iso(order.created_at),
    }
    if detail:
        data.update({
            "phone": order.phone,
            "shipping_method": order.shipping_method,
            "shipping_address": order.shipping_address,
            "billing_address": order.billing_address,
            "discount_codes": order.discount_codes or [],
            "notes": order.notes,
            "cancel_reason": order.cancel_reason,
            "cancelled_at": _iso(order.cancelled_at),
            "processed_at": _iso(order.processed_at),
            "items": [
                {"id": i.id, "product_id": i.product_id, "variant_id": i.variant_id, "title": i.title,
                 "variant_title": i.variant_title, "sku": i.sku, "quantity": i.quantity, "price": i.price}
                for i in order.items
            ],
            "payments": [serialize_payment(p) for p in order.payments],
            "refunds": [
                {"id": r.id, "amount": r.amount, "reason": r.reason, "status": r.status,
                 "created_at": _iso(r.created_at)}
                for r in order.refunds
            ],
            "history": [
                {"from_status": h.from_status, "to_status": h.to_status, "status_type": h.status_type,
                 "notes": h.notes, "changed_by": h.changed_by, "created_at": _iso(h.created_at)}
                for h in order.status_history
            ],
        })
    return data
