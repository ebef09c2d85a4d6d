#!/usr/bin/env python3
"""
Inspect the store database: print products, orders and payments with their links.

Usage:
  python -m emporium.scripts.inspect_db [--limit N]

Read-only; makes no writes.
"""

from __future__ import annotations

import argparse

from emporium.data.database import SessionLocal
from emporium.data.models import Order, OrderItem, Payment, Product, Refund, WebhookDelivery
from emporium.utils.timeutils import utcnow


def line(ch: str = "-", width: int = 60) -> str:
    return ch * width


def money(amount) -> str:
    return f"{(amount or 0) / 100:.2f}"


def header(title: str) -> None:
    print(line("="))
    print(title)
    print(line("="))


def print_products(session, limit: int):
    header("Products")
    products = session.query(Product).order_by(Product.id).limit(limit).all()
    print(f"Total products: {session.query(Product).count()}")
    for p in products:
        print(f"- #{p.id} {p.title} [{p.status}] | price={money(p.price)} | handle={p.handle}")
        for v in p.variants:
            level = v.inventory_level
            stock = f"available={level.available} reserved={level.reserved}" if level else "untracked"
            print(f"    variant #{v.id} {v.title} sku={v.sku or '(none)'} | {stock}")
    print()


def print_orders(session, limit: int):
    header("Orders (with items)")
    orders = session.query(Order).order_by(Order.id.desc()).limit(limit).all()
    print(f"Total orders: {session.query(Order).count()}")
    for o in orders:
        print(
            f"\nOrder {o.order_number} (#{o.id}) | {o.email} | status={o.status} | payment={o.payment_status}"
            f" | total={money(o.total_price)} {o.currency}"
        )
        items = session.query(OrderItem).filter(OrderItem.order_id == o.id).all()
        for it in items:
            print(f"    - {it.quantity} x {it.title} (variant_id={it.variant_id}) @ {money(it.price)}")
    print()


def print_payments(session, limit: int):
    header("Payments and refunds")
    payments = session.query(Payment).order_by(Payment.id.desc()).limit(limit).all()
    print(f"Total payments: {session.query(Payment).count()}")
    for p in payments:
        print(
            f"- #{p.id} order_id={p.order_id} | {p.gateway} {p.status} | amount={money(p.amount)}"
            f" | gateway_payment_id={p.gateway_payment_id or '(none)'}"
        )
        for r in session.query(Refund).filter(Refund.payment_id == p.id).all():
            print(f"    refund #{r.id} {r.status} amount={money(r.amount)} ({r.reason or 'no reason'})")
    print()


def print_webhooks(session, limit: int):
    header("Recent webhook deliveries")
    deliveries = session.query(WebhookDelivery).order_by(WebhookDelivery.created_at.desc()).limit(limit).all()
    for d in deliveries:
        print(f"- {d.id} {d.event_type} | {d.status} | {d.processing_time_ms or 0}ms")
    print()


def main(argv=None):
    parser = argparse.ArgumentParser(description="Print the contents of the store database")
    parser.add_argument("--limit", type=int, default=20, help="rows to show per section")
    args = parser.parse_args(argv)

    session = SessionLocal()
    try:
        print(f"DB Inspection at {utcnow().strftime('%Y-%m-%d %H:%M:%S')} UTC")
        print_products(session, args.limit)
        print_orders(session, args.limit)
        print_payments(session, args.limit)
        print_webhooks(session, args.limit)
        print(line("="))
        print("End of database inspection")
        print(line("="))
    finally:
        session.close()


if __name__ == "__main__":
    main()
