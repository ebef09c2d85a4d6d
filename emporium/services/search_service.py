"""Search-as-you-type suggestions.

Relevance is a hand-tuned SQL CASE: prefix matches on the title beat
substring matches, which beat description, vendor and tag hits. Category
(product type) and brand (vendor) suggestions are grouped counts scored the
same way.
"""
from typing import List
from urllib.parse import quote

from sqlalchemy import String, and_, case, cast, desc, func, literal, or_, select
from sqlalchemy.orm import Session

from ..data.models import Product, ProductImage
from ..schemas.io_models import SearchSuggestion

MIN_QUERY_LENGTH = 2
PRODUCT_LIMIT = 8
CATEGORY_LIMIT = 5
BRAND_LIMIT = 3
TOTAL_LIMIT = 12


def _escape_like(term: str) -> str:
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def _product_suggestions(db: Session, prefix: str, contains: str) -> List[SearchSuggestion]:
    relevance = case(
        (Product.title.ilike(prefix, escape="\\"), 100),
        (Product.title.ilike(contains, escape="\\"), 90),
        (Product.description.ilike(contains, escape="\\"), 80),
        (Product.vendor.ilike(contains, escape="\\"), 70),
        else_=60,
    ).label("relevance")
    first_image = (
        select(ProductImage.url)
        .where(ProductImage.product_id == Product.id)
        .order_by(ProductImage.position)
        .limit(1)
        .correlate(Product)
        .scalar_subquery()
    )

    rows = (
        db.query(Product.id, Product.title, Product.handle, Product.price, first_image.label("image"), relevance)
        .filter(
            Product.status == "active",
            or_(
                Product.title.ilike(contains, escape="\\"),
                Product.description.ilike(contains, escape="\\"),
                Product.vendor.ilike(contains, escape="\\"),
                cast(Product.tags, String).ilike(contains, escape="\\"),
            ),
        )
        .order_by(desc("relevance"), Product.created_at.desc())
        .limit(PRODUCT_LIMIT)
        .all()
    )
    return [
        SearchSuggestion(type="product", id=str(r.id), title=r.title, subtitle="Product",
                         url=f"/products/{r.handle}", image=r.image, price=r.price,
                         relevance_score=r.relevance)
        for r in rows
    ]


def _grouped_suggestions(db: Session, column, kind: str, param: str, limit: int,
                         prefix: str, contains: str) -> List[SearchSuggestion]:
    relevance = case(
        (column.ilike(prefix, escape="\\"), 100),
        (column.ilike(contains, escape="\\"), 90),
        else_=70,
    ).label("relevance")
    count = func.count(Product.id).label("product_count")
    rows = (
        db.query(column.label("term"), count, relevance)
        .filter(and_(Product.status == "active", column.isnot(None), column.ilike(contains, escape="\\")))
        .group_by(column)
        .having(func.count(Product.id) > literal(0))
        .order_by(desc("relevance"), desc("product_count"))
        .limit(limit)
        .all()
    )
    return [
        SearchSuggestion(type=kind, id=f"{kind}-{r.term}", title=r.term, subtitle=f"{r.product_count} products",
                         url=f"/search?{param}={quote(r.term)}", relevance_score=r.relevance)
        for r in rows
    ]


def get_search_suggestions(db: Session, query: str) -> List[SearchSuggestion]:
    """Up to 12 mixed product, category and brand suggestions, best first."""
    query = (query or "").strip()
    if len(query) < MIN_QUERY_LENGTH:
        return []

    escaped = _escape_like(query)
    prefix, contains = f"{escaped}%", f"%{escaped}%"
    suggestions = (
        _product_suggestions(db, prefix, contains)
        + _grouped_suggestions(db, Product.product_type, "category", "category", CATEGORY_LIMIT, prefix, contains)
        + _grouped_suggestions(db, Product.vendor, "brand", "brand", BRAND_LIMIT, prefix, contains)
    )
    # sorted() is stable, so products stay ahead of groups on equal scores
    return sorted(suggestions, key=lambda s: s.relevance_score, reverse=True)[:TOTAL_LIMIT]
