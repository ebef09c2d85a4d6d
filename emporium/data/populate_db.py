"""Seed a fresh database with an admin account, a category tree and sample products."""
import os

from ..app.config import Config
from ..services.admin.import_export_service import import_products_csv
from ..utils.logger import get_logger
from ..utils.security import hash_password
from .database import SessionLocal, create_tables
from .models import Category, Product, ProductCategory, User

logger = get_logger()

PRODUCTS_CSV_PATH = os.path.join(os.path.dirname(__file__), "raw", "products.csv")

# (handle, name, parent handle); parents listed first
CATEGORY_TREE = [
    ("apparel", "Apparel", None),
    ("men", "Men", "apparel"),
    ("women", "Women", "apparel"),
    ("footwear", "Footwear", None),
    ("accessories", "Accessories", None),
]

# product_type -> category handle
TYPE_CATEGORIES = {
    "T-Shirts": "men",
    "Jeans": "men",
    "Kurtas": "women",
    "Footwear": "footwear",
    "Accessories": "accessories",
}


def seed_admin(db) -> None:
    if db.query(User).filter(User.role == "admin").first():
        return
    password = Config.ADMIN_PASSWORD
    if not password:
        logger.warning("ADMIN_PASSWORD is not set; skipping admin account")
        return
    db.add(User(email=Config.ADMIN_EMAIL.lower(), name="Store Admin", role="admin", status="active",
                password_hash=hash_password(password)))
    db.commit()
    logger.info("Created admin account %s", Config.ADMIN_EMAIL)


def seed_categories(db) -> None:
    if db.query(Category).count() > 0:
        return
    created = {}
    for position, (handle, name, parent_handle) in enumerate(CATEGORY_TREE):
        parent = created.get(parent_handle)
        category = Category(
            name=name,
            handle=handle,
            parent_id=parent.id if parent else None,
            path=f"{parent.path}/{handle}" if parent else handle,
            level=parent.level + 1 if parent else 0,
            position=position,
        )
        db.add(category)
        db.flush()
        created[handle] = category
    db.commit()


def seed_products(db) -> None:
    if db.query(Product).count() > 0:
        logger.info("Products table is not empty. Skipping population.")
        return
    with open(PRODUCTS_CSV_PATH, mode="r", encoding="utf-8") as f:
        results = import_products_csv(db, f.read())
    for error in results["errors"]:
        logger.warning("Row %s skipped: %s", error["row"], error["error"])

    categories = {c.handle: c for c in db.query(Category).all()}
    for product in db.query(Product).all():
        category = categories.get(TYPE_CATEGORIES.get(product.product_type))
        if category is not None:
            db.add(ProductCategory(product_id=product.id, category_id=category.id))
    db.commit()
    logger.info("Imported %s products", results["success"])


def populate():
    """Create the tables and seed them; safe to run more than once."""
    create_tables()
    db = SessionLocal()
    try:
        seed_admin(db)
        seed_categories(db)
        seed_products(db)
    except Exception:
        db.rollback()
        logger.exception("Error populating database")
        raise
    finally:
        db.close()


if __name__ == "__main__":
    populate()
