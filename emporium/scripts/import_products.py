#!/usr/bin/env python3
"""
Import products from a CSV file outside the admin API.

Usage:
  python -m emporium.scripts.import_products path/to/products.csv
"""

import argparse
import sys

from emporium.data.database import SessionLocal, create_tables
from emporium.schemas.io_models import Actor
from emporium.services.admin.import_export_service import import_products_csv


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Import products from a CSV file")
    parser.add_argument("csv_file", help="CSV with a header row (title, price, sku, quantity, ...)")
    args = parser.parse_args(argv)

    with open(args.csv_file, mode="r", encoding="utf-8-sig") as f:
        text = f.read()

    create_tables()
    db = SessionLocal()
    try:
        results = import_products_csv(db, text, actor=Actor(id="cli", email="cli@localhost", role="admin"))
    except ValueError as e:
        print(f"Import failed: {e}")
        return 1
    finally:
        db.close()

    print(f"Imported {results['success']} products")
    for error in results["errors"]:
        print(f"  row {error['row']}: {error['error']}")
    return 0 if not results["errors"] else 2


if __name__ == "__main__":
    sys.exit(main())
