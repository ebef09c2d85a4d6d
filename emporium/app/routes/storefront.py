"""Public catalog endpoints: products, collections, categories and search."""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...services.catalog_service import CatalogService, ProductFilters
from ...services.category_service import CategoryService
from ...services.order_service import get_shipping_methods
from ...services.search_service import get_search_suggestions
from .common import rate_limit

router = APIRouter(prefix="/api", tags=["storefront"], dependencies=[Depends(rate_limit("api"))])


@router.get("/products")
def list_products(filters: ProductFilters = Depends(), db: Session = Depends(get_db)) -> Dict[str, Any]:
    return CatalogService(db).list_products(filters)


@router.get("/products/facets")
def product_facets(db: Session = Depends(get_db)) -> Dict[str, List[str]]:
    return CatalogService(db).get_facets()


@router.get("/products/{handle}")
def get_product(handle: str, db: Session = Depends(get_db)) -> Dict[str, Any]:
    product = CatalogService(db).get_product_by_handle(handle)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.get("/collections")
def list_collections(db: Session = Depends(get_db)):
    return {"collections": CatalogService(db).list_collections()}


@router.get("/collections/{handle}")
def collection_products(handle: str, db: Session = Depends(get_db)):
    collection = CatalogService(db).get_collection_products(handle)
    if collection is None:
        raise HTTPException(status_code=404, detail="Collection not found")
    return collection


@router.get("/categories")
def category_tree(db: Session = Depends(get_db)):
    return {"categories": CategoryService(db).get_tree(active_only=True)}


@router.get("/categories/{handle}/breadcrumbs")
def category_breadcrumbs(handle: str, db: Session = Depends(get_db)):
    crumbs = CategoryService(db).get_breadcrumbs(handle)
    if not crumbs:
        raise HTTPException(status_code=404, detail="Category not found")
    return {"breadcrumbs": crumbs}


@router.get("/search")
def search(filters: ProductFilters = Depends(), db: Session = Depends(get_db)):
    results = CatalogService(db).list_products(filters)
    results["query"] = filters.q or ""
    return results


@router.get("/search/suggestions")
def search_suggestions(q: str = Query(""), db: Session = Depends(get_db)):
    return {"suggestions": [s.model_dump() for s in get_search_suggestions(db, q)]}


@router.get("/shipping-methods")
def shipping_methods():
    return {"shipping_methods": get_shipping_methods()}
