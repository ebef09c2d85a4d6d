"""Back-office products, categories, and CSV import/export."""
from typing import List, Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, Request, UploadFile
from fastapi.responses import Response
from sqlalchemy.orm import Session

from ...data.database import get_db
from ...data.models import User
from ...schemas.admin_models import (
    BulkIdsRequest, BulkStatusRequest, CategoryIn, CategoryMove, CategoryUpdate, ProductIn, ProductStatusUpdate,
    ProductUpdate,
)
from ...services.admin.import_export_service import ExportFilters, export_products, import_products_csv
from ...services.admin.product_service import AdminProductFilters, AdminProductService
from ...services.category_service import CategoryService
from ..auth import actor_for, get_request_context, require_permission
from .common import rate_limit, unwrap

router = APIRouter(prefix="/api/admin", tags=["admin"], dependencies=[Depends(rate_limit("admin"))])

MAX_IMPORT_BYTES = 5 * 1024 * 1024


def _products(request: Request, db: Session, user: User) -> AdminProductService:
    return AdminProductService(db, actor_for(user), get_request_context(request))


@router.get("/products")
def list_products(filters: AdminProductFilters = Depends(), db: Session = Depends(get_db),
                  user: User = Depends(require_permission("view_products"))):
    return AdminProductService(db).list_products(filters)


@router.get("/products/low-stock")
def low_stock(threshold: Optional[int] = Query(None, ge=0), db: Session = Depends(get_db),
              user: User = Depends(require_permission("view_products"))):
    return {"variants": AdminProductService(db).low_stock(threshold)}


@router.get("/products/export")
def export(request: Request, format: str = Query("csv"), status: Optional[List[str]] = Query(None),
           vendor: Optional[List[str]] = Query(None), product_type: Optional[List[str]] = Query(None),
           db: Session = Depends(get_db), user: User = Depends(require_permission("view_products"))):
    filters = ExportFilters(status=status, vendor=vendor, product_type=product_type)
    try:
        exported = export_products(db, format, filters, actor_for(user), get_request_context(request))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return Response(content=exported["data"], media_type=exported["content_type"],
                    headers={"Content-Disposition": f'attachment; filename="{exported["filename"]}"'})


@router.post("/products/import")
async def import_csv(request: Request, file: UploadFile = File(...), db: Session = Depends(get_db),
                     user: User = Depends(require_permission("manage_products"))):
    if file.filename and not file.filename.lower().endswith(".csv"):
        raise HTTPException(status_code=400, detail="Please upload a CSV file")
    raw = await file.read()
    if len(raw) > MAX_IMPORT_BYTES:
        raise HTTPException(status_code=400, detail="File is too large")
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError:
        raise HTTPException(status_code=400, detail="File must be UTF-8 encoded")
    try:
        results = import_products_csv(db, text, actor_for(user), get_request_context(request))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"success": True, "results": results}


@router.post("/products/bulk/status")
def bulk_status(body: BulkStatusRequest, request: Request, db: Session = Depends(get_db),
                user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).bulk_update_status(body.ids, body.status))


@router.post("/products/bulk/delete")
def bulk_delete(body: BulkIdsRequest, request: Request, db: Session = Depends(get_db),
                user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).bulk_delete(body.ids))


@router.post("/products", status_code=201)
def create_product(body: ProductIn, request: Request, db: Session = Depends(get_db),
                   user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).create_product(body))


@router.get("/products/{product_id}")
def get_product(product_id: int, db: Session = Depends(get_db),
                user: User = Depends(require_permission("view_products"))):
    product = AdminProductService(db).get_product(product_id)
    if product is None:
        raise HTTPException(status_code=404, detail="Product not found")
    return {"product": product}


@router.put("/products/{product_id}")
def update_product(product_id: int, body: ProductUpdate, request: Request, db: Session = Depends(get_db),
                   user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).update_product(product_id, body))


@router.patch("/products/{product_id}/status")
def update_status(product_id: int, body: ProductStatusUpdate, request: Request, db: Session = Depends(get_db),
                  user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).update_status(product_id, body.status))


@router.delete("/products/{product_id}")
def delete_product(product_id: int, request: Request, db: Session = Depends(get_db),
                   user: User = Depends(require_permission("manage_products"))):
    return unwrap(_products(request, db, user).delete_product(product_id))


@router.get("/categories")
def category_tree(db: Session = Depends(get_db), user: User = Depends(require_permission("view_products"))):
    return {"categories": CategoryService(db).get_tree()}


@router.post("/categories", status_code=201)
def create_category(body: CategoryIn, db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_products"))):
    return unwrap(CategoryService(db).create_category(body.name, body.parent_id, body.handle,
                                                      body.description, body.position))


@router.put("/categories/{category_id}")
def update_category(category_id: int, body: CategoryUpdate, db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_products"))):
    return unwrap(CategoryService(db).update_category(category_id, **body.model_dump(exclude_none=True)))


@router.post("/categories/{category_id}/move")
def move_category(category_id: int, body: CategoryMove, db: Session = Depends(get_db),
                  user: User = Depends(require_permission("manage_products"))):
    return unwrap(CategoryService(db).move_category(category_id, body.parent_id, body.position))


@router.delete("/categories/{category_id}")
def delete_category(category_id: int, db: Session = Depends(get_db),
                    user: User = Depends(require_permission("manage_products"))):
    return unwrap(CategoryService(db).delete_category(category_id))
