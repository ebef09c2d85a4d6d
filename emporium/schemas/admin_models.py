"""Pydantic request models for the back-office API."""
from pydantic import BaseModel, Field
from typing import List, Optional

from .order_models import EMAIL_PATTERN

PRODUCT_STATUS_PATTERN = r"^(draft|active|archived)$"
ROLE_PATTERN = r"^(admin|manager|staff|customer)$"

class ProductIn(BaseModel):
    title: str = Field(min_length=1, max_length=255)
    handle: Optional[str] = None
    description: Optional[str] = None
    status: str = Field(default="draft", pattern=PRODUCT_STATUS_PATTERN)
    price: int = Field(ge=0)
    compare_at_price: Optional[int] = Field(default=None, ge=0)
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    taxable: bool = True
    track_inventory: bool = True
    continue_selling_when_out_of_stock: bool = False
    sku: Optional[str] = None
    inventory_quantity: int = Field(default=0, ge=0)
    images: List[str] = Field(default_factory=list)
    category_ids: List[int] = Field(default_factory=list)
    collection_ids: List[int] = Field(default_factory=list)

class ProductUpdate(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1, max_length=255)
    handle: Optional[str] = None
    description: Optional[str] = None
    status: Optional[str] = Field(default=None, pattern=PRODUCT_STATUS_PATTERN)
    price: Optional[int] = Field(default=None, ge=0)
    compare_at_price: Optional[int] = Field(default=None, ge=0)
    vendor: Optional[str] = None
    product_type: Optional[str] = None
    tags: Optional[List[str]] = None
    taxable: Optional[bool] = None
    track_inventory: Optional[bool] = None
    continue_selling_when_out_of_stock: Optional[bool] = None
    category_ids: Optional[List[int]] = None
    collection_ids: Optional[List[int]] = None

class ProductStatusUpdate(BaseModel):
    status: str = Field(pattern=PRODUCT_STATUS_PATTERN)

class BulkStatusRequest(BaseModel):
    ids: List[int]
    status: str = Field(pattern=PRODUCT_STATUS_PATTERN)

class BulkIdsRequest(BaseModel):
    ids: List[int]

class CategoryIn(BaseModel):
    name: str = Field(min_length=1)
    parent_id: Optional[int] = None
    handle: Optional[str] = None
    description: Optional[str] = None
    position: int = 0

class CategoryUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    position: Optional[int] = None
    is_active: Optional[bool] = None

class CategoryMove(BaseModel):
    parent_id: Optional[int] = None
    position: Optional[int] = None

class OrderStatusUpdate(BaseModel):
    status: Optional[str] = None
    payment_status: Optional[str] = None
    fulfillment_status: Optional[str] = None
    notes: Optional[str] = None

class CancelOrderRequest(BaseModel):
    reason: str = Field(min_length=1)

class RefundRequest(BaseModel):
    amount: Optional[int] = Field(default=None, gt=0)
    reason: Optional[str] = None

class OrderNoteRequest(BaseModel):
    note: str = Field(min_length=1)

class CustomerUpdate(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    tags: Optional[List[str]] = None
    notes: Optional[str] = None
    status: Optional[str] = Field(default=None, pattern=r"^(active|disabled)$")
    accepts_marketing: Optional[bool] = None

class UserCreate(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    name: str = Field(min_length=1)
    password: str = Field(min_length=8)
    role: str = Field(default="staff", pattern=ROLE_PATTERN)

class UserUpdate(BaseModel):
    name: Optional[str] = None
    role: Optional[str] = Field(default=None, pattern=ROLE_PATTERN)
    status: Optional[str] = Field(default=None, pattern=r"^(active|suspended)$")
    password: Optional[str] = Field(default=None, min_length=8)

class BulkRoleRequest(BaseModel):
    ids: List[int]
    role: str = Field(pattern=ROLE_PATTERN)
