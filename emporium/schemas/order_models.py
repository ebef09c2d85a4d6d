"""Pydantic request models for checkout, payments and account endpoints."""
from pydantic import BaseModel, Field
from typing import Optional

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"

class AddressIn(BaseModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    address1: str = Field(min_length=1)
    address2: Optional[str] = None
    city: str = Field(min_length=1)
    state: Optional[str] = None
    zip_code: Optional[str] = None
    country: str = "India"
    phone: Optional[str] = None

class CheckoutRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    shipping_address: AddressIn
    same_billing_address: bool = True
    billing_address: Optional[AddressIn] = None
    shipping_method: str = "standard"
    payment_method: str = "razorpay"  # razorpay | cod
    create_account: bool = False
    password: Optional[str] = None
    accepts_marketing: bool = False
    notes: Optional[str] = None

class AddToCartRequest(BaseModel):
    product_id: int
    variant_id: Optional[int] = None
    quantity: int = Field(default=1, ge=1)

class UpdateCartItemRequest(BaseModel):
    quantity: int

class DiscountCodeRequest(BaseModel):
    code: str

class PaymentVerifyRequest(BaseModel):
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None
    payment_id: Optional[int] = None

class WishlistAddRequest(BaseModel):
    product_id: int
    variant_id: Optional[int] = None

class LoginRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str

class RegisterRequest(BaseModel):
    email: str = Field(pattern=EMAIL_PATTERN)
    password: str = Field(min_length=8)
    first_name: str = Field(min_length=1)
    last_name: Optional[str] = None
    phone: Optional[str] = None
    accepts_marketing: bool = False
