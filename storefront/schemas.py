from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from decimal import Decimal
from typing import Optional, List
from datetime import datetime
from uuid import UUID

from .models import OrderStatus, PaymentStatus


# Users
class UserCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=8, max_length=72)

    @field_validator("password")
    @classmethod
    def password_fits_bcrypt(cls, value: str) -> str:
        # bcrypt only looks at the first 72 bytes
        if len(value.encode("utf-8")) > 72:
            raise ValueError("Password must not be longer than 72 bytes")
        return value


class UserOut(BaseModel):
    id: UUID
    name: str
    email: EmailStr

    model_config = ConfigDict(from_attributes=True)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


# Products
class ProductBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    price: Decimal = Field(..., gt=0, max_digits=10, decimal_places=2)
    stock: int = Field(..., ge=0)


class ProductCreate(ProductBase):
    pass


class ProductOut(ProductBase):
    id: UUID

    model_config = {"from_attributes": True}


# Orders
class OrderItemCreate(BaseModel):
    product_id: UUID = Field(..., description="Product ID")
    quantity: int = Field(..., gt=0, description="Product quantity")


class OrderCreate(BaseModel):
    items: List[OrderItemCreate] = Field(..., min_length=1, description="List of order items")


class OrderItemOut(BaseModel):
    id: UUID
    order_id: UUID
    product_id: UUID
    quantity: int
    price: Decimal

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: UUID
    user_id: UUID
    status: OrderStatus
    total_amount: Decimal
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class OrderDetailOut(OrderOut):
    items: List[OrderItemOut] = []


class OrderListResponse(BaseModel):
    orders: List[OrderOut]
    total: int
    skip: int
    limit: int


# Payments
class PaymentMethodUpdate(BaseModel):
    payment_method: str = Field(..., min_length=1, max_length=50)


class PaymentOut(BaseModel):
    id: UUID
    order_id: UUID
    payment_method: Optional[str] = None
    status: PaymentStatus
    provider_reference: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    model_config = {"from_attributes": True}


class StripeIntentResponse(BaseModel):
    payment_id: UUID
    payment_intent_id: str
    client_secret: str
