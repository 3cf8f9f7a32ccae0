"""
Database Schemas for InstaCampus

Collections:
- user: students, admins and the two kinds of campus vendors
- vendorcode: one-time vendor registration codes
- product: canteen food and stationery items
- inventory: one stock counter per product
- cart: one cart per user and category
- order: orders placed from a cart

Request bodies accepted by the API live at the bottom of this module.
"""

import re
from datetime import datetime
from typing import List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

Role = Literal["student", "admin", "stationary-vendor", "canteen-vendor"]
VendorRole = Literal["stationary-vendor", "canteen-vendor"]
Category = Literal["stationary", "canteen"]
OrderStatus = Literal["pending", "confirmed", "preparing", "ready", "completed", "cancelled"]
PaymentStatus = Literal["pending", "completed", "failed"]

ROLES = ("student", "admin", "stationary-vendor", "canteen-vendor")
VENDOR_ROLES = ("stationary-vendor", "canteen-vendor")
CATEGORIES = ("stationary", "canteen")
ORDER_STATUSES = ("pending", "confirmed", "preparing", "ready", "completed", "cancelled")


def check_password_strength(password: str) -> str:
    if (
        len(password) < 8
        or not re.search(r"[a-z]", password)
        or not re.search(r"[A-Z]", password)
        or not re.search(r"\d", password)
        or not re.search(r"[^A-Za-z0-9]", password)
    ):
        raise ValueError(
            "Password is not strong enough: use 8+ characters with upper and lower case letters, a digit and a symbol"
        )
    return password


class StoredModel(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)


class User(StoredModel):
    name: str = Field(..., min_length=2, description="Full name")
    email: EmailStr = Field(..., description="Email address, stored lower-cased")
    password_hash: str = Field(..., description="Hashed password")
    role: Role = Field("student", description="student | admin | stationary-vendor | canteen-vendor")


class Vendorcode(StoredModel):
    code: str = Field(..., pattern=r"^\d{6}$", description="Six digit registration code")
    vendorType: VendorRole = Field(..., description="Vendor role the code registers")
    createdBy: ObjectId = Field(..., description="Admin who generated the code")
    used: bool = Field(False, description="Whether the code was consumed")
    usedBy: Optional[ObjectId] = Field(None, description="User who consumed the code")
    usedAt: Optional[datetime] = None
    expiresAt: datetime = Field(..., description="Code is removed after this instant")
    isActive: bool = Field(True, description="Admin can deactivate a code")


class Product(StoredModel):
    name: str = Field(..., min_length=2, description="Product name")
    vendorId: ObjectId = Field(..., description="Owning vendor")
    category: Category = Field(..., description="stationary | canteen")
    description: Optional[str] = Field(None, max_length=250, description="Product description")
    price: float = Field(..., ge=1, description="Unit price in rupees")
    imgUrl: Optional[str] = Field(None, description="Image URL")
    lowStockThreshold: int = Field(10, ge=0, description="Stock level flagged as low")


class Inventory(StoredModel):
    productId: ObjectId = Field(..., description="Product this counter belongs to")
    quantityAvailable: int = Field(..., ge=0, description="Units on hand")
    lastRestockedAt: datetime = Field(default_factory=datetime.utcnow)


class CartItem(StoredModel):
    productId: ObjectId
    quantity: int = Field(..., ge=1)


class Cart(StoredModel):
    userId: ObjectId = Field(..., description="Cart owner")
    category: Category = Field(..., description="One cart per user and category")
    vendorId: Optional[ObjectId] = Field(None, description="Vendor every item comes from")
    items: List[CartItem] = Field(default_factory=list)


class OrderItem(StoredModel):
    productId: ObjectId
    quantity: int = Field(..., ge=1, description="Quantity")
    price: float = Field(..., ge=1, description="Unit price snapshot")


class Order(StoredModel):
    userId: ObjectId = Field(..., description="Customer who placed the order")
    category: Category = Field(..., description="Cart the order was placed from")
    items: List[OrderItem] = Field(default_factory=list)
    totalAmount: float = Field(..., ge=0, description="Sum of price x quantity")
    orderStatus: OrderStatus = Field("pending")
    paymentStatus: PaymentStatus = Field("pending")


# Request bodies

class SignupRequest(BaseModel):
    name: str = Field(..., min_length=2)
    email: EmailStr
    password: str
    role: Role
    vendorCode: Optional[str] = None

    @field_validator("password")
    @classmethod
    def strong_password(cls, value):
        return check_password_strength(value)


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    password: Optional[str] = None

    @field_validator("password")
    @classmethod
    def strong_password(cls, value):
        return None if value is None else check_password_strength(value)


class ProductCreate(BaseModel):
    name: str = Field(..., min_length=2)
    category: Category
    description: Optional[str] = Field(None, max_length=250)
    price: float = Field(..., ge=1)
    imgUrl: Optional[str] = None
    lowStockThreshold: int = Field(10, ge=0)
    initialStock: int = Field(0, ge=0, description="Units put into the new inventory row")


class ProductUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=2)
    category: Optional[Category] = None
    description: Optional[str] = Field(None, max_length=250)
    price: Optional[float] = Field(None, ge=1)
    imgUrl: Optional[str] = None
    lowStockThreshold: Optional[int] = Field(None, ge=0)


class StockChange(BaseModel):
    quantity: int = Field(..., ge=1)


class CartAddRequest(BaseModel):
    productId: str
    quantity: int = Field(1, ge=1)


class CartUpdateRequest(BaseModel):
    productId: str
    quantity: int = Field(..., ge=1)
    category: Category


class CartRemoveRequest(BaseModel):
    productId: str
    category: Category


class VendorCodeGenerate(BaseModel):
    vendorType: VendorRole


class VendorCodeVerify(BaseModel):
    code: str
    vendorType: VendorRole


class VendorCodeUse(BaseModel):
    code: str
    userId: str
