"""
Database Schemas for the storefront

Each Pydantic model represents a MongoDB collection document as it is
stored (ids and timestamps are added on insert).
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field, EmailStr


class CustomerTier(str, Enum):
    individual = "individual"
    business = "business"


class PaymentMethod(str, Enum):
    razorpay = "razorpay"
    cod = "cod"


class PaymentStatus(str, Enum):
    pending = "pending"
    paid = "paid"
    failed = "failed"
    refunded = "refunded"


class OrderStatus(str, Enum):
    placed = "placed"
    confirmed = "confirmed"
    processing = "processing"
    shipped = "shipped"
    delivered = "delivered"
    cancelled = "cancelled"


class Profile(BaseModel):
    email: EmailStr
    full_name: str
    phone: str
    customer_tier: CustomerTier = CustomerTier.individual
    business_name: Optional[str] = None
    tax_id: Optional[str] = None
    is_admin: bool = False


class Address(BaseModel):
    user_id: str
    label: Optional[str] = None
    line1: str
    line2: Optional[str] = None
    city: str
    state: str
    postal_code: str
    is_default: bool = False


class Category(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    sort_order: int = 0


class Product(BaseModel):
    name: str
    slug: str
    description: Optional[str] = None
    category: str
    price: float = Field(..., ge=0)
    b2b_price: Optional[float] = Field(None, ge=0)
    moq: int = Field(1, ge=1)
    unit: str = "kg"
    in_stock: bool = True
    featured: bool = False
    certifications: List[str] = []
    image_url: Optional[str] = None


class OrderItem(BaseModel):
    order_id: Optional[str] = None
    product_id: str
    product_name: str
    quantity: int
    unit_price: float
    total_price: float


class Order(BaseModel):
    order_number: str
    user_id: str
    address_id: str
    subtotal: float
    delivery_fee: float
    total: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.pending
    order_status: OrderStatus = OrderStatus.placed
    notes: Optional[str] = None
    payment_intent_id: Optional[str] = None
    payment_id: Optional[str] = None
