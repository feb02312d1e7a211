"""
Database Schemas for the Camera Shop & Service Booking API

Each Pydantic model represents a MongoDB collection.
Collection name is lowercase of the class name.
- Account -> "account"
- Shop -> "shop"
- Brand -> "brand"
- ProductType -> "producttype"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"
- Service -> "service"
- Booking -> "booking"
- ServiceReview -> "servicereview"
- Combo -> "combo"
- PaymentRecord -> "payment"
- ConsultationRequest -> "consultationrequest"
"""

from datetime import datetime
from typing import Any, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Role = Literal["guest", "customer", "staff", "manager", "admin", "shop"]
ApprovalStatus = Literal["pending", "approved", "rejected"]
OrderStatus = Literal["pending", "processing", "accepted", "deliverying", "completed", "cancelled"]
BookingStatus = Literal["pending", "confirmed", "completed", "cancelled"]
BookingPaymentStatus = Literal["pending", "paid", "failed"]
PaymentStatus = Literal["pending", "completed", "failed"]
PaymentTarget = Literal["order", "booking", "shop"]
ConsultationStatus = Literal["pending", "scheduled", "pending_reschedule", "completed", "cancelled"]
CallResult = Literal["success", "rescheduled", "rejected", "no_answer"]


class Account(BaseModel):
    username: str = Field(..., description="Unique login name")
    email: EmailStr = Field(..., description="Unique email address")
    password_hash: str = Field(..., description="Hashed password")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    phone: Optional[str] = Field(None, description="Phone number")
    address: Optional[str] = Field(None, description="Address")
    role: Role = Field("customer", description="Role: guest, customer, staff, manager, admin, shop")
    is_email_verified: bool = Field(False, description="Whether the email has been confirmed")
    email_verification_token: Optional[str] = None
    verification_code: Optional[str] = Field(None, description="Password reset code")
    verification_code_expires: Optional[datetime] = None
    is_active: bool = Field(True, description="Whether account is active")


class Shop(BaseModel):
    account_id: str = Field(..., description="Owner account _id (string)")
    shop_name: str
    shop_address: str
    shop_description: Optional[str] = None
    shop_logo_url: Optional[str] = None
    business_license_number: Optional[str] = None
    tax_id: Optional[str] = None
    contact_email: Optional[str] = None
    contact_phone: Optional[str] = None
    bank_account_number: Optional[str] = None
    bank_name: Optional[str] = None
    approval_status: ApprovalStatus = "pending"
    rejection_reason: Optional[str] = None
    is_active: bool = False
    has_active_package: bool = False


class Brand(BaseModel):
    name: str = Field(..., description="Unique brand name")
    description: str = ""
    image: str = Field("", description="Logo URL")


class ProductType(BaseModel):
    name: str = Field(..., description="Unique category name")
    description: str = ""


class Product(BaseModel):
    name: str = Field(..., description="Product name")
    model: str = Field(..., description="Camera model")
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Units in stock")
    categories: List[str] = Field(..., min_length=1, description="ProductType _ids")
    brand: Optional[str] = Field(None, description="Brand _id")
    origin: Optional[str] = None
    description: str = ""
    images: List[str] = Field(default_factory=list)
    type: Optional[str] = Field(None, description="DSLR, Mirrorless, Action Camera...")
    sensor_type: Optional[str] = None
    megapixels: Optional[float] = None
    lens_mount: Optional[str] = None
    video_resolution: Optional[str] = None
    connectivity: List[str] = Field(default_factory=list)
    features: List[str] = Field(default_factory=list)
    weight: Optional[float] = None
    dimensions: Optional[str] = None
    usage_instructions: Optional[str] = None
    certifications: List[str] = Field(default_factory=list)
    warnings: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    availability_type: Literal["in_stock", "pre_order"] = "in_stock"
    pre_order_delivery_time: Optional[str] = None


class CartItem(BaseModel):
    """Embedded in Cart, not a collection."""
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0)
    selected: bool = True


class Cart(BaseModel):
    customer_id: str
    items: List[CartItem] = Field(default_factory=list)
    total_price: float = 0
    total_items: int = 0
    version: int = Field(0, description="Incremented on every write")


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int = Field(..., ge=1)


class Payment(BaseModel):
    """Embedded in Order."""
    method: Literal["cod", "payos"] = "cod"
    status: PaymentStatus = "pending"
    transaction_id: Optional[str] = None
    payment_time: Optional[datetime] = None
    details: Optional[Any] = None


class CustomerInfo(BaseModel):
    username: str
    email: str


class Order(BaseModel):
    order_code: int
    customer_id: str
    combo_id: Optional[str] = None
    items: List[OrderItem]
    total_amount: float = Field(..., ge=0)
    status: OrderStatus = "pending"
    customer_info: CustomerInfo
    payment: Payment = Field(default_factory=Payment)
    pickup_time: datetime
    note: Optional[str] = None


class Service(BaseModel):
    shop_id: str
    name: str
    description: str = ""
    price: float = Field(..., ge=0)
    duration: Optional[int] = Field(None, ge=1, description="Minutes")
    categories: List[str] = Field(..., min_length=1, description="ProductType _ids")
    images: List[str] = Field(default_factory=list)
    service_type: Literal["onsite", "offsite", "both"] = "both"
    availability: Literal["available", "unavailable"] = "available"
    max_bookings: int = Field(10, ge=1, description="Bookings per day")
    requirements: List[str] = Field(default_factory=list)
    includes: List[str] = Field(default_factory=list)
    excludes: List[str] = Field(default_factory=list)
    notes: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)


class Booking(BaseModel):
    service_id: str
    shop_id: str
    user_id: Optional[str] = Field(None, description="Account _id when booked while logged in")
    customer_name: str
    customer_phone: str
    customer_email: EmailStr
    service_type: Literal["onsite", "offsite"]
    address: str
    booking_date: datetime
    booking_time: str
    notes: Optional[str] = None
    status: BookingStatus = "pending"
    payment_status: BookingPaymentStatus = "pending"
    total_amount: float = Field(..., ge=0)
    deposit_amount: float = Field(..., ge=0)


class ServiceReview(BaseModel):
    booking_id: str
    customer_id: str
    service_id: str
    shop_id: str
    rating: int = Field(..., ge=1, le=5, description="Rating 1-5")
    comment: Optional[str] = None


class Combo(BaseModel):
    name: str
    products: List[str] = Field(..., min_length=1, description="Product _ids")
    area: str
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    combo_type: Literal["basic", "premium", "family"] = "basic"
    created_by: Optional[str] = None


class PaymentRecord(BaseModel):
    """
    One gateway payment-link request. `order_code` is the correlation id
    the gateway echoes back in webhooks and return redirects.
    Collection: "payment"
    """
    order_code: int
    target_type: PaymentTarget
    target_id: str
    amount: int = Field(..., ge=0)
    description: str
    status: PaymentStatus = "pending"
    payment_link_id: Optional[str] = None
    checkout_url: Optional[str] = None
    transaction_id: Optional[str] = None
    details: Optional[Any] = None
    paid_at: Optional[datetime] = None


class CallerInfo(BaseModel):
    user_id: str
    name: str


class CallHistory(BaseModel):
    call_time: datetime
    result: CallResult
    notes: Optional[str] = None
    caller_info: CallerInfo


class ConsultationRequest(BaseModel):
    """
    A customer asking to be called back, either right away or at a chosen time.
    Collection: "consultationrequest"
    """
    customer_name: str = Field(..., min_length=2, max_length=100)
    phone_number: str = Field(..., pattern=r"^[0-9]{10,11}$")
    email: Optional[EmailStr] = None
    consultation_type: Literal["call_now", "schedule"]
    preferred_time: datetime
    status: ConsultationStatus = "pending"
    call_history: List[CallHistory] = Field(default_factory=list)
    notes: Optional[str] = None
