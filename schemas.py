"""
Storefront Schemas

Pydantic models for every entity the API accepts or stores. Request models
validate input once for both create and update paths; stored records are
plain dicts dumped from these models.

Collections (one JSON file each, see database.py):
- Product  -> "products"
- Offer    -> "offers"
- Order    -> "orders"
- Customer -> "customers"
- Cart     -> "carts"
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

ProductType = Literal["poster", "polaroid"]
PaymentMethod = Literal["upi", "paytm", "cod"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded", "cod"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "failed"]


def utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


# ---------- Catalog ----------
class Product(BaseModel):
    """
    Posters and polaroids
    Collection name: "products"
    """
    model_config = ConfigDict(extra="allow")

    id: str = Field(..., description="Unique product id, e.g. poster-1")
    type: ProductType
    title: str = Field(..., min_length=1)
    description: str = ""
    price: Dict[str, float] = Field(..., description="Price in INR per size")
    stock: Dict[str, int] = Field(default_factory=lambda: {"M": 0, "L": 0, "XL": 0})
    images: List[str] = Field(default_factory=list, description="Image URLs")
    category: str = "abstract"
    tags: List[str] = Field(default_factory=list)
    dimensions: Dict[str, str] = Field(
        default_factory=lambda: {"M": "8x12 inches", "L": "12x18 inches", "XL": "16x24 inches"}
    )
    materials: str = "Matte/Glossy finish options"
    featured: bool = False
    created_at: Optional[str] = None
    updated_at: Optional[str] = None


class ProductCreate(BaseModel):
    id: Optional[str] = None
    type: ProductType
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Dict[str, float] = Field(..., min_length=1)
    stock: Optional[Dict[str, int]] = None
    images: Optional[List[str]] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    dimensions: Optional[Dict[str, str]] = None
    materials: Optional[str] = None
    featured: bool = False


class PartialUpdate(BaseModel):
    """Base for PUT bodies: only fields the client sent are applied."""
    model_config = ConfigDict(extra="allow")

    def changes(self) -> Dict[str, Any]:
        # null on a declared field means "leave as is"; extra keys pass through
        declared = type(self).model_fields
        return {
            k: v for k, v in self.model_dump(exclude_unset=True).items()
            if not (k in declared and v is None)
        }


class ProductUpdate(PartialUpdate):
    type: Optional[ProductType] = None
    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    price: Optional[Dict[str, float]] = None
    stock: Optional[Dict[str, int]] = None
    images: Optional[List[str]] = None
    category: Optional[str] = None
    tags: Optional[List[str]] = None
    dimensions: Optional[Dict[str, str]] = None
    materials: Optional[str] = None
    featured: Optional[bool] = None


class OfferConditions(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    min_subtotal: float = Field(0, alias="minSubtotal", ge=0)

    @field_validator("min_subtotal", mode="before")
    @classmethod
    def _null_min_subtotal(cls, v):
        return 0 if v is None else v


class Offer(BaseModel):
    """Discount rule, read-only to the checkout flow"""
    model_config = ConfigDict(extra="allow")

    id: str
    label: Optional[str] = None
    type: Literal["percentage", "flat"]
    value: float = Field(0, ge=0)
    active: bool = True
    conditions: OfferConditions = Field(default_factory=OfferConditions)

    @field_validator("conditions", mode="before")
    @classmethod
    def _null_conditions(cls, v):
        return {} if v is None else v


# ---------- Cart ----------
class CartLineItem(BaseModel):
    model_config = ConfigDict(extra="allow")

    product_id: str = Field(..., min_length=1)
    size: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)
    custom_artwork: Optional[str] = Field(None, description="Uploaded artwork reference, see /api/uploads")


class CartPayload(BaseModel):
    cart: List[CartLineItem]


# ---------- Orders ----------
class OrderItem(BaseModel):
    product_id: str
    title: str = Field(..., description="Product title snapshot")
    size: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, description="Unit price at time of order")
    line_total: float = Field(..., ge=0)
    custom_artwork: Optional[str] = None


class AppliedOffer(BaseModel):
    id: str
    label: Optional[str] = None
    type: Literal["percentage", "flat"]


class CheckoutCustomer(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    first_name: str = Field(..., alias="firstName", min_length=1)
    last_name: str = Field(..., alias="lastName", min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


class ShippingAddress(BaseModel):
    line1: str = Field(..., min_length=1)
    line2: str = ""
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)


class CheckoutRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer: CheckoutCustomer
    shipping_address: ShippingAddress = Field(..., alias="shippingAddress")
    payment_method: PaymentMethod = Field(..., alias="paymentMethod")
    items: List[CartLineItem] = Field(..., min_length=1)
    notes: str = ""


class OrderCustomer(BaseModel):
    name: str
    email: str
    phone: str


class Order(BaseModel):
    """
    Checkout order
    Collection name: "orders"
    """
    model_config = ConfigDict(extra="allow")

    id: str
    customer: OrderCustomer
    shipping_address: ShippingAddress
    items: List[OrderItem]
    offers_applied: List[AppliedOffer] = Field(default_factory=list)
    subtotal: float = Field(..., ge=0)
    discount: float = Field(0, ge=0)
    shipping: float = Field(0, ge=0)
    total: float = Field(..., ge=0)
    currency: Literal["INR"] = "INR"
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    status: OrderStatus = "pending"
    notes: str = ""
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)


class OrderUpdate(PartialUpdate):
    """Partial update; unknown fields are merged into the order as given."""

    status: Optional[OrderStatus] = None
    payment_status: Optional[PaymentStatus] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None


class Customer(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    created_at: str = Field(default_factory=utc_now)


# ---------- Payments ----------
class UpiConfirmation(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1)
    transaction_id: str = Field(..., alias="transactionId", min_length=1)
    amount: Optional[float] = Field(None, ge=0)


class PaytmCreateRequest(BaseModel):
    order_id: str = Field(..., alias="orderId", min_length=1)
    amount: float = Field(..., gt=0)
    customer_id: str = Field(..., alias="customerId", min_length=1)


# ---------- Misc ----------
class PosterKey(BaseModel):
    key: float


class Subscription(BaseModel):
    email: EmailStr


def dump(model: BaseModel) -> Dict[str, Any]:
    return model.model_dump(mode="json")
