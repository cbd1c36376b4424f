"""
Database Schemas for the Ethiopian marketplace

Each Pydantic model corresponds to a MongoDB collection.
Collection name is the lowercase of the class name.

- User -> "user"
- Product -> "product"
- SellerPromotion -> "sellerpromotion"
- Promotion -> "promotion" (checkout promo codes)
- Order -> "order"
- TaxRule -> "taxrule"
- Currency -> "currency"

The *In / *Update models further down are request bodies, not collections.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

Region = Literal[
    "Addis Ababa", "Afar", "Amhara", "Benishangul-Gumuz", "Dire Dawa", "Gambela",
    "Harari", "Oromia", "Sidama", "Somali", "SNNPR", "Tigray",
]
PromotionType = Literal["percentage", "amount", "bundle"]
PromotionStatus = Literal["Draft", "Scheduled", "Running", "Completed", "Archived"]
PaymentMethod = Literal["telebirr", "cbe", "cod", "bank_transfer", "chapa"]
PaymentStatus = Literal["pending", "processing", "completed", "failed", "refunded", "cancelled"]
OrderStatus = Literal["pending", "confirmed", "processing", "shipped", "delivered", "cancelled", "returned"]


class User(BaseModel):
    """Users collection schema"""
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    phone: Optional[str] = Field(None, description="Phone number, +251...")
    role: Literal["customer", "seller", "admin"] = Field("customer", description="Role")


class PromotionSnapshot(BaseModel):
    promotion_id: str
    title: str
    type: PromotionType = "percentage"
    discount_value: float = 0
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    status: PromotionStatus = "Scheduled"


class Product(BaseModel):
    """Products collection schema"""
    seller_id: str = Field(..., description="Owning seller")
    title: str = Field(..., max_length=100, description="Product title")
    description: Optional[str] = Field(None, max_length=1000, description="Product description")
    category: Optional[str] = Field(None, description="Category id")
    image_url: Optional[str] = Field(None, description="Primary image URL")
    price: float = Field(..., ge=0, description="Current selling price, promotion adjusted")
    base_price: Optional[float] = Field(None, ge=0, description="Seller-set price before promotions")
    original_price: Optional[float] = Field(None, ge=0, description="Strike-through price shown to buyers")
    manual_original_price: Optional[float] = Field(None, ge=0, description="Seller-entered 'was' price")
    promotion_discount_percent: float = Field(0, ge=0)
    active_promotions: List[PromotionSnapshot] = Field(default_factory=list)
    stock: int = Field(0, ge=0)
    currency: Literal["ETB", "USD"] = "ETB"


class SellerPromotion(BaseModel):
    """Seller promotions collection schema"""
    seller_id: str
    title: str = Field(..., max_length=160)
    type: PromotionType = "percentage"
    discount_value: float = Field(0, ge=0)
    min_spend: float = Field(0, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    audience: str = "all-customers"
    description: Optional[str] = Field(None, max_length=4000)
    status: PromotionStatus = "Scheduled"
    performance: float = Field(0, ge=0, le=100)
    idea: Optional[str] = Field(None, max_length=4000)


class Promotion(BaseModel):
    """Checkout promo codes collection schema"""
    name: str
    description: Optional[str] = None
    code: str
    type: Literal["percentage", "fixed_amount", "free_shipping", "buy_x_get_y"]
    value: float = Field(0, ge=0)
    minimum_order_amount: float = Field(0, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    user_usage_limit: int = Field(1, ge=0)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    applies_to: Literal["all_products", "specific_categories", "specific_products", "specific_sellers"] = "all_products"
    categories: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    sellers: List[str] = Field(default_factory=list)
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    created_by: str
    scope: Literal["global", "seller"] = "global"


class ShippingAddress(BaseModel):
    name: Optional[str] = None
    phone: Optional[str] = None
    country: str = "ET"
    region: Region
    city: str
    subcity: Optional[str] = None
    woreda: Optional[str] = None
    kebele: Optional[str] = None
    house_number: Optional[str] = None
    specific_location: str


class OrderItem(BaseModel):
    product_id: str
    seller_id: Optional[str] = None
    title: str
    image_url: Optional[str] = None
    category: Optional[str] = None
    price: float
    quantity: int = Field(..., ge=1)
    subtotal: float


class AppliedPromotion(BaseModel):
    code: str
    discount: float


class Order(BaseModel):
    """Orders collection schema"""
    order_number: str
    customer_id: str
    items: List[OrderItem]
    subtotal: float = Field(..., ge=0)
    discount_amount: float = Field(0, ge=0)
    promotion: Optional[AppliedPromotion] = None
    tax_amount: float = Field(0, ge=0)
    shipping_cost: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    currency: str = "ETB"
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "pending"
    payment_id: Optional[str] = Field(None, description="Reference from payment provider")
    payment_details: Optional[Dict[str, Any]] = None
    status: OrderStatus = "pending"
    shipping_method: Literal["standard", "express", "pickup"] = "standard"
    estimated_delivery: Optional[datetime] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    delivered_at: Optional[datetime] = None
    customer_notes: Optional[str] = None
    internal_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None


class TaxAppliesTo(BaseModel):
    products: bool = True
    shipping: bool = False
    handling: bool = False


class TaxRule(BaseModel):
    """Tax rules collection schema"""
    name: str
    country: str = "ET"
    region: Literal[
        "Addis Ababa", "Afar", "Amhara", "Benishangul-Gumuz", "Dire Dawa", "Gambela",
        "Harari", "Oromia", "Sidama", "Somali", "SNNPR", "Tigray", "all",
    ] = "all"
    tax_type: Literal["vat", "sales_tax", "gst", "custom"]
    rate: float = Field(..., ge=0, le=100)
    is_compound: bool = False
    priority: int = 0
    applies_to: TaxAppliesTo = Field(default_factory=TaxAppliesTo)
    categories: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    exceptions: List[str] = Field(default_factory=list)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True


class CurrencyFormatting(BaseModel):
    symbol_position: Literal["before", "after"] = "before"
    thousand_separator: str = ","
    decimal_separator: str = "."
    space_between: bool = False


class Currency(BaseModel):
    """Currencies collection schema"""
    code: str = Field(..., min_length=3, max_length=3)
    name: str
    symbol: str
    exchange_rate: float = Field(..., gt=0)
    is_base_currency: bool = False
    is_active: bool = True
    decimal_places: int = Field(2, ge=0, le=4)
    formatting: CurrencyFormatting = Field(default_factory=CurrencyFormatting)
    auto_update: bool = False
    last_updated: Optional[datetime] = None


# Request bodies

class ProductIn(BaseModel):
    title: str = Field(..., max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[str] = None
    image_url: Optional[str] = None
    price: float = Field(..., ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(0, ge=0)
    currency: Literal["ETB", "USD"] = "ETB"


class ProductUpdate(BaseModel):
    title: str = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    category: Optional[str] = None
    image_url: Optional[str] = None
    price: float = Field(None, ge=0)
    original_price: Optional[float] = Field(None, ge=0)
    stock: int = Field(None, ge=0)
    currency: Literal["ETB", "USD"] = None


class SellerPromotionIn(BaseModel):
    title: Optional[str] = Field(None, max_length=160)
    type: Optional[PromotionType] = None
    discount_value: Optional[float] = Field(None, ge=0)
    min_spend: Optional[float] = Field(None, ge=0)
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    audience: Optional[str] = None
    description: Optional[str] = Field(None, max_length=4000)
    status: Optional[PromotionStatus] = None
    performance: Optional[float] = Field(None, ge=0, le=100)
    idea: Optional[str] = Field(None, max_length=4000)


class PromotionIn(BaseModel):
    name: str
    description: Optional[str] = None
    code: Optional[str] = None
    type: Literal["percentage", "fixed_amount", "free_shipping", "buy_x_get_y"]
    value: float = Field(0, ge=0)
    minimum_order_amount: float = Field(0, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: int = Field(1, ge=0)
    valid_from: datetime
    valid_until: datetime
    is_active: bool = True
    applies_to: Literal["all_products", "specific_categories", "specific_products", "specific_sellers"] = "all_products"
    categories: List[str] = Field(default_factory=list)
    products: List[str] = Field(default_factory=list)
    sellers: List[str] = Field(default_factory=list)
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)
    scope: Literal["global", "seller"] = "global"


class PromotionUpdate(BaseModel):
    name: str = None
    description: Optional[str] = None
    value: float = Field(None, ge=0)
    minimum_order_amount: float = Field(None, ge=0)
    maximum_discount: Optional[float] = Field(None, ge=0)
    usage_limit: Optional[int] = Field(None, ge=0)
    user_usage_limit: int = Field(None, ge=0)
    valid_from: datetime = None
    valid_until: datetime = None
    is_active: bool = None
    categories: List[str] = None
    products: List[str] = None
    sellers: List[str] = None
    buy_quantity: Optional[int] = Field(None, ge=1)
    get_quantity: Optional[int] = Field(None, ge=1)


class CartLine(BaseModel):
    product_id: str
    seller_id: Optional[str] = None
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class ValidatePromotionIn(BaseModel):
    code: str
    cart_items: List[CartLine]
    total_amount: float = Field(..., ge=0)
    user_id: Optional[str] = None


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    image_url: Optional[str] = None


class OrderCreate(BaseModel):
    items: List[OrderItemIn]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    customer_notes: Optional[str] = None
    promo_code: Optional[str] = None
    include_tax: bool = False


class OrderStatusUpdate(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    carrier: Optional[str] = None
    internal_notes: Optional[str] = None
    cancellation_reason: Optional[str] = None


class CancelOrderIn(BaseModel):
    cancellation_reason: Optional[str] = None


class TaxItem(BaseModel):
    product: str
    category: Optional[str] = None
    price: float = Field(..., ge=0)
    quantity: int = Field(..., ge=1)


class TaxAddress(BaseModel):
    country: str = "ET"
    region: Optional[str] = None


class TaxCalculationIn(BaseModel):
    items: Optional[List[TaxItem]] = None
    shipping_address: Optional[TaxAddress] = None
    shipping_cost: float = Field(0, ge=0)
    currency: str = "ETB"


class TaxRuleUpdate(BaseModel):
    name: str = None
    region: str = None
    tax_type: Literal["vat", "sales_tax", "gst", "custom"] = None
    rate: float = Field(None, ge=0, le=100)
    is_compound: bool = None
    priority: int = None
    applies_to: TaxAppliesTo = None
    categories: List[str] = None
    products: List[str] = None
    exceptions: List[str] = None
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = None


class CurrencyUpdate(BaseModel):
    name: str = None
    symbol: str = None
    exchange_rate: float = Field(None, gt=0)
    is_base_currency: Optional[bool] = None
    is_active: bool = None
    decimal_places: int = Field(None, ge=0, le=4)
    formatting: CurrencyFormatting = None
    auto_update: bool = None


class ConvertIn(BaseModel):
    from_code: Optional[str] = Field(None, alias="from")
    to_code: Optional[str] = Field(None, alias="to")
    amount: Optional[float] = None


class PaymentIn(BaseModel):
    order_id: str
    phone_number: Optional[str] = None


class BankTransferIn(BaseModel):
    order_id: str
    bank_name: str
    account_number: str
    transfer_date: Optional[str] = None
    reference_number: str


class BankTransferVerifyIn(BaseModel):
    approved: bool = True
    note: Optional[str] = None
