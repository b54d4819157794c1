"""
Database Schemas for the E-commerce platform

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name (snake_case for
multi-word names, e.g. SiteConfig -> "site_config").
References to other documents are stored as id strings.
"""
from datetime import datetime
from typing import Dict, List, Optional, Literal

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

UserRole = Literal["user", "seller", "admin"]
OrderStatus = Literal["pending", "processing", "shipped", "delivered", "cancelled"]
PaymentMethod = Literal["PayPal", "Stripe", "Credit Card", "Cash on Delivery"]
WithdrawalStatus = Literal["pending", "processing", "completed", "rejected"]
Resource = Literal["orders", "products", "users", "sellers", "payments", "reports", "settings", "dashboard"]
Action = Literal["view", "create", "edit", "delete", "manage"]
FilterType = Literal["orders", "products", "users", "sellers"]

# resource -> actions a role may be granted on it
RESOURCE_ACTIONS: Dict[str, List[str]] = {
    "orders": ["view", "create", "edit", "delete", "manage"],
    "products": ["view", "create", "edit", "delete", "manage"],
    "users": ["view", "create", "edit", "delete", "manage"],
    "sellers": ["view", "create", "edit", "delete", "manage"],
    "payments": ["view", "create", "edit", "delete", "manage"],
    "reports": ["view", "create", "edit", "delete"],
    "settings": ["view", "edit", "manage"],
    "dashboard": ["view", "manage"],
}


# ----------------------- Users -----------------------
class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Hashed password")
    role: UserRole = "user"
    role_id: Optional[str] = Field(None, description="Role document granting permissions")
    avatar: Optional[str] = None
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None


class RegisterBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class UpdateDetailsBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None


class UpdatePasswordBody(BaseModel):
    current_password: str
    new_password: str = Field(..., min_length=6)


# ----------------------- Products -----------------------
class Review(BaseModel):
    id: str
    user_id: str
    name: str
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., max_length=500)
    created_at: Optional[datetime] = None


class Product(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field(..., min_length=1, max_length=2000)
    price: float = Field(..., ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    images: List[str] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    stock: int = Field(0, ge=0)
    sku: Optional[str] = Field(None, min_length=3)
    tags: List[str] = []
    is_active: bool = True
    is_featured: bool = False


class ProductUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=2000)
    price: Optional[float] = Field(None, ge=0)
    compare_price: Optional[float] = Field(None, ge=0)
    images: Optional[List[str]] = Field(None, min_length=1)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    brand: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    sku: Optional[str] = Field(None, min_length=3)
    tags: Optional[List[str]] = None
    is_active: Optional[bool] = None
    is_featured: Optional[bool] = None


class ReviewBody(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field(..., min_length=1, max_length=500)


# ----------------------- Orders -----------------------
class ShippingAddress(BaseModel):
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class OrderItemIn(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: Optional[float] = Field(None, ge=0, description="Client-side unit price, informational only")


class OrderItem(BaseModel):
    product_id: str
    name: str
    price: float
    quantity: int
    image: Optional[str] = None


class PaymentResult(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None


class Order(BaseModel):
    user_id: str
    order_items: List[OrderItem]
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_result: Optional[PaymentResult] = None
    total_price: float = Field(..., ge=0)
    is_paid: bool = False
    paid_at: Optional[datetime] = None
    is_delivered: bool = False
    delivered_at: Optional[datetime] = None
    order_status: OrderStatus = "pending"
    tracking_number: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class OrderCreateBody(BaseModel):
    order_items: List[OrderItemIn] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    total_price: Optional[float] = Field(None, ge=0)


class Payer(BaseModel):
    email_address: Optional[str] = None


class PaymentBody(BaseModel):
    id: Optional[str] = None
    status: Optional[str] = None
    update_time: Optional[str] = None
    email_address: Optional[str] = None
    payer: Optional[Payer] = None

    def to_result(self) -> PaymentResult:
        email = self.email_address or (self.payer.email_address if self.payer else None)
        return PaymentResult(id=self.id, status=self.status, update_time=self.update_time, email_address=email)


class OrderStatusBody(BaseModel):
    status: Optional[OrderStatus] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = Field(None, max_length=500)


class DeliverBody(BaseModel):
    tracking_number: Optional[str] = None


# ----------------------- Stores / sellers -----------------------
class Address(BaseModel):
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    country: Optional[str] = None
    zip_code: Optional[str] = None


class BankDetails(BaseModel):
    account_name: Optional[str] = None
    account_number: Optional[str] = None
    routing_number: Optional[str] = None
    bank_name: Optional[str] = None


class Store(BaseModel):
    owner_id: str
    name: str = Field(..., min_length=1, max_length=100)
    slug: str
    description: Optional[str] = Field(None, max_length=1000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    email: EmailStr
    phone: str
    address: Address = Address()
    tax_id: Optional[str] = None
    business_registration: Optional[str] = None
    rating: float = Field(0, ge=0, le=5)
    total_reviews: int = 0
    followers: List[str] = []
    is_verified: bool = False
    is_active: bool = True
    bank_details: BankDetails = BankDetails()
    commission_rate: float = 10
    total_earnings: float = 0
    total_orders: int = 0
    total_products: int = 0
    metadata: dict = {}


class StoreCreateBody(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    email: EmailStr
    phone: str = Field(..., min_length=1)
    address: Optional[Address] = None
    tax_id: Optional[str] = None
    business_registration: Optional[str] = None
    bank_details: Optional[BankDetails] = None


class StoreUpdateBody(BaseModel):
    description: Optional[str] = Field(None, max_length=1000)
    logo: Optional[str] = None
    banner: Optional[str] = None
    email: Optional[EmailStr] = None
    phone: Optional[str] = None
    address: Optional[Address] = None
    tax_id: Optional[str] = None
    business_registration: Optional[str] = None
    bank_details: Optional[BankDetails] = None


class Withdrawal(BaseModel):
    seller_id: str
    amount: float = Field(..., ge=100)
    status: WithdrawalStatus = "pending"
    bank_details: BankDetails = BankDetails()
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None
    requested_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None


class WithdrawalBody(BaseModel):
    amount: float = Field(..., ge=100, description="Minimum withdrawal amount is 100")
    bank_details: Optional[BankDetails] = None


class WithdrawalProcessBody(BaseModel):
    status: WithdrawalStatus
    transaction_id: Optional[str] = None
    notes: Optional[str] = None
    rejection_reason: Optional[str] = None


# ----------------------- Roles -----------------------
class Permission(BaseModel):
    resource: Resource
    actions: List[Action] = Field(..., min_length=1)

    @model_validator(mode="after")
    def check_actions(self):
        allowed = RESOURCE_ACTIONS[self.resource]
        bad = [a for a in self.actions if a not in allowed]
        if bad:
            raise ValueError(f"actions {bad} are not available for resource '{self.resource}'")
        self.actions = sorted(set(self.actions))
        return self


class Role(BaseModel):
    name: str = Field(..., min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    permissions: List[Permission] = []
    is_default: bool = False
    is_system: bool = False
    created_by: Optional[str] = None


class RoleUpdateBody(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=50)
    description: Optional[str] = Field(None, max_length=200)
    permissions: Optional[List[Permission]] = None
    is_default: Optional[bool] = None


class AssignRoleBody(BaseModel):
    role_id: str


# ----------------------- Site configuration -----------------------
class FontConfig(BaseModel):
    primary: str = "Inter"
    secondary: str = "system-ui"


class ThemeConfig(BaseModel):
    name: str = "Default"
    primary_color: str = "#3b82f6"
    secondary_color: str = "#64748b"
    accent_color: str = "#f59e0b"
    background_color: str = "#ffffff"
    text_color: str = "#1f2937"
    border_color: str = "#e5e7eb"
    success_color: str = "#10b981"
    warning_color: str = "#f59e0b"
    error_color: str = "#ef4444"
    font: FontConfig = FontConfig()
    is_dark: bool = False


class SocialMedia(BaseModel):
    facebook: Optional[str] = None
    twitter: Optional[str] = None
    instagram: Optional[str] = None
    linkedin: Optional[str] = None
    youtube: Optional[str] = None


class BrandingConfig(BaseModel):
    store_name: str = Field("E-Shop", max_length=100)
    store_description: str = Field("Premium E-Commerce Platform", max_length=500)
    store_email: str = "contact@ecommerce.com"
    store_phone: str = ""
    store_address: str = ""
    logo_url: str = ""
    favicon_url: str = ""
    banner_url: str = ""
    currency: str = "USD"
    currency_symbol: str = "$"
    timezone: str = "UTC"
    language: str = "en"
    social_media: SocialMedia = SocialMedia()


class LayoutConfig(BaseModel):
    header_style: Literal["classic", "modern", "minimal"] = "modern"
    footer_style: Literal["standard", "expanded", "minimal"] = "standard"
    sidebar_position: Literal["left", "right"] = "left"
    sidebar_collapsible: bool = True
    show_breadcrumbs: bool = True
    show_footer: bool = True
    show_chatbot: bool = False
    items_per_page: int = Field(10, ge=1)
    items_per_page_options: List[int] = [10, 20, 50, 100]
    default_sort_by: str = "created_at"
    default_sort_order: Literal["asc", "desc"] = "desc"


class FeatureFlags(BaseModel):
    model_config = ConfigDict(extra="allow")

    seller_registration: bool = True
    reviews: bool = True
    ratings: bool = True
    wishlist: bool = True
    cart: bool = True
    checkout: bool = True
    payments: bool = True
    orders: bool = True
    returns: bool = True
    refunds: bool = True
    coupons: bool = False
    analytics: bool = True
    report_builder: bool = True
    custom_roles: bool = True


class EmailChannel(BaseModel):
    enabled: bool = True
    smtp_provider: str = "gmail"
    sender_email: str = "noreply@ecommerce.com"
    sender_name: str = "E-Shop"


class SmsChannel(BaseModel):
    enabled: bool = False
    provider: Optional[str] = None
    api_key: Optional[str] = None


class PushChannel(BaseModel):
    enabled: bool = False
    provider: Optional[str] = None


class NotificationEvents(BaseModel):
    new_order: bool = True
    order_shipped: bool = True
    order_delivered: bool = True
    payment_failed: bool = True
    low_stock: bool = True
    review_submitted: bool = False
    seller_verification: bool = True
    refund_processed: bool = True


class NotificationConfig(BaseModel):
    email: EmailChannel = EmailChannel()
    sms: SmsChannel = SmsChannel()
    push: PushChannel = PushChannel()
    event_types: NotificationEvents = NotificationEvents()


class SiteConfig(BaseModel):
    version: int = 1
    theme: ThemeConfig = ThemeConfig()
    branding: BrandingConfig = BrandingConfig()
    layout: LayoutConfig = LayoutConfig()
    features: FeatureFlags = FeatureFlags()
    notifications: NotificationConfig = NotificationConfig()
    maintenance_mode: bool = False
    maintenance_message: Optional[str] = None


class FeatureToggleBody(BaseModel):
    enabled: bool


class MaintenanceBody(BaseModel):
    enabled: bool
    message: Optional[str] = None


# ----------------------- Admin preferences -----------------------
class WidgetConfig(BaseModel):
    id: str
    name: str
    enabled: bool = True
    position: int
    size: Literal["small", "medium", "large"] = "medium"


class DigestSettings(BaseModel):
    email_digest: bool = True
    digest_frequency: Literal["daily", "weekly", "monthly"] = "daily"


class SavedFilter(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: FilterType
    filters: dict = {}
    is_default: bool = False


class SavedFilterUpdateBody(BaseModel):
    filters: Optional[dict] = None
    is_default: Optional[bool] = None


class SavedReport(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    metrics: List[str] = []
    date_range: Literal["daily", "weekly", "monthly", "custom"] = "monthly"
    start_date: Optional[datetime] = None
    end_date: Optional[datetime] = None
    filters: dict = {}


class AdminPreferences(BaseModel):
    admin_id: str
    dashboard_widgets: List[WidgetConfig] = []
    default_view: Literal["overview", "products", "orders", "users", "sellers", "analytics"] = "overview"
    auto_refresh_interval: int = Field(30000, ge=5000, le=300000, description="Milliseconds")
    items_per_page: int = 10
    notifications: DigestSettings = DigestSettings()
    saved_filters: List[SavedFilter] = []
    saved_reports: List[SavedReport] = []


class AdminPreferencesUpdateBody(BaseModel):
    default_view: Optional[Literal["overview", "products", "orders", "users", "sellers", "analytics"]] = None
    auto_refresh_interval: Optional[int] = Field(None, ge=5000, le=300000)
    items_per_page: Optional[int] = Field(None, ge=1)
    notifications: Optional[DigestSettings] = None
    dashboard_widgets: Optional[List[WidgetConfig]] = None


class RearrangeWidgetsBody(BaseModel):
    widgets: List[WidgetConfig]
