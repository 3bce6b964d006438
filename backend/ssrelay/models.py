"""Data models for the SSActiveWear relay"""
from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
import uuid

from .errors import ValidationError


def generate_uuid():
    return str(uuid.uuid4())


class Document(BaseModel):
    """Base for stored documents; ignores Mongo's _id"""
    model_config = ConfigDict(extra='ignore', use_enum_values=True, validate_default=True)


# Enums
class DiscountType(str, Enum):
    PERCENTAGE = 'percentage'
    FIXED = 'fixed'


class AdjustType(str, Enum):
    PERCENT_INCREASE = 'percent_increase'
    PERCENT_DECREASE = 'percent_decrease'
    FIXED_INCREASE = 'fixed_increase'
    FIXED_DECREASE = 'fixed_decrease'
    MULTIPLIER = 'multiplier'
    SET_FIXED = 'set_fixed'


class RoundingPolicy(str, Enum):
    NONE = 'none'
    NINETY_NINE = '.99'
    NINETY_FIVE = '.95'
    NEAREST = 'nearest'
    UP = 'up'


class JobStatus(str, Enum):
    PENDING_APPROVAL = 'pending_approval'
    SUBMITTED = 'submitted'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    ERROR = 'error'


class Routing(str, Enum):
    PENDING_APPROVAL = 'pending_approval'
    AUTO_SUBMITTED = 'auto_submitted'


class TrackingStatus(str, Enum):
    PENDING = 'pending'
    IN_TRANSIT = 'in_transit'
    DELIVERED = 'delivered'


class JobType(str, Enum):
    CATALOG_SYNC = 'catalog_sync'
    INVENTORY_SYNC = 'inventory_sync'
    PRICE_UPDATE = 'price_update'
    ORDER_STATUS = 'order_status'
    CLEANUP = 'cleanup'


class Schedule(str, Enum):
    HOURLY = 'hourly'
    DAILY = 'daily'
    WEEKLY = 'weekly'


class RunStatus(str, Enum):
    PENDING = 'pending'
    RUNNING = 'running'
    SUCCESS = 'success'
    FAILED = 'failed'


# Volume pricing
class Tier(Document):
    min_qty: int = Field(ge=1)
    max_qty: Optional[int] = None
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: float = Field(default=0, ge=0)

    @model_validator(mode='after')
    def check_range(self):
        if self.max_qty is not None and self.max_qty < self.min_qty:
            raise ValidationError(f"Tier max_qty {self.max_qty} is below min_qty {self.min_qty}")
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValidationError("Percentage discount cannot exceed 100")
        return self

    def covers(self, quantity: int) -> bool:
        return self.min_qty <= quantity and (self.max_qty is None or quantity <= self.max_qty)

    @property
    def label(self) -> str:
        return f"{self.min_qty}-{self.max_qty}" if self.max_qty is not None else f"{self.min_qty}+"


class SizePremium(Document):
    size_pattern: str = Field(min_length=1)
    premium_type: DiscountType = DiscountType.FIXED
    premium_value: float = Field(default=0, ge=0)


class RuleProduct(Document):
    shopify_product_id: str
    base_price_cents: Optional[int] = Field(default=None, ge=0)


def validate_tiers(tiers: List[Tier]) -> List[Tier]:
    """Tiers must be ascending by min_qty, non-overlapping, with an unbounded tier only last"""
    for i, tier in enumerate(tiers):
        if i == 0:
            continue
        prev = tiers[i - 1]
        if tier.min_qty <= prev.min_qty:
            raise ValidationError(f"Tiers must be ordered by min_qty (tier {i + 1})")
        if prev.max_qty is None:
            raise ValidationError("Only the last tier may have no max_qty")
        if tier.min_qty <= prev.max_qty:
            raise ValidationError(f"Tier {prev.label} overlaps tier {tier.label}")
    return tiers


DEFAULT_TIERS = [
    (1, 11, 0), (12, 24, 10), (25, 36, 20), (37, 72, 30),
    (73, 144, 40), (145, 288, 50), (289, None, 60),
]


def default_tiers() -> List[Tier]:
    return [
        Tier(min_qty=lo, max_qty=hi, discount_type=DiscountType.PERCENTAGE, discount_value=pct)
        for lo, hi, pct in DEFAULT_TIERS
    ]


class VolumePriceRule(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    name: str = Field(min_length=1)
    description: Optional[str] = None
    is_active: bool = True
    priority: int = 0
    tiers: List[Tier] = Field(default_factory=default_tiers)
    size_premiums: List[SizePremium] = []
    products: List[RuleProduct] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @field_validator('tiers')
    @classmethod
    def check_tiers(cls, tiers: List[Tier]) -> List[Tier]:
        return validate_tiers(tiers)

    def product(self, shopify_product_id: str) -> Optional[RuleProduct]:
        for p in self.products:
            if p.shopify_product_id == shopify_product_id:
                return p
        return None


# Catalog
class ProductMap(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    shopify_product_id: str
    ss_style_id: str
    style_name: Optional[str] = None
    brand_name: Optional[str] = None
    base_price_cents: Optional[int] = None
    last_price_cents: Optional[int] = None
    stock_qty: Optional[int] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class PriceAdjustment(BaseModel):
    """Uniform price transform plus rounding policy"""
    model_config = ConfigDict(use_enum_values=True)

    adjust_type: AdjustType
    adjust_value: float
    rounding: RoundingPolicy = RoundingPolicy.NONE
    brand_filter: Optional[str] = None

    @field_validator('rounding', mode='before')
    @classmethod
    def normalise_rounding(cls, value):
        # Admin form values from the storefront app
        aliases = {'0.99': '.99', '0.95': '.95', 'round': 'nearest', '': 'none', None: 'none'}
        return aliases.get(value, value)

    @model_validator(mode='after')
    def check_value(self):
        if self.adjust_value != self.adjust_value or self.adjust_value in (float('inf'), float('-inf')):
            raise ValidationError("Adjustment value must be a finite number")
        if self.adjust_value < 0:
            raise ValidationError("Adjustment value cannot be negative")
        if self.adjust_type == AdjustType.MULTIPLIER and self.adjust_value == 0:
            raise ValidationError("Multiplier must be greater than zero")
        if self.adjust_type == AdjustType.PERCENT_DECREASE and self.adjust_value > 100:
            raise ValidationError("Percent decrease cannot exceed 100")
        return self


class PriceRule(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    name: str
    adjustment: PriceAdjustment
    is_active: bool = True
    priority: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)


# Orders
class WebhookLineItem(BaseModel):
    model_config = ConfigDict(extra='ignore')

    product_id: Optional[str] = None
    variant_id: Optional[str] = None
    sku: Optional[str] = None
    quantity: int = 0
    vendor: Optional[str] = None

    @field_validator('product_id', 'variant_id', mode='before')
    @classmethod
    def stringify_id(cls, value):
        return str(value) if value is not None else None


class WebhookOrder(BaseModel):
    """Verified orders/create payload"""
    model_config = ConfigDict(extra='ignore')

    id: str
    order_number: Optional[str] = None
    name: Optional[str] = None
    line_items: List[WebhookLineItem] = []
    tags: List[str] = []
    total_price: str = '0'

    @field_validator('id', 'order_number', mode='before')
    @classmethod
    def stringify(cls, value):
        return str(value) if value is not None else None

    @field_validator('total_price', mode='before')
    @classmethod
    def default_total(cls, value):
        return str(value) if value is not None else '0'

    @field_validator('tags', mode='before')
    @classmethod
    def split_tags(cls, value):
        # Shopify sends tags as one comma-separated string
        if value is None:
            return []
        if isinstance(value, str):
            return [t.strip() for t in value.split(',') if t.strip()]
        return value

    @property
    def gid(self) -> str:
        return self.id if self.id.startswith('gid://') else f"gid://shopify/Order/{self.id}"

    @property
    def display_number(self) -> Optional[str]:
        return self.order_number or self.name

    @property
    def total_cents(self) -> int:
        from .utils.money import to_cents
        return to_cents(self.total_price)

    @property
    def item_count(self) -> int:
        return sum(item.quantity for item in self.line_items)


class OrderJob(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    shopify_order_id: str
    shopify_order_number: Optional[str] = None
    status: JobStatus = JobStatus.PENDING_APPROVAL
    ss_order_number: Optional[str] = None
    submitting: bool = False
    total_cents: int = 0
    tags: List[str] = []
    logs: List[str] = []
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class AutoOrderSettings(Document):
    shop: str
    is_enabled: bool = False
    auto_submit: bool = False
    default_shipping_method: str = 'FXG'
    notify_email: Optional[str] = None
    min_order_value_cents: int = Field(default=0, ge=0)
    exclude_tags: Optional[str] = None
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def excluded_tags(self) -> set:
        if not self.exclude_tags:
            return set()
        return {t.strip().lower() for t in self.exclude_tags.split(',') if t.strip()}


class RoutingDecision(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    routing: Routing
    reasons: List[str] = []


class ShipmentTracking(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    order_job_id: str
    carrier: Optional[str] = None
    tracking_number: Optional[str] = None
    status: TrackingStatus = TrackingStatus.PENDING
    last_location: Optional[str] = None
    last_update: Optional[datetime] = None
    estimated_delivery: Optional[datetime] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)


class CarrierStatus(BaseModel):
    """Result from the carrier tracking source"""
    model_config = ConfigDict(use_enum_values=True)

    status: TrackingStatus
    last_location: Optional[str] = None
    estimated_delivery: Optional[datetime] = None


# Scheduling
class ScheduledJob(Document):
    id: str = Field(default_factory=generate_uuid)
    shop: str
    job_type: JobType
    schedule: Schedule = Schedule.DAILY
    is_enabled: bool = True
    last_run_at: Optional[datetime] = None
    last_status: Optional[RunStatus] = None
    last_error: Optional[str] = None
    next_run_at: Optional[datetime] = None
    run_count: int = 0
    config: Dict[str, Any] = {}


# Analytics
class DailyStats(Document):
    shop: str
    date: str
    orders_count: int = 0
    items_sold: int = 0
    revenue_cents: int = 0
    ss_orders_count: int = 0
    imported_count: int = 0
