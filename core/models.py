"""
Domain models for Shopify data.

Provides dataclasses for products, customers, orders and sync bookkeeping.
The ``from_api`` constructors normalize Shopify payloads: any field the API
omits is replaced by the default the local schema expects, so upserts never
see ``None`` where a value is required.
"""
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


# ═══════════════════════════════════════════════════════════════════════════════
# HELPERS
# ═══════════════════════════════════════════════════════════════════════════════

def utcnow() -> datetime:
    """Current time as naive UTC (DuckDB TIMESTAMP)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Any, default: Optional[datetime] = None) -> Optional[datetime]:
    """Parse a Shopify ISO-8601 timestamp into naive UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            return default
    else:
        return default

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def to_money(value: Any) -> float:
    """Shopify sends money as strings ("12.50"); missing or junk becomes 0."""
    if value is None or value == "":
        return 0.0
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0


def split_tags(value: Any) -> List[str]:
    """Shopify tags are a comma separated string."""
    if isinstance(value, list):
        return [str(t).strip() for t in value if str(t).strip()]
    if not value:
        return []
    return [t.strip() for t in str(value).split(",") if t.strip()]


def composite_id(store_id: str, external_id: Any) -> str:
    """Deterministic local row id for a mirrored Shopify entity."""
    return f"{store_id}_{external_id}"


# ═══════════════════════════════════════════════════════════════════════════════
# ENUMS
# ═══════════════════════════════════════════════════════════════════════════════

class EntityType(str, Enum):
    """Entity streams the sync pipeline understands."""
    PRODUCTS = "products"
    CUSTOMERS = "customers"
    ORDERS = "orders"

    @classmethod
    def values(cls) -> List[str]:
        return [e.value for e in cls]


class SyncJobStatus(str, Enum):
    """Lifecycle of a persisted sync job."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"

    @property
    def is_active(self) -> bool:
        return self in (SyncJobStatus.PENDING, SyncJobStatus.RUNNING)


# ═══════════════════════════════════════════════════════════════════════════════
# SYNC STATS
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class SyncStats:
    """Aggregate counts for one entity stream (or a sum of streams)."""
    total: int = 0
    created: int = 0
    updated: int = 0
    errors: int = 0

    def __add__(self, other: "SyncStats") -> "SyncStats":
        return SyncStats(
            total=self.total + other.total,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            errors=self.errors + other.errors,
        )

    @property
    def succeeded(self) -> int:
        return self.created + self.updated

    def to_dict(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "created": self.created,
            "updated": self.updated,
            "errors": self.errors,
        }

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "SyncStats":
        data = data or {}
        return cls(
            total=int(data.get("total", 0)),
            created=int(data.get("created", 0)),
            updated=int(data.get("updated", 0)),
            errors=int(data.get("errors", 0)),
        )


@dataclass
class SyncResult:
    """Outcome of a sync run, as reported to callers."""
    stats: SyncStats
    label: str = "items"
    aborted: bool = False

    @property
    def success(self) -> bool:
        return self.stats.errors == 0 and not self.aborted

    @property
    def message(self) -> str:
        s = self.stats
        return (
            f"Synced {s.total} {self.label} "
            f"({s.created} created, {s.updated} updated, {s.errors} errors)"
        )

    def to_dict(self) -> Dict[str, Any]:
        return {"success": self.success, "message": self.message, "stats": self.stats.to_dict()}


# ═══════════════════════════════════════════════════════════════════════════════
# SHOPIFY ENTITIES
# ═══════════════════════════════════════════════════════════════════════════════

@dataclass
class Product:
    """Product from the Shopify Admin API."""
    shopify_id: str
    title: str
    description: str = ""
    vendor: str = ""
    product_type: str = ""
    handle: str = ""
    status: str = "active"
    sku: str = ""
    price: float = 0.0
    compare_at_price: Optional[float] = None
    inventory_quantity: int = 0
    image_url: Optional[str] = None
    tags: List[str] = field(default_factory=list)
    images: List[Dict[str, Any]] = field(default_factory=list)
    variants: List[Dict[str, Any]] = field(default_factory=list)
    options: List[Dict[str, Any]] = field(default_factory=list)
    published_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Product":
        """Create Product from a Shopify payload."""
        shopify_id = str(data["id"])
        now = utcnow()

        variants = data.get("variants") or []
        if not variants:
            variants = [{"price": "0"}]
        first_variant = variants[0] or {}
        images = data.get("images") or []
        first_image = images[0] if images else (data.get("image") or {})
        compare_at = first_variant.get("compare_at_price")

        return cls(
            shopify_id=shopify_id,
            title=data.get("title") or "",
            description=data.get("body_html") or "",
            vendor=data.get("vendor") or "",
            product_type=data.get("product_type") or "",
            handle=data.get("handle") or f"product-{shopify_id}",
            status=data.get("status") or "active",
            sku=first_variant.get("sku") or "",
            price=to_money(first_variant.get("price", "0")),
            compare_at_price=to_money(compare_at) if compare_at not in (None, "") else None,
            inventory_quantity=sum(int(v.get("inventory_quantity") or 0) for v in variants if v),
            image_url=(first_image or {}).get("src"),
            tags=split_tags(data.get("tags")),
            images=images,
            variants=variants,
            options=data.get("options") or [],
            published_at=parse_datetime(data.get("published_at")),
            created_at=parse_datetime(data.get("created_at"), now),
            updated_at=parse_datetime(data.get("updated_at"), now),
        )


@dataclass
class Customer:
    """Customer from the Shopify Admin API (standalone or embedded in an order)."""
    shopify_id: str
    email: str = ""
    first_name: str = ""
    last_name: str = ""
    phone: str = ""
    accepts_marketing: bool = False
    total_spend: float = 0.0
    orders_count: int = 0
    state: str = "disabled"
    verified_email: bool = False
    currency: str = "USD"
    tags: List[str] = field(default_factory=list)
    addresses: List[Dict[str, Any]] = field(default_factory=list)
    default_address: Optional[Dict[str, Any]] = None
    last_order_id: Optional[str] = None
    last_order_date: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Customer":
        """Create Customer from a Shopify payload."""
        now = utcnow()
        last_order_id = data.get("last_order_id")
        return cls(
            shopify_id=str(data["id"]),
            email=(data.get("email") or "").strip().lower(),
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            phone=data.get("phone") or "",
            accepts_marketing=bool(data.get("accepts_marketing", False)),
            total_spend=to_money(data.get("total_spent", "0")),
            orders_count=int(data.get("orders_count") or 0),
            state=data.get("state") or "disabled",
            verified_email=bool(data.get("verified_email", False)),
            currency=data.get("currency") or "USD",
            tags=split_tags(data.get("tags")),
            addresses=data.get("addresses") or [],
            default_address=data.get("default_address"),
            last_order_id=str(last_order_id) if last_order_id else None,
            last_order_date=parse_datetime(data.get("last_order_date")),
            created_at=parse_datetime(data.get("created_at"), now),
            updated_at=parse_datetime(data.get("updated_at"), now),
        )

    @property
    def full_name(self) -> str:
        parts = [self.first_name, self.last_name]
        return " ".join(p for p in parts if p) or "Unknown"


@dataclass
class LineItem:
    """Line item embedded in an order."""
    shopify_id: Optional[str]
    product_id: Optional[str]
    variant_id: Optional[str]
    title: str = ""
    sku: str = ""
    quantity: int = 1
    price: float = 0.0

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "LineItem":
        """Create LineItem from a Shopify payload."""
        product_id = data.get("product_id", data.get("productId"))
        variant_id = data.get("variant_id")
        quantity = data.get("quantity")
        return cls(
            shopify_id=str(data["id"]) if data.get("id") is not None else None,
            product_id=str(product_id) if product_id is not None else None,
            variant_id=str(variant_id) if variant_id is not None else None,
            title=data.get("title") or data.get("name") or "",
            sku=data.get("sku") or "",
            quantity=int(quantity) if quantity is not None else 1,
            price=to_money(data.get("price", "0")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.shopify_id,
            "product_id": self.product_id,
            "variant_id": self.variant_id,
            "title": self.title,
            "sku": self.sku,
            "quantity": self.quantity,
            "price": self.price,
        }


@dataclass
class Order:
    """Order from the Shopify Admin API."""
    shopify_id: str
    order_number: str
    customer: Optional[Customer] = None
    customer_email: str = ""
    financial_status: str = "pending"
    fulfillment_status: Optional[str] = None
    currency: str = "USD"
    total_price: float = 0.0
    subtotal_price: float = 0.0
    total_tax: float = 0.0
    total_discounts: float = 0.0
    total_line_items_price: float = 0.0
    line_items: List[LineItem] = field(default_factory=list)
    shipping_address: Optional[Dict[str, Any]] = None
    billing_address: Optional[Dict[str, Any]] = None
    shipping_lines: List[Dict[str, Any]] = field(default_factory=list)
    discount_codes: List[Dict[str, Any]] = field(default_factory=list)
    refunds: List[Dict[str, Any]] = field(default_factory=list)
    transactions: List[Dict[str, Any]] = field(default_factory=list)
    note: str = ""
    tags: List[str] = field(default_factory=list)
    customer_locale: str = "en"
    order_status_url: Optional[str] = None
    processed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Order":
        """Create Order from a Shopify payload."""
        shopify_id = str(data["id"])
        now = utcnow()
        customer_data = data.get("customer")
        customer = Customer.from_api(customer_data) if customer_data and customer_data.get("id") else None
        email = data.get("email") or data.get("contact_email") or (customer.email if customer else "")
        order_number = data.get("order_number") or data.get("name") or shopify_id

        return cls(
            shopify_id=shopify_id,
            order_number=str(order_number),
            customer=customer,
            customer_email=(email or "").strip().lower(),
            financial_status=data.get("financial_status") or "pending",
            fulfillment_status=data.get("fulfillment_status"),
            currency=data.get("currency") or "USD",
            total_price=to_money(data.get("total_price", "0")),
            subtotal_price=to_money(data.get("subtotal_price", "0")),
            total_tax=to_money(data.get("total_tax", "0")),
            total_discounts=to_money(data.get("total_discounts", "0")),
            total_line_items_price=to_money(data.get("total_line_items_price", "0")),
            line_items=[LineItem.from_api(li) for li in data.get("line_items") or [] if li],
            shipping_address=data.get("shipping_address"),
            billing_address=data.get("billing_address"),
            shipping_lines=data.get("shipping_lines") or [],
            discount_codes=data.get("discount_codes") or [],
            refunds=data.get("refunds") or [],
            transactions=data.get("transactions") or [],
            note=data.get("note") or "",
            tags=split_tags(data.get("tags")),
            customer_locale=data.get("customer_locale") or "en",
            order_status_url=data.get("order_status_url"),
            processed_at=parse_datetime(data.get("processed_at")),
            cancelled_at=parse_datetime(data.get("cancelled_at")),
            closed_at=parse_datetime(data.get("closed_at")),
            created_at=parse_datetime(data.get("created_at"), now),
            updated_at=parse_datetime(data.get("updated_at"), now),
        )
