"""
Data models for catalog pricing and supply synchronization.

Uses dataclasses for structured, type-safe data representation. Every
monetary field is a Decimal; ints, strings and floats handed in are
converted through their string form so binary float noise never leaks in.
"""
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import IntEnum
from typing import Any, Optional, Protocol, runtime_checkable

ZERO = Decimal('0')
HUNDRED = Decimal('100')
CENT = Decimal('0.01')


def to_decimal(value) -> Optional[Decimal]:
    """Convert a money-like value to Decimal, keeping None/blank as None."""
    if value is None:
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, str):
        value = value.strip()
        if value == '':
            return None
    return Decimal(str(value))


def round_money(value: Optional[Decimal]) -> Optional[Decimal]:
    """Round for display only (2 places, half up)."""
    if value is None:
        return None
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


class SupplyStatus(IntEnum):
    AVAILABLE = 1
    DELETED = 2


class WorkflowStatus(IntEnum):
    """Lets store managers track which supply items they have looked at."""
    FRESH = 1
    CHECKED = 2
    REJECTED = 3


@runtime_checkable
class PricedStockedItem(Protocol):
    """Anything that can act as a buildable unit inside a composite product."""
    purchase_price: Optional[Decimal]
    weight: Optional[Decimal]
    stock: Optional[int]


@dataclass
class Supplier:
    """An upstream supplier whose feed populates supply items."""
    id: Optional[int]
    name: str
    manufacturer: str = ''
    description_fetcher: Optional[str] = None  # name in the fetcher registry
    product_base_url: Optional[str] = None

    def __str__(self) -> str:
        return self.name


@dataclass
class TaxClass:
    id: Optional[int]
    name: str
    percentage: Decimal = ZERO

    def __post_init__(self):
        self.percentage = to_decimal(self.percentage) or ZERO


@dataclass
class SupplyItem:
    """An upstream inventory record from a supplier feed."""
    id: Optional[int]
    name: str
    supplier_id: Optional[int] = None
    purchase_price: Decimal = ZERO
    stock: Optional[int] = 0
    weight: Optional[Decimal] = None
    description: str = ''
    description_url: Optional[str] = None
    manufacturer: str = ''
    manufacturer_product_code: str = ''
    ean_code: Optional[str] = None
    supplier_product_code: str = ''
    status: Optional[SupplyStatus] = SupplyStatus.AVAILABLE
    workflow_status: WorkflowStatus = WorkflowStatus.FRESH

    def __post_init__(self):
        self.purchase_price = to_decimal(self.purchase_price)
        self.weight = to_decimal(self.weight)
        if self.status is not None:
            self.status = SupplyStatus(self.status)
        self.workflow_status = WorkflowStatus(self.workflow_status)

    @property
    def available(self) -> bool:
        return self.status == SupplyStatus.AVAILABLE

    @property
    def in_stock(self) -> bool:
        return (self.stock or 0) > 0

    def normalize_stock(self) -> bool:
        """Clamp missing or negative stock to zero. Returns True if it changed."""
        if self.stock is None or self.stock < 0:
            self.stock = 0
            return True
        return False

    def __str__(self) -> str:
        return f"{self.supplier_product_code} {self.name}".strip()


@dataclass
class ProductComponent:
    """One line of a bill of materials: `quantity` units of `component`."""
    component: Any  # PricedStockedItem, normally a SupplyItem
    quantity: int = 1

    @property
    def component_id(self) -> Optional[int]:
        return getattr(self.component, 'id', None)

    @property
    def purchase_price(self) -> Decimal:
        return self.quantity * (to_decimal(self.component.purchase_price) or ZERO)

    @property
    def weight(self) -> Decimal:
        return self.quantity * (to_decimal(getattr(self.component, 'weight', None)) or ZERO)


@dataclass
class Product:
    """
    A catalog entry exposed to buyers.

    Componentized products (at least one component) never use the stored
    purchase_price, weight or stock; the pricing engine derives them from
    the component list.
    """
    id: Optional[int]
    name: str
    description: str = ''
    weight: Optional[Decimal] = None
    purchase_price: Optional[Decimal] = ZERO
    sales_price: Optional[Decimal] = None
    absolute_rebate: Optional[Decimal] = None
    percentage_rebate: Optional[Decimal] = None
    rebate_until: Optional[datetime] = None
    is_loss_leader: bool = False
    tax_class_id: Optional[int] = None
    supplier_id: Optional[int] = None
    supply_item_id: Optional[int] = None
    is_available: bool = True
    is_visible: bool = True
    is_description_protected: bool = False
    sale_state: bool = False
    manufacturer: str = ''
    manufacturer_product_code: str = ''
    ean_code: Optional[str] = None
    supplier_product_code: str = ''
    stock: Optional[int] = 0
    cached_price: Optional[Decimal] = None
    cached_taxed_price: Optional[Decimal] = None
    rounding_component: Decimal = ZERO
    components: list[ProductComponent] = field(default_factory=list)

    # Scalar fields the storage layer snapshots on save
    PERSISTED_FIELDS = (
        'name', 'description', 'weight', 'purchase_price', 'sales_price',
        'absolute_rebate', 'percentage_rebate', 'rebate_until', 'is_loss_leader',
        'tax_class_id', 'supplier_id', 'supply_item_id', 'is_available',
        'is_visible', 'is_description_protected', 'sale_state', 'manufacturer',
        'manufacturer_product_code', 'ean_code', 'supplier_product_code', 'stock',
        'cached_price', 'cached_taxed_price', 'rounding_component',
    )

    def __post_init__(self):
        self.weight = to_decimal(self.weight)
        self.purchase_price = to_decimal(self.purchase_price)
        self.sales_price = to_decimal(self.sales_price)
        self.absolute_rebate = to_decimal(self.absolute_rebate)
        self.percentage_rebate = to_decimal(self.percentage_rebate)
        self.cached_price = to_decimal(self.cached_price)
        self.cached_taxed_price = to_decimal(self.cached_taxed_price)
        self.rounding_component = to_decimal(self.rounding_component) or ZERO

    @property
    def componentized(self) -> bool:
        return len(self.components) > 0

    @property
    def absolutely_priced(self) -> bool:
        """Is this product priced via an absolutely defined sales price?"""
        return self.sales_price is not None and self.sales_price != ZERO

    @property
    def has_absolute_rebate(self) -> bool:
        return self.absolute_rebate is not None and self.absolute_rebate > ZERO

    @property
    def has_percentage_rebate(self) -> bool:
        return self.percentage_rebate is not None and self.percentage_rebate > ZERO

    def invalidate_cache(self):
        self.cached_price = None
        self.cached_taxed_price = None

    def __str__(self) -> str:
        return f"{self.id} {self.name}"


@dataclass
class MarginRange:
    """
    A price-tiered markup rule.

    Either bound may be None (unbounded on that side). Attached to nothing
    (system-wide), to a supplier, or to a single product.
    """
    id: Optional[int]
    start_price: Optional[Decimal] = None
    end_price: Optional[Decimal] = None
    margin_percentage: Decimal = ZERO
    supplier_id: Optional[int] = None
    product_id: Optional[int] = None

    def __post_init__(self):
        self.start_price = to_decimal(self.start_price)
        self.end_price = to_decimal(self.end_price)
        self.margin_percentage = to_decimal(self.margin_percentage)

    @property
    def scope(self) -> str:
        if self.product_id is not None:
            return 'product'
        if self.supplier_id is not None:
            return 'supplier'
        return 'system'

    @property
    def is_catch_all(self) -> bool:
        return self.start_price is None and self.end_price is None

    def __str__(self) -> str:
        lower = self.start_price if self.start_price is not None else '-inf'
        upper = self.end_price if self.end_price is not None else 'inf'
        return f"[{lower}, {upper}] → {self.margin_percentage}% ({self.scope})"


@dataclass
class TraceStep:
    """A single step in the pricing resolution trace."""
    step: str
    description: str
    value: Optional[str] = None


@dataclass
class PriceBreakdown:
    """Complete result of a pricing calculation for one product."""
    product_id: Optional[int]
    purchase_price: Decimal
    gross_price: Decimal
    rebate: Decimal
    price: Decimal
    taxes: Decimal
    taxed_price: Decimal
    margin: Decimal
    margin_percentage: Optional[Decimal] = None
    rounding_component: Decimal = ZERO
    weight: Optional[Decimal] = None
    stock: Optional[int] = None
    trace: list[TraceStep] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    def add_trace(self, step: str, description: str, value: str = None):
        """Add a step to the trace for this computation."""
        self.trace.append(TraceStep(step=step, description=description, value=value))

    def add_warning(self, warning: str):
        self.warnings.append(warning)

    def get_trace_text(self) -> str:
        """Get human-readable trace as formatted text."""
        lines = []
        for t in self.trace:
            if t.value:
                lines.append(f"→ {t.step}: {t.description} = {t.value}")
            else:
                lines.append(f"→ {t.step}: {t.description}")
        return "\n".join(lines)

    def to_dict(self) -> dict:
        """Display representation with money rounded to cents."""
        return {
            "product_id": self.product_id,
            "purchase_price": str(round_money(self.purchase_price)),
            "gross_price": str(round_money(self.gross_price)),
            "rebate": str(round_money(self.rebate)),
            "price": str(round_money(self.price)),
            "taxes": str(round_money(self.taxes)),
            "taxed_price": str(round_money(self.taxed_price)),
            "margin": str(round_money(self.margin)),
            "margin_percentage": str(self.margin_percentage) if self.margin_percentage is not None else None,
            "rounding_component": str(round_money(self.rounding_component)),
            "weight": str(self.weight) if self.weight is not None else None,
            "stock": self.stock,
            "trace": [{"step": t.step, "description": t.description, "value": t.value} for t in self.trace],
            "warnings": list(self.warnings),
        }
