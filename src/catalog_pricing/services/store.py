"""
Catalog Store - Storage for suppliers, supply items, products and rules.

Keeps live objects in identity maps and snapshots the scalar fields of every
saved product and supply item, so callers can ask what changed since the
last save (sync diffs, status transitions) and roll back rejected edits.

Snapshots of the whole catalog can be read from and written to a directory
of CSV files.
"""
import logging
import threading
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import pandas as pd

from ..exceptions import NotFoundError, ValidationFailure
from ..engine.models import (
    MarginRange,
    Product,
    ProductComponent,
    Supplier,
    SupplyItem,
    SupplyStatus,
    TaxClass,
    WorkflowStatus,
    ZERO,
    to_decimal,
)

logger = logging.getLogger(__name__)

SUPPLY_ITEM_FIELDS = (
    'name', 'supplier_id', 'purchase_price', 'stock', 'weight', 'description',
    'description_url', 'manufacturer', 'manufacturer_product_code', 'ean_code',
    'supplier_product_code', 'status', 'workflow_status',
)
SUPPLIER_FIELDS = ('id', 'name', 'manufacturer', 'description_fetcher', 'product_base_url')
TAX_CLASS_FIELDS = ('id', 'name', 'percentage')
MARGIN_RANGE_FIELDS = ('id', 'start_price', 'end_price', 'margin_percentage', 'supplier_id', 'product_id')


@dataclass
class SaveResult:
    """Outcome of a save, with field-level validation errors."""
    ok: bool
    errors: dict[str, list[str]] = field(default_factory=dict)

    def full_messages(self) -> list[str]:
        return [f"{name} {msg}" for name, msgs in self.errors.items() for msg in msgs]

    def raise_for_errors(self, message: str = "Save failed"):
        if not self.ok:
            raise ValidationFailure(message, errors=self.errors)


def _snapshot(obj, fields: Iterable[str]) -> dict[str, Any]:
    return {name: getattr(obj, name) for name in fields}


def _component_snapshot(product: Product) -> list[tuple[SupplyItem, int]]:
    return [(c.component, c.quantity) for c in product.components]


def _blank(value) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == '')


class CatalogStore:
    """In-memory catalog storage with per-record locks and dirty tracking."""

    def __init__(self):
        self.suppliers: dict[int, Supplier] = {}
        self.tax_classes: dict[int, TaxClass] = {}
        self.supply_items: dict[int, SupplyItem] = {}
        self.products: dict[int, Product] = {}
        self.margin_ranges: dict[int, MarginRange] = {}

        self._product_state: dict[int, dict[str, Any]] = {}
        self._supply_item_state: dict[int, dict[str, Any]] = {}
        self._component_state: dict[int, list[tuple[SupplyItem, int]]] = {}

        self._lock = threading.RLock()
        self._record_locks: dict[tuple[str, Any], threading.RLock] = {}

    # === Locking

    def lock_for(self, kind: str, identity) -> threading.RLock:
        """Lock serializing read-modify-write of one record."""
        with self._lock:
            key = (kind, identity)
            if key not in self._record_locks:
                self._record_locks[key] = threading.RLock()
            return self._record_locks[key]

    def _next_id(self, table: dict) -> int:
        return max(table.keys(), default=0) + 1

    # === Suppliers and tax classes

    def add_supplier(self, supplier: Supplier) -> Supplier:
        with self._lock:
            if supplier.id is None:
                supplier.id = self._next_id(self.suppliers)
            self.suppliers[supplier.id] = supplier
        return supplier

    def get_supplier(self, supplier_id) -> Optional[Supplier]:
        return self.suppliers.get(supplier_id)

    def add_tax_class(self, tax_class: TaxClass) -> TaxClass:
        with self._lock:
            if tax_class.id is None:
                tax_class.id = self._next_id(self.tax_classes)
            self.tax_classes[tax_class.id] = tax_class
        return tax_class

    def find_or_create_tax_class(self, percentage, name: str) -> TaxClass:
        percentage = to_decimal(percentage)
        with self._lock:
            for tax_class in self.tax_classes.values():
                if tax_class.percentage == percentage and tax_class.name == name:
                    return tax_class
            return self.add_tax_class(TaxClass(id=None, name=name, percentage=percentage))

    # === Supply items

    def get_supply_item(self, supply_item_id) -> Optional[SupplyItem]:
        if supply_item_id is None:
            return None
        return self.supply_items.get(supply_item_id)

    def require_supply_item(self, supply_item_id) -> SupplyItem:
        supply_item = self.get_supply_item(supply_item_id)
        if supply_item is None:
            raise NotFoundError("SupplyItem", supply_item_id)
        return supply_item

    def validate_supply_item(self, supply_item: SupplyItem) -> dict[str, list[str]]:
        errors: dict[str, list[str]] = {}
        if _blank(supply_item.name):
            errors.setdefault('name', []).append("can't be blank")
        if supply_item.purchase_price is None:
            errors.setdefault('purchase_price', []).append("is not a number")
        elif supply_item.purchase_price < ZERO:
            errors.setdefault('purchase_price', []).append("must be greater than or equal to 0")
        if supply_item.supplier_id is not None and supply_item.supplier_id not in self.suppliers:
            errors.setdefault('supplier', []).append("does not exist")
        return errors

    def save_supply_item(self, supply_item: SupplyItem) -> SaveResult:
        errors = self.validate_supply_item(supply_item)
        if errors:
            return SaveResult(ok=False, errors=errors)
        with self._lock:
            if supply_item.id is None:
                supply_item.id = self._next_id(self.supply_items)
            self.supply_items[supply_item.id] = supply_item
            self._supply_item_state[supply_item.id] = _snapshot(supply_item, SUPPLY_ITEM_FIELDS)
        return SaveResult(ok=True)

    def persisted_supply_item(self, supply_item_id) -> Optional[dict[str, Any]]:
        state = self._supply_item_state.get(supply_item_id)
        return dict(state) if state is not None else None

    def persisted_status(self, supply_item_id) -> Optional[SupplyStatus]:
        state = self._supply_item_state.get(supply_item_id)
        return state['status'] if state else None

    def delete_supply_item(self, supply_item_id) -> SupplyItem:
        with self._lock:
            supply_item = self.require_supply_item(supply_item_id)
            del self.supply_items[supply_item_id]
            self._supply_item_state.pop(supply_item_id, None)
        return supply_item

    def find_supply_items(
        self,
        manufacturer_product_code: Optional[str] = None,
        ean_code: Optional[str] = None,
        exclude_id=None,
        manufacturer_initial: Optional[str] = None,
        in_stock: bool = False,
        available: bool = False,
    ) -> list[SupplyItem]:
        """
        Filter supply items, cheapest first.

        A manufacturer product code filter never matches blank codes. The
        manufacturer initial filter lets items with a blank manufacturer through.
        """
        matches = []
        for supply_item in list(self.supply_items.values()):
            if manufacturer_product_code is not None:
                if _blank(supply_item.manufacturer_product_code):
                    continue
                if supply_item.manufacturer_product_code != manufacturer_product_code:
                    continue
            if exclude_id is not None and supply_item.id == exclude_id:
                continue
            if ean_code is not None and supply_item.ean_code != ean_code:
                continue
            if manufacturer_initial and not _blank(supply_item.manufacturer):
                if not supply_item.manufacturer.upper().startswith(manufacturer_initial.upper()):
                    continue
            if in_stock and not supply_item.in_stock:
                continue
            if available and not supply_item.available:
                continue
            matches.append(supply_item)
        return sorted(matches, key=lambda si: (si.purchase_price or ZERO, si.id))

    def supply_items_by_manufacturer_code(self, manufacturer_product_code: str) -> list[SupplyItem]:
        if _blank(manufacturer_product_code):
            return []
        return self.find_supply_items(manufacturer_product_code=manufacturer_product_code)

    # === Products

    def get_product(self, product_id) -> Optional[Product]:
        return self.products.get(product_id)

    def require_product(self, product_id) -> Product:
        product = self.get_product(product_id)
        if product is None:
            raise NotFoundError("Product", product_id)
        return product

    def list_products(self) -> list[Product]:
        return list(self.products.values())

    def supplied_products(self) -> list[Product]:
        """Products linked to a supply item (the record itself may be gone)."""
        return [p for p in self.list_products() if p.supply_item_id is not None]

    def products_backed_by(self, supply_item_id) -> list[Product]:
        return [p for p in self.list_products() if p.supply_item_id == supply_item_id]

    def products_with_component(self, supply_item_id) -> list[Product]:
        return [
            p for p in self.list_products()
            if any(line.component_id == supply_item_id for line in p.components)
        ]

    def products_of_supplier(self, supplier_id) -> list[Product]:
        return [p for p in self.list_products() if p.supplier_id == supplier_id]

    def validate_product(self, product: Product) -> dict[str, list[str]]:
        errors: dict[str, list[str]] = {}
        if _blank(product.name):
            errors.setdefault('name', []).append("can't be blank")
        if _blank(product.description):
            errors.setdefault('description', []).append("can't be blank")
        if product.tax_class_id not in self.tax_classes:
            errors.setdefault('tax_class', []).append("can't be blank")
        if not product.componentized:
            if product.weight is None:
                errors.setdefault('weight', []).append("can't be blank")
            if product.purchase_price is None:
                errors.setdefault('purchase_price', []).append("is not a number")
            elif product.purchase_price < ZERO:
                errors.setdefault('purchase_price', []).append("must be greater than or equal to 0")
        for line in product.components:
            if isinstance(line.quantity, bool) or not isinstance(line.quantity, int) or line.quantity <= 0:
                errors.setdefault('components', []).append("quantity must be a positive integer")
        if not _blank(product.manufacturer_product_code):
            for other in self.products.values():
                if other is not product and other.id != product.id and \
                        other.manufacturer_product_code == product.manufacturer_product_code:
                    errors.setdefault('manufacturer_product_code', []).append("has already been taken")
                    break
        return errors

    def save_product(self, product: Product) -> SaveResult:
        errors = self.validate_product(product)
        if errors:
            return SaveResult(ok=False, errors=errors)
        with self._lock:
            if product.id is None:
                product.id = self._next_id(self.products)
            self.products[product.id] = product
            self._product_state[product.id] = _snapshot(product, Product.PERSISTED_FIELDS)
            self._component_state[product.id] = _component_snapshot(product)
        return SaveResult(ok=True)

    def persisted_product(self, product_id) -> Optional[dict[str, Any]]:
        state = self._product_state.get(product_id)
        return dict(state) if state is not None else None

    def changes(self, product: Product, fields: Optional[Iterable[str]] = None) -> dict[str, tuple]:
        """Fields whose value differs from the last saved state, as (old, new)."""
        fields = tuple(fields or Product.PERSISTED_FIELDS)
        state = self._product_state.get(product.id) if product.id is not None else None
        changed = {}
        for name in fields:
            old = state.get(name) if state else None
            new = getattr(product, name)
            if old != new:
                changed[name] = (old, new)
        return changed

    def revert_product(self, product: Product):
        """Restore a product's fields and components to the last saved state."""
        state = self._product_state.get(product.id) if product.id is not None else None
        if state is None:
            return
        for name, value in state.items():
            setattr(product, name, value)
        product.components = [
            ProductComponent(component=component, quantity=quantity)
            for component, quantity in self._component_state.get(product.id, [])
        ]

    def mark_cache_stale(self, product: Product):
        """Drop cached prices on the object and in its saved state."""
        with self._lock:
            product.invalidate_cache()
            state = self._product_state.get(product.id)
            if state is not None:
                state['cached_price'] = None
                state['cached_taxed_price'] = None

    def delete_product(self, product_id) -> Product:
        with self._lock:
            product = self.require_product(product_id)
            del self.products[product_id]
            self._product_state.pop(product_id, None)
            self._component_state.pop(product_id, None)
        return product

    # === Margin ranges

    def list_margin_ranges(self) -> list[MarginRange]:
        return list(self.margin_ranges.values())

    def get_margin_range(self, range_id) -> Optional[MarginRange]:
        return self.margin_ranges.get(range_id)

    def save_margin_range(self, margin_range: MarginRange) -> MarginRange:
        with self._lock:
            if margin_range.id is None:
                margin_range.id = self._next_id(self.margin_ranges)
            self.margin_ranges[margin_range.id] = margin_range
        return margin_range

    def delete_margin_range(self, range_id) -> MarginRange:
        with self._lock:
            margin_range = self.margin_ranges.pop(range_id, None)
        if margin_range is None:
            raise NotFoundError("MarginRange", range_id)
        return margin_range

    @contextmanager
    def margin_range_change(self, affected: Iterable[Product]):
        """
        Hold the store lock while a margin range changes. The caches of the
        affected products are dropped first, so no reader sees the new rule
        next to a price computed with the old one.
        """
        with self._lock:
            for product in affected:
                self.mark_cache_stale(product)
            yield

    # === CSV snapshots

    @classmethod
    def load_csv_dir(cls, data_dir: Path) -> 'CatalogStore':
        """Load a catalog snapshot written by `dump_csv_dir`."""
        store = cls()

        for row in _read_table(data_dir / 'suppliers.csv'):
            store.suppliers[int(row['id'])] = Supplier(
                id=int(row['id']),
                name=row.get('name', ''),
                manufacturer=row.get('manufacturer', ''),
                description_fetcher=_opt_str(row.get('description_fetcher')),
                product_base_url=_opt_str(row.get('product_base_url')),
            )

        for row in _read_table(data_dir / 'tax_classes.csv'):
            store.tax_classes[int(row['id'])] = TaxClass(
                id=int(row['id']), name=row.get('name', ''), percentage=row.get('percentage') or '0'
            )

        for row in _read_table(data_dir / 'supply_items.csv'):
            supply_item = SupplyItem(
                id=int(row['id']),
                name=row.get('name', ''),
                supplier_id=_opt_int(row.get('supplier_id')),
                purchase_price=row.get('purchase_price') or None,
                stock=_opt_int(row.get('stock')),
                weight=row.get('weight') or None,
                description=row.get('description', ''),
                description_url=_opt_str(row.get('description_url')),
                manufacturer=row.get('manufacturer', ''),
                manufacturer_product_code=row.get('manufacturer_product_code', ''),
                ean_code=_opt_str(row.get('ean_code')),
                supplier_product_code=row.get('supplier_product_code', ''),
                status=SupplyStatus(_opt_int(row.get('status')) or SupplyStatus.AVAILABLE),
                workflow_status=WorkflowStatus(_opt_int(row.get('workflow_status')) or WorkflowStatus.FRESH),
            )
            errors = store.validate_supply_item(supply_item)
            if errors:
                logger.error("Skipping invalid supply item %s in %s: %s", supply_item.id, data_dir, errors)
                continue
            if supply_item.normalize_stock():
                logger.debug("Normalized stock of supply item %s to 0", supply_item.id)
            store.supply_items[supply_item.id] = supply_item
            store._supply_item_state[supply_item.id] = _snapshot(supply_item, SUPPLY_ITEM_FIELDS)

        for row in _read_table(data_dir / 'products.csv'):
            product = Product(
                id=int(row['id']),
                name=row.get('name', ''),
                description=row.get('description', ''),
                weight=row.get('weight') or None,
                purchase_price=row.get('purchase_price') or None,
                sales_price=row.get('sales_price') or None,
                absolute_rebate=row.get('absolute_rebate') or None,
                percentage_rebate=row.get('percentage_rebate') or None,
                rebate_until=_opt_datetime(row.get('rebate_until')),
                is_loss_leader=_bool(row.get('is_loss_leader')),
                tax_class_id=_opt_int(row.get('tax_class_id')),
                supplier_id=_opt_int(row.get('supplier_id')),
                supply_item_id=_opt_int(row.get('supply_item_id')),
                is_available=_bool(row.get('is_available'), default=True),
                is_visible=_bool(row.get('is_visible'), default=True),
                is_description_protected=_bool(row.get('is_description_protected')),
                sale_state=_bool(row.get('sale_state')),
                manufacturer=row.get('manufacturer', ''),
                manufacturer_product_code=row.get('manufacturer_product_code', ''),
                ean_code=_opt_str(row.get('ean_code')),
                supplier_product_code=row.get('supplier_product_code', ''),
                stock=_opt_int(row.get('stock')),
                cached_price=row.get('cached_price') or None,
                cached_taxed_price=row.get('cached_taxed_price') or None,
                rounding_component=row.get('rounding_component') or '0',
            )
            store.products[product.id] = product

        for row in _read_table(data_dir / 'product_components.csv'):
            product = store.products.get(int(row['product_id']))
            component = store.supply_items.get(_opt_int(row.get('supply_item_id')))
            if product is None or component is None:
                logger.warning("Skipping component row without product or supply item: %s", row)
                continue
            product.components.append(ProductComponent(component=component, quantity=int(row['quantity'])))

        for product in store.products.values():
            store._product_state[product.id] = _snapshot(product, Product.PERSISTED_FIELDS)
            store._component_state[product.id] = _component_snapshot(product)

        for row in _read_table(data_dir / 'margin_ranges.csv'):
            store.margin_ranges[int(row['id'])] = MarginRange(
                id=int(row['id']),
                start_price=row.get('start_price') or None,
                end_price=row.get('end_price') or None,
                margin_percentage=row.get('margin_percentage') or '0',
                supplier_id=_opt_int(row.get('supplier_id')),
                product_id=_opt_int(row.get('product_id')),
            )

        logger.info(
            "Loaded catalog from %s: %d suppliers, %d supply items, %d products, %d margin ranges",
            data_dir, len(store.suppliers), len(store.supply_items),
            len(store.products), len(store.margin_ranges),
        )
        return store

    def dump_csv_dir(self, data_dir: Path):
        """Write the catalog as CSV files into data_dir."""
        data_dir.mkdir(parents=True, exist_ok=True)

        _write_table(data_dir / 'suppliers.csv', SUPPLIER_FIELDS, self.suppliers.values())
        _write_table(data_dir / 'tax_classes.csv', TAX_CLASS_FIELDS, self.tax_classes.values())
        _write_table(data_dir / 'supply_items.csv', ('id',) + SUPPLY_ITEM_FIELDS, self.supply_items.values())
        _write_table(data_dir / 'products.csv', ('id',) + Product.PERSISTED_FIELDS, self.products.values())
        _write_table(data_dir / 'margin_ranges.csv', MARGIN_RANGE_FIELDS, self.margin_ranges.values())

        component_rows = [
            {'product_id': p.id, 'supply_item_id': line.component_id, 'quantity': line.quantity}
            for p in self.products.values()
            for line in p.components
        ]
        pd.DataFrame(component_rows, columns=['product_id', 'supply_item_id', 'quantity']).to_csv(
            data_dir / 'product_components.csv', index=False
        )


def _read_table(path: Path) -> list[dict[str, str]]:
    if not path.exists():
        return []
    df = pd.read_csv(path, dtype=str).fillna('')
    # Strip all strings and headers
    df.columns = [c.strip() for c in df.columns]
    for col in df.columns:
        df[col] = df[col].astype(str).str.strip()
    return df.to_dict(orient='records')


def _write_table(path: Path, columns: Iterable[str], objects: Iterable[Any]):
    columns = list(columns)
    rows = [{name: _cell(getattr(obj, name)) for name in columns} for obj in objects]
    pd.DataFrame(rows, columns=columns).to_csv(path, index=False)


def _cell(value):
    if value is None:
        return ''
    if isinstance(value, bool):
        return 'true' if value else 'false'
    if isinstance(value, (SupplyStatus, WorkflowStatus)):
        return int(value)
    if isinstance(value, datetime):
        return value.isoformat()
    return str(value)


def _opt_int(value) -> Optional[int]:
    if _blank(value):
        return None
    return int(float(value))


def _opt_str(value) -> Optional[str]:
    if _blank(value):
        return None
    return value.strip()


def _opt_datetime(value) -> Optional[datetime]:
    if _blank(value):
        return None
    return datetime.fromisoformat(value)


def _bool(value, default: bool = False) -> bool:
    if _blank(value):
        return default
    return value.lower() in ('true', '1', 'yes', 'on')
