"""
Exception taxonomy for catalog pricing and supply synchronization.

Pure computation errors (margin resolution, BOM aggregation, tax lookup)
propagate to the caller. The reconciliation pass catches them per item and
reports them in its summary instead of aborting the batch.
"""
from typing import Any, Optional


class CatalogPricingError(Exception):
    """Base class for all errors raised by this package."""

    def __init__(
        self,
        message: str,
        error_code: Optional[str] = None,
        details: Optional[dict[str, Any]] = None,
        cause: Optional[Exception] = None,
    ):
        self.message = message
        self.error_code = error_code or self._default_code()
        self.details = details or {}
        self.cause = cause
        super().__init__(self.message)

    def _default_code(self) -> str:
        return "CP_UNKNOWN"

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-friendly dict."""
        return {
            "error_code": self.error_code,
            "message": self.message,
            "details": self.details,
            "type": self.__class__.__name__,
        }

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"


class NoApplicableMarginRange(CatalogPricingError):
    """No margin range matched a price in any scope."""

    def __init__(self, price, scopes: Optional[list[str]] = None, **kwargs):
        self.price = price
        self.scopes = scopes or []
        details = kwargs.pop("details", {})
        details["price"] = str(price)
        details["scopes"] = self.scopes
        super().__init__(
            f"No margin range applies to price {price}", details=details, **kwargs
        )

    def _default_code(self) -> str:
        return "CP_NO_MARGIN_RANGE"


class ValidationFailure(CatalogPricingError):
    """A save was rejected. `errors` maps field name to messages."""

    def __init__(self, message: str, errors: Optional[dict[str, list[str]]] = None, **kwargs):
        self.errors = errors or {}
        details = kwargs.pop("details", {})
        details["errors"] = self.errors
        super().__init__(message, details=details, **kwargs)

    def full_messages(self) -> list[str]:
        return [f"{field} {msg}" for field, msgs in self.errors.items() for msg in msgs]

    def _default_code(self) -> str:
        return "CP_VALIDATION"


class MissingSupplyItem(CatalogPricingError):
    """A product's backing supply item is gone. Used as a disable reason, not raised."""

    def __init__(self, product_id, **kwargs):
        self.product_id = product_id
        details = kwargs.pop("details", {})
        details["product_id"] = product_id
        super().__init__(
            f"Product {product_id} has a supplier but its supply item is gone",
            details=details,
            **kwargs,
        )

    def _default_code(self) -> str:
        return "CP_MISSING_SUPPLY_ITEM"


class MissingTaxClass(CatalogPricingError):
    def __init__(self, product_id, tax_class_id=None, **kwargs):
        self.product_id = product_id
        self.tax_class_id = tax_class_id
        details = kwargs.pop("details", {})
        details.update({"product_id": product_id, "tax_class_id": tax_class_id})
        super().__init__(
            f"Product {product_id} references unknown tax class {tax_class_id}",
            details=details,
            **kwargs,
        )

    def _default_code(self) -> str:
        return "CP_MISSING_TAX_CLASS"


class MissingRoundingCalculator(CatalogPricingError):
    def __init__(self, name: Optional[str] = None, **kwargs):
        self.name = name
        details = kwargs.pop("details", {})
        details["strategy"] = name
        super().__init__(
            f"Rounding calculator '{name}' is not available", details=details, **kwargs
        )

    def _default_code(self) -> str:
        return "CP_ROUNDING"


class InvalidComponentQuantity(CatalogPricingError, ValueError):
    def __init__(self, quantity, **kwargs):
        self.quantity = quantity
        details = kwargs.pop("details", {})
        details["quantity"] = quantity
        super().__init__(
            f"Component quantity must be a positive integer, got {quantity!r}",
            details=details,
            **kwargs,
        )

    def _default_code(self) -> str:
        return "CP_COMPONENT_QUANTITY"


class NotFoundError(CatalogPricingError, KeyError):
    def __init__(self, kind: str, identity, **kwargs):
        self.kind = kind
        self.identity = identity
        details = kwargs.pop("details", {})
        details.update({"kind": kind, "id": identity})
        super().__init__(f"{kind} '{identity}' not found", details=details, **kwargs)

    def _default_code(self) -> str:
        return "CP_NOT_FOUND"

    def __str__(self) -> str:
        return CatalogPricingError.__str__(self)
