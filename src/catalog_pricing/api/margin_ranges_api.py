"""
Margin Ranges API - FastAPI router for margin range management.
"""
from decimal import Decimal
from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel

from ..engine.models import MarginRange
from .state import get_state

router = APIRouter(prefix="/api/margin-ranges", tags=["margin-ranges"])


# Pydantic models for API
class MarginRangeCreate(BaseModel):
    """Request model for creating a margin range."""
    start_price: Optional[Decimal] = None
    end_price: Optional[Decimal] = None
    margin_percentage: Decimal
    supplier_id: Optional[int] = None
    product_id: Optional[int] = None


class MarginRangeUpdate(BaseModel):
    """Request model for updating a margin range."""
    start_price: Optional[Decimal] = None
    end_price: Optional[Decimal] = None
    margin_percentage: Optional[Decimal] = None
    supplier_id: Optional[int] = None
    product_id: Optional[int] = None


class MarginRangeResponse(BaseModel):
    """Response model for a margin range."""
    id: int
    start_price: Optional[Decimal]
    end_price: Optional[Decimal]
    margin_percentage: Decimal
    supplier_id: Optional[int]
    product_id: Optional[int]
    scope: str

    @classmethod
    def from_range(cls, margin_range: MarginRange) -> 'MarginRangeResponse':
        return cls(
            id=margin_range.id,
            start_price=margin_range.start_price,
            end_price=margin_range.end_price,
            margin_percentage=margin_range.margin_percentage,
            supplier_id=margin_range.supplier_id,
            product_id=margin_range.product_id,
            scope=margin_range.scope,
        )


class ValidationResponse(BaseModel):
    """Response model for validation."""
    valid: bool
    errors: list[str]
    warnings: list[str]
    affected_products: int


# Endpoints

@router.get("", response_model=list[MarginRangeResponse])
async def list_ranges(scope: Optional[str] = None):
    """List margin ranges, optionally of one scope (product, supplier, system)."""
    ranges = get_state().margin_range_service.list_ranges(scope=scope)
    return [MarginRangeResponse.from_range(r) for r in ranges]


@router.get("/stats")
def get_stats():
    """Get margin range statistics."""
    return get_state().margin_range_service.get_stats()


@router.get("/{range_id}", response_model=MarginRangeResponse)
async def get_range(range_id: int):
    """Get a single margin range by ID."""
    margin_range = get_state().margin_range_service.get_range(range_id)
    if not margin_range:
        raise HTTPException(status_code=404, detail=f"Margin range '{range_id}' not found")
    return MarginRangeResponse.from_range(margin_range)


@router.get("/{range_id}/affected-products")
def get_affected_products(range_id: int):
    """Products whose price depends on this margin range."""
    service = get_state().margin_range_service
    margin_range = service.get_range(range_id)
    if not margin_range:
        raise HTTPException(status_code=404, detail=f"Margin range '{range_id}' not found")
    return {"range_id": range_id, "product_ids": [p.id for p in service.affected_products(margin_range)]}


@router.post("", response_model=MarginRangeResponse)
def create_range(range_data: MarginRangeCreate):
    """Create a margin range and refresh the prices it affects."""
    service = get_state().margin_range_service
    margin_range = MarginRange(id=None, **range_data.model_dump())

    # Validate first
    validation = service.validate_range(margin_range)
    if not validation.valid:
        raise HTTPException(status_code=400, detail={"errors": validation.errors})

    created = service.create_range(margin_range)
    return MarginRangeResponse.from_range(created)


@router.put("/{range_id}", response_model=MarginRangeResponse)
def update_range(range_id: int, updates: MarginRangeUpdate):
    """Update an existing margin range."""
    # exclude_unset keeps explicit nulls, which open a bound or drop a scope
    update_dict = updates.model_dump(exclude_unset=True)
    updated = get_state().margin_range_service.update_range(range_id, update_dict)
    return MarginRangeResponse.from_range(updated)


@router.delete("/{range_id}")
def delete_range(range_id: int):
    """Delete a margin range."""
    get_state().margin_range_service.delete_range(range_id)
    return {"success": True, "message": f"Margin range '{range_id}' deleted"}


@router.post("/validate", response_model=ValidationResponse)
def validate_range(range_data: MarginRangeCreate):
    """Validate a margin range without saving."""
    margin_range = MarginRange(id=None, **range_data.model_dump())
    result = get_state().margin_range_service.validate_range(margin_range)
    return ValidationResponse(
        valid=result.valid,
        errors=result.errors,
        warnings=result.warnings,
        affected_products=result.affected_products,
    )
