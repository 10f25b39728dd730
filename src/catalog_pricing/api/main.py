import logging
from typing import Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from .. import __version__
from ..engine.models import SupplyStatus
from ..exceptions import CatalogPricingError, NoApplicableMarginRange, NotFoundError, ValidationFailure
from .margin_ranges_api import router as margin_ranges_router
from .state import get_state

logger = logging.getLogger(__name__)

app = FastAPI(
    title="Catalog Pricing API",
    description="Pricing, margin ranges and supplier synchronization for the product catalog",
    version=__version__,
)

# Enable CORS for frontend development
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include margin range management API
app.include_router(margin_ranges_router)


@app.exception_handler(NotFoundError)
async def not_found_handler(request: Request, exc: NotFoundError):
    return JSONResponse(status_code=404, content=exc.to_dict())


@app.exception_handler(ValidationFailure)
async def validation_failure_handler(request: Request, exc: ValidationFailure):
    return JSONResponse(status_code=400, content=exc.to_dict())


@app.exception_handler(NoApplicableMarginRange)
async def no_margin_range_handler(request: Request, exc: NoApplicableMarginRange):
    return JSONResponse(status_code=422, content=exc.to_dict())


@app.exception_handler(CatalogPricingError)
async def catalog_pricing_error_handler(request: Request, exc: CatalogPricingError):
    logger.error("Request %s failed: %s", request.url.path, exc)
    return JSONResponse(status_code=500, content=exc.to_dict())


class ReconcileRequest(BaseModel):
    product_ids: Optional[list[int]] = None
    workers: Optional[int] = None


class StatusChange(BaseModel):
    status: str


@app.get("/")
async def root():
    return {"status": "online", "message": "Catalog Pricing API Active"}


@app.get("/system/status")
async def get_status():
    state = get_state()
    return {
        "products": len(state.store.products),
        "supply_items": len(state.store.supply_items),
        "margin_ranges": len(state.store.margin_ranges),
        "has_catch_all": state.pricing_engine.resolver.has_catch_all(),
        "rounding_strategy": state.settings.rounding_strategy,
    }


@app.get("/products/{product_id}/price")
def get_product_price(product_id: int):
    """Full price breakdown with trace, computed fresh (not from the cache)."""
    state = get_state()
    product = state.store.require_product(product_id)
    result = state.pricing_engine.breakdown(product)
    data = result.to_dict()
    data["cached_price"] = str(product.cached_price) if product.cached_price is not None else None
    data["on_sale"] = result.rebate > 0
    return data


@app.post("/sync/reconcile")
def reconcile(req: Optional[ReconcileRequest] = None):
    """Run the reconciliation pass and return its summary."""
    state = get_state()
    req = req or ReconcileRequest()
    products = None
    if req.product_ids is not None:
        products = [state.store.require_product(pid) for pid in req.product_ids]
    workers = req.workers or state.settings.sync_workers
    summary = state.sync_engine.reconcile(products, workers=workers)
    return summary.to_dict()


@app.post("/supply-items/{supply_item_id}/status")
def change_supply_item_status(supply_item_id: int, change: StatusChange):
    """Mark a supply item available or deleted, running the product cascades."""
    state = get_state()
    try:
        status = SupplyStatus[change.status.upper()]
    except KeyError:
        raise HTTPException(status_code=400, detail=f"Unknown status '{change.status}'")

    if status == SupplyStatus.DELETED:
        result = state.supply_item_service.mark_deleted(supply_item_id)
    else:
        result = state.supply_item_service.mark_available(supply_item_id)
    result.raise_for_errors(f"Could not save supply item {supply_item_id}")

    return {
        "supply_item_id": supply_item_id,
        "status": status.name.lower(),
        "backed_products": [
            {"id": p.id, "is_available": p.is_available, "is_visible": p.is_visible}
            for p in state.store.products_backed_by(supply_item_id)
        ],
    }
