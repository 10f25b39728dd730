"""
Description fetchers, looked up by the name a supplier is configured with.

Fetching happens outside the core; this registry only dispatches to
whatever a deployment registers.
"""
import logging
from typing import Callable, Optional

from ..engine.models import Supplier, SupplyItem

logger = logging.getLogger(__name__)

DescriptionFetcher = Callable[[str], Optional[str]]

_FETCHERS: dict[str, DescriptionFetcher] = {}


def register_description_fetcher(name: str, fetcher: Optional[DescriptionFetcher] = None):
    """Register a fetcher directly or use as a function decorator."""
    if fetcher is not None:
        _FETCHERS[name] = fetcher
        return fetcher

    def decorator(func: DescriptionFetcher) -> DescriptionFetcher:
        _FETCHERS[name] = func
        return func
    return decorator


def unregister_description_fetcher(name: str):
    _FETCHERS.pop(name, None)


def get_description_fetcher(name: Optional[str]) -> Optional[DescriptionFetcher]:
    if not name:
        return None
    return _FETCHERS.get(name)


def fetch_description(supplier: Optional[Supplier], supply_item: SupplyItem) -> Optional[str]:
    """Fetch a product description from the supply item's description URL, if possible."""
    if supplier is None or not supplier.description_fetcher or not supply_item.description_url:
        return None
    fetcher = get_description_fetcher(supplier.description_fetcher)
    if fetcher is None:
        logger.warning(
            "No description fetcher '%s' registered for supplier %s",
            supplier.description_fetcher, supplier,
        )
        return None
    try:
        description = fetcher(supply_item.description_url)
    except Exception:
        logger.warning("Description fetch failed for %s", supply_item.description_url, exc_info=True)
        return None
    return description or None
