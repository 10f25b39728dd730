"""Services subpackage - storage, product and margin range operations."""
from .store import CatalogStore, SaveResult
from .history import ChangeLog, HistoryEntry
from .products import ProductService
from .margin_ranges import MarginRangeService, ValidationResult
from .fetchers import register_description_fetcher, fetch_description

__all__ = [
    'CatalogStore', 'SaveResult', 'ChangeLog', 'HistoryEntry', 'ProductService',
    'MarginRangeService', 'ValidationResult', 'register_description_fetcher', 'fetch_description',
]
