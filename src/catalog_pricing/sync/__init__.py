"""Sync subpackage - reconciliation pass and supply item status cascades."""
from .supply_sync import SupplySyncEngine, SyncSummary
from .status_cascade import SupplyItemService

__all__ = ['SupplySyncEngine', 'SyncSummary', 'SupplyItemService']
