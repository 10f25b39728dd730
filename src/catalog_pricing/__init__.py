"""
Catalog Pricing - Margin-range pricing for a product catalog, kept in sync
with upstream supplier inventory.
"""
__version__ = "1.0.0"
