"""
Centralized settings and path configuration for catalog pricing.
"""
import os
from pathlib import Path
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional


def get_project_root() -> Path:
    """Get the project root directory (where pyproject.toml lives)."""
    # Walk up from this file to find the project root
    current = Path(__file__).resolve()
    for parent in current.parents:
        if (parent / 'pyproject.toml').exists():
            return parent
    # Fallback to 4 levels up from this file
    return Path(__file__).resolve().parent.parent.parent.parent


@dataclass
class Settings:
    """Application settings with sensible defaults."""

    # Project paths
    project_root: Path

    # Catalog snapshot directory (suppliers.csv, supply_items.csv, ...)
    data_dir: Path

    # Log output
    log_dir: Path
    sync_log_file: Optional[Path] = None
    log_level: str = 'INFO'

    # Tax class assigned to products bootstrapped from a supply item
    default_tax_percentage: Decimal = Decimal('8.0')
    default_tax_class_name: str = 'Auto-created default'

    # Name of the registered rounding calculator
    rounding_strategy: str = 'none'

    # Reconciliation worker threads (1 = sequential)
    sync_workers: int = 1

    @classmethod
    def load(cls, project_root: Optional[Path] = None) -> 'Settings':
        """Load settings from the project structure and environment."""
        root = project_root or get_project_root()

        data_dir = Path(os.environ.get('CATALOG_PRICING_DATA_DIR', root / 'data'))
        log_dir = root / 'log'

        return cls(
            project_root=root,
            data_dir=data_dir,
            log_dir=log_dir,
            sync_log_file=log_dir / 'price_and_stock_update.log',
            log_level=os.environ.get('CATALOG_PRICING_LOG_LEVEL', 'INFO'),
            rounding_strategy=os.environ.get('CATALOG_PRICING_ROUNDING', 'none'),
            sync_workers=int(os.environ.get('CATALOG_PRICING_SYNC_WORKERS', '1')),
        )


# Default settings instance
_settings: Optional[Settings] = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings.load()
    return _settings
