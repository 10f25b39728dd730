"""
Change log for product, supply item and margin range events.

Recording is fire-and-forget: a failing sink is logged and never interrupts
pricing or synchronization.
"""
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Optional

logger = logging.getLogger(__name__)

PRODUCT_CHANGE = 'product_change'
SUPPLY_ITEM_CHANGE = 'supply_item_change'
MARGIN_RANGE_CHANGE = 'margin_range_change'


def subject_ref(obj) -> Optional[str]:
    """Reference like 'Product:12' for an entity."""
    if obj is None:
        return None
    return f"{obj.__class__.__name__}:{getattr(obj, 'id', None)}"


@dataclass
class HistoryEntry:
    message: str
    category: str
    subject_ref: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)


class ChangeLog:
    """Append-only history with an optional external sink."""

    def __init__(self, sink: Optional[Callable[[HistoryEntry], None]] = None, max_entries: int = 10000):
        self.sink = sink
        self.max_entries = max_entries
        self.entries: list[HistoryEntry] = []
        self._lock = threading.Lock()

    def record(self, message: str, category: str, subject=None) -> Optional[HistoryEntry]:
        """Append an entry. `subject` is an entity or a ready-made reference string."""
        try:
            ref = subject if isinstance(subject, str) or subject is None else subject_ref(subject)
            entry = HistoryEntry(message=message, category=category, subject_ref=ref)
            with self._lock:
                self.entries.append(entry)
                if len(self.entries) > self.max_entries:
                    del self.entries[: len(self.entries) - self.max_entries]
            if self.sink is not None:
                self.sink(entry)
            logger.debug("History [%s] %s: %s", category, ref, message)
            return entry
        except Exception:
            logger.exception("Could not record history entry: %s", message)
            return None

    def for_subject(self, subject) -> list[HistoryEntry]:
        ref = subject if isinstance(subject, str) else subject_ref(subject)
        return [e for e in self.entries if e.subject_ref == ref]

    def messages(self, category: Optional[str] = None) -> list[str]:
        return [e.message for e in self.entries if category is None or e.category == category]
