"""
Base source abstraction for resource syncs.

A source hands out listings of tree-shaped resources for a resource class
(e.g. "RegisterSale"). Listings are lazy and may be refined with scopes
before iteration.
"""

from abc import ABC, abstractmethod
from collections.abc import Iterator
from datetime import datetime
from typing import Any


class Listing(ABC):
    """
    A lazy, paginated listing of resources.

    Subclasses must define:
        - scopes: Names of the refinements the listing accepts
        - since(): Narrow the listing to resources updated after a timestamp
        - __iter__(): Yield each resource's attribute mapping
    """

    scopes: frozenset[str] = frozenset()

    def accepts_scope(self, name: str) -> bool:
        return name in self.scopes

    @abstractmethod
    def since(self, timestamp: datetime) -> "Listing":
        """Return this listing narrowed to resources updated since timestamp."""
        pass

    @abstractmethod
    def __iter__(self) -> Iterator[dict[str, Any]]:
        pass


class Source(ABC):
    """
    Base class for resource sources.

    Subclasses must define:
        - listing(): The default listing for a resource class
        - supports_state() / find_by_state(): Listings scoped to a lifecycle
          state, for classes whose default listing omits those records
    """

    @abstractmethod
    def listing(self, class_name: str) -> Listing:
        pass

    def supports_state(self, class_name: str) -> bool:
        return False

    def find_by_state(self, class_name: str, state: str) -> Listing:
        raise NotImplementedError(f"{class_name} has no state listing")
