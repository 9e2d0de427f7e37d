"""
Incremental resource fetching.

Combines a class's default listing with its state-scoped listing and narrows
each one to resources updated since the destination table's high-watermark.
"""

import itertools
import logging
from collections.abc import Iterator
from typing import Any

from lib.fields import table_name_for_class
from lib.source import Listing, Source
from lib.store import Store

logger = logging.getLogger(__name__)

# Voided register sales are not returned by default
DEFAULT_STATES = ("VOIDED",)


class ResourceFetcher:
    """
    Args:
        source: Transport handing out listings per resource class
        store: Store the high-watermark is read back from
        states: Lifecycle states fetched in addition to the default listing
    """

    def __init__(self, source: Source, store: Store, states: tuple[str, ...] = DEFAULT_STATES):
        self.source = source
        self.store = store
        self.states = states

    def listings(self, class_name: str) -> list[Listing]:
        """Listings for class_name, already narrowed to the high-watermark."""
        listings = [self.source.listing(class_name)]
        if self.source.supports_state(class_name):
            for state in self.states:
                listings.append(self.source.find_by_state(class_name, state))

        table_name = table_name_for_class(class_name)
        since = self.store.last_updated_at(table_name)
        if since is None:
            logger.info(f"No high-watermark for {table_name}, fetching everything")
            return listings

        narrowed = []
        for listing in listings:
            if listing.accepts_scope("since"):
                logger.info(f"Fetching {class_name} updated since {since.isoformat()}")
                listing = listing.since(since)
            narrowed.append(listing)
        return narrowed

    def fetch(self, class_name: str) -> Iterator[dict[str, Any]]:
        """
        Lazily yield every resource for class_name.

        The high-watermark is read when fetch() is called; pages are requested
        as the result is consumed. Default listing records come first.
        """
        return itertools.chain.from_iterable(self.listings(class_name))
