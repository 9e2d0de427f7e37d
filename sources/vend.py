"""
Vend data source.

Lists outlets, products, customers, register sales etc. from the Vend
REST API (0.x endpoints). Scopes such as since/status/page are path
segments:

    /api/register_sales/since/2013-01-30 23:35:33/page/2
"""

import logging
import os
from collections.abc import Iterator
from datetime import datetime, timezone
from typing import Any
from urllib.parse import quote

import requests

from lib.errors import FetchFailure
from lib.fields import table_name_for_class
from lib.source import Listing, Source

logger = logging.getLogger(__name__)

VEND_API_URL = "https://{domain}.vendhq.com/api"

SINCE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Scopes accepted per resource class; anything else only lists
RESOURCE_SCOPES = {
    "Product": frozenset({"since"}),
    "Customer": frozenset({"since"}),
    "RegisterSale": frozenset({"since", "status"}),
}


def get_domain() -> str:
    """Get the Vend store domain from environment."""
    domain = os.environ.get("VEND_DOMAIN")
    if not domain:
        raise ValueError("VEND_DOMAIN environment variable is not set")
    return domain


def get_token() -> str:
    """Get the Vend OAuth2 token from environment."""
    token = os.environ.get("VEND_TOKEN")
    if not token:
        raise ValueError("VEND_TOKEN environment variable is not set")
    return token


def get_headers(token: str) -> dict[str, str]:
    """Get headers for Vend API requests."""
    return {
        "Authorization": f"Bearer {token}",
        "Accept": "application/json",
    }


def format_since(timestamp: datetime) -> str:
    """Vend expects UTC timestamps as YYYY-MM-DD HH:MM:SS."""
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).strftime(SINCE_FORMAT)


class VendListing(Listing):
    """
    One Vend collection endpoint, optionally scoped.

    Pages are requested lazily while iterating.
    """

    def __init__(
        self,
        source: "VendSource",
        class_name: str,
        path_scopes: tuple[tuple[str, str], ...] = (),
    ):
        self.source = source
        self.class_name = class_name
        self.collection = table_name_for_class(class_name)
        self.path_scopes = path_scopes
        self.scopes = RESOURCE_SCOPES.get(class_name, frozenset())

    def scope(self, name: str, value: str) -> "VendListing":
        if not self.accepts_scope(name):
            raise ValueError(f"{self.class_name} does not accept scope {name}")
        return VendListing(self.source, self.class_name, self.path_scopes + ((name, value),))

    def since(self, timestamp: datetime) -> "VendListing":
        return self.scope("since", format_since(timestamp))

    def url(self, page: int = None) -> str:
        segments = [self.collection]
        for name, value in self.path_scopes:
            segments.extend([name, quote(value)])
        if page is not None:
            segments.extend(["page", str(page)])
        return f"{self.source.base_url}/{'/'.join(segments)}"

    def __iter__(self) -> Iterator[dict[str, Any]]:
        page = 1
        while True:
            data = self.source.get(self.url(page))

            if self.collection not in data:
                raise FetchFailure(f"Vend response has no {self.collection}: {list(data)}")
            items = data[self.collection]
            logger.debug(f"Retrieved {len(items)} {self.collection} on page {page}")
            yield from items

            pagination = data.get("pagination")
            if not pagination or page >= int(pagination.get("pages", 1)):
                break
            page += 1


class VendSource(Source):
    """
    Vend store reached with an OAuth2 bearer token.

    Args:
        domain: Store subdomain (default: VEND_DOMAIN)
        token: OAuth2 access token (default: VEND_TOKEN)
        timeout: Seconds per request
    """

    def __init__(self, domain: str = None, token: str = None, timeout: int = 30):
        self.domain = domain or get_domain()
        self.token = token or get_token()
        self.timeout = timeout
        self.base_url = VEND_API_URL.format(domain=self.domain)

    def get(self, url: str) -> dict[str, Any]:
        """GET a Vend endpoint, raising FetchFailure on HTTP or decoding errors."""
        logger.info(f"Fetching {url}...")
        try:
            response = requests.get(url, headers=get_headers(self.token), timeout=self.timeout)
            response.raise_for_status()
            return response.json()
        except requests.RequestException as e:
            raise FetchFailure(f"Vend API error for {url}: {e}") from e

    def listing(self, class_name: str) -> VendListing:
        return VendListing(self, class_name)

    def supports_state(self, class_name: str) -> bool:
        return "status" in RESOURCE_SCOPES.get(class_name, frozenset())

    def find_by_state(self, class_name: str, state: str) -> VendListing:
        return self.listing(class_name).scope("status", state)
