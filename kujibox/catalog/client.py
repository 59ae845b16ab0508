"""Read-only client for the hosted product catalog.

The catalog owns display metadata (product names, tier names and images).
It is reached over a PostgREST style REST interface; the draw core never
writes to it and never takes counts, probabilities or commitments from it.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping, Optional
from urllib.parse import urljoin

import requests
from sqlalchemy.orm import Session

from kujibox import config
from kujibox.errors import InvalidParameter, NotFound
from kujibox.models import Product, TierLevel

logger = logging.getLogger(__name__)


class CatalogClient:
    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: int = 30,
        session: Optional[requests.Session] = None,
    ):
        url = base_url or config.catalog_base_url()
        if not url:
            raise ValueError("Environment variable 'CATALOG_BASE_URL' is not set")
        self.base_url = url.rstrip("/")
        self.api_key = api_key or config.catalog_api_key()
        self.session = session or requests.Session()
        self.timeout = timeout

    # -------- headers --------
    @property
    def headers(self) -> Mapping[str, str]:
        headers = {"Accept": "application/json"}
        if self.api_key:
            headers["apikey"] = self.api_key
            headers["Authorization"] = f"Bearer {self.api_key}"
        return headers

    # -------- core request --------
    def _request(
        self,
        method: str,
        path: str,
        *,
        params: Optional[dict] = None,
    ) -> Any:
        url = urljoin(self.base_url + "/", path.lstrip("/"))
        r = self.session.request(
            method=method.upper(),
            url=url,
            headers=self.headers,
            params=params,
            timeout=self.timeout,
        )
        r.raise_for_status()
        return r.json() if r.content else None

    # -------- API callers --------
    def get_product(self, product_id: int) -> dict:
        """Return the catalog row of ``product_id``.

        Raises
        ------
        NotFound
            If the catalog has no such product.
        """
        rows = self._request(
            "GET",
            "/rest/v1/products",
            params={"id": f"eq.{product_id}", "select": "*"},
        )
        if not rows:
            raise NotFound(f"Product {product_id} not found in catalog")
        return rows[0]

    def list_prizes(self, product_id: int) -> list[dict]:
        return self._request(
            "GET",
            "/rest/v1/product_prizes",
            params={"product_id": f"eq.{product_id}", "select": "*"},
        ) or []


def sync_tier_metadata(
    session: Session, product: Product, client: CatalogClient
) -> list[int]:
    """Copy tier display names and images from the catalog onto ``product``.

    Catalog rows are matched to tiers by normalized level. Only ``name`` and
    ``image_url`` are copied.

    Returns
    -------
    list[int]
        Ids of the tiers that changed.
    """
    by_level = {tier.tier_level: tier for tier in product.tiers}
    changed: list[int] = []
    for row in client.list_prizes(product.id):
        try:
            level = TierLevel.parse(row.get("level"))
        except InvalidParameter:
            logger.warning(
                "Catalog prize %s of product %s has unknown level %r; skipped",
                row.get("id"),
                product.id,
                row.get("level"),
            )
            continue
        tier = by_level.get(level)
        if tier is None:
            continue
        name = row.get("name") or tier.name
        image_url = row.get("image_url", tier.image_url)
        if name != tier.name or image_url != tier.image_url:
            tier.name = name
            tier.image_url = image_url
            changed.append(tier.id)
    if changed:
        session.flush()
        logger.info("Synced catalog metadata for tiers %s of product %s", changed, product.id)
    return changed
