"""
Product catalog collaborator.

Orders are priced from the catalog, never from the client. The order
service only needs to look up one product at a time.
"""

import logging
from decimal import Decimal
from typing import Protocol, runtime_checkable

import httpx
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError

from orderflow.exceptions import CatalogUnavailable

logger = logging.getLogger(__name__)


class ProductInfo(BaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    product_id: str = Field(validation_alias=AliasChoices("product_id", "productId", "id", "_id"))
    name: str = ""
    price: Decimal = Field(ge=0)
    is_purchasable: bool = Field(
        default=True,
        validation_alias=AliasChoices("is_purchasable", "isPurchasable", "isActive"),
    )
    seller_id: str = Field(validation_alias=AliasChoices("seller_id", "sellerId", "artisan"))


@runtime_checkable
class Catalog(Protocol):
    async def get_product(self, product_id: str) -> ProductInfo | None: ...


class InMemoryCatalog:
    """
    Catalog backed by a dict.

    Example:
        >>> catalog = InMemoryCatalog()
        >>> catalog.add(ProductInfo(product_id="P1", price=Decimal("500"), seller_id="S1"))
    """

    def __init__(self, products: list[ProductInfo] | None = None) -> None:
        self._products: dict[str, ProductInfo] = {}
        for product in products or []:
            self.add(product)

    def add(self, product: ProductInfo) -> None:
        self._products[product.product_id] = product

    async def get_product(self, product_id: str) -> ProductInfo | None:
        return self._products.get(product_id)


class HttpCatalog:
    """Catalog service client: ``GET {base_url}/products/{product_id}``."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 5.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._client = client

    async def get_product(self, product_id: str) -> ProductInfo | None:
        url = f"{self._base_url}/products/{product_id}"
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient(timeout=self._timeout) as client:
                    resp = await client.get(url)
        except httpx.TransportError as e:
            raise CatalogUnavailable("catalog lookup", last_error=e) from e

        if resp.status_code == 404:
            return None
        if resp.status_code >= 400:
            raise CatalogUnavailable(
                "catalog lookup",
                last_error=httpx.HTTPStatusError(
                    f"catalog returned {resp.status_code}", request=resp.request, response=resp
                ),
            )

        body = resp.json()
        # Accept both bare products and {"success": true, "data": {...}} envelopes
        data = body.get("data", body) if isinstance(body, dict) else body
        try:
            return ProductInfo.model_validate(data)
        except ValidationError as e:
            logger.error(
                "Catalog returned an unreadable product %s",
                product_id,
                extra={"product_id": product_id, "errors": e.errors()},
            )
            raise CatalogUnavailable("catalog lookup", last_error=e) from e
