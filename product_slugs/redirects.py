"""Redirects from legacy identifier links to canonical slug addresses."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Optional
from urllib.parse import quote

from .models import Product
from .repositories import StorageUnavailableError
from .services import ProductService
from .slug import is_product_id

logger = logging.getLogger(__name__)

PERMANENT_REDIRECT = 301
TEMPORARY_REDIRECT = 302
DEFAULT_CANONICAL_PREFIX = "/products"
DEFAULT_FALLBACK_LOCATION = "/products"


class RedirectState(Enum):
    RESOLVING = "resolving"
    REDIRECTING = "redirecting"
    NOT_FOUND = "not_found"


@dataclass(frozen=True)
class RedirectDecision:
    """Outcome of resolving a legacy link."""

    state: RedirectState
    location: str
    status_code: int
    product_id: Optional[str] = None

    @property
    def permanent(self) -> bool:
        return self.status_code == PERMANENT_REDIRECT


class LegacyRedirector:
    """Turn legacy identifier links into redirects.

    A resolved product yields a permanent redirect to its canonical address.
    Anything else (unknown id, product without slug yet, storage outage)
    degrades to a temporary redirect to the fallback location.
    """

    def __init__(
        self,
        service: ProductService,
        *,
        canonical_prefix: str = DEFAULT_CANONICAL_PREFIX,
        fallback_location: str = DEFAULT_FALLBACK_LOCATION,
    ):
        self.service = service
        prefix = canonical_prefix.strip("/")
        self.canonical_prefix = f"/{prefix}" if prefix else ""
        self.fallback_location = fallback_location or "/"

    def canonical_url(self, product: Product) -> str:
        """Return the canonical address of a slugged product."""
        if not product.slug:
            raise ValueError(f"Product {product.id} has no slug yet")
        return f"{self.canonical_prefix}/{quote(product.slug)}"

    def _fallback(self, legacy_id: object) -> RedirectDecision:
        logger.info(f"Enlace heredado sin destino: {legacy_id!r}")
        return RedirectDecision(
            RedirectState.NOT_FOUND, self.fallback_location, TEMPORARY_REDIRECT)

    def resolve(self, legacy_id: object) -> RedirectDecision:
        """Run a RESOLVING pass; the decision is REDIRECTING or NOT_FOUND."""
        if not isinstance(legacy_id, str) or not is_product_id(legacy_id.strip()):
            return self._fallback(legacy_id)
        try:
            product = self.service.get_product_by_id(legacy_id.strip())
        except StorageUnavailableError as e:
            logger.warning(f"Almacenamiento no disponible al redirigir {legacy_id}: {e}")
            return self._fallback(legacy_id)
        if product is None or not product.slug:
            return self._fallback(legacy_id)
        return RedirectDecision(
            RedirectState.REDIRECTING,
            self.canonical_url(product),
            PERMANENT_REDIRECT,
            product_id=product.id,
        )
