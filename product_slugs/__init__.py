"""Slug assignment, dual-identifier lookup and legacy redirects for catalog products."""

from .backfill import BackfillReport, run_backfill
from .models import Product, ProductError
from .redirects import LegacyRedirector, RedirectDecision, RedirectState
from .repositories import (
    DuplicateSlugError,
    JsonProductRepository,
    StorageUnavailableError,
)
from .services import (
    InvalidTokenError,
    ProductNotFoundError,
    ProductService,
    ProductServiceError,
    SlugAssignmentError,
    SlugPolicy,
)
from .slug import is_product_id, is_slug, slugify
from .uniqueness import resolve_unique_slug

__all__ = [
    "BackfillReport",
    "DuplicateSlugError",
    "InvalidTokenError",
    "JsonProductRepository",
    "LegacyRedirector",
    "Product",
    "ProductError",
    "ProductNotFoundError",
    "ProductService",
    "ProductServiceError",
    "RedirectDecision",
    "RedirectState",
    "SlugAssignmentError",
    "SlugPolicy",
    "StorageUnavailableError",
    "is_product_id",
    "is_slug",
    "resolve_unique_slug",
    "run_backfill",
    "slugify",
]
