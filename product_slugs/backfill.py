"""Assign slugs to products stored before slugs existed.

Each product is handled as its own committed unit, so the job can be
interrupted or re-run at any point: products that already hold a slug are
skipped and never modified.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from .models import ProductError
from .repositories import DuplicateSlugError, ProductRepositoryError, ProductRepositoryProtocol
from .slug import DEFAULT_MAX_LENGTH, SlugError, fallback_seed, slugify
from .uniqueness import resolve_unique_slug

logger = logging.getLogger(__name__)

DEFAULT_MAX_COMMIT_ATTEMPTS = 5


@dataclass
class BackfillReport:
    """Counters produced by one backfill run."""

    processed: int = 0
    assigned: int = 0
    skipped: int = 0
    failed: int = 0
    interrupted: bool = False
    failures: List[Dict[str, str]] = field(default_factory=list)

    def record_failure(self, product_id: str, error: Exception) -> None:
        self.failed += 1
        self.failures.append({"id": product_id, "error": str(error)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "processed": self.processed,
            "assigned": self.assigned,
            "skipped": self.skipped,
            "failed": self.failed,
            "interrupted": self.interrupted,
            "failures": list(self.failures),
        }


class BackfillError(Exception):
    """Raised when a single product cannot receive a slug."""


def _assign_one(
    repository: ProductRepositoryProtocol,
    product_id: str,
    *,
    max_slug_probes: Optional[int],
    max_commit_attempts: int,
    slug_max_length: int,
) -> Optional[str]:
    """Give one product a slug. Returns None when it no longer needs one."""
    for _ in range(max_commit_attempts):
        product = repository.get_by_id(product_id)
        if product is None or product.slug:
            return None
        candidate = slugify(product.name, slug_max_length) or fallback_seed(product.id)
        slug = resolve_unique_slug(
            candidate, product.id, repository.slug_exists, max_probes=max_slug_probes
        )
        try:
            if repository.assign_slug(product_id, slug):
                return slug
            return None
        except DuplicateSlugError:
            logger.debug(f"Colisión en backfill para {product_id} con '{slug}'; reintentando")
    raise BackfillError(
        f"No se pudo asignar un slug único tras {max_commit_attempts} intentos."
    )


def run_backfill(
    repository: ProductRepositoryProtocol,
    *,
    max_slug_probes: Optional[int] = None,
    max_commit_attempts: int = DEFAULT_MAX_COMMIT_ATTEMPTS,
    slug_max_length: int = DEFAULT_MAX_LENGTH,
    stop_event: Optional[threading.Event] = None,
) -> BackfillReport:
    """Assign slugs to every stored product that lacks one.

    Args:
        repository: Product storage.
        max_slug_probes: Optional cap on existence checks per product.
        max_commit_attempts: Commits tried per product before giving up.
        slug_max_length: Maximum slug candidate length.
        stop_event: When set, the run stops before the next product.

    Returns:
        BackfillReport with processed/assigned/skipped/failed counters.
    """
    report = BackfillReport()
    logger.info("Backfill de slugs iniciado")
    for product_id in repository.iter_product_ids():
        if stop_event is not None and stop_event.is_set():
            report.interrupted = True
            logger.warning("Backfill interrumpido; el trabajo completado se conserva")
            break
        report.processed += 1
        try:
            slug = _assign_one(
                repository,
                product_id,
                max_slug_probes=max_slug_probes,
                max_commit_attempts=max_commit_attempts,
                slug_max_length=slug_max_length,
            )
        except (ProductRepositoryError, ProductError, SlugError, BackfillError) as e:
            logger.error(f"Backfill falló para {product_id}: {e}")
            report.record_failure(product_id, e)
            continue
        if slug is None:
            report.skipped += 1
        else:
            report.assigned += 1
            logger.debug(f"Slug asignado: {product_id} -> {slug}")

    logger.info(
        "Backfill finalizado: procesados=%d asignados=%d omitidos=%d fallidos=%d",
        report.processed,
        report.assigned,
        report.skipped,
        report.failed,
    )
    return report
