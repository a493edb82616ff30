"""Collision-free slug selection.

The resolver only *suggests* a slug: another writer may claim the same value
between the probe and the commit. The storage layer enforces uniqueness when
the product is written, and callers retry with a fresh resolution when the
commit is rejected as a duplicate.
"""

from __future__ import annotations

import itertools
import logging
from typing import Optional, Protocol

from .models import InvalidSlugError
from .slug import SlugError, is_product_id, is_slug, with_suffix

logger = logging.getLogger(__name__)


class SlugProbeLimitError(SlugError):
    """Raised when a bounded probe runs out of attempts."""


class SlugExistenceCheck(Protocol):
    """Storage callback answering whether another product holds a slug."""

    def __call__(self, slug: str, excluding_id: Optional[str]) -> bool:
        ...


def resolve_unique_slug(
    candidate: str,
    self_id: Optional[str],
    exists: SlugExistenceCheck,
    *,
    max_probes: Optional[int] = None,
) -> str:
    """Return ``candidate`` or the first free ``candidate-N`` (N = 1, 2, ...).

    Args:
        candidate: Normalized slug candidate (never empty).
        self_id: Identifier of the product being saved; its own record does not
            count as a collision.
        exists: Storage lookup, ``exists(slug, excluding_id) -> bool``.
        max_probes: Optional cap on storage round-trips. Without it probing
            continues until a free value is found.

    Raises:
        InvalidSlugError: If the candidate is not a valid slug.
        SlugProbeLimitError: If ``max_probes`` storage checks all collided.
    """
    if not is_slug(candidate):
        raise InvalidSlugError(f"Candidato de slug inválido: {candidate!r}")

    probes = 0
    for suffix in itertools.count():
        value = with_suffix(candidate, suffix)
        # Identifier-shaped values are reserved for the id namespace.
        if is_product_id(value):
            continue
        if max_probes is not None and probes >= max_probes:
            raise SlugProbeLimitError(
                f"No se encontró un slug libre para '{candidate}' tras {probes} intentos."
            )
        probes += 1
        if not exists(value, self_id):
            if suffix:
                logger.debug("Slug '%s' ocupado; se usará '%s'", candidate, value)
            return value
    raise AssertionError("unreachable")  # pragma: no cover
