from typing import Callable, Dict, List, Optional, Protocol, Set
from .models import Product
from .repositories import (
    DuplicateSlugError,
    ProductNotStoredError,
    ProductRepositoryError,
    ProductRepositoryProtocol,
    StaleProductError,
    StorageUnavailableError,
)
from .slug import DEFAULT_MAX_LENGTH, fallback_seed, is_product_id, is_slug, slugify
from .uniqueness import SlugProbeLimitError, resolve_unique_slug
import logging
from contextlib import contextmanager
from copy import copy
from dataclasses import dataclass, field
from datetime import datetime
import threading
from collections import defaultdict
from enum import Enum, auto

logger = logging.getLogger(__name__)

MAX_TOKEN_LENGTH = 200


class ProductEventType(Enum):
    """Event types for product operations."""
    CREATED = auto()
    UPDATED = auto()
    DELETED = auto()
    SLUG_ASSIGNED = auto()


class SlugPolicy(Enum):
    """What happens to a slug when the product is renamed."""
    FROZEN = "frozen"
    FOLLOW_NAME = "follow-name"


@dataclass
class ProductEvent:
    """Event data for product operations."""
    event_type: ProductEventType
    product_id: str
    product_name: str
    timestamp: datetime = field(default_factory=datetime.now)
    details: Optional[Dict] = None


class ProductServiceError(Exception):
    """Base exception for ProductService errors."""
    pass


class ProductNotFoundError(ProductServiceError):
    """Raised when a product is not found."""
    pass


class InvalidTokenError(ProductServiceError):
    """Raised when a lookup token is empty or malformed."""
    pass


class SlugAssignmentError(ProductServiceError):
    """Raised when no unique slug could be committed within the retry bounds."""
    pass


class ProductEventHandler(Protocol):
    """Protocol for product event handlers."""

    def handle_event(self, event: ProductEvent) -> None:
        """Handle a product event."""
        ...


def clean_token(token: object) -> str:
    """Return a stripped lookup token or raise InvalidTokenError."""
    if not isinstance(token, str):
        raise InvalidTokenError("El identificador debe ser texto.")
    cleaned = token.strip()
    if not cleaned:
        raise InvalidTokenError("El identificador no puede estar vacío.")
    if len(cleaned) > MAX_TOKEN_LENGTH:
        raise InvalidTokenError(
            f"El identificador no puede tener más de {MAX_TOKEN_LENGTH} caracteres.")
    return cleaned


class ProductService:
    """Service class for product lifecycle, slug assignment and lookups."""

    DEFAULT_MAX_SLUG_PROBES = 1000
    DEFAULT_MAX_COMMIT_ATTEMPTS = 5

    def __init__(
        self,
        repository: ProductRepositoryProtocol,
        *,
        slug_policy: SlugPolicy = SlugPolicy.FROZEN,
        max_slug_probes: Optional[int] = DEFAULT_MAX_SLUG_PROBES,
        max_commit_attempts: int = DEFAULT_MAX_COMMIT_ATTEMPTS,
        slug_max_length: int = DEFAULT_MAX_LENGTH,
    ):
        """
        Initialize the ProductService.
        """
        if max_commit_attempts < 1:
            raise ValueError("max_commit_attempts must be at least 1")
        self.repository = repository
        self.slug_policy = slug_policy
        self.max_slug_probes = max_slug_probes
        self.max_commit_attempts = max_commit_attempts
        self.slug_max_length = slug_max_length
        self._lock = threading.RLock()
        self._event_handlers: Dict[ProductEventType,
                                   Set[ProductEventHandler]] = defaultdict(set)

    def register_event_handler(self, event_type: ProductEventType, handler: ProductEventHandler) -> None:
        """
        Register an event handler for a specific event type.
        """
        self._event_handlers[event_type].add(handler)

    def unregister_event_handler(self, event_type: ProductEventType, handler: ProductEventHandler) -> None:
        self._event_handlers[event_type].discard(handler)

    def _notify_event_handlers(self, event: ProductEvent) -> None:
        for handler in list(self._event_handlers[event.event_type]):
            try:
                handler.handle_event(event)
            except Exception as e:  # pylint: disable=broad-except
                logger.error(f"Error en el manejador de eventos: {e}")

    @contextmanager
    def _repository_errors(self, action: str):
        """Wrap repository failures, letting storage outages through."""
        try:
            yield
        except (ProductServiceError, StorageUnavailableError):
            raise
        except ProductRepositoryError as e:
            logger.error(f"Error al {action}: {e}")
            raise ProductServiceError(f"Error al {action}: {e}") from e

    # -- slug assignment -------------------------------------------------

    def slug_candidate(self, product: Product) -> str:
        """Slug seed for a product: its slugified name, or an id-based fallback."""
        candidate = slugify(product.name, self.slug_max_length)
        if not candidate:
            candidate = fallback_seed(product.id)
            logger.info(
                f"El nombre '{product.name}' no produce un slug; se usa '{candidate}'")
        return candidate

    def resolve_slug(self, product: Product) -> str:
        """Suggest a free slug for the product, excluding its own record."""
        try:
            return resolve_unique_slug(
                self.slug_candidate(product),
                product.id,
                self.repository.slug_exists,
                max_probes=self.max_slug_probes,
            )
        except SlugProbeLimitError as e:
            raise SlugAssignmentError(str(e)) from e

    def _commit_with_slug(self, product: Product, write: Callable[[Product], Product]) -> Product:
        """Resolve a slug and commit, retrying when storage rejects a duplicate."""
        for attempt in range(1, self.max_commit_attempts + 1):
            product.slug = self.resolve_slug(product)
            try:
                return write(product)
            except DuplicateSlugError as e:
                logger.debug(
                    f"Colisión al guardar slug '{e.slug}' "
                    f"(intento {attempt}/{self.max_commit_attempts})")
        raise SlugAssignmentError(
            f"No se pudo asignar un slug único a '{product.name}' "
            f"tras {self.max_commit_attempts} intentos."
        )

    # -- lifecycle -------------------------------------------------------

    def add_product(self, product: Product) -> Product:
        """Create a product; a slug is always computed from its name."""
        candidate = copy(product)
        with self._lock, self._repository_errors("agregar producto"):
            if not candidate.id:
                candidate.id = self.repository.next_id()
            stored = self._commit_with_slug(candidate, self.repository.insert_product)
        logger.info(f"Producto creado: {stored.id} -> {stored.slug}")
        self._notify_event_handlers(ProductEvent(
            ProductEventType.CREATED,
            stored.id,
            stored.name,
            details={'slug': stored.slug, 'category': stored.category}
        ))
        self._notify_event_handlers(ProductEvent(
            ProductEventType.SLUG_ASSIGNED,
            stored.id,
            stored.name,
            details={'slug': stored.slug, 'previous_slug': None}
        ))
        return stored

    def _needs_new_slug(self, original: Product, updated: Product) -> bool:
        if not original.slug:
            return True
        return (
            self.slug_policy is SlugPolicy.FOLLOW_NAME
            and original.is_renamed_to(updated)
        )

    def update_product(self, product_id: str, updated_product: Product) -> Product:
        """Update catalog fields of a product.

        The stored slug is kept unless the policy is ``FOLLOW_NAME`` and the
        name changed, or the product never had one.
        """
        with self._lock, self._repository_errors("actualizar producto"):
            original = self.repository.get_by_id(product_id)
            if original is None:
                raise ProductNotFoundError(f"Producto no encontrado: {product_id}")
            target = copy(updated_product)
            target.id = original.id
            target.slug = original.slug
            changes = original.content_changes(target)
            reslug = self._needs_new_slug(original, target)
            if not changes and not reslug:
                return original

            def write(product: Product) -> Product:
                return self.repository.update_product(product, expected_rev=original.rev)

            try:
                if reslug:
                    stored = self._commit_with_slug(target, write)
                else:
                    stored = write(target)
            except StaleProductError as e:
                raise ProductServiceError(
                    f"El producto {product_id} fue modificado por otra operación; reintente."
                ) from e
            except ProductNotStoredError as e:
                raise ProductNotFoundError(f"Producto no encontrado: {product_id}") from e

        self._notify_event_handlers(ProductEvent(
            ProductEventType.UPDATED,
            stored.id,
            stored.name,
            details={'cambios': changes, 'nombre_anterior': original.name}
        ))
        if stored.slug != original.slug:
            logger.info(f"Slug de {stored.id}: {original.slug} -> {stored.slug}")
            self._notify_event_handlers(ProductEvent(
                ProductEventType.SLUG_ASSIGNED,
                stored.id,
                stored.name,
                details={'slug': stored.slug, 'previous_slug': original.slug}
            ))
        return stored

    def delete_product(self, product_id: str) -> bool:
        """Delete a product by id; its slug becomes available again."""
        with self._lock, self._repository_errors("eliminar producto"):
            product = self.repository.get_by_id(product_id)
            if product is None:
                return False
            removed = self.repository.delete_product(product_id)
        if removed:
            self._notify_event_handlers(ProductEvent(
                ProductEventType.DELETED,
                product.id,
                product.name,
                details={'slug': product.slug}
            ))
        return removed

    # -- lookups ---------------------------------------------------------

    def get_all_products(self) -> List[Product]:
        with self._repository_errors("cargar productos"):
            return self.repository.load_products()

    def get_product_by_id(self, product_id: str) -> Optional[Product]:
        """Exact, case-sensitive identifier lookup."""
        if not is_product_id(product_id):
            return None
        return self.repository.get_by_id(product_id)

    def get_product_by_slug(self, slug: str) -> Optional[Product]:
        """Slug lookup; the token is lower-cased since slugs always are."""
        candidate = clean_token(slug).lower()
        if not is_slug(candidate):
            return None
        return self.repository.get_by_slug(candidate)

    def resolve_token(self, token: str) -> Optional[Product]:
        """Find a product by opaque identifier or by slug.

        Identifier-shaped tokens are looked up as identifiers first; anything
        else, or an identifier miss, falls through to the slug lookup.
        Returns None when neither matches.
        """
        cleaned = clean_token(token)
        if is_product_id(cleaned):
            product = self.repository.get_by_id(cleaned)
            if product is not None:
                return product
        return self.get_product_by_slug(cleaned)
