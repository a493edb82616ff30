from copy import copy
from typing import Callable, Dict, Iterable, Iterator, List, Optional, Set

from product_slugs.models import Product
from product_slugs.repositories import (
    DuplicateProductIdError,
    DuplicateSlugError,
    ProductNotStoredError,
    StaleProductError,
    StorageUnavailableError,
    new_product_id,
)

ID_A = "0123456789abcdef0123456789abcdef"
ID_B = "fedcba9876543210fedcba9876543210"
ID_C = "aaaaaaaabbbbbbbbccccccccdddddddd"


class InMemoryRepository:
    """Repositorio en memoria con la misma restricción de unicidad de slugs."""

    def __init__(self, products: Iterable[Product] = ()):
        self._products: Dict[str, Product] = {}
        self.before_commit: Optional[Callable[[Product], None]] = None
        self.slug_checks: List[str] = []
        for product in products:
            stored = copy(product)
            if not stored.id:
                stored.id = new_product_id()
            stored.order = len(self._products)
            self._products[stored.id] = stored

    def next_id(self) -> str:
        return new_product_id()

    def load_products(self) -> List[Product]:
        return sorted((copy(p) for p in self._products.values()), key=lambda p: p.order)

    def iter_product_ids(self) -> Iterator[str]:
        yield from list(self._products)

    def get_by_id(self, product_id: str) -> Optional[Product]:
        product = self._products.get(product_id)
        return copy(product) if product else None

    def get_by_slug(self, slug: str) -> Optional[Product]:
        for product in self._products.values():
            if product.slug == slug:
                return copy(product)
        return None

    def slug_exists(self, slug: str, excluding_id: Optional[str] = None) -> bool:
        self.slug_checks.append(slug)
        return any(
            p.slug == slug and p.id != excluding_id for p in self._products.values()
        )

    def _check_slug(self, product_id: str, slug: Optional[str]) -> None:
        if not slug:
            return
        for other in self._products.values():
            if other.slug == slug and other.id != product_id:
                raise DuplicateSlugError(slug)

    def _run_hook(self, product: Product) -> None:
        if self.before_commit is not None:
            self.before_commit(product)

    def insert_product(self, product: Product) -> Product:
        self._run_hook(product)
        if product.id in self._products:
            raise DuplicateProductIdError(product.id)
        self._check_slug(product.id, product.slug)
        stored = copy(product)
        stored.order = len(self._products)
        stored.rev = 1
        self._products[stored.id] = stored
        return copy(stored)

    def update_product(self, product: Product, expected_rev: Optional[int] = None) -> Product:
        self._run_hook(product)
        current = self._products.get(product.id)
        if current is None:
            raise ProductNotStoredError(product.id)
        if expected_rev is not None and current.rev != expected_rev:
            raise StaleProductError(product.id)
        self._check_slug(product.id, product.slug)
        stored = copy(product)
        stored.order = current.order
        stored.rev = current.rev + 1
        self._products[stored.id] = stored
        return copy(stored)

    def assign_slug(self, product_id: str, slug: str) -> bool:
        if not product_id:
            raise ProductNotStoredError(product_id)
        current = self._products.get(product_id)
        if current is None or current.slug:
            return False
        self._run_hook(current)
        self._check_slug(product_id, slug)
        current.slug = slug
        current.rev += 1
        return True

    def delete_product(self, product_id: str) -> bool:
        return self._products.pop(product_id, None) is not None


class FlakyRepository(InMemoryRepository):
    """Repositorio que falla en las operaciones indicadas."""

    def __init__(self, products: Iterable[Product] = (), fail_on: Iterable[str] = ()):
        super().__init__(products)
        self.fail_on: Set[str] = set(fail_on)
        self.fail_ids: Set[str] = set()

    def _maybe_fail(self, operation: str, product_id: Optional[str] = None) -> None:
        if operation in self.fail_on or (product_id and product_id in self.fail_ids):
            raise StorageUnavailableError(f"{operation} no disponible")

    def get_by_id(self, product_id: str) -> Optional[Product]:
        self._maybe_fail("get_by_id", product_id)
        return super().get_by_id(product_id)

    def slug_exists(self, slug: str, excluding_id: Optional[str] = None) -> bool:
        self._maybe_fail("slug_exists")
        return super().slug_exists(slug, excluding_id)

    def insert_product(self, product: Product) -> Product:
        self._maybe_fail("insert_product")
        return super().insert_product(product)


def require(condition: bool, message: str = 'Expected condition to be true') -> None:
    if not condition:
        raise AssertionError(message)
