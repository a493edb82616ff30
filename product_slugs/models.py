"""Product data models and validation helpers."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar, Dict, List, Optional

from .slug import is_product_id, is_slug


class ProductError(Exception):
    """Base exception for Product-related errors."""


class InvalidPriceError(ProductError):
    """Raised when price validation fails."""


class InvalidDiscountError(ProductError):
    """Raised when discount validation fails."""


class InvalidSlugError(ProductError):
    """Raised when a slug does not match the managed pattern."""


class InvalidProductIdError(ProductError):
    """Raised when an identifier does not have the opaque identifier shape."""


@dataclass
class Product:
    """Represents a catalog product addressable by id and by slug."""
    # pylint: disable=too-many-instance-attributes
    name: str
    price: int
    description: str = ""
    discount: int = 0
    stock: bool = False
    category: str = ""
    id: str = ""
    slug: Optional[str] = None
    order: int = 0
    rev: int = 0

    # pylint: disable=invalid-name
    MAX_PRICE: ClassVar[int] = 1_000_000
    MAX_NAME_LENGTH: ClassVar[int] = 200
    MAX_DESCRIPTION_LENGTH: ClassVar[int] = 1000
    # Fields that carry catalog content; slug, order and rev are bookkeeping.
    CONTENT_FIELDS: ClassVar[tuple] = (
        "name",
        "description",
        "price",
        "discount",
        "stock",
        "category",
    )
    # pylint: enable=invalid-name

    def __post_init__(self) -> None:
        """Validate all fields after initialization."""
        self._validate_name()
        self._validate_description()
        self._validate_price()
        self._validate_discount()
        self._validate_category()
        self._validate_id()
        self._validate_slug()

    @staticmethod
    def _normalize_text(value: Any) -> str:
        """Return a canonical lowercase representation collapsing whitespace."""

        if not isinstance(value, str):
            return ""
        collapsed = " ".join(value.split())
        return collapsed.casefold()

    @classmethod
    def normalized_name(cls, name: str) -> str:
        """Normalize a product name for comparisons."""

        return cls._normalize_text(name)

    def _validate_name(self) -> None:
        if not isinstance(self.name, str):
            raise TypeError("El nombre debe ser texto.")
        if not self.name.strip():
            raise ProductError("El nombre no puede estar vacío.")
        if len(self.name) > self.MAX_NAME_LENGTH:
            raise ProductError(
                f"El nombre no puede tener más de {self.MAX_NAME_LENGTH} caracteres."
            )

    def _validate_description(self) -> None:
        if not isinstance(self.description, str):
            raise TypeError("La descripción debe ser texto.")
        if len(self.description) > self.MAX_DESCRIPTION_LENGTH:
            raise ProductError(
                f"La descripción no puede tener más de {self.MAX_DESCRIPTION_LENGTH} caracteres."
            )

    def _validate_price(self) -> None:
        # bool is an int subclass; a price of True is still invalid.
        if not isinstance(self.price, int) or isinstance(self.price, bool):
            raise InvalidPriceError("El precio debe ser un número entero.")
        if self.price <= 0:
            raise InvalidPriceError("El precio debe ser mayor que cero.")
        if self.price > self.MAX_PRICE:
            raise InvalidPriceError(f"El precio no puede exceder {self.MAX_PRICE:,}")

    def _validate_discount(self) -> None:
        if not isinstance(self.discount, int) or isinstance(self.discount, bool):
            raise InvalidDiscountError("El descuento debe ser un número entero.")
        if self.discount < 0:
            raise InvalidDiscountError("El descuento no puede ser negativo.")
        if self.discount > self.price:
            raise InvalidDiscountError("El descuento no puede ser mayor que el precio.")

    def _validate_category(self) -> None:
        if not isinstance(self.category, str):
            raise TypeError("La categoría debe ser texto.")
        if len(self.category) > 50:
            raise ProductError("El nombre de la categoría es demasiado largo.")

    def _validate_id(self) -> None:
        """Identifiers are optional until storage assigns one."""
        if self.id and not is_product_id(self.id):
            raise InvalidProductIdError(f"Identificador de producto inválido: {self.id!r}")

    def _validate_slug(self) -> None:
        if self.slug == "":
            self.slug = None
        if self.slug is not None and not is_slug(self.slug):
            raise InvalidSlugError(f"Slug inválido: {self.slug!r}")

    def content_changes(self, other: "Product") -> Dict[str, Any]:
        """Return the content fields whose value differs in ``other``."""
        return {
            name: getattr(other, name)
            for name in self.CONTENT_FIELDS
            if getattr(self, name) != getattr(other, name)
        }

    def is_renamed_to(self, other: "Product") -> bool:
        """Check whether ``other`` carries a different display name."""
        return self.normalized_name(self.name) != self.normalized_name(other.name)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Product":
        """Create a Product instance from a dictionary."""
        required_fields = {"name", "price"}
        missing_fields = required_fields - set(data.keys())
        if missing_fields:
            raise ProductError(f"Faltan campos requeridos: {', '.join(sorted(missing_fields))}")

        known = {
            "name", "price", "description", "discount", "stock",
            "category", "id", "slug", "order", "rev",
        }
        payload = {key: value for key, value in data.items() if key in known}
        return cls(**payload)

    def to_dict(self) -> Dict[str, Any]:
        """Convert the product to a dictionary."""
        return {
            "id": self.id,
            "slug": self.slug,
            "name": self.name,
            "description": self.description,
            "price": self.price,
            "discount": self.discount,
            "stock": self.stock,
            "category": self.category,
            "order": self.order,
            "rev": self.rev,
        }


@dataclass
class ProductMetadata:
    """Metadata for the product catalog."""

    version: str
    last_updated: str
    rev: int = 0


@dataclass
class ProductCatalog:
    """Complete product catalog with metadata."""

    metadata: ProductMetadata
    products: List[Product] = field(default_factory=list)

    @classmethod
    def create(cls, products: List[Product], rev: int = 0) -> "ProductCatalog":
        """Create a new catalog with current metadata."""
        metadata = ProductMetadata(
            version=datetime.now().strftime("%Y%m%d-%H%M%S"),
            last_updated=datetime.now().isoformat(),
            rev=rev,
        )
        return cls(metadata=metadata, products=products)

    def to_dict(self) -> Dict[str, Any]:
        """Convert catalog to dictionary format."""
        return {
            "version": self.metadata.version,
            "last_updated": self.metadata.last_updated,
            "rev": self.metadata.rev,
            "products": [p.to_dict() for p in self.products],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ProductCatalog":
        """Create catalog from dictionary data."""
        metadata = ProductMetadata(
            version=data.get("version", ""),
            last_updated=data.get("last_updated", ""),
            rev=data.get("rev", 0),
        )
        products = [Product.from_dict(p) for p in data.get("products", [])]
        return cls(metadata=metadata, products=products)
