import json
import os
import logging
import shutil
import uuid
import portalocker
from copy import copy
from typing import Callable, Dict, Iterator, List, Optional, Protocol, Tuple
from datetime import datetime
from pathlib import Path
from contextlib import contextmanager
import threading
from functools import wraps
from .models import Product, ProductCatalog, ProductError

logger = logging.getLogger(__name__)


class ProductRepositoryError(Exception):
    """Base exception for repository errors."""
    pass


class StorageUnavailableError(ProductRepositoryError):
    """Raised when the underlying storage cannot be read, locked or written."""
    pass


class ProductLoadError(StorageUnavailableError):
    """Exception raised when there's an error loading products."""
    pass


class ProductSaveError(StorageUnavailableError):
    """Exception raised when there's an error saving products."""
    pass


class DuplicateSlugError(ProductRepositoryError):
    """Raised when a commit would give two products the same slug."""

    def __init__(self, slug: str):
        super().__init__(f"El slug '{slug}' ya está asignado a otro producto.")
        self.slug = slug


class DuplicateProductIdError(ProductRepositoryError):
    """Raised when inserting a product whose identifier is already stored."""
    pass


class ProductNotStoredError(ProductRepositoryError):
    """Raised when updating a product that is not in the catalog."""
    pass


class StaleProductError(ProductRepositoryError):
    """Raised when a product changed since the caller last read it."""
    pass


class ProductRepositoryProtocol(Protocol):
    """Protocol defining the interface for product repositories."""

    def next_id(self) -> str:
        """Return a fresh opaque identifier."""
        ...

    def load_products(self) -> List[Product]:
        """Load all products ordered by position."""
        ...

    def iter_product_ids(self) -> Iterator[str]:
        """Yield the identifiers of all stored products."""
        ...

    def get_by_id(self, product_id: str) -> Optional[Product]:
        ...

    def get_by_slug(self, slug: str) -> Optional[Product]:
        ...

    def slug_exists(self, slug: str, excluding_id: Optional[str] = None) -> bool:
        ...

    def insert_product(self, product: Product) -> Product:
        ...

    def update_product(self, product: Product, expected_rev: Optional[int] = None) -> Product:
        ...

    def assign_slug(self, product_id: str, slug: str) -> bool:
        ...

    def delete_product(self, product_id: str) -> bool:
        ...


def new_product_id() -> str:
    """Generate an opaque product identifier."""
    return uuid.uuid4().hex


def with_file_lock(func):
    """Decorator to ensure file operations are thread-safe."""
    @wraps(func)
    def wrapper(self, *args, **kwargs):
        with self._file_lock:
            return func(self, *args, **kwargs)
    return wrapper


class _CatalogIndex:
    """Products of one catalog snapshot indexed by id and slug."""

    def __init__(self, products: List[Product], rev: int = 0):
        self.products = products
        self.rev = rev
        self.by_id: Dict[str, Product] = {}
        self.by_slug: Dict[str, Product] = {}
        for product in products:
            self.by_id[product.id] = product
            if not product.slug:
                continue
            if product.slug in self.by_slug:
                logger.warning(
                    f"Slug duplicado en el catálogo: '{product.slug}' ({product.id})")
                continue
            self.by_slug[product.slug] = product

    def slug_holder(self, slug: str) -> Optional[Product]:
        return self.by_slug.get(slug)


class JsonProductRepository(ProductRepositoryProtocol):
    """Repository for storing and retrieving products using a JSON file.

    Writes are read-check-write cycles performed under an exclusive
    ``portalocker`` lock on a sidecar ``.lock`` file, so the slug uniqueness
    constraint holds across threads and processes sharing the catalog.
    """

    BACKUP_SUFFIX = '.backup'
    MAX_BACKUPS = 5
    ENCODING = 'utf-8'
    LOCK_TIMEOUT = 10

    def __init__(
        self,
        file_name: str,
        base_path: Optional[str] = None,
        max_backups: Optional[int] = None,
        lock_timeout: Optional[float] = None,
    ):
        """
        Initialize the JsonProductRepository.

        Args:
            file_name (str): Name of the JSON file, or an absolute path
            base_path (str, optional): Base path for relative file names
            max_backups (int, optional): Backups to keep; 0 disables them
            lock_timeout (float, optional): Seconds to wait for the write lock
        """
        provided_path = Path(file_name)
        if provided_path.is_absolute():
            self._file_path = provided_path
            self._base_path = provided_path.parent
        else:
            self._base_path = Path(base_path) if base_path else Path.cwd()
            self._file_path = self._base_path / provided_path
        self._lock_path = self._file_path.with_suffix(self._file_path.suffix + '.lock')
        self._max_backups = self.MAX_BACKUPS if max_backups is None else max_backups
        self._lock_timeout = self.LOCK_TIMEOUT if lock_timeout is None else lock_timeout
        self._file_lock = threading.RLock()
        self._index: Optional[_CatalogIndex] = None
        self._signature: Optional[Tuple[int, int]] = None
        self._exclusive_depth = 0
        self._ensure_directory_exists()

    @property
    def file_path(self) -> Path:
        return self._file_path

    def _ensure_directory_exists(self) -> None:
        """Ensure that the directory for the JSON file exists."""
        try:
            self._file_path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageUnavailableError(
                f"Error al crear el directorio {self._file_path.parent}: {e}") from e

    def _create_backup(self) -> None:
        """Create a backup of the current data file."""
        if not self._max_backups or not self._file_path.exists():
            return
        timestamp = datetime.now().strftime('%Y%m%d_%H%M%S_%f')
        backup_path = self._file_path.with_suffix(f'{self.BACKUP_SUFFIX}_{timestamp}')
        try:
            shutil.copy2(self._file_path, backup_path)
            self._cleanup_old_backups()
        except OSError as e:
            logger.error(f"Error al crear copia de seguridad: {e}")
            raise ProductSaveError(f"Error al crear copia de seguridad: {e}") from e

    def _backup_files(self) -> List[Path]:
        pattern = f'{self._file_path.stem}{self.BACKUP_SUFFIX}_*'
        return sorted(self._file_path.parent.glob(pattern))

    def _cleanup_old_backups(self) -> None:
        """Remove old backup files keeping only the most recent ones."""
        backup_files = self._backup_files()
        while len(backup_files) > self._max_backups:
            try:
                backup_files[0].unlink()
                backup_files.pop(0)
            except OSError as e:
                logger.error(f"Error al eliminar copia de seguridad antigua: {e}")
                break

    @contextmanager
    def _open_file(self, mode: str = 'r'):
        """
        Context manager for safely opening and closing the JSON file with locking.
        """
        file_obj = None
        temp_path = self._file_path.with_suffix('.tmp')
        try:
            if 'w' in mode:
                file_obj = open(temp_path, mode, encoding=self.ENCODING)
                portalocker.lock(file_obj, portalocker.LOCK_EX)
            else:
                file_obj = open(self._file_path, mode, encoding=self.ENCODING)
                portalocker.lock(file_obj, portalocker.LOCK_SH)
            yield file_obj
            if 'w' in mode and file_obj:
                file_obj.flush()
                os.fsync(file_obj.fileno())
                portalocker.unlock(file_obj)
                file_obj.close()
                file_obj = None
                os.replace(temp_path, self._file_path)
        except (OSError, portalocker.exceptions.LockException) as e:
            raise StorageUnavailableError(
                f"Error al acceder al archivo {self._file_path}: {e}") from e
        finally:
            if file_obj:
                try:
                    portalocker.unlock(file_obj)
                    file_obj.close()
                except (OSError, portalocker.exceptions.LockException) as e:
                    logger.debug(f"Error al cerrar archivo: {e}")

    @contextmanager
    def _exclusive(self):
        """Serialize writers across threads and processes.

        Re-entrant for the thread already holding the lock.
        """
        with self._file_lock:
            if self._exclusive_depth:
                self._exclusive_depth += 1
                try:
                    yield
                finally:
                    self._exclusive_depth -= 1
                return
            lock = portalocker.Lock(
                str(self._lock_path),
                mode='a',
                timeout=self._lock_timeout,
            )
            try:
                lock.acquire()
            except (OSError, portalocker.exceptions.LockException) as e:
                raise StorageUnavailableError(
                    f"No se pudo bloquear el catálogo {self._file_path}: {e}") from e
            self._exclusive_depth = 1
            try:
                yield
            finally:
                self._exclusive_depth = 0
                lock.release()

    def _current_signature(self) -> Optional[Tuple[int, int]]:
        try:
            stat = self._file_path.stat()
        except FileNotFoundError:
            return None
        except OSError as e:
            raise ProductLoadError(f"Error al acceder al archivo {self._file_path}: {e}") from e
        return (stat.st_mtime_ns, stat.st_size)

    @with_file_lock
    def _read_index(self, force: bool = False) -> _CatalogIndex:
        """Return the indexed catalog, reloading it when the file changed."""
        signature = self._current_signature()
        if signature is None:
            self._index = _CatalogIndex([])
            self._signature = None
            return self._index
        if not force and self._index is not None and signature == self._signature:
            return self._index
        catalog = self._load_catalog()
        if any(not product.id for product in catalog.products):
            catalog = self._assign_missing_ids()
            signature = self._current_signature()
        self._index = _CatalogIndex(catalog.products, catalog.metadata.rev)
        self._signature = signature
        return self._index

    def _assign_missing_ids(self) -> ProductCatalog:
        """Give every stored record without an id a fresh one and persist it."""
        with self._exclusive():
            catalog = self._load_catalog()
            missing = [product for product in catalog.products if not product.id]
            if missing:
                for product in missing:
                    product.id = new_product_id()
                logger.warning(
                    f"Asignados identificadores a {len(missing)} productos sin id en {self._file_path}")
                catalog.metadata.rev += 1
                self._write_catalog(catalog.products, catalog.metadata.rev)
            return catalog

    def _load_catalog(self) -> ProductCatalog:
        try:
            with self._open_file('r') as file:
                data = json.load(file)
            if isinstance(data, list):
                return ProductCatalog.create([self._create_product(p) for p in data])
            return ProductCatalog.from_dict(data)
        except json.JSONDecodeError as e:
            error_msg = f"Error al analizar JSON en {self._file_path}: {e}"
            logger.error(error_msg)
            self._handle_corrupted_file()
            raise ProductLoadError(error_msg) from e
        except (ProductError, AttributeError, TypeError, ValueError) as e:
            error_msg = f"Datos de producto inválidos en {self._file_path}: {e}"
            logger.error(error_msg)
            raise ProductLoadError(error_msg) from e
        except StorageUnavailableError as e:
            raise ProductLoadError(str(e)) from e

    def _write_catalog(self, products: List[Product], rev: int) -> None:
        try:
            self._create_backup()
            catalog = ProductCatalog.create(products, rev=rev)
            with self._open_file('w') as file:
                json.dump(catalog.to_dict(), file, indent=2, ensure_ascii=False)
        except StorageUnavailableError as e:
            error_msg = f"Error al guardar productos: {e}"
            logger.error(error_msg)
            raise ProductSaveError(error_msg) from e
        self._index = None
        self._signature = None

    def _commit(self, mutate: Callable[[_CatalogIndex, List[Product]], bool]) -> None:
        """Apply ``mutate`` to a fresh copy of the catalog and persist it.

        ``mutate`` works on copies, may raise to abort, and returns False when
        nothing needs to be written.
        """
        with self._exclusive():
            index = self._read_index(force=True)
            products = [copy(p) for p in index.products]
            if mutate(index, products):
                self._write_catalog(products, index.rev + 1)

    def next_id(self) -> str:
        return new_product_id()

    def load_products(self) -> List[Product]:
        """Load products from the JSON file."""
        index = self._read_index()
        return sorted((copy(p) for p in index.products), key=lambda p: p.order)

    def iter_product_ids(self) -> Iterator[str]:
        """Yield product ids from a snapshot taken when iteration starts."""
        ids = [product.id for product in self._read_index().products]
        yield from ids

    def get_by_id(self, product_id: str) -> Optional[Product]:
        product = self._read_index().by_id.get(product_id)
        return copy(product) if product else None

    def get_by_slug(self, slug: str) -> Optional[Product]:
        product = self._read_index().slug_holder(slug)
        return copy(product) if product else None

    def slug_exists(self, slug: str, excluding_id: Optional[str] = None) -> bool:
        holder = self._read_index().slug_holder(slug)
        return holder is not None and holder.id != excluding_id

    def insert_product(self, product: Product) -> Product:
        """Store a new product, enforcing id and slug uniqueness."""
        if not product.id:
            raise ProductRepositoryError("El producto debe tener un identificador antes de guardarse.")
        stored = copy(product)

        def mutate(index: _CatalogIndex, products: List[Product]) -> bool:
            if stored.id in index.by_id:
                raise DuplicateProductIdError(f"Ya existe un producto con id {stored.id}.")
            if stored.slug and index.slug_holder(stored.slug) is not None:
                raise DuplicateSlugError(stored.slug)
            stored.order = len(products)
            stored.rev = 1
            products.append(stored)
            return True

        self._commit(mutate)
        return copy(stored)

    def update_product(self, product: Product, expected_rev: Optional[int] = None) -> Product:
        """Replace a stored product, enforcing slug uniqueness.

        When ``expected_rev`` is given the write is rejected with
        ``StaleProductError`` if the stored revision moved on.
        """
        if not product.id:
            raise ProductNotStoredError("El producto a actualizar no tiene identificador.")
        stored = copy(product)

        def mutate(index: _CatalogIndex, products: List[Product]) -> bool:
            current = index.by_id.get(stored.id)
            if current is None:
                raise ProductNotStoredError(f"Producto no encontrado: {stored.id}")
            if expected_rev is not None and current.rev != expected_rev:
                raise StaleProductError(
                    f"El producto {stored.id} fue modificado (rev {current.rev}).")
            if stored.slug:
                holder = index.slug_holder(stored.slug)
                if holder is not None and holder.id != stored.id:
                    raise DuplicateSlugError(stored.slug)
            stored.order = current.order
            stored.rev = current.rev + 1
            position = next(i for i, p in enumerate(products) if p.id == stored.id)
            products[position] = stored
            return True

        self._commit(mutate)
        return copy(stored)

    def assign_slug(self, product_id: str, slug: str) -> bool:
        """Set the slug of a product that has none yet.

        Returns False when the product is gone or already holds a slug.
        """
        if not product_id:
            raise ProductNotStoredError("No se puede asignar un slug sin identificador de producto.")
        assigned = False

        def mutate(index: _CatalogIndex, products: List[Product]) -> bool:
            nonlocal assigned
            current = index.by_id.get(product_id)
            if current is None or current.slug:
                return False
            holder = index.slug_holder(slug)
            if holder is not None and holder.id != product_id:
                raise DuplicateSlugError(slug)
            for product in products:
                if product.id == product_id:
                    product.slug = slug
                    product.rev += 1
            assigned = True
            return True

        self._commit(mutate)
        return assigned

    def delete_product(self, product_id: str) -> bool:
        """Remove a product, releasing its slug."""
        removed = False

        def mutate(index: _CatalogIndex, products: List[Product]) -> bool:
            nonlocal removed
            if product_id not in index.by_id:
                return False
            products[:] = [p for p in products if p.id != product_id]
            for position, product in enumerate(products):
                product.order = position
            removed = True
            return True

        self._commit(mutate)
        return removed

    def _handle_corrupted_file(self) -> None:
        """Handle corrupted data file by attempting to restore from backup."""
        latest_backup = self._find_latest_backup()
        if latest_backup:
            try:
                shutil.copy2(latest_backup, self._file_path)
                logger.info(f"Restaurado desde copia de seguridad: {latest_backup}")
            except OSError as e:
                logger.error(f"Error al restaurar desde copia de seguridad: {e}")

    def _find_latest_backup(self) -> Optional[Path]:
        """Find the most recent backup file."""
        backup_files = self._backup_files()
        return backup_files[-1] if backup_files else None

    @staticmethod
    def _create_product(data: Dict) -> Product:
        """
        Create a Product object from legacy list-format data.
        """
        if not isinstance(data, dict):
            raise ProductError(f"Registro de producto inválido: {data!r}")
        return Product.from_dict(data)
