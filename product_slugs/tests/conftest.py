from pathlib import Path

import pytest

from product_slugs.repositories import JsonProductRepository
from product_slugs.services import ProductService
from product_slugs.tests.test_support import InMemoryRepository


@pytest.fixture
def memory_repo() -> InMemoryRepository:
    return InMemoryRepository()


@pytest.fixture
def service(memory_repo: InMemoryRepository) -> ProductService:
    return ProductService(memory_repo)


@pytest.fixture
def json_repo(tmp_path: Path) -> JsonProductRepository:
    return JsonProductRepository(str(tmp_path / "products.json"))
