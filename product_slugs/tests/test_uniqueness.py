from typing import Dict, List, Optional

import pytest

from product_slugs.models import InvalidSlugError
from product_slugs.repositories import StorageUnavailableError
from product_slugs.tests.test_support import ID_A, ID_B
from product_slugs.uniqueness import SlugProbeLimitError, resolve_unique_slug


class FakeSlugStore:
    def __init__(self, taken: Dict[str, str]):
        self.taken = taken
        self.calls: List[str] = []

    def __call__(self, slug: str, excluding_id: Optional[str]) -> bool:
        self.calls.append(slug)
        holder = self.taken.get(slug)
        return holder is not None and holder != excluding_id


def test_free_candidate_is_used_unsuffixed() -> None:
    store = FakeSlugStore({})
    assert resolve_unique_slug("bark-t-shirt", ID_A, store) == "bark-t-shirt"
    assert store.calls == ["bark-t-shirt"]


def test_collisions_probe_increasing_suffixes() -> None:
    store = FakeSlugStore({
        "bark-t-shirt": ID_B,
        "bark-t-shirt-1": ID_B,
        "bark-t-shirt-2": ID_B,
    })
    assert resolve_unique_slug("bark-t-shirt", ID_A, store) == "bark-t-shirt-3"
    assert store.calls == [
        "bark-t-shirt",
        "bark-t-shirt-1",
        "bark-t-shirt-2",
        "bark-t-shirt-3",
    ]


def test_own_slug_is_not_a_collision() -> None:
    store = FakeSlugStore({"bark-t-shirt": ID_A})
    assert resolve_unique_slug("bark-t-shirt", ID_A, store) == "bark-t-shirt"


def test_identifier_shaped_candidate_is_skipped() -> None:
    store = FakeSlugStore({})
    assert resolve_unique_slug(ID_B, ID_A, store) == f"{ID_B}-1"
    assert store.calls == [f"{ID_B}-1"]


def test_bounded_probe_raises_instead_of_guessing() -> None:
    store = FakeSlugStore({"tee": ID_B, "tee-1": ID_B})
    with pytest.raises(SlugProbeLimitError):
        resolve_unique_slug("tee", ID_A, store, max_probes=2)
    assert resolve_unique_slug("tee", ID_A, store, max_probes=3) == "tee-2"


def test_storage_failure_propagates() -> None:
    def broken(slug: str, excluding_id: Optional[str]) -> bool:
        raise StorageUnavailableError("down")

    with pytest.raises(StorageUnavailableError):
        resolve_unique_slug("tee", ID_A, broken)


@pytest.mark.parametrize("candidate", ["", "Bad Slug", "-tee"])
def test_invalid_candidate_is_rejected(candidate: str) -> None:
    with pytest.raises(InvalidSlugError):
        resolve_unique_slug(candidate, ID_A, FakeSlugStore({}))
