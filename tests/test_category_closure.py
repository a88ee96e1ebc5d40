import pytest
from sqlalchemy.exc import OperationalError

from app.services.catalog_store import CatalogStore
from app.services.category_closure import (
    CategoryClosureResolver,
    CategoryResolutionError,
    category_closure_filter,
)
from conftest import make_category


@pytest.fixture
def tree(db):
    root = make_category(db, "Root")
    a = make_category(db, "A", parent=root)
    b = make_category(db, "B", parent=a)
    c = make_category(db, "C", parent=b)
    sibling = make_category(db, "Sibling", parent=a)
    return {"root": root, "a": a, "b": b, "c": c, "sibling": sibling}


class CountingStore(CatalogStore):
    def __init__(self, session):
        super().__init__(session)
        self.child_lookups = 0

    def find_child_categories(self, parent_id):
        self.child_lookups += 1
        return super().find_child_categories(parent_id)


def test_closure_contains_category_and_all_descendants(db, tree):
    resolver = CategoryClosureResolver(CatalogStore(db))

    closure = resolver.resolve("a")

    assert closure[0] == tree["a"].id
    assert set(closure) == {tree["a"].id, tree["b"].id, tree["c"].id, tree["sibling"].id}
    assert len(closure) == len(set(closure))


def test_leaf_closure_is_just_itself(db, tree):
    resolver = CategoryClosureResolver(CatalogStore(db))

    assert resolver.resolve("c") == [tree["c"].id]


def test_unknown_slug_resolves_to_empty_closure(db, tree):
    resolver = CategoryClosureResolver(CatalogStore(db))

    assert resolver.resolve("does-not-exist") == []


def test_resolution_is_cached_per_resolver(db, tree):
    store = CountingStore(db)
    resolver = CategoryClosureResolver(store)

    first = resolver.resolve("a")
    lookups = store.child_lookups
    second = resolver.resolve("a")

    assert first == second
    assert lookups == 4
    assert store.child_lookups == lookups


def test_cycle_terminates_with_deduplicated_closure(db):
    first = make_category(db, "Loop One")
    second = make_category(db, "Loop Two", parent=first)
    first.parent = second
    db.commit()

    closure = CategoryClosureResolver(CatalogStore(db)).resolve("loop-one")

    assert sorted(closure) == sorted([first.id, second.id])


class BrokenStore:
    def find_category_by_slug(self, slug, profile=None):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))


def test_store_failure_surfaces_as_resolution_error():
    resolver = CategoryClosureResolver(BrokenStore())

    with pytest.raises(CategoryResolutionError):
        resolver.resolve("anything")


def test_closure_filter_matches_category_or_parent():
    clause = category_closure_filter([1, 2])

    assert clause["bool"]["minimum_should_match"] == 1
    assert {"terms": {"categoryId": [1, 2]}} in clause["bool"]["should"]
    assert {"terms": {"parentCategoryId": [1, 2]}} in clause["bool"]["should"]
