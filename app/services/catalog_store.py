from __future__ import annotations

from enum import Enum

from constants import (
    CATEGORY_WITH_PARENT_EAGER_OPTIONS,
    DEFAULT_PRODUCT_CHUNK_SIZE,
    PRODUCT_FULL_EAGER_OPTIONS,
)
from models import Category, Product


class PopulateProfile(Enum):
    """Named relation-loading profiles for primary store reads."""

    PRODUCT_FULL = "product_full"
    CATEGORY_WITH_PARENT = "category_with_parent"
    CATEGORY_ONLY = "category_only"


_PROFILE_OPTIONS = {
    PopulateProfile.PRODUCT_FULL: PRODUCT_FULL_EAGER_OPTIONS,
    PopulateProfile.CATEGORY_WITH_PARENT: CATEGORY_WITH_PARENT_EAGER_OPTIONS,
    PopulateProfile.CATEGORY_ONLY: [],
}


def loader_options(profile: PopulateProfile):
    return list(_PROFILE_OPTIONS[profile])


class CatalogStore:
    """Read-only access to products and categories in the primary store."""

    def __init__(self, session):
        if session is None:
            raise RuntimeError("Database session is required for catalog reads")
        self.session = session

    def find_product_by_id(self, product_id, profile=PopulateProfile.PRODUCT_FULL):
        return (
            self.session.query(Product)
            .options(*loader_options(profile))
            .filter(Product.id == product_id)
            .one_or_none()
        )

    def find_all_products(
        self,
        profile=PopulateProfile.PRODUCT_FULL,
        chunk_size: int = DEFAULT_PRODUCT_CHUNK_SIZE,
    ) -> list[Product]:
        products = []
        last_id = 0
        while True:
            batch = (
                self.session.query(Product)
                .options(*loader_options(profile))
                .filter(Product.id > last_id)
                .order_by(Product.id)
                .limit(chunk_size)
                .all()
            )
            if not batch:
                break
            products.extend(batch)
            last_id = batch[-1].id
        return products

    def find_category_by_slug(self, slug, profile=PopulateProfile.CATEGORY_ONLY):
        if not slug:
            return None
        return (
            self.session.query(Category)
            .options(*loader_options(profile))
            .filter(Category.slug == slug)
            .first()
        )

    def find_category_by_id(self, category_id, profile=PopulateProfile.CATEGORY_WITH_PARENT):
        if category_id is None:
            return None
        return (
            self.session.query(Category)
            .options(*loader_options(profile))
            .filter(Category.id == category_id)
            .one_or_none()
        )

    def find_child_categories(self, parent_id) -> list[Category]:
        return (
            self.session.query(Category)
            .filter(Category.parent_id == parent_id)
            .order_by(Category.id)
            .all()
        )
