from __future__ import annotations

import logging
from collections import deque

from sqlalchemy.exc import SQLAlchemyError


logger = logging.getLogger(__name__)


class CategoryResolutionError(RuntimeError):
    """The primary store could not be reached while resolving a category."""


class CategoryClosureResolver:
    """Expand a category slug into its id plus every descendant id.

    One instance is meant to live for a single request: resolved slugs are
    cached on the instance, and each visited node costs one child lookup.
    """

    def __init__(self, store):
        self.store = store
        self._cache: dict[str, list[int]] = {}

    def resolve(self, category_slug: str) -> list[int]:
        if category_slug in self._cache:
            return list(self._cache[category_slug])
        try:
            closure = self._resolve(category_slug)
        except SQLAlchemyError as exc:
            raise CategoryResolutionError(
                f"Could not resolve category '{category_slug}': {exc}"
            ) from exc
        self._cache[category_slug] = closure
        return list(closure)

    def _resolve(self, category_slug):
        category = self.store.find_category_by_slug(category_slug)
        if category is None:
            logger.info("Category with slug %r not found", category_slug)
            return []

        closure = [category.id]
        visited = {category.id}
        pending = deque([category.id])
        while pending:
            parent_id = pending.popleft()
            for child in self.store.find_child_categories(parent_id):
                if child.id in visited:
                    logger.warning(
                        "Category cycle detected: %s is already part of the closure of %r",
                        child.id,
                        category_slug,
                    )
                    continue
                visited.add(child.id)
                closure.append(child.id)
                pending.append(child.id)
        return closure


def category_closure_filter(category_ids):
    """Match documents whose category, or its parent, is in the closure."""
    return {
        "bool": {
            "should": [
                {"terms": {"categoryId": list(category_ids)}},
                {"terms": {"parentCategoryId": list(category_ids)}},
            ],
            "minimum_should_match": 1,
        }
    }
