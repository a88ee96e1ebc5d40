"""Flattened search documents built from fully populated products.

The document is always a complete snapshot of the product and its
relations; nothing here performs I/O.
"""

from __future__ import annotations

from constants import (
    DEFAULT_AVAILABILITY,
    DEFAULT_CONDITION,
    DEFAULT_CURRENCY,
    DEFAULT_STATUS,
)
from helpers import isoformat


def _keyword_text(**extra):
    field = {
        "type": "text",
        "analyzer": "standard",
        "fields": {"keyword": {"type": "keyword", "ignore_above": 256}},
    }
    field.update(extra)
    return field


_CATEGORY_REF = {
    "properties": {
        "id": {"type": "integer"},
        "name": _keyword_text(),
        "slug": {"type": "keyword"},
        "description": {"type": "text"},
    }
}

PRODUCT_INDEX_MAPPING = {
    "properties": {
        "id": {"type": "integer"},
        "title": _keyword_text(),
        "slug": {"type": "keyword"},
        "sku": {"type": "keyword"},
        "description": _keyword_text(),
        "price": {"type": "float"},
        "priceUSD": {"type": "float"},
        "priceEUR": {"type": "float"},
        "priceUAH": {"type": "float"},
        "currency": {"type": "keyword"},
        "status": {"type": "keyword"},
        "viewsCount": {"type": "integer"},
        "createdAt": {"type": "date"},
        "updatedAt": {"type": "date"},
        "publishedAt": {"type": "date"},
        "category": {
            "properties": {
                "id": {"type": "integer"},
                "name": _keyword_text(),
                "slug": {"type": "keyword"},
                "description": {"type": "text"},
                "parent": {
                    "properties": {
                        "id": {"type": "integer"},
                        "name": _keyword_text(),
                        "slug": {"type": "keyword"},
                    }
                },
            }
        },
        "categoryHierarchy": {"type": "nested", **_CATEGORY_REF},
        "categoryId": {"type": "integer"},
        "categoryName": {"type": "keyword"},
        "categorySlug": {"type": "keyword"},
        "parentCategoryId": {"type": "integer"},
        "parentCategoryName": {"type": "keyword"},
        "parentCategorySlug": {"type": "keyword"},
        "tags": {
            "type": "nested",
            "properties": {
                "id": {"type": "integer"},
                "name": _keyword_text(),
                "slug": {"type": "keyword"},
            },
        },
        "seller": {
            "properties": {
                "id": {"type": "integer"},
                "username": {"type": "keyword"},
                "email": {"type": "keyword"},
                "avatarUrl": {"type": "keyword", "index": False},
                "country": {"type": "keyword"},
                "metadata": {
                    "properties": {
                        "companyName": _keyword_text(),
                        "businessType": {"type": "keyword"},
                    }
                },
            }
        },
        "images": {
            "type": "nested",
            "properties": {
                "id": {"type": "integer"},
                "name": {"type": "keyword"},
                "url": {"type": "keyword"},
                "mime": {"type": "keyword"},
                "size": {"type": "integer"},
            },
        },
        "subcategories": {"type": "nested", **_CATEGORY_REF},
        "attributesJson": {"type": "object", "enabled": False},
        "availability": {"type": "keyword"},
        "condition": {"type": "keyword"},
        "videoUrl": {"type": "keyword", "index": False},
        "avatarUrl": {"type": "keyword", "index": False},
        "country": {"type": "keyword"},
    }
}


def _price(value):
    try:
        return float(value) if value is not None else 0.0
    except (TypeError, ValueError):
        return 0.0


def _category_ref(category, with_description=True):
    ref = {"id": category.id, "name": category.name, "slug": category.slug}
    if with_description:
        ref["description"] = category.description
    return ref


def category_hierarchy(category) -> list[dict]:
    """Direct category first, then each ancestor up to the root."""
    hierarchy = []
    seen = set()
    node = category
    while node is not None and node.id not in seen:
        seen.add(node.id)
        hierarchy.append(_category_ref(node))
        node = node.parent
    return hierarchy


def _category_block(category):
    if category is None:
        return None
    block = _category_ref(category)
    parent = category.parent
    block["parent"] = _category_ref(parent, with_description=False) if parent else None
    return block


def _seller_block(seller):
    if seller is None:
        return None
    meta = seller.seller_meta
    return {
        "id": seller.id,
        "username": seller.username,
        "email": seller.email,
        "avatarUrl": meta.avatar_url if meta else None,
        "country": meta.country if meta else None,
        "metadata": (
            {"companyName": meta.company_name, "businessType": meta.business_type}
            if meta
            else None
        ),
    }


def map_product_to_document(product) -> dict:
    attributes = dict(product.attributes_json or {})
    category = product.category
    parent = category.parent if category is not None else None
    seller = _seller_block(product.seller)
    return {
        "id": product.id,
        "title": product.title,
        "slug": product.slug,
        "sku": product.sku,
        "description": product.description,
        "price": _price(product.price),
        "priceUSD": _price(product.price_usd),
        "priceEUR": _price(product.price_eur),
        "priceUAH": _price(product.price_uah),
        "currency": product.currency or DEFAULT_CURRENCY,
        "status": product.status or DEFAULT_STATUS,
        "viewsCount": product.views_count or 0,
        "createdAt": isoformat(product.created_at),
        "updatedAt": isoformat(product.updated_at),
        "publishedAt": isoformat(product.published_at),
        "category": _category_block(category),
        "categoryHierarchy": category_hierarchy(category),
        "categoryId": category.id if category is not None else None,
        "categoryName": category.name if category is not None else None,
        "categorySlug": category.slug if category is not None else None,
        "parentCategoryId": parent.id if parent is not None else None,
        "parentCategoryName": parent.name if parent is not None else None,
        "parentCategorySlug": parent.slug if parent is not None else None,
        "tags": [
            {"id": tag.id, "name": tag.name, "slug": tag.slug}
            for tag in sorted(product.tags or [], key=lambda tag: tag.id)
        ],
        "seller": seller,
        "images": [
            {
                "id": image.id,
                "name": image.name,
                "url": image.url,
                "mime": image.mime,
                "size": image.size,
            }
            for image in sorted(product.images or [], key=lambda image: image.id)
        ],
        "subcategories": [
            _category_ref(subcategory)
            for subcategory in sorted(product.subcategories or [], key=lambda item: item.id)
        ],
        "attributesJson": attributes,
        "availability": product.availability or attributes.get("availability") or DEFAULT_AVAILABILITY,
        "condition": product.condition or attributes.get("condition") or DEFAULT_CONDITION,
        "videoUrl": product.video_url,
        "avatarUrl": seller["avatarUrl"] if seller else None,
        "country": seller["country"] if seller else None,
    }


def document_version(product) -> int | None:
    """Epoch milliseconds of the last primary-store update."""
    if product.updated_at is None:
        return None
    return int(product.updated_at.timestamp() * 1000)
