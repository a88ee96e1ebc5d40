"""Translate search intents into Elasticsearch query and aggregation bodies.

Everything in this module is pure: category closures are resolved by the
caller and handed in as ``category_ids``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field

from app.services.category_closure import category_closure_filter
from constants import (
    DEFAULT_PAGE_SIZE,
    DEFAULT_PRICE_HISTOGRAM_INTERVAL,
    DEFAULT_SORT,
    DEFAULT_STATUS,
    FACET_BUCKET_SIZE,
    FLAG_BUCKET_SIZE,
    LEGACY_PRICE_FIELD,
    PRICE_FIELDS,
    SORT_FIELDS,
    SUPPORTED_CURRENCIES,
    TEXT_SEARCH_FIELDS,
    TEXT_SEARCH_FUZZINESS,
)

ANY_STATUS = "any"


class SearchQueryError(ValueError):
    """The search intent cannot be translated into a query."""


@dataclass
class PriceRange:
    min: float | None = None
    max: float | None = None

    def is_empty(self) -> bool:
        return self.min is None and self.max is None


@dataclass
class _FilterIntent:
    search_term: str | None = None
    category_slug: str | None = None
    category_slugs: list[str] = field(default_factory=list)
    price_range: PriceRange | None = None
    currency: str | None = None
    tags: list[str] = field(default_factory=list)
    statuses: list[str] = field(default_factory=list)
    availability: list[str] = field(default_factory=list)
    conditions: list[str] = field(default_factory=list)

    def __post_init__(self):
        self.currency = normalize_currency(self.currency)
        if self.search_term is not None:
            self.search_term = self.search_term.strip() or None
        if self.price_range is not None:
            low, high = self.price_range.min, self.price_range.max
            if low is not None and high is not None and low > high:
                raise SearchQueryError("priceMin must not be greater than priceMax")

    @property
    def needs_category_closure(self) -> bool:
        # An explicit slug list already states the full category intent.
        return bool(self.category_slug) and not self.category_slugs


@dataclass
class SearchIntent(_FilterIntent):
    sort: str | None = None
    page: int = 1
    page_size: int = DEFAULT_PAGE_SIZE

    def __post_init__(self):
        super().__post_init__()
        if self.page < 1:
            raise SearchQueryError("page must be 1 or greater")
        if self.page_size < 1:
            raise SearchQueryError("pageSize must be 1 or greater")


@dataclass
class AggregationIntent(_FilterIntent):
    histogram_interval: float = DEFAULT_PRICE_HISTOGRAM_INTERVAL

    @classmethod
    def from_search_intent(cls, intent: SearchIntent) -> "AggregationIntent":
        return cls(
            search_term=intent.search_term,
            category_slug=intent.category_slug,
            category_slugs=list(intent.category_slugs),
            price_range=intent.price_range,
            currency=intent.currency,
            tags=list(intent.tags),
            statuses=list(intent.statuses),
            availability=list(intent.availability),
            conditions=list(intent.conditions),
        )


def normalize_currency(currency):
    if currency is None or not str(currency).strip():
        return None
    code = str(currency).strip().upper()
    if code not in SUPPORTED_CURRENCIES:
        raise SearchQueryError(f"Unsupported currency: {currency}")
    return code


def price_field_for(currency) -> str:
    code = normalize_currency(currency)
    if code is None:
        return LEGACY_PRICE_FIELD
    return PRICE_FIELDS[code]


def sort_clause_for(sort, currency=None, has_text=False) -> list[dict]:
    if not sort:
        if has_text:
            return [{"_score": {"order": "desc"}}, {"id": {"order": "asc"}}]
        sort = DEFAULT_SORT
    name, _, direction = str(sort).partition(":")
    name = name.strip()
    direction = (direction.strip() or "asc").lower()
    if direction not in ("asc", "desc"):
        raise SearchQueryError(f"Unsupported sort direction: {direction}")
    if name == "price":
        target = price_field_for(currency)
    elif name in ("relevance", "_score"):
        target = "_score"
    elif name in SORT_FIELDS:
        target = SORT_FIELDS[name]
    else:
        raise SearchQueryError(f"Unsupported sort field: {name}")
    clause = [{target: {"order": direction}}]
    if target != "id":
        clause.append({"id": {"order": "asc"}})
    return clause


def _text_query(term):
    return {
        "bool": {
            "should": [
                {
                    "multi_match": {
                        "query": term,
                        "type": "best_fields",
                        "fields": list(TEXT_SEARCH_FIELDS),
                        "fuzziness": TEXT_SEARCH_FUZZINESS,
                        "fuzzy_transpositions": True,
                    }
                },
                {
                    "nested": {
                        "path": "tags",
                        "query": {
                            "match": {
                                "tags.name": {
                                    "query": term,
                                    "fuzziness": TEXT_SEARCH_FUZZINESS,
                                }
                            }
                        },
                    }
                },
            ],
            "minimum_should_match": 1,
        }
    }


def _price_filter(intent):
    price_range = intent.price_range
    if price_range is None or price_range.is_empty():
        return None
    bounds = {}
    if price_range.min is not None:
        bounds["gte"] = price_range.min
    if price_range.max is not None:
        bounds["lte"] = price_range.max
    return {"range": {price_field_for(intent.currency): bounds}}


def _filters(intent, category_ids, include_price):
    filters = []

    statuses = intent.statuses or [DEFAULT_STATUS]
    if ANY_STATUS not in statuses:
        filters.append({"terms": {"status": list(statuses)}})

    if intent.category_slugs:
        filters.append(
            {
                "bool": {
                    "should": [
                        {"terms": {"categorySlug": list(intent.category_slugs)}},
                        {"terms": {"parentCategorySlug": list(intent.category_slugs)}},
                    ],
                    "minimum_should_match": 1,
                }
            }
        )
    elif intent.category_slug:
        if category_ids is None:
            raise SearchQueryError(
                f"Category '{intent.category_slug}' must be resolved before querying"
            )
        filters.append(category_closure_filter(category_ids))

    if intent.tags:
        filters.append(
            {
                "nested": {
                    "path": "tags",
                    "query": {"terms": {"tags.slug": list(intent.tags)}},
                }
            }
        )
    if intent.availability:
        filters.append({"terms": {"availability": list(intent.availability)}})
    if intent.conditions:
        filters.append({"terms": {"condition": list(intent.conditions)}})

    if include_price:
        price_filter = _price_filter(intent)
        if price_filter:
            filters.append(price_filter)
    return filters


def _bool_query(intent, category_ids, include_price):
    must = [_text_query(intent.search_term)] if intent.search_term else [{"match_all": {}}]
    return {
        "bool": {
            "must": must,
            "filter": _filters(intent, category_ids, include_price),
        }
    }


def build_search_query(intent: SearchIntent, category_ids=None) -> dict:
    return {
        "query": _bool_query(intent, category_ids, include_price=True),
        "sort": sort_clause_for(intent.sort, intent.currency, has_text=bool(intent.search_term)),
        "from": (intent.page - 1) * intent.page_size,
        "size": intent.page_size,
        "track_total_hits": True,
    }


def build_aggregation_query(intent: AggregationIntent, category_ids=None) -> dict:
    # Price range stays out so the stats describe the whole slider range.
    aggs = {
        "categories": {"terms": {"field": "categorySlug", "size": FACET_BUCKET_SIZE}},
        "tags": {
            "nested": {"path": "tags"},
            "aggs": {"tag_terms": {"terms": {"field": "tags.slug", "size": FACET_BUCKET_SIZE}}},
        },
        "price_histogram": {
            "histogram": {
                "field": price_field_for(intent.currency),
                "interval": intent.histogram_interval,
            }
        },
        "availability": {"terms": {"field": "availability", "size": FLAG_BUCKET_SIZE}},
        "condition": {"terms": {"field": "condition", "size": FLAG_BUCKET_SIZE}},
        "subcategories": {
            "nested": {"path": "subcategories"},
            "aggs": {
                "subcategory_terms": {
                    "terms": {"field": "subcategories.slug", "size": FACET_BUCKET_SIZE}
                }
            },
        },
    }
    for currency in SUPPORTED_CURRENCIES:
        aggs[f"price_stats_{currency}"] = {"stats": {"field": PRICE_FIELDS[currency]}}
    return {
        "size": 0,
        "query": _bool_query(intent, category_ids, include_price=False),
        "aggs": aggs,
    }


def _total_hits(hits):
    total = hits.get("total", 0)
    if isinstance(total, dict):
        total = total.get("value", 0)
    return int(total or 0)


def parse_search_response(response, page, page_size) -> dict:
    hits = response.get("hits", {})
    total = _total_hits(hits)
    return {
        "hits": [hit.get("_source", {}) for hit in hits.get("hits", [])],
        "total": total,
        "page": page,
        "pageSize": page_size,
        "pageCount": math.ceil(total / page_size) if page_size else 0,
    }


def empty_search_page(page, page_size) -> dict:
    return {"hits": [], "total": 0, "page": page, "pageSize": page_size, "pageCount": 0}


def _empty_stats():
    return {"count": 0, "min": None, "max": None, "avg": None, "sum": 0.0}


def _stats(raw):
    if not raw:
        return _empty_stats()
    return {
        "count": raw.get("count", 0),
        "min": raw.get("min"),
        "max": raw.get("max"),
        "avg": raw.get("avg"),
        "sum": raw.get("sum", 0.0),
    }


def parse_aggregation_response(response) -> dict:
    aggs = response.get("aggregations") or {}

    def buckets(name, inner=None):
        node = aggs.get(name) or {}
        if inner:
            node = node.get(inner) or {}
        return node.get("buckets", [])

    return {
        "categories": buckets("categories"),
        "tags": buckets("tags", "tag_terms"),
        "priceStatsByCurrency": {
            currency: _stats(aggs.get(f"price_stats_{currency}"))
            for currency in SUPPORTED_CURRENCIES
        },
        "priceHistogram": buckets("price_histogram"),
        "availability": buckets("availability"),
        "condition": buckets("condition"),
        "subcategories": buckets("subcategories", "subcategory_terms"),
    }


def empty_aggregations() -> dict:
    return {
        "categories": [],
        "tags": [],
        "priceStatsByCurrency": {currency: _empty_stats() for currency in SUPPORTED_CURRENCIES},
        "priceHistogram": [],
        "availability": [],
        "condition": [],
        "subcategories": [],
    }
