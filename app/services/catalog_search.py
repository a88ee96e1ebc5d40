from __future__ import annotations

from app.services.search_queries import (
    AggregationIntent,
    SearchIntent,
    build_aggregation_query,
    build_search_query,
    empty_aggregations,
    empty_search_page,
    parse_aggregation_response,
    parse_search_response,
)


class CatalogSearch:
    """Query side of the products index.

    Errors propagate: an unreachable engine or primary store is reported
    to the caller instead of being passed off as "no matches".
    """

    def __init__(self, search_service, closure_resolver):
        self.search_service = search_service
        self.closure_resolver = closure_resolver

    def _category_ids(self, intent):
        if not intent.needs_category_closure:
            return None
        return self.closure_resolver.resolve(intent.category_slug)

    def search(self, intent: SearchIntent) -> dict:
        category_ids = self._category_ids(intent)
        if category_ids is not None and not category_ids:
            return empty_search_page(intent.page, intent.page_size)
        body = build_search_query(intent, category_ids)
        response = self.search_service.execute_search(body)
        return parse_search_response(response, intent.page, intent.page_size)

    def aggregate(self, intent: AggregationIntent) -> dict:
        category_ids = self._category_ids(intent)
        if category_ids is not None and not category_ids:
            return empty_aggregations()
        body = build_aggregation_query(intent, category_ids)
        response = self.search_service.execute_search(body)
        return parse_aggregation_response(response)
