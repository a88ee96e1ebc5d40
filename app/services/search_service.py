from __future__ import annotations

from dataclasses import dataclass, field

from elasticsearch import (
    ApiError,
    ConflictError,
    Elasticsearch,
    NotFoundError,
    TransportError,
)
from flask import current_app

from app.services.search_documents import PRODUCT_INDEX_MAPPING
from constants import DEFAULT_BULK_BATCH_SIZE, DEFAULT_PRODUCTS_INDEX, SERVERLESS_HOST_MARKERS

ENGINE_ERRORS = (ApiError, TransportError)


class SearchIndexError(RuntimeError):
    pass


class IndexWriteError(SearchIndexError):
    pass


class SearchUnavailableError(SearchIndexError):
    pass


@dataclass
class BulkItemFailure:
    id: str
    status: int | None
    error: str


@dataclass
class BulkResult:
    total: int = 0
    succeeded: list[str] = field(default_factory=list)
    failed: list[BulkItemFailure] = field(default_factory=list)
    batches: int = 0

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def partial(self) -> bool:
        return bool(self.failed) and bool(self.succeeded)

    def add_failure(self, doc_id, status, error):
        self.failed.append(BulkItemFailure(id=str(doc_id), status=status, error=str(error)))


def _chunked(values, chunk_size):
    for idx in range(0, len(values), chunk_size):
        yield values[idx : idx + chunk_size]


def _body(response):
    return getattr(response, "body", response)


def _item_error(error):
    if isinstance(error, dict):
        reason = error.get("reason") or ""
        kind = error.get("type") or "error"
        return f"{kind}: {reason}".strip()
    return str(error)


class ProductSearchService:
    """Read and write access to the products index."""

    def __init__(self, app=None, client=None):
        self.app = app or current_app
        self._es = client

    def is_enabled(self) -> bool:
        return bool(self.app.config.get("ELASTICSEARCH_ENABLED", False))

    def _client(self):
        if self._es is not None:
            return self._es
        url = self.app.config.get("ELASTICSEARCH_URL")
        if not url:
            return None
        timeout = self.app.config.get("ELASTICSEARCH_TIMEOUT", 5)
        verify_certs = bool(self.app.config.get("ELASTICSEARCH_VERIFY_CERTS", False))
        api_key = self.app.config.get("ELASTICSEARCH_API_KEY")
        username = self.app.config.get("ELASTICSEARCH_USERNAME")
        password = self.app.config.get("ELASTICSEARCH_PASSWORD")
        kwargs = {
            "request_timeout": timeout,
            "verify_certs": verify_certs,
        }
        if api_key:
            kwargs["api_key"] = api_key
        elif username and password:
            kwargs["basic_auth"] = (username, password)
        self._es = Elasticsearch(url, **kwargs)
        return self._es

    def _require_client(self, error_cls):
        if not self.is_enabled():
            raise error_cls("Elasticsearch is disabled")
        client = self._client()
        if client is None:
            raise error_cls("ELASTICSEARCH_URL is not configured")
        return client

    def _index_name(self) -> str:
        return self.app.config.get("ELASTICSEARCH_INDEX", DEFAULT_PRODUCTS_INDEX)

    def _is_serverless(self) -> bool:
        url = self.app.config.get("ELASTICSEARCH_URL") or ""
        return any(marker in url for marker in SERVERLESS_HOST_MARKERS)

    def ping(self) -> bool:
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        try:
            return bool(client.ping())
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Elasticsearch ping failed: %s", exc)
            return False

    def ensure_index(self, mapping=None) -> bool:
        """Create the index when it is missing; never drops existing data."""
        if not self.is_enabled():
            return False
        client = self._client()
        if client is None:
            return False
        index = self._index_name()
        try:
            if client.indices.exists(index=index):
                return True
            client.indices.create(index=index, mappings=mapping or PRODUCT_INDEX_MAPPING)
            self.app.logger.info("Created Elasticsearch index %s", index)
            return True
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Elasticsearch index setup failed: %s", exc)
            return False

    def rebuild_index(self, mapping=None):
        """Drop and recreate the index. Only the bulk resync job may call this."""
        client = self._require_client(IndexWriteError)
        index = self._index_name()
        try:
            if client.indices.exists(index=index):
                self.app.logger.info("Index %s already exists, deleting", index)
                client.indices.delete(index=index)
            client.indices.create(index=index, mappings=mapping or PRODUCT_INDEX_MAPPING)
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Elasticsearch rebuild failed: %s", exc)
            raise IndexWriteError(f"Could not rebuild index {index}: {exc}") from exc
        self.app.logger.info("Recreated Elasticsearch index %s", index)

    def count_documents(self) -> int | None:
        if not self.is_enabled():
            return None
        client = self._client()
        if client is None:
            return None
        try:
            response = _body(client.count(index=self._index_name()))
            return int(response.get("count", 0))
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Elasticsearch count failed: %s", exc)
            return None

    def upsert(self, document: dict, version: int | None = None) -> bool:
        """Write the full document under its product id.

        Returns False when versioned writes are on and the index already
        holds a newer version of the document.
        """
        client = self._require_client(IndexWriteError)
        kwargs = {}
        if version is not None and self.app.config.get("ELASTICSEARCH_VERSIONED_WRITES", False):
            kwargs = {"version": version, "version_type": "external_gte"}
        doc_id = str(document["id"])
        try:
            client.index(index=self._index_name(), id=doc_id, document=document, **kwargs)
        except ConflictError:
            self.app.logger.info("Skipped stale write for product %s (version %s)", doc_id, version)
            return False
        except ENGINE_ERRORS as exc:
            raise IndexWriteError(f"Could not index product {doc_id}: {exc}") from exc
        return True

    def remove(self, product_id) -> bool:
        """Delete a product document; an already missing document is not an error."""
        client = self._require_client(IndexWriteError)
        try:
            client.delete(index=self._index_name(), id=str(product_id))
        except NotFoundError:
            self.app.logger.info("Product %s not found in Elasticsearch", product_id)
            return False
        except ENGINE_ERRORS as exc:
            raise IndexWriteError(f"Could not remove product {product_id}: {exc}") from exc
        return True

    def bulk_upsert(self, documents, batch_size: int | None = None) -> BulkResult:
        batch_size = batch_size or self.app.config.get(
            "ELASTICSEARCH_BATCH_SIZE", DEFAULT_BULK_BATCH_SIZE
        )
        if batch_size < 1:
            raise ValueError("batch_size must be positive")
        client = self._require_client(IndexWriteError)
        index = self._index_name()
        documents = list(documents)
        result = BulkResult(total=len(documents))
        total_batches = (len(documents) + batch_size - 1) // batch_size

        for batch_number, batch in enumerate(_chunked(documents, batch_size), start=1):
            operations = []
            for document in batch:
                operations.append({"index": {"_index": index, "_id": str(document["id"])}})
                operations.append(document)
            result.batches += 1
            try:
                response = client.bulk(operations=operations, refresh=False)
            except ENGINE_ERRORS as exc:
                self.app.logger.warning(
                    "Bulk batch %s/%s failed: %s", batch_number, total_batches, exc
                )
                for document in batch:
                    result.add_failure(document["id"], None, exc)
                continue

            batch_failures = []
            for item in _body(response).get("items", []):
                outcome = item.get("index") or next(iter(item.values()), {})
                doc_id = str(outcome.get("_id"))
                if outcome.get("error"):
                    result.add_failure(doc_id, outcome.get("status"), _item_error(outcome["error"]))
                    batch_failures.append(doc_id)
                else:
                    result.succeeded.append(doc_id)
            if batch_failures:
                self.app.logger.warning(
                    "Some documents failed in batch %s/%s: %s",
                    batch_number,
                    total_batches,
                    ", ".join(batch_failures),
                )
            self.app.logger.info(
                "Batch %s/%s completed (%s documents)", batch_number, total_batches, len(batch)
            )
        return result

    def refresh(self):
        client = self._require_client(IndexWriteError)
        try:
            client.indices.refresh(index=self._index_name())
        except ENGINE_ERRORS as exc:
            raise IndexWriteError(f"Could not refresh index: {exc}") from exc

    def update_replicas(self, count: int) -> bool:
        if self._is_serverless():
            self.app.logger.info("Serverless deployment, skipping replica settings")
            return False
        client = self._require_client(IndexWriteError)
        try:
            client.indices.put_settings(
                index=self._index_name(),
                settings={"index": {"number_of_replicas": count}},
            )
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Could not update index settings: %s", exc)
            return False
        return True

    def execute_search(self, body: dict) -> dict:
        client = self._require_client(SearchUnavailableError)
        try:
            return _body(client.search(index=self._index_name(), body=body))
        except ENGINE_ERRORS as exc:
            self.app.logger.warning("Elasticsearch search failed: %s", exc)
            raise SearchUnavailableError(f"Search is unavailable: {exc}") from exc
