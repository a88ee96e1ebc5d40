from __future__ import annotations

import time
import traceback
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.services.catalog_store import CatalogStore, PopulateProfile
from app.services.product_events import ProductDeleted
from app.services.search_documents import document_version, map_product_to_document
from app.services.search_service import BulkItemFailure, BulkResult
from models import SyncLog


class ProductIndexer:
    """Keeps the products index in step with the primary store.

    ``index_one``/``remove_one`` run on the product write path and never
    raise: failures are logged and reported through the notifier, and the
    next successful write or bulk resync repairs the document.
    ``reindex_all`` is the standalone resync job; it drops the index first and
    must not run concurrently with itself.
    """

    def __init__(self, app, search_service, session_factory, notifier):
        self.app = app
        self.search_service = search_service
        self.session_factory = session_factory
        self.notifier = notifier

    def handle_event(self, product_event):
        if isinstance(product_event, ProductDeleted):
            self.remove_one(product_event.product_id, product_event.title)
        else:
            self.index_one(product_event.product_id, product_event.title)

    def index_one(self, product_id, title=None) -> bool:
        if not self.search_service.is_enabled():
            return False
        session = self.session_factory()
        try:
            product = CatalogStore(session).find_product_by_id(product_id, PopulateProfile.PRODUCT_FULL)
            if product is None:
                self.app.logger.info("Product %s not found, nothing to index", product_id)
                return False
            title = product.title
            document = map_product_to_document(product)
            written = self.search_service.upsert(document, version=document_version(product))
            if written:
                self.app.logger.info("Product %s indexed in Elasticsearch", product_id)
            return written
        except Exception as exc:
            self._report_failure(product_id, title, exc, "index")
            return False
        finally:
            session.close()

    def remove_one(self, product_id, title=None) -> bool:
        if not self.search_service.is_enabled():
            return False
        try:
            removed = self.search_service.remove(product_id)
        except Exception as exc:
            self._report_failure(product_id, title, exc, "remove")
            return False
        if removed:
            self.app.logger.info("Product %s removed from Elasticsearch", product_id)
        return removed

    def _report_failure(self, product_id, title, exc, action):
        self.app.logger.error(
            "Failed to %s product %s (%s) in Elasticsearch: %s",
            action,
            product_id,
            title or "Unknown",
            exc,
        )
        try:
            self.notifier.notify_sync_failure(product_id, title or "Unknown", str(exc))
        except Exception:
            self.app.logger.exception("Failed to send sync failure notification for product %s", product_id)

    def reindex_all(self, batch_size=None, triggered_by="Manual reindex") -> BulkResult:
        session = self.session_factory()
        started = time.monotonic()
        try:
            log = SyncLog(started_at=datetime.utcnow(), status="IN_PROGRESS", triggered_by=triggered_by)
            session.add(log)
            session.commit()
            try:
                result = self._reindex(session, batch_size)
            except Exception as exc:
                self._record_failed_sync(session, log)
                self.app.logger.error("Bulk resync failed: %s", exc)
                self.notifier.notify_bulk_sync(
                    False,
                    {"error": str(exc), "duration": time.monotonic() - started},
                )
                raise

            log.status = "SUCCESS" if result.ok else "PARTIAL"
            log.completed_at = datetime.utcnow()
            log.total_fetched = result.total
            log.indexed_count = len(result.succeeded)
            log.failed_count = len(result.failed)
            if result.failed:
                log.error_message = "\n".join(f"{item.id}: {item.error}" for item in result.failed)
            session.commit()
        finally:
            session.close()

        self.app.logger.info(
            "Bulk resync finished: %s of %s products indexed",
            len(result.succeeded),
            result.total,
        )
        self.notifier.notify_bulk_sync(
            result.ok,
            {
                "total": result.total,
                "succeeded": len(result.succeeded),
                "failed": len(result.failed),
                "duration": time.monotonic() - started,
            },
        )
        return result

    def _record_failed_sync(self, session, log):
        # Called inside the except block so format_exc sees the resync error.
        error_message = traceback.format_exc()
        log_id = log.id
        try:
            session.rollback()
            log.status = "FAILED"
            log.completed_at = datetime.utcnow()
            log.error_message = error_message
            session.commit()
        except SQLAlchemyError:
            self.app.logger.exception("Could not record failed sync %s", log_id)
            session.rollback()

    def _reindex(self, session, batch_size):
        self.search_service.rebuild_index()
        products = CatalogStore(session).find_all_products(PopulateProfile.PRODUCT_FULL)
        self.app.logger.info("Found %s products to sync", len(products))

        documents = []
        mapping_failures = []
        for product in products:
            try:
                documents.append(map_product_to_document(product))
            except Exception as exc:
                self.app.logger.error("Error preparing product %s (%s): %s", product.id, product.title, exc)
                mapping_failures.append(BulkItemFailure(id=str(product.id), status=None, error=str(exc)))

        result = self.search_service.bulk_upsert(documents, batch_size)
        result.total += len(mapping_failures)
        result.failed.extend(mapping_failures)

        self.search_service.refresh()
        self.search_service.update_replicas(self.app.config.get("ELASTICSEARCH_REPLICAS", 1))
        return result
