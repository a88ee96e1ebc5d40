from __future__ import annotations

import argparse
import os

os.environ.setdefault("ELASTICSEARCH_ENSURE_INDEX_ON_STARTUP", "0")

from app import create_app
from app.services.search_service import SearchIndexError


def _parse_args(argv):
    parser = argparse.ArgumentParser(description="Drop, recreate and refill the products index.")
    parser.add_argument("--batch-size", type=int, default=None, help="documents per bulk request")
    parser.add_argument("--triggered-by", default="Manual reindex")
    return parser.parse_args(argv)


def main(argv=None, app=None) -> int:
    args = _parse_args(argv)
    app = app or create_app()
    with app.app_context():
        indexer = app.extensions["product_indexer"]
        if not indexer.search_service.is_enabled():
            print("Elasticsearch is disabled or missing. Set ELASTICSEARCH_ENABLED=1.")
            return 1
        if args.batch_size is not None and args.batch_size < 1:
            print("--batch-size must be positive.")
            return 2
        if not indexer.search_service.ping():
            print("Elasticsearch is not reachable. Check ELASTICSEARCH_URL.")
            return 1

        print("Starting Elasticsearch sync...")
        try:
            result = indexer.reindex_all(batch_size=args.batch_size, triggered_by=args.triggered_by)
        except SearchIndexError as exc:
            print(f"Sync failed: {exc}")
            return 1

        print(f"Batches: {result.batches}")
        print(f"Indexed {len(result.succeeded)} / {result.total} products.")
        if result.failed:
            print(f"{len(result.failed)} products failed:")
            for item in result.failed:
                print(f"  - {item.id}: {item.error}")
            return 1
        print(f"Index now holds {indexer.search_service.count_documents()} documents.")
        print("Done.")
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
