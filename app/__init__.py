import os

from flask import Flask, g, jsonify

from database import SessionFactory, SessionLocal, init_db
from helpers import parse_bool, parse_int
from app.blueprints.currency import currency_bp
from app.blueprints.products import products_bp
from app.services.currency_rates import CurrencyRateCache
from app.services.notifications import SyncFailureNotifier
from app.services.product_events import ProductEventBus, install_session_hooks
from app.services.search_indexer import ProductIndexer
from app.services.search_service import ProductSearchService


def _config_from_env():
    env = os.environ
    return {
        "ELASTICSEARCH_ENABLED": parse_bool(env.get("ELASTICSEARCH_ENABLED")),
        "ELASTICSEARCH_URL": env.get("ELASTICSEARCH_URL", "http://localhost:9200"),
        "ELASTICSEARCH_API_KEY": env.get("ELASTICSEARCH_API_KEY"),
        "ELASTICSEARCH_USERNAME": env.get("ELASTICSEARCH_USERNAME"),
        "ELASTICSEARCH_PASSWORD": env.get("ELASTICSEARCH_PASSWORD"),
        "ELASTICSEARCH_INDEX": env.get("ELASTICSEARCH_INDEX", "products"),
        "ELASTICSEARCH_TIMEOUT": parse_int(env.get("ELASTICSEARCH_TIMEOUT"), 5),
        "ELASTICSEARCH_VERIFY_CERTS": parse_bool(env.get("ELASTICSEARCH_VERIFY_CERTS")),
        "ELASTICSEARCH_BATCH_SIZE": parse_int(env.get("ELASTICSEARCH_BATCH_SIZE"), 1000),
        "ELASTICSEARCH_REPLICAS": parse_int(env.get("ELASTICSEARCH_REPLICAS"), 1),
        "ELASTICSEARCH_VERSIONED_WRITES": parse_bool(env.get("ELASTICSEARCH_VERSIONED_WRITES")),
        "SEARCH_SYNC_MODE": env.get("SEARCH_SYNC_MODE", "background"),
        "SEARCH_DEFAULT_STATUS": env.get("SEARCH_DEFAULT_STATUS", "available"),
        "SEARCH_MAX_PAGE_SIZE": parse_int(env.get("SEARCH_MAX_PAGE_SIZE"), 100),
        "SMTP_HOST": env.get("SMTP_HOST"),
        "SMTP_PORT": parse_int(env.get("SMTP_PORT"), 587),
        "SMTP_USER": env.get("SMTP_USER"),
        "SMTP_PASSWORD": env.get("SMTP_PASSWORD"),
        "SMTP_FROM": env.get("SMTP_FROM"),
        "SMTP_USE_TLS": parse_bool(env.get("SMTP_USE_TLS", "1")),
        "SYNC_ALERT_EMAIL": env.get("SYNC_ALERT_EMAIL"),
        "FIXER_API_KEY": env.get("FIXER_API_KEY"),
        "FIXER_TIMEOUT": parse_int(env.get("FIXER_TIMEOUT"), 10),
        "CURRENCY_RATES_TTL_SECONDS": parse_int(env.get("CURRENCY_RATES_TTL_SECONDS"), 3600),
        "ELASTICSEARCH_ENSURE_INDEX_ON_STARTUP": parse_bool(
            env.get("ELASTICSEARCH_ENSURE_INDEX_ON_STARTUP", "1")
        ),
    }


def create_app(config=None, es_client=None):
    app = Flask(__name__)
    app.config.update(_config_from_env())
    if config:
        app.config.update(config)

    init_db()
    install_session_hooks()

    search_service = ProductSearchService(app, client=es_client)
    notifier = SyncFailureNotifier(app)
    event_bus = ProductEventBus(app, mode=app.config["SEARCH_SYNC_MODE"])
    indexer = ProductIndexer(app, search_service, SessionFactory, notifier)
    event_bus.subscribe(indexer.handle_event)

    app.extensions["search_service"] = search_service
    app.extensions["sync_notifier"] = notifier
    app.extensions["product_event_bus"] = event_bus
    app.extensions["product_indexer"] = indexer
    app.extensions["currency_rate_cache"] = CurrencyRateCache(
        ttl_seconds=app.config["CURRENCY_RATES_TTL_SECONDS"]
    )

    app.register_blueprint(products_bp)
    app.register_blueprint(currency_bp)

    if app.config.get("ELASTICSEARCH_ENSURE_INDEX_ON_STARTUP") and search_service.is_enabled():
        search_service.ensure_index()

    @app.before_request
    def bind_db_session():
        g.db = event_bus.attach(SessionLocal())

    @app.teardown_appcontext
    def remove_db_session(exception=None):
        SessionLocal.remove()

    @app.errorhandler(404)
    def not_found(error):
        return jsonify({"error": "Not found"}), 404

    return app
