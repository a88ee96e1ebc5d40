import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="marketplace-tests-")
os.environ["MARKETPLACE_DATABASE_URL"] = "sqlite:///" + os.path.join(_DB_DIR, "marketplace.db")
os.environ.setdefault("ELASTICSEARCH_ENABLED", "0")

import pytest

from app import create_app
from database import SessionFactory, SessionLocal, drop_db, init_db
from fake_es import FakeElasticsearch
from models import Category, Product, SellerMeta, Tag, User


TEST_CONFIG = {
    "TESTING": True,
    "ELASTICSEARCH_ENABLED": True,
    "ELASTICSEARCH_URL": "http://search.test:9200",
    "ELASTICSEARCH_INDEX": "products",
    "ELASTICSEARCH_BATCH_SIZE": 1000,
    "ELASTICSEARCH_ENSURE_INDEX_ON_STARTUP": True,
    "ELASTICSEARCH_VERSIONED_WRITES": False,
    "SEARCH_SYNC_MODE": "inline",
    "SMTP_HOST": None,
    "SYNC_ALERT_EMAIL": None,
    "FIXER_API_KEY": None,
}


@pytest.fixture
def es():
    return FakeElasticsearch()


@pytest.fixture
def make_app(es):
    created = []

    def factory(**overrides):
        drop_db()
        init_db()
        app = create_app({**TEST_CONFIG, **overrides}, es_client=es)
        created.append(app)
        return app

    yield factory
    SessionLocal.remove()
    drop_db()


@pytest.fixture
def app(make_app):
    return make_app()


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db(app):
    session = SessionFactory()
    yield session
    session.close()


@pytest.fixture
def search_service(app):
    return app.extensions["search_service"]


@pytest.fixture
def indexer(app):
    return app.extensions["product_indexer"]


class RecordingNotifier:
    def __init__(self):
        self.failures = []
        self.bulk_reports = []

    def notify_sync_failure(self, product_id, product_title, error_message):
        self.failures.append((product_id, product_title, error_message))
        return True

    def notify_bulk_sync(self, success, details):
        self.bulk_reports.append((success, details))
        return True


@pytest.fixture
def notifier(indexer):
    recording = RecordingNotifier()
    indexer.notifier = recording
    return recording


def make_category(session, name, parent=None, slug=None):
    category = Category(name=name, slug=slug or name.lower().replace(" ", "-"), parent=parent)
    session.add(category)
    session.commit()
    return category


def make_seller(session, username="acme", company="Acme Ltd", country="UA"):
    seller = User(username=username, email=f"{username}@example.com")
    seller.seller_meta = SellerMeta(
        company_name=company,
        business_type="manufacturer",
        country=country,
        avatar_url=f"https://cdn.example.com/{username}.png",
    )
    session.add(seller)
    session.commit()
    return seller


def make_tag(session, name):
    tag = Tag(name=name, slug=name.lower().replace(" ", "-"))
    session.add(tag)
    session.commit()
    return tag


def make_product(session, title, category=None, **fields):
    fields.setdefault("slug", title.lower().replace(" ", "-"))
    fields.setdefault("status", "available")
    product = Product(title=title, category=category, **fields)
    session.add(product)
    session.commit()
    return product
