from datetime import datetime

from flask import Blueprint, current_app, g, jsonify, request

from app.services.catalog_search import CatalogSearch
from app.services.catalog_store import CatalogStore
from app.services.category_closure import CategoryClosureResolver, CategoryResolutionError
from app.services.search_documents import map_product_to_document
from app.services.search_queries import (
    AggregationIntent,
    PriceRange,
    SearchIntent,
    SearchQueryError,
)
from app.services.search_service import SearchUnavailableError
from constants import DEFAULT_PAGE_SIZE, DEFAULT_PRICE_HISTOGRAM_INTERVAL
from helpers import parse_csv_list, parse_float, parse_int, slugify, unique_slug
from models import Product, ProductImage, Tag, User


products_bp = Blueprint("products", __name__, url_prefix="/api/products")

PRICE_PAYLOAD_FIELDS = {
    "price": "price",
    "priceUSD": "price_usd",
    "priceEUR": "price_eur",
    "priceUAH": "price_uah",
}
TEXT_PAYLOAD_FIELDS = {
    "title": "title",
    "description": "description",
    "sku": "sku",
    "currency": "currency",
    "status": "status",
    "availability": "availability",
    "condition": "condition",
    "videoUrl": "video_url",
}


class PayloadError(ValueError):
    pass


def _catalog_search():
    resolver = CategoryClosureResolver(CatalogStore(g.db))
    return CatalogSearch(current_app.extensions["search_service"], resolver)


def _filter_args():
    args = request.args
    price_min = args.get("priceMin")
    price_max = args.get("priceMax")
    price_range = None
    if price_min or price_max:
        low, high = parse_float(price_min), parse_float(price_max)
        if (price_min and low is None) or (price_max and high is None):
            raise SearchQueryError("priceMin and priceMax must be numbers")
        price_range = PriceRange(min=low, max=high)
    statuses = parse_csv_list(args.getlist("status")) or [
        current_app.config.get("SEARCH_DEFAULT_STATUS", "available")
    ]
    return {
        "search_term": args.get("q"),
        "category_slug": (args.get("categorySlug") or "").strip() or None,
        "category_slugs": parse_csv_list(args.getlist("categories")),
        "price_range": price_range,
        "currency": args.get("currency"),
        "tags": parse_csv_list(args.getlist("tags")),
        "statuses": statuses,
        "availability": parse_csv_list(args.getlist("availability")),
        "conditions": parse_csv_list(args.getlist("condition")),
    }


def _search_failure(exc):
    if isinstance(exc, SearchQueryError):
        return jsonify({"error": str(exc)}), 400
    current_app.logger.warning("Product search failed: %s", exc)
    return jsonify({"error": "Search is temporarily unavailable"}), 503


@products_bp.route("/search")
def search_products():
    max_page_size = current_app.config.get("SEARCH_MAX_PAGE_SIZE", 100)
    try:
        intent = SearchIntent(
            **_filter_args(),
            sort=request.args.get("sort"),
            page=parse_int(request.args.get("page"), 1),
            page_size=min(parse_int(request.args.get("pageSize"), DEFAULT_PAGE_SIZE), max_page_size),
        )
        results = _catalog_search().search(intent)
    except (SearchQueryError, CategoryResolutionError, SearchUnavailableError) as exc:
        return _search_failure(exc)
    return jsonify(results)


@products_bp.route("/aggregations")
def product_aggregations():
    try:
        raw_interval = (request.args.get("interval") or "").strip()
        interval = parse_float(raw_interval) if raw_interval else DEFAULT_PRICE_HISTOGRAM_INTERVAL
        if interval is None or interval <= 0:
            raise SearchQueryError("interval must be a positive number")
        intent = AggregationIntent(**_filter_args(), histogram_interval=interval)
        results = _catalog_search().aggregate(intent)
    except (SearchQueryError, CategoryResolutionError, SearchUnavailableError) as exc:
        return _search_failure(exc)
    return jsonify(results)


def _apply_payload(session, product, payload, creating):
    store = CatalogStore(session)
    for key, attr in TEXT_PAYLOAD_FIELDS.items():
        if key in payload:
            value = payload[key]
            setattr(product, attr, str(value).strip() if value is not None else None)
    if creating or "title" in payload:
        if not product.title:
            raise PayloadError("title is required")

    for key, attr in PRICE_PAYLOAD_FIELDS.items():
        if key not in payload:
            continue
        value = payload[key]
        if value is None:
            setattr(product, attr, None)
            continue
        amount = parse_float(value)
        if amount is None or amount < 0:
            raise PayloadError(f"{key} must be a non-negative number")
        setattr(product, attr, amount)

    if "attributesJson" in payload:
        attributes = payload["attributesJson"]
        if attributes is not None and not isinstance(attributes, dict):
            raise PayloadError("attributesJson must be an object")
        product.attributes_json = attributes

    if "categoryId" in payload or creating:
        category_id = payload.get("categoryId")
        category = store.find_category_by_id(category_id)
        if category is None:
            raise PayloadError("categoryId must reference an existing category")
        product.category = category

    if "sellerId" in payload:
        seller_id = payload["sellerId"]
        seller = session.get(User, seller_id) if seller_id is not None else None
        if seller_id is not None and seller is None:
            raise PayloadError("sellerId must reference an existing user")
        product.seller = seller

    if "tags" in payload:
        product.tags = [_tag_for(session, name) for name in parse_csv_list(payload["tags"] or [])]

    if "subcategoryIds" in payload:
        subcategories = []
        for category_id in payload["subcategoryIds"] or []:
            subcategory = store.find_category_by_id(category_id)
            if subcategory is None:
                raise PayloadError(f"Unknown subcategory {category_id}")
            subcategories.append(subcategory)
        product.subcategories = subcategories

    if "images" in payload:
        product.images = [
            ProductImage(
                name=image.get("name"),
                url=image.get("url"),
                mime=image.get("mime"),
                size=parse_int(image.get("size")),
            )
            for image in payload["images"] or []
        ]

    if "publishedAt" in payload:
        published = payload["publishedAt"]
        try:
            product.published_at = datetime.fromisoformat(published) if published else None
        except (TypeError, ValueError) as exc:
            raise PayloadError("publishedAt must be an ISO-8601 timestamp") from exc

    if creating or "title" in payload or "slug" in payload:
        base_slug = slugify(payload.get("slug") or product.title) or "product"
        product.slug = unique_slug(session, Product, base_slug, exclude_id=product.id)


def _tag_for(session, name):
    slug = slugify(name)
    tag = session.query(Tag).filter(Tag.slug == slug).first()
    if tag is None:
        tag = Tag(name=name, slug=slug)
        session.add(tag)
    return tag


def _payload():
    payload = request.get_json(silent=True)
    if not isinstance(payload, dict):
        raise PayloadError("Request body must be a JSON object")
    data = payload.get("data")
    return data if isinstance(data, dict) else payload


@products_bp.route("", methods=["POST"])
def create_product():
    session = g.db
    product = Product(views_count=0)
    try:
        _apply_payload(session, product, _payload(), creating=True)
    except PayloadError as exc:
        session.rollback()
        return jsonify({"error": str(exc)}), 400
    session.add(product)
    session.commit()
    return jsonify({"data": map_product_to_document(product)}), 201


@products_bp.route("/<int:product_id>", methods=["PUT"])
def update_product(product_id):
    session = g.db
    product = session.get(Product, product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    try:
        _apply_payload(session, product, _payload(), creating=False)
    except PayloadError as exc:
        session.rollback()
        return jsonify({"error": str(exc)}), 400
    product.updated_at = datetime.utcnow()
    session.commit()
    return jsonify({"data": map_product_to_document(product)})


@products_bp.route("/<int:product_id>", methods=["DELETE"])
def delete_product(product_id):
    session = g.db
    product = session.get(Product, product_id)
    if product is None:
        return jsonify({"error": "Product not found"}), 404
    session.delete(product)
    session.commit()
    return jsonify({"data": {"id": product_id}})
