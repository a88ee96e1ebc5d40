from sqlalchemy.orm import joinedload, selectinload

from models import Category, Product, User


DEFAULT_PRODUCTS_INDEX = "products"
DEFAULT_BULK_BATCH_SIZE = 1000
DEFAULT_PRODUCT_CHUNK_SIZE = 500
DEFAULT_PAGE_SIZE = 10
DEFAULT_PRICE_HISTOGRAM_INTERVAL = 100
FACET_BUCKET_SIZE = 100
FLAG_BUCKET_SIZE = 20

DEFAULT_CURRENCY = "USD"
DEFAULT_STATUS = "available"
DEFAULT_AVAILABILITY = "in_stock"
DEFAULT_CONDITION = "new"

SUPPORTED_CURRENCIES = ("USD", "EUR", "UAH")
LEGACY_PRICE_FIELD = "price"
PRICE_FIELDS = {
    "USD": "priceUSD",
    "EUR": "priceEUR",
    "UAH": "priceUAH",
}

# Public sort names -> index field. Analyzed text fields sort on their
# keyword sub-field; "price" is resolved per currency at query time.
SORT_FIELDS = {
    "id": "id",
    "title": "title.keyword",
    "description": "description.keyword",
    "categoryName": "category.name.keyword",
    "category.name": "category.name.keyword",
    "sellerCompanyName": "seller.metadata.companyName.keyword",
    "seller.metadata.companyName": "seller.metadata.companyName.keyword",
    "sku": "sku",
    "slug": "slug",
    "status": "status",
    "viewsCount": "viewsCount",
    "createdAt": "createdAt",
    "updatedAt": "updatedAt",
    "publishedAt": "publishedAt",
}
DEFAULT_SORT = "createdAt:desc"

# Text search fields; title outweighs the rest.
TEXT_SEARCH_FIELDS = [
    "title^3",
    "description",
    "category.name",
    "seller.metadata.companyName",
]
TEXT_SEARCH_FUZZINESS = "AUTO"

SERVERLESS_HOST_MARKERS = ("found.io", "elastic-cloud.com")

PRODUCT_FULL_EAGER_OPTIONS = [
    joinedload(Product.category).joinedload(Category.parent),
    selectinload(Product.tags),
    joinedload(Product.seller).joinedload(User.seller_meta),
    selectinload(Product.images),
    selectinload(Product.subcategories),
]
CATEGORY_WITH_PARENT_EAGER_OPTIONS = [
    joinedload(Category.parent),
]
