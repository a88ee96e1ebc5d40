from datetime import datetime

from sqlalchemy import (
    JSON,
    Column,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    String,
    Table,
    Text,
)
from sqlalchemy.orm import declarative_base, relationship


Base = declarative_base()


product_tags = Table(
    "product_tags",
    Base.metadata,
    Column("product_id", Integer, ForeignKey("products.id"), primary_key=True),
    Column("tag_id", Integer, ForeignKey("tags.id"), primary_key=True),
)

product_subcategories = Table(
    "product_subcategories",
    Base.metadata,
    Column("product_id", Integer, ForeignKey("products.id"), primary_key=True),
    Column("category_id", Integer, ForeignKey("categories.id"), primary_key=True),
)


class Category(Base):
    __tablename__ = "categories"

    id = Column(Integer, primary_key=True)
    name = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True)
    description = Column(Text)
    parent_id = Column(Integer, ForeignKey("categories.id"))

    parent = relationship("Category", remote_side=[id], back_populates="children")
    children = relationship("Category", back_populates="parent")
    products = relationship("Product", back_populates="category")


class Tag(Base):
    __tablename__ = "tags"

    id = Column(Integer, primary_key=True)
    name = Column(String(128), nullable=False)
    slug = Column(String(128), unique=True)

    products = relationship("Product", secondary=product_tags, back_populates="tags")


class User(Base):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True)
    username = Column(String(128), unique=True, nullable=False)
    email = Column(String(255))

    seller_meta = relationship(
        "SellerMeta",
        back_populates="user",
        uselist=False,
        cascade="all, delete-orphan",
    )
    products = relationship("Product", back_populates="seller")


class SellerMeta(Base):
    __tablename__ = "seller_metas"

    id = Column(Integer, primary_key=True)
    user_id = Column(Integer, ForeignKey("users.id"), unique=True, nullable=False)
    company_name = Column(String(255))
    business_type = Column(String(64))
    country = Column(String(64))
    avatar_url = Column(String(255))

    user = relationship("User", back_populates="seller_meta")


class ProductImage(Base):
    __tablename__ = "product_images"

    id = Column(Integer, primary_key=True)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    name = Column(String(255))
    url = Column(String(512))
    mime = Column(String(64))
    size = Column(Integer)

    product = relationship("Product", back_populates="images")


class Product(Base):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True)
    title = Column(String(255), nullable=False)
    slug = Column(String(255), unique=True)
    sku = Column(String(64))
    description = Column(Text)
    price = Column(Float)
    price_usd = Column(Float)
    price_eur = Column(Float)
    price_uah = Column(Float)
    currency = Column(String(8))
    status = Column(String(32))
    views_count = Column(Integer, default=0)
    attributes_json = Column(JSON)
    availability = Column(String(32))
    condition = Column(String(32))
    video_url = Column(String(512))
    category_id = Column(Integer, ForeignKey("categories.id"))
    seller_id = Column(Integer, ForeignKey("users.id"))
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    published_at = Column(DateTime)

    category = relationship("Category", back_populates="products")
    seller = relationship("User", back_populates="products")
    tags = relationship("Tag", secondary=product_tags, back_populates="products")
    subcategories = relationship("Category", secondary=product_subcategories)
    images = relationship(
        "ProductImage",
        back_populates="product",
        cascade="all, delete-orphan",
        order_by="ProductImage.id",
    )


class CurrencyRate(Base):
    __tablename__ = "currency_rates"

    id = Column(Integer, primary_key=True)
    date = Column(Date, unique=True, nullable=False)
    usd = Column(Float, nullable=False, default=1.0)
    eur = Column(Float, nullable=False)
    uah = Column(Float, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def as_dict(self):
        return {
            "date": self.date.isoformat() if self.date else None,
            "USD": self.usd,
            "EUR": self.eur,
            "UAH": self.uah,
            "updatedAt": self.updated_at.isoformat() if self.updated_at else None,
        }


class SyncLog(Base):
    __tablename__ = "sync_logs"

    id = Column(Integer, primary_key=True)
    started_at = Column(DateTime, default=datetime.utcnow)
    completed_at = Column(DateTime)
    status = Column(String(32), default="IN_PROGRESS")
    triggered_by = Column(String(128))
    total_fetched = Column(Integer, default=0)
    indexed_count = Column(Integer, default=0)
    failed_count = Column(Integer, default=0)
    error_message = Column(Text)
