from sqlalchemy import BigInteger, CheckConstraint, Column, ForeignKey, Integer, Table, Text
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, updated_at_column


class Category(Base):
    """
    Top-level grouping for products (e.g. Electronics, Clothing).
    """

    __tablename__ = "categories"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    slug = Column(Text, nullable=False, unique=True)
    description = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)

    # One category has many products. back_populates keeps both sides in sync.
    products = relationship("Product", back_populates="category")

    def __repr__(self) -> str:
        return f"<Category id={self.id} slug={self.slug!r}>"


# Plain association table: no payload columns, so no mapped class.
product_tags = Table(
    "product_tags",
    Base.metadata,
    Column("product_id", BigInteger, ForeignKey("products.id", ondelete="CASCADE"), primary_key=True),
    Column("tag_id", BigInteger, ForeignKey("tags.id", ondelete="CASCADE"), primary_key=True),
)


class Product(Base):
    """
    A purchasable product.

    price_cents stores the price as an integer number of cents to avoid
    floating-point rounding errors. $19.99 -> 1999.

    stock is the catalogue-level figure; the authoritative per-warehouse
    numbers live in inventories and are synced back with
    InventoryRepository.sync_with_product_stock().
    """

    __tablename__ = "products"

    id = Column(BigId, primary_key=True, autoincrement=True)
    sku = Column(Text, nullable=False, unique=True)
    name = Column(Text, nullable=False)
    description = Column(Text, nullable=True)
    price_cents = Column(BigInteger, nullable=False, default=0)
    stock = Column(Integer, nullable=False, default=0)
    category_id = Column(BigInteger, ForeignKey("categories.id"), nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("price_cents >= 0", name="ck_product_price"),
        CheckConstraint("stock >= 0", name="ck_product_stock"),
    )

    category = relationship("Category", back_populates="products")
    tags = relationship("Tag", secondary=product_tags, back_populates="products")

    def __repr__(self) -> str:
        return f"<Product id={self.id} sku={self.sku!r} name={self.name!r}>"


class Tag(Base):
    """Free-form product label. Both name and slug are unique."""

    __tablename__ = "tags"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False, unique=True)
    slug = Column(Text, nullable=False, unique=True)
    created_at = created_at_column()

    products = relationship("Product", secondary=product_tags, back_populates="tags")

    def __repr__(self) -> str:
        return f"<Tag id={self.id} slug={self.slug!r}>"
