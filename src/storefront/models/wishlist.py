from sqlalchemy import BigInteger, Column, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, updated_at_column


class WishlistItem(Base):
    """A product a user saved for later. (user_id, product_id) is unique."""

    __tablename__ = "user_wishlists"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        UniqueConstraint("user_id", "product_id", name="uq_wishlist_user_product"),
    )

    product = relationship("Product")

    def __repr__(self) -> str:
        return f"<WishlistItem user_id={self.user_id} product_id={self.product_id}>"
