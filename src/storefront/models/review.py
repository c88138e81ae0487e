from enum import Enum

from sqlalchemy import BigInteger, Boolean, CheckConstraint, Column, Float, ForeignKey
from sqlalchemy import Integer, Text, UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId
from storefront.models.common import created_at_column, enum_check, updated_at_column


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class VoteType(str, Enum):
    HELPFUL = "helpful"
    NOT_HELPFUL = "not_helpful"


class Review(Base):
    """
    A product review.

    Only approved reviews count towards product_ratings. helpful_count and
    not_helpful_count are derived from review_votes by
    ReviewVoteRepository.update_review_vote_counts().
    """

    __tablename__ = "reviews"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False
    )
    order_id = Column(BigInteger, ForeignKey("orders.id"), nullable=True)
    rating = Column(Integer, nullable=False)
    title = Column(Text, nullable=True)
    comment = Column(Text, nullable=True)
    status = Column(Text, nullable=False, default=ReviewStatus.PENDING.value)
    is_verified = Column(Boolean, nullable=False, default=False)
    helpful_count = Column(Integer, nullable=False, default=0)
    not_helpful_count = Column(Integer, nullable=False, default=0)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        CheckConstraint("rating BETWEEN 1 AND 5", name="ck_review_rating"),
        enum_check("status", ReviewStatus, "ck_review_status"),
    )

    user = relationship("User")
    product = relationship("Product")
    images = relationship(
        "ReviewImage",
        back_populates="review",
        cascade="all, delete-orphan",
        order_by="ReviewImage.sort_order",
    )
    votes = relationship("ReviewVote", back_populates="review", cascade="all, delete-orphan")

    def __repr__(self) -> str:
        return f"<Review id={self.id} product_id={self.product_id} rating={self.rating}>"


class ReviewImage(Base):
    __tablename__ = "review_images"

    id = Column(BigId, primary_key=True, autoincrement=True)
    review_id = Column(
        BigInteger, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False
    )
    image_url = Column(Text, nullable=False)
    alt_text = Column(Text, nullable=True)
    sort_order = Column(Integer, nullable=False, default=0)
    created_at = created_at_column()

    review = relationship("Review", back_populates="images")


class ReviewVote(Base):
    """One helpful/not-helpful vote; a user votes at most once per review."""

    __tablename__ = "review_votes"

    id = Column(BigId, primary_key=True, autoincrement=True)
    review_id = Column(
        BigInteger, ForeignKey("reviews.id", ondelete="CASCADE"), nullable=False
    )
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    vote_type = Column(Text, nullable=False)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        UniqueConstraint("review_id", "user_id", name="uq_review_vote_user"),
        enum_check("vote_type", VoteType, "ck_review_vote_type"),
    )

    review = relationship("Review", back_populates="votes")

    def __repr__(self) -> str:
        return f"<ReviewVote review_id={self.review_id} user_id={self.user_id} {self.vote_type}>"


class ProductRating(Base):
    """
    Cached rating aggregate per product, rebuilt from approved reviews.
    """

    __tablename__ = "product_ratings"

    id = Column(BigId, primary_key=True, autoincrement=True)
    product_id = Column(
        BigInteger, ForeignKey("products.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    average_rating = Column(Float, nullable=False, default=0.0)
    total_reviews = Column(Integer, nullable=False, default=0)
    rating_1_count = Column(Integer, nullable=False, default=0)
    rating_2_count = Column(Integer, nullable=False, default=0)
    rating_3_count = Column(Integer, nullable=False, default=0)
    rating_4_count = Column(Integer, nullable=False, default=0)
    rating_5_count = Column(Integer, nullable=False, default=0)
    updated_at = updated_at_column()

    product = relationship("Product")

    def counts(self) -> dict:
        return {star: getattr(self, f"rating_{star}_count") or 0 for star in range(1, 6)}

    def __repr__(self) -> str:
        return (
            f"<ProductRating product_id={self.product_id} "
            f"avg={self.average_rating} n={self.total_reviews}>"
        )
