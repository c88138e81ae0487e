import logging
from typing import Iterable, List

from sqlalchemy import case, delete, func, select

from storefront.core.exceptions import ProductRatingNotFoundError
from storefront.domain.reports import RatingDistribution
from storefront.models.product import Product
from storefront.models.review import ProductRating, Review, ReviewStatus
from storefront.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def recompute_product_rating(session, product_id: int) -> ProductRating:
    """
    Rebuild the product_ratings row of a product from its approved reviews.

    One aggregate SELECT (AVG, COUNT and a SUM(CASE ...) per star) followed
    by an insert-or-update, all inside the caller's session so it commits
    together with whatever changed the reviews.
    """
    def stars(n):
        return func.coalesce(func.sum(case((Review.rating == n, 1), else_=0)), 0)

    row = session.execute(
        select(
            func.avg(Review.rating),
            func.count(Review.id),
            stars(1), stars(2), stars(3), stars(4), stars(5),
        ).where(
            Review.product_id == product_id,
            Review.status == ReviewStatus.APPROVED.value,
        )
    ).one()

    rating = session.scalars(
        select(ProductRating)
        .where(ProductRating.product_id == product_id)
        .execution_options(populate_existing=True)
    ).first()
    if rating is None:
        rating = ProductRating(product_id=product_id)
        session.add(rating)

    rating.average_rating = round(float(row[0] or 0), 2)
    rating.total_reviews = int(row[1])
    for star in range(1, 6):
        setattr(rating, f"rating_{star}_count", int(row[star + 1]))
    session.flush()
    return rating


class ProductRatingRepository(BaseRepository[ProductRating]):
    model = ProductRating
    not_found_error = ProductRatingNotFoundError

    def get_by_product(self, product_id: int) -> ProductRating:
        stmt = select(ProductRating).where(ProductRating.product_id == product_id)
        return self._first(stmt, f"product={product_id}")

    def exists(self, product_id: int) -> bool:
        """Whether a rating row exists for ``product_id``"""
        stmt = select(ProductRating.id).where(ProductRating.product_id == product_id)
        with self.get_db_session() as session:
            return session.execute(stmt).first() is not None

    def delete_by_product(self, product_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            result = session.execute(
                delete(ProductRating).where(ProductRating.product_id == product_id)
            )
            if result.rowcount == 0:
                raise ProductRatingNotFoundError(resource_id=f"product={product_id}")

    def update_rating(self, product_id: int) -> ProductRating:
        with self.get_db_session("WRITE") as session:
            rating = recompute_product_rating(session, product_id)
        logger.info(
            f"Product {product_id} rating is now {rating.average_rating} over {rating.total_reviews} reviews"
        )
        return rating

    def get_top_rated_products(self, limit: int = 10, min_reviews: int = 1) -> List[ProductRating]:
        stmt = (
            select(ProductRating)
            .where(ProductRating.total_reviews >= min_reviews)
            .order_by(ProductRating.average_rating.desc(), ProductRating.total_reviews.desc())
        )
        return self._all(self._paginate(stmt, limit))

    def get_most_reviewed_products(self, limit: int = 10) -> List[ProductRating]:
        stmt = select(ProductRating).order_by(
            ProductRating.total_reviews.desc(), ProductRating.average_rating.desc()
        )
        return self._all(self._paginate(stmt, limit))

    def get_rating_distribution(self) -> RatingDistribution:
        stmt = select(
            func.coalesce(func.sum(ProductRating.rating_1_count), 0),
            func.coalesce(func.sum(ProductRating.rating_2_count), 0),
            func.coalesce(func.sum(ProductRating.rating_3_count), 0),
            func.coalesce(func.sum(ProductRating.rating_4_count), 0),
            func.coalesce(func.sum(ProductRating.rating_5_count), 0),
            func.coalesce(func.sum(ProductRating.total_reviews), 0),
            func.avg(ProductRating.average_rating),
        )
        with self.get_db_session() as session:
            row = session.execute(stmt).one()
        return RatingDistribution(
            rating_counts={star: int(row[star - 1]) for star in range(1, 6)},
            total_reviews=int(row[5]),
            average_rating=round(float(row[6] or 0), 2),
        )

    def get_products_without_rating(self, limit: int = 20, offset: int = 0) -> List[int]:
        stmt = (
            select(Product.id)
            .outerjoin(ProductRating, ProductRating.product_id == Product.id)
            .where(ProductRating.id.is_(None))
            .order_by(Product.id)
        )
        stmt = self._paginate(stmt, limit, offset)
        with self.get_db_session() as session:
            return list(session.scalars(stmt))

    def bulk_update_ratings(self, product_ids: Iterable[int]) -> int:
        product_ids = list(product_ids)
        with self.get_db_session("BATCH") as session:
            for product_id in product_ids:
                recompute_product_rating(session, product_id)
        logger.info(f"Recalculated ratings for {len(product_ids)} products")
        return len(product_ids)

    def recalculate_all_ratings(self) -> int:
        """Rebuild the rating of every product that has at least one review"""
        with self.get_db_session() as session:
            product_ids = list(session.scalars(select(Review.product_id).distinct()))
        return self.bulk_update_ratings(product_ids)

    def get_average_rating_across_products(self) -> float:
        stmt = select(func.avg(ProductRating.average_rating)).where(ProductRating.total_reviews > 0)
        with self.get_db_session() as session:
            value = session.execute(stmt).scalar()
        return round(float(value or 0), 2)

    def get_total_reviews_count(self) -> int:
        stmt = select(func.coalesce(func.sum(ProductRating.total_reviews), 0))
        with self.get_db_session() as session:
            return int(session.execute(stmt).scalar())
