import logging
from typing import Dict, Iterable, List

from sqlalchemy import func, select, update
from sqlalchemy.orm import selectinload

from storefront.core.exceptions import ReviewNotFoundError, ValidationError
from storefront.domain.reports import ReviewSummary
from storefront.models.review import ProductRating, Review, ReviewStatus, ReviewVote
from storefront.repositories.base import BaseRepository
from storefront.repositories.product_rating_repository import recompute_product_rating
from storefront.repositories.review_vote_repository import upsert_vote
from storefront.schemas.filters import ReviewFilter
from storefront.utils.date_utils import DateUtils

logger = logging.getLogger(__name__)


class ReviewRepository(BaseRepository[Review]):
    """
    Product reviews and their moderation.

    Any change that can move a review in or out of the approved set also
    rebuilds the product's rating aggregate in the same transaction.
    """

    model = Review
    not_found_error = ReviewNotFoundError

    SORT_COLUMNS = {
        "created_at": Review.created_at,
        "rating": Review.rating,
        "helpful_count": Review.helpful_count,
    }

    def _review_query(self):
        return select(Review).options(selectinload(Review.images), selectinload(Review.votes))

    def create(self, review: Review) -> Review:
        if review.rating is None or not 1 <= review.rating <= 5:
            raise ValidationError(
                "Rating must be between 1 and 5",
                [{"field": "rating", "message": "must be between 1 and 5"}],
            )
        if review.status is None:
            review.status = ReviewStatus.PENDING.value
        with self.get_db_session("INSERT") as session:
            session.add(review)
            session.flush()
            if review.status == ReviewStatus.APPROVED.value:
                recompute_product_rating(session, review.product_id)
        logger.info(f"Created review {review.id} for product {review.product_id}")
        return review

    def get_by_id(self, review_id: int) -> Review:
        return self._first(self._review_query().where(Review.id == review_id), review_id)

    def update(self, review: Review) -> Review:
        with self.get_db_session("WRITE") as session:
            current = session.get(Review, review.id) if review.id is not None else None
            if current is None:
                raise ReviewNotFoundError(resource_id=review.id)
            old_product_id = current.product_id
            merged = session.merge(review)
            session.flush()
            for product_id in {old_product_id, merged.product_id}:
                recompute_product_rating(session, product_id)
        return merged

    def delete(self, review_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            review = session.get(Review, review_id)
            if review is None:
                raise ReviewNotFoundError(resource_id=review_id)
            product_id = review.product_id
            session.delete(review)
            session.flush()
            recompute_product_rating(session, product_id)
        logger.info(f"Deleted review {review_id}")

    # ------------------------------------------------------------------
    # Filtered lists
    # ------------------------------------------------------------------

    def _filter_criteria(self, filters: ReviewFilter) -> list:
        criteria = []
        if filters.product_id is not None:
            criteria.append(Review.product_id == filters.product_id)
        if filters.user_id is not None:
            criteria.append(Review.user_id == filters.user_id)
        if filters.rating is not None:
            criteria.append(Review.rating == filters.rating)
        if filters.status:
            criteria.append(Review.status == filters.status)
        if filters.is_verified is not None:
            criteria.append(Review.is_verified.is_(filters.is_verified))
        if filters.min_rating is not None:
            criteria.append(Review.rating >= filters.min_rating)
        if filters.max_rating is not None:
            criteria.append(Review.rating <= filters.max_rating)
        return criteria

    def search(self, filters: ReviewFilter) -> List[Review]:
        column = self.SORT_COLUMNS.get(filters.order_column, Review.created_at)
        stmt = self._order(
            self._review_query().where(*self._filter_criteria(filters)),
            column,
            filters.descending,
        ).order_by(Review.id.desc())
        return self._all(self._paginate(stmt, filters.limit, filters.offset))

    def count(self, filters: ReviewFilter) -> int:
        return self._count(select(Review).where(*self._filter_criteria(filters)))

    def get_by_product_id(self, product_id: int, filters: ReviewFilter) -> List[Review]:
        return self.search(filters.model_copy(update={"product_id": product_id}))

    def get_by_user_id(self, user_id: int, filters: ReviewFilter) -> List[Review]:
        return self.search(filters.model_copy(update={"user_id": user_id}))

    def _approved(self, *criteria, limit: int = 20, offset: int = 0) -> List[Review]:
        stmt = (
            self._review_query()
            .where(Review.status == ReviewStatus.APPROVED.value, *criteria)
            .order_by(Review.created_at.desc(), Review.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_product_reviews(self, product_id: int, limit: int = 20, offset: int = 0) -> List[Review]:
        return self._approved(Review.product_id == product_id, limit=limit, offset=offset)

    def get_product_reviews_with_rating(
        self, product_id: int, rating: int, limit: int = 20, offset: int = 0
    ) -> List[Review]:
        return self._approved(
            Review.product_id == product_id, Review.rating == rating, limit=limit, offset=offset
        )

    def get_verified_reviews(self, product_id: int, limit: int = 20, offset: int = 0) -> List[Review]:
        return self._approved(
            Review.product_id == product_id, Review.is_verified.is_(True), limit=limit, offset=offset
        )

    def get_recent_reviews(self, limit: int = 10) -> List[Review]:
        return self._approved(limit=limit)

    def get_by_product_ids(self, product_ids: Iterable[int], limit: int = 20) -> List[Review]:
        product_ids = list(product_ids)
        if not product_ids:
            return []
        return self._approved(Review.product_id.in_(product_ids), limit=limit)

    def get_pending_reviews(self, limit: int = 20, offset: int = 0) -> List[Review]:
        """Moderation queue, oldest first"""
        stmt = (
            self._review_query()
            .where(Review.status == ReviewStatus.PENDING.value)
            .order_by(Review.created_at.asc(), Review.id.asc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_user_reviews(self, user_id: int, limit: int = 20, offset: int = 0) -> List[Review]:
        stmt = (
            self._review_query()
            .where(Review.user_id == user_id)
            .order_by(Review.created_at.desc(), Review.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def has_user_reviewed_product(self, user_id: int, product_id: int) -> bool:
        stmt = select(Review.id).where(Review.user_id == user_id, Review.product_id == product_id)
        with self.get_db_session() as session:
            return session.execute(stmt).first() is not None

    def get_user_review_for_product(self, user_id: int, product_id: int) -> Review:
        stmt = self._review_query().where(
            Review.user_id == user_id, Review.product_id == product_id
        )
        return self._first(stmt, f"user={user_id} product={product_id}")

    # ------------------------------------------------------------------
    # Counts and ratings
    # ------------------------------------------------------------------

    def count_reviews_by_status(self, status: str) -> int:
        return self._count(select(Review).where(Review.status == status))

    def count_product_reviews(self, product_id: int) -> int:
        return self._count(select(Review).where(
            Review.product_id == product_id, Review.status == ReviewStatus.APPROVED.value
        ))

    def count_product_reviews_by_rating(self, product_id: int, rating: int) -> int:
        return self._count(select(Review).where(
            Review.product_id == product_id,
            Review.status == ReviewStatus.APPROVED.value,
            Review.rating == rating,
        ))

    def get_average_rating(self, product_id: int) -> float:
        stmt = select(func.avg(Review.rating)).where(
            Review.product_id == product_id, Review.status == ReviewStatus.APPROVED.value
        )
        with self.get_db_session() as session:
            value = session.execute(stmt).scalar()
        return round(float(value or 0), 2)

    def get_rating_breakdown(self, product_id: int) -> Dict[int, int]:
        """{1..5: approved review count}, zero-filled"""
        stmt = (
            select(Review.rating, func.count(Review.id))
            .where(Review.product_id == product_id, Review.status == ReviewStatus.APPROVED.value)
            .group_by(Review.rating)
        )
        breakdown = {star: 0 for star in range(1, 6)}
        with self.get_db_session() as session:
            for rating, count in session.execute(stmt).all():
                breakdown[int(rating)] = int(count)
        return breakdown

    def get_rating_distribution(self, product_id: int) -> Dict[int, int]:
        return self.get_rating_breakdown(product_id)

    def get_product_rating(self, product_id: int) -> ProductRating:
        """Stored aggregate, or an unsaved all-zero rating"""
        stmt = select(ProductRating).where(ProductRating.product_id == product_id)
        with self.get_db_session() as session:
            rating = session.scalars(stmt).first()
        if rating is None:
            rating = ProductRating(
                product_id=product_id,
                average_rating=0.0,
                total_reviews=0,
                rating_1_count=0,
                rating_2_count=0,
                rating_3_count=0,
                rating_4_count=0,
                rating_5_count=0,
            )
        return rating

    def get_review_stats(self, product_id: int) -> ReviewSummary:
        counts = self.get_rating_breakdown(product_id)
        total = sum(counts.values())
        weighted = sum(star * count for star, count in counts.items())
        return ReviewSummary(
            product_id=product_id,
            average_rating=round(weighted / total, 2) if total else 0.0,
            total_reviews=total,
            rating_counts=counts,
            rating_percentages={
                star: round(count * 100.0 / total, 2) if total else 0.0
                for star, count in counts.items()
            },
            recent_reviews=self.get_product_reviews(product_id, limit=5),
        )

    def update_product_rating(self, product_id: int) -> ProductRating:
        with self.get_db_session("WRITE") as session:
            return recompute_product_rating(session, product_id)

    # ------------------------------------------------------------------
    # Moderation
    # ------------------------------------------------------------------

    def _set_status(self, review_id: int, status: str, *from_statuses: str) -> Review:
        with self.get_db_session("WRITE") as session:
            stmt = update(Review).where(Review.id == review_id)
            if from_statuses:
                stmt = stmt.where(Review.status.in_(from_statuses))
            result = session.execute(
                stmt.values(status=status, updated_at=DateUtils.now_utc())
                .execution_options(synchronize_session=False)
            )
            review = session.get(Review, review_id, populate_existing=True)
            if review is None:
                raise ReviewNotFoundError(resource_id=review_id)
            if result.rowcount == 0:
                raise ValidationError(
                    f"Review {review_id} is {review.status}, cannot move to {status}"
                )
            recompute_product_rating(session, review.product_id)
        logger.info(f"Review {review_id} is now {status}")
        return review

    def approve_review(self, review_id: int) -> Review:
        return self._set_status(review_id, ReviewStatus.APPROVED.value, ReviewStatus.PENDING.value)

    def reject_review(self, review_id: int) -> Review:
        return self._set_status(review_id, ReviewStatus.REJECTED.value, ReviewStatus.PENDING.value)

    def bulk_update_status(self, review_ids: Iterable[int], status: str) -> int:
        if status not in {member.value for member in ReviewStatus}:
            raise ValidationError(f"Invalid review status: {status}")
        review_ids = list(review_ids)
        if not review_ids:
            return 0
        with self.get_db_session("BATCH") as session:
            product_ids = set(session.scalars(
                select(Review.product_id).where(Review.id.in_(review_ids))
            ))
            result = session.execute(
                update(Review)
                .where(Review.id.in_(review_ids))
                .values(status=status, updated_at=DateUtils.now_utc())
                .execution_options(synchronize_session=False)
            )
            for product_id in product_ids:
                recompute_product_rating(session, product_id)
        logger.info(f"Set {result.rowcount} reviews to {status}")
        return result.rowcount

    def mark_as_verified(self, review_id: int) -> None:
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Review)
                .where(Review.id == review_id)
                .values(is_verified=True, updated_at=DateUtils.now_utc())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise ReviewNotFoundError(resource_id=review_id)

    def create_or_update_vote(self, vote: ReviewVote) -> ReviewVote:
        with self.get_db_session("WRITE") as session:
            return upsert_vote(session, vote.review_id, vote.user_id, vote.vote_type)
