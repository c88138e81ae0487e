import logging
from typing import Dict, Iterable, List, Optional, Tuple

from sqlalchemy import delete, func, select, update

from storefront.core.exceptions import ReviewNotFoundError, ReviewVoteNotFoundError, ValidationError
from storefront.models.review import Review, ReviewVote, VoteType
from storefront.repositories.base import BaseRepository

logger = logging.getLogger(__name__)


def refresh_vote_counts(session, review_id: int) -> int:
    """
    Write helpful_count / not_helpful_count of a review from review_votes.

    A single UPDATE with one correlated subquery per counter, so the
    counters can never drift from the vote rows.
    """
    def votes_of(vote_type):
        return (
            select(func.count(ReviewVote.id))
            .where(ReviewVote.review_id == Review.id, ReviewVote.vote_type == vote_type)
            .correlate(Review)
            .scalar_subquery()
        )

    result = session.execute(
        update(Review)
        .where(Review.id == review_id)
        .values(
            helpful_count=votes_of(VoteType.HELPFUL.value),
            not_helpful_count=votes_of(VoteType.NOT_HELPFUL.value),
        )
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


def upsert_vote(session, review_id: int, user_id: int, vote_type: str) -> ReviewVote:
    """Insert the user's vote or change its type; one vote per (review, user)"""
    if vote_type not in (VoteType.HELPFUL.value, VoteType.NOT_HELPFUL.value):
        raise ValidationError(f"Invalid vote type: {vote_type}")
    if session.get(Review, review_id) is None:
        raise ReviewNotFoundError(resource_id=review_id)

    vote = session.scalars(
        select(ReviewVote).where(
            ReviewVote.review_id == review_id, ReviewVote.user_id == user_id
        )
    ).first()
    if vote is None:
        vote = ReviewVote(review_id=review_id, user_id=user_id, vote_type=vote_type)
        session.add(vote)
    else:
        vote.vote_type = vote_type
    session.flush()

    refresh_vote_counts(session, review_id)
    return vote


class ReviewVoteRepository(BaseRepository[ReviewVote]):
    model = ReviewVote
    not_found_error = ReviewVoteNotFoundError

    def create(self, vote: ReviewVote) -> ReviewVote:
        with self.get_db_session("INSERT") as session:
            session.add(vote)
            session.flush()
            refresh_vote_counts(session, vote.review_id)
        logger.info(f"Created vote {vote.id} on review {vote.review_id}")
        return vote

    def get_by_user_and_review(self, user_id: int, review_id: int) -> ReviewVote:
        stmt = select(ReviewVote).where(
            ReviewVote.user_id == user_id, ReviewVote.review_id == review_id
        )
        return self._first(stmt, f"user={user_id} review={review_id}")

    def update(self, vote: ReviewVote) -> ReviewVote:
        with self.get_db_session("WRITE") as session:
            current = session.get(ReviewVote, vote.id) if vote.id is not None else None
            if current is None:
                raise ReviewVoteNotFoundError(resource_id=vote.id)
            old_review_id = current.review_id
            merged = session.merge(vote)
            session.flush()
            for review_id in {old_review_id, merged.review_id}:
                refresh_vote_counts(session, review_id)
        return merged

    def delete(self, vote_id: int) -> None:
        with self.get_db_session("DELETE") as session:
            vote = session.get(ReviewVote, vote_id)
            if vote is None:
                raise ReviewVoteNotFoundError(resource_id=vote_id)
            review_id = vote.review_id
            session.delete(vote)
            session.flush()
            refresh_vote_counts(session, review_id)
        logger.info(f"Deleted vote {vote_id}")

    def delete_by_user_and_review(self, user_id: int, review_id: int) -> None:
        """Remove a user's vote and refresh the review counters"""
        with self.get_db_session("DELETE") as session:
            result = session.execute(
                delete(ReviewVote).where(
                    ReviewVote.user_id == user_id, ReviewVote.review_id == review_id
                )
            )
            if result.rowcount == 0:
                raise ReviewVoteNotFoundError(resource_id=f"user={user_id} review={review_id}")
            refresh_vote_counts(session, review_id)

    def get_votes_by_review(self, review_id: int) -> List[ReviewVote]:
        stmt = (
            select(ReviewVote)
            .where(ReviewVote.review_id == review_id)
            .order_by(ReviewVote.created_at.desc(), ReviewVote.id.desc())
        )
        return self._all(stmt)

    def get_votes_by_user(self, user_id: int, limit: int = 20, offset: int = 0) -> List[ReviewVote]:
        stmt = (
            select(ReviewVote)
            .where(ReviewVote.user_id == user_id)
            .order_by(ReviewVote.created_at.desc(), ReviewVote.id.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def count_votes_by_review(self, review_id: int, vote_type: str) -> int:
        stmt = select(func.count(ReviewVote.id)).where(
            ReviewVote.review_id == review_id, ReviewVote.vote_type == vote_type
        )
        with self.get_db_session() as session:
            return session.execute(stmt).scalar() or 0

    def get_vote_counts(self, review_id: int) -> Tuple[int, int]:
        """(helpful, not_helpful)"""
        stmt = (
            select(ReviewVote.vote_type, func.count(ReviewVote.id))
            .where(ReviewVote.review_id == review_id)
            .group_by(ReviewVote.vote_type)
        )
        with self.get_db_session() as session:
            counts = dict(session.execute(stmt).all())
        return counts.get(VoteType.HELPFUL.value, 0), counts.get(VoteType.NOT_HELPFUL.value, 0)

    def has_user_voted(self, user_id: int, review_id: int) -> bool:
        return self.get_user_vote_type(user_id, review_id) is not None

    def get_user_vote_type(self, user_id: int, review_id: int) -> Optional[str]:
        stmt = select(ReviewVote.vote_type).where(
            ReviewVote.user_id == user_id, ReviewVote.review_id == review_id
        )
        with self.get_db_session() as session:
            return session.execute(stmt).scalar()

    def get_most_helpful_reviews(self, product_id: Optional[int] = None, limit: int = 10) -> List[int]:
        """Review ids ordered by number of helpful votes"""
        helpful = func.count(ReviewVote.id)
        stmt = (
            select(ReviewVote.review_id)
            .where(ReviewVote.vote_type == VoteType.HELPFUL.value)
            .group_by(ReviewVote.review_id)
            .order_by(helpful.desc(), ReviewVote.review_id)
        )
        if product_id is not None:
            stmt = stmt.join(Review, Review.id == ReviewVote.review_id).where(
                Review.product_id == product_id
            )
        stmt = self._paginate(stmt, limit)
        with self.get_db_session() as session:
            return list(session.scalars(stmt))

    def delete_by_review(self, review_id: int) -> int:
        with self.get_db_session("DELETE") as session:
            result = session.execute(delete(ReviewVote).where(ReviewVote.review_id == review_id))
            refresh_vote_counts(session, review_id)
            return result.rowcount

    def delete_by_user(self, user_id: int) -> int:
        with self.get_db_session("DELETE") as session:
            review_ids = list(session.scalars(
                select(ReviewVote.review_id).where(ReviewVote.user_id == user_id)
            ))
            result = session.execute(delete(ReviewVote).where(ReviewVote.user_id == user_id))
            for review_id in review_ids:
                refresh_vote_counts(session, review_id)
            return result.rowcount

    def get_user_votes_for_reviews(self, user_id: int, review_ids: Iterable[int]) -> Dict[int, ReviewVote]:
        review_ids = list(review_ids)
        if not review_ids:
            return {}
        stmt = select(ReviewVote).where(
            ReviewVote.user_id == user_id, ReviewVote.review_id.in_(review_ids)
        )
        return {vote.review_id: vote for vote in self._all(stmt)}

    def get_votes_by_review_ids(self, review_ids: Iterable[int]) -> Dict[int, List[ReviewVote]]:
        review_ids = list(review_ids)
        if not review_ids:
            return {}
        stmt = (
            select(ReviewVote)
            .where(ReviewVote.review_id.in_(review_ids))
            .order_by(ReviewVote.review_id, ReviewVote.id)
        )
        grouped: Dict[int, List[ReviewVote]] = {review_id: [] for review_id in review_ids}
        for vote in self._all(stmt):
            grouped[vote.review_id].append(vote)
        return grouped

    def vote_review(self, review_id: int, user_id: int, vote_type: str) -> ReviewVote:
        with self.get_db_session("WRITE") as session:
            vote = upsert_vote(session, review_id, user_id, vote_type)
        logger.info(f"User {user_id} voted {vote_type} on review {review_id}")
        return vote

    def update_review_vote_counts(self, review_id: int) -> None:
        with self.get_db_session("WRITE") as session:
            if refresh_vote_counts(session, review_id) == 0:
                raise ReviewNotFoundError(resource_id=review_id)
        logger.info(f"Refreshed vote counters for review {review_id}")
