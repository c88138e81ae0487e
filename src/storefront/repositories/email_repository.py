import logging
from datetime import datetime
from typing import Dict, List, Optional, Tuple

from sqlalchemy import and_, case, func, or_, select

from storefront.core.exceptions import (
    EmailNotFoundError,
    EmailSubscriptionNotFoundError,
    EmailTemplateNotFoundError,
    ValidationError,
)
from storefront.domain.reports import EmailStats
from storefront.models.email import (
    Email,
    EmailStatus,
    EmailSubscription,
    EmailTemplate,
    EmailType,
)
from storefront.repositories.base import BaseRepository
from storefront.schemas.filters import EmailSearchQuery
from storefront.utils.date_utils import DateUtils
from storefront.utils.validators import ValidationUtils

logger = logging.getLogger(__name__)

BATCH_SIZE = 100

# Statuses an email passes through after leaving the outbox
SENT_STATUSES = (
    EmailStatus.SENT.value,
    EmailStatus.DELIVERED.value,
    EmailStatus.OPENED.value,
    EmailStatus.CLICKED.value,
    EmailStatus.BOUNCED.value,
)
DELIVERED_STATUSES = (
    EmailStatus.DELIVERED.value,
    EmailStatus.OPENED.value,
    EmailStatus.CLICKED.value,
)

SUBSCRIPTION_COLUMNS = {
    EmailType.NEWSLETTER.value: "newsletter",
    EmailType.PROMOTION.value: "promotions",
    EmailType.ORDER_CONFIRMATION.value: "order_updates",
    EmailType.ORDER_SHIPPED.value: "order_updates",
    EmailType.ORDER_DELIVERED.value: "order_updates",
    EmailType.ORDER_CANCELLED.value: "order_updates",
    EmailType.REVIEW_REQUEST.value: "review_requests",
    EmailType.ABANDONED_CART.value: "abandoned_cart",
    EmailType.SUPPORT.value: "support",
}


def subscription_column(email_type) -> Optional[str]:
    """Preference column guarding an email type; None for system mail"""
    if isinstance(email_type, EmailType):
        email_type = email_type.value
    return SUBSCRIPTION_COLUMNS.get(email_type)


class EmailRepository(BaseRepository[Email]):
    """Outbound email log, retry queue and delivery statistics"""

    model = Email
    not_found_error = EmailNotFoundError

    SORT_COLUMNS = {
        "created_at": Email.created_at,
        "sent_at": Email.sent_at,
        "status": Email.status,
        "type": Email.type,
        "priority": Email.priority,
        "to_email": Email.to_email,
    }

    @staticmethod
    def _validate(email: Email) -> None:
        if not ValidationUtils.validate_email(email.to_email):
            raise ValidationError(
                "Invalid recipient address",
                [{"field": "to_email", "message": f"{email.to_email!r} is not a valid email address"}],
            )
        email.to_email = ValidationUtils.normalize_email(email.to_email)

    def create(self, email: Email) -> Email:
        self._validate(email)
        return self._add(email)

    def create_batch(self, emails: List[Email]) -> int:
        for email in emails:
            self._validate(email)
        return self._add_all(emails, BATCH_SIZE)

    def get_by_external_id(self, external_id: str) -> Email:
        return self._first(select(Email).where(Email.external_id == external_id), external_id)

    def update(self, email: Email) -> Email:
        return self._save(email)

    def update_batch(self, emails: List[Email]) -> List[Email]:
        with self.transaction() as tx:
            return [tx.update(email) for email in emails]

    def delete(self, email_id: int) -> None:
        self._delete_by_id(email_id)

    def _newest(self, *criteria, limit: int = 20, offset: int = 0) -> List[Email]:
        stmt = select(Email).where(*criteria).order_by(Email.created_at.desc(), Email.id.desc())
        return self._all(self._paginate(stmt, limit, offset))

    def list(self, offset: int = 0, limit: int = 20) -> List[Email]:
        return self._newest(limit=limit, offset=offset)

    def get_by_user_id(self, user_id: int, offset: int = 0, limit: int = 20) -> List[Email]:
        return self._newest(Email.user_id == user_id, limit=limit, offset=offset)

    def get_by_order_id(self, order_id: int) -> List[Email]:
        return self._newest(Email.order_id == order_id, limit=0)

    def get_by_type(self, email_type: str, offset: int = 0, limit: int = 20) -> List[Email]:
        return self._newest(Email.type == email_type, limit=limit, offset=offset)

    def get_by_status(self, status: str, offset: int = 0, limit: int = 20) -> List[Email]:
        return self._newest(Email.status == status, limit=limit, offset=offset)

    def get_pending_emails(self, limit: int = 100) -> List[Email]:
        """Outbox, most urgent first"""
        priority_rank = case(
            (Email.priority == "urgent", 0),
            (Email.priority == "high", 1),
            (Email.priority == "normal", 2),
            else_=3,
        )
        stmt = (
            select(Email)
            .where(Email.status == EmailStatus.PENDING.value)
            .order_by(priority_rank, Email.created_at)
        )
        return self._all(self._paginate(stmt, limit))

    def get_retryable_emails(self) -> List[Email]:
        stmt = (
            select(Email)
            .where(
                Email.status == EmailStatus.FAILED.value,
                Email.retry_count < Email.max_retries,
                Email.next_retry_at <= DateUtils.now_utc(),
            )
            .order_by(Email.created_at, Email.id)
        )
        return self._all(stmt)

    def get_failed_emails(self, since: datetime) -> List[Email]:
        return self._newest(
            Email.status == EmailStatus.FAILED.value, Email.created_at >= since, limit=0
        )

    # ------------------------------------------------------------------
    # Statistics
    # ------------------------------------------------------------------

    def _stats(self, *criteria) -> EmailStats:
        def count_if(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        stmt = select(
            count_if(Email.status.in_(SENT_STATUSES)),
            count_if(Email.status.in_(DELIVERED_STATUSES)),
            count_if(Email.is_opened.is_(True)),
            count_if(Email.is_clicked.is_(True)),
            count_if(or_(Email.is_bounced.is_(True), Email.status == EmailStatus.BOUNCED.value)),
            count_if(Email.status == EmailStatus.FAILED.value),
        ).where(*criteria)

        with self.get_db_session() as session:
            row = session.execute(stmt).one()
        return EmailStats(*(int(value) for value in row))

    def get_email_stats(self, since: datetime) -> EmailStats:
        return self._stats(Email.created_at >= since)

    def _typed_stats(self, email_type: Optional[str], since: datetime) -> EmailStats:
        criteria = [Email.created_at >= since]
        if email_type:
            criteria.append(Email.type == email_type)
        return self._stats(*criteria)

    def get_delivery_rate(self, email_type: Optional[str], since: datetime) -> float:
        return self._typed_stats(email_type, since).delivery_rate

    def get_open_rate(self, email_type: Optional[str], since: datetime) -> float:
        return self._typed_stats(email_type, since).open_rate

    def get_click_rate(self, email_type: Optional[str], since: datetime) -> float:
        return self._typed_stats(email_type, since).click_rate

    def search(self, query: EmailSearchQuery) -> Tuple[List[Email], int]:
        """Filtered, sorted page of emails plus the unpaginated total"""
        criteria = []
        if query.user_id is not None:
            criteria.append(Email.user_id == query.user_id)
        if query.order_id is not None:
            criteria.append(Email.order_id == query.order_id)
        if query.type:
            criteria.append(Email.type == query.type)
        if query.status:
            criteria.append(Email.status == query.status)
        if query.priority:
            criteria.append(Email.priority == query.priority)
        if query.to_email:
            criteria.append(Email.to_email.ilike(f"%{query.to_email}%"))
        if query.subject:
            criteria.append(Email.subject.ilike(f"%{query.subject}%"))
        if query.created_from:
            criteria.append(Email.created_at >= query.created_from)
        if query.created_to:
            criteria.append(Email.created_at <= query.created_to)
        if query.sent_from:
            criteria.append(Email.sent_at >= query.sent_from)
        if query.sent_to:
            criteria.append(Email.sent_at <= query.sent_to)
        if query.is_delivered is not None:
            delivered = Email.delivered_at.isnot(None)
            criteria.append(delivered if query.is_delivered else ~delivered)
        if query.is_opened is not None:
            criteria.append(Email.is_opened.is_(query.is_opened))
        if query.is_clicked is not None:
            criteria.append(Email.is_clicked.is_(query.is_clicked))
        if query.is_bounced is not None:
            criteria.append(Email.is_bounced.is_(query.is_bounced))
        if query.is_failed is not None:
            failed = Email.status == EmailStatus.FAILED.value
            criteria.append(failed if query.is_failed else Email.status != EmailStatus.FAILED.value)
        if query.can_retry is not None:
            retryable = and_(
                Email.status == EmailStatus.FAILED.value,
                Email.retry_count < Email.max_retries,
            )
            criteria.append(retryable if query.can_retry else ~retryable)

        stmt = select(Email).where(*criteria)
        total = self._count(stmt)

        column = self.SORT_COLUMNS.get(query.order_column, Email.created_at)
        stmt = self._order(stmt, column, query.descending).order_by(Email.id.desc())
        emails = self._all(self._paginate(stmt, query.limit, query.offset))
        return emails, total


class EmailTemplateRepository(BaseRepository[EmailTemplate]):
    model = EmailTemplate
    not_found_error = EmailTemplateNotFoundError

    def create(self, template: EmailTemplate) -> EmailTemplate:
        return self._add(template)

    def get_by_name(self, name: str) -> EmailTemplate:
        """Active template with this name, newest version first"""
        stmt = (
            select(EmailTemplate)
            .where(EmailTemplate.name == name, EmailTemplate.is_active.is_(True))
            .order_by(EmailTemplate.version.desc())
        )
        return self._first(stmt, name)

    def get_active(self, name: str) -> EmailTemplate:
        return self.get_by_name(name)

    def update(self, template: EmailTemplate) -> EmailTemplate:
        return self._save(template)

    def delete(self, template_id: int) -> None:
        self._delete_by_id(template_id)

    def list(self, offset: int = 0, limit: int = 20) -> List[EmailTemplate]:
        stmt = select(EmailTemplate).order_by(EmailTemplate.name, EmailTemplate.version.desc())
        return self._all(self._paginate(stmt, limit, offset))

    def get_by_type(self, email_type: str) -> List[EmailTemplate]:
        stmt = (
            select(EmailTemplate)
            .where(EmailTemplate.type == email_type, EmailTemplate.is_active.is_(True))
            .order_by(EmailTemplate.name, EmailTemplate.version.desc())
        )
        return self._all(stmt)

    def get_latest_version(self, name: str) -> EmailTemplate:
        stmt = (
            select(EmailTemplate)
            .where(EmailTemplate.name == name)
            .order_by(EmailTemplate.version.desc())
        )
        return self._first(stmt, name)

    def get_by_version(self, name: str, version: int) -> EmailTemplate:
        stmt = select(EmailTemplate).where(
            EmailTemplate.name == name, EmailTemplate.version == version
        )
        return self._first(stmt, f"{name} v{version}")


class EmailSubscriptionRepository(BaseRepository[EmailSubscription]):
    model = EmailSubscription
    not_found_error = EmailSubscriptionNotFoundError

    def create(self, subscription: EmailSubscription) -> EmailSubscription:
        return self._add(subscription)

    def get_by_user_id(self, user_id: int) -> EmailSubscription:
        stmt = select(EmailSubscription).where(EmailSubscription.user_id == user_id)
        return self._first(stmt, f"user_id={user_id}")

    def update(self, subscription: EmailSubscription) -> EmailSubscription:
        return self._save(subscription)

    def delete(self, subscription_id: int) -> None:
        self._delete_by_id(subscription_id)

    def list(self, offset: int = 0, limit: int = 20) -> List[EmailSubscription]:
        stmt = select(EmailSubscription).order_by(EmailSubscription.id)
        return self._all(self._paginate(stmt, limit, offset))

    def get_subscribed_users(self, email_type) -> List[int]:
        column = subscription_column(email_type)
        stmt = select(EmailSubscription.user_id).order_by(EmailSubscription.user_id)
        if column is not None:
            stmt = stmt.where(getattr(EmailSubscription, column).is_(True))
        with self.get_db_session() as session:
            return list(session.scalars(stmt))

    def get_unsubscribed_users(self, email_type) -> List[int]:
        column = subscription_column(email_type)
        if column is None:
            # system mail cannot be opted out of
            return []
        stmt = (
            select(EmailSubscription.user_id)
            .where(getattr(EmailSubscription, column).is_(False))
            .order_by(EmailSubscription.user_id)
        )
        with self.get_db_session() as session:
            return list(session.scalars(stmt))

    def update_subscriptions(self, user_id: int, preferences: Dict) -> EmailSubscription:
        """
        Apply {email_type: subscribed} to a user's row.

        A user without a row gets one with every preference on before the
        changes are applied. System types are ignored.
        """
        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                subscription = session.scalars(
                    select(EmailSubscription).where(EmailSubscription.user_id == user_id)
                ).first()
                if subscription is None:
                    subscription = EmailSubscription(
                        user_id=user_id,
                        newsletter=True,
                        promotions=True,
                        order_updates=True,
                        review_requests=True,
                        abandoned_cart=True,
                        support=True,
                    )
                    session.add(subscription)

                for email_type, subscribed in preferences.items():
                    column = subscription_column(email_type)
                    if column is not None:
                        setattr(subscription, column, bool(subscribed))

                session.flush()
        logger.info(f"Updated email subscriptions for user {user_id}")
        return subscription
