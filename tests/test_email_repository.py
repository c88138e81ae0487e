"""
Email repository tests

- recipient validation, outbox ordering, retry queue
- delivery statistics and search
- templates (versioned) and subscription preferences
"""

from datetime import timedelta

import pytest

from storefront.core.exceptions import (
    EmailNotFoundError,
    EmailSubscriptionNotFoundError,
    EmailTemplateNotFoundError,
    ValidationError,
)
from storefront.models import (
    Email,
    EmailPriority,
    EmailStatus,
    EmailSubscription,
    EmailTemplate,
    EmailType,
)
from storefront.repositories import (
    EmailRepository,
    EmailSubscriptionRepository,
    EmailTemplateRepository,
)
from storefront.schemas.filters import EmailSearchQuery
from storefront.utils.date_utils import DateUtils


@pytest.fixture
def repo(session_factory):
    return EmailRepository(session_factory)


def _email(to="Jane@ShopMail.com", **kwargs):
    kwargs.setdefault("type", EmailType.ORDER_CONFIRMATION.value)
    kwargs.setdefault("subject", "Your order")
    kwargs.setdefault("from_email", "orders@shopmail.com")
    return Email(to_email=to, **kwargs)


def _since():
    return DateUtils.now_utc() - timedelta(hours=1)


class TestEmailModel:

    @pytest.mark.unit
    def test_failed_backoff_is_quadratic(self):
        now = DateUtils.now_utc()
        email = _email(retry_count=1, max_retries=3)

        email.mark_as_failed("smtp timeout", now=now)

        assert email.retry_count == 2
        assert email.next_retry_at == now + timedelta(hours=4)
        assert email.can_retry(now=now + timedelta(hours=5))

    @pytest.mark.unit
    def test_retry_defaults_before_save(self):
        now = DateUtils.now_utc()
        email = _email()

        assert (email.retry_count, email.max_retries) == (0, 3)

        email.mark_as_failed("smtp timeout", now=now)

        assert email.retry_count == 1
        assert email.next_retry_at == now + timedelta(hours=1)
        assert email.can_retry(now=now + timedelta(hours=2))

    @pytest.mark.unit
    def test_failed_out_of_retries(self):
        email = _email(retry_count=2, max_retries=3)

        email.mark_as_failed("rejected")

        assert email.next_retry_at is None
        assert not email.can_retry()

    @pytest.mark.unit
    def test_open_needs_a_sent_message(self):
        email = _email(status=EmailStatus.PENDING.value, is_opened=False)

        email.mark_as_opened()
        assert email.status == EmailStatus.PENDING.value

        email.mark_as_sent(external_id="msg-1")
        email.mark_as_opened()
        assert email.status == EmailStatus.OPENED.value
        assert email.external_id == "msg-1"

    @pytest.mark.unit
    def test_click_implies_open(self):
        email = _email(is_opened=False)

        email.mark_as_clicked()

        assert email.is_opened and email.is_clicked


class TestEmailRepository:

    @pytest.mark.db
    def test_create_normalises_recipient(self, repo):
        email = repo.create(_email())

        assert email.to_email == "jane@shopmail.com"
        assert email.status == EmailStatus.PENDING.value

    @pytest.mark.db
    def test_invalid_recipient(self, repo):
        with pytest.raises(ValidationError):
            repo.create(_email(to="not-an-address"))

    @pytest.mark.db
    def test_create_batch(self, repo):
        assert repo.create_batch([_email(f"user{i}@shopmail.com") for i in range(3)]) == 3
        assert len(repo.list()) == 3

    @pytest.mark.db
    def test_get_missing(self, repo):
        with pytest.raises(EmailNotFoundError):
            repo.get_by_id(404)

    @pytest.mark.db
    def test_external_id_lookup(self, repo):
        email = repo.create(_email(external_id="provider-123"))

        assert repo.get_by_external_id("provider-123").id == email.id
        with pytest.raises(EmailNotFoundError):
            repo.get_by_external_id("provider-999")

    @pytest.mark.db
    def test_update_batch(self, repo):
        emails = [repo.create(_email(f"b{i}@shopmail.com")) for i in range(2)]
        for email in emails:
            email.mark_as_sent()

        repo.update_batch(emails)

        assert len(repo.get_by_status(EmailStatus.SENT.value)) == 2

    @pytest.mark.db
    def test_lookups_by_owner(self, repo, make_order):
        order = make_order()
        repo.create(_email(user_id=order.user_id, order_id=order.id))
        repo.create(_email(type=EmailType.NEWSLETTER.value))

        assert len(repo.get_by_user_id(order.user_id)) == 1
        assert len(repo.get_by_order_id(order.id)) == 1
        assert len(repo.get_by_type(EmailType.NEWSLETTER.value)) == 1

    @pytest.mark.db
    def test_pending_emails_by_priority(self, repo):
        repo.create(_email("low@shopmail.com", priority=EmailPriority.LOW.value))
        repo.create(_email("urgent@shopmail.com", priority=EmailPriority.URGENT.value))
        repo.create(_email("normal@shopmail.com", priority=EmailPriority.NORMAL.value))

        order = [e.to_email for e in repo.get_pending_emails()]

        assert order == ["urgent@shopmail.com", "normal@shopmail.com", "low@shopmail.com"]

    @pytest.mark.db
    def test_retryable_and_failed(self, repo):
        due = repo.create(_email("due@shopmail.com"))
        due.status = EmailStatus.FAILED.value
        due.retry_count = 1
        due.next_retry_at = DateUtils.now_utc() - timedelta(minutes=1)
        repo.update(due)

        later = repo.create(_email("later@shopmail.com"))
        later.mark_as_failed("busy")
        repo.update(later)

        assert [e.id for e in repo.get_retryable_emails()] == [due.id]
        assert len(repo.get_failed_emails(_since())) == 2

    @pytest.mark.db
    def test_stats_and_rates(self, repo):
        statuses = ["sent", "delivered", "opened", "clicked", "bounced", "failed"]
        for status in statuses:
            email = repo.create(_email(f"{status}@shopmail.com"))
            email.status = status
            email.is_opened = status in ("opened", "clicked")
            email.is_clicked = status == "clicked"
            repo.update(email)

        stats = repo.get_email_stats(_since())

        assert stats.total_sent == 5
        assert stats.total_delivered == 3
        assert stats.total_opened == 2
        assert stats.total_clicked == 1
        assert stats.total_bounced == 1
        assert stats.total_failed == 1
        assert stats.delivery_rate == 60.0
        assert repo.get_open_rate(None, _since()) == 66.67
        assert repo.get_click_rate(EmailType.NEWSLETTER.value, _since()) == 0.0

    @pytest.mark.db
    def test_search(self, repo):
        repo.create(_email("alpha@shopmail.com", subject="Welcome aboard"))
        repo.create(_email("beta@shopmail.com", subject="Order shipped"))
        repo.create(_email("gamma@shopmail.com", subject="Welcome back"))

        emails, total = repo.search(EmailSearchQuery(subject="welcome", limit=1, sort_by="to_email", sort_order="asc"))

        assert total == 2
        assert [e.to_email for e in emails] == ["alpha@shopmail.com"]

    @pytest.mark.unit
    def test_search_rejects_unknown_sort(self):
        with pytest.raises(ValueError):
            EmailSearchQuery(sort_by="password")


class TestEmailTemplateRepository:

    @pytest.fixture
    def templates(self, session_factory):
        return EmailTemplateRepository(session_factory)

    def _template(self, version, is_active=True):
        return EmailTemplate(
            name="welcome", type=EmailType.WELCOME.value, subject=f"Welcome v{version}",
            version=version, is_active=is_active,
        )

    @pytest.mark.db
    def test_newest_active_version(self, templates):
        templates.create(self._template(1))
        templates.create(self._template(2))
        templates.create(self._template(3, is_active=False))

        assert templates.get_by_name("welcome").version == 2
        assert templates.get_latest_version("welcome").version == 3
        assert templates.get_by_version("welcome", 1).subject == "Welcome v1"
        assert len(templates.get_by_type(EmailType.WELCOME.value)) == 2

    @pytest.mark.db
    def test_missing_template(self, templates):
        with pytest.raises(EmailTemplateNotFoundError):
            templates.get_active("nope")


class TestEmailSubscriptionRepository:

    @pytest.fixture
    def subscriptions(self, session_factory):
        return EmailSubscriptionRepository(session_factory)

    @pytest.mark.db
    def test_update_creates_row(self, subscriptions, user):
        subscription = subscriptions.update_subscriptions(
            user.id, {EmailType.NEWSLETTER.value: False, EmailType.PASSWORD_RESET.value: False}
        )

        assert subscription.newsletter is False
        assert subscription.promotions is True
        assert subscriptions.get_by_user_id(user.id).id == subscription.id

    @pytest.mark.db
    def test_subscribed_and_unsubscribed(self, subscriptions, make_user):
        keen = make_user()
        quiet = make_user()
        subscriptions.create(EmailSubscription(user_id=keen.id))
        subscriptions.create(EmailSubscription(user_id=quiet.id, promotions=False))

        assert subscriptions.get_subscribed_users(EmailType.PROMOTION) == [keen.id]
        assert subscriptions.get_unsubscribed_users(EmailType.PROMOTION.value) == [quiet.id]

    @pytest.mark.db
    def test_system_mail_ignores_preferences(self, subscriptions, make_user):
        a = make_user()
        b = make_user()
        subscriptions.create(EmailSubscription(user_id=a.id, support=False))
        subscriptions.create(EmailSubscription(user_id=b.id))

        assert subscriptions.get_subscribed_users(EmailType.PASSWORD_RESET.value) == [a.id, b.id]
        assert subscriptions.get_unsubscribed_users(EmailType.PASSWORD_RESET.value) == []

    @pytest.mark.db
    def test_missing_subscription(self, subscriptions, user):
        with pytest.raises(EmailSubscriptionNotFoundError):
            subscriptions.get_by_user_id(user.id)
