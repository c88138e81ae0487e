from datetime import timedelta
from enum import Enum

from sqlalchemy import BigInteger, Boolean, Column, DateTime, ForeignKey, Integer, Text
from sqlalchemy import UniqueConstraint
from sqlalchemy.orm import relationship

from storefront.db import Base, BigId, JSONType
from storefront.models.common import created_at_column, enum_check, updated_at_column
from storefront.utils.date_utils import DateUtils


class EmailType(str, Enum):
    WELCOME = "welcome"
    ORDER_CONFIRMATION = "order_confirmation"
    ORDER_SHIPPED = "order_shipped"
    ORDER_DELIVERED = "order_delivered"
    ORDER_CANCELLED = "order_cancelled"
    PASSWORD_RESET = "password_reset"
    ACCOUNT_ACTIVATION = "account_activation"
    ABANDONED_CART = "abandoned_cart"
    REVIEW_REQUEST = "review_request"
    PROMOTION = "promotion"
    NEWSLETTER = "newsletter"
    SUPPORT = "support"
    REFUND = "refund"
    LOW_STOCK = "low_stock"


class EmailPriority(str, Enum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class EmailStatus(str, Enum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"
    BOUNCED = "bounced"
    OPENED = "opened"
    CLICKED = "clicked"


DEFAULT_MAX_RETRIES = 3


class Email(Base):
    """
    An outbound email and its delivery history.

    Delivery goes pending -> sent -> delivered -> opened -> clicked, with
    failed/bounced as side exits. A failed email is retried with a quadratic
    backoff (1h, 4h, 9h, ...) until max_retries is reached.
    """

    __tablename__ = "emails"

    id = Column(BigId, primary_key=True, autoincrement=True)
    type = Column(Text, nullable=False)
    priority = Column(Text, nullable=False, default=EmailPriority.NORMAL.value)
    status = Column(Text, nullable=False, default=EmailStatus.PENDING.value)

    to_email = Column(Text, nullable=False)
    to_name = Column(Text, nullable=True)
    from_email = Column(Text, nullable=False)
    from_name = Column(Text, nullable=True)
    reply_to_email = Column(Text, nullable=True)

    subject = Column(Text, nullable=False)
    body_text = Column(Text, nullable=True)
    body_html = Column(Text, nullable=True)

    template_id = Column(BigInteger, ForeignKey("email_templates.id"), nullable=True)
    template_data = Column(JSONType, nullable=True)

    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=True)
    order_id = Column(BigInteger, ForeignKey("orders.id"), nullable=True)
    product_id = Column(BigInteger, ForeignKey("products.id"), nullable=True)

    sent_at = Column(DateTime(timezone=True), nullable=True)
    delivered_at = Column(DateTime(timezone=True), nullable=True)
    opened_at = Column(DateTime(timezone=True), nullable=True)
    clicked_at = Column(DateTime(timezone=True), nullable=True)
    bounced_at = Column(DateTime(timezone=True), nullable=True)

    is_opened = Column(Boolean, nullable=False, default=False)
    is_clicked = Column(Boolean, nullable=False, default=False)
    is_bounced = Column(Boolean, nullable=False, default=False)

    retry_count = Column(Integer, nullable=False, default=0)
    max_retries = Column(Integer, nullable=False, default=DEFAULT_MAX_RETRIES)
    next_retry_at = Column(DateTime(timezone=True), nullable=True)
    error_message = Column(Text, nullable=True)

    external_id = Column(Text, nullable=True)
    external_provider = Column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    extra_metadata = Column("metadata", JSONType, nullable=True)

    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        enum_check("type", EmailType, "ck_email_type"),
        enum_check("priority", EmailPriority, "ck_email_priority"),
        enum_check("status", EmailStatus, "ck_email_status"),
    )

    template = relationship("EmailTemplate")

    def __init__(self, **kwargs):
        # retry bookkeeping is read before the first flush
        kwargs.setdefault("retry_count", 0)
        kwargs.setdefault("max_retries", DEFAULT_MAX_RETRIES)
        super().__init__(**kwargs)

    def mark_as_sent(self, external_id=None, now=None):
        self.status = EmailStatus.SENT.value
        self.sent_at = now or DateUtils.now_utc()
        if external_id:
            self.external_id = external_id

    def mark_as_delivered(self, now=None):
        self.status = EmailStatus.DELIVERED.value
        self.delivered_at = now or DateUtils.now_utc()

    def mark_as_failed(self, error_message: str, now=None):
        now = now or DateUtils.now_utc()
        self.status = EmailStatus.FAILED.value
        self.error_message = error_message
        self.retry_count = (self.retry_count or 0) + 1
        if self.retry_count < self.max_retries:
            self.next_retry_at = now + timedelta(hours=self.retry_count ** 2)
        else:
            self.next_retry_at = None

    def mark_as_bounced(self, now=None):
        self.status = EmailStatus.BOUNCED.value
        self.is_bounced = True
        self.bounced_at = now or DateUtils.now_utc()

    def mark_as_opened(self, now=None):
        # opens are only tracked once the message actually left
        if self.status not in (EmailStatus.DELIVERED.value, EmailStatus.SENT.value):
            return
        self.status = EmailStatus.OPENED.value
        self.is_opened = True
        self.opened_at = now or DateUtils.now_utc()

    def mark_as_clicked(self, now=None):
        now = now or DateUtils.now_utc()
        self.status = EmailStatus.CLICKED.value
        self.is_clicked = True
        self.clicked_at = now
        if not self.is_opened:
            self.is_opened = True
            self.opened_at = now

    def can_retry(self, now=None) -> bool:
        if self.status != EmailStatus.FAILED.value:
            return False
        if self.retry_count >= self.max_retries:
            return False
        if self.next_retry_at is None:
            return True
        return (now or DateUtils.now_utc()) >= DateUtils.ensure_utc(self.next_retry_at)

    def __repr__(self) -> str:
        return f"<Email id={self.id} type={self.type!r} status={self.status!r}>"


class EmailTemplate(Base):
    """Versioned subject/body templates; (name, version) is unique."""

    __tablename__ = "email_templates"

    id = Column(BigId, primary_key=True, autoincrement=True)
    name = Column(Text, nullable=False)
    type = Column(Text, nullable=False)
    subject = Column(Text, nullable=False)
    body_text = Column(Text, nullable=True)
    body_html = Column(Text, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    version = Column(Integer, nullable=False, default=1)
    description = Column(Text, nullable=True)
    variables = Column(JSONType, nullable=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    __table_args__ = (
        UniqueConstraint("name", "version", name="uq_email_template_version"),
        enum_check("type", EmailType, "ck_email_template_type"),
    )

    def __repr__(self) -> str:
        return f"<EmailTemplate name={self.name!r} v{self.version}>"


class EmailSubscription(Base):
    """Per-user opt-in flags, one row per user."""

    __tablename__ = "email_subscriptions"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(
        BigInteger, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, unique=True
    )
    newsletter = Column(Boolean, nullable=False, default=True)
    promotions = Column(Boolean, nullable=False, default=True)
    order_updates = Column(Boolean, nullable=False, default=True)
    review_requests = Column(Boolean, nullable=False, default=True)
    abandoned_cart = Column(Boolean, nullable=False, default=True)
    support = Column(Boolean, nullable=False, default=True)
    created_at = created_at_column()
    updated_at = updated_at_column()

    user = relationship("User")

    def __repr__(self) -> str:
        return f"<EmailSubscription user_id={self.user_id}>"
