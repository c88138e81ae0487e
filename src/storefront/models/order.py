from sqlalchemy import BigInteger, CheckConstraint, Column, ForeignKey, Text

from storefront.db import Base, BigId
from storefront.models.common import created_at_column


class Order(Base):
    """
    A purchase by a user.

    Order handling lives in the orders service; this mapping exists so that
    coupons, reservations, shipments and emails can reference orders by
    foreign key. status uses a CHECK constraint rather than a Postgres ENUM.
    """

    __tablename__ = "orders"

    id = Column(BigId, primary_key=True, autoincrement=True)
    user_id = Column(BigInteger, ForeignKey("users.id"), nullable=False)
    order_number = Column(Text, nullable=True, unique=True)
    status = Column(Text, nullable=False, default="created")
    total_cents = Column(BigInteger, nullable=False, default=0)
    currency = Column(Text, nullable=False, default="USD")
    created_at = created_at_column()

    __table_args__ = (
        CheckConstraint(
            "status IN ('created','paid','shipped','refunded','cancelled')",
            name="ck_order_status",
        ),
        CheckConstraint("total_cents >= 0", name="ck_order_total"),
    )

    def __repr__(self) -> str:
        return (
            f"<Order id={self.id} status={self.status!r} "
            f"total_cents={self.total_cents}>"
        )
