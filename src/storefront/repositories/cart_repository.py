import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import and_, case, delete, func, select, update
from sqlalchemy.orm import selectinload

from storefront.core.config import config
from storefront.core.exceptions import (
    BusinessLogicError,
    CartItemNotFoundError,
    CartNotFoundError,
    ValidationError,
)
from storefront.domain.reports import AbandonedCartStats
from storefront.models.cart import Cart, CartItem, CartStatus
from storefront.repositories.base import BaseRepository
from storefront.utils.date_utils import DateUtils
from storefront.utils.validators import ValidationUtils

logger = logging.getLogger(__name__)

REMINDER_COLUMNS = {
    "first": "first_reminder_sent_at",
    "second": "second_reminder_sent_at",
    "final": "final_reminder_sent_at",
}


class CartRepository(BaseRepository[Cart]):
    """Repository for shopping cart operations"""

    model = Cart
    not_found_error = CartNotFoundError

    def create(self, cart: Cart) -> Cart:
        """
        Persist a new cart.

        A cart belongs to a user or to a guest session, never both. Guest
        carts expire after a day, user carts after a week, unless the caller
        set expires_at.
        """
        has_user = cart.user_id is not None
        has_session = bool(cart.session_id)
        if has_user == has_session:
            raise ValidationError(
                "Cart must belong to exactly one of a user or a guest session",
                [{"field": "user_id", "message": "set user_id or session_id, not both"}],
            )
        if has_session and not ValidationUtils.validate_session_id(cart.session_id):
            raise ValidationError(
                "Invalid session id",
                [{"field": "session_id", "message": "8-128 characters of letters, digits, '.', '_' or '-'"}],
            )

        if cart.expires_at is None:
            days = config.carts.user_cart_days if has_user else config.carts.guest_cart_days
            cart.expires_at = DateUtils.create_expiry_time(days=days)
        if cart.status is None:
            cart.status = CartStatus.ACTIVE.value

        return self._add(cart)

    def _cart_query(self):
        return select(Cart).options(selectinload(Cart.items))

    def get_by_id(self, cart_id: int) -> Cart:
        """Get cart with its items"""
        return self._first(self._cart_query().where(Cart.id == cart_id), cart_id)

    def _active_cart_query(self, *criteria):
        return (
            self._cart_query()
            .where(Cart.status == CartStatus.ACTIVE.value, *criteria)
            .order_by(Cart.created_at.desc(), Cart.id.desc())
        )

    def get_by_user_id(self, user_id: int) -> Cart:
        """Newest active cart of a user"""
        return self._first(self._active_cart_query(Cart.user_id == user_id), f"user_id={user_id}")

    def get_by_session_id(self, session_id: str) -> Cart:
        """Newest active cart of a guest session"""
        return self._first(
            self._active_cart_query(Cart.session_id == session_id), f"session_id={session_id}"
        )

    def get_by_user_id_for_update(self, user_id: int) -> Cart:
        """
        Same as get_by_user_id but locks the row (SELECT ... FOR UPDATE).

        Only meaningful inside transaction(); a self-managed session
        releases the lock as soon as the call returns.
        """
        stmt = self._active_cart_query(Cart.user_id == user_id).with_for_update()
        return self._first(stmt, f"user_id={user_id}")

    def get_by_session_id_for_update(self, session_id: str) -> Cart:
        stmt = self._active_cart_query(Cart.session_id == session_id).with_for_update()
        return self._first(stmt, f"session_id={session_id}")

    def update(self, cart: Cart) -> Cart:
        return self._save(cart)

    def delete(self, cart_id: int) -> None:
        self._delete_by_id(cart_id)

    # ------------------------------------------------------------------
    # Items. Every write is followed by recalculate_totals() in the same
    # transaction so the cart header never disagrees with its lines.
    # ------------------------------------------------------------------

    @staticmethod
    def _check_quantity(quantity: int) -> None:
        if quantity is None or quantity <= 0:
            raise ValidationError(
                "Quantity must be positive",
                [{"field": "quantity", "message": "must be greater than 0"}],
            )

    def add_item(self, cart_id: int, item: CartItem) -> CartItem:
        """
        Add a product to the cart, or bump its quantity if already there.

        The bump is done in SQL (quantity = quantity + :q) so concurrent adds
        of the same product do not lose an increment.
        """
        self._check_quantity(item.quantity)

        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                cart = session.scalars(
                    select(Cart).where(Cart.id == cart_id).with_for_update()
                ).first()
                if cart is None:
                    raise CartNotFoundError(resource_id=cart_id)

                existing = session.scalars(
                    select(CartItem).where(
                        CartItem.cart_id == cart_id,
                        CartItem.product_id == item.product_id,
                    )
                ).first()

                if existing is not None:
                    session.execute(
                        update(CartItem)
                        .where(CartItem.id == existing.id)
                        .values(
                            quantity=CartItem.quantity + item.quantity,
                            total_cents=(CartItem.quantity + item.quantity) * CartItem.price_cents,
                            updated_at=DateUtils.now_utc(),
                        )
                        .execution_options(synchronize_session=False)
                    )
                    session.refresh(existing)
                    result = existing
                    logger.info(
                        f"Increased product {item.product_id} in cart {cart_id} by {item.quantity}"
                    )
                else:
                    item.cart_id = cart_id
                    item.total_cents = item.price_cents * item.quantity
                    session.add(item)
                    session.flush()
                    result = item
                    logger.info(f"Added product {item.product_id} to cart {cart_id}")

            tx.recalculate_totals(cart_id)
            return result

    def update_item(self, item: CartItem) -> CartItem:
        """Overwrite quantity (and price if given) of an existing line"""
        self._check_quantity(item.quantity)

        with self.transaction() as tx:
            with tx.get_db_session("WRITE") as session:
                existing = session.get(CartItem, item.id) if item.id is not None else None
                if existing is None:
                    raise CartItemNotFoundError(resource_id=item.id)
                existing.quantity = item.quantity
                if item.price_cents is not None:
                    existing.price_cents = item.price_cents
                existing.total_cents = existing.price_cents * existing.quantity
                session.flush()
            tx.recalculate_totals(existing.cart_id)
            return existing

    def remove_item(self, cart_id: int, product_id: int) -> None:
        with self.transaction() as tx:
            with tx.get_db_session("DELETE") as session:
                result = session.execute(
                    delete(CartItem).where(
                        CartItem.cart_id == cart_id, CartItem.product_id == product_id
                    )
                )
                if result.rowcount == 0:
                    raise CartItemNotFoundError(resource_id=f"cart={cart_id} product={product_id}")
            tx.recalculate_totals(cart_id)
        logger.info(f"Removed product {product_id} from cart {cart_id}")

    def clear_cart(self, cart_id: int) -> int:
        with self.transaction() as tx:
            with tx.get_db_session("DELETE") as session:
                result = session.execute(delete(CartItem).where(CartItem.cart_id == cart_id))
            tx.recalculate_totals(cart_id)
        logger.info(f"Cleared {result.rowcount} items from cart {cart_id}")
        return result.rowcount

    def remove_items_by_product_id(self, product_id: int) -> int:
        """Drop a product from every cart (e.g. it was delisted)"""
        with self.transaction() as tx:
            with tx.get_db_session("DELETE") as session:
                cart_ids = list(
                    session.scalars(
                        select(CartItem.cart_id).where(CartItem.product_id == product_id).distinct()
                    )
                )
                session.execute(delete(CartItem).where(CartItem.product_id == product_id))
            for cart_id in cart_ids:
                tx.recalculate_totals(cart_id)
        logger.info(f"Removed product {product_id} from {len(cart_ids)} carts")
        return len(cart_ids)

    def get_item(self, cart_id: int, product_id: int) -> CartItem:
        stmt = select(CartItem).where(
            CartItem.cart_id == cart_id, CartItem.product_id == product_id
        )
        with self.get_db_session() as session:
            item = session.scalars(stmt).first()
            if item is None:
                raise CartItemNotFoundError(resource_id=f"cart={cart_id} product={product_id}")
            return item

    def get_items(self, cart_id: int) -> List[CartItem]:
        stmt = (
            select(CartItem)
            .options(selectinload(CartItem.product))
            .where(CartItem.cart_id == cart_id)
            .order_by(CartItem.id)
        )
        return self._all(stmt)

    def recalculate_totals(self, cart_id: int) -> Cart:
        """
        Rebuild subtotal, item_count and total from cart_items.

        total = subtotal + tax + shipping. The row is only written when a
        value actually changed.
        """
        with self.get_db_session("WRITE") as session:
            cart = session.get(Cart, cart_id, populate_existing=True)
            if cart is None:
                raise CartNotFoundError(resource_id=cart_id)

            subtotal, item_count = session.execute(
                select(
                    func.coalesce(func.sum(CartItem.total_cents), 0),
                    func.coalesce(func.sum(CartItem.quantity), 0),
                ).where(CartItem.cart_id == cart_id)
            ).one()
            subtotal = int(subtotal)
            item_count = int(item_count)
            total = subtotal + (cart.tax_cents or 0) + (cart.shipping_cents or 0)

            if subtotal < 0 or total < 0:
                logger.error(f"Negative totals computed for cart {cart_id}: subtotal={subtotal} total={total}")
                raise BusinessLogicError("Cart totals cannot be negative", "non_negative_cart_total")

            if (cart.subtotal_cents, cart.item_count, cart.total_cents) != (subtotal, item_count, total):
                cart.subtotal_cents = subtotal
                cart.item_count = item_count
                cart.total_cents = total
                session.flush()
            return cart

    # ------------------------------------------------------------------
    # Expiry and abandonment
    # ------------------------------------------------------------------

    def get_expired_carts(self) -> List[Cart]:
        stmt = self._cart_query().where(
            Cart.status == CartStatus.ACTIVE.value,
            Cart.expires_at < DateUtils.now_utc(),
        )
        return self._all(stmt)

    def get_abandoned_carts(self, since: datetime) -> List[Cart]:
        """Active carts untouched since ``since`` and not yet flagged"""
        stmt = self._cart_query().where(
            Cart.updated_at < since,
            Cart.is_abandoned.is_(False),
            Cart.status == CartStatus.ACTIVE.value,
        )
        return self._all(stmt)

    def mark_abandoned(self, cart_id: int) -> None:
        self._update_cart(
            cart_id,
            is_abandoned=True,
            abandoned_at=DateUtils.now_utc(),
            status=CartStatus.ABANDONED.value,
        )
        logger.info(f"Cart {cart_id} marked as abandoned")

    def mark_recovered(self, cart_id: int) -> None:
        self._update_cart(
            cart_id,
            is_abandoned=False,
            recovered_at=DateUtils.now_utc(),
            status=CartStatus.ACTIVE.value,
        )
        logger.info(f"Cart {cart_id} recovered")

    def record_reminder_sent(self, cart_id: int, stage: str) -> None:
        """Stamp the first/second/final reminder column"""
        column = REMINDER_COLUMNS.get(stage)
        if column is None:
            raise ValidationError(f"Unknown reminder stage: {stage}")
        self._update_cart(cart_id, **{column: DateUtils.now_utc()})

    def _update_cart(self, cart_id: int, **values) -> None:
        values.setdefault("updated_at", DateUtils.now_utc())
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Cart)
                .where(Cart.id == cart_id)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise CartNotFoundError(resource_id=cart_id)

    def expire_carts(self) -> int:
        """Flip every active, past-expiry cart to expired"""
        now = DateUtils.now_utc()
        with self.get_db_session("WRITE") as session:
            result = session.execute(
                update(Cart)
                .where(Cart.status == CartStatus.ACTIVE.value, Cart.expires_at < now)
                .values(status=CartStatus.EXPIRED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
        if result.rowcount:
            logger.info(f"Expired {result.rowcount} carts")
        return result.rowcount

    def get_abandoned_carts_list(self, offset: int = 0, limit: int = 20) -> List[Cart]:
        stmt = (
            self._cart_query()
            .where(Cart.is_abandoned.is_(True))
            .order_by(Cart.abandoned_at.desc())
        )
        return self._all(self._paginate(stmt, limit, offset))

    def get_abandoned_cart_stats(self, since: datetime) -> AbandonedCartStats:
        """Abandonment and recovery figures since ``since``, one aggregate query"""
        abandoned = and_(Cart.is_abandoned.is_(True), Cart.abandoned_at >= since)
        recovered = and_(Cart.is_abandoned.is_(False), Cart.recovered_at >= since)

        def count_if(condition):
            return func.coalesce(func.sum(case((condition, 1), else_=0)), 0)

        def sum_if(condition):
            return func.coalesce(func.sum(case((condition, Cart.total_cents), else_=0)), 0)

        stmt = select(
            count_if(abandoned),
            count_if(recovered),
            sum_if(abandoned),
            sum_if(recovered),
            func.avg(case((abandoned, Cart.total_cents))),
            count_if(and_(Cart.first_reminder_sent_at.isnot(None), Cart.abandoned_at >= since)),
            count_if(and_(Cart.second_reminder_sent_at.isnot(None), Cart.abandoned_at >= since)),
            count_if(and_(Cart.final_reminder_sent_at.isnot(None), Cart.abandoned_at >= since)),
        )

        with self.get_db_session() as session:
            row = session.execute(stmt).one()

        total_abandoned = int(row[0])
        total_recovered = int(row[1])
        return AbandonedCartStats(
            total_abandoned=total_abandoned,
            total_recovered=total_recovered,
            recovery_rate=(total_recovered * 100.0 / total_abandoned) if total_abandoned else 0.0,
            average_cart_value_cents=int(round(row[4])) if row[4] is not None else 0,
            total_lost_revenue_cents=int(row[2]),
            recovered_revenue_cents=int(row[3]),
            first_reminders_sent=int(row[5]),
            second_reminders_sent=int(row[6]),
            final_reminders_sent=int(row[7]),
        )
